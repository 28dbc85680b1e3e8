"""HTTP surface: FastAPI app, SQLite persistence and the usage ledger."""
