"""Generation service client, strictness profiles and prompt templates."""
