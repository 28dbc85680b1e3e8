"""Health check endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Request

from radscribe import __version__

router = APIRouter(prefix="/api")


@router.get("/health")
def health(request: Request) -> dict[str, str]:
    """Return server status, version and the configured generation provider."""
    return {
        "status": "ok",
        "version": __version__,
        "provider": request.app.state.settings.llm_provider,
    }
