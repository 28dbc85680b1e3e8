"""Usage and credit balance endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Request
from pydantic import BaseModel

router = APIRouter(prefix="/api")


class UsageSummaryResponse(BaseModel):
    org_id: str
    credits_used: float
    request_count: int
    credits_granted: float
    credits_remaining: float


@router.get("/usage/me", response_model=UsageSummaryResponse)
def usage_me(request: Request) -> UsageSummaryResponse:
    """Credits used, number of charged requests and remaining balance."""
    ledger = request.app.state.ledger
    return UsageSummaryResponse(org_id=ledger.org_id, **ledger.summary())
