"""Credit accounting for completed report runs.

Credits are charged per unit of work, rounded up per component::

    ceil(tokens / 750) + ceil(audio_minutes / 0.25) + ceil(pages / 2)

with a floor of 0.1 credits for any run that produced a document.  The
accountant is called once per rendered message, never for blocked or failed
runs.
"""

from __future__ import annotations

import logging
import math
import threading
from typing import Protocol

from radscribe.models import UsageRecord

logger = logging.getLogger(__name__)

TOKENS_PER_CREDIT = 750
AUDIO_MINUTES_PER_CREDIT = 0.25
PAGES_PER_CREDIT = 2
MIN_CHARGE = 0.1


def compute_credits(tokens: int, audio_seconds: float = 0.0, pages: int = 0) -> float:
    total = (
        math.ceil(tokens / TOKENS_PER_CREDIT)
        + math.ceil((audio_seconds / 60) / AUDIO_MINUTES_PER_CREDIT)
        + math.ceil(pages / PAGES_PER_CREDIT)
    )
    return max(float(total), MIN_CHARGE)


class UsageLedger(Protocol):
    """Append-only usage log plus a running balance.

    ``record_charge`` appends the record and then increments the balance by
    its credits as one unit: either both happen or neither does, and
    concurrent callers never lose an increment.
    """

    def record_charge(self, record: UsageRecord) -> None: ...


class InMemoryUsageLedger:
    """Process-local ledger for the CLI and tests."""

    def __init__(self, credits_granted: float = 1000.0) -> None:
        self.credits_granted = credits_granted
        self.credits_used = 0.0
        self._records: list[UsageRecord] = []
        self._lock = threading.Lock()

    def record_charge(self, record: UsageRecord) -> None:
        with self._lock:
            self._records.append(record)
            self.credits_used += record.credits_charged

    @property
    def records(self) -> tuple[UsageRecord, ...]:
        with self._lock:
            return tuple(self._records)

    def summary(self) -> dict[str, float | int]:
        with self._lock:
            return {
                "credits_used": round(self.credits_used, 2),
                "request_count": len(self._records),
                "credits_granted": self.credits_granted,
                "credits_remaining": round(self.credits_granted - self.credits_used, 2),
            }


class UsageAccountant:
    def __init__(self, ledger: UsageLedger) -> None:
        self._ledger = ledger

    def charge(
        self,
        tokens_in: int,
        tokens_out: int,
        audio_seconds: float = 0.0,
        pages: int = 0,
    ) -> UsageRecord:
        """Price one run and persist it: append the record, then move the balance."""
        record = UsageRecord(
            tokens_in=tokens_in,
            tokens_out=tokens_out,
            audio_seconds=audio_seconds,
            pages=pages,
            credits_charged=compute_credits(tokens_in + tokens_out, audio_seconds, pages),
        )
        self._ledger.record_charge(record)
        logger.info(
            "Charged %.1f credits (tokens=%d audio=%.0fs pages=%d)",
            record.credits_charged,
            record.tokens_used,
            audio_seconds,
            pages,
        )
        return record
