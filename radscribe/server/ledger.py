"""SQL-backed usage ledger."""

from __future__ import annotations

import logging

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session, sessionmaker

from radscribe.models import UsageRecord
from radscribe.server.models import CreditBalance, UsageEvent

logger = logging.getLogger(__name__)

# Dialects with INSERT ... ON CONFLICT DO NOTHING
_UPSERT_INSERTS = {
    "sqlite": sqlite_insert,
    "postgresql": postgresql_insert,
}


class SqlUsageLedger:
    """Usage ledger for one organisation.

    A charge is one transaction: insert the usage event, create the balance
    row if it is missing, then move the balance with a single relative
    ``UPDATE`` so concurrent requests never overwrite each other's increments.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        org_id: str,
        credits_granted: float = 1000.0,
    ) -> None:
        self._session_factory = session_factory
        self.org_id = org_id
        self.credits_granted = credits_granted

    def _ensure_balance(self, db: Session) -> None:
        insert = _UPSERT_INSERTS.get(db.get_bind().dialect.name)
        if insert is None:
            if db.get(CreditBalance, self.org_id) is None:
                db.add(CreditBalance(org_id=self.org_id, credits_granted=self.credits_granted))
                db.flush()
            return
        db.execute(
            insert(CreditBalance)
            .values(org_id=self.org_id, credits_granted=self.credits_granted, credits_used=0.0)
            .on_conflict_do_nothing(index_elements=[CreditBalance.org_id])
        )

    def _move_balance(self, db: Session, delta: float) -> None:
        db.execute(
            update(CreditBalance)
            .where(CreditBalance.org_id == self.org_id)
            .values(credits_used=CreditBalance.credits_used + delta)
        )

    def record_charge(self, record: UsageRecord) -> None:
        with self._session_factory() as db, db.begin():
            db.add(
                UsageEvent(
                    org_id=self.org_id,
                    tokens_in=record.tokens_in,
                    tokens_out=record.tokens_out,
                    audio_seconds=record.audio_seconds,
                    pages=record.pages,
                    credits_charged=record.credits_charged,
                )
            )
            db.flush()
            self._ensure_balance(db)
            self._move_balance(db, record.credits_charged)

    def summary(self) -> dict[str, float | int]:
        """Credits used, request count and remaining balance."""
        with self._session_factory() as db:
            used, count = db.execute(
                select(
                    func.coalesce(func.sum(UsageEvent.credits_charged), 0.0),
                    func.count(UsageEvent.id),
                ).where(UsageEvent.org_id == self.org_id)
            ).one()
            balance = db.get(CreditBalance, self.org_id)
            granted = balance.credits_granted if balance else self.credits_granted
            balance_used = balance.credits_used if balance else 0.0
        return {
            "credits_used": round(float(used), 2),
            "request_count": int(count),
            "credits_granted": granted,
            "credits_remaining": round(granted - balance_used, 2),
        }
