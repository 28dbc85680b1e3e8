"""Tests for credit pricing and the in-memory ledger."""

from __future__ import annotations

import threading

import pytest

from radscribe.usage import InMemoryUsageLedger, UsageAccountant, compute_credits


class TestComputeCredits:
    @pytest.mark.parametrize(
        ("tokens", "expected"),
        [(750, 1.0), (751, 2.0), (1500, 2.0), (1, 1.0)],
    )
    def test_tokens_round_up(self, tokens: int, expected: float) -> None:
        assert compute_credits(tokens) == expected

    def test_nothing_costs_the_minimum(self) -> None:
        assert compute_credits(0) == 0.1

    def test_audio_in_quarter_minutes(self) -> None:
        assert compute_credits(0, audio_seconds=15) == 1.0
        assert compute_credits(0, audio_seconds=16) == 2.0
        assert compute_credits(0, audio_seconds=60) == 4.0

    def test_pages_in_pairs(self) -> None:
        assert compute_credits(0, pages=3) == 2.0
        assert compute_credits(0, pages=2) == 1.0

    def test_components_add(self) -> None:
        assert compute_credits(751, audio_seconds=15, pages=3) == 5.0


class TestUsageAccountant:
    def test_charge_appends_and_moves_balance(self) -> None:
        ledger = InMemoryUsageLedger(credits_granted=10)
        record = UsageAccountant(ledger).charge(500, 250, audio_seconds=0, pages=0)

        assert record.tokens_used == 750
        assert record.credits_charged == 1.0
        assert ledger.records == (record,)
        assert ledger.summary() == {
            "credits_used": 1.0,
            "request_count": 1,
            "credits_granted": 10,
            "credits_remaining": 9.0,
        }

    def test_concurrent_charges_are_all_counted(self) -> None:
        ledger = InMemoryUsageLedger()
        accountant = UsageAccountant(ledger)

        def work() -> None:
            for _ in range(50):
                accountant.charge(750, 0)

        threads = [threading.Thread(target=work) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        summary = ledger.summary()
        assert summary["request_count"] == 400
        assert summary["credits_used"] == 400.0
