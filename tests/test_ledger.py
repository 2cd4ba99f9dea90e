"""Tests for the spending ledger."""

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from treasurer.audit import EventType
from treasurer.capabilities import PriceProposal
from treasurer.errors import CapabilityUnavailable, ConfigurationError
from treasurer.ledger import Ledger, LedgerConfig, Rejection, TransactionKind


def make_ledger(limit="1.00", budget="5.00", **kwargs):
    return Ledger(LedgerConfig(per_transaction_limit=limit, daily_budget=budget), **kwargs)


class MovableClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


class TestLedgerConfig:
    def test_normalizes_limits(self):
        config = LedgerConfig(per_transaction_limit="1.0000009", daily_budget=5)
        assert config.per_transaction_limit == Decimal("1.000000")
        assert config.daily_budget == Decimal("5")

    @pytest.mark.parametrize("limit", ["0", "-1", "abc", "NaN"])
    def test_rejects_bad_limit(self, limit):
        with pytest.raises(ConfigurationError):
            LedgerConfig(per_transaction_limit=limit, daily_budget="5.00")

    @pytest.mark.parametrize("budget", ["1e25", "1e30"])
    def test_rejects_budget_too_large_to_quantize(self, budget):
        with pytest.raises(ConfigurationError, match="daily_budget must be a decimal"):
            LedgerConfig(per_transaction_limit="1.00", daily_budget=budget)

    def test_rejects_unknown_timezone(self):
        with pytest.raises(ConfigurationError, match="Unknown timezone"):
            LedgerConfig(per_transaction_limit="1", daily_budget="5", timezone="Mars/Olympus")


class TestRecordSpend:
    def test_fills_budget_then_refuses(self):
        ledger = make_ledger()
        for _ in range(5):
            assert ledger.record_spend(Decimal("1.00"), "USDT", "x").allowed

        sixth = ledger.record_spend(Decimal("1.00"), "USDT", "x")
        assert not sixth.allowed
        assert sixth.rejection is Rejection.BUDGET_EXCEEDED
        assert "Daily budget exceeded" in sixth.reason
        assert ledger.stats().spent_today == Decimal("5.00")
        assert len(ledger.transactions()) == 5

    def test_over_limit_refused_before_budget_check(self):
        ledger = make_ledger(budget="1.20")
        ledger.record_spend("1.00", "USDT", "first")

        result = ledger.record_spend(Decimal("1.50"), "USDT", "x")
        assert not result.allowed
        assert result.rejection is Rejection.LIMIT_EXCEEDED
        assert "exceeds per-transaction limit of $1.00" in result.reason
        assert len(ledger.transactions()) == 1
        assert ledger.stats().spent_today == Decimal("1.00")

    @pytest.mark.parametrize("amount", [Decimal("1e30"), "1e22", "1E+50"])
    def test_huge_amount_refused_as_over_limit(self, amount, audit):
        ledger = make_ledger(audit=audit)
        result = ledger.record_spend(amount, "USDT", "x")
        assert not result.allowed
        assert result.rejection is Rejection.LIMIT_EXCEEDED
        assert "exceeds per-transaction limit of $1.00" in result.reason
        assert ledger.transactions() == ()
        assert audit.read_events(event_type=EventType.SPEND_DENIED)[0].details["rejection"] == "limit_exceeded"

    def test_huge_negative_amount_refused_as_invalid(self):
        result = make_ledger().record_spend("-1e30", "USDT", "x")
        assert result.rejection is Rejection.INVALID_AMOUNT

    @pytest.mark.parametrize("amount", ["0", "-0.50"])
    def test_non_positive_amount_refused(self, amount):
        ledger = make_ledger()
        result = ledger.record_spend(amount, "USDT", "x")
        assert not result.allowed
        assert result.rejection is Rejection.INVALID_AMOUNT
        assert ledger.transactions() == ()

    def test_amount_rounds_up(self):
        ledger = make_ledger()
        result = ledger.record_spend("0.1000001", "USDT", "x")
        assert result.tx.amount == Decimal("0.100001")

    def test_fractional_spend_cannot_sneak_past_limit(self):
        ledger = make_ledger(limit="1.00")
        result = ledger.record_spend("1.0000001", "USDT", "x")
        assert not result.allowed
        assert result.rejection is Rejection.LIMIT_EXCEEDED

    def test_transaction_fields(self):
        ledger = make_ledger()
        tx = ledger.record_spend("0.25", "USDC", "API credits").tx
        assert tx.kind is TransactionKind.SPEND
        assert tx.currency == "USDC"
        assert tx.description == "API credits"
        assert tx.approved
        assert tx.tx_id.startswith("tx-")
        assert tx.to_dict()["amount"] == "0.250000"

    def test_audit_records_approvals_and_denials(self, audit):
        ledger = make_ledger(audit=audit)
        ledger.record_spend("0.50", "USDT", "ok")
        ledger.record_spend("2.00", "USDT", "too much")

        approved = audit.read_events(event_type=EventType.SPEND_APPROVED)
        denied = audit.read_events(event_type=EventType.SPEND_DENIED)
        assert len(approved) == 1
        assert len(denied) == 1
        assert denied[0].details["rejection"] == "limit_exceeded"
        assert not denied[0].success


class TestCanSpend:
    def test_does_not_mutate(self):
        ledger = make_ledger()
        for _ in range(3):
            ok, reason = ledger.can_spend("1.00")
            assert ok
            assert reason == "Within limits"
        assert ledger.transactions() == ()

    @pytest.mark.parametrize("amount", ["1e22", Decimal("1e30")])
    def test_huge_amount_is_refused(self, amount):
        ok, reason = make_ledger().can_spend(amount)
        assert not ok
        assert "exceeds per-transaction limit" in reason

    def test_matches_record_spend(self):
        ledger = make_ledger(budget="2.00")
        ledger.record_spend("1.00", "USDT", "a")
        ledger.record_spend("1.00", "USDT", "b")
        ok, reason = ledger.can_spend("0.10")
        assert not ok
        assert "Spent: $2.00" in reason


class TestConcurrency:
    def test_parallel_spends_never_exceed_budget(self):
        ledger = make_ledger(limit="1.00", budget="5.00")

        def spend(_):
            return ledger.record_spend("1.00", "USDT", "race").allowed

        with ThreadPoolExecutor(max_workers=16) as pool:
            results = list(pool.map(spend, range(50)))

        assert sum(results) == 5
        stats = ledger.stats()
        assert stats.spent_today == Decimal("5.00")
        assert stats.transaction_count == 5
        assert ledger.verify_totals()

    def test_mixed_spend_and_earn(self):
        ledger = make_ledger(limit="0.10", budget="1.00")

        def work(i):
            if i % 2:
                ledger.record_earn("0.25", "USDT", f"earn {i}")
            else:
                ledger.record_spend("0.10", "USDT", f"spend {i}")

        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(work, range(40)))

        stats = ledger.stats()
        assert stats.spent_today == Decimal("1.00")
        assert stats.earned_total == Decimal("5.00")
        assert stats.transaction_count == 30
        assert ledger.verify_totals()


class TestDayRollover:
    def test_budget_resets_on_new_day(self):
        clock = MovableClock(datetime(2026, 3, 1, 23, 30, tzinfo=timezone.utc))
        ledger = make_ledger(budget="2.00", clock=clock)
        ledger.record_spend("1.00", "USDT", "a")
        ledger.record_spend("1.00", "USDT", "b")
        assert not ledger.can_spend("0.01")[0]

        clock.now += timedelta(hours=1)
        assert ledger.can_spend("1.00")[0]
        assert ledger.stats().spent_today == Decimal("0")
        assert ledger.stats().spent_total == Decimal("2.00")
        assert ledger.record_spend("1.00", "USDT", "c").allowed
        assert ledger.verify_totals()

    def test_day_boundary_follows_configured_timezone(self):
        # 15:30 UTC is already the next day in Tokyo.
        clock = MovableClock(datetime(2026, 3, 1, 14, 30, tzinfo=timezone.utc))
        ledger = Ledger(
            LedgerConfig(per_transaction_limit="1", daily_budget="1", timezone="Asia/Tokyo"),
            clock=clock,
        )
        ledger.record_spend("1.00", "USDT", "a")
        clock.now = datetime(2026, 3, 1, 15, 30, tzinfo=timezone.utc)
        assert ledger.can_spend("1.00")[0]


class TestStats:
    def test_stats_are_idempotent(self):
        ledger = make_ledger()
        ledger.record_spend("0.40", "USDT", "a")
        ledger.record_earn("2.00", "USDT", "b")
        assert ledger.stats() == ledger.stats()

    def test_earnings_do_not_affect_budget(self):
        ledger = make_ledger(budget="1.00")
        ledger.record_earn("100", "USDT", "big sale")
        ledger.record_spend("1.00", "USDT", "a")
        stats = ledger.stats()
        assert stats.earned_today == Decimal("100")
        assert stats.spent_today == Decimal("1.00")
        assert stats.remaining_today(ledger.daily_budget) == Decimal("0")
        assert not ledger.can_spend("0.01")[0]

    def test_last_spend_time(self):
        ledger = make_ledger()
        assert ledger.stats().last_spend_time is None
        tx = ledger.record_spend("0.10", "USDT", "a").tx
        assert ledger.stats().last_spend_time == tx.timestamp

    def test_negative_earn_raises(self):
        ledger = make_ledger()
        with pytest.raises(ValueError):
            ledger.record_earn("-1", "USDT", "refund?")


class TestProposePrice:
    @pytest.mark.parametrize("length,expected", [
        (10, Decimal("0.50")),
        (51, Decimal("0.75")),
        (101, Decimal("1.00")),
    ])
    def test_heuristic_tiers(self, length, expected):
        proposal = make_ledger(limit="5.00", budget="10").propose_price("x" * length)
        assert proposal.price == expected
        assert "Max price $5.00" in proposal.reasoning

    @pytest.mark.parametrize("length", [0, 1, 50, 51, 100, 101, 5000])
    def test_never_exceeds_limit(self, length):
        ledger = make_ledger(limit="0.60")
        assert ledger.propose_price("y" * length).price <= Decimal("0.60")

    def test_clamps_custom_pricer(self):
        class Greedy:
            def propose(self, description, cap):
                return PriceProposal(price=Decimal("99"), reasoning="premium")

        class Generous:
            def propose(self, description, cap):
                return PriceProposal(price=Decimal("-3"), reasoning="free")

        assert make_ledger(pricer=Greedy()).propose_price("x").price == Decimal("1.00")
        assert make_ledger(pricer=Generous()).propose_price("x").price == Decimal("0")

    def test_falls_back_when_pricer_unavailable(self):
        class Offline:
            def propose(self, description, cap):
                raise CapabilityUnavailable("AI pricing")

        assert make_ledger(pricer=Offline()).propose_price("short").price == Decimal("0.50")


class TestClose:
    def test_close_is_idempotent(self, audit):
        ledger = make_ledger(audit=audit)
        ledger.record_spend("0.50", "USDT", "a")
        ledger.close()
        ledger.close()

        closed = audit.read_events(event_type=EventType.LEDGER_CLOSED)
        assert len(closed) == 1
        assert closed[0].details["transaction_count"] == 1
        assert closed[0].details["spent_total"] == "0.500000"
