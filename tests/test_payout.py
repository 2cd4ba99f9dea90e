"""Tests for agent payouts."""

from decimal import Decimal

import pytest

from treasurer.audit import EventType
from treasurer.ledger import Rejection
from treasurer.payout import PayoutExecutor


@pytest.fixture
def executor(ledger, provider, audit):
    return PayoutExecutor(ledger, provider, audit=audit)


class TestPayoutFlow:
    def test_successful_payout(self, executor, provider, ledger, audit):
        result = executor.execute(Decimal("0.50"), "USDT", "TDest", "API credits")

        assert result.success
        assert result.tx_id is not None
        assert provider.sends == [("USDT", "TDest", Decimal("0.500000"))]
        assert ledger.stats().spent_today == Decimal("0.50")
        sent = audit.read_events(event_type=EventType.PAYOUT_SENT)
        assert sent[0].tx_id == result.tx_id

    def test_over_limit_not_sent(self, executor, provider, ledger):
        result = executor.execute(Decimal("1.50"), "USDT", "TDest", "too much")

        assert not result.success
        assert result.rejection is Rejection.LIMIT_EXCEEDED
        assert provider.sends == []
        assert ledger.transactions() == ()

    def test_budget_exhausted(self, executor, provider):
        for _ in range(5):
            assert executor.execute("1.00", "USDT", "TDest", "x").success
        result = executor.execute("0.01", "USDT", "TDest", "x")

        assert not result.success
        assert result.rejection is Rejection.BUDGET_EXCEEDED
        assert len(provider.sends) == 5

    def test_failed_send_keeps_spend(self, ledger, audit, fake_provider, provider_error):
        executor = PayoutExecutor(ledger, fake_provider(fail=provider_error), audit=audit)
        result = executor.execute("0.40", "USDT", "TDest", "x")

        assert not result.success
        assert result.tx_id is not None
        assert "503" in result.reason
        assert ledger.stats().spent_today == Decimal("0.40")
        failed = audit.read_events(event_type=EventType.PAYOUT_FAILED)
        assert failed[0].details == {"to": "TDest"}
