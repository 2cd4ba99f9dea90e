"""Shared fakes for the payment provider, reply channel and clocks."""

import threading

import pytest

from treasurer.audit import AuditTrail
from treasurer.capabilities import Capabilities
from treasurer.commands import CommandContext, Registry
from treasurer.errors import ProviderError
from treasurer.handlers import register_default_handlers
from treasurer.ledger import Ledger, LedgerConfig
from treasurer.provider import Invoice, PaymentStatus


class FakeReplies:
    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail
        self._lock = threading.Lock()

    def send_text(self, room_id, body):
        self._record(room_id, "text", body)

    def send_html(self, room_id, html):
        self._record(room_id, "html", html)

    def _record(self, room_id, kind, body):
        if self.fail:
            raise RuntimeError("homeserver unreachable")
        with self._lock:
            self.sent.append((room_id, kind, body))

    @property
    def bodies(self):
        return [body for _, _, body in self.sent]


class FakeProvider:
    """Scripted payment provider: ``statuses`` are returned in order, one per check."""

    def __init__(self, statuses=None, balances=None, fail=None):
        self.statuses = list(statuses or [])
        self.balances = balances if balances is not None else {"USDT": "12.50"}
        self.fail = fail
        self.checks = []
        self.invoices = []
        self.sends = []

    def create_invoice(self, order_id, amount, currency):
        if self.fail:
            raise self.fail
        self.invoices.append((order_id, amount, currency))
        return Invoice(
            order_id=order_id,
            payment_url=f"https://pay.example/{order_id}",
            address="TXYZaddress",
            amount=str(amount),
            currency=currency,
        )

    def check_payment(self, order_id):
        self.checks.append(order_id)
        if self.fail:
            raise self.fail
        item = self.statuses.pop(0) if self.statuses else "pending"
        if isinstance(item, Exception):
            raise item
        if isinstance(item, PaymentStatus):
            return item
        return PaymentStatus(order_id=order_id, status=item)

    def get_balances(self):
        if self.fail:
            raise self.fail
        return dict(self.balances)

    def send_payment(self, currency, to_address, amount):
        if self.fail:
            raise self.fail
        self.sends.append((currency, to_address, amount))


class FakeMonitors:
    def __init__(self):
        self.started = []

    def start(self, invoice, notify, record_earnings=True):
        self.started.append((invoice, notify, record_earnings))


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


class FakeStop:
    """Stop signal whose ``wait`` advances a fake clock instead of sleeping."""

    def __init__(self, clock, stop_after=None):
        self.clock = clock
        self.stop_after = stop_after
        self.waits = []

    def wait(self, timeout=None):
        self.waits.append(timeout)
        if self.stop_after is not None and len(self.waits) > self.stop_after:
            return True
        self.clock.now += timeout or 0.0
        return False


@pytest.fixture
def audit(tmp_path):
    return AuditTrail(
        path=tmp_path / "audit.jsonl",
        key_path=tmp_path / "secret" / "audit_hmac.key",
    )


@pytest.fixture
def ledger(audit):
    return Ledger(LedgerConfig(per_transaction_limit="1.00", daily_budget="5.00"), audit=audit)


@pytest.fixture
def replies():
    return FakeReplies()


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def monitors():
    return FakeMonitors()


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def registry():
    return register_default_handlers(Registry())


@pytest.fixture
def make_ctx(ledger, replies, provider, monitors, registry):
    def _make(message, **overrides):
        fields = dict(
            room_id="!room:example.org",
            sender="@alice:example.org",
            message=message,
            ledger=ledger,
            replies=replies,
            provider=provider,
            monitors=monitors,
            capabilities=Capabilities(),
            registry=registry,
        )
        fields.update(overrides)
        return CommandContext(**fields)
    return _make


@pytest.fixture
def provider_error():
    return ProviderError(503, "maintenance")


@pytest.fixture
def fake_stop():
    return FakeStop


@pytest.fixture
def fake_provider():
    return FakeProvider


@pytest.fixture
def fake_replies():
    return FakeReplies
