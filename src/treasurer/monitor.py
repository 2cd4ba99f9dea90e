"""
Payment confirmation monitoring.

Each invoice gets its own monitor that polls the payment provider on a
fixed interval until the payment confirms or an overall timeout passes.
Monitors share nothing but the ledger and audit trail, both of which
synchronize internally.

Invoice lifecycle:
    PENDING → CONFIRMED   (poll reports confirmed before the deadline)
    PENDING → EXPIRED     (deadline reached first)
Both end states are final; each produces exactly one notification.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Callable, Optional, Protocol

import httpx

from .audit import AuditTrail, EventType
from .errors import InvalidTransitionError, UpstreamError
from .ledger import Ledger
from .money import ZERO, to_decimal
from .provider import PaymentProvider, PaymentStatus
from .supervisor import TaskSupervisor

logger = logging.getLogger(__name__)


DEFAULT_POLL_INTERVAL = 10.0
DEFAULT_TIMEOUT = 30 * 60.0

Notifier = Callable[[str], None]


class StopSignal(Protocol):
    def wait(self, timeout: Optional[float] = None) -> bool:
        ...


class InvoiceStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    EXPIRED = "expired"


@dataclass
class PaymentInvoice:
    """An incoming payment request tracked until confirmation or expiry."""

    order_id: str
    requested_amount: Decimal
    currency: str
    created_at: datetime
    payment_url: str = ""
    address: str = ""
    expires_at: Optional[datetime] = None
    status: InvoiceStatus = InvoiceStatus.PENDING

    @property
    def is_terminal(self) -> bool:
        return self.status is not InvoiceStatus.PENDING

    def transition(self, status: InvoiceStatus) -> None:
        if status is InvoiceStatus.PENDING:
            raise InvalidTransitionError("Cannot transition back to pending")
        if self.is_terminal:
            raise InvalidTransitionError(
                f"Invoice {self.order_id} already {self.status.value}"
            )
        self.status = status


class PaymentMonitor:
    """Polls one invoice until it confirms, expires, or the process shuts down."""

    def __init__(
        self,
        invoice: PaymentInvoice,
        provider: PaymentProvider,
        notify: Notifier,
        ledger: Optional[Ledger] = None,
        audit: Optional[AuditTrail] = None,
        record_earnings: bool = True,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        timeout: float = DEFAULT_TIMEOUT,
        stop_event: Optional[StopSignal] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.invoice = invoice
        self.provider = provider
        self.ledger = ledger
        self.audit = audit
        self.record_earnings = record_earnings
        self.poll_interval = poll_interval
        self.timeout = timeout
        self._notify_fn = notify
        self._stop = stop_event or threading.Event()
        self._clock = clock

    def run(self) -> InvoiceStatus:
        started = self._clock()
        deadline = started + self.timeout
        next_tick = started + self.poll_interval
        logger.info(
            "Monitoring invoice %s (every %.0fs, timeout %.0fs)",
            self.invoice.order_id, self.poll_interval, self.timeout,
        )

        while True:
            now = self._clock()
            if now >= deadline:
                self._expire()
                return self.invoice.status

            if self._stop.wait(max(0.0, min(next_tick, deadline) - now)):
                logger.info("Stopped monitoring invoice %s (shutdown)", self.invoice.order_id)
                return self.invoice.status

            now = self._clock()
            if now >= deadline:
                self._expire()
                return self.invoice.status
            if now < next_tick:
                continue
            next_tick += self.poll_interval

            status = self._poll()
            if status is not None:
                self._confirm(status)
                return self.invoice.status

    def _poll(self) -> Optional[PaymentStatus]:
        try:
            status = self.provider.check_payment(self.invoice.order_id)
        except (UpstreamError, httpx.HTTPError, ValueError) as e:
            logger.debug("Status check for %s failed, retrying: %s", self.invoice.order_id, e)
            return None
        return status if status.is_confirmed else None

    def _settled_amount(self, status: PaymentStatus) -> Decimal:
        requested = self.invoice.requested_amount
        if not status.amount:
            return requested
        try:
            amount = to_decimal(status.amount)
        except ValueError:
            logger.warning(
                "Invoice %s confirmed with unparseable amount %r, using requested amount",
                self.invoice.order_id, status.amount,
            )
            return requested
        if amount < ZERO:
            logger.warning(
                "Invoice %s confirmed with negative amount %s, using requested amount",
                self.invoice.order_id, amount,
            )
            return requested
        return amount

    def _confirm(self, status: PaymentStatus) -> None:
        self.invoice.transition(InvoiceStatus.CONFIRMED)
        amount = self._settled_amount(status)
        currency = status.currency or self.invoice.currency

        logger.info("Payment confirmed: %s (%s %s)", self.invoice.order_id, amount, currency)
        if self.record_earnings and self.ledger is not None:
            self.ledger.record_earn(amount, currency, f"Payment {self.invoice.order_id}")
        if self.audit is not None:
            self.audit.log(
                EventType.INVOICE_CONFIRMED,
                order_id=self.invoice.order_id,
                amount=amount,
                currency=currency,
            )
        self._notify(f"✅ <b>Payment confirmed!</b>\nOrder: {self.invoice.order_id}\nThank you! 🙏")

    def _expire(self) -> None:
        self.invoice.transition(InvoiceStatus.EXPIRED)
        logger.info("Payment expired: %s", self.invoice.order_id)
        if self.audit is not None:
            self.audit.log(
                EventType.INVOICE_EXPIRED,
                order_id=self.invoice.order_id,
                amount=self.invoice.requested_amount,
                currency=self.invoice.currency,
                success=False,
                reason="timeout",
            )
        self._notify(f"⏰ Payment expired. Order: {self.invoice.order_id}")

    def _notify(self, message: str) -> None:
        try:
            self._notify_fn(message)
        except Exception:
            logger.exception("Failed to send notification for invoice %s", self.invoice.order_id)


class MonitorLauncher:
    """Starts payment monitors as supervised background tasks."""

    def __init__(
        self,
        supervisor: TaskSupervisor,
        provider: PaymentProvider,
        ledger: Optional[Ledger] = None,
        audit: Optional[AuditTrail] = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        timeout: float = DEFAULT_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._supervisor = supervisor
        self._provider = provider
        self._ledger = ledger
        self._audit = audit
        self.poll_interval = poll_interval
        self.timeout = timeout
        self._clock = clock

    def start(
        self,
        invoice: PaymentInvoice,
        notify: Notifier,
        record_earnings: bool = True,
    ) -> PaymentMonitor:
        monitor = PaymentMonitor(
            invoice=invoice,
            provider=self._provider,
            notify=notify,
            ledger=self._ledger,
            audit=self._audit,
            record_earnings=record_earnings,
            poll_interval=self.poll_interval,
            timeout=self.timeout,
            stop_event=self._supervisor.stop_event,
            clock=self._clock,
        )
        if self._audit is not None:
            self._audit.log(
                EventType.INVOICE_CREATED,
                order_id=invoice.order_id,
                amount=invoice.requested_amount,
                currency=invoice.currency,
                details={"payment_url": invoice.payment_url} if invoice.payment_url else None,
            )
        self._supervisor.submit(f"monitor-{invoice.order_id}", monitor.run)
        return monitor
