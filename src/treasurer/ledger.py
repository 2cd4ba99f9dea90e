"""
Spending ledger for the agent's self-imposed budget.

Every outgoing spend is authorized and recorded here. Limit checks and the
append happen inside a single lock so concurrent handlers cannot both pass
validation and jointly overspend. Limit violations are returned as values
(``SpendResult``), never raised.
"""

from __future__ import annotations

import itertools
import logging
import threading
import time
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Callable, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .audit import AuditTrail, EventType
from .capabilities import HeuristicPricer, Pricer, PriceProposal
from .errors import CapabilityUnavailable, ConfigurationError
from .money import ZERO, format_usd, limit_amount, spend_amount, to_decimal

logger = logging.getLogger(__name__)

_tx_counter = itertools.count(1)


class TransactionKind(str, Enum):
    SPEND = "spend"
    EARN = "earn"


class Rejection(str, Enum):
    INVALID_AMOUNT = "invalid_amount"
    LIMIT_EXCEEDED = "limit_exceeded"
    BUDGET_EXCEEDED = "budget_exceeded"


@dataclass(frozen=True)
class Transaction:
    """A single approved spend or earn event."""

    tx_id: str
    kind: TransactionKind
    amount: Decimal
    currency: str
    description: str
    timestamp: datetime
    approved: bool = True

    def to_dict(self) -> dict:
        return {
            "tx_id": self.tx_id,
            "kind": self.kind.value,
            "amount": str(self.amount),
            "currency": self.currency,
            "description": self.description,
            "timestamp": self.timestamp.isoformat(),
            "approved": self.approved,
        }


@dataclass(frozen=True)
class LedgerConfig:
    """Spending limits, fixed for the lifetime of a ledger."""

    per_transaction_limit: Decimal
    daily_budget: Decimal
    timezone: str = "UTC"

    def __post_init__(self):
        for name in ("per_transaction_limit", "daily_budget"):
            raw = getattr(self, name)
            try:
                value = limit_amount(raw)
            except ValueError as e:
                raise ConfigurationError(f"{name} must be a decimal, got {raw!r}") from e
            if value <= ZERO:
                raise ConfigurationError(f"{name} must be positive, got {raw!r}")
            object.__setattr__(self, name, value)
        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ConfigurationError(f"Unknown timezone: {self.timezone!r}") from e

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


@dataclass
class SpendResult:
    """Result of a spend attempt."""

    allowed: bool
    reason: str
    tx: Optional[Transaction] = None
    rejection: Optional[Rejection] = None


@dataclass(frozen=True)
class LedgerStats:
    spent_today: Decimal
    spent_total: Decimal
    earned_today: Decimal
    earned_total: Decimal
    transaction_count: int
    last_spend_time: Optional[datetime]

    def remaining_today(self, daily_budget: Decimal) -> Decimal:
        return max(ZERO, daily_budget - self.spent_today)


class Ledger:
    """
    Owns all monetary state for the agent.

    The transaction log is the source of truth; the per-day spend totals
    are a cache kept in step with it. All reads and writes go through the
    public methods, which share one lock.
    """

    def __init__(
        self,
        config: LedgerConfig,
        audit: Optional[AuditTrail] = None,
        pricer: Optional[Pricer] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._config = config
        self._tz = config.tz
        self._audit = audit
        self._pricer = pricer or HeuristicPricer()
        self._clock = clock or (lambda: datetime.now(self._tz))
        self._lock = threading.Lock()
        self._transactions: list[Transaction] = []
        self._daily_spending: dict[date, Decimal] = {}
        self._last_spend_time: Optional[datetime] = None
        self._closed = False

    @property
    def per_transaction_limit(self) -> Decimal:
        return self._config.per_transaction_limit

    @property
    def daily_budget(self) -> Decimal:
        return self._config.daily_budget

    @property
    def timezone(self) -> ZoneInfo:
        return self._tz

    def _now(self) -> datetime:
        return self._clock().astimezone(self._tz)

    def _new_tx_id(self) -> str:
        return f"tx-{time.time_ns()}-{next(_tx_counter)}"

    def _check_limits(
        self, amount: Decimal, spent_today: Decimal
    ) -> tuple[bool, str, Optional[Rejection]]:
        if amount <= ZERO:
            return False, "Amount must be positive", Rejection.INVALID_AMOUNT

        limit = self._config.per_transaction_limit
        if amount > limit:
            return False, (
                f"Amount {format_usd(amount)} exceeds per-transaction "
                f"limit of {format_usd(limit)}"
            ), Rejection.LIMIT_EXCEEDED

        budget = self._config.daily_budget
        if spent_today + amount > budget:
            return False, (
                f"Daily budget exceeded. Spent: {format_usd(spent_today)}, "
                f"Budget: {format_usd(budget)}, Requested: {format_usd(amount)}"
            ), Rejection.BUDGET_EXCEEDED

        return True, "Within limits", None

    def _normalize(self, amount: Decimal | float | int | str) -> Decimal:
        # Out-of-range amounts are rejected by _check_limits as-is; quantizing
        # them could overflow the decimal context.
        raw = to_decimal(amount)
        if raw <= ZERO or raw > self._config.per_transaction_limit:
            return raw
        return spend_amount(raw)

    def can_spend(self, amount: Decimal | float | int | str) -> tuple[bool, str]:
        """Check whether a spend would be authorized right now. Read-only."""
        normalized = self._normalize(amount)
        with self._lock:
            today = self._now().date()
            spent_today = self._daily_spending.get(today, ZERO)
            allowed, reason, _ = self._check_limits(normalized, spent_today)
        return allowed, reason

    def record_spend(
        self,
        amount: Decimal | float | int | str,
        currency: str,
        description: str,
    ) -> SpendResult:
        """Atomically re-validate limits and append a spend."""
        normalized = self._normalize(amount)
        with self._lock:
            now = self._now()
            today = now.date()
            spent_today = self._daily_spending.get(today, ZERO)
            allowed, reason, rejection = self._check_limits(normalized, spent_today)
            if allowed:
                tx = Transaction(
                    tx_id=self._new_tx_id(),
                    kind=TransactionKind.SPEND,
                    amount=normalized,
                    currency=currency,
                    description=description,
                    timestamp=now,
                )
                self._transactions.append(tx)
                self._daily_spending[today] = spent_today + normalized
                self._last_spend_time = now
                remaining = self._config.daily_budget - self._daily_spending[today]

        if not allowed:
            logger.info("Spend denied: %s %s (%s): %s", normalized, currency, description, reason)
            if self._audit is not None:
                self._audit.log(
                    EventType.SPEND_DENIED,
                    amount=normalized,
                    currency=currency,
                    success=False,
                    reason=reason,
                    details={"description": description, "rejection": rejection.value},
                )
            return SpendResult(allowed=False, reason=reason, rejection=rejection)

        logger.info(
            "Agent spent %s %s (%s), remaining today %s",
            normalized, currency, description, format_usd(remaining),
        )
        if self._audit is not None:
            self._audit.log(
                EventType.SPEND_APPROVED,
                tx_id=tx.tx_id,
                amount=normalized,
                currency=currency,
                details={"description": description},
            )
        return SpendResult(allowed=True, reason="Recorded", tx=tx)

    def record_earn(
        self,
        amount: Decimal | float | int | str,
        currency: str,
        description: str,
    ) -> Transaction:
        """Append an earning. Earnings are not bounded by any limit."""
        normalized = to_decimal(amount)
        if normalized < ZERO:
            raise ValueError(f"Earn amount must be non-negative, got {amount!r}")
        with self._lock:
            tx = Transaction(
                tx_id=self._new_tx_id(),
                kind=TransactionKind.EARN,
                amount=normalized,
                currency=currency,
                description=description,
                timestamp=self._now(),
            )
            self._transactions.append(tx)

        logger.info("Agent earned %s %s (%s)", normalized, currency, description)
        if self._audit is not None:
            self._audit.log(
                EventType.EARN_RECORDED,
                tx_id=tx.tx_id,
                amount=normalized,
                currency=currency,
                details={"description": description},
            )
        return tx

    def stats(self) -> LedgerStats:
        with self._lock:
            today = self._now().date()
            spent_total = ZERO
            earned_total = ZERO
            earned_today = ZERO
            for tx in self._transactions:
                if tx.kind is TransactionKind.SPEND:
                    spent_total += tx.amount
                else:
                    earned_total += tx.amount
                    if tx.timestamp.date() == today:
                        earned_today += tx.amount
            return LedgerStats(
                spent_today=self._daily_spending.get(today, ZERO),
                spent_total=spent_total,
                earned_today=earned_today,
                earned_total=earned_total,
                transaction_count=len(self._transactions),
                last_spend_time=self._last_spend_time,
            )

    def transactions(self) -> tuple[Transaction, ...]:
        with self._lock:
            return tuple(self._transactions)

    def verify_totals(self) -> bool:
        """Recompute per-day spend from the log and compare with the cache."""
        with self._lock:
            recomputed: dict[date, Decimal] = {}
            for tx in self._transactions:
                if tx.kind is TransactionKind.SPEND:
                    day = tx.timestamp.date()
                    recomputed[day] = recomputed.get(day, ZERO) + tx.amount
            cached = {d: v for d, v in self._daily_spending.items() if v != ZERO}
            return recomputed == cached

    def propose_price(self, service_description: str) -> PriceProposal:
        """Suggest a price for a custom service, never above the per-transaction limit."""
        cap = self._config.per_transaction_limit
        try:
            proposal = self._pricer.propose(service_description, cap)
        except CapabilityUnavailable:
            logger.info("Pricer unavailable, using heuristic pricing")
            proposal = HeuristicPricer().propose(service_description, cap)
        price = min(max(proposal.price, ZERO), cap)
        if price != proposal.price:
            logger.debug("Clamped proposed price %s to %s", proposal.price, price)
        return PriceProposal(price=price, reasoning=proposal.reasoning)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        stats = self.stats()
        logger.info(
            "Ledger closed: %d transactions, spent %s total (%s today), earned %s",
            stats.transaction_count,
            format_usd(stats.spent_total),
            format_usd(stats.spent_today),
            format_usd(stats.earned_total),
        )
        if self._audit is not None:
            self._audit.log(
                EventType.LEDGER_CLOSED,
                details={
                    "transaction_count": stats.transaction_count,
                    "spent_total": str(stats.spent_total),
                    "earned_total": str(stats.earned_total),
                },
            )
