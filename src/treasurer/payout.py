"""
Outgoing payments made by the agent.

Flow:
1. Atomically authorize and record the spend in the ledger
2. Send the funds through the payment provider
3. Report the outcome

The spend is recorded before the network call so two concurrent payouts
cannot both squeeze under the daily budget. A send that fails afterwards
leaves the spend on the books: the budget stays consumed for the day.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from .audit import AuditTrail, EventType
from .errors import UpstreamError
from .ledger import Ledger, Rejection
from .provider import PaymentProvider

logger = logging.getLogger(__name__)


@dataclass
class PayoutResult:
    success: bool
    tx_id: Optional[str] = None
    reason: Optional[str] = None
    rejection: Optional[Rejection] = None


class PayoutExecutor:
    """Spends from the agent's wallet, within the ledger's limits."""

    def __init__(
        self,
        ledger: Ledger,
        provider: PaymentProvider,
        audit: Optional[AuditTrail] = None,
    ):
        self.ledger = ledger
        self.provider = provider
        self.audit = audit

    def execute(
        self,
        amount: Decimal,
        currency: str,
        to_address: str,
        description: str,
    ) -> PayoutResult:
        spend = self.ledger.record_spend(amount, currency, description)
        if not spend.allowed or spend.tx is None:
            return PayoutResult(success=False, reason=spend.reason, rejection=spend.rejection)

        try:
            self.provider.send_payment(currency, to_address, spend.tx.amount)
        except UpstreamError as e:
            logger.error("Payout %s to %s failed after authorization: %s", spend.tx.tx_id, to_address, e)
            if self.audit is not None:
                self.audit.log(
                    EventType.PAYOUT_FAILED,
                    tx_id=spend.tx.tx_id,
                    amount=spend.tx.amount,
                    currency=currency,
                    success=False,
                    reason=str(e),
                    details={"to": to_address},
                )
            return PayoutResult(success=False, tx_id=spend.tx.tx_id, reason=str(e))

        if self.audit is not None:
            self.audit.log(
                EventType.PAYOUT_SENT,
                tx_id=spend.tx.tx_id,
                amount=spend.tx.amount,
                currency=currency,
                details={"to": to_address},
            )
        return PayoutResult(success=True, tx_id=spend.tx.tx_id)
