"""
Payment provider client.

Talks to a SHKeeper-style crypto payment gateway: invoices for incoming
customer payments, status checks, wallet balances and outgoing sends.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional, Protocol

import httpx

from .errors import NetworkError, ProviderError
from .money import format_amount

logger = logging.getLogger(__name__)


STATUS_PENDING = "pending"
STATUS_CONFIRMED = "confirmed"
STATUS_EXPIRED = "expired"


@dataclass
class Invoice:
    order_id: str
    payment_url: str
    address: str
    amount: str
    currency: str
    status: str = STATUS_PENDING
    expires_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "Invoice":
        return cls(
            order_id=str(raw.get("order_id", "")),
            payment_url=str(raw.get("payment_url", "")),
            address=str(raw.get("address", "")),
            amount=str(raw.get("amount", "")),
            currency=str(raw.get("currency", "")),
            status=str(raw.get("status") or STATUS_PENDING),
            expires_at=_parse_time(raw.get("expires_at")),
        )


@dataclass
class PaymentStatus:
    order_id: str
    status: str
    amount: str = ""
    currency: str = ""
    received: str = ""
    confirmed_at: Optional[datetime] = None

    @property
    def is_confirmed(self) -> bool:
        return self.status.lower() == STATUS_CONFIRMED

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "PaymentStatus":
        return cls(
            order_id=str(raw.get("order_id", "")),
            status=str(raw.get("status", "")),
            amount=str(raw.get("amount") or ""),
            currency=str(raw.get("currency") or ""),
            received=str(raw.get("received") or ""),
            confirmed_at=_parse_time(raw.get("confirmed_at")),
        )


class PaymentProvider(Protocol):
    def create_invoice(self, order_id: str, amount: Decimal, currency: str) -> Invoice:
        ...

    def check_payment(self, order_id: str) -> PaymentStatus:
        ...

    def get_balances(self) -> dict[str, str]:
        ...

    def send_payment(self, currency: str, to_address: str, amount: Decimal) -> None:
        ...


@dataclass
class ProviderConfig:
    base_url: str
    api_key: str
    timeout_seconds: float = 30.0
    max_retries: int = 2
    retry_delay: float = 1.0


class ShkeeperClient:
    """HTTP client for the payment gateway API."""

    def __init__(self, config: ProviderConfig, http: Optional[httpx.Client] = None):
        self.config = config
        self._http = http or httpx.Client(timeout=config.timeout_seconds)

    def _url(self, path: str) -> str:
        return f"{self.config.base_url.rstrip('/')}/api/v1/{path}"

    def _request(self, method: str, path: str, **kwargs) -> Any:
        headers = {"X-API-Key": self.config.api_key}
        last_error: Optional[str] = None

        for attempt in range(self.config.max_retries + 1):
            try:
                response = self._http.request(method, self._url(path), headers=headers, **kwargs)
            except httpx.TimeoutException as e:
                last_error = f"Request timeout: {e}"
            except httpx.ConnectError as e:
                last_error = f"Connection failed: {e}"
            else:
                if response.status_code != 200:
                    raise ProviderError(response.status_code, response.text[:200])
                if not response.content:
                    return None
                return response.json()

            if attempt < self.config.max_retries:
                logger.info(
                    "Retryable provider error (attempt %d/%d): %s",
                    attempt + 1,
                    self.config.max_retries + 1,
                    last_error,
                )
                time.sleep(self.config.retry_delay * (attempt + 1))

        raise NetworkError(f"Failed after {self.config.max_retries + 1} attempts: {last_error}")

    def create_invoice(self, order_id: str, amount: Decimal, currency: str) -> Invoice:
        raw = self._request(
            "POST",
            "invoice",
            json={"order_id": order_id, "amount": format_amount(amount), "currency": currency},
        )
        invoice = Invoice.from_dict(raw or {})
        if not invoice.order_id:
            invoice.order_id = order_id
        logger.info("Invoice created: %s (%s %s)", order_id, amount, currency)
        return invoice

    def check_payment(self, order_id: str) -> PaymentStatus:
        raw = self._request("GET", f"payment/{order_id}")
        status = PaymentStatus.from_dict(raw or {})
        if not status.order_id:
            status.order_id = order_id
        return status

    def get_balances(self) -> dict[str, str]:
        raw = self._request("GET", "balances") or {}
        return {str(currency): str(amount) for currency, amount in raw.items()}

    def send_payment(self, currency: str, to_address: str, amount: Decimal) -> None:
        self._request(
            "POST",
            "send",
            json={"currency": currency, "to": to_address, "amount": format_amount(amount)},
        )
        logger.info("Sent %s %s to %s", amount, currency, to_address)

    def close(self):
        self._http.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()


def _parse_time(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
