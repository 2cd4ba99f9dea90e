"""
Audit trail for ledger and invoice activity.

One JSON object per line. Each record carries the HMAC of its own
payload chained to the previous record's hash, so an edited, dropped
or reordered line is caught the next time the file is read. Appends
from concurrent handler and monitor threads are serialized.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import os
import secrets
import threading
import time
from collections import Counter
from dataclasses import asdict, dataclass, fields
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any, Iterator, Optional


DEFAULT_AUDIT_PATH = Path.home() / ".treasurer" / "audit.jsonl"
DEFAULT_AUDIT_KEY_PATH = Path.home() / ".treasurer-secrets" / "audit_hmac.key"
AUDIT_KEY_ENV = "TREASURER_AUDIT_HMAC_KEY"

_CHAIN_FIELDS = ("prev_hash", "event_hash")


class EventType(str, Enum):
    SPEND_APPROVED = "spend_approved"
    SPEND_DENIED = "spend_denied"
    EARN_RECORDED = "earn_recorded"
    PAYOUT_SENT = "payout_sent"
    PAYOUT_FAILED = "payout_failed"
    INVOICE_CREATED = "invoice_created"
    INVOICE_CONFIRMED = "invoice_confirmed"
    INVOICE_EXPIRED = "invoice_expired"
    LEDGER_CLOSED = "ledger_closed"


@dataclass
class AuditEvent:
    """A single audit trail entry. Amounts are kept as decimal strings."""

    event_type: str
    timestamp: float
    tx_id: Optional[str] = None
    order_id: Optional[str] = None
    amount: Optional[str] = None
    currency: Optional[str] = None
    success: bool = True
    reason: Optional[str] = None
    details: Optional[dict[str, Any]] = None
    prev_hash: Optional[str] = None
    event_hash: Optional[str] = None

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "AuditEvent":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in record.items() if k in known})

    def to_json(self) -> str:
        return json.dumps({k: v for k, v in asdict(self).items() if v is not None}, separators=(",", ":"))


def _private_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)
    os.chmod(path, 0o700)


def _private_file(path: Path) -> None:
    path.touch(exist_ok=True)
    os.chmod(path, 0o600)


def _chain_digest(key: bytes, prev_hash: str, payload: dict[str, Any]) -> str:
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hmac.new(key, f"{prev_hash}|{canonical}".encode(), hashlib.sha256).hexdigest()


class AuditTrail:
    """Tamper-evident append-only audit log."""

    def __init__(
        self,
        path: Optional[Path] = None,
        key_path: Optional[Path] = None,
    ):
        self.path = path or DEFAULT_AUDIT_PATH
        self.key_path = key_path or DEFAULT_AUDIT_KEY_PATH
        self._lock = threading.Lock()

        _private_dir(self.path.parent)
        _private_dir(self.key_path.parent)
        _private_file(self.path)

        self._key = self._load_key()
        self._last_hash = self._tail_hash()

    def _load_key(self) -> bytes:
        from_env = os.getenv(AUDIT_KEY_ENV)
        if from_env:
            return from_env.encode()
        if self.key_path.exists() and self.key_path.stat().st_size > 0:
            return self.key_path.read_bytes().strip()
        key = secrets.token_hex(32).encode()
        _private_file(self.key_path)
        self.key_path.write_bytes(key)
        return key

    def _tail_hash(self) -> str:
        last = ""
        for record in self._records():
            last = record.get("event_hash", "")
        return last

    def _records(self) -> Iterator[dict[str, Any]]:
        with open(self.path, "r") as f:
            for line in f:
                if line.strip():
                    yield json.loads(line)

    def _verified(self) -> Iterator[dict[str, Any]]:
        """Yield records in file order, raising if the chain does not hold."""
        expected_prev = ""
        for record in self._records():
            prev_hash = record.get("prev_hash") or ""
            if prev_hash != expected_prev:
                raise RuntimeError("Audit chain broken: previous hash mismatch")
            payload = {k: v for k, v in record.items() if k not in _CHAIN_FIELDS}
            if not hmac.compare_digest(
                _chain_digest(self._key, prev_hash, payload),
                record.get("event_hash") or "",
            ):
                raise RuntimeError("Audit chain broken: event hash mismatch")
            expected_prev = record["event_hash"]
            yield record

    def log(
        self,
        event_type: EventType,
        tx_id: Optional[str] = None,
        order_id: Optional[str] = None,
        amount: Optional[Decimal] = None,
        currency: Optional[str] = None,
        success: bool = True,
        reason: Optional[str] = None,
        details: Optional[dict] = None,
    ) -> AuditEvent:
        payload = {
            k: v
            for k, v in (
                ("event_type", event_type.value),
                ("timestamp", time.time()),
                ("tx_id", tx_id),
                ("order_id", order_id),
                ("amount", None if amount is None else str(amount)),
                ("currency", currency),
                ("success", success),
                ("reason", reason),
                ("details", details),
            )
            if v is not None
        }

        with self._lock:
            digest = _chain_digest(self._key, self._last_hash, payload)
            event = AuditEvent(**payload, prev_hash=self._last_hash or None, event_hash=digest)
            with open(self.path, "a") as f:
                f.write(event.to_json() + "\n")
                f.flush()
                os.fsync(f.fileno())
            self._last_hash = digest
        return event

    def read_events(
        self,
        event_type: Optional[EventType] = None,
        order_id: Optional[str] = None,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Most recent matching events, oldest first. Verifies the whole chain."""
        matched = [
            AuditEvent.from_record(record)
            for record in self._verified()
            if (event_type is None or record.get("event_type") == event_type.value)
            and (order_id is None or record.get("order_id") == order_id)
        ]
        return matched[-limit:] if limit > 0 else []

    def summary(self) -> dict:
        by_type: Counter[str] = Counter()
        failures = 0
        last: Optional[dict[str, Any]] = None
        for record in self._verified():
            by_type[record["event_type"]] += 1
            failures += 0 if record.get("success", True) else 1
            last = record
        return {
            "total_events": sum(by_type.values()),
            "by_type": dict(by_type),
            "failures": failures,
            "last_event": AuditEvent.from_record(last).to_json() if last else None,
        }
