"""
Command registry and the request context handed to handlers.

Commands are matched by a case-insensitive prefix on the message text.
When more than one registered prefix matches (``!pay`` and ``!payout``,
say), the longest one wins.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING, Optional, Protocol

from .capabilities import Capabilities
from .ledger import Ledger
from .provider import PaymentProvider

if TYPE_CHECKING:
    from .monitor import MonitorLauncher


VARIABLE_PRICE = Decimal("-1")
FREE = Decimal("0")

_TAG_RE = re.compile(r"<[^>]+>")


class ReplyChannel(Protocol):
    def send_text(self, room_id: str, body: str) -> None:
        ...

    def send_html(self, room_id: str, html: str) -> None:
        ...


def strip_html(html: str) -> str:
    """Plain-text fallback for an HTML message body."""
    return _TAG_RE.sub("", html)


@dataclass
class CommandContext:
    """Everything a handler needs to serve one inbound message."""

    room_id: str
    sender: str
    message: str
    ledger: Ledger
    replies: ReplyChannel
    provider: PaymentProvider
    monitors: "MonitorLauncher"
    capabilities: Capabilities
    registry: "Registry"

    def args(self) -> list[str]:
        """Whitespace-separated tokens after the command word."""
        return self.message.split()[1:]

    def reply(self, text: str) -> None:
        self.replies.send_text(self.room_id, text)

    def reply_html(self, html: str) -> None:
        self.replies.send_html(self.room_id, html)


class Handler(Protocol):
    def handle(self, ctx: CommandContext) -> None:
        ...

    def description(self) -> str:
        ...

    def price(self) -> Decimal:
        """Price of the service; ``VARIABLE_PRICE`` when it depends on the request."""
        ...


class Registry:
    """Ordered prefix → handler table. Built at startup, read-only afterwards."""

    def __init__(self):
        self._entries: list[tuple[str, Handler]] = []

    def register(self, prefix: str, handler: Handler) -> None:
        key = prefix.strip().lower()
        if not key:
            raise ValueError("Command prefix must not be empty")
        if any(existing == key for existing, _ in self._entries):
            raise ValueError(f"Command prefix already registered: {key}")
        self._entries.append((key, handler))

    def find(self, message: str) -> Optional[Handler]:
        lowered = message.lower()
        best: Optional[tuple[str, Handler]] = None
        for prefix, handler in self._entries:
            if lowered.startswith(prefix) and (best is None or len(prefix) > len(best[0])):
                best = (prefix, handler)
        return best[1] if best else None

    def commands(self) -> list[tuple[str, Handler]]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)
