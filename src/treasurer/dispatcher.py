"""Routes inbound chat messages to command handlers."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .capabilities import Capabilities
from .commands import CommandContext, Handler, Registry, ReplyChannel
from .errors import UpstreamError
from .handlers import APOLOGY
from .ledger import Ledger
from .monitor import MonitorLauncher
from .provider import PaymentProvider
from .supervisor import TaskSupervisor

logger = logging.getLogger(__name__)


TEXT_MSGTYPE = "m.text"


@dataclass(frozen=True)
class InboundMessage:
    room_id: str
    sender: str
    body: str
    msgtype: str = TEXT_MSGTYPE


class Dispatcher:
    """
    Filters inbound messages and runs the matching handler in the background.

    ``dispatch`` never blocks on a handler: each invocation is handed to the
    supervisor, and any failure inside it is contained there.
    """

    def __init__(
        self,
        bot_user_id: str,
        registry: Registry,
        ledger: Ledger,
        replies: ReplyChannel,
        provider: PaymentProvider,
        monitors: MonitorLauncher,
        supervisor: TaskSupervisor,
        capabilities: Optional[Capabilities] = None,
    ):
        self.bot_user_id = bot_user_id
        self.registry = registry
        self.ledger = ledger
        self.replies = replies
        self.provider = provider
        self.monitors = monitors
        self.supervisor = supervisor
        self.capabilities = capabilities or Capabilities()

    def dispatch(self, message: InboundMessage) -> Optional[Handler]:
        """Schedule the handler for ``message``; returns it, or None if ignored."""
        if message.sender == self.bot_user_id:
            return None
        if message.msgtype != TEXT_MSGTYPE:
            return None

        content = message.body.strip()
        handler = self.registry.find(content)
        if handler is None:
            logger.debug("No command in message from %s", message.sender)
            return None

        logger.info("Received command in %s from %s: %s", message.room_id, message.sender, content)
        ctx = CommandContext(
            room_id=message.room_id,
            sender=message.sender,
            message=content,
            ledger=self.ledger,
            replies=self.replies,
            provider=self.provider,
            monitors=self.monitors,
            capabilities=self.capabilities,
            registry=self.registry,
        )
        self.supervisor.submit(f"handler-{type(handler).__name__}", self._invoke, handler, ctx)
        return handler

    def _invoke(self, handler: Handler, ctx: CommandContext) -> None:
        try:
            handler.handle(ctx)
        except UpstreamError as e:
            logger.error("%s failed upstream: %s", type(handler).__name__, e)
            self._apologize(ctx)
        except Exception:
            logger.exception("%s crashed handling %r", type(handler).__name__, ctx.message)
            self._apologize(ctx)

    def _apologize(self, ctx: CommandContext) -> None:
        try:
            ctx.reply(APOLOGY)
        except Exception:
            logger.exception("Failed to send apology to %s", ctx.room_id)
