"""
Bot assembly and lifecycle.

One ledger per bot, created at startup from the configured limits and
closed on shutdown. Every handler and monitor reaches it through the
dispatcher's request context.
"""

from __future__ import annotations

import logging
import threading
from typing import Optional

from .audit import AuditTrail
from .capabilities import Capabilities
from .commands import Registry
from .config import BotConfig
from .dispatcher import Dispatcher
from .errors import UpstreamError
from .handlers import register_default_handlers, welcome_text
from .ledger import Ledger
from .monitor import MonitorLauncher
from .payout import PayoutExecutor
from .provider import PaymentProvider, ShkeeperClient
from .supervisor import TaskSupervisor
from .transport import MatrixTransport

logger = logging.getLogger(__name__)


class Bot:
    def __init__(
        self,
        config: BotConfig,
        transport: Optional[MatrixTransport] = None,
        provider: Optional[PaymentProvider] = None,
        audit: Optional[AuditTrail] = None,
        capabilities: Optional[Capabilities] = None,
    ):
        self.config = config
        self.supervisor = TaskSupervisor()
        self.audit = audit or AuditTrail(path=config.audit_path)
        self.ledger = Ledger(config.ledger_config(), audit=self.audit)
        self.provider = provider or ShkeeperClient(config.provider_config())
        self.transport = transport or MatrixTransport(
            config.matrix_config(),
            stop_event=self.supervisor.stop_event,
        )
        self.registry = register_default_handlers(Registry())
        self.monitors = MonitorLauncher(
            self.supervisor,
            self.provider,
            ledger=self.ledger,
            audit=self.audit,
            poll_interval=config.poll_interval_seconds,
            timeout=config.payment_timeout_seconds,
        )
        self.payouts = PayoutExecutor(self.ledger, self.provider, audit=self.audit)
        self.dispatcher = Dispatcher(
            bot_user_id=config.user_id,
            registry=self.registry,
            ledger=self.ledger,
            replies=self.transport,
            provider=self.provider,
            monitors=self.monitors,
            supervisor=self.supervisor,
            capabilities=capabilities,
        )

    def start(self) -> threading.Thread:
        logger.info("Connecting to Matrix at %s as %s", self.config.homeserver, self.config.user_id)
        try:
            self.transport.set_display_name(self.transport.config.display_name)
        except UpstreamError as e:
            logger.warning("Could not set display name: %s", e)
        thread = self.supervisor.submit("sync", self.transport.run, self.dispatcher.dispatch, self.on_invite)
        logger.info(
            "Bot is running with %d commands (limit %s/tx, budget %s/day)",
            len(self.registry),
            self.ledger.per_transaction_limit,
            self.ledger.daily_budget,
        )
        return thread

    def on_invite(self, room_id: str) -> None:
        logger.info("Auto-joining room %s", room_id)
        try:
            self.transport.join(room_id)
            self.transport.send_text(room_id, welcome_text(self.registry))
        except UpstreamError as e:
            logger.error("Failed to join room %s: %s", room_id, e)

    def stop(self, timeout: float = 10.0) -> None:
        logger.info("Shutting down...")
        self.transport.stop()
        self.supervisor.shutdown(timeout)
        self.ledger.close()
        for client in (self.transport, self.provider):
            close = getattr(client, "close", None)
            if callable(close):
                close()
