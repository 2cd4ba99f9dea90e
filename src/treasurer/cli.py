"""
Treasurer CLI: run and inspect the budget-limited chat agent.

Commands:
    treasurer run           Start the bot until SIGINT/SIGTERM
    treasurer check-config  Validate configuration and show it (secrets masked)
    treasurer quote         Show the price the agent would propose for a service
    treasurer audit         View the audit trail
"""

from __future__ import annotations

import logging
import signal
import sys
import threading
import time
from pathlib import Path
from typing import Optional

import click

from . import __version__
from .audit import DEFAULT_AUDIT_PATH, AuditTrail, EventType
from .bot import Bot
from .config import LOG_LEVELS, BotConfig
from .errors import ConfigurationError
from .ledger import Ledger, LedgerConfig

_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"


def _load_config(config_path: Optional[Path]) -> BotConfig:
    try:
        return BotConfig.load(config_path)
    except ConfigurationError as e:
        click.echo(f"❌ Invalid configuration: {e}", err=True)
        sys.exit(1)


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=_LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    # Per-request lines from httpx drown out the bot's own logs.
    logging.getLogger("httpx").setLevel(logging.WARNING)


# ── CLI ───────────────────────────────────────────────────────────

@click.group()
@click.version_option(version=__version__)
def main():
    """Treasurer: a chat agent that earns and spends within a budget."""
    pass


@main.command()
@click.option("--config", "config_path", type=click.Path(path_type=Path), default=None,
              help="JSON config file (default: ./treasurer.json or ~/.treasurer/config.json)")
@click.option("--log-level", type=click.Choice(LOG_LEVELS), default=None,
              help="Override the configured log level")
def run(config_path: Optional[Path], log_level: Optional[str]):
    """Start the bot and serve commands until interrupted."""
    config = _load_config(config_path)
    _setup_logging(log_level or config.log_level)

    bot = Bot(config)
    bot.start()

    stop = threading.Event()

    def _request_stop(signum, frame):
        stop.set()

    signal.signal(signal.SIGINT, _request_stop)
    signal.signal(signal.SIGTERM, _request_stop)
    while not stop.wait(1.0):
        pass

    bot.stop()
    click.echo("👋 Stopped.")


@main.command("check-config")
@click.option("--config", "config_path", type=click.Path(path_type=Path), default=None,
              help="JSON config file to validate")
def check_config(config_path: Optional[Path]):
    """Validate configuration without starting the bot."""
    config = _load_config(config_path)
    click.echo("✅ Configuration OK")
    for key, value in config.summary().items():
        click.echo(f"   {key + ':':<18}{value}")


@main.command()
@click.argument("description")
@click.option("--limit", type=str, default="1.00", help="Per-transaction limit (USD)")
@click.option("--daily-budget", type=str, default="5.00", help="Daily budget (USD)")
def quote(description: str, limit: str, daily_budget: str):
    """Show the price the agent would propose for DESCRIPTION."""
    try:
        ledger = Ledger(LedgerConfig(per_transaction_limit=limit, daily_budget=daily_budget))
    except ConfigurationError as e:
        click.echo(f"❌ {e}", err=True)
        sys.exit(1)

    proposal = ledger.propose_price(description)
    click.echo(f"💡 Proposed price: ${proposal.price:.2f}")
    click.echo(f"   Reasoning:      {proposal.reasoning}")


@main.command()
@click.option("--path", "audit_path", type=click.Path(path_type=Path), default=DEFAULT_AUDIT_PATH,
              envvar="TREASURER_AUDIT_PATH", show_default=True, help="Audit log file")
@click.option("--event-type", type=click.Choice([e.value for e in EventType]), default=None,
              help="Only show this event type")
@click.option("--order-id", default=None, help="Only show events for this invoice")
@click.option("--limit", type=int, default=20, help="Number of events")
@click.option("--summary", "show_summary", is_flag=True, help="Show totals instead of events")
def audit(
    audit_path: Path,
    event_type: Optional[str],
    order_id: Optional[str],
    limit: int,
    show_summary: bool,
):
    """View the audit trail."""
    trail = AuditTrail(path=audit_path)
    try:
        if show_summary:
            summary = trail.summary()
            click.echo(f"📊 {summary['total_events']} events, {summary['failures']} failures")
            for name, count in sorted(summary["by_type"].items()):
                click.echo(f"   {name:<18} {count}")
            return
        events = trail.read_events(
            event_type=EventType(event_type) if event_type else None,
            order_id=order_id,
            limit=limit,
        )
    except RuntimeError as e:
        click.echo(f"❌ {e}", err=True)
        sys.exit(1)

    if not events:
        click.echo("No audit events found.")
        return

    for event in events:
        ts = time.strftime("%H:%M:%S", time.localtime(event.timestamp))
        status = "✅" if event.success else "❌"
        amount = f" {event.amount} {event.currency or ''}".rstrip() if event.amount else ""
        order = f" [{event.order_id}]" if event.order_id else ""
        reason = f" ({event.reason})" if event.reason and not event.success else ""
        click.echo(f"  {ts} {status} {event.event_type}{amount}{order}{reason}")


if __name__ == "__main__":
    main()
