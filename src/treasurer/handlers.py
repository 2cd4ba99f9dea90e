"""
Chat command handlers.

Free commands answer straight away. Paid services only check that the
agent could take the job within its limits and reply with payment
instructions; fulfillment happens elsewhere once a payment confirms.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime
from decimal import Decimal
from typing import Optional

from .commands import FREE, VARIABLE_PRICE, CommandContext, Registry
from .errors import CapabilityUnavailable, UpstreamError
from .ledger import Ledger
from .money import ZERO, format_usd, to_decimal
from .monitor import PaymentInvoice

logger = logging.getLogger(__name__)


APOLOGY = "⚠️ Something went wrong on my side. Please try again later."
DEFAULT_SERVICE_CURRENCY = "USDT"


def _price_label(price: Decimal) -> str:
    if price < ZERO:
        return "variable"
    if price == ZERO:
        return "free"
    return format_usd(price)


def _command_lines(registry: Registry, paid: bool) -> list[str]:
    lines = []
    for prefix, handler in registry.commands():
        price = handler.price()
        is_paid = price > ZERO or price == VARIABLE_PRICE
        if is_paid != paid:
            continue
        usage = getattr(handler, "usage", prefix)
        suffix = f" ({_price_label(price)})" if paid else ""
        lines.append(f"• {usage} - {handler.description()}{suffix}")
    return lines


def _limits_line(ledger: Ledger) -> str:
    return (
        f"My limits: {format_usd(ledger.per_transaction_limit)}/transaction, "
        f"{format_usd(ledger.daily_budget)}/day"
    )


def welcome_text(registry: Registry) -> str:
    """Greeting posted after joining a room."""
    lines = ["👋 Hello! I'm the Treasurer agent.", "", "I offer paid services and can help your group:", ""]
    lines.append("Free commands:")
    lines.extend(_command_lines(registry, paid=False))
    lines.append("")
    lines.append("Paid services:")
    lines.extend(_command_lines(registry, paid=True))
    lines.append("")
    lines.append("Type !help for more details.")
    return "\n".join(lines)


class HelpHandler:
    usage = "!help"

    def handle(self, ctx: CommandContext) -> None:
        lines = ["🤖 Treasurer Agent Help", "", "Free commands:"]
        lines.extend(_command_lines(ctx.registry, paid=False))
        lines.append("")
        lines.append("Paid services:")
        lines.extend(_command_lines(ctx.registry, paid=True))
        lines.append("")
        lines.append(_limits_line(ctx.ledger))
        lines.append("")
        lines.append("Need something else? Just ask!")
        ctx.reply("\n".join(lines))

    def description(self) -> str:
        return "Show this message"

    def price(self) -> Decimal:
        return FREE


class ServicesHandler:
    usage = "!services"

    def handle(self, ctx: CommandContext) -> None:
        lines = ["📋 <b>Available Services</b>", "", "<b>Free:</b>"]
        lines.extend(_command_lines(ctx.registry, paid=False))
        lines.append("")
        lines.append("<b>Paid Services:</b>")
        lines.extend(_command_lines(ctx.registry, paid=True))
        lines.append("")
        lines.append(f"💡 <b>{_limits_line(ctx.ledger)}</b>")
        lines.append("")
        lines.append("All payments in USDT or USDC. Type !pay to send payment.")
        ctx.reply_html("\n".join(lines))

    def description(self) -> str:
        return "List all available services"

    def price(self) -> Decimal:
        return FREE


class BalanceHandler:
    usage = "!balance"

    def handle(self, ctx: CommandContext) -> None:
        try:
            balances = ctx.provider.get_balances()
        except UpstreamError as e:
            logger.error("Failed to get balances: %s", e)
            ctx.reply("⚠️ Unable to fetch balances right now. Try again later.")
            return

        stats = ctx.ledger.stats()
        lines = ["💰 <b>Agent Treasury</b>", ""]
        if not balances:
            lines.append("No funds available yet.")
        else:
            for currency, amount in sorted(balances.items()):
                lines.append(f"• {currency}: {amount}")

        lines.append("")
        lines.append("📊 <b>Spending Limits</b>")
        lines.append(f"• Per transaction: {format_usd(ctx.ledger.per_transaction_limit)}")
        lines.append(f"• Daily budget: {format_usd(ctx.ledger.daily_budget)}")
        lines.append(f"• Spent today: {format_usd(stats.spent_today)}")
        lines.append(
            f"• Remaining today: {format_usd(stats.remaining_today(ctx.ledger.daily_budget))}"
        )
        lines.append("")
        if stats.last_spend_time is None:
            lines.append("✅ No spending yet")
        else:
            lines.append(f"🕐 Last spend: {stats.last_spend_time.strftime('%H:%M')}")
        ctx.reply_html("\n".join(lines))

    def description(self) -> str:
        return "Check my treasury and spending limits"

    def price(self) -> Decimal:
        return FREE


class PriceLookupHandler:
    usage = "!price <crypto>"

    def handle(self, ctx: CommandContext) -> None:
        args = ctx.args()
        if not args:
            ctx.reply("Usage: !price <crypto>\nExample: !price BTC")
            return

        symbol = args[0].upper()
        try:
            quote = ctx.capabilities.market_data.quote(symbol)
        except CapabilityUnavailable:
            ctx.reply(f"💰 Price lookup for {symbol} is not available yet.")
            return
        except UpstreamError as e:
            logger.error("Price lookup for %s failed: %s", symbol, e)
            ctx.reply(APOLOGY)
            return

        lines = [f"💰 <b>{quote.symbol} Price</b>", "", f"Current: {format_usd(quote.price_usd)}"]
        if quote.change_24h_pct is not None:
            lines.append(f"24h Change: {quote.change_24h_pct:+.2f}%")
        if quote.source:
            lines.append("")
            lines.append(f"(Powered by {quote.source})")
        ctx.reply_html("\n".join(lines))

    def description(self) -> str:
        return "Get current crypto price"

    def price(self) -> Decimal:
        return FREE


class PricedServiceHandler:
    """A paid service: check affordability, then ask for payment."""

    usage = ""
    example = ""
    min_args = 1
    service_price = ZERO
    action = ""
    summary = ""

    def request_summary(self, args: list[str]) -> Optional[str]:
        """Describe the request, or return None when the arguments are invalid."""
        raise NotImplementedError

    def handle(self, ctx: CommandContext) -> None:
        args = ctx.args()
        detail = self.request_summary(args) if len(args) >= self.min_args else None
        if detail is None:
            ctx.reply(f"Usage: {self.usage}\nExample: {self.example}")
            return

        allowed, reason = ctx.ledger.can_spend(self.service_price)
        if not allowed:
            ctx.reply(f"❌ Cannot {self.action}: {reason}")
            return

        ctx.reply(
            f"{detail}\n\nThis service costs {format_usd(self.service_price)}.\n"
            f"Pay with: !pay {self.service_price:.2f} {DEFAULT_SERVICE_CURRENCY}"
        )
        logger.info("%s requested by %s: %s", type(self).__name__, ctx.sender, " ".join(args))

    def description(self) -> str:
        return self.summary

    def price(self) -> Decimal:
        return self.service_price


class AlertHandler(PricedServiceHandler):
    usage = "!alert <crypto> <price>"
    example = "!alert BTC 50000"
    min_args = 2
    service_price = Decimal("0.10")
    action = "create alert"
    summary = "Set price alert for any cryptocurrency"

    def request_summary(self, args: list[str]) -> Optional[str]:
        symbol, target = args[0].upper(), args[1].lstrip("$")
        try:
            to_decimal(target)
        except ValueError:
            return None
        return f"💳 Price alert for {symbol} at ${target}"


class SummarizeHandler(PricedServiceHandler):
    usage = "!summarize <url>"
    example = "!summarize https://example.com/article"
    service_price = Decimal("0.50")
    action = "summarize"
    summary = "Summarize any article or webpage"

    def request_summary(self, args: list[str]) -> Optional[str]:
        return f"📄 Article summarization\nURL: {args[0]}"


class ImageHandler(PricedServiceHandler):
    usage = "!image <prompt>"
    example = "!image a cat wearing a spacesuit on the moon"
    service_price = Decimal("0.75")
    action = "generate image"
    summary = "Generate AI images from text prompts"

    def request_summary(self, args: list[str]) -> Optional[str]:
        return f"🎨 AI Image Generation\nPrompt: {' '.join(args)}"


class CodeHandler(PricedServiceHandler):
    usage = "!code <description>"
    example = "!code a Python function to calculate fibonacci"
    service_price = Decimal("0.50")
    action = "generate code"
    summary = "Generate code snippets from description"

    def request_summary(self, args: list[str]) -> Optional[str]:
        return f"💻 Code Generation\nDescription: {' '.join(args)}"


class ProposeHandler:
    usage = "!propose <idea>"

    def handle(self, ctx: CommandContext) -> None:
        args = ctx.args()
        if not args:
            ctx.reply(
                "Usage: !propose <your idea>\n"
                "Example: !propose I need a Python script to scrape prices from Amazon"
            )
            return

        idea = " ".join(args)
        proposal = ctx.ledger.propose_price(idea)
        ctx.reply_html(
            "🤖 <b>Custom Service Proposal</b>\n\n"
            f"Your request: {idea}\n\n"
            f"<b>Recommended price:</b> {format_usd(proposal.price)}\n"
            f"<b>Reasoning:</b> {proposal.reasoning}\n\n"
            "Would you like me to proceed? Reply:\n"
            f"• !pay {proposal.price:.2f} {DEFAULT_SERVICE_CURRENCY} to confirm\n"
            "• Or suggest a different price"
        )
        logger.info("Custom service proposed to %s at %s: %s", ctx.sender, proposal.price, idea)

    def description(self) -> str:
        return "I propose a custom service and its price"

    def price(self) -> Decimal:
        return VARIABLE_PRICE


class PaymentHandler:
    usage = "!pay <amount> <currency>"

    def handle(self, ctx: CommandContext) -> None:
        args = ctx.args()
        if len(args) < 2:
            ctx.reply("Usage: !pay <amount> <currency>\nExample: !pay 0.50 USDT")
            return

        try:
            amount = to_decimal(args[0].lstrip("$"))
        except ValueError:
            amount = ZERO
        if amount <= ZERO:
            ctx.reply(f"❌ Invalid amount: {args[0]}")
            return
        currency = args[1].upper()
        order_id = f"order-{secrets.token_hex(8)}"

        try:
            created = ctx.provider.create_invoice(order_id, amount, currency)
        except UpstreamError as e:
            logger.error("Failed to create invoice %s: %s", order_id, e)
            ctx.reply("⚠️ Could not create a payment invoice right now. Try again later.")
            return

        invoice = PaymentInvoice(
            order_id=order_id,
            requested_amount=amount,
            currency=currency,
            created_at=datetime.now(ctx.ledger.timezone),
            payment_url=created.payment_url,
            address=created.address,
            expires_at=created.expires_at,
        )
        # The invoice exists upstream now; track it even if the reply fails.
        ctx.monitors.start(invoice, notify=ctx.reply_html, record_earnings=True)

        lines = [
            "💳 <b>Payment Invoice</b>",
            "",
            f"Amount: {amount} {currency}",
            f"Order: {order_id}",
        ]
        if invoice.payment_url:
            lines.append(f"Pay here: {invoice.payment_url}")
        if invoice.address:
            lines.append(f"Address: {invoice.address}")
        lines.append("")
        lines.append(f"Type !status {order_id} to check payment status.")
        ctx.reply_html("\n".join(lines))

    def description(self) -> str:
        return "Send me money"

    def price(self) -> Decimal:
        return FREE


class StatusHandler:
    usage = "!status <invoice_id>"

    def handle(self, ctx: CommandContext) -> None:
        args = ctx.args()
        if not args:
            ctx.reply("Usage: !status <invoice_id>")
            return

        order_id = args[0]
        try:
            status = ctx.provider.check_payment(order_id)
        except UpstreamError as e:
            logger.error("Status check for %s failed: %s", order_id, e)
            ctx.reply("⚠️ Could not check status. Make sure the ID is correct.")
            return

        lines = ["📋 <b>Payment Status</b>", "", f"Order: {order_id}", f"Status: {status.status}"]
        if status.is_confirmed:
            lines.append(f"Amount: {status.amount} {status.currency}")
            if status.confirmed_at is not None:
                lines.append(f"Received at: {status.confirmed_at.strftime('%H:%M %Z').strip()}")
        ctx.reply_html("\n".join(lines))

    def description(self) -> str:
        return "Check payment status"

    def price(self) -> Decimal:
        return FREE


def register_default_handlers(registry: Registry) -> Registry:
    """Install the standard command set."""
    registry.register("!help", HelpHandler())
    registry.register("!balance", BalanceHandler())
    registry.register("!services", ServicesHandler())
    registry.register("!price", PriceLookupHandler())
    registry.register("!alert", AlertHandler())
    registry.register("!summarize", SummarizeHandler())
    registry.register("!image", ImageHandler())
    registry.register("!code", CodeHandler())
    registry.register("!propose", ProposeHandler())
    registry.register("!pay", PaymentHandler())
    registry.register("!status", StatusHandler())
    return registry
