"""
Pluggable service capabilities.

Business logic that depends on outside providers (market data, model-backed
pricing) sits behind small protocols so handlers and the ledger never
depend on a specific vendor. Each protocol ships a default: a heuristic
for pricing, and an ``Unavailable*`` variant that raises
``CapabilityUnavailable`` for anything not implemented yet.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional, Protocol

from .errors import CapabilityUnavailable


@dataclass(frozen=True)
class PriceProposal:
    """A suggested service price and why."""

    price: Decimal
    reasoning: str


class Pricer(Protocol):
    def propose(self, service_description: str, cap: Decimal) -> PriceProposal:
        ...


class HeuristicPricer:
    """Price a custom service by how long its description is."""

    base_price = Decimal("0.50")
    medium_price = Decimal("0.75")
    large_price = Decimal("1.00")

    def propose(self, service_description: str, cap: Decimal) -> PriceProposal:
        size = len(service_description)
        if size > 100:
            price = self.large_price
        elif size > 50:
            price = self.medium_price
        else:
            price = self.base_price
        return PriceProposal(
            price=price,
            reasoning=(
                f"Based on service complexity. Max price ${cap:.2f} "
                "due to agent spending limits."
            ),
        )


@dataclass(frozen=True)
class Quote:
    symbol: str
    price_usd: Decimal
    change_24h_pct: Optional[Decimal] = None
    source: str = ""


class MarketData(Protocol):
    def quote(self, symbol: str) -> Quote:
        ...


class UnavailableMarketData:
    """Market data backend placeholder: no provider is wired in yet."""

    def quote(self, symbol: str) -> Quote:
        raise CapabilityUnavailable("Price lookup")


@dataclass
class Capabilities:
    """Capability bundle handed to every command."""

    market_data: MarketData = field(default_factory=UnavailableMarketData)
