"""
Treasurer: a chat agent that earns and spends within a budget.

Commands come in over Matrix, paid services are settled through a crypto
payment gateway, and every outgoing spend is checked against a
self-imposed per-transaction limit and daily budget.
"""

__version__ = "0.1.0"

from .audit import AuditTrail, EventType
from .capabilities import Capabilities, HeuristicPricer, PriceProposal
from .commands import CommandContext, Registry
from .errors import (
    CapabilityUnavailable,
    ConfigurationError,
    TreasurerError,
    UpstreamError,
)
from .ledger import Ledger, LedgerConfig, LedgerStats, Rejection, SpendResult, Transaction
from .monitor import InvoiceStatus, MonitorLauncher, PaymentInvoice, PaymentMonitor
from .payout import PayoutExecutor, PayoutResult
from .provider import ProviderConfig, ShkeeperClient

__all__ = [
    "AuditTrail", "EventType",
    "Capabilities", "HeuristicPricer", "PriceProposal",
    "CommandContext", "Registry",
    "TreasurerError", "ConfigurationError", "UpstreamError", "CapabilityUnavailable",
    "Ledger", "LedgerConfig", "LedgerStats", "Rejection", "SpendResult", "Transaction",
    "InvoiceStatus", "MonitorLauncher", "PaymentInvoice", "PaymentMonitor",
    "PayoutExecutor", "PayoutResult",
    "ProviderConfig", "ShkeeperClient",
]
