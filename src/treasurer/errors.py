"""
Treasurer error types.

Specific exceptions for different failure modes, enabling callers
to handle each case appropriately (retry, apologize, abort startup, etc.).

Spending limit violations are not exceptions: the ledger reports them
as values (see ``treasurer.ledger.Rejection``).
"""


class TreasurerError(Exception):
    """Base error for all Treasurer operations."""
    pass


# Startup errors
class ConfigurationError(TreasurerError):
    """Missing or invalid startup settings."""
    pass


# Upstream errors
class UpstreamError(TreasurerError):
    """Base error for payment provider or chat transport failures."""
    pass


class ProviderError(UpstreamError):
    """Payment provider returned a non-success response."""
    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        super().__init__(f"Payment provider error ({status_code}): {message}")


class NetworkError(UpstreamError):
    """Network-level failures (DNS, connection refused, timeouts)."""
    pass


class TransportError(UpstreamError):
    """Chat homeserver rejected a request."""
    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        super().__init__(f"Homeserver error ({status_code}): {message}")


# Capability errors
class CapabilityUnavailable(TreasurerError):
    """A service capability exists in the command surface but has no backend yet."""
    def __init__(self, capability: str):
        self.capability = capability
        super().__init__(f"{capability} is not available yet")


# Invoice errors
class InvalidTransitionError(TreasurerError):
    """Invoice is already in a terminal state."""
    pass
