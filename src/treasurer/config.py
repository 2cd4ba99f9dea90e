"""
Startup configuration.

Settings come from an optional JSON file, then ``TREASURER_*`` environment
variables, which win. The file mirrors the environment names in sections::

    {
      "matrix":   {"homeserver": "...", "user_id": "...", "access_token": "..."},
      "provider": {"url": "...", "api_key": "..."},
      "agent":    {"spending_limit_usd": "1.00", "daily_budget_usd": "5.00"},
      "log_level": "info"
    }

Anything missing or malformed raises ``ConfigurationError``; the process
must not start half-configured.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Any, Mapping, Optional

from .errors import ConfigurationError
from .ledger import LedgerConfig
from .money import to_decimal
from .provider import ProviderConfig
from .transport import MatrixConfig


ENV_PREFIX = "TREASURER_"
DEFAULT_CONFIG_PATHS = (
    Path("treasurer.json"),
    Path.home() / ".treasurer" / "config.json",
)
LOG_LEVELS = ("debug", "info", "warning", "error")

# (section, key, default); section None means top level. Env name is
# TREASURER_<SECTION>_<KEY> upper-cased.
_SETTINGS: tuple[tuple[Optional[str], str, Optional[str]], ...] = (
    ("matrix", "homeserver", "https://matrix.org"),
    ("matrix", "user_id", None),
    ("matrix", "access_token", None),
    ("matrix", "device_id", ""),
    ("provider", "url", None),
    ("provider", "api_key", None),
    ("agent", "spending_limit_usd", "1.00"),
    ("agent", "daily_budget_usd", "5.00"),
    ("agent", "timezone", "UTC"),
    ("monitor", "poll_interval_seconds", "10"),
    ("monitor", "timeout_seconds", "1800"),
    (None, "log_level", "info"),
    (None, "audit_path", str(Path.home() / ".treasurer" / "audit.jsonl")),
)


def _env_name(section: Optional[str], key: str) -> str:
    return f"{ENV_PREFIX}{section + '_' if section else ''}{key}".upper()


@dataclass(frozen=True)
class BotConfig:
    homeserver: str
    user_id: str
    access_token: str
    device_id: str
    provider_url: str
    provider_api_key: str
    spending_limit_usd: Decimal
    daily_budget_usd: Decimal
    timezone: str
    poll_interval_seconds: float
    payment_timeout_seconds: float
    log_level: str
    audit_path: Path
    source: Optional[Path] = None

    @classmethod
    def load(
        cls,
        path: Optional[Path] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> "BotConfig":
        env = os.environ if env is None else env
        source = _resolve_path(path)
        raw = _read_file(source) if source else {}

        values: dict[str, Any] = {}
        missing = []
        for section, key, default in _SETTINGS:
            container = raw.get(section, {}) if section else raw
            if not isinstance(container, dict):
                raise ConfigurationError(f"Config section '{section}' must be an object")
            value = env.get(_env_name(section, key))
            if value is None:
                value = container.get(key, default)
            if value is None or (default is None and str(value).strip() == ""):
                missing.append(_env_name(section, key))
                continue
            values[f"{section}.{key}" if section else key] = str(value).strip()
        if missing:
            raise ConfigurationError(f"Missing required settings: {', '.join(missing)}")

        log_level = values["log_level"].lower()
        if log_level not in LOG_LEVELS:
            raise ConfigurationError(
                f"Invalid log_level {values['log_level']!r} (expected one of {', '.join(LOG_LEVELS)})"
            )

        config = cls(
            homeserver=values["matrix.homeserver"],
            user_id=values["matrix.user_id"],
            access_token=values["matrix.access_token"],
            device_id=values["matrix.device_id"],
            provider_url=values["provider.url"],
            provider_api_key=values["provider.api_key"],
            spending_limit_usd=_decimal_setting("agent.spending_limit_usd", values),
            daily_budget_usd=_decimal_setting("agent.daily_budget_usd", values),
            timezone=values["agent.timezone"],
            poll_interval_seconds=float(_decimal_setting("monitor.poll_interval_seconds", values)),
            payment_timeout_seconds=float(_decimal_setting("monitor.timeout_seconds", values)),
            log_level=log_level,
            audit_path=Path(values["audit_path"]).expanduser(),
            source=source,
        )
        # Fails fast on non-positive limits or an unknown timezone.
        config.ledger_config()
        if config.poll_interval_seconds <= 0 or config.payment_timeout_seconds <= 0:
            raise ConfigurationError("Monitor interval and timeout must be positive")
        return config

    def ledger_config(self) -> LedgerConfig:
        return LedgerConfig(
            per_transaction_limit=self.spending_limit_usd,
            daily_budget=self.daily_budget_usd,
            timezone=self.timezone,
        )

    def matrix_config(self) -> MatrixConfig:
        return MatrixConfig(
            homeserver=self.homeserver,
            user_id=self.user_id,
            access_token=self.access_token,
            device_id=self.device_id,
        )

    def provider_config(self) -> ProviderConfig:
        return ProviderConfig(base_url=self.provider_url, api_key=self.provider_api_key)

    def summary(self) -> dict[str, str]:
        """Printable settings with secrets masked."""
        return {
            "source": str(self.source) if self.source else "(environment only)",
            "homeserver": self.homeserver,
            "user_id": self.user_id,
            "access_token": _mask(self.access_token),
            "provider_url": self.provider_url,
            "provider_api_key": _mask(self.provider_api_key),
            "spending_limit": f"${self.spending_limit_usd:.2f}",
            "daily_budget": f"${self.daily_budget_usd:.2f}",
            "timezone": self.timezone,
            "log_level": self.log_level,
            "audit_path": str(self.audit_path),
        }


def _resolve_path(path: Optional[Path]) -> Optional[Path]:
    if path is not None:
        if not path.exists():
            raise ConfigurationError(f"Config file not found: {path}")
        return path
    return next((p for p in DEFAULT_CONFIG_PATHS if p.exists()), None)


def _read_file(path: Path) -> dict[str, Any]:
    try:
        with open(path, encoding="utf-8") as f:
            raw = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Cannot read config file {path}: {e}") from e
    if not isinstance(raw, dict):
        raise ConfigurationError(f"Config file {path} must contain a JSON object")
    return raw


def _decimal_setting(name: str, values: dict[str, Any]) -> Decimal:
    try:
        return to_decimal(values[name])
    except ValueError as e:
        raise ConfigurationError(f"{name} must be a number, got {values[name]!r}") from e


def _mask(secret: str) -> str:
    if len(secret) <= 4:
        return "****"
    return f"{secret[:2]}…{secret[-2:]}"
