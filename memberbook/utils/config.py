"""Runtime settings loaded from the environment."""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from typing import Mapping, Optional

from pydantic import BaseModel, ConfigDict, field_validator

from memberbook.domain.exceptions import ConfigurationError


ENV_PREFIX = "MEMBERBOOK_"


def check_log_level(level: str) -> str:
    """Normalize a level name, rejecting anything the logging module does not know."""
    name = str(level).strip().upper()
    if not isinstance(logging.getLevelName(name), int):
        raise ConfigurationError(f"Unknown log level: {level!r}")
    return name


class Settings(BaseModel):
    """Engine-wide defaults; every value can be overridden via MEMBERBOOK_* variables."""

    log_level: str = "INFO"
    default_currency: str = "KRW"
    reservation_horizon_days: int = 365
    modification_lead_minutes: int = 60

    model_config = ConfigDict(frozen=True)

    @field_validator("log_level", mode="before")
    @classmethod
    def _check_log_level(cls, v: str) -> str:
        return check_log_level(v)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from environment variables, falling back to defaults."""
        env = os.environ if environ is None else environ

        log_level = check_log_level(env.get(f"{ENV_PREFIX}LOG_LEVEL") or "INFO")
        currency = env.get(f"{ENV_PREFIX}DEFAULT_CURRENCY", "KRW").strip().upper()
        horizon = _read_int(env, "RESERVATION_HORIZON_DAYS", 365)
        lead = _read_int(env, "MODIFICATION_LEAD_MINUTES", 60)

        if len(currency) != 3 or not currency.isalpha():
            raise ConfigurationError(f"Invalid default currency code: {currency!r}")
        if horizon <= 0:
            raise ConfigurationError("Reservation horizon must be positive")
        if lead < 0:
            raise ConfigurationError("Modification lead time cannot be negative")

        return cls(
            log_level=log_level,
            default_currency=currency,
            reservation_horizon_days=horizon,
            modification_lead_minutes=lead,
        )


def _read_int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(f"{ENV_PREFIX}{key}")
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{ENV_PREFIX}{key} must be an integer, got {raw!r}") from exc


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return process-wide settings, read once."""
    return Settings.from_env()
