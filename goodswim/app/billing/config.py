"""Billing configuration helpers."""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional


@dataclass(frozen=True)
class BillingConfig:
    """Configuration for the payment processor integration."""

    stripe_secret_key: Optional[str]
    stripe_webhook_secret: Optional[str]
    webhook_tolerance_seconds: int
    starter_price_id: Optional[str]
    pro_price_id: Optional[str]
    club_price_id: Optional[str]
    app_url: str
    trial_length_days: int
    entitlement_cache_ttl_seconds: int = 300

    @property
    def uses_stripe(self) -> bool:
        return bool(self.stripe_secret_key)


def _to_int(value: Optional[str], *, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected integer value, got {value!r}") from exc


def _optional(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


def load_billing_config(env: Optional[Mapping[str, str]] = None) -> BillingConfig:
    """Load :class:`BillingConfig` from environment variables."""

    env_mapping = os.environ if env is None else env

    return BillingConfig(
        stripe_secret_key=_optional(env_mapping.get("STRIPE_SECRET_KEY")),
        stripe_webhook_secret=_optional(env_mapping.get("STRIPE_WEBHOOK_SECRET")),
        webhook_tolerance_seconds=max(0, _to_int(env_mapping.get("STRIPE_WEBHOOK_TOLERANCE"), default=300)),
        starter_price_id=_optional(env_mapping.get("STRIPE_STARTER_PRICE_ID")),
        pro_price_id=_optional(env_mapping.get("STRIPE_PRO_PRICE_ID")),
        club_price_id=_optional(env_mapping.get("STRIPE_CLUB_PRICE_ID")),
        app_url=(env_mapping.get("APP_URL") or "https://goodswim.io").rstrip("/"),
        trial_length_days=max(1, _to_int(env_mapping.get("TRIAL_LENGTH_DAYS"), default=14)),
        entitlement_cache_ttl_seconds=max(1, _to_int(env_mapping.get("ENTITLEMENT_CACHE_TTL"), default=300)),
    )


__all__ = ["BillingConfig", "load_billing_config"]
