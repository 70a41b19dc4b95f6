"""Static mapping between paid tiers and processor price identifiers."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional

from ..entitlements.models import PAID_TIERS, Tier
from .config import BillingConfig
from .errors import ConfigurationError


@dataclass(frozen=True)
class PriceCatalog:
    """Price id lookup in both directions.

    Must be kept consistent with the processor's product catalogue; nothing
    here is derived at runtime.
    """

    prices: Mapping[Tier, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        unpaid = [tier.value for tier in self.prices if tier not in PAID_TIERS]
        if unpaid:
            raise ValueError(f"Prices can only be mapped for paid tiers, got: {', '.join(unpaid)}")

    @classmethod
    def from_config(cls, config: BillingConfig) -> "PriceCatalog":
        configured: Dict[Tier, Optional[str]] = {
            Tier.STARTER: config.starter_price_id,
            Tier.PRO: config.pro_price_id,
            Tier.CLUB: config.club_price_id,
        }
        return cls({tier: price_id for tier, price_id in configured.items() if price_id})

    def price_for(self, tier: Tier) -> str:
        price_id = self.prices.get(tier)
        if not price_id:
            raise ConfigurationError(
                message=f"No price configured for tier '{tier.value}'.",
                detail={"tier": tier.value, "setting": f"STRIPE_{tier.value.upper()}_PRICE_ID"},
            )
        return price_id

    def tier_for(self, price_id: Optional[str]) -> Optional[Tier]:
        if not price_id:
            return None
        for tier, mapped in self.prices.items():
            if mapped == price_id:
                return tier
        return None


__all__ = ["PriceCatalog"]
