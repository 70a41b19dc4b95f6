"""Guards that turn entitlement queries into hard denials."""
from __future__ import annotations

from datetime import datetime
from typing import Optional, Union

from ..entitlements.models import Feature
from ..entitlements.state import EntitlementState
from .exceptions import FeatureGateError


def require_feature(
    state: EntitlementState,
    feature: Union[Feature, str],
    *,
    now: Optional[datetime] = None,
    error_code: str = "feature_unavailable",
    message: Optional[str] = None,
) -> None:
    """Raise :class:`FeatureGateError` unless ``feature`` is granted.

    Unknown feature names and snapshots that are not loaded are denied.
    """

    if state.has_feature(feature, now):
        return

    name = feature.value if isinstance(feature, Feature) else str(feature)
    raise FeatureGateError(
        code=error_code,
        message=message or f"Your plan does not include '{name}'.",
        team_id=state.team_id,
        tier=state.tier(now).value,
        detail={"feature": name},
    )
