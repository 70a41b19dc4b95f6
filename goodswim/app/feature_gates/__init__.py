"""Feature gating helpers built on entitlement snapshots."""
from .enforcement import require_feature
from .exceptions import FeatureGateError
from .quota import SwimmerCapacityEvaluation, evaluate_swimmer_capacity, require_swimmer_capacity

__all__ = [
    "FeatureGateError",
    "SwimmerCapacityEvaluation",
    "evaluate_swimmer_capacity",
    "require_feature",
    "require_swimmer_capacity",
]
