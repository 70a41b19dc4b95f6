"""Swimmer roster capacity checks."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union

from ..entitlements.state import UNLIMITED, EntitlementState
from .exceptions import FeatureGateError


@dataclass(frozen=True)
class SwimmerCapacityEvaluation:
    """Outcome of checking whether swimmers can be added to a roster."""

    swimmer_count: int
    remaining: Union[int, float]
    requested: int
    allowed: bool

    @property
    def unlimited(self) -> bool:
        return self.remaining == UNLIMITED

    def to_dict(self) -> dict[str, Union[int, bool, None]]:
        """Serialize the evaluation for logging or responses; unlimited is ``None``."""

        return {
            "swimmer_count": self.swimmer_count,
            "remaining": None if self.unlimited else int(self.remaining),
            "requested": self.requested,
            "allowed": self.allowed,
        }


def evaluate_swimmer_capacity(
    state: EntitlementState,
    *,
    adding: int = 1,
    now: Optional[datetime] = None,
) -> SwimmerCapacityEvaluation:
    requested = max(adding, 0)
    remaining = state.remaining_swimmers(now)
    allowed = state.can_add_swimmer(now) and requested <= remaining
    return SwimmerCapacityEvaluation(
        swimmer_count=state.swimmer_count,
        remaining=remaining,
        requested=requested,
        allowed=allowed,
    )


def require_swimmer_capacity(
    state: EntitlementState,
    *,
    adding: int = 1,
    now: Optional[datetime] = None,
    error_code: str = "swimmer_limit_reached",
) -> SwimmerCapacityEvaluation:
    """Raise when adding ``adding`` swimmers would exceed the tier ceiling."""

    evaluation = evaluate_swimmer_capacity(state, adding=adding, now=now)
    if not evaluation.allowed:
        raise FeatureGateError(
            code=error_code,
            message="Swimmer limit reached for your plan.",
            team_id=state.team_id,
            tier=state.tier(now).value,
            detail=evaluation.to_dict(),
        )
    return evaluation
