from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass
from enum import IntEnum

from .constants import ACTION_DIM, FIRE_THRESHOLD


class ActionIndex(IntEnum):
    THROTTLE = 0
    STEER = 1
    FIRE = 2  # flag, > FIRE_THRESHOLD fires


class ActionContractError(ValueError):
    """Raised when a client sends an action that cannot come from a sane policy.

    Non-finite inputs mean the training client is corrupted; the connection is
    aborted instead of clamping the value away.
    """


def clamp_unit(x: float) -> float:
    return max(-1.0, min(1.0, x))


@dataclass(frozen=True)
class Action:
    throttle: float = 0.0
    steer: float = 0.0
    fire_value: float = 0.0

    @classmethod
    def from_values(cls, values: Sequence[float]) -> Action:
        """Build from a wire vector; missing trailing components default to 0."""
        padded = [float(v) for v in values[:ACTION_DIM]]
        padded += [0.0] * (ACTION_DIM - len(padded))
        return cls(
            throttle=padded[ActionIndex.THROTTLE],
            steer=padded[ActionIndex.STEER],
            fire_value=padded[ActionIndex.FIRE],
        )

    @property
    def fire(self) -> bool:
        return self.fire_value > FIRE_THRESHOLD

    def is_finite(self) -> bool:
        return all(math.isfinite(v) for v in (self.throttle, self.steer, self.fire_value))

    def require_finite(self) -> None:
        if not self.is_finite():
            raise ActionContractError(
                f"non-finite action (throttle={self.throttle}, steer={self.steer}, fire={self.fire_value})"
            )

    def clamped(self) -> Action:
        return Action(
            throttle=clamp_unit(self.throttle),
            steer=clamp_unit(self.steer),
            fire_value=self.fire_value,
        )
