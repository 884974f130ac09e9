"""Simulation World contract.

The bridge never touches physics, rendering or entity internals directly.
Everything it needs from the game goes through :class:`SimulationWorld`, and
every call on it must happen on the simulation loop thread.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Protocol, runtime_checkable

import numpy as np


@dataclass(frozen=True)
class Telemetry:
    """Continuous per-tick state used for snapshot-based reward terms."""

    agent_hp: float
    agent_max_hp: float
    agent_lives: int
    target_lives: int
    target_distance: float  # normalized to [0, 1]
    agent_speed: float
    max_speed: float

    @property
    def hp_fraction(self) -> float:
        return float(np.clip(self.agent_hp / max(1e-6, self.agent_max_hp), 0.0, 1.0))


@dataclass(frozen=True)
class RewardEvents:
    """One-shot counters accumulated by the world during a single tick.

    The world hands these out exactly once per tick and zeroes its own copy in
    the same call.
    """

    dealt: float = 0.0
    taken: float = 0.0
    pickup: int = 0
    collided: int = 0
    destroyed_obstacles: int = 0
    kills: int = 0
    died: bool = False
    wall_bump: bool = False
    reverse_intent: bool = False
    reverse_motion: bool = False
    win: bool = False
    lose: bool = False

    def is_empty(self) -> bool:
        return not any(getattr(self, f.name) for f in fields(self))

    def to_dict(self) -> dict[str, float | int | bool]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@runtime_checkable
class SimulationWorld(Protocol):
    def apply_control(self, throttle: float, steer: float, fire: bool) -> None: ...

    def step_one_tick(self, dt: float) -> None: ...

    def read_observation(self) -> np.ndarray: ...

    def read_legacy_observation(self) -> np.ndarray: ...

    def read_telemetry(self) -> Telemetry: ...

    def consume_reward_events(self) -> RewardEvents: ...

    def should_fire(self) -> bool: ...

    def is_done(self) -> bool: ...

    def reset_episode(self) -> None: ...
