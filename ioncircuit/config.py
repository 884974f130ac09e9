from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from .constants import DEFAULT_STEP_CAP, LEGACY_OBS_DIM, OBS_DIM, TICK_DT


class ObservationSchema(str, Enum):
    FULL = "full"
    LEGACY = "legacy"

    @property
    def dim(self) -> int:
        return OBS_DIM if self is ObservationSchema.FULL else LEGACY_OBS_DIM


@dataclass(frozen=True)
class EpisodeConfig:
    step_cap: int = DEFAULT_STEP_CAP
    dt: float = TICK_DT
    observation_schema: ObservationSchema = ObservationSchema.FULL

    def __post_init__(self) -> None:
        if self.step_cap <= 0:
            raise ValueError(f"step_cap must be positive, got {self.step_cap}")
        if not self.dt > 0.0:
            raise ValueError(f"dt must be positive, got {self.dt}")


@dataclass(frozen=True)
class CarClassConfig:
    name: str = "interceptor"
    radius: float = 20.0
    max_speed: float = 400.0  # units / s
    accel: float = 600.0  # units / s^2 at full throttle
    reverse_speed_factor: float = 0.55  # reverse cap as a fraction of max_speed
    turn_rate: float = 3.0  # rad / s at full steer
    drag: float = 1.2  # fraction of velocity shed per second
    traction: float = 6.0  # lateral damping per second
    hp: float = 100.0
    lives: int = 3


@dataclass(frozen=True)
class WeaponConfig:
    range: float = 500.0
    arc_deg: float = 20.0  # hit cone (full width)
    damage: float = 10.0
    cooldown_s: float = 0.3
    # Tactical gate: only fire when the target sits inside this cone.
    fire_cone_deg: float = 12.0


@dataclass(frozen=True)
class ArenaConfig:
    width: float = 1200.0
    height: float = 800.0
    car: CarClassConfig = field(default_factory=CarClassConfig)
    weapon: WeaponConfig = field(default_factory=WeaponConfig)
    num_pickups: int = 3
    pickup_radius: float = 18.0
    pickup_heal: float = 25.0
    num_obstacles: int = 4
    obstacle_radius: float = 40.0
    obstacle_hp: float = 30.0
    ray_length: float = 600.0
    ray_angles_deg: tuple[float, ...] = (-60.0, -30.0, 0.0, 30.0, 60.0)
    obs_jitter: float = 0.01
    seed: int | None = None

    @property
    def diagonal(self) -> float:
        return float((self.width**2 + self.height**2) ** 0.5)
