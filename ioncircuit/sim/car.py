from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import numpy as np

from ..env.world import RewardEvents

if TYPE_CHECKING:
    from ..config import CarClassConfig


@dataclass
class CarState:
    car_id: str
    spec: CarClassConfig
    pos: np.ndarray  # float64[2], arena units
    vel: np.ndarray  # float64[2], units / s
    heading: float  # radians

    hp: float
    lives: int
    alive: bool = True
    weapon_cooldown: float = 0.0

    # Control inputs for the next tick (set by apply_control / opponent).
    throttle: float = 0.0
    steer: float = 0.0
    fire: bool = False

    # Per-tick one-shot counters, drained by drain_events().
    dealt: float = 0.0
    taken: float = 0.0
    pickups: int = 0
    collisions: int = 0
    destroyed_obstacles: int = 0
    kills: int = 0
    died: bool = False
    wall_bump: bool = False
    reverse_intent: bool = False
    reverse_motion: bool = False
    win: bool = False
    lose: bool = False

    spawn_pos: np.ndarray = field(default_factory=lambda: np.zeros(2, dtype=np.float64))
    spawn_heading: float = 0.0

    @property
    def forward(self) -> np.ndarray:
        return np.array([math.cos(self.heading), math.sin(self.heading)], dtype=np.float64)

    @property
    def speed(self) -> float:
        return float(np.linalg.norm(self.vel))

    @property
    def forward_speed(self) -> float:
        return float(self.vel @ self.forward)

    @property
    def hp_fraction(self) -> float:
        return float(np.clip(self.hp / max(1e-6, self.spec.hp), 0.0, 1.0))

    def drain_events(self) -> RewardEvents:
        events = RewardEvents(
            dealt=self.dealt,
            taken=self.taken,
            pickup=self.pickups,
            collided=self.collisions,
            destroyed_obstacles=self.destroyed_obstacles,
            kills=self.kills,
            died=self.died,
            wall_bump=self.wall_bump,
            reverse_intent=self.reverse_intent,
            reverse_motion=self.reverse_motion,
            win=self.win,
            lose=self.lose,
        )
        self.dealt = 0.0
        self.taken = 0.0
        self.pickups = 0
        self.collisions = 0
        self.destroyed_obstacles = 0
        self.kills = 0
        self.died = False
        self.wall_bump = False
        self.reverse_intent = False
        self.reverse_motion = False
        self.win = False
        self.lose = False
        return events

    def respawn(self) -> None:
        self.pos = self.spawn_pos.copy()
        self.vel = np.zeros(2, dtype=np.float64)
        self.heading = self.spawn_heading
        self.hp = self.spec.hp
        self.weapon_cooldown = 0.0
        self.alive = True

    def reset(self) -> None:
        self.respawn()
        self.lives = self.spec.lives
        self.throttle = 0.0
        self.steer = 0.0
        self.fire = False
        self.drain_events()
