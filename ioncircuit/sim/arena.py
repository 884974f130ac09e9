"""Reference 2D arena implementing the SimulationWorld contract.

Two kinematic cars (agent and target) in a walled rectangle with destructible
round obstacles and healing pickups. The weapon is hitscan. Lives persist
across episodes until one side runs out, which decides the match.
"""

from __future__ import annotations

import math
from collections.abc import Callable
from dataclasses import dataclass

import numpy as np

from ..actions import Action
from ..config import ArenaConfig
from ..constants import REVERSE_INTENT_THRESHOLD
from ..env.observations import ObservationContext, build_legacy_observation, build_observation
from ..env.world import RewardEvents, Telemetry
from .car import CarState

# Backward speed (units/s) that counts as actually rolling in reverse.
REVERSE_MOTION_SPEED = 5.0

# Obstacle centres as fractions of (width, height); kept off the spawn line.
_OBSTACLE_LAYOUT: tuple[tuple[float, float], ...] = (
    (0.5, 0.2),
    (0.5, 0.8),
    (0.15, 0.15),
    (0.85, 0.85),
    (0.15, 0.85),
    (0.85, 0.15),
)

OpponentPolicy = Callable[[np.ndarray], Action]


def _wrap_pi(angle: float) -> float:
    return (angle + math.pi) % (2 * math.pi) - math.pi


@dataclass
class Obstacle:
    pos: np.ndarray
    radius: float
    hp: float
    alive: bool = True


class ArenaWorld:
    """Headless arena world. Not thread-safe: drive it from one thread."""

    def __init__(self, config: ArenaConfig | None = None, opponent: OpponentPolicy | None = None):
        self.config = config or ArenaConfig()
        self.opponent = opponent
        self.rng = np.random.default_rng(self.config.seed)
        self.tick = 0

        cfg = self.config
        self.agent = self._make_car("agent", (0.25 * cfg.width, 0.5 * cfg.height), 0.0)
        self.target = self._make_car("target", (0.75 * cfg.width, 0.5 * cfg.height), math.pi)
        self.obstacles: list[Obstacle] = []
        self.pickups: list[np.ndarray] = []
        self._full_reset()

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def _make_car(self, car_id: str, spawn: tuple[float, float], heading: float) -> CarState:
        spec = self.config.car
        pos = np.asarray(spawn, dtype=np.float64)
        return CarState(
            car_id=car_id,
            spec=spec,
            pos=pos.copy(),
            vel=np.zeros(2, dtype=np.float64),
            heading=heading,
            hp=spec.hp,
            lives=spec.lives,
            spawn_pos=pos.copy(),
            spawn_heading=heading,
        )

    def _layout_obstacles(self) -> None:
        cfg = self.config
        self.obstacles = [
            Obstacle(
                pos=np.array([fx * cfg.width, fy * cfg.height], dtype=np.float64),
                radius=cfg.obstacle_radius,
                hp=cfg.obstacle_hp,
            )
            for fx, fy in _OBSTACLE_LAYOUT[: cfg.num_obstacles]
        ]

    def _is_free(self, p: np.ndarray, clearance: float) -> bool:
        for o in self.obstacles:
            if o.alive and np.linalg.norm(p - o.pos) < o.radius + clearance:
                return False
        for car in (self.agent, self.target):
            if np.linalg.norm(p - car.spawn_pos) < car.spec.radius + clearance:
                return False
        return True

    def _sample_free_point(self) -> np.ndarray:
        cfg = self.config
        margin = cfg.pickup_radius + cfg.car.radius
        p = np.array([cfg.width * 0.5, cfg.height * 0.5])
        for _ in range(64):
            p = np.array(
                [
                    self.rng.uniform(margin, cfg.width - margin),
                    self.rng.uniform(margin, cfg.height - margin),
                ]
            )
            if self._is_free(p, margin):
                break
        return p

    def _full_reset(self) -> None:
        self.agent.reset()
        self.target.reset()
        self._layout_obstacles()
        self.pickups = [self._sample_free_point() for _ in range(self.config.num_pickups)]
        self.tick = 0

    # ------------------------------------------------------------------
    # SimulationWorld
    # ------------------------------------------------------------------

    def apply_control(self, throttle: float, steer: float, fire: bool) -> None:
        self.agent.throttle = float(throttle)
        self.agent.steer = float(steer)
        self.agent.fire = bool(fire)

    def step_one_tick(self, dt: float) -> None:
        if self.opponent is not None and self.target.alive:
            act = self.opponent(self.observation_for(self.target, self.agent)).clamped()
            self.target.throttle, self.target.steer, self.target.fire = act.throttle, act.steer, act.fire

        for car in (self.agent, self.target):
            if car.alive:
                self._drive(car, dt)
                self._resolve_walls(car)
                self._resolve_obstacles(car)
                self._collect_pickups(car)

        self._fire(self.agent, self.target, dt)
        self._fire(self.target, self.agent, dt)
        self.tick += 1

    def read_observation(self) -> np.ndarray:
        return self.observation_for(self.agent, self.target)

    def read_legacy_observation(self) -> np.ndarray:
        cfg = self.config
        return build_legacy_observation(
            self.agent.pos,
            self.agent.vel,
            self.agent.hp_fraction,
            width=cfg.width,
            height=cfg.height,
            max_speed=cfg.car.max_speed,
        )

    def read_telemetry(self) -> Telemetry:
        dist = float(np.linalg.norm(self.target.pos - self.agent.pos))
        return Telemetry(
            agent_hp=self.agent.hp,
            agent_max_hp=self.agent.spec.hp,
            agent_lives=self.agent.lives,
            target_lives=self.target.lives,
            target_distance=min(1.0, dist / self.config.diagonal),
            agent_speed=self.agent.speed,
            max_speed=self.agent.spec.max_speed,
        )

    def consume_reward_events(self) -> RewardEvents:
        return self.agent.drain_events()

    def should_fire(self) -> bool:
        return self._has_shot(self.agent, self.target, self.config.weapon.fire_cone_deg)

    def is_done(self) -> bool:
        return not self.agent.alive or self.target.lives <= 0

    def reset_episode(self) -> None:
        if self.agent.lives <= 0 or self.target.lives <= 0:
            self._full_reset()
            return
        # Match still open: respawn both cars, keep lives.
        self.agent.respawn()
        self.target.respawn()
        self._layout_obstacles()
        self.pickups = [self._sample_free_point() for _ in range(self.config.num_pickups)]

    # ------------------------------------------------------------------
    # Observation helpers
    # ------------------------------------------------------------------

    def observation_for(self, car: CarState, other: CarState) -> np.ndarray:
        cfg = self.config
        rays = [
            min(self.cast(car.pos, car.heading + math.radians(a), cfg.ray_length)[0], cfg.ray_length)
            / cfg.ray_length
            for a in cfg.ray_angles_deg
        ]
        jitter = float(self.rng.uniform(-cfg.obs_jitter, cfg.obs_jitter)) if cfg.obs_jitter > 0.0 else 0.0
        return build_observation(
            ObservationContext(
                pos=car.pos,
                vel=car.vel,
                heading=car.heading,
                target_pos=other.pos,
                ray_clearance=rays,
                pickup_pos=self.nearest_pickup(car.pos),
                hp_fraction=car.hp_fraction,
                cooldown_fraction=car.weapon_cooldown / max(1e-6, cfg.weapon.cooldown_s),
                max_speed=car.spec.max_speed,
                distance_scale=cfg.diagonal,
                jitter=jitter,
            )
        )

    def nearest_pickup(self, pos: np.ndarray) -> np.ndarray | None:
        if not self.pickups:
            return None
        return min(self.pickups, key=lambda p: float(np.linalg.norm(p - pos)))

    def cast(self, origin: np.ndarray, angle: float, max_len: float) -> tuple[float, Obstacle | None]:
        """Distance along a ray to the first wall or live obstacle."""
        cfg = self.config
        d = np.array([math.cos(angle), math.sin(angle)])
        best = max_len
        hit: Obstacle | None = None

        for axis, limit in ((0, cfg.width), (1, cfg.height)):
            if d[axis] > 1e-9:
                best = min(best, (limit - origin[axis]) / d[axis])
            elif d[axis] < -1e-9:
                best = min(best, -origin[axis] / d[axis])

        for o in self.obstacles:
            if not o.alive:
                continue
            m = origin - o.pos
            b = float(m @ d)
            c = float(m @ m) - o.radius**2
            if c > 0.0 and b > 0.0:
                continue
            disc = b * b - c
            if disc < 0.0:
                continue
            t = max(0.0, -b - math.sqrt(disc))
            if t < best:
                best, hit = t, o
        return max(0.0, best), hit

    # ------------------------------------------------------------------
    # Physics
    # ------------------------------------------------------------------

    def _drive(self, car: CarState, dt: float) -> None:
        spec = car.spec
        car.heading = _wrap_pi(car.heading + car.steer * spec.turn_rate * dt)
        fwd = car.forward
        lat = np.array([-fwd[1], fwd[0]])

        v_fwd = float(car.vel @ fwd) + car.throttle * spec.accel * dt
        v_lat = float(car.vel @ lat)
        v_fwd *= max(0.0, 1.0 - spec.drag * dt)
        v_lat *= max(0.0, 1.0 - spec.traction * dt)
        v_fwd = float(np.clip(v_fwd, -spec.max_speed * spec.reverse_speed_factor, spec.max_speed))

        car.vel = fwd * v_fwd + lat * v_lat
        car.pos = car.pos + car.vel * dt

        if car.throttle < REVERSE_INTENT_THRESHOLD:
            car.reverse_intent = True
        if v_fwd < -REVERSE_MOTION_SPEED:
            car.reverse_motion = True

    def _resolve_walls(self, car: CarState) -> None:
        r = car.spec.radius
        for axis, limit in ((0, self.config.width), (1, self.config.height)):
            if car.pos[axis] < r:
                car.pos[axis] = r
                car.vel[axis] = max(0.0, car.vel[axis])
                car.wall_bump = True
            elif car.pos[axis] > limit - r:
                car.pos[axis] = limit - r
                car.vel[axis] = min(0.0, car.vel[axis])
                car.wall_bump = True

    def _resolve_obstacles(self, car: CarState) -> None:
        for o in self.obstacles:
            if not o.alive:
                continue
            delta = car.pos - o.pos
            dist = float(np.linalg.norm(delta))
            min_dist = car.spec.radius + o.radius
            if dist >= min_dist:
                continue
            n = delta / dist if dist > 1e-9 else -car.forward
            car.pos = o.pos + n * min_dist
            vn = float(car.vel @ n)
            if vn < 0.0:
                car.vel = car.vel - n * vn
            car.collisions += 1

    def _collect_pickups(self, car: CarState) -> None:
        reach = car.spec.radius + self.config.pickup_radius
        for i, p in enumerate(self.pickups):
            if np.linalg.norm(car.pos - p) < reach:
                car.hp = min(car.spec.hp, car.hp + self.config.pickup_heal)
                car.pickups += 1
                self.pickups[i] = self._sample_free_point()

    # ------------------------------------------------------------------
    # Combat
    # ------------------------------------------------------------------

    def _has_shot(self, shooter: CarState, victim: CarState, cone_deg: float) -> bool:
        if not (shooter.alive and victim.alive):
            return False
        rel = victim.pos - shooter.pos
        dist = float(np.linalg.norm(rel))
        if dist > self.config.weapon.range:
            return False
        bearing = _wrap_pi(math.atan2(rel[1], rel[0]) - shooter.heading)
        if abs(bearing) > math.radians(cone_deg) * 0.5:
            return False
        blocked_at, _ = self.cast(shooter.pos, math.atan2(rel[1], rel[0]), dist)
        return blocked_at >= dist - 1e-6

    def _fire(self, shooter: CarState, victim: CarState, dt: float) -> None:
        if not shooter.alive:
            return
        weapon = self.config.weapon
        shooter.weapon_cooldown = max(0.0, shooter.weapon_cooldown - dt)
        if not shooter.fire or shooter.weapon_cooldown > 0.0:
            return
        shooter.weapon_cooldown = weapon.cooldown_s

        if self._has_shot(shooter, victim, weapon.arc_deg):
            self._damage(shooter, victim, weapon.damage)
            return

        _, obstacle = self.cast(shooter.pos, shooter.heading, weapon.range)
        if obstacle is not None:
            obstacle.hp -= weapon.damage
            if obstacle.hp <= 0.0:
                obstacle.alive = False
                shooter.destroyed_obstacles += 1

    def _damage(self, shooter: CarState, victim: CarState, amount: float) -> None:
        victim.hp = max(0.0, victim.hp - amount)
        victim.taken += amount
        shooter.dealt += amount
        if victim.hp > 0.0:
            return

        victim.lives -= 1
        victim.died = True
        shooter.kills += 1
        if victim.lives <= 0:
            victim.alive = False
            victim.lose = True
            shooter.win = True
        elif victim is self.agent:
            # The agent stays down until the episode resets.
            victim.alive = False
        else:
            victim.respawn()
