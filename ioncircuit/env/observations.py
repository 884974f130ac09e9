"""Observation contract between the simulation and the training client.

Two schemas exist and they are NOT interchangeable:

- full (16 fields): the combat agent. Field order is given by OBS_FIELDS.
- legacy (5 fields): the secondary agent type, position/velocity/health only.

Builders here are pure functions over plain values so any world
implementation can reuse them and the layout can be tested in isolation.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np

from ..config import ObservationSchema
from ..constants import OBS_DIM

OBS_FIELDS: tuple[str, ...] = (
    "heading_err_cos",
    "heading_err_sin",
    "target_distance",
    "forward_speed",
    "lateral_speed",
    "ray_clearance_m60",
    "ray_clearance_m30",
    "ray_clearance_0",
    "ray_clearance_p30",
    "ray_clearance_p60",
    "pickup_bearing_cos",
    "pickup_bearing_sin",
    "pickup_distance",
    "health",
    "weapon_cooldown",
    "jitter",
)

LEGACY_OBS_FIELDS: tuple[str, ...] = ("x", "y", "vx", "vy", "health")

NUM_RAYS = 5


class ObservationContractError(ValueError):
    """World produced an observation that violates the wire contract."""


def _wrap_pi(angle: float) -> float:
    """Wrap angle to [-pi, pi]."""
    return (angle + math.pi) % (2 * math.pi) - math.pi


def _bearing(heading: float, origin: np.ndarray, point: np.ndarray) -> float:
    delta = point - origin
    return _wrap_pi(math.atan2(float(delta[1]), float(delta[0])) - heading)


@dataclass
class ObservationContext:
    """Everything needed to build one full observation for a single car."""

    pos: np.ndarray  # float64[2]
    vel: np.ndarray  # float64[2]
    heading: float  # radians
    target_pos: np.ndarray
    ray_clearance: Sequence[float]  # NUM_RAYS fractions in [0, 1]
    pickup_pos: np.ndarray | None
    hp_fraction: float
    cooldown_fraction: float
    max_speed: float
    distance_scale: float  # arena diagonal
    jitter: float = 0.0


def build_observation(ctx: ObservationContext) -> np.ndarray:
    if len(ctx.ray_clearance) != NUM_RAYS:
        raise ObservationContractError(f"expected {NUM_RAYS} ray clearances, got {len(ctx.ray_clearance)}")

    obs = np.zeros(OBS_DIM, dtype=np.float64)
    scale = max(1e-6, ctx.distance_scale)
    vmax = max(1e-6, ctx.max_speed)

    err = _bearing(ctx.heading, ctx.pos, ctx.target_pos)
    obs[0] = math.cos(err)
    obs[1] = math.sin(err)
    obs[2] = min(1.0, float(np.linalg.norm(ctx.target_pos - ctx.pos)) / scale)

    fwd = np.array([math.cos(ctx.heading), math.sin(ctx.heading)])
    lat = np.array([-fwd[1], fwd[0]])
    obs[3] = np.clip(float(ctx.vel @ fwd) / vmax, -1.0, 1.0)
    obs[4] = np.clip(float(ctx.vel @ lat) / vmax, -1.0, 1.0)

    obs[5:10] = np.clip(np.asarray(ctx.ray_clearance, dtype=np.float64), 0.0, 1.0)

    if ctx.pickup_pos is None:
        # No pickup on the field: straight ahead, as far away as possible.
        obs[10], obs[11], obs[12] = 1.0, 0.0, 1.0
    else:
        b = _bearing(ctx.heading, ctx.pos, ctx.pickup_pos)
        obs[10] = math.cos(b)
        obs[11] = math.sin(b)
        obs[12] = min(1.0, float(np.linalg.norm(ctx.pickup_pos - ctx.pos)) / scale)

    obs[13] = np.clip(ctx.hp_fraction, 0.0, 1.0)
    obs[14] = np.clip(ctx.cooldown_fraction, 0.0, 1.0)
    obs[15] = ctx.jitter
    return obs


def build_legacy_observation(
    pos: np.ndarray,
    vel: np.ndarray,
    hp_fraction: float,
    *,
    width: float,
    height: float,
    max_speed: float,
) -> np.ndarray:
    vmax = max(1e-6, max_speed)
    return np.array(
        [
            float(pos[0]) / max(1e-6, width),
            float(pos[1]) / max(1e-6, height),
            float(np.clip(vel[0] / vmax, -1.0, 1.0)),
            float(np.clip(vel[1] / vmax, -1.0, 1.0)),
            float(np.clip(hp_fraction, 0.0, 1.0)),
        ],
        dtype=np.float64,
    )


def validate_observation(obs: Sequence[float] | np.ndarray, schema: ObservationSchema) -> np.ndarray:
    """Coerce to float64[dim] or raise if the world broke the contract."""
    arr = np.asarray(obs, dtype=np.float64).reshape(-1)
    if arr.shape[0] != schema.dim:
        raise ObservationContractError(
            f"{schema.value} observation must have {schema.dim} fields, got {arr.shape[0]}"
        )
    return arr
