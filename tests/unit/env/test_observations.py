"""Observation layout for both schemas."""

import math

import numpy as np
import pytest

from ioncircuit.config import ObservationSchema
from ioncircuit.constants import LEGACY_OBS_DIM, OBS_DIM
from ioncircuit.env.observations import (
    LEGACY_OBS_FIELDS,
    OBS_FIELDS,
    ObservationContext,
    ObservationContractError,
    build_legacy_observation,
    build_observation,
    validate_observation,
)


def _ctx(**overrides) -> ObservationContext:
    base = dict(
        pos=np.array([100.0, 100.0]),
        vel=np.zeros(2),
        heading=0.0,
        target_pos=np.array([200.0, 100.0]),
        ray_clearance=[1.0, 1.0, 0.5, 1.0, 1.0],
        pickup_pos=None,
        hp_fraction=1.0,
        cooldown_fraction=0.0,
        max_speed=400.0,
        distance_scale=1000.0,
    )
    base.update(overrides)
    return ObservationContext(**base)


def test_field_tables_match_dims():
    assert len(OBS_FIELDS) == ObservationSchema.FULL.dim == OBS_DIM == 16
    assert len(LEGACY_OBS_FIELDS) == ObservationSchema.LEGACY.dim == LEGACY_OBS_DIM == 5
    assert len(set(OBS_FIELDS)) == OBS_DIM


def test_target_dead_ahead():
    obs = build_observation(_ctx())
    assert obs.shape == (16,)
    assert obs[0] == pytest.approx(1.0)
    assert obs[1] == pytest.approx(0.0)
    assert obs[2] == pytest.approx(0.1)


def test_target_to_the_left_gives_positive_sine():
    obs = build_observation(_ctx(target_pos=np.array([100.0, 300.0])))
    assert obs[0] == pytest.approx(0.0, abs=1e-9)
    assert obs[1] == pytest.approx(1.0)


def test_speed_split_into_forward_and_lateral():
    heading = math.pi / 2
    obs = build_observation(_ctx(heading=heading, vel=np.array([100.0, 200.0])))
    assert obs[3] == pytest.approx(0.5)  # along +y
    assert obs[4] == pytest.approx(-0.25)  # +x is to the right when facing +y


def test_velocity_terms_are_clipped():
    obs = build_observation(_ctx(vel=np.array([4000.0, 0.0])))
    assert obs[3] == 1.0


def test_rays_copied_and_clipped():
    obs = build_observation(_ctx(ray_clearance=[0.0, 0.25, 2.0, -1.0, 1.0]))
    np.testing.assert_allclose(obs[5:10], [0.0, 0.25, 1.0, 0.0, 1.0])


def test_wrong_ray_count_is_rejected():
    with pytest.raises(ObservationContractError):
        build_observation(_ctx(ray_clearance=[1.0, 1.0]))


def test_no_pickup_reads_as_far_and_straight_ahead():
    obs = build_observation(_ctx(pickup_pos=None))
    assert tuple(obs[10:13]) == (1.0, 0.0, 1.0)


def test_pickup_behind():
    obs = build_observation(_ctx(pickup_pos=np.array([50.0, 100.0])))
    assert obs[10] == pytest.approx(-1.0)
    assert obs[12] == pytest.approx(0.05)


def test_health_cooldown_and_jitter():
    obs = build_observation(_ctx(hp_fraction=0.4, cooldown_fraction=1.7, jitter=0.003))
    assert obs[13] == pytest.approx(0.4)
    assert obs[14] == 1.0
    assert obs[15] == pytest.approx(0.003)


def test_legacy_observation():
    obs = build_legacy_observation(
        np.array([600.0, 200.0]),
        np.array([200.0, -800.0]),
        0.75,
        width=1200.0,
        height=800.0,
        max_speed=400.0,
    )
    np.testing.assert_allclose(obs, [0.5, 0.25, 0.5, -1.0, 0.75])


def test_validate_accepts_lists_and_returns_float64():
    arr = validate_observation([0] * 16, ObservationSchema.FULL)
    assert arr.dtype == np.float64
    assert arr.shape == (16,)


@pytest.mark.parametrize(
    ("length", "schema"),
    [(15, ObservationSchema.FULL), (17, ObservationSchema.FULL), (16, ObservationSchema.LEGACY), (0, ObservationSchema.LEGACY)],
)
def test_validate_rejects_wrong_length(length, schema):
    with pytest.raises(ObservationContractError):
        validate_observation(np.zeros(length), schema)
