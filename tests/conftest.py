import threading

import numpy as np
import pytest
import torch

from ioncircuit.config import ArenaConfig
from ioncircuit.env.world import RewardEvents, Telemetry
from ioncircuit.rl.model import PolicyNet, save_policy_bytes
from ioncircuit.sim.arena import ArenaWorld


class ScriptedWorld:
    """SimulationWorld double: tests set telemetry/events by hand."""

    def __init__(self) -> None:
        self.telemetry = Telemetry(
            agent_hp=100.0,
            agent_max_hp=100.0,
            agent_lives=3,
            target_lives=3,
            target_distance=0.5,
            agent_speed=0.0,
            max_speed=400.0,
        )
        self.pending = RewardEvents()
        self.obs = np.zeros(16, dtype=np.float64)
        self.legacy_obs = np.zeros(5, dtype=np.float64)
        self.dead = False
        self.fire_ok = True
        self.controls: list[tuple[float, float, bool]] = []
        self.dts: list[float] = []
        self.resets = 0
        self.threads: set[int] = set()

    def apply_control(self, throttle: float, steer: float, fire: bool) -> None:
        self.threads.add(threading.get_ident())
        self.controls.append((throttle, steer, fire))

    def step_one_tick(self, dt: float) -> None:
        self.threads.add(threading.get_ident())
        self.dts.append(dt)

    def read_observation(self) -> np.ndarray:
        return self.obs.copy()

    def read_legacy_observation(self) -> np.ndarray:
        return self.legacy_obs.copy()

    def read_telemetry(self) -> Telemetry:
        return self.telemetry

    def consume_reward_events(self) -> RewardEvents:
        events, self.pending = self.pending, RewardEvents()
        return events

    def should_fire(self) -> bool:
        return self.fire_ok

    def is_done(self) -> bool:
        return self.dead

    def reset_episode(self) -> None:
        self.threads.add(threading.get_ident())
        self.resets += 1
        self.dead = False


@pytest.fixture
def scripted_world():
    return ScriptedWorld()


@pytest.fixture
def arena():
    """Deterministic arena with a passive target."""
    return ArenaWorld(ArenaConfig(seed=0, obs_jitter=0.0))


@pytest.fixture
def policy_net():
    torch.manual_seed(0)
    return PolicyNet()


@pytest.fixture
def policy_bytes(policy_net):
    """Serialized checkpoint for a small valid 16-in / 3-out policy."""
    return save_policy_bytes(policy_net)
