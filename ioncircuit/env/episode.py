"""Per-connection episode state machine.

    AWAITING_FIRST_STEP --step--> STEPPING --step(done)--> DONE --reset--> AWAITING_FIRST_STEP

Every method here touches the world and must run on the simulation loop.
"""

from __future__ import annotations

import weakref
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

import numpy as np

from ..config import EpisodeConfig, ObservationSchema
from .observations import validate_observation
from .rewards import EpisodeSnapshot, RewardComponents, RewardComputer, StepContext

if TYPE_CHECKING:
    from ..actions import Action
    from .world import SimulationWorld


class EpisodePhase(Enum):
    AWAITING_FIRST_STEP = "awaiting_first_step"
    STEPPING = "stepping"
    DONE = "done"


class EpisodeStateError(RuntimeError):
    """step() called in a phase that does not allow it."""


class WorldDetachedError(RuntimeError):
    """The simulation world was torn down while a connection still used it."""


@dataclass
class Episode:
    step_cap: int
    step_count: int = 0
    prev_distance: float = 0.0
    prev_agent_hp: float = 0.0
    prev_target_lives: int = 0
    phase: EpisodePhase = EpisodePhase.AWAITING_FIRST_STEP

    @property
    def done(self) -> bool:
        return self.phase is EpisodePhase.DONE

    def record(self, snap: EpisodeSnapshot) -> None:
        self.prev_agent_hp = snap.agent_hp
        self.prev_target_lives = snap.target_lives
        self.prev_distance = snap.target_distance

    def snapshot(self) -> EpisodeSnapshot:
        return EpisodeSnapshot(
            agent_hp=self.prev_agent_hp,
            target_lives=self.prev_target_lives,
            target_distance=self.prev_distance,
        )


@dataclass
class StepResult:
    obs: np.ndarray
    reward: float
    done: bool
    components: RewardComponents = field(default_factory=RewardComponents)
    # True when the episode ended on the step cap rather than on death.
    truncated: bool = False


class EpisodeController:
    """Drives reset -> step* -> done for one training connection.

    Holds the world through a weak reference so a torn-down scene is not kept
    alive by an idle network connection.
    """

    def __init__(
        self,
        world: SimulationWorld,
        config: EpisodeConfig | None = None,
        rewards: RewardComputer | None = None,
    ):
        self.config = config or EpisodeConfig()
        self.rewards = rewards or RewardComputer()
        self._world_ref = weakref.ref(world)
        self.episode = Episode(step_cap=self.config.step_cap)
        self.episodes_completed = 0
        self._has_reset = False

    def _world(self) -> SimulationWorld:
        world = self._world_ref()
        if world is None:
            raise WorldDetachedError("simulation world is gone")
        return world

    def _observe(self, world: SimulationWorld) -> np.ndarray:
        if self.config.observation_schema is ObservationSchema.LEGACY:
            raw = world.read_legacy_observation()
        else:
            raw = world.read_observation()
        return validate_observation(raw, self.config.observation_schema)

    def reset(self) -> StepResult:
        world = self._world()
        world.reset_episode()
        # Counters raised outside a tick (respawn, teardown) belong to no step.
        world.consume_reward_events()

        self.episode = Episode(step_cap=self.config.step_cap)
        self.episode.record(EpisodeSnapshot.from_telemetry(world.read_telemetry()))
        self._has_reset = True
        return StepResult(obs=self._observe(world), reward=0.0, done=False)

    def step(self, action: Action) -> StepResult:
        action.require_finite()
        if not self._has_reset:
            raise EpisodeStateError("reset() must be called before the first step()")
        if self.episode.done:
            raise EpisodeStateError("episode is done; call reset() before stepping again")

        world = self._world()
        ep = self.episode
        act = action.clamped()

        fire = act.fire and world.should_fire()
        world.apply_control(act.throttle, act.steer, fire)
        world.step_one_tick(self.config.dt)
        ep.step_count += 1

        telemetry = world.read_telemetry()
        events = world.consume_reward_events()
        components = self.rewards.compute(StepContext(prev=ep.snapshot(), telemetry=telemetry, events=events))

        ep.record(EpisodeSnapshot.from_telemetry(telemetry))

        dead = world.is_done()
        capped = ep.step_count >= ep.step_cap
        done = dead or capped
        ep.phase = EpisodePhase.DONE if done else EpisodePhase.STEPPING
        if done:
            self.episodes_completed += 1

        return StepResult(
            obs=self._observe(world),
            reward=components.total(),
            done=done,
            components=components,
            truncated=capped and not dead,
        )
