"""Reward computation for the training bridge.

The whole per-tick formula lives here so it can be audited in one place:

- RewardWeights: every constant of the formula
- StepContext: previous snapshot + current telemetry + drained one-shot events
- RewardComputer: stateless evaluation into a RewardComponents breakdown

One-shot terms (wall bump, kill events, win/lose, ...) come only from the
RewardEvents drained for this tick. Continuous terms (speed, HP lost,
lives lost) are recomputed from the snapshot pair and never accumulated.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields

from .world import RewardEvents, Telemetry


@dataclass
class RewardWeights:
    """Weights for reward components.

    Defaults reproduce the shipped game: 0.001 alive bonus, speed normalized by
    max speed (400 in the game), 0.20 per HP lost, 5.0 per opponent life, -3.0
    on death.
    """

    alive: float = 0.001
    speed: float = 1.0

    damage_taken: float = 0.20  # per HP lost (applied as a penalty)
    damage_dealt: float = 0.05  # per HP inflicted
    kill: float = 5.0  # per opponent life lost
    death: float = -3.0

    wall_bump: float = -0.05
    collision: float = -0.02  # per non-wall contact
    pickup: float = 0.25
    obstacle: float = 0.1  # per destroyed obstacle

    # Intent: client asked for reverse. Motion: car actually rolls backward.
    reverse_intent: float = -0.02
    reverse_motion: float = -0.005

    win: float = 10.0
    lose: float = -10.0
    # (min hp fraction, bonus), checked top down; first match wins.
    win_hp_tiers: tuple[tuple[float, float], ...] = field(
        default_factory=lambda: ((0.75, 3.0), (0.5, 2.0), (0.25, 1.0))
    )


def hp_tier_bonus(hp_fraction: float, tiers: tuple[tuple[float, float], ...]) -> float:
    for threshold, bonus in tiers:
        if hp_fraction >= threshold:
            return bonus
    return 0.0


@dataclass(frozen=True)
class EpisodeSnapshot:
    """Baselines captured at reset and refreshed after every tick."""

    agent_hp: float
    target_lives: int
    target_distance: float

    @classmethod
    def from_telemetry(cls, t: Telemetry) -> EpisodeSnapshot:
        return cls(agent_hp=t.agent_hp, target_lives=t.target_lives, target_distance=t.target_distance)


@dataclass(frozen=True)
class StepContext:
    prev: EpisodeSnapshot
    telemetry: Telemetry
    events: RewardEvents


@dataclass
class RewardComponents:
    """Breakdown of reward into components for debugging/analysis."""

    alive: float = 0.0
    speed: float = 0.0
    damage_taken: float = 0.0
    damage_dealt: float = 0.0
    kill: float = 0.0
    death: float = 0.0
    wall_bump: float = 0.0
    collision: float = 0.0
    pickup: float = 0.0
    obstacle: float = 0.0
    reverse: float = 0.0
    terminal: float = 0.0  # win / lose

    def total(self) -> float:
        return float(sum(getattr(self, f.name) for f in fields(self)))

    def to_dict(self) -> dict[str, float]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


class RewardComputer:
    """Stateless reward computation from step context."""

    def __init__(self, weights: RewardWeights | None = None):
        self.weights = weights or RewardWeights()

    def compute(self, ctx: StepContext) -> RewardComponents:
        w = self.weights
        t = ctx.telemetry
        ev = ctx.events
        comp = RewardComponents()

        comp.alive = w.alive
        if t.max_speed > 0.0:
            comp.speed = w.speed * t.agent_speed / t.max_speed

        comp.damage_taken = -w.damage_taken * max(0.0, ctx.prev.agent_hp - t.agent_hp)
        comp.damage_dealt = w.damage_dealt * max(0.0, ev.dealt)
        comp.kill = w.kill * max(0, ctx.prev.target_lives - t.target_lives)
        if ev.died:
            comp.death = w.death

        if ev.wall_bump:
            comp.wall_bump = w.wall_bump
        comp.collision = w.collision * ev.collided
        comp.pickup = w.pickup * ev.pickup
        comp.obstacle = w.obstacle * ev.destroyed_obstacles

        if ev.reverse_intent:
            comp.reverse += w.reverse_intent
        if ev.reverse_motion:
            comp.reverse += w.reverse_motion

        if ev.win:
            comp.terminal += w.win + hp_tier_bonus(t.hp_fraction, w.win_hp_tiers)
        if ev.lose:
            comp.terminal += w.lose

        return comp
