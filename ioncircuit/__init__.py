from .actions import Action, ActionContractError
from .config import ArenaConfig, CarClassConfig, EpisodeConfig, ObservationSchema, WeaponConfig
from .env.episode import EpisodeController, StepResult
from .env.world import RewardEvents, SimulationWorld, Telemetry
from .sim.arena import ArenaWorld

__all__ = [
    "Action",
    "ActionContractError",
    "ArenaConfig",
    "ArenaWorld",
    "CarClassConfig",
    "EpisodeConfig",
    "EpisodeController",
    "ObservationSchema",
    "RewardEvents",
    "SimulationWorld",
    "StepResult",
    "Telemetry",
    "WeaponConfig",
]
