# ioncircuit/bridge/config.py
"""Bridge configuration, overridable via IONCIRCUIT_* environment variables."""

from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

from ..config import EpisodeConfig, ObservationSchema
from ..constants import DEFAULT_PORT, DEFAULT_POLICY_NAME, DEFAULT_STEP_CAP, LEGACY_PORT, TICK_DT


class Settings(BaseSettings):
    """Training bridge settings."""

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = DEFAULT_PORT

    # Episodes
    STEP_CAP: int = DEFAULT_STEP_CAP
    TICK_DT: float = TICK_DT
    OBSERVATION_SCHEMA: Literal["full", "legacy"] = "full"

    # Protocol
    STEP_TIMEOUT_S: float | None = 30.0  # None waits on the simulation forever
    MAX_LINE_BYTES: int = 64 * 1024 * 1024  # base64 policies travel inline
    READ_CHUNK_BYTES: int = 64 * 1024

    # Policies
    DATA_DIR: Path = Path("data")
    DEFAULT_POLICY_NAME: str = DEFAULT_POLICY_NAME
    POLICY_KEEP_VERSIONS: int = 2

    model_config = SettingsConfigDict(env_prefix="IONCIRCUIT_", env_file=".env", extra="ignore")

    @property
    def policies_dir(self) -> Path:
        return self.DATA_DIR / "Policies"

    @property
    def schema(self) -> ObservationSchema:
        return ObservationSchema(self.OBSERVATION_SCHEMA)

    @property
    def effective_port(self) -> int:
        """Legacy-schema deployments default to the old port unless PORT is set."""
        if self.schema is ObservationSchema.LEGACY and "PORT" not in self.model_fields_set:
            return LEGACY_PORT
        return self.PORT

    def episode_config(self) -> EpisodeConfig:
        return EpisodeConfig(step_cap=self.STEP_CAP, dt=self.TICK_DT, observation_schema=self.schema)
