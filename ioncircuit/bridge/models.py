# ioncircuit/bridge/models.py
"""Pydantic models for the newline-delimited JSON wire protocol."""

from __future__ import annotations

import json
from typing import Literal

from pydantic import BaseModel, ConfigDict, ValidationError

from ..actions import Action
from ..env.episode import StepResult


class StepMessage(BaseModel):
    """Client -> server: one action for one tick."""

    model_config = ConfigDict(strict=True)

    a: list[float]

    def action(self) -> Action:
        return Action.from_values(self.a)


class SavePolicyMessage(BaseModel):
    """Client -> server: install a base64-encoded policy artifact."""

    cmd: Literal["save_policy"]
    name: str | None = None
    data_b64: str | None = None


class StepResponse(BaseModel):
    """Server -> client: observation after a tick (or a reset)."""

    obs: list[float]
    reward: float
    done: bool

    @classmethod
    def from_result(cls, result: StepResult) -> StepResponse:
        return cls(obs=[float(v) for v in result.obs], reward=float(result.reward), done=result.done)


class LegacyStepResponse(BaseModel):
    """Short-key response used with the 5-field legacy observation schema."""

    o: list[float]
    r: float
    d: bool

    @classmethod
    def from_result(cls, result: StepResult) -> LegacyStepResponse:
        return cls(o=[float(v) for v in result.obs], r=float(result.reward), d=result.done)


class PolicyAck(BaseModel):
    """Server -> client: outcome of a save_policy request."""

    ok: bool
    saved_path: str | None = None
    error: str | None = None


ClientMessage = StepMessage | SavePolicyMessage


def decode_message(line: bytes | str) -> ClientMessage | None:
    """Decode one wire line, or None if it matches neither client schema."""
    try:
        payload = json.loads(line)
    except (UnicodeDecodeError, ValueError):
        return None
    if not isinstance(payload, dict):
        return None

    if payload.get("cmd") == "save_policy":
        try:
            return SavePolicyMessage.model_validate(payload)
        except ValidationError:
            return None
    try:
        return StepMessage.model_validate(payload)
    except ValidationError:
        return None
