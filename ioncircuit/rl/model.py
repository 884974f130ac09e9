from __future__ import annotations

import io
from pathlib import Path
from typing import Any, BinaryIO

import torch
from torch import nn

from ..constants import ACTION_DIM, LEGACY_OBS_DIM, OBS_DIM

ACCEPTED_OBS_DIMS = (OBS_DIM, LEGACY_OBS_DIM)
MAX_HIDDEN_DIM = 4096


class PolicyFormatError(ValueError):
    """Bytes are not a loadable policy checkpoint."""


class PolicyNet(nn.Module):
    def __init__(self, obs_dim: int = OBS_DIM, action_dim: int = ACTION_DIM, hidden_dim: int = 64):
        super().__init__()
        self.obs_dim = int(obs_dim)
        self.action_dim = int(action_dim)
        self.hidden_dim = int(hidden_dim)

        self.encoder = nn.Sequential(
            nn.Linear(self.obs_dim, self.hidden_dim),
            nn.Tanh(),
            nn.Linear(self.hidden_dim, self.hidden_dim),
            nn.Tanh(),
        )
        self.actor_mean = nn.Linear(self.hidden_dim, self.action_dim)
        self.actor_logstd = nn.Parameter(torch.zeros(self.action_dim))
        self.critic = nn.Linear(self.hidden_dim, 1)

        # Small init helps keep early actions mild.
        nn.init.orthogonal_(self.actor_mean.weight, gain=0.01)
        nn.init.zeros_(self.actor_mean.bias)
        nn.init.orthogonal_(self.critic.weight, gain=1.0)
        nn.init.zeros_(self.critic.bias)

    def forward(self, obs: torch.Tensor) -> tuple[torch.Tensor, torch.Tensor]:
        """obs: [batch, obs_dim] -> (pre-tanh action mean, value)"""
        x = self.encoder(obs.float())
        return self.actor_mean(x), self.critic(x).squeeze(-1)

    @torch.no_grad()
    def act_deterministic(self, obs: torch.Tensor) -> torch.Tensor:
        mean, _ = self(obs)
        return torch.tanh(mean)


def policy_checkpoint(model: PolicyNet) -> dict[str, Any]:
    return {
        "model_state": model.state_dict(),
        "obs_dim": model.obs_dim,
        "action_dim": model.action_dim,
        "hidden_dim": model.hidden_dim,
    }


def save_policy_bytes(model: PolicyNet) -> bytes:
    buf = io.BytesIO()
    torch.save(policy_checkpoint(model), buf)
    return buf.getvalue()


def load_policy_checkpoint(source: Path | bytes | BinaryIO, *, device: str | torch.device = "cpu") -> PolicyNet:
    """Rebuild a PolicyNet from checkpoint bytes and prove it runs.

    Raises PolicyFormatError for anything that is not a well-formed policy of
    a supported shape.
    """
    if isinstance(source, bytes):
        source = io.BytesIO(source)
    try:
        ckpt = torch.load(source, map_location=device, weights_only=True)
    except Exception as e:
        raise PolicyFormatError(f"not a torch checkpoint: {e}") from e

    if not isinstance(ckpt, dict) or "model_state" not in ckpt:
        raise PolicyFormatError("checkpoint has no model_state")
    try:
        obs_dim = int(ckpt["obs_dim"])
        action_dim = int(ckpt["action_dim"])
        hidden_dim = int(ckpt.get("hidden_dim", 64))
    except (KeyError, TypeError, ValueError) as e:
        raise PolicyFormatError(f"checkpoint dimensions missing or invalid: {e}") from e

    if obs_dim not in ACCEPTED_OBS_DIMS:
        raise PolicyFormatError(f"obs_dim must be one of {ACCEPTED_OBS_DIMS}, got {obs_dim}")
    if action_dim != ACTION_DIM:
        raise PolicyFormatError(f"action_dim must be {ACTION_DIM}, got {action_dim}")
    if not 0 < hidden_dim <= MAX_HIDDEN_DIM:
        raise PolicyFormatError(f"hidden_dim must be in 1..{MAX_HIDDEN_DIM}, got {hidden_dim}")

    try:
        model = PolicyNet(obs_dim=obs_dim, action_dim=action_dim, hidden_dim=hidden_dim).to(device)
        model.load_state_dict(ckpt["model_state"], strict=True)
    except (RuntimeError, TypeError, AttributeError, MemoryError) as e:
        raise PolicyFormatError(f"model_state does not match network: {e}") from e
    model.eval()

    try:
        out = model.act_deterministic(torch.zeros(1, obs_dim, device=device))
    except RuntimeError as e:
        raise PolicyFormatError(f"policy failed a dry run: {e}") from e
    if out.shape != (1, action_dim) or not bool(torch.isfinite(out).all()):
        raise PolicyFormatError("policy produced non-finite output on a zero observation")
    return model
