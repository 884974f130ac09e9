from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import numpy as np
import torch

from ..actions import Action
from .model import PolicyFormatError, PolicyNet, load_policy_checkpoint

POLICY_FILE = "policy.pt"
MANIFEST_FILE = "manifest.json"


@dataclass
class PolicyRunner:
    """Runs an installed policy in-process: observation -> Action.

    Usable directly as an ArenaWorld opponent.
    """

    model: PolicyNet
    bundle_path: Path | None = None
    manifest: dict[str, Any] | None = None

    @classmethod
    def load(cls, bundle_path: Path, *, device: str = "cpu") -> PolicyRunner:
        bundle_path = Path(bundle_path)
        # Pin one published version; the slot symlink may be swapped between reads.
        version_dir = bundle_path.resolve()
        policy_file = version_dir / POLICY_FILE
        if not policy_file.is_file():
            raise PolicyFormatError(f"{bundle_path} has no {POLICY_FILE}")
        manifest = None
        manifest_file = version_dir / MANIFEST_FILE
        if manifest_file.is_file():
            manifest = json.loads(manifest_file.read_text(encoding="utf-8"))
        model = load_policy_checkpoint(policy_file.read_bytes(), device=device)
        return cls(model=model, bundle_path=bundle_path, manifest=manifest)

    @property
    def obs_dim(self) -> int:
        return self.model.obs_dim

    def act(self, obs: np.ndarray) -> Action:
        arr = np.asarray(obs, dtype=np.float32).reshape(1, -1)
        if arr.shape[1] != self.model.obs_dim:
            raise ValueError(f"policy expects {self.model.obs_dim} observation fields, got {arr.shape[1]}")
        device = next(self.model.parameters()).device
        out = self.model.act_deterministic(torch.from_numpy(arr).to(device))[0].cpu().numpy()
        # Heads are tanh-bounded already; clamp anyway so a bad export can't escape [-1, 1].
        return Action(throttle=float(out[0]), steer=float(out[1]), fire_value=float(out[2])).clamped()

    def __call__(self, obs: np.ndarray) -> Action:
        return self.act(obs)
