# ioncircuit/bridge/policies.py
"""Policy artifact installation with staging and atomic publish.

Layout under the policies root:

    Policies/
      <name>.policy -> .versions/<name>-<hex>   (symlink, swapped atomically)
      .versions/<name>-<hex>/policy.pt
      .versions/<name>-<hex>/manifest.json
      .staging-<uuid>/                          (per install, always removed)

Readers open Policies/<name>.policy/... and always land in one complete
version directory: the symlink is replaced with os.replace, never edited.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import json
import logging
import os
import re
import shutil
import threading
import time
import uuid
from dataclasses import dataclass
from pathlib import Path

import torch

from ..constants import DEFAULT_POLICY_NAME, POLICY_BUNDLE_SUFFIX, POLICY_FORMAT
from ..rl.model import PolicyFormatError, load_policy_checkpoint, policy_checkpoint
from ..rl.policy import MANIFEST_FILE, POLICY_FILE

logger = logging.getLogger("ioncircuit.bridge")

_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]{0,127}$")
_VERSION_TAG_RE = re.compile(r"^[0-9a-f]{12}$")
VERSIONS_DIR = ".versions"
STAGING_PREFIX = ".staging-"


class PolicyInstallError(Exception):
    """Install failed; nothing was published."""


@dataclass(frozen=True)
class InstalledPolicy:
    name: str
    path: Path  # published path (stable across installs)
    version_path: Path
    sha256: str
    size_bytes: int


def _now_iso() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


class PolicyInstaller:
    def __init__(self, root: Path, *, keep_versions: int = 2, default_name: str = DEFAULT_POLICY_NAME):
        self.root = Path(root)
        self.keep_versions = max(1, int(keep_versions))
        self.default_name = default_name
        # Held only for the publish/prune critical section; staging and
        # validation of concurrent installs proceed in parallel.
        self._publish_lock = threading.Lock()

    @property
    def versions_root(self) -> Path:
        return self.root / VERSIONS_DIR

    def check_name(self, name: str | None) -> str:
        name = self.default_name if name is None else name
        if not _NAME_RE.match(name):
            raise PolicyInstallError(f"invalid policy name {name!r}")
        return name

    def published_path(self, name: str) -> Path:
        return self.root / f"{name}{POLICY_BUNDLE_SUFFIX}"

    def resolve(self, name: str) -> Path | None:
        """Published bundle path for name, or None if never installed."""
        path = self.published_path(self.check_name(name))
        return path if path.exists() else None

    def install_b64(self, data_b64: str | None, name: str | None = None) -> InstalledPolicy:
        if data_b64 is None:
            raise PolicyInstallError("missing data_b64 payload")
        try:
            raw = base64.b64decode(data_b64, validate=True)
        except (binascii.Error, ValueError) as e:
            raise PolicyInstallError(f"bad base64 payload: {e}") from e
        return self.install(raw, name)

    def install(self, data: bytes, name: str | None = None) -> InstalledPolicy:
        name = self.check_name(name)
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            self.versions_root.mkdir(exist_ok=True)
            stage = self.root / f"{STAGING_PREFIX}{uuid.uuid4().hex}"
            stage.mkdir()
        except OSError as e:
            raise PolicyInstallError(f"cannot prepare staging area: {e}") from e

        try:
            raw_path = stage / f"{name}.pt"
            raw_path.write_bytes(data)
            bundle = self._compile(raw_path, stage / f"{name}{POLICY_BUNDLE_SUFFIX}", name)
            return self._publish(name, bundle)
        except OSError as e:
            raise PolicyInstallError(f"filesystem error installing {name}: {e}") from e
        finally:
            shutil.rmtree(stage, ignore_errors=True)

    def _compile(self, raw_path: Path, bundle: Path, name: str) -> Path:
        """Validate raw bytes and lay out a deployable bundle inside staging."""
        data = raw_path.read_bytes()
        try:
            model = load_policy_checkpoint(data)
        except PolicyFormatError as e:
            raise PolicyInstallError(f"invalid policy artifact: {e}") from e
        except Exception as e:
            raise PolicyInstallError(f"policy artifact could not be loaded: {type(e).__name__}: {e}") from e

        bundle.mkdir()
        torch.save(policy_checkpoint(model), bundle / POLICY_FILE)
        manifest = {
            "name": name,
            "format": POLICY_FORMAT,
            "obs_dim": model.obs_dim,
            "action_dim": model.action_dim,
            "hidden_dim": model.hidden_dim,
            "sha256": hashlib.sha256(data).hexdigest(),
            "size_bytes": len(data),
            "installed_at": _now_iso(),
        }
        (bundle / MANIFEST_FILE).write_text(json.dumps(manifest, indent=2), encoding="utf-8")
        return bundle

    def _publish(self, name: str, bundle: Path) -> InstalledPolicy:
        dest = self.published_path(name)
        manifest = json.loads((bundle / MANIFEST_FILE).read_text(encoding="utf-8"))

        with self._publish_lock:
            if dest.exists() and not dest.is_symlink():
                raise PolicyInstallError(f"{dest} exists and is not a managed policy slot")

            version = self.versions_root / f"{name}-{uuid.uuid4().hex[:12]}"
            os.replace(bundle, version)
            link_tmp = self.root / f".link-{uuid.uuid4().hex}"
            try:
                os.symlink(os.path.relpath(version, self.root), link_tmp, target_is_directory=True)
                os.replace(link_tmp, dest)
            except OSError:
                link_tmp.unlink(missing_ok=True)
                shutil.rmtree(version, ignore_errors=True)
                raise
            self._prune(name, current=version)

        logger.info(f"Saved/updated policy {name} -> {dest}")
        return InstalledPolicy(
            name=name,
            path=dest,
            version_path=version,
            sha256=manifest["sha256"],
            size_bytes=int(manifest["size_bytes"]),
        )

    def _prune(self, name: str, *, current: Path) -> None:
        versions = [
            p for p in self.versions_root.glob(f"{name}-*") if p.is_dir() and _VERSION_TAG_RE.match(p.name[len(name) + 1 :])
        ]
        versions.sort(key=lambda p: p.stat().st_mtime_ns, reverse=True)
        keep = {current}
        for p in versions:
            if len(keep) >= self.keep_versions:
                break
            keep.add(p)
        for p in versions:
            if p not in keep:
                shutil.rmtree(p, ignore_errors=True)
                logger.debug(f"Pruned old policy version {p.name}")
