# ioncircuit/bridge/__init__.py
"""IonCircuit training bridge - TCP step server and policy installer for an external RL trainer."""

from __future__ import annotations

import logging

from .config import Settings
from .policies import InstalledPolicy, PolicyInstaller, PolicyInstallError
from .server import StepTimeoutError, TrainingServer

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("ioncircuit.bridge")

__all__ = [
    "InstalledPolicy",
    "PolicyInstallError",
    "PolicyInstaller",
    "Settings",
    "StepTimeoutError",
    "TrainingServer",
]
