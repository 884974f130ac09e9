# ioncircuit/bridge/__main__.py
"""Entry point: python -m ioncircuit.bridge (headless arena training server)"""

from __future__ import annotations

import argparse
import asyncio
import signal
from pathlib import Path

from ..config import ArenaConfig
from ..constants import OBS_DIM
from ..rl.policy import PolicyRunner
from ..sim.arena import ArenaWorld
from . import logger
from .config import Settings
from .server import TrainingServer


async def run_server(server: TrainingServer) -> None:
    """Serve until SIGINT/SIGTERM, then shut down cleanly."""
    await server.start()
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)
    try:
        await stop.wait()
    finally:
        await server.stop()


def main() -> None:
    parser = argparse.ArgumentParser(description="IonCircuit training bridge (headless arena)")
    parser.add_argument("--host", type=str, default=None)
    parser.add_argument("--port", type=int, default=None)
    parser.add_argument("--schema", choices=["full", "legacy"], default=None)
    parser.add_argument("--step-cap", type=int, default=None)
    parser.add_argument("--data-dir", type=Path, default=None)
    parser.add_argument("--seed", type=int, default=None)
    parser.add_argument(
        "--opponent",
        type=Path,
        default=None,
        help="Installed policy bundle (<name>.policy) that drives the target car",
    )
    args = parser.parse_args()

    # Only forward flags that were given so env/.env values still apply.
    overrides = {
        "HOST": args.host,
        "PORT": args.port,
        "OBSERVATION_SCHEMA": args.schema,
        "STEP_CAP": args.step_cap,
        "DATA_DIR": args.data_dir,
    }
    settings = Settings(**{k: v for k, v in overrides.items() if v is not None})

    opponent = None
    if args.opponent is not None:
        opponent = PolicyRunner.load(args.opponent)
        if opponent.obs_dim != OBS_DIM:
            parser.error(f"opponent policy must take {OBS_DIM} observation fields, got {opponent.obs_dim}")
        logger.info(f"Opponent policy loaded from {args.opponent}")

    world = ArenaWorld(ArenaConfig(seed=args.seed), opponent=opponent)

    def hot_reload(path: Path) -> None:
        # Only reload the slot the opponent was started from.
        if opponent is None or path.absolute() != args.opponent.absolute():
            return
        runner = PolicyRunner.load(path)
        if runner.obs_dim != OBS_DIM:
            logger.warning(f"Ignoring reload of {path}: policy takes {runner.obs_dim} observation fields")
            return
        server.sim_loop.submit(setattr, world, "opponent", runner)
        logger.info(f"Opponent policy reloaded from {path}")

    server = TrainingServer(world, settings=settings, on_policy_saved=hot_reload)
    asyncio.run(run_server(server))


if __name__ == "__main__":
    main()
