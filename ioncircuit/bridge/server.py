# ioncircuit/bridge/server.py
"""TCP training server: one episode per connection, steps run on the sim loop.

Protocol (newline-delimited JSON, one object per line):

    server -> client   {"obs": [...], "reward": r, "done": d}   on connect, per step, after auto-reset
    client -> server   {"a": [throttle, steer, fire]}
    client -> server   {"cmd": "save_policy", "name": ..., "data_b64": ...}
    server -> client   {"ok": b, "saved_path": ..., "error": ...}   when an install finishes

The legacy observation schema answers with short keys {"o", "r", "d"}.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from typing import TYPE_CHECKING, Any, Callable, TypeVar

from ..actions import ActionContractError
from ..config import ObservationSchema
from ..env.episode import EpisodeController, EpisodeStateError, WorldDetachedError
from ..env.observations import ObservationContractError
from ..env.rewards import RewardComputer, RewardWeights
from ..sim.loop import SimulationLoop
from .codec import LineCodec
from .config import Settings
from .models import LegacyStepResponse, PolicyAck, SavePolicyMessage, StepResponse, decode_message
from .policies import PolicyInstaller, PolicyInstallError

if TYPE_CHECKING:
    from pathlib import Path

    from ..actions import Action
    from ..env.episode import StepResult
    from ..env.world import SimulationWorld

T = TypeVar("T")

logger = logging.getLogger("ioncircuit.bridge")


class StepTimeoutError(TimeoutError):
    """The simulation loop did not answer within STEP_TIMEOUT_S."""


class TrainingServer:
    """Serves one SimulationWorld to training clients over TCP."""

    def __init__(
        self,
        world: SimulationWorld,
        *,
        settings: Settings | None = None,
        sim_loop: SimulationLoop | None = None,
        installer: PolicyInstaller | None = None,
        reward_weights: RewardWeights | None = None,
        on_policy_saved: Callable[[Path], None] | None = None,
    ):
        self.settings = settings or Settings()
        # The host owns the world; a connection must not keep a dead scene alive.
        self._world_ref = weakref.ref(world)
        self._owns_loop = sim_loop is None
        self.sim_loop = sim_loop or SimulationLoop()
        self.installer = installer or PolicyInstaller(
            self.settings.policies_dir,
            keep_versions=self.settings.POLICY_KEEP_VERSIONS,
            default_name=self.settings.DEFAULT_POLICY_NAME,
        )
        self.reward_weights = reward_weights or RewardWeights()
        self.on_policy_saved = on_policy_saved

        legacy = self.settings.schema is ObservationSchema.LEGACY
        self._response_cls = LegacyStepResponse if legacy else StepResponse

        self._server: asyncio.Server | None = None
        self._connections: set[LineCodec] = set()
        self._handlers: set[asyncio.Task[Any]] = set()
        self._install_tasks: set[asyncio.Task[None]] = set()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def port(self) -> int | None:
        """Bound port, or None before start()."""
        if self._server is None or not self._server.sockets:
            return None
        return int(self._server.sockets[0].getsockname()[1])

    async def start(self) -> None:
        if self._server is not None:
            return
        if self._owns_loop:
            self.sim_loop.start()
        self._server = await asyncio.start_server(
            self._handle_connection,
            host=self.settings.HOST,
            port=self.settings.effective_port,
        )
        logger.info(f"Training server listening on {self.settings.HOST}:{self.port}")

    async def stop(self) -> None:
        if self._server is None:
            return
        logger.info("Training server shutting down...")
        server, self._server = self._server, None
        server.close()

        for codec in list(self._connections):
            await codec.close()
        if self._handlers:
            await asyncio.gather(*self._handlers, return_exceptions=True)
        # Installs finish so an acknowledged artifact is never half-written.
        if self._install_tasks:
            await asyncio.gather(*self._install_tasks, return_exceptions=True)
        await server.wait_closed()

        if self._owns_loop:
            await asyncio.to_thread(self.sim_loop.stop)
        logger.info("Training server stopped")

    async def serve_forever(self) -> None:
        await self.start()
        assert self._server is not None
        try:
            await self._server.serve_forever()
        finally:
            await self.stop()

    async def __aenter__(self) -> TrainingServer:
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    async def _on_sim(self, fn: Callable[..., T], *args: Any) -> T:
        """Run fn on the simulation loop and await its result."""
        fut = self.sim_loop.submit(fn, *args)
        try:
            return await asyncio.wait_for(asyncio.wrap_future(fut), timeout=self.settings.STEP_TIMEOUT_S)
        except TimeoutError as e:
            fut.cancel()
            raise StepTimeoutError(f"simulation did not respond within {self.settings.STEP_TIMEOUT_S}s") from e

    async def _handle_connection(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        codec = LineCodec(
            reader,
            writer,
            max_line_bytes=self.settings.MAX_LINE_BYTES,
            read_chunk_bytes=self.settings.READ_CHUNK_BYTES,
        )
        peer = codec.peer
        task = asyncio.current_task()
        if task is not None:
            self._handlers.add(task)
        self._connections.add(codec)
        logger.info(f"Training client {peer} connected (total={len(self._connections)})")

        try:
            await self._serve(codec)
        except ActionContractError as e:
            logger.error(f"Aborting connection {peer}: {e}")
        except (WorldDetachedError, ObservationContractError, EpisodeStateError, StepTimeoutError) as e:
            logger.error(f"Closing connection {peer}: {e}")
        except ConnectionError as e:
            logger.info(f"Connection {peer} lost: {e}")
        except Exception:
            logger.exception(f"Unexpected error serving {peer}")
        finally:
            self._connections.discard(codec)
            if task is not None:
                self._handlers.discard(task)
            await codec.close()
            logger.info(f"Training client {peer} disconnected (total={len(self._connections)})")

    async def _serve(self, codec: LineCodec) -> None:
        world = self._world_ref()
        if world is None:
            raise WorldDetachedError("simulation world is gone")
        controller = EpisodeController(
            world,
            self.settings.episode_config(),
            RewardComputer(self.reward_weights),
        )
        del world

        await self._send_result(codec, await self._on_sim(controller.reset))

        async for line in codec.lines():
            msg = decode_message(line)
            if msg is None:
                logger.debug(f"Ignoring unrecognized message from {codec.peer} ({len(line)} bytes)")
                continue

            if isinstance(msg, SavePolicyMessage):
                self._spawn_install(codec, msg)
                continue

            result, steps, restart = await self._on_sim(_step_then_reset, controller, msg.action())
            if restart is None:
                await self._send_result(codec, result)
                continue
            logger.debug(
                f"Episode {controller.episodes_completed} done for {codec.peer} "
                f"after {steps} steps (truncated={result.truncated})"
            )
            # The terminal step and the next episode's first observation go out together.
            await codec.send_many(self._response_cls.from_result(result), self._response_cls.from_result(restart))

    async def _send_result(self, codec: LineCodec, result: StepResult) -> None:
        await codec.send(self._response_cls.from_result(result))

    # ------------------------------------------------------------------
    # Policy installs
    # ------------------------------------------------------------------

    def _spawn_install(self, codec: LineCodec, msg: SavePolicyMessage) -> None:
        task = asyncio.create_task(self._install_policy(codec, msg))
        self._install_tasks.add(task)
        task.add_done_callback(self._install_tasks.discard)

    async def _install_policy(self, codec: LineCodec, msg: SavePolicyMessage) -> None:
        try:
            installed = await asyncio.to_thread(self.installer.install_b64, msg.data_b64, msg.name)
        except PolicyInstallError as e:
            logger.error(f"Policy install failed: {e}")
            ack = PolicyAck(ok=False, error=str(e))
        except Exception as e:
            logger.exception("Policy install crashed")
            ack = PolicyAck(ok=False, error=f"{type(e).__name__}: {e}")
        else:
            ack = PolicyAck(ok=True, saved_path=str(installed.path))
            if self.on_policy_saved is not None:
                try:
                    await asyncio.to_thread(self.on_policy_saved, installed.path)
                except Exception:
                    logger.exception(f"on_policy_saved callback failed for {installed.path}")

        try:
            await codec.send(ack)
        except ConnectionError:
            logger.warning(f"Install ack for {codec.peer} undeliverable: connection closed")


def _step_then_reset(controller: EpisodeController, action: Action) -> tuple[StepResult, int, StepResult | None]:
    """Step once; on done, reset in the same sim command so nothing runs in between."""
    result = controller.step(action)
    steps = controller.episode.step_count
    restart = controller.reset() if result.done else None
    return result, steps, restart
