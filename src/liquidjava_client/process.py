from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
from pathlib import Path
from typing import Awaitable, Callable

from liquidjava_client.engine_log import EngineLogger
from liquidjava_client.exceptions import SpawnFailed
from liquidjava_client.invariants import never

ProcessFactory = Callable[..., Awaitable[asyncio.subprocess.Process]]
ExitObserver = Callable[[int | None], None]

_STREAM_DRAIN_SECONDS = 1.0


@dataclass(eq=False)
class EngineProcess:
    handle: asyncio.subprocess.Process
    executable: str
    args: tuple[str, ...]
    started_at: datetime
    exit_code: int | None = None

    @property
    def pid(self) -> int | None:
        return getattr(self.handle, "pid", None)

    @property
    def exited(self) -> bool:
        return self.exit_code is not None or self.handle.returncode is not None


@dataclass
class ProcessSupervisor:
    """Spawns the engine and reports its exit exactly once."""

    logger: EngineLogger = field(default_factory=EngineLogger)
    process_factory: ProcessFactory = asyncio.create_subprocess_exec
    kill_grace_seconds: float = 5.0
    _background: set[asyncio.Task[None]] = field(default_factory=set, init=False, repr=False)

    async def spawn(
        self,
        executable: str,
        args: list[str] | tuple[str, ...],
        cwd: Path | str,
        on_exit: ExitObserver | None = None,
    ) -> EngineProcess:
        if not str(executable).strip():
            never("missing engine executable")
        if not str(cwd).strip():
            never("missing engine working directory")
        try:
            handle = await self.process_factory(
                str(executable),
                *[str(arg) for arg in args],
                cwd=str(cwd),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except (OSError, ValueError) as exc:
            self.logger.server.error("Failed to start: %s", exc)
            raise SpawnFailed(f"Failed to start {executable}: {exc}") from exc
        engine = EngineProcess(
            handle=handle,
            executable=str(executable),
            args=tuple(str(arg) for arg in args),
            started_at=datetime.now(timezone.utc),
        )
        streams: list[asyncio.Task[None]] = []
        if handle.stdout is not None:
            streams.append(self._track(self._pump_lines(handle.stdout, logging.INFO)))
        if handle.stderr is not None:
            streams.append(self._track(self._pump_lines(handle.stderr, logging.ERROR)))
        self._track(self._watch_exit(engine, streams, on_exit))
        return engine

    def terminate(self, engine: EngineProcess | None) -> None:
        """Signal the engine to stop without waiting for it to exit."""
        if engine is None or engine.exited:
            return
        try:
            if self.kill_grace_seconds > 0:
                engine.handle.terminate()
            else:
                engine.handle.kill()
        except ProcessLookupError:
            return
        if self.kill_grace_seconds > 0:
            self._track(self._escalate(engine))

    async def aclose(self, timeout: float = 5.0) -> None:
        """Wait for watchers and escalations, cancelling what is left."""
        pending = set(self._background)
        if not pending:
            return
        _, still_running = await asyncio.wait(pending, timeout=timeout)
        for task in still_running:
            task.cancel()
        if still_running:
            await asyncio.gather(*still_running, return_exceptions=True)

    def _track(self, coro: Awaitable[None]) -> asyncio.Task[None]:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _pump_lines(self, stream: asyncio.StreamReader, level: int) -> None:
        while True:
            try:
                line = await stream.readline()
            except ValueError:
                self.logger.server.log(level, "<line exceeded buffer limit, truncated>")
                continue
            if not line:
                return
            text = line.decode("utf-8", errors="replace").rstrip()
            if text:
                self.logger.server.log(level, text)

    async def _watch_exit(
        self,
        engine: EngineProcess,
        streams: list[asyncio.Task[None]],
        on_exit: ExitObserver | None,
    ) -> None:
        code = await engine.handle.wait()
        if streams:
            # flush buffered output so it is logged ahead of the exit line
            await asyncio.wait(streams, timeout=_STREAM_DRAIN_SECONDS)
        engine.exit_code = code
        self.logger.server.info("Process exited with code %s", code)
        if on_exit is not None:
            on_exit(code)

    async def _escalate(self, engine: EngineProcess) -> None:
        try:
            await asyncio.wait_for(engine.handle.wait(), timeout=self.kill_grace_seconds)
        except asyncio.TimeoutError:
            if engine.exited:
                return
            self.logger.client.info(
                "Engine still running after %ss, killing pid %s",
                self.kill_grace_seconds,
                engine.pid,
            )
            try:
                engine.handle.kill()
            except ProcessLookupError:
                return
