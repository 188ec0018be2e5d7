from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Awaitable, Callable, Sequence

from lsprotocol import types as lsp

from liquidjava_client.channel import Channel
from liquidjava_client.config import ClientConfig
from liquidjava_client.diagnostics import DiagnosticsRouter, RefinementError
from liquidjava_client.engine_log import EngineLogger
from liquidjava_client.events import (
    DiagnosticsPublished,
    ProcessExited,
    SessionClosed,
    StopRequested,
    SupervisorEvent,
)
from liquidjava_client.exceptions import (
    ClientError,
    ConnectFailed,
    PrerequisiteMissing,
    SessionEnded,
)
from liquidjava_client.invariants import never
from liquidjava_client.ports import PortAllocator
from liquidjava_client.prerequisites import PrerequisiteChecker, WorkspacePrerequisites
from liquidjava_client.process import EngineProcess, ProcessSupervisor
from liquidjava_client.session import ProtocolSession
from liquidjava_client.status import (
    DetailViewSink,
    LifecycleState,
    NullDetailView,
    NullNotifier,
    StatusIndicator,
    StatusSink,
    UserNotifier,
    derive_status,
)

ConnectFn = Callable[[int, float, str], Awaitable[Channel]]
SessionFactory = Callable[..., ProtocolSession]
SleepFn = Callable[[float], Awaitable[None]]


class _TrackedStatus:
    def __init__(self, sink: StatusSink) -> None:
        self.sink = sink
        self.current: StatusIndicator | None = None

    def show_status(self, status: StatusIndicator) -> None:
        self.current = status
        self.sink.show_status(status)


class LifecycleSupervisor:
    """Owns the engine process, channel and session for one activation.

    Startup walks the lifecycle states in order and re-checks for a pending
    stop after every suspension. Process exit, session end and diagnostics
    arrive as events on a single queue drained by the event pump. ``stop`` is
    a test-and-set: the first caller tears everything down, later callers
    return immediately.
    """

    def __init__(
        self,
        root: Path,
        *,
        status_sink: StatusSink,
        config: ClientConfig | None = None,
        prerequisites: PrerequisiteChecker | None = None,
        detail_view: DetailViewSink | None = None,
        notifier: UserNotifier | None = None,
        logger: EngineLogger | None = None,
        process_supervisor: ProcessSupervisor | None = None,
        port_allocator: PortAllocator | None = None,
        connect_fn: ConnectFn = Channel.connect,
        session_factory: SessionFactory = ProtocolSession,
        sleep_fn: SleepFn = asyncio.sleep,
    ) -> None:
        self.root = Path(root)
        self.config = config or ClientConfig()
        self.prerequisites = prerequisites or WorkspacePrerequisites(
            self.root, self.config.api_jar_patterns
        )
        self.logger = logger or EngineLogger()
        self.process_supervisor = process_supervisor or ProcessSupervisor(
            logger=self.logger, kill_grace_seconds=self.config.kill_grace_seconds
        )
        self.port_allocator = port_allocator or PortAllocator(
            host=self.config.host,
            debug_port=self.config.debug_port if self.config.debug_mode else None,
        )
        self.state = LifecycleState.IDLE
        self.port: int | None = None
        self._status = _TrackedStatus(status_sink)
        self._detail_view = detail_view or NullDetailView()
        self._notifier = notifier or NullNotifier()
        self._connect_fn = connect_fn
        self._session_factory = session_factory
        self._sleep = sleep_fn
        self.router = DiagnosticsRouter(self._status, self._detail_view)
        self._process: EngineProcess | None = None
        self._channel: Channel | None = None
        self._session: ProtocolSession | None = None
        self._events: asyncio.Queue[SupervisorEvent] = asyncio.Queue()
        self._pump_task: asyncio.Task[None] | None = None
        self._stop_started = False
        self._stopped = asyncio.Event()
        self._awaiting_diagnostics = False

    @property
    def status(self) -> StatusIndicator | None:
        return self._status.current

    @property
    def active_error(self) -> RefinementError | None:
        return self.router.active

    @property
    def process(self) -> EngineProcess | None:
        return self._process

    @property
    def channel(self) -> Channel | None:
        return self._channel

    @property
    def session(self) -> ProtocolSession | None:
        return self._session

    @property
    def has_resources(self) -> bool:
        return any(item is not None for item in (self._session, self._channel, self._process))

    def derived_status(self) -> StatusIndicator:
        return derive_status(self.state, self.router.active, self._awaiting_diagnostics)

    async def activate(self) -> bool:
        """Start the engine and connect to it; ``True`` once running."""
        if self.state is not LifecycleState.IDLE:
            self.logger.client.warning("Activation ignored in state %s", self.state.value)
            return False
        self.logger.client.info("Activating LiquidJava extension...")
        self._status.show_status(StatusIndicator.LOADING)
        self._pump_task = asyncio.create_task(self._pump_events(), name="liquidjava-supervisor-events")
        try:
            return await self._start()
        except PrerequisiteMissing as exc:
            await self.stop(str(exc))
            return False
        except ClientError as exc:
            if not self._stop_started:
                self._notifier.error(f"LiquidJava failed to initialize: {exc}")
                self.logger.client.error("Failed to initialize: %s", exc)
                await self.stop("Failed to initialize")
            return False

    async def deactivate(self) -> None:
        self.logger.client.info("Deactivating LiquidJava extension...")
        await self.stop("Extension was deactivated")

    def dispose(self) -> None:
        """Synchronous stop request, handled by the event pump."""
        self.post(StopRequested("Extension was disposed"))

    async def wait_stopped(self) -> None:
        await self._stopped.wait()

    def post(self, event: SupervisorEvent) -> None:
        if self._pump_task is None or self.state is LifecycleState.STOPPED:
            return
        self._events.put_nowait(event)

    async def stop(self, reason: str) -> None:
        if self._stop_started:
            return
        self._stop_started = True
        if self.has_resources:
            self.logger.client.info("Stopping LiquidJava extension: %s", reason)
        else:
            self.logger.client.info("Extension already stopped")
        self.state = LifecycleState.STOPPING
        if self.router.active is not None:
            self.router.clear()
            self._detail_view.show_error(None)
        self._awaiting_diagnostics = False
        self._status.show_status(StatusIndicator.STOPPED)

        session, self._session = self._session, None
        if session is not None:
            try:
                await session.stop()
            except Exception as exc:
                self.logger.client.error("Error stopping client: %s", exc)

        channel, self._channel = self._channel, None
        if channel is not None:
            try:
                channel.close()
                await channel.wait_closed()
            except Exception as exc:
                self.logger.client.error("Error closing socket: %s", exc)

        process, self._process = self._process, None
        if process is not None:
            try:
                self.process_supervisor.terminate(process)
            except Exception as exc:
                self.logger.client.error("Error killing server process: %s", exc)

        self.state = LifecycleState.STOPPED
        self._stopped.set()

        pump, self._pump_task = self._pump_task, None
        if pump is not None and pump is not asyncio.current_task():
            pump.cancel()
            await asyncio.gather(pump, return_exceptions=True)

    async def aclose(self, timeout: float = 5.0) -> None:
        """Stop, then wait for the engine process watchers to settle."""
        await self.stop("Client closed")
        await self.process_supervisor.aclose(timeout=timeout)

    async def document_opened(self, uri: str, text: str, language_id: str = "java") -> None:
        if language_id not in self.config.document_languages:
            return
        session = self._running_session()
        if session is not None:
            await self._forward(session.did_open(uri, language_id, text))

    async def document_saved(self, uri: str, text: str | None = None) -> None:
        session = self._running_session()
        if session is None:
            return
        self._awaiting_diagnostics = True
        self._status.show_status(StatusIndicator.LOADING)
        await self._forward(session.did_save(uri, text))

    async def document_closed(self, uri: str) -> None:
        session = self._running_session()
        if session is not None:
            await self._forward(session.did_close(uri))

    def view_ready(self) -> None:
        if self.state is LifecycleState.RUNNING and self.router.active is not None:
            self._detail_view.show_error(self.router.active)

    async def _start(self) -> bool:
        self.state = LifecycleState.CHECKING_PREREQUISITES
        runtime = self._check_prerequisites()

        self.state = LifecycleState.STARTING
        port = self.port_allocator.reserve()
        self.port = port
        if self.config.debug_mode:
            self.logger.client.info("DEBUG MODE: Using fixed port %s", port)
        else:
            self.logger.client.info("Running language server on port %s", port)
            self.logger.client.info("Creating language server process...")
            process = await self.process_supervisor.spawn(
                runtime,
                self.config.engine_arguments(port),
                self.root,
                on_exit=self._on_process_exit,
            )
            if self._stop_started:
                self.process_supervisor.terminate(process)
                return False
            self._process = process

        self.state = LifecycleState.CONNECTING
        channel = await self._connect(port)
        if channel is None:
            return False
        if self._stop_started:
            channel.close()
            return False
        self._channel = channel

        self.state = LifecycleState.SESSION_STARTING
        self.logger.client.info("Starting LiquidJava client...")
        session = self._session_factory(
            channel,
            logger=self.logger,
            on_diagnostics=self._on_diagnostics,
            on_ended=self._on_session_ended,
            shutdown_timeout=self.config.shutdown_timeout_seconds,
        )
        self._session = session
        await session.start(self.root.resolve().as_uri(), timeout=self.config.handshake_timeout_seconds)
        if self._stop_started:
            return False

        self.state = LifecycleState.RUNNING
        self._awaiting_diagnostics = True
        self.logger.client.info("Extension is ready")
        return True

    def _check_prerequisites(self) -> str:
        if not self.prerequisites.artifact_present():
            self._notifier.warn("LiquidJava API Jar Not Found in Workspace")
            self.logger.client.error(
                "LiquidJava API jar not found in workspace - Not activating extension"
            )
            raise PrerequisiteMissing("LiquidJava API jar not found in workspace")
        self.logger.client.info("Found LiquidJava API in the workspace - Loading extension...")
        runtime = self.prerequisites.resolve_runtime_executable(self.config.runtime)
        if not runtime:
            self._notifier.error("LiquidJava - Java Runtime Not Found in JAVA_HOME or PATH")
            self.logger.client.error(
                "Java Runtime not found in JAVA_HOME or PATH - Not activating extension"
            )
            raise PrerequisiteMissing("Java runtime not found in JAVA_HOME or PATH")
        self.logger.client.info("Using Java at: %s", runtime)
        return runtime

    async def _connect(self, port: int) -> Channel | None:
        """Connect with bounded retries; ``None`` when a stop overtook us."""
        delays = self.config.connect_delays()
        attempt = 0
        while True:
            attempt += 1
            try:
                return await self._connect_fn(
                    port, self.config.connect_timeout_seconds, self.config.host
                )
            except ConnectFailed as exc:
                if self._stop_started:
                    return None
                if attempt > len(delays):
                    raise ConnectFailed(
                        f"Failed to connect to server after {attempt} attempts: {exc}"
                    ) from exc
                self.logger.client.debug("Connection attempt %s failed: %s", attempt, exc)
            await self._sleep(delays[attempt - 1])
            if self._stop_started:
                return None

    def _running_session(self) -> ProtocolSession | None:
        if self.state is not LifecycleState.RUNNING:
            return None
        return self._session

    async def _forward(self, notification: Awaitable[None]) -> None:
        try:
            await notification
        except SessionEnded as exc:
            # the session-ended signal drives the stop
            self.logger.client.debug("Dropped document notification: %s", exc)

    def _on_process_exit(self, exit_code: int | None) -> None:
        self.post(ProcessExited(exit_code))

    def _on_session_ended(self, reason: str) -> None:
        # before RUNNING the failure surfaces from session.start()
        if self.state is LifecycleState.RUNNING:
            self.post(SessionClosed(reason))

    def _on_diagnostics(self, uri: str, diagnostics: Sequence[lsp.Diagnostic]) -> None:
        self.post(DiagnosticsPublished(uri, tuple(diagnostics)))

    async def _pump_events(self) -> None:
        while self.state is not LifecycleState.STOPPED:
            event = await self._events.get()
            await self._handle(event)

    async def _handle(self, event: SupervisorEvent) -> None:
        if isinstance(event, ProcessExited):
            await self.stop(f"Server process exited with code {event.exit_code}")
        elif isinstance(event, SessionClosed):
            await self.stop(f"Extension stopped ({event.reason})")
        elif isinstance(event, StopRequested):
            await self.stop(event.reason)
        elif isinstance(event, DiagnosticsPublished):
            if self.state is not LifecycleState.RUNNING:
                self.logger.client.debug(
                    "Ignoring diagnostics for %s in state %s", event.uri, self.state.value
                )
                return
            self.router.route(event.uri, event.diagnostics)
            self._awaiting_diagnostics = False
        else:
            never("unknown supervisor event", event=event)
