"""Lifecycle states, the derived status indicator and the UI-facing sinks."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from liquidjava_client.diagnostics import RefinementError


class LifecycleState(str, Enum):
    IDLE = "idle"
    CHECKING_PREREQUISITES = "checking_prerequisites"
    STARTING = "starting"
    CONNECTING = "connecting"
    SESSION_STARTING = "session_starting"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


class StatusIndicator(str, Enum):
    LOADING = "loading"
    STOPPED = "stopped"
    PASSED = "passed"
    FAILED = "failed"


def derive_status(
    state: LifecycleState,
    active_error: RefinementError | None,
    awaiting_diagnostics: bool = False,
) -> StatusIndicator:
    if state in (LifecycleState.STOPPING, LifecycleState.STOPPED):
        return StatusIndicator.STOPPED
    if state is not LifecycleState.RUNNING or awaiting_diagnostics:
        return StatusIndicator.LOADING
    if active_error is not None:
        return StatusIndicator.FAILED
    return StatusIndicator.PASSED


class StatusSink(Protocol):
    def show_status(self, status: StatusIndicator) -> None:
        """Display the coarse status; repeated identical values are harmless."""


class DetailViewSink(Protocol):
    def show_error(self, error: RefinementError | None) -> None:
        """Display the active refinement error, or clear the view on ``None``."""


class UserNotifier(Protocol):
    def warn(self, message: str) -> None: ...

    def error(self, message: str) -> None: ...


class NullDetailView:
    def show_error(self, error: RefinementError | None) -> None:
        return


class NullNotifier:
    def warn(self, message: str) -> None:
        return

    def error(self, message: str) -> None:
        return
