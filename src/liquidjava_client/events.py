"""Signals delivered to the supervisor's event queue."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence, TypeAlias

from lsprotocol import types as lsp


@dataclass(frozen=True)
class ProcessExited:
    exit_code: int | None


@dataclass(frozen=True)
class SessionClosed:
    reason: str


@dataclass(frozen=True)
class StopRequested:
    reason: str


@dataclass(frozen=True)
class DiagnosticsPublished:
    uri: str
    diagnostics: Sequence[lsp.Diagnostic]


SupervisorEvent: TypeAlias = ProcessExited | SessionClosed | StopRequested | DiagnosticsPublished
