from __future__ import annotations

from pathlib import Path
from typing import Iterable, Optional
from urllib.parse import unquote, urlparse

from lsprotocol import types as lsp
from pydantic import BaseModel

from liquidjava_client.status import DetailViewSink, StatusIndicator, StatusSink

ENGINE_SOURCE = "liquidjava"
REFINEMENT_ERROR_MESSAGE = "refinement-error"


class PositionDTO(BaseModel):
    line: int
    character: int


class RangeDTO(BaseModel):
    start: PositionDTO
    end: PositionDTO


class RefinementError(BaseModel):
    message: str
    range: RangeDTO
    severity: int
    kind: Optional[str] = None
    file: str


def detail_view_message(error: RefinementError | None) -> dict[str, object]:
    """Payload posted to the detail view; ``error`` is null to clear it."""
    return {
        "type": REFINEMENT_ERROR_MESSAGE,
        "error": error.model_dump() if error is not None else None,
    }


def _uri_to_path(uri: str) -> Path:
    parsed = urlparse(uri)
    if parsed.scheme == "file":
        return Path(unquote(parsed.path))
    return Path(uri)


def _error_kind(data: object) -> str | None:
    if not isinstance(data, dict):
        return None
    kind = data.get("errorKind")
    return str(kind) if kind is not None else None


def select_refinement_diagnostic(
    diagnostics: Iterable[lsp.Diagnostic], *, source: str = ENGINE_SOURCE
) -> lsp.Diagnostic | None:
    for diagnostic in diagnostics:
        if diagnostic.severity == lsp.DiagnosticSeverity.Error and diagnostic.source == source:
            return diagnostic
    return None


def refinement_error_from(document_uri: str, diagnostic: lsp.Diagnostic) -> RefinementError:
    start = diagnostic.range.start
    end = diagnostic.range.end
    return RefinementError(
        message=diagnostic.message,
        range=RangeDTO(
            start=PositionDTO(line=start.line, character=start.character),
            end=PositionDTO(line=end.line, character=end.character),
        ),
        severity=int(diagnostic.severity or lsp.DiagnosticSeverity.Error),
        kind=_error_kind(diagnostic.data),
        file=str(_uri_to_path(document_uri)),
    )


class DiagnosticsRouter:
    """Keeps the single active refinement error and feeds the sinks."""

    def __init__(
        self,
        status_sink: StatusSink,
        detail_view: DetailViewSink,
        *,
        source: str = ENGINE_SOURCE,
    ) -> None:
        self.status_sink = status_sink
        self.detail_view = detail_view
        self.source = source
        self.active: RefinementError | None = None

    def route(
        self, document_uri: str, diagnostics: Iterable[lsp.Diagnostic]
    ) -> RefinementError | None:
        diagnostic = select_refinement_diagnostic(diagnostics, source=self.source)
        if diagnostic is None:
            self.active = None
            self.detail_view.show_error(None)
            self.status_sink.show_status(StatusIndicator.PASSED)
            return None
        error = refinement_error_from(document_uri, diagnostic)
        self.active = error
        self.detail_view.show_error(error)
        self.status_sink.show_status(StatusIndicator.FAILED)
        return error

    def clear(self) -> None:
        self.active = None
