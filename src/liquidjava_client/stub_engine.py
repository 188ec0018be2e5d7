"""Minimal stand-in for the LiquidJava engine.

Listens on ``127.0.0.1:<port>`` (the sole positional argument) and publishes
one ``liquidjava`` error for every line carrying a ``// liquidjava-error:``
marker whenever a document is opened or saved.
"""

from __future__ import annotations

import sys
from typing import Callable, Sequence

from lsprotocol import types as lsp
from pygls.lsp.server import LanguageServer

from liquidjava_client import __version__
from liquidjava_client.diagnostics import ENGINE_SOURCE
from liquidjava_client.invariants import never

ERROR_MARKER = "// liquidjava-error:"
STUB_ERROR_KIND = "refinement-error"

server = LanguageServer("liquidjava-stub", __version__)


def refinement_diagnostics(text: str) -> list[lsp.Diagnostic]:
    diagnostics: list[lsp.Diagnostic] = []
    for line_no, line in enumerate(text.splitlines()):
        column = line.find(ERROR_MARKER)
        if column < 0:
            continue
        message = line[column + len(ERROR_MARKER):].strip() or "Refinement violation"
        diagnostics.append(
            lsp.Diagnostic(
                range=lsp.Range(
                    start=lsp.Position(line=line_no, character=0),
                    end=lsp.Position(line=line_no, character=column),
                ),
                message=message,
                severity=lsp.DiagnosticSeverity.Error,
                source=ENGINE_SOURCE,
                data={"errorKind": STUB_ERROR_KIND},
            )
        )
    return diagnostics


def _publish(ls: LanguageServer, uri: str, text: str | None = None) -> None:
    if text is None:
        text = ls.workspace.get_text_document(uri).source
    ls.text_document_publish_diagnostics(
        lsp.PublishDiagnosticsParams(uri=uri, diagnostics=refinement_diagnostics(text))
    )


@server.feature(lsp.TEXT_DOCUMENT_DID_OPEN)
def did_open(ls: LanguageServer, params: lsp.DidOpenTextDocumentParams) -> None:
    _publish(ls, params.text_document.uri, params.text_document.text)


@server.feature(lsp.TEXT_DOCUMENT_DID_SAVE)
def did_save(ls: LanguageServer, params: lsp.DidSaveTextDocumentParams) -> None:
    _publish(ls, params.text_document.uri, params.text)


def _parse_port(argv: Sequence[str]) -> int:
    if len(argv) != 1:
        never("stub engine expects exactly one port argument", argv=list(argv))
    try:
        port = int(argv[0])
    except ValueError:
        never("invalid stub engine port", port=argv[0])
    if not 0 < port < 65536:
        never("invalid stub engine port", port=port)
    return port


def start(
    argv: Sequence[str] | None = None,
    start_fn: Callable[[str, int], None] | None = None,
) -> None:
    port = _parse_port(sys.argv[1:] if argv is None else argv)
    (start_fn or server.start_tcp)("127.0.0.1", port)


if __name__ == "__main__":  # pragma: no cover
    start()  # pragma: no cover
