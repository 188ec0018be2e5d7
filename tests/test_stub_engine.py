from __future__ import annotations

import asyncio
from functools import partial
import importlib.util
from pathlib import Path
import sys

from lsprotocol import types as lsp
import pytest

from liquidjava_client import stub_engine
from liquidjava_client.exceptions import NeverThrown
from liquidjava_client.process import ProcessSupervisor
from liquidjava_client.status import LifecycleState, StatusIndicator
from liquidjava_client.supervisor import LifecycleSupervisor
from tests.env_helpers import subprocess_env_with_src
from tests.harness.engine_harness import (
    SRC_DIR,
    FakePrerequisites,
    RecordingDetailView,
    RecordingLog,
    RecordingNotifier,
    RecordingStatusSink,
    fast_config,
    wait_until,
)


def _has_pygls() -> bool:
    return importlib.util.find_spec("pygls") is not None


def test_refinement_diagnostics_one_per_marker() -> None:
    text = (
        "class Main {\n"
        "  int x = -1; // liquidjava-error: x must be positive\n"
        "  int y = 2;\n"
        "// liquidjava-error:\n"
        "}\n"
    )
    diagnostics = stub_engine.refinement_diagnostics(text)

    assert [item.message for item in diagnostics] == ["x must be positive", "Refinement violation"]
    assert [item.range.start.line for item in diagnostics] == [1, 3]
    assert diagnostics[0].range.end.character == text.splitlines()[1].find("//")
    assert all(item.severity == lsp.DiagnosticSeverity.Error for item in diagnostics)
    assert all(item.source == "liquidjava" for item in diagnostics)
    assert diagnostics[0].data == {"errorKind": stub_engine.STUB_ERROR_KIND}


def test_clean_source_has_no_diagnostics() -> None:
    assert stub_engine.refinement_diagnostics("class Main {}\n") == []


@pytest.mark.parametrize("argv", [[], ["1", "2"], ["port"], ["0"], ["70000"]])
def test_parse_port_rejects_bad_arguments(argv: list[str]) -> None:
    with pytest.raises(NeverThrown):
        stub_engine._parse_port(argv)


def test_start_listens_on_loopback_port() -> None:
    calls: list[tuple[str, int]] = []
    stub_engine.start(["50123"], start_fn=lambda host, port: calls.append((host, port)))
    assert calls == [("127.0.0.1", 50123)]


@pytest.mark.skipif(not _has_pygls(), reason="pygls not installed")
def test_supervisor_against_stub_engine(workspace: Path) -> None:
    async def _run() -> None:
        log = RecordingLog.create()
        status = RecordingStatusSink()
        detail_view = RecordingDetailView()
        notifier = RecordingNotifier()
        config = fast_config(
            engine_args=("-m", "liquidjava_client.stub_engine"),
            connect_attempts=40,
            connect_retry_seconds=0.1,
            connect_retry_max_seconds=0.25,
            handshake_timeout_seconds=10.0,
            shutdown_timeout_seconds=2.0,
            kill_grace_seconds=2.0,
        )
        supervisor = LifecycleSupervisor(
            workspace,
            status_sink=status,
            config=config,
            prerequisites=FakePrerequisites(runtime=sys.executable),
            detail_view=detail_view,
            notifier=notifier,
            logger=log.logger,
            process_supervisor=ProcessSupervisor(
                logger=log.logger,
                process_factory=partial(
                    asyncio.create_subprocess_exec,
                    env=subprocess_env_with_src(str(SRC_DIR)),
                ),
                kill_grace_seconds=config.kill_grace_seconds,
            ),
        )
        source = workspace / "Main.java"
        uri = source.as_uri()
        try:
            assert await supervisor.activate() is True, log.messages()
            assert supervisor.session is not None
            assert supervisor.session.server_info.get("name") == "liquidjava-stub"

            await supervisor.document_opened(
                uri, "class Main {\n  int x = -1; // liquidjava-error: x must be positive\n}\n"
            )
            await wait_until(lambda: supervisor.status is StatusIndicator.FAILED, timeout=10.0)
            error = supervisor.active_error
            assert error is not None
            assert error.message == "x must be positive"
            assert error.kind == stub_engine.STUB_ERROR_KIND
            assert error.file == str(source)
            assert error.range.start.line == 1

            await supervisor.document_saved(uri, "class Main {\n  int x = 1;\n}\n")
            await wait_until(lambda: supervisor.status is StatusIndicator.PASSED, timeout=10.0)
            assert supervisor.active_error is None
            assert detail_view.shown[-1] is None
        finally:
            await supervisor.aclose(timeout=5.0)

        assert supervisor.state is LifecycleState.STOPPED
        assert supervisor.status is StatusIndicator.STOPPED
        assert notifier.errors == []
        assert status.history[0] is StatusIndicator.LOADING

    asyncio.run(_run())
