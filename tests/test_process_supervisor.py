from __future__ import annotations

import asyncio
import logging
from pathlib import Path
import sys

import pytest

from liquidjava_client.exceptions import NeverThrown, SpawnFailed
from liquidjava_client.process import ProcessSupervisor
from tests.harness.engine_harness import FakeProcessFactory, RecordingLog, wait_until


def _supervisor(
    factory: FakeProcessFactory,
    log: RecordingLog,
    *,
    kill_grace_seconds: float = 0.5,
) -> ProcessSupervisor:
    return ProcessSupervisor(
        logger=log.logger,
        process_factory=factory,
        kill_grace_seconds=kill_grace_seconds,
    )


def test_spawn_passes_command_and_pipes(tmp_path: Path, engine_log: RecordingLog) -> None:
    async def _run() -> None:
        factory = FakeProcessFactory()
        supervisor = _supervisor(factory, engine_log)
        engine = await supervisor.spawn("/opt/jdk/bin/java", ["-jar", "server.jar", 54321], tmp_path)

        args, kwargs = factory.calls[0]
        assert args == ("/opt/jdk/bin/java", "-jar", "server.jar", "54321")
        assert kwargs["cwd"] == str(tmp_path)
        assert kwargs["stdout"] == asyncio.subprocess.PIPE
        assert kwargs["stderr"] == asyncio.subprocess.PIPE
        assert kwargs["stdin"] == asyncio.subprocess.DEVNULL
        assert engine.args == ("-jar", "server.jar", "54321")
        assert engine.pid == 4242
        assert not engine.exited
        assert engine.started_at.tzinfo is not None
        factory.processes[0].exit(0)
        await supervisor.aclose(timeout=1.0)

    asyncio.run(_run())


def test_output_lines_are_logged_by_stream(tmp_path: Path, engine_log: RecordingLog) -> None:
    async def _run() -> None:
        factory = FakeProcessFactory()
        supervisor = _supervisor(factory, engine_log)
        await supervisor.spawn("java", ["-jar", "server.jar"], tmp_path)
        process = factory.processes[0]
        process.write_stdout("Listening on 54321\n\n")
        process.write_stderr("WARNING: illegal reflective access\n")
        await wait_until(lambda: len(engine_log.levels("server")) >= 2)

        assert (logging.INFO, "Listening on 54321") in engine_log.levels("server")
        assert (logging.ERROR, "WARNING: illegal reflective access") in engine_log.levels("server")
        process.exit(0)
        await supervisor.aclose(timeout=1.0)

    asyncio.run(_run())


def test_exit_is_reported_once_after_buffered_output(tmp_path: Path, engine_log: RecordingLog) -> None:
    async def _run() -> None:
        factory = FakeProcessFactory()
        supervisor = _supervisor(factory, engine_log)
        codes: list[int | None] = []
        engine = await supervisor.spawn("java", [], tmp_path, on_exit=codes.append)
        process = factory.processes[0]
        process.write_stderr("Exception in thread main\n")
        process.exit(1)
        process.exit(2)
        await wait_until(lambda: bool(codes))
        await supervisor.aclose(timeout=1.0)

        assert codes == [1]
        assert engine.exit_code == 1
        assert engine.exited
        messages = engine_log.messages("server")
        assert messages.index("Exception in thread main") < messages.index("Process exited with code 1")

    asyncio.run(_run())


def test_spawn_failure_raises_and_logs(tmp_path: Path, engine_log: RecordingLog) -> None:
    async def _run() -> None:
        factory = FakeProcessFactory(error=FileNotFoundError(2, "No such file", "java"))
        supervisor = _supervisor(factory, engine_log)
        with pytest.raises(SpawnFailed, match="Failed to start java"):
            await supervisor.spawn("java", [], tmp_path)
        assert factory.processes == []
        assert engine_log.count("Failed to start:") == 1

    asyncio.run(_run())


def test_spawn_requires_executable_and_cwd(engine_log: RecordingLog) -> None:
    async def _run() -> None:
        supervisor = _supervisor(FakeProcessFactory(), engine_log)
        with pytest.raises(NeverThrown):
            await supervisor.spawn(" ", [], "/tmp")
        with pytest.raises(NeverThrown):
            await supervisor.spawn("java", [], "")

    asyncio.run(_run())


def test_terminate_ignores_missing_and_exited(tmp_path: Path, engine_log: RecordingLog) -> None:
    async def _run() -> None:
        factory = FakeProcessFactory()
        supervisor = _supervisor(factory, engine_log)
        supervisor.terminate(None)
        engine = await supervisor.spawn("java", [], tmp_path)
        factory.processes[0].exit(0)
        await supervisor.aclose(timeout=1.0)
        supervisor.terminate(engine)
        assert factory.processes[0].terminate_calls == 0
        assert factory.processes[0].kill_calls == 0

    asyncio.run(_run())


def test_terminate_escalates_to_kill(tmp_path: Path, engine_log: RecordingLog) -> None:
    async def _run() -> None:
        factory = FakeProcessFactory(exit_on_terminate=False)
        supervisor = _supervisor(factory, engine_log, kill_grace_seconds=0.05)
        codes: list[int | None] = []
        engine = await supervisor.spawn("java", [], tmp_path, on_exit=codes.append)
        supervisor.terminate(engine)
        await wait_until(lambda: bool(codes))
        await supervisor.aclose(timeout=1.0)

        process = factory.processes[0]
        assert process.terminate_calls == 1
        assert process.kill_calls == 1
        assert codes == [-9]
        assert engine_log.count("killing pid 4242") == 1

    asyncio.run(_run())


def test_zero_grace_kills_immediately(tmp_path: Path, engine_log: RecordingLog) -> None:
    async def _run() -> None:
        factory = FakeProcessFactory()
        supervisor = _supervisor(factory, engine_log, kill_grace_seconds=0)
        engine = await supervisor.spawn("java", [], tmp_path)
        supervisor.terminate(engine)
        await supervisor.aclose(timeout=1.0)
        assert factory.processes[0].terminate_calls == 0
        assert factory.processes[0].kill_calls == 1

    asyncio.run(_run())


def test_real_child_process_exit_code(tmp_path: Path, engine_log: RecordingLog) -> None:
    async def _run() -> None:
        supervisor = ProcessSupervisor(logger=engine_log.logger)
        codes: list[int | None] = []
        await supervisor.spawn(
            sys.executable,
            ["-c", "import sys; print('engine up'); sys.exit(3)"],
            tmp_path,
            on_exit=codes.append,
        )
        await wait_until(lambda: bool(codes), timeout=10.0)
        await supervisor.aclose(timeout=1.0)
        assert codes == [3]
        assert "engine up" in engine_log.messages("server")
        assert "Process exited with code 3" in engine_log.messages("server")

    asyncio.run(_run())
