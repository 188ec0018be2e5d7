from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Callable, Optional, TypeAlias

import typer

from liquidjava_client.config import ClientConfig, resolve_client_config
from liquidjava_client.diagnostics import RefinementError, detail_view_message
from liquidjava_client.engine_log import configure_logging
from liquidjava_client.prerequisites import WorkspacePrerequisites
from liquidjava_client.status import StatusIndicator
from liquidjava_client.supervisor import LifecycleSupervisor

app = typer.Typer(add_completion=False)
EchoFn: TypeAlias = Callable[..., None]
SupervisorFactory: TypeAlias = Callable[..., LifecycleSupervisor]

_STATUS_LABELS = {
    StatusIndicator.LOADING: "loading",
    StatusIndicator.STOPPED: "stopped",
    StatusIndicator.PASSED: "passed",
    StatusIndicator.FAILED: "failed",
}


class EchoStatusSink:
    def __init__(self, echo_fn: EchoFn = typer.echo) -> None:
        self._echo = echo_fn
        self._last: StatusIndicator | None = None

    def show_status(self, status: StatusIndicator) -> None:
        if status is self._last:
            return
        self._last = status
        self._echo(f"LiquidJava: {_STATUS_LABELS[status]}")


class EchoDetailView:
    def __init__(self, echo_fn: EchoFn = typer.echo, *, as_json: bool = False) -> None:
        self._echo = echo_fn
        self._as_json = as_json

    def show_error(self, error: RefinementError | None) -> None:
        if self._as_json:
            self._echo(json.dumps(detail_view_message(error), sort_keys=True))
            return
        if error is None:
            self._echo("No refinement errors")
            return
        start = error.range.start
        kind = f" [{error.kind}]" if error.kind else ""
        self._echo(f"{error.file}:{start.line + 1}:{start.character + 1}: {error.message}{kind}")


class EchoNotifier:
    def __init__(self, echo_fn: EchoFn = typer.echo) -> None:
        self._echo = echo_fn

    def warn(self, message: str) -> None:
        self._echo(f"warning: {message}", err=True)

    def error(self, message: str) -> None:
        self._echo(f"error: {message}", err=True)


async def serve(
    root: Path,
    config: ClientConfig,
    *,
    supervisor_factory: SupervisorFactory = LifecycleSupervisor,
    echo_fn: EchoFn = typer.echo,
    json_output: bool = False,
) -> int:
    supervisor = supervisor_factory(
        root,
        config=config,
        status_sink=EchoStatusSink(echo_fn),
        detail_view=EchoDetailView(echo_fn, as_json=json_output),
        notifier=EchoNotifier(echo_fn),
    )
    try:
        if not await supervisor.activate():
            return 1
        await supervisor.wait_stopped()
        return 0
    finally:
        await supervisor.aclose()


@app.command()
def check(
    root: Path = typer.Argument(Path(".")),
    config: Optional[Path] = typer.Option(None, "--config"),
) -> None:
    """Report whether the workspace can start the LiquidJava engine."""
    client_config = resolve_client_config(root=root, config_path=config)
    prerequisites = WorkspacePrerequisites(root, client_config.api_jar_patterns)
    ok = True
    if prerequisites.artifact_present():
        typer.echo("LiquidJava API: found")
    else:
        typer.echo("LiquidJava API: missing")
        ok = False
    runtime = prerequisites.resolve_runtime_executable(client_config.runtime)
    if runtime:
        typer.echo(f"Java runtime: {runtime}")
    else:
        typer.echo("Java runtime: missing")
        ok = False
    raise typer.Exit(code=0 if ok else 1)


@app.command()
def run(
    ctx: typer.Context,
    root: Path = typer.Argument(Path(".")),
    config: Optional[Path] = typer.Option(None, "--config"),
    debug: Optional[bool] = typer.Option(None, "--debug/--no-debug"),
    port: Optional[int] = typer.Option(None, "--port"),
    server_jar: Optional[Path] = typer.Option(None, "--server-jar"),
    log_level: str = typer.Option("INFO", "--log-level"),
    json_output: bool = typer.Option(False, "--json", help="Print refinement errors as JSON lines."),
) -> None:
    """Start the engine for ROOT and stream status until it stops."""
    configure_logging(log_level.upper())
    client_config = resolve_client_config(
        root=root,
        config_path=config,
        debug_mode=debug,
        debug_port=port,
        server_jar=server_jar,
    )
    obj = ctx.obj if isinstance(ctx.obj, dict) else {}
    factory = obj.get("supervisor_factory", LifecycleSupervisor)
    exit_code = asyncio.run(
        serve(root.resolve(), client_config, supervisor_factory=factory, json_output=json_output)
    )
    raise typer.Exit(code=exit_code)


def main() -> None:  # pragma: no cover
    app()
