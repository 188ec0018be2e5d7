from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime, time
from pathlib import Path
import os
from typing import Mapping, TypeAlias
import tomllib

from liquidjava_client.invariants import never

DEFAULT_CONFIG_NAME = "liquidjava.toml"
SERVER_JAR_FILENAME = "language-server-liquidjava.jar"
DEFAULT_SERVER_JAR = Path(__file__).resolve().parent / "server" / SERVER_JAR_FILENAME
DEFAULT_DEBUG_PORT = 50000
DEFAULT_API_JAR_PATTERNS: tuple[str, ...] = ("**/liquidjava-api*.jar",)

ENV_DEBUG_MODE = "LIQUIDJAVA_DEBUG_MODE"
ENV_DEBUG_PORT = "LIQUIDJAVA_DEBUG_PORT"
ENV_SERVER_JAR = "LIQUIDJAVA_SERVER_JAR"
ENV_RUNTIME = "LIQUIDJAVA_JAVA"

_TRUTHY_VALUES = {"1", "true", "yes", "on"}
_FALSEY_VALUES = {"0", "false", "no", "off"}

TomlScalar: TypeAlias = str | int | float | bool | None | date | datetime | time
TomlValue: TypeAlias = TomlScalar | list["TomlValue"] | dict[str, "TomlValue"]
TomlTable: TypeAlias = dict[str, TomlValue]


@dataclass(frozen=True)
class ClientConfig:
    server_jar: Path = DEFAULT_SERVER_JAR
    runtime: str = "java"
    # None means the engine is launched as ``-jar <server_jar>``.
    engine_args: tuple[str, ...] | None = None
    debug_mode: bool = False
    debug_port: int = DEFAULT_DEBUG_PORT
    host: str = "127.0.0.1"
    connect_timeout_seconds: float = 5.0
    connect_attempts: int = 10
    connect_retry_seconds: float = 0.25
    connect_retry_max_seconds: float = 2.0
    handshake_timeout_seconds: float = 30.0
    shutdown_timeout_seconds: float = 2.0
    kill_grace_seconds: float = 5.0
    api_jar_patterns: tuple[str, ...] = DEFAULT_API_JAR_PATTERNS
    document_languages: tuple[str, ...] = field(default=("java",))

    def __post_init__(self) -> None:
        if not 0 < int(self.debug_port) < 65536:
            never("invalid debug port", debug_port=self.debug_port)
        if int(self.connect_attempts) <= 0:
            never("invalid connect attempts", connect_attempts=self.connect_attempts)
        for name in (
            "connect_timeout_seconds",
            "handshake_timeout_seconds",
            "shutdown_timeout_seconds",
        ):
            if float(getattr(self, name)) <= 0:
                never(f"invalid {name}", value=getattr(self, name))
        for name in (
            "connect_retry_seconds",
            "connect_retry_max_seconds",
            "kill_grace_seconds",
        ):
            if float(getattr(self, name)) < 0:
                never(f"invalid {name}", value=getattr(self, name))

    def engine_arguments(self, port: int) -> list[str]:
        """Arguments for the runtime; the port is always the last positional."""
        if self.engine_args is None:
            base = ["-jar", str(self.server_jar)]
        else:
            base = list(self.engine_args)
        return [*base, str(port)]

    def connect_delays(self) -> list[float]:
        """Backoff delays slept before each retry attempt."""
        delays: list[float] = []
        delay = float(self.connect_retry_seconds)
        for _ in range(int(self.connect_attempts) - 1):
            delays.append(min(delay, float(self.connect_retry_max_seconds)))
            delay *= 2
        return delays


def _load_toml(path: Path) -> TomlTable:
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return {}
    except OSError:
        return {}
    try:
        data = tomllib.loads(raw)
    except tomllib.TOMLDecodeError:
        return {}
    return data if isinstance(data, dict) else {}


def load_config(root: Path | None = None, config_path: Path | None = None) -> TomlTable:
    if config_path is None:
        base = root if root is not None else Path.cwd()
        config_path = base / DEFAULT_CONFIG_NAME
    return _load_toml(config_path)


def client_defaults(
    root: Path | None = None, config_path: Path | None = None
) -> TomlTable:
    data = load_config(root=root, config_path=config_path)
    section = data.get("client", {})
    return section if isinstance(section, dict) else {}


def _as_bool(value: TomlValue) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUTHY_VALUES:
            return True
        if text in _FALSEY_VALUES:
            return False
    never("invalid boolean setting", value=value)


def _normalize_name_list(value: TomlValue) -> tuple[str, ...]:
    items: list[str] = []
    if value is None:
        return ()
    if isinstance(value, str):
        items = [part.strip() for part in value.split(",")]
    elif isinstance(value, (list, tuple)):
        for item in value:
            if isinstance(item, str):
                items.extend(part.strip() for part in item.split(","))
    return tuple(item for item in items if item)


def _resolve_path(value: str, base: Path | None) -> Path:
    path = Path(value).expanduser()
    if not path.is_absolute() and base is not None:
        path = base / path
    return path


def config_from_table(section: Mapping[str, TomlValue], *, base: Path | None = None) -> ClientConfig:
    overrides: dict[str, object] = {}
    for key, value in section.items():
        if value is None:
            continue
        if key == "server_jar":
            overrides[key] = _resolve_path(str(value), base)
        elif key in {"runtime", "host"}:
            overrides[key] = str(value)
        elif key == "debug_mode":
            overrides[key] = _as_bool(value)
        elif key in {"debug_port", "connect_attempts"}:
            try:
                overrides[key] = int(value)
            except (TypeError, ValueError):
                never(f"invalid {key}", value=value)
        elif key.endswith("_seconds"):
            try:
                overrides[key] = float(value)
            except (TypeError, ValueError):
                never(f"invalid {key}", value=value)
        elif key in {"engine_args", "api_jar_patterns", "document_languages"}:
            if isinstance(value, list):
                overrides[key] = tuple(str(item) for item in value)
            else:
                overrides[key] = _normalize_name_list(value)
        else:
            never("unknown client setting", key=key)
    return ClientConfig(**overrides)


def env_text(name: str, *, default: str = "") -> str:
    return os.getenv(name, default).strip()


def apply_env_overrides(config: ClientConfig) -> ClientConfig:
    updates: dict[str, object] = {}
    debug_mode = env_text(ENV_DEBUG_MODE)
    if debug_mode:
        updates["debug_mode"] = _as_bool(debug_mode)
    debug_port = env_text(ENV_DEBUG_PORT)
    if debug_port:
        try:
            updates["debug_port"] = int(debug_port)
        except ValueError:
            never("invalid debug port env", value=debug_port)
    server_jar = env_text(ENV_SERVER_JAR)
    if server_jar:
        updates["server_jar"] = Path(server_jar).expanduser()
    runtime = env_text(ENV_RUNTIME)
    if runtime:
        updates["runtime"] = runtime
    return replace(config, **updates) if updates else config


def resolve_client_config(
    root: Path | None = None,
    config_path: Path | None = None,
    **overrides: object,
) -> ClientConfig:
    """Defaults < config file < environment < explicit overrides."""
    base = config_path.parent if config_path is not None else root
    config = config_from_table(client_defaults(root=root, config_path=config_path), base=base)
    config = apply_env_overrides(config)
    explicit = {key: value for key, value in overrides.items() if value is not None}
    return replace(config, **explicit) if explicit else config
