from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path
import shutil
from typing import Callable, Protocol

from liquidjava_client.config import DEFAULT_API_JAR_PATTERNS

API_ARTIFACT_ID = "liquidjava-api"
_BUILD_FILES = ("pom.xml", "build.gradle", "build.gradle.kts")


class PrerequisiteChecker(Protocol):
    def artifact_present(self) -> bool:
        """True when the workspace depends on the LiquidJava API."""

    def resolve_runtime_executable(self, name: str) -> str | None:
        """Path of the runtime used to launch the engine, if one is found."""


def _is_executable(path: Path) -> bool:
    return path.is_file() and os.access(path, os.X_OK)


@dataclass(frozen=True)
class WorkspacePrerequisites:
    root: Path
    api_jar_patterns: tuple[str, ...] = DEFAULT_API_JAR_PATTERNS
    java_home: str | None = None
    which: Callable[[str], str | None] = shutil.which

    def artifact_present(self) -> bool:
        for pattern in self.api_jar_patterns:
            if next(self.root.glob(pattern), None) is not None:
                return True
        for name in _BUILD_FILES:
            try:
                text = (self.root / name).read_text(encoding="utf-8", errors="replace")
            except OSError:
                continue
            if API_ARTIFACT_ID in text:
                return True
        return False

    def resolve_runtime_executable(self, name: str) -> str | None:
        candidate = Path(name).expanduser()
        if candidate.is_absolute():
            return str(candidate) if _is_executable(candidate) else None
        java_home = self.java_home if self.java_home is not None else os.environ.get("JAVA_HOME", "")
        if java_home.strip():
            for filename in (name, f"{name}.exe"):
                path = Path(java_home).expanduser() / "bin" / filename
                if _is_executable(path):
                    return str(path)
        return self.which(name)
