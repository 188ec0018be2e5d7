from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


import pytest

from tests.env_helpers import LIQUIDJAVA_ENV_NAMES
from tests.env_helpers import restore_env as _restore_env
from tests.env_helpers import set_env as _set_env
from tests.harness.engine_harness import RecordingLog


@pytest.fixture(autouse=True)
def _isolated_liquidjava_env():
    previous = _set_env({name: None for name in LIQUIDJAVA_ENV_NAMES})
    yield
    _restore_env(previous)


@pytest.fixture
def engine_log() -> RecordingLog:
    return RecordingLog.create()


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    root = tmp_path / "workspace"
    (root / "lib").mkdir(parents=True)
    (root / "lib" / "liquidjava-api-0.0.3.jar").write_bytes(b"")
    return root
