import logging
from pathlib import Path
import sys

import pytest

# Ensure repo root is importable without an editable install.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Variables the tooling reads; tests opt in to them explicitly.
_TOOL_ENV_VARS = (
    "GITHUB_ACTIONS",
    "OS",
    "NUMBER_OF_PROCESSORS",
    "CC",
    "CFLAGS",
    "LDFLAGS",
    "NIM_RELEASE_CONFIG",
    "NIM_RELEASE_LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def hermetic_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """
    Autouse: each test runs in its own tmp cwd with no CI markers or toolchain
    overrides inherited from the machine running the suite.
    """
    monkeypatch.chdir(tmp_path)
    for name in _TOOL_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return tmp_path


@pytest.fixture
def in_ci(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GITHUB_ACTIONS", "true")


@pytest.fixture(autouse=True)
def _reset_nimrelease_logger():
    """Drop handlers the CLI attaches so they don't outlive a test's captured stderr."""
    yield
    logger = logging.getLogger("nimrelease")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)
