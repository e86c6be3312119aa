import shlex
import sys
from pathlib import Path

import pytest
import yaml

from ralphloop.config_loader import RalphConfig

PYTHON = shlex.quote(sys.executable)


def python_command(code: str) -> str:
    """A shell command running `code` with the current interpreter."""
    return f"{PYTHON} -c {shlex.quote(code)}"


def write_task(
    root: Path,
    unchecked: int = 0,
    checked: int = 0,
    test_command: str | None = None,
    max_iterations: int | None = None,
) -> Path:
    front = {"task": "Example task"}
    if test_command is not None:
        front["test_command"] = test_command
    if max_iterations is not None:
        front["max_iterations"] = max_iterations

    lines = [f"{i}. [x] done criterion {i}" for i in range(1, checked + 1)]
    lines += [f"- [ ] open criterion {i}" for i in range(1, unchecked + 1)]
    text = (
        "---\n"
        + yaml.safe_dump(front, sort_keys=False)
        + "---\n# Task\n\n## Success Criteria\n\n"
        + "\n".join(lines)
        + "\n"
    )
    path = root / "RALPH_TASK.md"
    path.write_text(text)
    return path


@pytest.fixture(autouse=True)
def isolated_home(tmp_path_factory, monkeypatch):
    """Keep user-level config and credentials out of every test."""
    home = tmp_path_factory.mktemp("home")
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.delenv("CURSOR_API_KEY", raising=False)
    monkeypatch.delenv("RALPH_CONTEXT_CAPACITY", raising=False)
    monkeypatch.delenv("RALPH_TEST_TIMEOUT", raising=False)
    return home


@pytest.fixture
def config() -> RalphConfig:
    return RalphConfig()


@pytest.fixture
def root(tmp_path) -> Path:
    ws = tmp_path / "project"
    ws.mkdir()
    return ws
