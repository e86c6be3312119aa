"""
RALPH Completion Verifier

Runs the task's test command against the workspace root. Exit code and
combined output are the only signals consumed. Launch failures and
timeouts come back as failed outcomes; they never raise.
"""

from __future__ import annotations

import shlex
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from ralphloop.state import utc_now

LAUNCH_FAILURE_EXIT_CODE = 127


@dataclass
class TestOutcome:
    __test__ = False  # not a pytest class

    command: str
    exit_code: int | None
    output: str
    timestamp: str
    duration_ms: int = 0
    timed_out: bool = False
    launch_error: str | None = None

    @property
    def passed(self) -> bool:
        return self.exit_code == 0 and not self.timed_out

    @property
    def exit_label(self) -> str:
        if self.timed_out:
            return "timeout"
        return str(self.exit_code)


def head_lines(text: str, max_lines: int, hint: str = "") -> str:
    """Keep the first `max_lines` lines, noting the cut."""
    lines = text.splitlines()
    if max_lines <= 0 or len(lines) <= max_lines:
        return text.rstrip("\n")
    suffix = f"\n\n... (truncated{', ' + hint if hint else ''})"
    return "\n".join(lines[:max_lines]) + suffix


def _as_text(data: str | bytes | None) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")
    return data


def run_test_command(
    command: str,
    cwd: Path,
    timeout: float | None = None,
    shell: bool = True,
) -> TestOutcome:
    """Execute `command` in `cwd`, capturing stdout and stderr together."""
    start = time.monotonic()
    logger.info(f"[VERIFY] Running: {command}")

    try:
        result = subprocess.run(
            command if shell else shlex.split(command),
            shell=shell,
            cwd=cwd,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            errors="replace",
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as e:
        elapsed_ms = int((time.monotonic() - start) * 1000)
        logger.warning(f"[VERIFY] Timed out after {timeout}s: {command}")
        output = _as_text(e.output)
        return TestOutcome(
            command=command,
            exit_code=None,
            output=f"{output}\n\n[ralph] Test command timed out after {timeout}s".lstrip(),
            timestamp=utc_now(),
            duration_ms=elapsed_ms,
            timed_out=True,
        )
    except (OSError, ValueError) as e:
        logger.warning(f"[VERIFY] Could not launch test command: {e}")
        return TestOutcome(
            command=command,
            exit_code=LAUNCH_FAILURE_EXIT_CODE,
            output=f"[ralph] Failed to launch test command: {e}",
            timestamp=utc_now(),
            duration_ms=int((time.monotonic() - start) * 1000),
            launch_error=str(e),
        )

    elapsed_ms = int((time.monotonic() - start) * 1000)
    outcome = TestOutcome(
        command=command,
        exit_code=result.returncode,
        output=result.stdout or "",
        timestamp=utc_now(),
        duration_ms=elapsed_ms,
    )
    if outcome.passed:
        logger.info(f"[VERIFY] Passed in {elapsed_ms}ms")
    else:
        logger.warning(f"[VERIFY] Failed with exit code {result.returncode}")
    return outcome
