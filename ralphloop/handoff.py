"""
RALPH Handoff — optional escalation to a fresh remote agent.

Only attempted when a credential and a launcher command are configured.
Failure is never fatal: the controller falls back to asking the human
to resume in a new session.
"""

from __future__ import annotations

import os
import subprocess
from pathlib import Path

from loguru import logger
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ralphloop.config_loader import HandoffConfig


class HandoffError(Exception):
    pass


class HandoffLauncher:
    def __init__(self, config: HandoffConfig, credential: str | None, timeout: float = 120):
        self.config = config
        self.credential = credential
        self.timeout = timeout

    @property
    def available(self) -> bool:
        return bool(self.credential and self.config.command)

    def launch(self, workspace_root: Path) -> bool:
        """Spawn the remote agent. Returns False instead of raising."""
        if not self.available:
            logger.debug("[HANDOFF] Not configured; skipping")
            return False

        try:
            for attempt in Retrying(
                stop=stop_after_attempt(self.config.attempts),
                wait=wait_exponential(min=1, max=5),
                retry=retry_if_exception_type(HandoffError),
                reraise=True,
            ):
                with attempt:
                    self._spawn(workspace_root)
        except HandoffError as e:
            logger.warning(f"[HANDOFF] Gave up: {e}")
            return False

        logger.info("[HANDOFF] Remote agent spawned")
        return True

    def _spawn(self, workspace_root: Path) -> None:
        argv = [*self.config.command, str(workspace_root)]
        env = {**os.environ, self.config.api_key_env: self.credential or ""}
        try:
            result = subprocess.run(
                argv,
                cwd=workspace_root,
                env=env,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise HandoffError(f"launcher {argv[0]} failed: {e}") from e

        if result.returncode != 0:
            detail = (result.stderr or result.stdout).strip()[:500]
            raise HandoffError(f"launcher exited {result.returncode}: {detail}")
