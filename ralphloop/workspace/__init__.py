"""
RALPH Workspace — the durable state directory.

Every hook call is a fresh process with no memory; everything the
controller knows lives under `<root>/.ralph/`. The presence of the task
file is the activation signal. Missing pieces are created lazily with
defaults, never torn down here.
"""

from __future__ import annotations

import uuid
from pathlib import Path

from loguru import logger
from pydantic import BaseModel, Field, ValidationError

from ralphloop.config_loader import RalphConfig
from ralphloop.guardrails import GuardrailStore
from ralphloop.state import IterationState, StateStore, atomic_write_text, utc_now
from ralphloop.workspace.journal import Journal

__all__ = ["Journal", "SessionInfo", "Workspace", "WorkspaceError"]


class WorkspaceError(Exception):
    pass


class SessionInfo(BaseModel):
    """One observation session; rotation starts a new one."""
    session_id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
    started_at: str = Field(default_factory=utc_now)


_PROGRESS_SEED = """# Progress Log

> Updated by the agent after significant work and by RALPH hooks.
> Progress is tracked in THIS FILE, not in LLM context.

---

## Iteration History
"""


class Workspace:
    """
    Paths and lazy initialization for one workspace's state directory.
    """

    def __init__(self, root: Path, config: RalphConfig | None = None):
        self.root = root.resolve()
        self.config = config or RalphConfig()
        self.task_path = self.root / self.config.workspace.task_file
        self.state_dir = self.root / self.config.workspace.state_dir

    # ------------------------------------------------------------------
    # Layout
    # ------------------------------------------------------------------

    @property
    def state_path(self) -> Path:
        return self.state_dir / "state.md"

    @property
    def session_path(self) -> Path:
        return self.state_dir / "session.json"

    @property
    def progress_path(self) -> Path:
        return self.state_dir / "progress.md"

    @property
    def guardrails_path(self) -> Path:
        return self.state_dir / "guardrails.md"

    @property
    def context_journal_path(self) -> Path:
        return self.state_dir / "context.jsonl"

    @property
    def edits_journal_path(self) -> Path:
        return self.state_dir / "edits.jsonl"

    @property
    def failures_journal_path(self) -> Path:
        return self.state_dir / "failures.jsonl"

    @property
    def events_path(self) -> Path:
        return self.state_dir / "events.jsonl"

    @property
    def last_test_output_path(self) -> Path:
        return self.state_dir / ".last_test_output"

    @property
    def active(self) -> bool:
        """Ralph is active when the task file exists."""
        return self.task_path.is_file()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def ensure(self) -> None:
        """Create whatever part of the state directory is missing."""
        try:
            self.state_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise WorkspaceError(f"Cannot create state directory {self.state_dir}: {e}")

        store = self.state_store()
        if not self.state_path.is_file():
            store.save(IterationState())
            logger.info(f"[WORKSPACE] Initialized state in {self.state_dir}")

        if not self.progress_path.is_file():
            atomic_write_text(self.progress_path, _PROGRESS_SEED)

        self.guardrails().ensure()
        self.session()

    def state_store(self) -> StateStore:
        return StateStore(self.state_path)

    def guardrails(self) -> GuardrailStore:
        return GuardrailStore(self.guardrails_path)

    def session(self) -> SessionInfo:
        """Current session, created on first use or when the record is corrupt."""
        if self.session_path.is_file():
            try:
                return SessionInfo.model_validate_json(
                    self.session_path.read_text(encoding="utf-8", errors="replace")
                )
            except (OSError, ValidationError) as e:
                logger.warning(f"[WORKSPACE] Session record unreadable, starting a new one: {e}")
        return self._write_session(SessionInfo())

    def rotate_session(self) -> SessionInfo:
        """
        Start a fresh observation session. Journals keep their history;
        budget and edit counts are scoped to the new session id.
        """
        previous = self.session()
        current = self._write_session(SessionInfo())
        self.append_progress(
            f"\n---\n\n### 🔁 Context Rotated\n"
            f"- Time: {current.started_at}\n"
            f"- Previous session: {previous.session_id}\n"
            f"- New session: {current.session_id}\n"
        )
        logger.info(f"[WORKSPACE] Rotated session {previous.session_id} → {current.session_id}")
        return current

    def _write_session(self, info: SessionInfo) -> SessionInfo:
        atomic_write_text(self.session_path, info.model_dump_json(indent=2))
        return info

    # ------------------------------------------------------------------
    # Journals
    # ------------------------------------------------------------------

    def append_progress(self, text: str) -> None:
        self.state_dir.mkdir(parents=True, exist_ok=True)
        with open(self.progress_path, "a", encoding="utf-8") as f:
            f.write(text)

    def read_last_test_output(self) -> str | None:
        if not self.last_test_output_path.is_file():
            return None
        text = self.last_test_output_path.read_text(encoding="utf-8", errors="replace")
        return text if text.strip() else None

    def write_last_test_output(self, text: str) -> None:
        atomic_write_text(self.last_test_output_path, text)
