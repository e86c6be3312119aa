"""
RALPH Iteration State — the single live record per workspace.

Persisted as `state.md`: YAML frontmatter a human can read, parsed into
a strict model on load. Only the controller writes it.
"""

from __future__ import annotations

import os
import tempfile
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

import yaml
from loguru import logger
from pydantic import BaseModel, Field, ValidationError, field_validator


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def atomic_write_text(path: Path, text: str) -> None:
    """Write to a temp file in the same directory, then rename over `path`."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def split_preamble(text: str) -> tuple[str | None, str]:
    """
    Split a `---` delimited preamble from a markdown body without parsing it.
    Returns (None, text) when there is no closed preamble.
    """
    lines = text.splitlines()
    if not lines or lines[0].strip() != "---":
        return None, text
    for idx in range(1, len(lines)):
        if lines[idx].strip() == "---":
            return "\n".join(lines[1:idx]), "\n".join(lines[idx + 1:])
    return None, text


def split_frontmatter(text: str) -> tuple[dict, str]:
    """
    Split a `---` delimited YAML preamble from a markdown body.
    Returns ({}, text) when there is no preamble or it does not parse.
    """
    raw, body = split_preamble(text)
    if raw is None:
        return {}, body
    try:
        data = yaml.safe_load(raw) or {}
    except yaml.YAMLError as e:
        logger.warning(f"[STATE] Unparseable frontmatter: {e}")
        return {}, body
    return (data if isinstance(data, dict) else {}), body


class IterationStatus(str, Enum):
    INITIALIZED = "initialized"
    ACTIVE = "active"
    COMPLETE = "complete"
    MAX_ITERATIONS_REACHED = "max_iterations_reached"


class IterationState(BaseModel):
    """Where the loop is. Superseded on every transition, never deleted."""
    iteration: int = Field(default=0, ge=0)
    status: IterationStatus = IterationStatus.INITIALIZED
    started_at: str = Field(default_factory=utc_now)
    completed_at: str | None = None

    @field_validator("started_at", "completed_at", mode="before")
    @classmethod
    def _stringify_timestamp(cls, value):
        # YAML turns unquoted ISO timestamps into datetime objects
        if isinstance(value, datetime):
            return value.strftime("%Y-%m-%dT%H:%M:%SZ")
        return value

    @property
    def is_terminal(self) -> bool:
        return self.status in (IterationStatus.COMPLETE, IterationStatus.MAX_ITERATIONS_REACHED)

    def render(self, note: str = "") -> str:
        front = {
            "iteration": self.iteration,
            "status": self.status.value,
            "started_at": self.started_at,
        }
        if self.completed_at:
            front["completed_at"] = self.completed_at
        body = note or _default_note(self)
        return (
            "---\n"
            + yaml.safe_dump(front, sort_keys=False)
            + "---\n\n# Ralph State\n\n"
            + body
            + "\n"
        )


def _default_note(state: IterationState) -> str:
    if state.status is IterationStatus.INITIALIZED:
        return f"Iteration {state.iteration} - Initialized, waiting for first prompt."
    if state.status is IterationStatus.COMPLETE:
        return "✅ Task completed."
    if state.status is IterationStatus.MAX_ITERATIONS_REACHED:
        return f"🛑 Stopped at iteration {state.iteration} (max iterations reached)."
    return f"Iteration {state.iteration} - Active"


class StateStore:
    """
    Read-modify-write access to `state.md`.

    A missing or corrupt file loads as a fresh initialized state; the
    next save repairs it.
    """

    def __init__(self, path: Path):
        self.path = path

    def load(self) -> IterationState:
        if not self.path.is_file():
            return IterationState()
        try:
            front, _ = split_frontmatter(self.path.read_text(encoding="utf-8", errors="replace"))
        except OSError as e:
            logger.warning(f"[STATE] Could not read {self.path}: {e}")
            return IterationState()
        return self._coerce(front)

    def save(self, state: IterationState, note: str = "") -> None:
        atomic_write_text(self.path, state.render(note))
        logger.debug(f"[STATE] iteration={state.iteration} status={state.status.value}")

    @staticmethod
    def _coerce(front: dict) -> IterationState:
        try:
            return IterationState(**front)
        except ValidationError as e:
            logger.warning(f"[STATE] Malformed state record, repairing: {e.error_count()} error(s)")

        # Salvage whatever fields are individually valid
        repaired = IterationState()
        for name in ("iteration", "status", "started_at"):
            if name not in front:
                continue
            try:
                valid = IterationState(**{name: front[name]})
            except ValidationError:
                continue
            repaired = repaired.model_copy(update={name: getattr(valid, name)})
        return repaired
