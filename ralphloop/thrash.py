"""
RALPH Edit/Thrash Detector

Counts how often each file is mutated in the current session. No
diffing: one file edited more than `max_edits_per_file` times is
thrashing, and enough thrashing detections put the loop in the gutter.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterable

from loguru import logger
from pydantic import BaseModel, Field

from ralphloop.config_loader import ThrashConfig
from ralphloop.failures import FailureLog, FailurePattern, FailureRecord, GutterRisk
from ralphloop.state import utc_now
from ralphloop.workspace.journal import Journal


class ChangeType(str, Enum):
    ADDED = "added"
    REMOVED = "removed"
    MODIFIED = "modified"
    NO_CHANGE = "no change"


class EditRecord(BaseModel):
    session_id: str
    file_path: str
    change_type: ChangeType
    chars: int = Field(ge=0)
    iteration: int
    timestamp: str = Field(default_factory=utc_now)


def classify_change(old_total: int, new_total: int) -> tuple[int, ChangeType]:
    """Classify an edit by the sign and size of its character delta."""
    delta = new_total - old_total
    if delta < 0:
        return -delta, ChangeType.REMOVED
    if delta > 0:
        return delta, ChangeType.ADDED
    # Same-length replacement
    if new_total > 0:
        return new_total, ChangeType.MODIFIED
    return 0, ChangeType.NO_CHANGE


@dataclass
class EditOutcome:
    record: EditRecord
    edit_count: int
    failure: FailureRecord | None
    gutter_risk: GutterRisk

    @property
    def thrashing(self) -> bool:
        return self.failure is not None


class EditThrashDetector:
    def __init__(
        self,
        edits: Journal[EditRecord],
        failures: FailureLog,
        session_id: str,
        config: ThrashConfig | None = None,
    ):
        self.edits = edits
        self.failures = failures
        self.session_id = session_id
        self.config = config or ThrashConfig()

    def edit_count(self, file_path: str) -> int:
        return sum(
            1 for e in self.edits.read()
            if e.session_id == self.session_id and e.file_path == file_path
        )

    def gutter_risk(self) -> GutterRisk:
        return self.failures.gutter_risk(self.config.gutter_threshold)

    def record_edit(
        self,
        file_path: str,
        spans: Iterable[tuple[str, str]],
        iteration: int,
    ) -> EditOutcome:
        """
        `spans` are (old_text, new_text) pairs making up one mutation.
        """
        spans = list(spans)
        old_total = sum(len(old or "") for old, _ in spans)
        new_total = sum(len(new or "") for _, new in spans)
        chars, change_type = classify_change(old_total, new_total)

        record = EditRecord(
            session_id=self.session_id,
            file_path=file_path,
            change_type=change_type,
            chars=chars,
            iteration=iteration,
        )
        self.edits.append(record)
        count = self.edit_count(file_path)

        failure = None
        if count > self.config.max_edits_per_file:
            failure = FailureRecord(
                pattern=FailurePattern.FILE_THRASHING,
                subject=file_path,
                occurrence_count=count,
                iteration=iteration,
                session_id=self.session_id,
            )
            self.failures.append(failure)
            logger.warning(
                f"[THRASH] {Path(file_path).name} edited {count} times this session"
            )

        return EditOutcome(
            record=record,
            edit_count=count,
            failure=failure,
            gutter_risk=self.gutter_risk(),
        )
