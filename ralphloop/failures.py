"""
RALPH Failure Journal

Append-only `failures.jsonl`. Two record kinds share the file:
failure-pattern records (thrashing, repeated command failure) that drive
gutter risk, and test-failure notes written when criteria are all
checked but the test command disagrees.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field

from ralphloop.state import utc_now
from ralphloop.workspace.journal import Journal


class FailurePattern(str, Enum):
    REPEATED_COMMAND_FAILURE = "repeated_command_failure"
    FILE_THRASHING = "file_thrashing"


class GutterRisk(str, Enum):
    LOW = "Low"
    HIGH = "HIGH"


class FailureRecord(BaseModel):
    kind: Literal["failure"] = "failure"
    pattern: FailurePattern
    subject: str
    occurrence_count: int
    iteration: int
    session_id: str
    timestamp: str = Field(default_factory=utc_now)


class VerificationFailureNote(BaseModel):
    """Criteria were all checked but the test command did not pass."""
    kind: Literal["test_failure"] = "test_failure"
    command: str
    exit_code: int | None
    timed_out: bool = False
    iteration: int
    session_id: str
    note: str = "Agent marked criteria complete but tests fail"
    timestamp: str = Field(default_factory=utc_now)


FailureEntry = Annotated[Union[FailureRecord, VerificationFailureNote], Field(discriminator="kind")]


class FailureLog:
    def __init__(self, journal: Journal[FailureEntry], session_id: str):
        self.journal = journal
        self.session_id = session_id

    def append(self, entry: FailureRecord | VerificationFailureNote) -> None:
        self.journal.append(entry)

    def session_entries(self) -> list[FailureRecord | VerificationFailureNote]:
        return [e for e in self.journal.read() if e.session_id == self.session_id]

    def records(self, pattern: FailurePattern | None = None) -> list[FailureRecord]:
        return [
            e for e in self.session_entries()
            if isinstance(e, FailureRecord) and (pattern is None or e.pattern is pattern)
        ]

    def thrash_count(self) -> int:
        return len(self.records(FailurePattern.FILE_THRASHING))

    def gutter_risk(self, threshold: int) -> GutterRisk:
        """HIGH once `threshold` thrashing detections exist in this session."""
        return GutterRisk.HIGH if self.thrash_count() >= threshold else GutterRisk.LOW

    def consecutive_test_failures(self, command: str) -> int:
        """
        Test-failure notes for `command` since the last repeated-command
        record for it in this session.
        """
        streak = 0
        for entry in self.session_entries():
            if isinstance(entry, VerificationFailureNote) and entry.command == command:
                streak += 1
            elif (
                isinstance(entry, FailureRecord)
                and entry.pattern is FailurePattern.REPEATED_COMMAND_FAILURE
                and entry.subject == command
            ):
                streak = 0
        return streak
