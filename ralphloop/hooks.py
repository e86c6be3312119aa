"""
RALPH Hook Protocol

Structured request/response shapes exchanged with the host agent
runtime. Requests tolerate the field-name variants hosts send; responses
omit anything unset.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field


class HookName(str, Enum):
    BEFORE_PROMPT = "before-prompt"
    BEFORE_READ = "before-read"
    AFTER_EDIT = "after-edit"
    STOP = "stop"


class EditSpan(BaseModel):
    model_config = ConfigDict(extra="ignore")

    old_string: str | None = ""
    new_string: str | None = ""


class HookRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    workspace_roots: list[str] = Field(default_factory=list)
    cwd: str | None = None
    file_path: str | None = None
    path: str | None = None
    content: str | None = None
    file_content: str | None = None
    size: int | None = None
    edits: list[EditSpan] = Field(default_factory=list)

    def workspace_root(self, fallback: Path | None = None) -> Path:
        if self.workspace_roots and self.workspace_roots[0]:
            return Path(self.workspace_roots[0])
        if self.cwd:
            return Path(self.cwd)
        return fallback or Path(".")

    @property
    def resource_path(self) -> str:
        return self.file_path or self.path or ""

    @property
    def resource_content(self) -> str | None:
        return self.content if self.content is not None else self.file_content

    def edit_spans(self) -> list[tuple[str, str]]:
        return [(e.old_string or "", e.new_string or "") for e in self.edits]


class Decision(str, Enum):
    STOP = "stop"
    BLOCK = "block"


class HookResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    continue_: bool | None = Field(default=None, alias="continue")
    permission: str | None = None
    decision: Decision | None = None
    agent_message: str | None = Field(default=None, alias="agentMessage")
    user_message: str | None = Field(default=None, alias="userMessage")

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)
