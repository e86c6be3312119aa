"""
RALPH Guardrails ("Signs")

`guardrails.md` holds two ranges: a fixed core set written once at
initialization, and a learned set that only grows. Humans and the agent
may append to it as well; the learned section is injected verbatim into
every prompt.
"""

from __future__ import annotations

import re
from pathlib import Path

from loguru import logger
from pydantic import BaseModel

from ralphloop.state import atomic_write_text

LEARNED_HEADER = "## Learned Signs"
_PLACEHOLDER = "(Signs added from observed failures will appear below)"

_SIGN_RE = re.compile(r"^###\s+Sign:\s*(?P<title>.+?)\s*$")
_FIELD_RE = re.compile(r"^-\s+\*\*(?P<key>Trigger|Instruction|Added after)\*\*:\s*(?P<value>.*)$")


class Guardrail(BaseModel):
    title: str
    trigger: str
    instruction: str
    added_after: str

    def to_markdown(self) -> str:
        return (
            f"### Sign: {self.title}\n"
            f"- **Trigger**: {self.trigger}\n"
            f"- **Instruction**: {self.instruction}\n"
            f"- **Added after**: {self.added_after}\n"
        )


CORE_GUARDRAILS: tuple[Guardrail, ...] = (
    Guardrail(
        title="Read Before Writing",
        trigger="Before modifying any file",
        instruction="Always read the existing file first",
        added_after="Core principle",
    ),
    Guardrail(
        title="Test After Changes",
        trigger="After any code change",
        instruction="Run tests to verify nothing broke; the task is NOT complete until tests pass",
        added_after="Core principle",
    ),
    Guardrail(
        title="Commit Checkpoints",
        trigger="Before risky changes",
        instruction="Commit current working state first",
        added_after="Core principle",
    ),
    Guardrail(
        title="One Thing at a Time",
        trigger="When several criteria are open",
        instruction="Focus on one criterion at a time",
        added_after="Core principle",
    ),
)


def _render_seed() -> str:
    core = "\n".join(g.to_markdown() for g in CORE_GUARDRAILS)
    return (
        "# Ralph Guardrails (Signs)\n\n"
        "> Lessons learned from past failures. READ THESE BEFORE ACTING.\n\n"
        "## Core Signs\n\n"
        f"{core}\n"
        "---\n\n"
        f"{LEARNED_HEADER}\n\n"
        f"{_PLACEHOLDER}\n"
    )


def _parse_signs(text: str) -> list[Guardrail]:
    signs: list[Guardrail] = []
    current: dict[str, str] | None = None

    def _flush() -> None:
        if current and "title" in current:
            signs.append(Guardrail(
                title=current["title"],
                trigger=current.get("Trigger", ""),
                instruction=current.get("Instruction", ""),
                added_after=current.get("Added after", ""),
            ))

    for line in text.splitlines():
        match = _SIGN_RE.match(line.strip())
        if match:
            _flush()
            current = {"title": match.group("title")}
            continue
        field = _FIELD_RE.match(line.strip())
        if field and current is not None:
            current[field.group("key")] = field.group("value").strip()
    _flush()
    return signs


class GuardrailStore:
    """Core signs are never rewritten; learned signs are never removed."""

    def __init__(self, path: Path):
        self.path = path

    def ensure(self) -> None:
        if not self.path.is_file():
            atomic_write_text(self.path, _render_seed())
            logger.debug(f"[GUARDRAILS] Seeded {self.path}")

    @staticmethod
    def core() -> list[Guardrail]:
        return list(CORE_GUARDRAILS)

    def _learned_section(self) -> str | None:
        if not self.path.is_file():
            return None
        text = self.path.read_text(encoding="utf-8", errors="replace")
        idx = text.find(LEARNED_HEADER)
        if idx < 0:
            return None
        return text[idx + len(LEARNED_HEADER):]

    def learned_text(self) -> str:
        """The learned section as written, without its header and placeholder."""
        section = self._learned_section()
        if section is None:
            return ""
        lines = [line for line in section.splitlines() if line.strip() != _PLACEHOLDER]
        return "\n".join(lines).strip()

    def learned(self) -> list[Guardrail]:
        section = self._learned_section()
        return _parse_signs(section) if section else []

    def add(self, trigger: str, instruction: str, added_after: str, title: str | None = None) -> bool:
        """
        Append a learned sign. Returns False when a learned sign with the
        same trigger already exists.
        """
        self.ensure()
        if any(g.trigger == trigger for g in self.learned()):
            return False

        sign = Guardrail(
            title=title or trigger,
            trigger=trigger,
            instruction=instruction,
            added_after=added_after,
        )
        prefix = "" if self._learned_section() is not None else f"\n---\n\n{LEARNED_HEADER}\n"
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(f"{prefix}\n{sign.to_markdown()}")
        logger.info(f"[GUARDRAILS] Learned sign added: {sign.title}")
        return True
