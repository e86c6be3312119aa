"""
Append-only JSONL journals with a pydantic schema per record type.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Generic, TypeVar

from loguru import logger
from pydantic import BaseModel, TypeAdapter, ValidationError

T = TypeVar("T")


class Journal(Generic[T]):
    """
    One JSON record per line. Records are only ever appended; a line that
    fails to parse is skipped with a warning instead of failing the read.
    """

    def __init__(self, path: Path, schema: Any):
        self.path = path
        self._adapter: TypeAdapter[T] = TypeAdapter(schema)

    def append(self, record: T) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(record, BaseModel):
            line = record.model_dump_json()
        else:
            line = json.dumps(self._adapter.dump_python(record, mode="json"))
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(line + "\n")

    def read(self) -> list[T]:
        if not self.path.is_file():
            return []
        records: list[T] = []
        with open(self.path, "r", encoding="utf-8", errors="replace") as f:
            for lineno, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    records.append(self._adapter.validate_json(line))
                except ValidationError as e:
                    logger.warning(
                        f"[JOURNAL] Skipping malformed record {self.path.name}:{lineno} "
                        f"({e.error_count()} error(s))"
                    )
        return records
