"""
Configuration loader for RALPH.
Merges defaults with user-level and per-workspace overrides.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

import yaml
from loguru import logger
from pydantic import BaseModel, Field, ValidationError


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

class ContextConfig(BaseModel):
    capacity: int = Field(default=80_000, ge=1)
    warn_percent: int = Field(default=80, ge=0, le=100)
    critical_percent: int = Field(default=95, ge=0, le=100)
    default_read_estimate: int = Field(default=100, ge=0)

    @property
    def warn_threshold(self) -> int:
        return self.capacity * self.warn_percent // 100

    @property
    def critical_threshold(self) -> int:
        return self.capacity * self.critical_percent // 100


class ThrashConfig(BaseModel):
    max_edits_per_file: int = 5
    gutter_threshold: int = 3


class TestsConfig(BaseModel):
    timeout_seconds: float | None = 900
    shell: bool = True


class PromptConfig(BaseModel):
    test_output_lines: int = 30
    failure_output_lines: int = 50


class HandoffConfig(BaseModel):
    api_key: str | None = None
    api_key_env: str = "CURSOR_API_KEY"
    command: list[str] | None = None
    attempts: int = Field(default=2, ge=1)


class WorkspaceConfig(BaseModel):
    task_file: str = "RALPH_TASK.md"
    state_dir: str = ".ralph"


class RalphConfig(BaseModel):
    context: ContextConfig = Field(default_factory=ContextConfig)
    thrash: ThrashConfig = Field(default_factory=ThrashConfig)
    tests: TestsConfig = Field(default_factory=TestsConfig)
    prompt: PromptConfig = Field(default_factory=PromptConfig)
    handoff: HandoffConfig = Field(default_factory=HandoffConfig)
    workspace: WorkspaceConfig = Field(default_factory=WorkspaceConfig)


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "config.yaml"


def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge override into base."""
    merged = base.copy()
    for key, value in override.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _read_yaml(path: Path) -> dict[str, Any]:
    if not path.is_file():
        return {}
    try:
        with open(path, "r", encoding="utf-8", errors="replace") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"[CONFIG] Ignoring unreadable config {path}: {e}")
        return {}
    if not isinstance(data, dict):
        logger.warning(f"[CONFIG] Ignoring {path}: top level is not a mapping")
        return {}
    return data


def _legacy_api_key(path: Path) -> str | None:
    """Read `cursor_api_key` from an older `ralph-config.json` file."""
    if not path.is_file():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8", errors="replace"))
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"[CONFIG] Ignoring unreadable legacy config {path}: {e}")
        return None
    key = data.get("cursor_api_key") if isinstance(data, dict) else None
    return key or None


def _env_overrides() -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    capacity = os.environ.get("RALPH_CONTEXT_CAPACITY")
    if capacity:
        overrides.setdefault("context", {})["capacity"] = capacity
    timeout = os.environ.get("RALPH_TEST_TIMEOUT")
    if timeout:
        # "0" or "none" disables the timeout
        value = None if timeout.lower() in ("0", "none", "off") else timeout
        overrides.setdefault("tests", {})["timeout_seconds"] = value
    return overrides


def load_config(repo_path: Path | None = None, home: Path | None = None) -> RalphConfig:
    """
    Load config by merging:
      1. Built-in defaults (ralphloop/config.yaml)
      2. User overrides (~/.ralph/config.yaml)
      3. Workspace overrides (<repo>/.ralph/config.yaml)
      4. Legacy cursor_api_key from .cursor/ralph-config.json
      5. Environment variable overrides
    """
    home = home or Path.home()

    with open(_DEFAULT_CONFIG_PATH, "r") as f:
        base: dict[str, Any] = yaml.safe_load(f) or {}

    base = _deep_merge(base, _read_yaml(home / ".ralph" / "config.yaml"))

    if repo_path:
        state_dir = base.get("workspace", {}).get("state_dir", ".ralph")
        base = _deep_merge(base, _read_yaml(repo_path / state_dir / "config.yaml"))

    if not base.get("handoff", {}).get("api_key"):
        candidates = [home / ".cursor" / "ralph-config.json"]
        if repo_path:
            candidates.insert(0, repo_path / ".cursor" / "ralph-config.json")
        for candidate in candidates:
            key = _legacy_api_key(candidate)
            if key:
                base = _deep_merge(base, {"handoff": {"api_key": key}})
                break

    base = _deep_merge(base, _env_overrides())

    try:
        return RalphConfig(**base)
    except ValidationError as e:
        logger.warning(f"[CONFIG] Invalid configuration, falling back to defaults: {e}")
        return RalphConfig()


def handoff_credential(config: RalphConfig) -> str | None:
    """Resolve the handoff credential: explicit config value, then environment."""
    if config.handoff.api_key:
        return config.handoff.api_key
    return os.environ.get(config.handoff.api_key_env) or None
