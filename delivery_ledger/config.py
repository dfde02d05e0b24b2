from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import jsonschema

from .errors import MalformedArtifact
from .fsio import DEFAULT_LOCK_STALE_SECONDS, DEFAULT_LOCK_TIMEOUT_SECONDS, LockSettings
from .kinds import LIFECYCLES, OVERWRITE, KindRegistry


logger = logging.getLogger(__name__)

DEFAULT_LEDGER_ROOT = ".sessions"
LEDGER_ROOT_ENV = "DELIVERY_LEDGER_ROOT"
LOG_LEVEL_ENV = "DELIVERY_LEDGER_LOG_LEVEL"
CONFIG_FILE = "ledger_config_v0.json"
MERGE_POLICIES = ("overwrite", "append")
DEFAULT_CHECKLIST = [
    "spec",
    "triage",
    "plan",
    "risk-assessment",
    "test-matrix",
    "work",
    "prod-readiness",
    "ship-plan",
    "handoff",
]

CONFIG_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "version": {"const": "v0"},
        "merge_policy": {
            "type": "object",
            "additionalProperties": {"enum": list(MERGE_POLICIES)},
        },
        "checklist": {"type": "array", "items": {"type": "string", "minLength": 1}},
        "lock_timeout_seconds": {"type": "number", "exclusiveMinimum": 0},
        "lock_stale_seconds": {"type": "number", "exclusiveMinimum": 0},
        "extra_kinds": {
            "type": "object",
            "additionalProperties": {
                "type": "object",
                "properties": {
                    "lifecycle": {"enum": list(LIFECYCLES)},
                    "directory": {"type": "string", "minLength": 1},
                    "filename": {"type": "string", "minLength": 1},
                },
                "required": ["lifecycle"],
                "additionalProperties": False,
            },
        },
    },
    "additionalProperties": False,
}


@dataclass
class LedgerConfig:
    merge_policy: dict[str, str] = field(default_factory=dict)
    checklist: list[str] = field(default_factory=lambda: list(DEFAULT_CHECKLIST))
    lock_timeout_seconds: float = DEFAULT_LOCK_TIMEOUT_SECONDS
    lock_stale_seconds: float = DEFAULT_LOCK_STALE_SECONDS
    extra_kinds: dict[str, dict[str, Any]] = field(default_factory=dict)

    def merge_policy_for(self, kind: str) -> str:
        return self.merge_policy.get(kind, OVERWRITE)

    def kinds(self) -> KindRegistry:
        return KindRegistry(self.extra_kinds)

    def lock_settings(self, command: str = "delivery-ledger", force_unlock: bool = False) -> LockSettings:
        return LockSettings(
            timeout_seconds=self.lock_timeout_seconds,
            stale_seconds=self.lock_stale_seconds,
            force_unlock=force_unlock,
            command=command,
        )


def resolve_ledger_dir(project_dir: Path, raw_ledger_root: str | None) -> Path:
    raw = raw_ledger_root or os.environ.get(LEDGER_ROOT_ENV) or DEFAULT_LEDGER_ROOT
    root = Path(raw)
    return root.resolve() if root.is_absolute() else (project_dir / root).resolve()


def load_config(ledger_dir: Path) -> LedgerConfig:
    path = ledger_dir / CONFIG_FILE
    if not path.exists():
        return LedgerConfig()
    try:
        obj = json.loads(path.read_text(encoding="utf-8"))
    except ValueError as exc:
        raise MalformedArtifact(f"invalid config json: {exc}", path) from exc
    try:
        jsonschema.validate(instance=obj, schema=CONFIG_SCHEMA)
    except jsonschema.ValidationError as exc:
        raise MalformedArtifact(f"invalid config shape: {exc.message}", path) from exc
    logger.debug("loaded config %s", path)
    cfg = LedgerConfig()
    cfg.merge_policy = dict(obj.get("merge_policy", {}))
    if "checklist" in obj:
        cfg.checklist = list(obj["checklist"])
    cfg.lock_timeout_seconds = float(obj.get("lock_timeout_seconds", cfg.lock_timeout_seconds))
    cfg.lock_stale_seconds = float(obj.get("lock_stale_seconds", cfg.lock_stale_seconds))
    cfg.extra_kinds = dict(obj.get("extra_kinds", {}))
    return cfg
