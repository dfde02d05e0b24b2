"""
Per-session checklist and activity log.

`<slug>/session_v0.json` holds the session metadata, the checklist
(expected kind -> complete) and the append-only activity log. `README.md`
is rendered from it after each mutation. Mutations happen only after an
artifact write has succeeded.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import jsonschema

from .errors import MalformedArtifact, SessionNotFound
from .fsio import LockSettings, atomic_write_text, exclusive_lock, is_valid_slug, read_text, write_json


logger = logging.getLogger(__name__)

SESSION_FILE = "session_v0.json"
SESSION_README = "README.md"
SESSION_LOCK = ".session.lock"

SESSION_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "version": {"const": "v0"},
        "slug": {"type": "string", "minLength": 1},
        "title": {"type": "string"},
        "created_at": {"type": "string"},
        "metadata": {"type": "object"},
        "checklist": {"type": "object", "additionalProperties": {"type": "boolean"}},
        "activity": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {"date": {"type": "string"}, "description": {"type": "string"}},
                "required": ["date", "description"],
            },
        },
    },
    "required": ["version", "slug", "title", "created_at", "checklist", "activity"],
}


@dataclass
class ChecklistState:
    slug: str
    title: str
    created_at: str
    metadata: dict[str, Any] = field(default_factory=dict)
    checklist: dict[str, bool] = field(default_factory=dict)
    activity: list[tuple[str, str]] = field(default_factory=list)

    @classmethod
    def from_dict(cls, obj: dict[str, Any]) -> "ChecklistState":
        return cls(
            slug=obj["slug"],
            title=obj["title"],
            created_at=obj["created_at"],
            metadata=dict(obj.get("metadata", {})),
            checklist=dict(obj["checklist"]),
            activity=[(a["date"], a["description"]) for a in obj["activity"]],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": "v0",
            "slug": self.slug,
            "title": self.title,
            "created_at": self.created_at,
            "metadata": self.metadata,
            "checklist": self.checklist,
            "activity": [{"date": d, "description": desc} for d, desc in self.activity],
        }

    def completed(self) -> list[str]:
        return [k for k, done in self.checklist.items() if done]


def render_readme(state: ChecklistState) -> str:
    lines = [
        f"# {state.title}",
        "",
        f"- Slug: `{state.slug}`",
        f"- Created: {state.created_at}",
    ]
    for key in sorted(state.metadata):
        lines.append(f"- {key}: {state.metadata[key]}")
    lines.extend(["", "## Checklist", ""])
    if not state.checklist:
        lines.append("- (nothing expected yet)")
    for kind, done in state.checklist.items():
        lines.append(f"- [{'x' if done else ' '}] {kind}")
    lines.extend(["", "## Activity", ""])
    for date, description in state.activity:
        lines.append(f"- {date}: {description}")
    return "\n".join(lines) + "\n"


def save_state(session_dir: Path, state: ChecklistState) -> None:
    # Checklist order is the expected workflow order; keep it.
    write_json(session_dir / SESSION_FILE, state.to_dict(), sort_keys=False)
    atomic_write_text(session_dir / SESSION_README, render_readme(state))


def load_state(session_dir: Path, slug: str) -> ChecklistState:
    path = session_dir / SESSION_FILE
    if not path.exists():
        raise SessionNotFound(slug, session_dir)
    try:
        obj = json.loads(read_text(path))
    except ValueError as exc:
        raise MalformedArtifact(f"invalid session json: {exc}", path) from exc
    try:
        jsonschema.validate(instance=obj, schema=SESSION_SCHEMA)
    except jsonschema.ValidationError as exc:
        raise MalformedArtifact(f"invalid session shape: {exc.message}", path) from exc
    return ChecklistState.from_dict(obj)


class ChecklistSynchronizer:
    def __init__(self, ledger_dir: Path, lock_settings: LockSettings | None = None) -> None:
        self.ledger_dir = ledger_dir
        self.lock_settings = lock_settings or LockSettings()

    def session_dir(self, slug: str) -> Path:
        session_dir = self.ledger_dir / slug
        if not is_valid_slug(slug) or not (session_dir / SESSION_FILE).is_file():
            raise SessionNotFound(slug, session_dir)
        return session_dir

    def load(self, slug: str) -> ChecklistState:
        return load_state(self.session_dir(slug), slug)

    def mark_complete(self, slug: str, kind: str) -> ChecklistState:
        session_dir = self.session_dir(slug)
        with exclusive_lock(session_dir / SESSION_LOCK, self.lock_settings):
            state = load_state(session_dir, slug)
            if state.checklist.get(kind) is True:
                return state
            state.checklist[kind] = True
            save_state(session_dir, state)
        logger.info("checklist %s: %s complete", slug, kind)
        return state

    def append_activity(self, slug: str, date: str, description: str) -> ChecklistState:
        session_dir = self.session_dir(slug)
        with exclusive_lock(session_dir / SESSION_LOCK, self.lock_settings):
            state = load_state(session_dir, slug)
            state.activity.append((date, description))
            save_state(session_dir, state)
        return state
