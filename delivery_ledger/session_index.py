"""
Registry of all sessions in creation order.

`sessions_v0.json` is the source of truth; `INDEX.md` is re-rendered from it
after every append. Entries are never re-sorted: the last entry is the most
recently created session, which is how the current session is inferred.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

import jsonschema

from .errors import DuplicateSession, MalformedArtifact
from .fsio import LockSettings, atomic_write_text, exclusive_lock, read_text, utc_now, write_json


logger = logging.getLogger(__name__)

INDEX_FILE = "sessions_v0.json"
INDEX_MARKDOWN = "INDEX.md"
INDEX_LOCK = ".index.lock"

INDEX_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "version": {"const": "v0"},
        "updated_at": {"type": "string"},
        "entries": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "slug": {"type": "string", "minLength": 1},
                    "title": {"type": "string"},
                    "created_at": {"type": "string"},
                    "readme": {"type": "string"},
                },
                "required": ["slug", "title", "created_at"],
            },
        },
    },
    "required": ["version", "entries"],
}


@dataclass(frozen=True)
class SessionIndexEntry:
    slug: str
    title: str
    created_at: str
    readme: str = ""

    @classmethod
    def from_dict(cls, obj: dict[str, Any]) -> "SessionIndexEntry":
        return cls(
            slug=obj["slug"],
            title=obj["title"],
            created_at=obj["created_at"],
            readme=obj.get("readme") or f"{obj['slug']}/README.md",
        )

    def to_dict(self) -> dict[str, Any]:
        out = asdict(self)
        out["readme"] = self.readme or f"{self.slug}/README.md"
        return out


def render_index_markdown(entries: list[SessionIndexEntry]) -> str:
    lines = [
        "# Sessions",
        "",
        "Creation order, oldest first. The last entry is the current session.",
        "",
    ]
    if not entries:
        lines.append("- (none)")
    for e in entries:
        lines.append(f"- {e.created_at[:10]} [{e.title}]({e.readme or e.slug + '/README.md'}) `{e.slug}`")
    return "\n".join(lines) + "\n"


class SessionIndex:
    def __init__(self, ledger_dir: Path, lock_settings: LockSettings | None = None) -> None:
        self.ledger_dir = ledger_dir
        self.lock_settings = lock_settings or LockSettings()

    @property
    def path(self) -> Path:
        return self.ledger_dir / INDEX_FILE

    @property
    def lock_path(self) -> Path:
        return self.ledger_dir / INDEX_LOCK

    def _load(self) -> list[SessionIndexEntry]:
        if not self.path.exists():
            return []
        raw = read_text(self.path)
        try:
            obj = json.loads(raw)
        except ValueError as exc:
            raise MalformedArtifact(f"invalid session index json: {exc}", self.path) from exc
        try:
            jsonschema.validate(instance=obj, schema=INDEX_SCHEMA)
        except jsonschema.ValidationError as exc:
            raise MalformedArtifact(f"invalid session index shape: {exc.message}", self.path) from exc
        return [SessionIndexEntry.from_dict(e) for e in obj["entries"]]

    def _save(self, entries: list[SessionIndexEntry]) -> None:
        write_json(
            self.path,
            {"version": "v0", "updated_at": utc_now(), "entries": [e.to_dict() for e in entries]},
        )
        atomic_write_text(self.ledger_dir / INDEX_MARKDOWN, render_index_markdown(entries))

    def list_all(self) -> list[SessionIndexEntry]:
        return self._load()

    def last(self) -> SessionIndexEntry | None:
        entries = self._load()
        return entries[-1] if entries else None

    def get(self, slug: str) -> SessionIndexEntry | None:
        for e in self._load():
            if e.slug == slug:
                return e
        return None

    def append(self, entry: SessionIndexEntry) -> None:
        with exclusive_lock(self.lock_path, self.lock_settings):
            self.append_locked(entry)

    def append_locked(self, entry: SessionIndexEntry) -> None:
        """Append while the caller already holds the index lock."""
        entries = self._load()
        if any(e.slug == entry.slug for e in entries):
            raise DuplicateSession(entry.slug)
        entries.append(entry)
        self._save(entries)
        logger.info("indexed session %s (position %d)", entry.slug, len(entries))
