from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from .checklist import ChecklistState, save_state
from .config import LedgerConfig
from .errors import DuplicateSession, IOFailure
from .fsio import exclusive_lock, is_valid_slug, slugify, utc_now
from .session_index import SessionIndex, SessionIndexEntry


logger = logging.getLogger(__name__)


def create_session(
    index: SessionIndex,
    title: str,
    slug: str | None = None,
    metadata: dict[str, Any] | None = None,
    created_at: str | None = None,
    config: LedgerConfig | None = None,
) -> ChecklistState:
    """
    Start a new session and register it as the most recent one.

    The whole creation runs under the index lock so concurrent starts are
    strictly ordered. The session documents are written first and the
    index append comes last: a session is only visible once indexed.
    """
    config = config or LedgerConfig()
    title = title.strip()
    if not title:
        raise ValueError("session title must not be empty")
    slug = slug.strip() if slug else slugify(title)
    if not is_valid_slug(slug):
        raise ValueError(f"invalid session slug {slug!r}; use lowercase kebab-case (a-z, 0-9, '-')")

    ledger_dir = index.ledger_dir
    session_dir = ledger_dir / slug
    with exclusive_lock(index.lock_path, index.lock_settings):
        if index.get(slug) is not None or session_dir.exists():
            raise DuplicateSession(slug)
        created = created_at or utc_now()
        state = ChecklistState(
            slug=slug,
            title=title,
            created_at=created,
            metadata=dict(metadata or {}),
            checklist={kind: False for kind in config.checklist},
            activity=[(created[:10], "Session started")],
        )
        try:
            session_dir.mkdir(parents=True)
        except OSError as exc:
            raise IOFailure(session_dir, exc) from exc
        save_state(session_dir, state)
        index.append_locked(
            SessionIndexEntry(slug=slug, title=title, created_at=created, readme=f"{slug}/README.md")
        )
    logger.info("started session %s at %s", slug, _rel(session_dir, ledger_dir.parent))
    return state


def _rel(path: Path, base: Path) -> str:
    try:
        return str(path.relative_to(base))
    except ValueError:
        return str(path)
