from __future__ import annotations

from .errors import NoSessionsExist
from .session_index import SessionIndex


class SlugResolver:
    """Pick the session a command operates on. Read-only."""

    def __init__(self, index: SessionIndex) -> None:
        self.index = index

    def resolve(self, explicit_slug: str | None = None) -> str:
        # Existence is checked by the artifact store on first access.
        if explicit_slug:
            return explicit_slug
        entry = self.index.last()
        if entry is None:
            raise NoSessionsExist(self.index.path)
        return entry.slug
