"""
Command invocation orchestration.

    RESOLVING -> LOADING_INPUTS -> EXECUTING -> PERSISTING -> DONE
        \\              \\              \\             \\
         +--------------+--------------+-------------+--> FAILED

The artifact write always precedes the checklist update, so a failed write
leaves the session checklist exactly as it was.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable

from .artifact_store import Artifact, ArtifactStore
from .checklist import ChecklistSynchronizer
from .commands import CommandSpec, get_command, producer_of
from .config import LedgerConfig, load_config, resolve_ledger_dir
from .errors import MissingPrerequisite
from .fsio import utc_today
from .resolver import SlugResolver
from .session_index import SessionIndex


logger = logging.getLogger(__name__)


class CommandState(str, Enum):
    RESOLVING = "resolving"
    LOADING_INPUTS = "loading_inputs"
    EXECUTING = "executing"
    PERSISTING = "persisting"
    DONE = "done"
    FAILED = "failed"


_TRANSITIONS = {
    CommandState.RESOLVING: {CommandState.LOADING_INPUTS, CommandState.FAILED},
    CommandState.LOADING_INPUTS: {CommandState.EXECUTING, CommandState.FAILED},
    CommandState.EXECUTING: {CommandState.PERSISTING, CommandState.FAILED},
    CommandState.PERSISTING: {CommandState.DONE, CommandState.FAILED},
    CommandState.DONE: set(),
    CommandState.FAILED: set(),
}


class Ledger:
    """The services of one ledger root, wired with its configuration."""

    def __init__(
        self,
        ledger_dir: Path,
        config: LedgerConfig | None = None,
        command: str = "delivery-ledger",
        force_unlock: bool = False,
    ) -> None:
        self.ledger_dir = ledger_dir
        self.config = config if config is not None else load_config(ledger_dir)
        lock_settings = self.config.lock_settings(command=command, force_unlock=force_unlock)
        self.index = SessionIndex(ledger_dir, lock_settings)
        self.resolver = SlugResolver(self.index)
        self.store = ArtifactStore(ledger_dir, self.config)
        self.checklist = ChecklistSynchronizer(ledger_dir, lock_settings)

    @classmethod
    def open(cls, project_dir: Path, ledger_root: str | None = None, **kwargs: Any) -> "Ledger":
        return cls(resolve_ledger_dir(project_dir, ledger_root), **kwargs)


@dataclass
class Draft:
    """What the command-specific step hands back for persisting."""

    body: str
    front_matter: dict[str, Any] = field(default_factory=dict)
    topic: str | None = None
    date: str | None = None
    supersedes: str | None = None


class CommandContext:
    def __init__(
        self,
        ledger: Ledger,
        command: str | CommandSpec,
        slug: str | None = None,
        merge_policy: str | None = None,
    ) -> None:
        self.ledger = ledger
        self.command = get_command(command) if isinstance(command, str) else command
        self.explicit_slug = slug
        self.merge_policy = merge_policy
        self.state = CommandState.RESOLVING
        self.slug: str | None = None
        self.inputs: dict[str, Artifact | None] = {}
        self.artifact: Artifact | None = None
        self.error: Exception | None = None

    def _transition(self, target: CommandState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"invalid command state transition: {self.state.value} -> {target.value}")
        logger.debug("%s: %s -> %s", self.command.name, self.state.value, target.value)
        self.state = target

    def _fail(self, exc: Exception) -> None:
        self.error = exc
        if self.state not in (CommandState.DONE, CommandState.FAILED):
            self._transition(CommandState.FAILED)

    def resolve(self) -> str:
        try:
            self.slug = self.ledger.resolver.resolve(self.explicit_slug)
        except Exception as exc:
            self._fail(exc)
            raise
        self._transition(CommandState.LOADING_INPUTS)
        return self.slug

    def load_inputs(self) -> dict[str, Artifact | None]:
        try:
            for spec in self.command.inputs:
                artifact = self.ledger.store.read(self.slug, spec.kind)
                if artifact is None and spec.required:
                    raise MissingPrerequisite(self.command.name, self.slug, spec.kind, producer_of(spec.kind))
                if artifact is None:
                    logger.info("%s: optional input %s not found; continuing without it", self.command.name, spec.kind)
                self.inputs[spec.kind] = artifact
        except Exception as exc:
            self._fail(exc)
            raise
        self._transition(CommandState.EXECUTING)
        return self.inputs

    def related(self) -> dict[str, str]:
        out: dict[str, str] = {}
        for kind, artifact in self.inputs.items():
            if artifact is not None:
                out[artifact.kind if kind.endswith("-") else kind] = artifact.path
        return out

    def persist(self, draft: Draft) -> Artifact:
        self._transition(CommandState.PERSISTING)
        try:
            fm = {"command": self.command.name}
            fm.update(draft.front_matter)
            related = {**self.related(), **(draft.front_matter.get("related") or {})}
            if related:
                fm["related"] = related
            if draft.supersedes:
                fm["supersedes"] = draft.supersedes
            artifact = self.ledger.store.write(
                self.slug,
                self.command.produces,
                fm,
                draft.body,
                date=draft.date,
                topic=draft.topic,
                merge_policy=self.merge_policy,
            )
            self.ledger.checklist.mark_complete(self.slug, artifact.kind)
            self.ledger.checklist.append_activity(
                self.slug, utc_today(), f"{self.command.name}: wrote `{artifact.path}`"
            )
        except Exception as exc:
            self._fail(exc)
            raise
        self.artifact = artifact
        self._transition(CommandState.DONE)
        return artifact

    def run(self, execute: Callable[["CommandContext"], Draft]) -> Artifact:
        self.resolve()
        self.load_inputs()
        try:
            draft = execute(self)
        except Exception as exc:
            self._fail(exc)
            raise
        return self.persist(draft)
