"""
Artifact kind registry.

Each kind declares its lifecycle explicitly:

- singular: one live instance per session at a fixed path, rewritten on
  every run (`overwrite`).
- plural: every run creates a new dated instance (`create_new`); earlier
  instances stay on disk and are superseded only by back-reference.

A kind name ending in `-` is a prefix family (`review-` covers
`review-security`, `review-overengineering`, ...).
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

from .errors import UnknownArtifactKind
from .fsio import slugify


SINGULAR = "singular"
PLURAL = "plural"
LIFECYCLES = (SINGULAR, PLURAL)

OVERWRITE = "overwrite"
CREATE_NEW = "create_new"

DATED_NAME_RE = re.compile(r"^(\d{4}-\d{2}-\d{2})-(.+)\.md$")


@dataclass(frozen=True)
class ArtifactKind:
    name: str
    lifecycle: str
    directory: str
    filename: str | None = None

    @property
    def is_family(self) -> bool:
        return self.name.endswith("-")

    @property
    def default_mode(self) -> str:
        return OVERWRITE if self.lifecycle == SINGULAR else CREATE_NEW

    def matches(self, kind: str) -> bool:
        if self.is_family:
            return kind.startswith(self.name) and len(kind) > len(self.name)
        return kind == self.name

    def singular_path(self) -> str:
        return f"{self.directory}/{self.filename or self.name + '.md'}"

    def instance_stem(self, kind: str, date: str, topic: str | None) -> str:
        parts = [date]
        if self.is_family:
            parts.append(kind[len(self.name):])
        if topic:
            parts.append(slugify(topic, fallback=self.name.rstrip("-")))
        elif not self.is_family:
            parts.append(self.name)
        return "-".join(parts)


BUILTIN_KINDS: tuple[ArtifactKind, ...] = (
    ArtifactKind("spec", SINGULAR, "spec"),
    ArtifactKind("triage", SINGULAR, "triage"),
    ArtifactKind("plan", SINGULAR, "plan"),
    ArtifactKind("risk-assessment", SINGULAR, "risk"),
    ArtifactKind("test-matrix", SINGULAR, "testing"),
    ArtifactKind("work", SINGULAR, "work", "work-log.md"),
    ArtifactKind("prod-readiness", SINGULAR, "ship"),
    ArtifactKind("ship-plan", SINGULAR, "ship"),
    ArtifactKind("review-", PLURAL, "reviews"),
    ArtifactKind("decision", PLURAL, "decisions"),
    ArtifactKind("handoff", PLURAL, "handoffs"),
    ArtifactKind("rca", PLURAL, "rca"),
)


class KindRegistry:
    def __init__(self, extra: dict[str, dict[str, Any]] | None = None) -> None:
        kinds = list(BUILTIN_KINDS)
        for name, spec in sorted((extra or {}).items()):
            kinds.append(
                ArtifactKind(
                    name=name,
                    lifecycle=spec["lifecycle"],
                    directory=spec.get("directory", name),
                    filename=spec.get("filename"),
                )
            )
        self._kinds = kinds

    def __iter__(self):
        return iter(self._kinds)

    def resolve(self, kind: str) -> ArtifactKind:
        for k in self._kinds:
            if not k.is_family and k.name == kind:
                return k
        for k in self._kinds:
            if k.is_family and k.matches(kind):
                return k
        raise UnknownArtifactKind(kind)

    def matching_prefix(self, prefix: str) -> list[ArtifactKind]:
        """Kinds that can hold an instance whose name starts with `prefix`."""
        out = []
        for k in self._kinds:
            if k.name.startswith(prefix) or prefix.startswith(k.name):
                out.append(k)
        return out


def kind_satisfies(kind: str, wanted: str) -> bool:
    return kind.startswith(wanted) if wanted.endswith("-") else kind == wanted
