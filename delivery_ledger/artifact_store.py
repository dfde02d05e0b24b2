"""
On-disk artifact store for one ledger root.

Singular kinds live at a fixed path inside the session directory and are
rewritten in place. Plural kinds get a new `<date>-<topic>.md` instance on
every write; a name already taken gets a `-2`, `-3`, ... suffix, and the
final publish refuses to replace an existing file.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

from . import front_matter as fmcodec
from .checklist import SESSION_FILE
from .config import LedgerConfig
from .errors import MalformedArtifact, SessionNotFound
from .fsio import atomic_write_text, exclusive_write_text, is_valid_slug, read_text, utc_now, utc_today
from .kinds import CREATE_NEW, DATED_NAME_RE, OVERWRITE, SINGULAR, ArtifactKind, kind_satisfies


logger = logging.getLogger(__name__)

DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


@dataclass
class Artifact:
    session_slug: str
    kind: str
    path: str
    front_matter: dict[str, Any] = field(default_factory=dict)
    body: str = ""

    @property
    def date(self) -> str:
        value = self.front_matter.get("date")
        if isinstance(value, str) and value:
            return value
        m = DATED_NAME_RE.match(Path(self.path).name)
        return m.group(1) if m else ""

    @property
    def related(self) -> dict[str, Any]:
        value = self.front_matter.get("related")
        return value if isinstance(value, dict) else {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "session": self.session_slug,
            "kind": self.kind,
            "path": self.path,
            "front_matter": self.front_matter,
            "body": self.body,
        }


class ArtifactStore:
    def __init__(self, ledger_dir: Path, config: LedgerConfig | None = None) -> None:
        self.ledger_dir = ledger_dir
        self.config = config or LedgerConfig()
        self.kinds = self.config.kinds()

    def session_dir(self, slug: str) -> Path:
        session_dir = self.ledger_dir / slug
        # Only a started session counts; `..` or `slug/sub` never resolve.
        if not is_valid_slug(slug) or not (session_dir / SESSION_FILE).is_file():
            raise SessionNotFound(slug, session_dir)
        return session_dir

    def read_path(self, slug: str, rel_path: str) -> Artifact | None:
        path = self.session_dir(slug) / rel_path
        if not path.is_file():
            return None
        raw = read_text(path)
        try:
            fm, body = fmcodec.parse(raw)
        except MalformedArtifact as exc:
            raise MalformedArtifact(exc.reason, path) from exc
        kind = fm.get("kind")
        if not isinstance(kind, str) or not kind:
            kind = self._kind_from_location(rel_path)
        return Artifact(session_slug=slug, kind=kind, path=Path(rel_path).as_posix(), front_matter=fm, body=body)

    def _kind_from_location(self, rel_path: str) -> str:
        directory = Path(rel_path).parent.as_posix()
        for k in self.kinds:
            if k.lifecycle == SINGULAR and k.singular_path() == Path(rel_path).as_posix():
                return k.name
        for k in self.kinds:
            if k.directory == directory:
                return k.name
        return ""

    def _candidate_files(self, session_dir: Path, kinds: list[ArtifactKind]) -> list[Path]:
        out: list[Path] = []
        seen: set[Path] = set()
        for k in kinds:
            if k.lifecycle == SINGULAR:
                paths = [session_dir / k.singular_path()]
            else:
                paths = sorted((session_dir / k.directory).glob("*.md"))
            for p in paths:
                if p in seen or p.name.startswith(".") or not p.is_file():
                    continue
                seen.add(p)
                out.append(p)
        return out

    def _instances(self, slug: str, accept: Callable[[str], bool], kinds: list[ArtifactKind]) -> list[Artifact]:
        session_dir = self.session_dir(slug)
        found: list[tuple[str, int, str, Artifact]] = []
        for p in self._candidate_files(session_dir, kinds):
            rel = p.relative_to(session_dir).as_posix()
            artifact = self.read_path(slug, rel)
            if artifact is None or not accept(artifact.kind):
                continue
            found.append((artifact.date, p.stat().st_mtime_ns, rel, artifact))
        found.sort(key=lambda item: item[:3])
        return [item[3] for item in found]

    def list_instances(self, slug: str, kind_prefix: str = "") -> list[Artifact]:
        """All artifacts whose kind starts with `kind_prefix`, oldest first."""
        return self._instances(
            slug,
            lambda kind: kind.startswith(kind_prefix),
            self.kinds.matching_prefix(kind_prefix) if kind_prefix else list(self.kinds),
        )

    def read_latest(self, slug: str, kind_prefix: str) -> Artifact | None:
        instances = self.list_instances(slug, kind_prefix)
        return instances[-1] if instances else None

    def read(self, slug: str, kind: str) -> Artifact | None:
        if kind.endswith("-"):
            return self.read_latest(slug, kind)
        k = self.kinds.resolve(kind)
        if k.lifecycle == SINGULAR:
            return self.read_path(slug, k.singular_path())
        instances = self._instances(slug, lambda found: found == kind, [k])
        return instances[-1] if instances else None

    def exists(self, slug: str, kind: str) -> bool:
        if kind.endswith("-"):
            return self.read_latest(slug, kind) is not None
        k = self.kinds.resolve(kind)
        if k.lifecycle == SINGULAR:
            return (self.session_dir(slug) / k.singular_path()).is_file()
        return bool(self._instances(slug, lambda found: kind_satisfies(found, kind), [k]))

    def write(
        self,
        slug: str,
        kind: str,
        front_matter: dict[str, Any] | None = None,
        body: str = "",
        mode: str | None = None,
        date: str | None = None,
        topic: str | None = None,
        merge_policy: str | None = None,
    ) -> Artifact:
        k = self.kinds.resolve(kind)
        mode = mode or k.default_mode
        if mode not in (OVERWRITE, CREATE_NEW):
            raise ValueError(f"invalid write mode: {mode!r}")
        if mode != k.default_mode:
            raise ValueError(f"{kind} is a {k.lifecycle} kind; write it with mode={k.default_mode}")
        session_dir = self.session_dir(slug)

        fm = dict(front_matter or {})
        date = date or (fm.get("date") if isinstance(fm.get("date"), str) else None) or utc_today()
        if not DATE_RE.match(date):
            raise ValueError(f"invalid artifact date {date!r}; expected YYYY-MM-DD")
        fm["kind"] = kind
        fm["session"] = slug
        fm["date"] = date
        fm.setdefault("created_at", utc_now())
        if topic:
            fm.setdefault("topic", topic)

        if mode == OVERWRITE:
            rel = k.singular_path()
            target = session_dir / rel
            policy = merge_policy or self.config.merge_policy_for(kind)
            if policy == "append":
                previous = self.read_path(slug, rel)
                if previous is not None:
                    merged = dict(previous.front_matter)
                    related = {**previous.related, **(fm.get("related") or {})}
                    merged.update(fm)
                    if "created_at" in previous.front_matter and "created_at" not in (front_matter or {}):
                        merged["created_at"] = previous.front_matter["created_at"]
                    if related:
                        merged["related"] = related
                    fm = merged
                    body = previous.body.rstrip("\n") + "\n\n" + body
            elif policy != "overwrite":
                raise ValueError(f"invalid merge policy: {policy!r}")
            atomic_write_text(target, fmcodec.serialize(fm, body))
        else:
            directory = session_dir / k.directory
            stem = k.instance_stem(kind, date, topic)
            target = directory / f"{stem}.md"
            n = 2
            while target.exists():
                target = directory / f"{stem}-{n}.md"
                n += 1
            exclusive_write_text(target, fmcodec.serialize(fm, body))
            rel = target.relative_to(session_dir).as_posix()

        logger.info("wrote %s artifact %s/%s", kind, slug, rel)
        return Artifact(session_slug=slug, kind=kind, path=rel, front_matter=fm, body=body)
