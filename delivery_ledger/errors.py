"""
Error taxonomy for the session ledger.

Every error carries a stable `code` and a `hint` naming the corrective
action, so the CLI can report what was missing and what to run next.
"""

from __future__ import annotations

from pathlib import Path


class LedgerError(RuntimeError):
    code = "ledger_error"
    hint = ""

    def __init__(self, message: str, hint: str | None = None) -> None:
        super().__init__(message)
        if hint is not None:
            self.hint = hint

    def to_dict(self) -> dict[str, str]:
        return {"code": self.code, "message": str(self), "hint": self.hint}


class NoSessionsExist(LedgerError):
    code = "no_sessions_exist"
    hint = "Run `delivery-ledger session-start --title <title>` first."

    def __init__(self, index_path: Path) -> None:
        super().__init__(f"no sessions recorded in {index_path}")
        self.index_path = index_path


class SessionNotFound(LedgerError):
    code = "session_not_found"

    def __init__(self, slug: str, session_dir: Path) -> None:
        super().__init__(
            f"session not found: {slug} ({session_dir})",
            hint="Check `delivery-ledger session-list` or start the session with `session-start`.",
        )
        self.slug = slug
        self.session_dir = session_dir


class DuplicateSession(LedgerError):
    code = "duplicate_session"

    def __init__(self, slug: str) -> None:
        super().__init__(
            f"session already exists: {slug}",
            hint="Pick a different --slug, or continue the existing session with --session.",
        )
        self.slug = slug


class MissingPrerequisite(LedgerError):
    code = "missing_prerequisite"

    def __init__(self, command: str, slug: str, kind: str, producer: str | None = None) -> None:
        run_hint = f"Run `delivery-ledger run --command {producer}` first." if producer else f"Write a `{kind}` artifact first."
        super().__init__(
            f"{command}: required input `{kind}` is missing in session {slug}",
            hint=run_hint,
        )
        self.command = command
        self.slug = slug
        self.kind = kind


class MalformedArtifact(LedgerError):
    code = "malformed_artifact"
    hint = "Fix or remove the file by hand; it must start with a `---` front matter block."

    def __init__(self, reason: str, path: Path | str | None = None) -> None:
        where = f"{path}: " if path is not None else ""
        super().__init__(f"{where}{reason}")
        self.path = path
        self.reason = reason


class DuplicateArtifact(LedgerError):
    code = "duplicate_artifact"
    hint = "Pass a different --topic (or --date) so the instance path is unique."

    def __init__(self, path: Path) -> None:
        super().__init__(f"artifact already exists: {path}")
        self.path = path


class IOFailure(LedgerError):
    code = "io_failure"
    hint = "Check permissions and free space under the ledger root, then rerun."

    def __init__(self, path: Path, exc: OSError) -> None:
        super().__init__(f"I/O failure on {path}: {exc}")
        self.path = path


class LockTimeout(LedgerError):
    code = "lock_timeout"
    hint = "Wait for the other command to finish, or rerun with --force-unlock if its owner is gone."

    def __init__(self, lock_path: Path, owner: dict) -> None:
        super().__init__(f"lock_timeout: unable to acquire {lock_path}; owner={owner if owner else 'unknown'}")
        self.lock_path = lock_path
        self.owner = owner


class UnknownArtifactKind(LedgerError, ValueError):
    code = "unknown_artifact_kind"
    hint = "Run `delivery-ledger commands` to see the known kinds, or register it under extra_kinds."

    def __init__(self, kind: str) -> None:
        super().__init__(f"unknown artifact kind: {kind!r}")
        self.kind = kind


class UnknownCommand(LedgerError, ValueError):
    code = "unknown_command"
    hint = "Run `delivery-ledger commands` to list the declared commands."

    def __init__(self, name: str) -> None:
        super().__init__(f"unknown command: {name!r}")
        self.name = name
