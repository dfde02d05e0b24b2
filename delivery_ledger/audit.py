"""
Consistency audit of a ledger root.

Detects the failure modes a shared file tree can end up in: sessions
missing from the index (or the reverse), checklist items marked complete
with no artifact behind them, artifacts the checklist never recorded,
unparsable artifacts, and temp files left by interrupted writes.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from .artifact_store import ArtifactStore
from .checklist import SESSION_FILE, load_state
from .commands import is_complete
from .errors import LedgerError, MalformedArtifact
from .fsio import TMP_MARKER, utc_now
from .session_index import SessionIndex


def _check(checks: list[dict[str, Any]], name: str, status: str, detail: str) -> None:
    checks.append({"check": name, "status": status, "detail": detail})


def _audit_session(store: ArtifactStore, slug: str, findings: list[dict[str, Any]]) -> None:
    session_dir = store.session_dir(slug)
    state = load_state(session_dir, slug)

    for p in sorted(session_dir.rglob(f"*{TMP_MARKER}*")):
        findings.append(
            {
                "session": slug,
                "check": "partial_write",
                "severity": "fail",
                "path": p.relative_to(session_dir).as_posix(),
                "detail": "temp file left by an interrupted write",
            }
        )

    artifacts = []
    for p in sorted(session_dir.rglob("*.md")):
        rel = p.relative_to(session_dir).as_posix()
        if rel == "README.md" or p.name.startswith("."):
            continue
        try:
            artifact = store.read_path(slug, rel)
        except MalformedArtifact as exc:
            findings.append(
                {"session": slug, "check": "malformed_artifact", "severity": "fail", "path": rel, "detail": exc.reason}
            )
            continue
        if artifact is not None:
            artifacts.append(artifact)

    for kind, done in state.checklist.items():
        if done and not any(a.kind == kind for a in artifacts):
            findings.append(
                {
                    "session": slug,
                    "check": "stale_checklist",
                    "severity": "fail",
                    "kind": kind,
                    "detail": "checklist marks this kind complete but no artifact exists",
                }
            )
    for a in artifacts:
        if a.kind and not is_complete(state, a.kind):
            findings.append(
                {
                    "session": slug,
                    "check": "unsynced_checklist",
                    "severity": "warn",
                    "kind": a.kind,
                    "path": a.path,
                    "detail": "artifact exists but the checklist was never updated",
                }
            )


def compute_ledger_audit(ledger_dir: Path, store: ArtifactStore, slug: str | None = None) -> dict[str, Any]:
    index = SessionIndex(ledger_dir)
    checks: list[dict[str, Any]] = []
    findings: list[dict[str, Any]] = []

    try:
        entries = index.list_all()
        _check(checks, "session_index", "pass", f"{len(entries)} sessions indexed")
    except LedgerError as exc:
        entries = []
        _check(checks, "session_index", "fail", str(exc))

    indexed = [e.slug for e in entries]
    on_disk = sorted(p.parent.name for p in ledger_dir.glob(f"*/{SESSION_FILE}")) if ledger_dir.is_dir() else []

    if slug is None:
        missing_dirs = [s for s in indexed if not (ledger_dir / s).is_dir()]
        unindexed = [s for s in on_disk if s not in indexed]
        _check(
            checks,
            "indexed_sessions_exist",
            "fail" if missing_dirs else "pass",
            f"missing: {', '.join(missing_dirs)}" if missing_dirs else "all indexed sessions have a directory",
        )
        _check(
            checks,
            "sessions_indexed",
            "warn" if unindexed else "pass",
            f"not in index: {', '.join(unindexed)}" if unindexed else "every session directory is indexed",
        )
        out_of_order = [
            entries[i].slug for i in range(1, len(entries)) if entries[i].created_at < entries[i - 1].created_at
        ]
        _check(
            checks,
            "index_creation_order",
            "warn" if out_of_order else "pass",
            f"created before predecessor: {', '.join(out_of_order)}" if out_of_order else "creation dates non-decreasing",
        )
        targets = [s for s in indexed if (ledger_dir / s).is_dir()]
    else:
        targets = [slug]

    for target in targets:
        try:
            _audit_session(store, target, findings)
        except LedgerError as exc:
            findings.append({"session": target, "check": "session_state", "severity": "fail", "detail": str(exc)})

    fail_count = sum(1 for f in findings if f["severity"] == "fail")
    _check(
        checks,
        "session_artifacts",
        "fail" if fail_count else "pass",
        f"{len(findings)} findings across {len(targets)} sessions",
    )
    status = "fail" if any(c["status"] == "fail" for c in checks) else "pass"
    return {
        "version": "v0",
        "run_at": utc_now(),
        "ledger_dir": str(ledger_dir),
        "session": slug,
        "status": status,
        "checks": checks,
        "findings": findings,
    }
