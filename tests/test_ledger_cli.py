from __future__ import annotations

import json
import os
import subprocess
import sys
import time
from pathlib import Path

from conftest import REPO_ROOT, load_json, run_cmd, run_ledger


def _start(project: Path, title: str, *extra: str) -> dict:
    proc = run_ledger(project, "session-start", "--title", title, "--format", "json", *extra)
    return json.loads(proc.stdout)


def test_session_start_list_and_resolve(project: Path) -> None:
    first = _start(project, "CSV import", "--meta", "scope=backend", "--meta", "risk=low")
    assert first["slug"] == "csv-import"
    assert first["metadata"] == {"scope": "backend", "risk": "low"}
    _start(project, "Billing retry", "--slug", "billing-retry")

    listed = json.loads(run_ledger(project, "session-list", "--format", "json").stdout)
    assert [e["slug"] for e in listed["entries"]] == ["csv-import", "billing-retry"]

    assert run_ledger(project, "resolve").stdout.strip() == "billing-retry"
    assert run_ledger(project, "resolve", "--session", "csv-import").stdout.strip() == "csv-import"


def test_run_chain_reads_predecessors_and_updates_readme(project: Path) -> None:
    _start(project, "CSV import")
    spec = run_ledger(project, "run", "--command", "spec-crystallize", input_text="# Spec\n\nImport CSV files.\n")
    assert spec.stdout.splitlines()[0] == "spec/spec.md"

    body_file = project / "plan-body.md"
    body_file.write_text("# Plan\n\n1. Parser\n", encoding="utf-8")
    plan = run_ledger(
        project, "run", "--command", "research-plan", "--body-file", "plan-body.md", "--scope", "backend", "--format", "json"
    )
    payload = json.loads(plan.stdout)
    assert payload["path"] == "plan/plan.md"
    assert payload["related"] == {"spec": "spec/spec.md"}
    assert payload["missing_optional_inputs"] == ["triage"]
    assert payload["state"] == "done"

    read = run_ledger(project, "read", "--kind", "plan")
    assert read.stdout == "# Plan\n\n1. Parser\n"

    readme = (project / ".sessions" / "csv-import" / "README.md").read_text(encoding="utf-8")
    assert "- [x] spec" in readme
    assert "- [x] plan" in readme
    assert "- [ ] triage" in readme
    assert "research-plan: wrote `plan/plan.md`" in readme


def test_missing_prerequisite_is_reported_with_corrective_action(project: Path) -> None:
    _start(project, "CSV import")
    before = load_json(project / ".sessions" / "csv-import" / "session_v0.json")

    proc = run_ledger(project, "run", "--command", "ship-plan", input_text="# Ship\n", expect_code=1)
    assert "required input `plan` is missing in session csv-import" in proc.stderr
    assert "hint: Run `delivery-ledger run --command research-plan` first." in proc.stderr
    assert load_json(project / ".sessions" / "csv-import" / "session_v0.json") == before


def test_commands_before_any_session(project: Path) -> None:
    proc = run_ledger(project, "resolve", expect_code=1)
    assert "no sessions recorded" in proc.stderr
    assert "session-start" in proc.stderr

    proc = run_ledger(project, "read", "--kind", "spec", "--session", "ghost", expect_code=1)
    assert "session not found: ghost" in proc.stderr


def test_next_follows_the_checklist(project: Path) -> None:
    _start(project, "CSV import")
    assert json.loads(run_ledger(project, "next", "--format", "json").stdout)["next"] == "spec-crystallize"
    run_ledger(project, "run", "--command", "spec-crystallize", input_text="spec\n")
    run_ledger(project, "run", "--command", "triage", input_text="triage\n")
    run_ledger(project, "run", "--command", "research-plan", input_text="plan\n")
    text = run_ledger(project, "next").stdout
    assert "next: risk-assessment" in text
    assert "blocked: ship-plan (missing prod-readiness)" in text


def test_plural_reviews_and_latest_read(project: Path) -> None:
    _start(project, "CSV import")
    for date in ("2026-10-01", "2026-10-03", "2026-10-02"):
        run_ledger(project, "run", "--command", "review-overengineering", "--date", date, input_text=f"review {date}\n")
    reviews = sorted(p.name for p in (project / ".sessions" / "csv-import" / "reviews").iterdir())
    assert reviews == [
        "2026-10-01-overengineering.md",
        "2026-10-02-overengineering.md",
        "2026-10-03-overengineering.md",
    ]
    latest = json.loads(run_ledger(project, "read", "--kind", "review-", "--latest", "--format", "json").stdout)
    assert latest["path"] == "reviews/2026-10-03-overengineering.md"


def test_decision_supersedes_latest(project: Path) -> None:
    _start(project, "CSV import")
    run_ledger(project, "run", "--command", "decision-record", "--topic", "storage", "--date", "2026-10-02", input_text="SQLite\n")
    proc = run_ledger(
        project,
        "run",
        "--command",
        "decision-record",
        "--topic",
        "storage",
        "--date",
        "2026-10-03",
        "--supersedes",
        "latest",
        input_text="Postgres\n",
    )
    assert proc.stdout.splitlines()[0] == "decisions/2026-10-03-storage.md"
    decision = json.loads(run_ledger(project, "read", "--kind", "decision", "--format", "json").stdout)
    assert decision["front_matter"]["supersedes"] == "decisions/2026-10-02-storage.md"


def test_checklist_mark_requires_an_artifact(project: Path) -> None:
    _start(project, "CSV import")
    proc = run_ledger(project, "checklist-mark", "--kind", "spec", expect_code=1)
    assert "no artifact" in proc.stderr
    run_ledger(project, "activity-append", "--description", "Paired with QA", "--date", "2026-10-19")
    state = load_json(project / ".sessions" / "csv-import" / "session_v0.json")
    assert state["activity"][-1] == {"date": "2026-10-19", "description": "Paired with QA"}


def test_config_file_sets_checklist_and_merge_policy(project: Path) -> None:
    ledger_dir = project / ".sessions"
    ledger_dir.mkdir()
    (ledger_dir / "ledger_config_v0.json").write_text(
        json.dumps({"version": "v0", "checklist": ["spec", "plan"], "merge_policy": {"plan": "append"}}),
        encoding="utf-8",
    )
    started = _start(project, "CSV import")
    assert started["checklist"] == {"spec": False, "plan": False}

    run_ledger(project, "run", "--command", "research-plan", input_text="step one\n")
    run_ledger(project, "run", "--command", "research-plan", input_text="step two\n")
    assert run_ledger(project, "read", "--kind", "plan").stdout == "step one\n\nstep two\n"


def test_invalid_config_is_rejected(project: Path) -> None:
    ledger_dir = project / ".sessions"
    ledger_dir.mkdir()
    (ledger_dir / "ledger_config_v0.json").write_text(json.dumps({"merge_policy": {"plan": "sideways"}}), encoding="utf-8")
    proc = run_ledger(project, "session-start", "--title", "CSV import", expect_code=1)
    assert "invalid config shape" in proc.stderr


def test_ledger_root_from_environment(project: Path) -> None:
    env_root = project / "docs" / "sessions"
    args = [sys.executable, "-m", "delivery_ledger.cli", "session-start", "--project-dir", str(project), "--title", "Env root"]
    env = dict(os.environ, DELIVERY_LEDGER_ROOT=str(env_root))
    proc = subprocess.run(args, cwd=str(REPO_ROOT), env=env, text=True, capture_output=True, check=False)
    assert proc.returncode == 0, proc.stderr
    assert (env_root / "env-root" / "README.md").exists()
    assert not (project / ".sessions").exists()


def test_stale_lock_is_reclaimed(project: Path) -> None:
    ledger_dir = project / ".sessions"
    ledger_dir.mkdir()
    (ledger_dir / ".index.lock").write_text(
        json.dumps({"token": "dead", "pid": 999_999_999, "created_epoch": time.time()}),
        encoding="utf-8",
    )
    _start(project, "CSV import")
    assert not (ledger_dir / ".index.lock").exists()


def test_live_lock_times_out(project: Path) -> None:
    ledger_dir = project / ".sessions"
    ledger_dir.mkdir()
    lock = ledger_dir / ".index.lock"
    lock.write_text(json.dumps({"token": "live", "pid": os.getpid(), "created_epoch": time.time()}), encoding="utf-8")

    proc = run_ledger(project, "session-start", "--title", "CSV import", "--lock-timeout-seconds", "0.3", expect_code=1)
    assert "lock_timeout" in proc.stderr
    assert lock.exists()
    assert not (ledger_dir / "sessions_v0.json").exists()

    _start(project, "CSV import", "--force-unlock")
    assert load_json(ledger_dir / "sessions_v0.json")["entries"][0]["slug"] == "csv-import"


def test_audit_reports_stale_and_partial_state(project: Path) -> None:
    _start(project, "CSV import")
    run_ledger(project, "run", "--command", "spec-crystallize", input_text="spec\n")
    report = json.loads(run_ledger(project, "audit", "--format", "json").stdout)
    assert report["status"] == "pass"

    session_dir = project / ".sessions" / "csv-import"
    (session_dir / "spec" / "spec.md").unlink()
    (session_dir / "plan").mkdir()
    (session_dir / "plan" / ".plan.md.tmp.abc123").write_text("half", encoding="utf-8")
    (session_dir / "triage").mkdir()
    (session_dir / "triage" / "triage.md").write_text("no header\n", encoding="utf-8")

    run_ledger(project, "audit", "--out-file", "audit.json", expect_code=1)
    report = load_json(project / "audit.json")
    checks = {f["check"] for f in report["findings"]}
    assert {"stale_checklist", "partial_write", "malformed_artifact"} <= checks
    assert any(c["check"] == "session_artifacts" and c["status"] == "fail" for c in report["checks"])


def test_audit_flags_unindexed_session(project: Path) -> None:
    _start(project, "CSV import")
    orphan = project / ".sessions" / "orphan"
    orphan.mkdir()
    (orphan / "session_v0.json").write_text(
        json.dumps(
            {"version": "v0", "slug": "orphan", "title": "Orphan", "created_at": "2026-10-19T00:00:00Z", "checklist": {}, "activity": []}
        ),
        encoding="utf-8",
    )
    report = json.loads(run_ledger(project, "audit", "--format", "json").stdout)
    assert any(c["check"] == "sessions_indexed" and c["status"] == "warn" for c in report["checks"])


def test_commands_listing() -> None:
    proc = run_cmd([sys.executable, "-m", "delivery_ledger.cli", "commands", "--format", "json"], cwd=REPO_ROOT)
    payload = json.loads(proc.stdout)
    names = [c["name"] for c in payload["commands"]]
    assert names[0] == "spec-crystallize"
    assert "rca" in names
    assert {"name": "review-", "lifecycle": "plural", "directory": "reviews"} in payload["kinds"]


def test_handoff_supersedes_latest_and_requires_a_predecessor(project: Path) -> None:
    _start(project, "CSV import")
    proc = run_ledger(
        project, "run", "--command", "rca", "--topic", "outage", "--supersedes", "latest", input_text="x\n", expect_code=1
    )
    assert "no earlier `rca` artifact in session csv-import" in proc.stderr
    assert not (project / ".sessions" / "csv-import" / "rca").exists()

    run_ledger(project, "run", "--command", "handoff", "--topic", "a", "--date", "2026-10-01", input_text="first\n")
    run_ledger(
        project,
        "run",
        "--command",
        "handoff",
        "--topic",
        "b",
        "--date",
        "2026-10-02",
        "--supersedes",
        "latest",
        input_text="second\n",
    )
    handoff = json.loads(run_ledger(project, "read", "--kind", "handoff", "--format", "json").stdout)
    assert handoff["path"] == "handoffs/2026-10-02-b.md"
    assert handoff["front_matter"]["supersedes"] == "handoffs/2026-10-01-a.md"


def test_checklist_mark_with_family_prefix_marks_the_concrete_kind(project: Path) -> None:
    _start(project, "CSV import")
    proc = run_ledger(project, "checklist-mark", "--kind", "review-", expect_code=1)
    assert "no artifact" in proc.stderr

    reviews = project / ".sessions" / "csv-import" / "reviews"
    reviews.mkdir()
    (reviews / "2026-10-05-security.md").write_text(
        "---\nkind: review-security\ndate: '2026-10-05'\n---\nLooks fine.\n", encoding="utf-8"
    )
    run_ledger(project, "checklist-mark", "--kind", "review-")

    state = load_json(project / ".sessions" / "csv-import" / "session_v0.json")
    assert state["checklist"]["review-security"] is True
    assert "review-" not in state["checklist"]
    report = json.loads(run_ledger(project, "audit", "--format", "json").stdout)
    assert report["status"] == "pass"
