from __future__ import annotations

import pytest

from delivery_ledger.checklist import ChecklistState
from delivery_ledger.commands import COMMANDS, get_command, infer_next, producer_of
from delivery_ledger.config import DEFAULT_CHECKLIST
from delivery_ledger.errors import UnknownCommand
from delivery_ledger.kinds import KindRegistry


def _state(*done: str) -> ChecklistState:
    checklist = {kind: kind in done for kind in DEFAULT_CHECKLIST}
    for kind in done:
        checklist[kind] = True
    return ChecklistState(slug="csv-import", title="CSV import", created_at="2026-10-19T00:00:00Z", checklist=checklist)


def test_every_command_produces_a_known_kind() -> None:
    registry = KindRegistry()
    for c in COMMANDS:
        registry.resolve(c.produces)
        for i in c.inputs:
            if not i.latest:
                registry.resolve(i.kind)


def test_fresh_session_starts_with_spec() -> None:
    report = infer_next(_state())
    assert report["next"] == "spec-crystallize"
    assert {"command": "risk-assessment", "missing": ["plan"]} in report["blocked"]
    assert {"command": "ship-plan", "missing": ["plan", "prod-readiness"]} in report["blocked"]
    assert "review-security" in report["ready"]


def test_plan_unblocks_assessments() -> None:
    report = infer_next(_state("spec", "triage", "plan"))
    assert report["next"] == "risk-assessment"
    assert report["ready"][:3] == ["risk-assessment", "test-matrix", "work-log"]
    assert report["completed"] == ["spec", "triage", "plan"]


def test_one_review_completes_the_review_stage() -> None:
    report = infer_next(_state("spec", "triage", "plan", "risk-assessment", "test-matrix", "work", "review-security"))
    assert report["next"] == "prod-readiness"
    assert not any(name.startswith("review-") for name in report["ready"])


def test_finished_workflow_has_nothing_next() -> None:
    report = infer_next(_state(*DEFAULT_CHECKLIST, "review-tests"))
    assert report["next"] is None
    assert report["ready"] == []
    assert report["blocked"] == []


def test_command_lookup() -> None:
    assert get_command("research-plan").produces == "plan"
    assert get_command("prod-readiness").required_kinds() == ["plan"]
    assert producer_of("plan") == "research-plan"
    assert producer_of("review-") == "review-overengineering"
    assert producer_of("nothing") is None
    with pytest.raises(UnknownCommand):
        get_command("nothing")
