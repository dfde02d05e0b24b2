"""
Static declaration of the workflow commands.

Each command names the artifact kind it produces and the predecessor
kinds it reads. A required input that is missing stops the command; an
optional one only means the command falls back to asking the user or to
lightweight discovery.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .checklist import ChecklistState
from .errors import UnknownCommand
from .kinds import kind_satisfies


@dataclass(frozen=True)
class InputSpec:
    kind: str
    required: bool = False

    @property
    def latest(self) -> bool:
        """Prefix inputs (`review-`) resolve to the most recent matching instance."""
        return self.kind.endswith("-")


@dataclass(frozen=True)
class CommandSpec:
    name: str
    produces: str
    stage: str
    inputs: tuple[InputSpec, ...] = field(default_factory=tuple)
    description: str = ""

    def required_kinds(self) -> list[str]:
        return [i.kind for i in self.inputs if i.required]

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "produces": self.produces,
            "stage": self.stage,
            "inputs": [{"kind": i.kind, "required": i.required} for i in self.inputs],
            "description": self.description,
        }


def _opt(kind: str) -> InputSpec:
    return InputSpec(kind, required=False)


def _req(kind: str) -> InputSpec:
    return InputSpec(kind, required=True)


def _review(subtype: str, description: str) -> CommandSpec:
    return CommandSpec(f"review-{subtype}", f"review-{subtype}", "review", (_opt("plan"), _opt("work")), description)


STAGES = ("spec", "triage", "plan", "assess", "build", "review", "ship", "handoff")
# Event commands: run whenever needed, never suggested as the next step.
EVENT_STAGES = ("decision", "incident")

COMMANDS: tuple[CommandSpec, ...] = (
    CommandSpec("spec-crystallize", "spec", "spec", (), "Turn the conversation into a written spec."),
    CommandSpec("triage", "triage", "triage", (_opt("spec"),), "Scope, size and route the work."),
    CommandSpec("research-plan", "plan", "plan", (_opt("spec"), _opt("triage")), "Research the codebase and write the plan."),
    CommandSpec("risk-assessment", "risk-assessment", "assess", (_opt("spec"), _req("plan")), "Risk register for the plan."),
    CommandSpec("test-matrix", "test-matrix", "assess", (_opt("spec"), _req("plan")), "Test matrix for the plan."),
    CommandSpec("work-log", "work", "build", (_req("plan"),), "Record implementation progress against the plan."),
    _review("overengineering", "Review the work for unnecessary complexity."),
    _review("security", "Security review of the work."),
    _review("performance", "Performance review of the work."),
    _review("tests", "Review test coverage of the work."),
    _review("architecture", "Architecture review of the work."),
    CommandSpec(
        "prod-readiness",
        "prod-readiness",
        "ship",
        (_req("plan"), _opt("risk-assessment"), _opt("test-matrix"), _opt("review-")),
        "Production readiness checklist.",
    ),
    CommandSpec("ship-plan", "ship-plan", "ship", (_req("plan"), _req("prod-readiness")), "Rollout and rollback plan."),
    CommandSpec(
        "handoff",
        "handoff",
        "handoff",
        (_opt("spec"), _opt("plan"), _opt("ship-plan"), _opt("review-")),
        "Hand the session over to the next owner.",
    ),
    CommandSpec(
        "decision-record",
        "decision",
        "decision",
        (_opt("spec"), _opt("plan"), _opt("decision")),
        "Record a decision; may supersede an earlier one.",
    ),
    CommandSpec("rca", "rca", "incident", (_opt("ship-plan"), _opt("handoff")), "Post-incident root cause analysis."),
)

_BY_NAME = {c.name: c for c in COMMANDS}


def get_command(name: str) -> CommandSpec:
    try:
        return _BY_NAME[name]
    except KeyError:
        raise UnknownCommand(name) from None


def producer_of(kind: str) -> str | None:
    for c in COMMANDS:
        if kind_satisfies(c.produces, kind):
            return c.name
    return None


def is_complete(state: ChecklistState, kind: str) -> bool:
    return any(done and kind_satisfies(k, kind) for k, done in state.checklist.items())


def infer_next(state: ChecklistState) -> dict[str, Any]:
    """
    Suggest what to run next from the checklist alone.

    Walks the stages in workflow order. `next` is the first ready command
    of the earliest stage that is not complete yet; `ready` and `blocked`
    cover every non-event command whose output is still missing.
    """
    ready: list[str] = []
    blocked: list[dict[str, Any]] = []
    next_command: str | None = None
    for stage in STAGES:
        stage_commands = [c for c in COMMANDS if c.stage == stage]
        stage_done = stage == "review" and any(is_complete(state, c.produces) for c in stage_commands)
        for c in stage_commands:
            if stage_done or is_complete(state, c.produces):
                continue
            missing = [k for k in c.required_kinds() if not is_complete(state, k)]
            if missing:
                blocked.append({"command": c.name, "missing": missing})
                continue
            ready.append(c.name)
            if next_command is None:
                next_command = c.name
    return {
        "session": state.slug,
        "completed": state.completed(),
        "next": next_command,
        "ready": ready,
        "blocked": blocked,
    }
