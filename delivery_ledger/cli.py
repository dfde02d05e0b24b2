"""
Delivery Ledger v0

CLI to track session artifacts across a chained delivery workflow
(spec -> triage -> plan -> review -> ship -> handoff -> rca).
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any

from .audit import compute_ledger_audit
from .commands import COMMANDS, infer_next
from .config import LOG_LEVEL_ENV, MERGE_POLICIES, load_config, resolve_ledger_dir
from .context import CommandContext, Draft, Ledger
from .errors import LedgerError
from .fsio import DEFAULT_LOCK_STALE_SECONDS, DEFAULT_LOCK_TIMEOUT_SECONDS, atomic_write_text, utc_today
from .kinds import BUILTIN_KINDS
from .sessions import create_session


logger = logging.getLogger("delivery_ledger")


def parse_meta(pairs: list[str] | None) -> dict[str, str]:
    out: dict[str, str] = {}
    for raw in pairs or []:
        if "=" not in raw:
            raise ValueError(f"invalid --meta value {raw!r}; expected key=value")
        key, value = raw.split("=", 1)
        key = key.strip()
        if not key:
            raise ValueError(f"invalid --meta value {raw!r}; empty key")
        out[key] = value.strip()
    return out


def open_ledger(args: argparse.Namespace) -> Ledger:
    ledger_dir = resolve_ledger_dir(Path(args.project_dir).resolve(), getattr(args, "ledger_root", None))
    config = load_config(ledger_dir)
    # CLI flags win over ledger_config_v0.json.
    if getattr(args, "lock_timeout_seconds", None) is not None:
        config.lock_timeout_seconds = args.lock_timeout_seconds
    if getattr(args, "lock_stale_seconds", None) is not None:
        config.lock_stale_seconds = args.lock_stale_seconds
    return Ledger(ledger_dir, config, command=args.cmd, force_unlock=getattr(args, "force_unlock", False))


def emit(args: argparse.Namespace, payload: dict[str, Any], text_lines: list[str]) -> None:
    if getattr(args, "format", "text") == "json":
        print(json.dumps(payload, indent=2, sort_keys=True))
    else:
        for line in text_lines:
            print(line)


def session_start_project(args: argparse.Namespace) -> int:
    ledger = open_ledger(args)
    state = create_session(
        ledger.index,
        title=args.title,
        slug=args.slug,
        metadata=parse_meta(args.meta),
        config=ledger.config,
    )
    emit(
        args,
        state.to_dict(),
        [
            f"session: {state.slug}",
            f"readme: {ledger.ledger_dir / state.slug / 'README.md'}",
        ],
    )
    return 0


def session_list_project(args: argparse.Namespace) -> int:
    ledger = open_ledger(args)
    entries = ledger.index.list_all()
    emit(
        args,
        {"version": "v0", "entries": [e.to_dict() for e in entries]},
        [f"sessions: {len(entries)}"] + [f"- {e.slug} [{e.created_at}] {e.title}" for e in entries],
    )
    return 0


def session_show_project(args: argparse.Namespace) -> int:
    ledger = open_ledger(args)
    slug = ledger.resolver.resolve(args.session)
    state = ledger.checklist.load(slug)
    lines = [f"session: {state.slug}", f"title: {state.title}", f"created_at: {state.created_at}", "checklist:"]
    lines += [f"- [{'x' if done else ' '}] {kind}" for kind, done in state.checklist.items()]
    lines.append("activity:")
    lines += [f"- {date}: {desc}" for date, desc in state.activity]
    emit(args, state.to_dict(), lines)
    return 0


def resolve_project(args: argparse.Namespace) -> int:
    ledger = open_ledger(args)
    slug = ledger.resolver.resolve(args.session)
    emit(args, {"session": slug}, [slug])
    return 0


def read_body(args: argparse.Namespace) -> str:
    if args.body_file in (None, "-"):
        return sys.stdin.read()
    path = Path(args.body_file)
    if not path.is_absolute():
        path = Path(args.project_dir) / path
    return path.read_text(encoding="utf-8")


def run_project(args: argparse.Namespace) -> int:
    ledger = open_ledger(args)
    ctx = CommandContext(ledger, args.command, slug=args.session, merge_policy=args.merge_policy)

    def execute(c: CommandContext) -> Draft:
        fm: dict[str, Any] = {}
        if args.scope:
            fm["scope"] = args.scope
        if args.target:
            fm["target"] = args.target
        supersedes = args.supersedes
        if supersedes == "latest":
            previous = c.ledger.store.read(c.slug, c.command.produces)
            if previous is None:
                raise ValueError(
                    f"--supersedes latest: no earlier `{c.command.produces}` artifact in session {c.slug}"
                )
            supersedes = previous.path
        return Draft(body=read_body(args), front_matter=fm, topic=args.topic, date=args.date, supersedes=supersedes)

    artifact = ctx.run(execute)
    missing_optional = sorted(k for k, a in ctx.inputs.items() if a is None)
    emit(
        args,
        {
            "command": ctx.command.name,
            "session": artifact.session_slug,
            "kind": artifact.kind,
            "path": artifact.path,
            "related": artifact.related,
            "missing_optional_inputs": missing_optional,
            "state": ctx.state.value,
        },
        [artifact.path] + [f"note: optional input `{k}` not found; fell back" for k in missing_optional],
    )
    return 0


def read_project(args: argparse.Namespace) -> int:
    ledger = open_ledger(args)
    slug = ledger.resolver.resolve(args.session)
    if args.latest:
        artifact = ledger.store.read_latest(slug, args.kind)
    else:
        artifact = ledger.store.read(slug, args.kind)
    if artifact is None:
        print(f"artifact not found: {args.kind} in session {slug}", file=sys.stderr)
        return 1
    if args.format == "json":
        print(json.dumps(artifact.to_dict(), indent=2, sort_keys=True))
    else:
        print(f"# {artifact.path}", file=sys.stderr)
        sys.stdout.write(artifact.body)
    return 0


def checklist_mark_project(args: argparse.Namespace) -> int:
    ledger = open_ledger(args)
    slug = ledger.resolver.resolve(args.session)
    kind = args.kind
    if kind.endswith("-"):
        # A family prefix is never a checklist key; mark the newest instance's kind.
        latest = ledger.store.read_latest(slug, kind)
        found = latest is not None
        if latest is not None:
            kind = latest.kind
    else:
        found = ledger.store.exists(slug, kind)
    if not found:
        print(f"refusing to mark `{kind}` complete: no artifact in session {slug}", file=sys.stderr)
        return 1
    state = ledger.checklist.mark_complete(slug, kind)
    emit(args, state.to_dict(), [f"{slug}: {kind} complete"])
    return 0


def activity_append_project(args: argparse.Namespace) -> int:
    ledger = open_ledger(args)
    slug = ledger.resolver.resolve(args.session)
    state = ledger.checklist.append_activity(slug, args.date or utc_today(), args.description)
    emit(args, state.to_dict(), [f"{slug}: activity entries {len(state.activity)}"])
    return 0


def next_project(args: argparse.Namespace) -> int:
    ledger = open_ledger(args)
    slug = ledger.resolver.resolve(args.session)
    report = infer_next(ledger.checklist.load(slug))
    lines = [f"session: {slug}", f"next: {report['next'] or '(workflow complete)'}"]
    lines += [f"ready: {name}" for name in report["ready"]]
    lines += [f"blocked: {b['command']} (missing {', '.join(b['missing'])})" for b in report["blocked"]]
    emit(args, report, lines)
    return 0


def audit_project(args: argparse.Namespace) -> int:
    project_dir = Path(args.project_dir).resolve()
    ledger = open_ledger(args)
    report = compute_ledger_audit(ledger.ledger_dir, ledger.store, args.session)
    lines = [f"status: {report['status']}"]
    lines += [f"- {c['check']}: {c['status']} ({c['detail']})" for c in report["checks"]]
    lines += [f"! {f['session']} {f['check']}: {f.get('path') or f.get('kind', '')} {f['detail']}" for f in report["findings"]]
    emit(args, report, lines)
    if args.out_file:
        out = Path(args.out_file)
        if not out.is_absolute():
            out = project_dir / out
        atomic_write_text(out, json.dumps(report, indent=2, sort_keys=True) + "\n")
    return 0 if report["status"] == "pass" else 1


def commands_project(args: argparse.Namespace) -> int:
    payload = {
        "commands": [c.to_dict() for c in COMMANDS],
        "kinds": [{"name": k.name, "lifecycle": k.lifecycle, "directory": k.directory} for k in BUILTIN_KINDS],
    }
    lines = []
    for c in COMMANDS:
        inputs = ", ".join(f"{i.kind}{'' if i.required else '?'}" for i in c.inputs) or "-"
        lines.append(f"{c.name:24} -> {c.produces:22} inputs: {inputs}")
    emit(args, payload, lines)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Delivery Ledger v0")
    parser.add_argument(
        "--log-level",
        default=os.environ.get(LOG_LEVEL_ENV, "WARNING"),
        help=f"Logging level for stderr diagnostics (default: ${LOG_LEVEL_ENV} or WARNING).",
    )
    sub = parser.add_subparsers(dest="cmd", required=True)

    def add_common(p: argparse.ArgumentParser, session: bool = True, fmt: bool = True) -> None:
        p.add_argument("--project-dir", required=True)
        p.add_argument(
            "--ledger-root",
            help="Ledger root directory, absolute or project-relative (default: $DELIVERY_LEDGER_ROOT or .sessions).",
        )
        if session:
            p.add_argument("--session", help="Session slug (default: most recently started session).")
        if fmt:
            p.add_argument("--format", choices=["text", "json"], default="text")

    def add_lock_args(p: argparse.ArgumentParser) -> None:
        p.add_argument(
            "--lock-timeout-seconds",
            type=float,
            default=None,
            help=f"Max time to wait for a ledger lock (default: {DEFAULT_LOCK_TIMEOUT_SECONDS}).",
        )
        p.add_argument(
            "--lock-stale-seconds",
            type=float,
            default=None,
            help=f"Lock age threshold for stale recovery (default: {DEFAULT_LOCK_STALE_SECONDS}).",
        )
        p.add_argument(
            "--force-unlock",
            action="store_true",
            help="Force lock takeover if a lock file exists.",
        )

    p_start = sub.add_parser("session-start", help="Start a new session and make it the current one.")
    add_common(p_start, session=False)
    p_start.add_argument("--title", required=True)
    p_start.add_argument("--slug", help="Kebab-case session slug (default: derived from --title).")
    p_start.add_argument("--meta", action="append", help="Session metadata key=value (repeatable).")
    add_lock_args(p_start)
    p_start.set_defaults(func=session_start_project)

    p_list = sub.add_parser("session-list", help="List sessions in creation order.")
    add_common(p_list, session=False)
    p_list.set_defaults(func=session_list_project)

    p_show = sub.add_parser("session-show", help="Show a session's checklist and activity log.")
    add_common(p_show)
    p_show.set_defaults(func=session_show_project)

    p_resolve = sub.add_parser("resolve", help="Print the session slug a command would operate on.")
    add_common(p_resolve)
    p_resolve.set_defaults(func=resolve_project)

    p_run = sub.add_parser("run", help="Run a workflow command: load its inputs, write its artifact, sync the checklist.")
    add_common(p_run)
    p_run.add_argument("--command", required=True, choices=[c.name for c in COMMANDS])
    p_run.add_argument("--body-file", help="Markdown body file (default: stdin).")
    p_run.add_argument("--topic", help="Topic for dated instances (reviews, decisions, handoffs, rca).")
    p_run.add_argument("--date", help="Artifact date YYYY-MM-DD (default: today, UTC).")
    p_run.add_argument("--scope")
    p_run.add_argument("--target")
    p_run.add_argument(
        "--supersedes",
        help="Session-relative path of the artifact this one replaces, or `latest` for the previous instance.",
    )
    p_run.add_argument("--merge-policy", choices=list(MERGE_POLICIES))
    add_lock_args(p_run)
    p_run.set_defaults(func=run_project)

    p_read = sub.add_parser("read", help="Print an artifact of a session.")
    add_common(p_read)
    p_read.add_argument("--kind", required=True)
    p_read.add_argument("--latest", action="store_true", help="Treat --kind as a prefix and pick the newest instance.")
    p_read.set_defaults(func=read_project)

    p_mark = sub.add_parser("checklist-mark", help="Mark an existing artifact kind complete.")
    add_common(p_mark)
    p_mark.add_argument("--kind", required=True)
    add_lock_args(p_mark)
    p_mark.set_defaults(func=checklist_mark_project)

    p_activity = sub.add_parser("activity-append", help="Append an entry to a session's activity log.")
    add_common(p_activity)
    p_activity.add_argument("--description", required=True)
    p_activity.add_argument("--date")
    add_lock_args(p_activity)
    p_activity.set_defaults(func=activity_append_project)

    p_next = sub.add_parser("next", help="Suggest the next workflow command from the checklist.")
    add_common(p_next)
    p_next.set_defaults(func=next_project)

    p_audit = sub.add_parser("audit", help="Check index, checklist and artifact consistency.")
    add_common(p_audit)
    p_audit.add_argument("--out-file", help="Optional report file path (absolute or project-relative).")
    p_audit.set_defaults(func=audit_project)

    p_commands = sub.add_parser("commands", help="List declared workflow commands and their inputs.")
    p_commands.add_argument("--format", choices=["text", "json"], default="text")
    p_commands.set_defaults(func=commands_project)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.WARNING),
        stream=sys.stderr,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        return args.func(args)
    except LedgerError as exc:
        logger.debug("%s failed", args.cmd, exc_info=True)
        print(f"error: {exc}", file=sys.stderr)
        if exc.hint:
            print(f"hint: {exc.hint}", file=sys.stderr)
        return 1
    except (ValueError, OSError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
