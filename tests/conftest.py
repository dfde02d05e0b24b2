from __future__ import annotations

import json
import subprocess
import sys
from pathlib import Path

import pytest

from delivery_ledger.config import LedgerConfig
from delivery_ledger.context import Ledger
from delivery_ledger.sessions import create_session


REPO_ROOT = Path(__file__).resolve().parents[1]
LEDGER_MODULE = "delivery_ledger.cli"


def run_cmd(
    args: list[str],
    cwd: Path,
    expect_code: int = 0,
    input_text: str | None = None,
) -> subprocess.CompletedProcess[str]:
    proc = subprocess.run(args, cwd=str(cwd), text=True, capture_output=True, check=False, input=input_text)
    if proc.returncode != expect_code:
        raise AssertionError(
            f"command failed\ncwd={cwd}\nargs={args}\n"
            f"expected={expect_code} got={proc.returncode}\n"
            f"stdout:\n{proc.stdout}\n\nstderr:\n{proc.stderr}"
        )
    return proc


def ledger_args(project_dir: Path, *ledger_args: str) -> list[str]:
    return [sys.executable, "-m", LEDGER_MODULE, *ledger_args, "--project-dir", str(project_dir)]


def run_ledger(
    project_dir: Path,
    *args: str,
    expect_code: int = 0,
    input_text: str | None = None,
) -> subprocess.CompletedProcess[str]:
    return run_cmd(ledger_args(project_dir, *args), cwd=REPO_ROOT, expect_code=expect_code, input_text=input_text)


def load_json(path: Path) -> dict:
    return json.loads(path.read_text(encoding="utf-8"))


@pytest.fixture()
def project(tmp_path: Path) -> Path:
    project_dir = tmp_path / "proj"
    project_dir.mkdir()
    return project_dir


@pytest.fixture()
def ledger(project: Path) -> Ledger:
    return Ledger(project / ".sessions", LedgerConfig())


@pytest.fixture()
def session(ledger: Ledger) -> str:
    create_session(ledger.index, "CSV import", slug="csv-import", config=ledger.config)
    return "csv-import"
