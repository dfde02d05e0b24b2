from __future__ import annotations

import json
import logging
import os
import re
import tempfile
import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

from .errors import DuplicateArtifact, IOFailure, LockTimeout


logger = logging.getLogger(__name__)

DEFAULT_LOCK_TIMEOUT_SECONDS = 10.0
DEFAULT_LOCK_STALE_SECONDS = 300.0
TMP_MARKER = ".tmp."
SLUG_RE = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
MAX_SLUG_LENGTH = 64


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def utc_today() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d")


def slugify(value: str, fallback: str = "session") -> str:
    out = re.sub(r"[^a-z0-9]+", "-", value.strip().lower()).strip("-")
    out = out[:MAX_SLUG_LENGTH].rstrip("-")
    return out or fallback


def is_valid_slug(value: str) -> bool:
    return len(value) <= MAX_SLUG_LENGTH and bool(SLUG_RE.match(value))


def _write_temp(path: Path, content: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}{TMP_MARKER}", dir=str(path.parent))
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(content)
        f.flush()
        os.fsync(f.fileno())
    return Path(tmp_name)


def atomic_write_text(path: Path, content: str) -> None:
    """Replace `path` with `content`; readers see the old or the new file, never a torn one."""
    tmp_path: Path | None = None
    try:
        tmp_path = _write_temp(path, content)
        os.replace(tmp_path, path)
    except OSError as exc:
        raise IOFailure(path, exc) from exc
    finally:
        if tmp_path is not None and tmp_path.exists():
            tmp_path.unlink()


def exclusive_write_text(path: Path, content: str) -> None:
    """Publish `content` at `path` only if nothing exists there yet."""
    tmp_path: Path | None = None
    try:
        tmp_path = _write_temp(path, content)
        try:
            os.link(tmp_path, path)
        except FileExistsError:
            raise DuplicateArtifact(path) from None
    except OSError as exc:
        raise IOFailure(path, exc) from exc
    finally:
        if tmp_path is not None and tmp_path.exists():
            tmp_path.unlink()


def read_text(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except OSError as exc:
        raise IOFailure(path, exc) from exc


def write_json(path: Path, payload: dict[str, Any], sort_keys: bool = True) -> None:
    atomic_write_text(path, json.dumps(payload, indent=2, sort_keys=sort_keys) + "\n")


@dataclass(frozen=True)
class LockSettings:
    timeout_seconds: float = DEFAULT_LOCK_TIMEOUT_SECONDS
    stale_seconds: float = DEFAULT_LOCK_STALE_SECONDS
    force_unlock: bool = False
    command: str = "delivery-ledger"


def _pid_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
        return True
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError:
        return True


def _read_lock_metadata(lock_path: Path) -> dict[str, Any]:
    try:
        obj = json.loads(lock_path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return {}
    return obj if isinstance(obj, dict) else {}


def lock_stale_reason(lock_path: Path, stale_seconds: float) -> str | None:
    meta = _read_lock_metadata(lock_path)
    created = meta.get("created_epoch")
    pid = meta.get("pid")
    if isinstance(created, (int, float)) and (time.time() - float(created)) > stale_seconds:
        return "age_exceeded"
    if isinstance(pid, int) and not _pid_alive(pid):
        return "owner_process_missing"
    if not meta:
        # Owner may still be between O_EXCL create and the metadata write.
        try:
            age = time.time() - lock_path.stat().st_mtime
        except FileNotFoundError:
            return None
        return "invalid_metadata" if age > 1.0 else None
    return None


@contextmanager
def exclusive_lock(lock_path: Path, settings: LockSettings | None = None) -> Iterator[None]:
    """Hold `lock_path` for the duration of the block; released on every exit path."""
    settings = settings or LockSettings()
    lock_path.parent.mkdir(parents=True, exist_ok=True)

    token = f"{os.getpid()}-{time.time_ns()}"
    start = time.monotonic()
    force = settings.force_unlock

    while True:
        try:
            fd = os.open(lock_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
        except FileExistsError:
            stale_reason = lock_stale_reason(lock_path, settings.stale_seconds)
            if stale_reason or force:
                logger.warning("reclaiming lock %s (%s)", lock_path, stale_reason or "force_unlock")
                force = False
                try:
                    lock_path.unlink()
                except FileNotFoundError:
                    pass
                continue
            if (time.monotonic() - start) >= settings.timeout_seconds:
                raise LockTimeout(lock_path, _read_lock_metadata(lock_path)) from None
            time.sleep(0.1)
            continue
        payload = {
            "token": token,
            "pid": os.getpid(),
            "created_epoch": time.time(),
            "created_at": utc_now(),
            "command": settings.command,
        }
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2, sort_keys=True)
            f.write("\n")
            f.flush()
            os.fsync(f.fileno())
        break

    logger.debug("acquired lock %s", lock_path)
    try:
        yield
    finally:
        owner = _read_lock_metadata(lock_path)
        if owner.get("token") == token:
            try:
                lock_path.unlink()
            except FileNotFoundError:
                pass
        logger.debug("released lock %s", lock_path)
