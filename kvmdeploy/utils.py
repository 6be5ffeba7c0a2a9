"""Utility functions for kvmdeploy."""

from __future__ import annotations

import fcntl
import hashlib
import os
import subprocess
import sys
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List

from kvmdeploy.constants import _LOG_VERBOSE, ARTIFACT_MODE, LOCK_FILE_NAME
from kvmdeploy.exceptions import HostLocked, ProvisionError


def log(level: str, message: str) -> None:
    """Lightweight structured logging with a coloured level tag."""
    if level == "DEBUG" and not _LOG_VERBOSE:
        return
    colours = {
        "INFO": "\033[0;34m",
        "WARN": "\033[1;33m",
        "ERROR": "\033[0;31m",
        "SUCCESS": "\033[0;32m",
        "DEBUG": "\033[0;90m",
    }
    colour = colours.get(level, "")
    reset = "\033[0m" if colour else ""
    print(f"{colour}[{level}]{reset} {message}", flush=True)


def has_controlling_tty() -> bool:
    """Return True if both stdin and stdout are attached to a TTY."""
    for stream in (sys.stdin, sys.stdout):
        try:
            if not stream.isatty():
                return False
        except (AttributeError, ValueError):
            return False
    return True


def confirm(question: str, default: bool = False) -> bool:
    """Ask the operator a yes/no question; fall back to ``default`` without a TTY."""
    if not has_controlling_tty():
        answer = "yes" if default else "no"
        log("WARN", f"{question} (no TTY attached; assuming '{answer}')")
        return default
    suffix = " [Y/n] " if default else " [y/N] "
    try:
        reply = input(question + suffix).strip().lower()
    except EOFError:
        return default
    if reply.startswith("y"):
        return True
    if reply.startswith("n"):
        return False
    return default


def ensure_directory(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def is_root() -> bool:
    return os.geteuid() == 0


def privileged(cmd: List[str]) -> List[str]:
    """Prefix a host-level command with sudo unless already running as root."""
    if is_root():
        return list(cmd)
    return ["sudo", *cmd]


def sha256_file(path: Path) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            digest.update(chunk)
    return digest.hexdigest()


def atomic_write_text(path: Path, content: str, mode: int = ARTIFACT_MODE) -> None:
    """Write ``content`` next to ``path`` and rename it into place with ``mode``."""
    with tempfile.NamedTemporaryFile(
        "w", delete=False, dir=path.parent, prefix=f".{path.name}.", suffix=".tmp"
    ) as tmp:
        tmp_path = Path(tmp.name)
        try:
            tmp.write(content)
            tmp.flush()
            # NamedTemporaryFile creates 0600
            os.fchmod(tmp.fileno(), mode)
            os.fsync(tmp.fileno())
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise
    try:
        tmp_path.replace(path)
    except OSError:
        tmp_path.unlink(missing_ok=True)
        raise


def _open_lock_file(lock_path: Path) -> int:
    # Read-only is enough for flock, and works on a lock file another user created.
    try:
        return os.open(lock_path, os.O_RDONLY)
    except FileNotFoundError:
        fd = os.open(lock_path, os.O_RDONLY | os.O_CREAT, 0o644)
        os.fchmod(fd, 0o644)
        return fd


@contextmanager
def host_lock(lock_dir: Path) -> Iterator[Path]:
    """Hold an exclusive host-wide lock so only one provisioning run touches the host."""
    lock_path = lock_dir / LOCK_FILE_NAME
    try:
        ensure_directory(lock_dir)
        fd = _open_lock_file(lock_path)
    except OSError as exc:
        raise ProvisionError(f"Cannot open lock file {lock_path}: {exc}") from exc
    try:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            raise HostLocked(f"Another kvmdeploy run holds {lock_path}; refusing to run concurrently")
        log("DEBUG", f"Acquired host lock {lock_path}")
        try:
            yield lock_path
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
    finally:
        os.close(fd)


def run(cmd: List[str], check: bool = True, **kwargs) -> subprocess.CompletedProcess:
    """Run command with logging."""
    log("DEBUG", f"Running: {' '.join(cmd)}")
    result = subprocess.run(cmd, check=check, text=True, **kwargs)
    return result
