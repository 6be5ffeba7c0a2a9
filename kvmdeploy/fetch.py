"""Fetch-if-missing downloads for firmware and disk images."""

from __future__ import annotations

import hashlib
import tempfile
import time
from pathlib import Path
from typing import Optional

import requests

from kvmdeploy.constants import CHECKSUM_SUFFIX, DOWNLOAD_CHUNK_SIZE, REQUEST_TIMEOUT, USER_AGENT
from kvmdeploy.exceptions import SourceUnreachable, TransferFailed
from kvmdeploy.models import FetchTarget
from kvmdeploy.utils import atomic_write_text, ensure_directory, log, sha256_file


def new_session() -> requests.Session:
    session = requests.Session()
    session.headers["User-Agent"] = USER_AGENT
    return session


def checksum_path(path: Path) -> Path:
    return path.with_name(path.name + CHECKSUM_SUFFIX)


def recorded_digest(path: Path) -> Optional[str]:
    """Return the digest recorded next to ``path`` by a previous download, if any."""
    sidecar = checksum_path(path)
    try:
        content = sidecar.read_text().split()
    except OSError:
        return None
    return content[0].lower() if content else None


def is_complete(target: FetchTarget) -> bool:
    """A present artifact counts only if it is non-empty and matches any known digest."""
    path = target.path
    if not path.is_file():
        return False
    if path.stat().st_size == 0:
        log("WARN", f"{path} is empty; fetching it again")
        return False
    expected = target.sha256 or recorded_digest(path)
    if expected is None:
        return True
    actual = sha256_file(path)
    if actual != expected:
        log("WARN", f"{path} does not match its expected SHA-256 ({actual} != {expected}); fetching it again")
        return False
    return True


def probe_url(url: str, session: Optional[requests.Session] = None) -> None:
    """Fail fast with SourceUnreachable if ``url`` does not answer."""
    session = session or new_session()
    try:
        resp = session.head(url, timeout=REQUEST_TIMEOUT, allow_redirects=True)
        status = resp.status_code
        # Some servers reject HEAD; fall back to GET with streaming
        if status in (403, 405):
            resp = session.get(url, timeout=REQUEST_TIMEOUT, allow_redirects=True, stream=True)
            resp.close()
            status = resp.status_code
    except requests.RequestException as exc:
        raise SourceUnreachable(f"URL {url} is not accessible: {exc.__class__.__name__}: {exc}")
    if status >= 400:
        raise SourceUnreachable(f"URL {url} is not accessible (HTTP {status})")
    log("DEBUG", f"Probe OK ({status}): {url}")


def _print_progress(downloaded: int, total_bytes: Optional[int], start_time: float) -> None:
    elapsed = time.time() - start_time
    speed = downloaded / elapsed if elapsed > 0 else 0
    downloaded_mb = downloaded / (1024 * 1024)
    if total_bytes:
        total_mb = total_bytes / (1024 * 1024)
        pct = min(downloaded * 100 / total_bytes, 100.0)
        remaining = (total_bytes - downloaded) / speed if speed > 0 else 0
        eta_str = time.strftime("%M:%S", time.gmtime(max(remaining, 0)))
        bar_len = 30
        filled = min(int(bar_len * downloaded / total_bytes), bar_len)
        bar = "#" * filled + "-" * (bar_len - filled)
        print(
            f"\r  [{bar}] {pct:5.1f}% {downloaded_mb:.1f}/{total_mb:.1f} MiB "
            f"({speed / (1024 * 1024):.1f} MiB/s, ETA {eta_str})",
            end="", flush=True,
        )
    else:
        print(
            f"\r  {downloaded_mb:.1f} MiB downloaded "
            f"({speed / (1024 * 1024):.1f} MiB/s)",
            end="", flush=True,
        )


def download_file(
    url: str,
    destination: Path,
    session: Optional[requests.Session] = None,
    expected_sha256: Optional[str] = None,
) -> str:
    """Stream ``url`` into ``destination`` and return the SHA-256 of what was written.

    The body goes to a temporary file in the destination directory and is renamed
    into place only after the transfer completed and verified.
    """
    session = session or new_session()
    log("INFO", f"Downloading {url} to {destination}..")
    try:
        response = session.get(url, stream=True, timeout=REQUEST_TIMEOUT)
        response.raise_for_status()
    except requests.HTTPError as exc:
        status = exc.response.status_code if exc.response is not None else "?"
        raise TransferFailed(f"HTTP error downloading {url}: {status}")
    except requests.RequestException as exc:
        raise TransferFailed(f"Failed to download {url}: {exc}")

    total = response.headers.get("Content-Length")
    total_bytes = int(total) if total and total.isdigit() else None
    encoded = response.headers.get("Content-Encoding", "identity") not in ("", "identity")
    digest = hashlib.sha256()
    downloaded = 0
    start_time = time.time()

    with tempfile.NamedTemporaryFile(
        delete=False, dir=destination.parent, prefix=f".{destination.name}.", suffix=".part"
    ) as tmp:
        tmp_path = Path(tmp.name)
        try:
            for chunk in response.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE):
                if not chunk:
                    continue
                tmp.write(chunk)
                digest.update(chunk)
                downloaded += len(chunk)
                _print_progress(downloaded, total_bytes, start_time)
            print(flush=True)  # newline after progress
        except requests.RequestException as exc:
            print(flush=True)
            tmp_path.unlink(missing_ok=True)
            raise TransferFailed(f"Transfer of {url} interrupted: {exc}")
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise
        finally:
            response.close()

    actual = digest.hexdigest()
    problem = None
    if total_bytes is not None and not encoded and downloaded != total_bytes:
        problem = f"received {downloaded} of {total_bytes} bytes"
    elif expected_sha256 and actual != expected_sha256:
        problem = f"SHA-256 mismatch ({actual} != {expected_sha256})"
    if problem:
        tmp_path.unlink(missing_ok=True)
        raise TransferFailed(f"Incomplete download of {url}: {problem}")

    try:
        tmp_path.replace(destination)
    except OSError as exc:
        tmp_path.unlink(missing_ok=True)
        raise TransferFailed(f"Cannot move download into place at {destination}: {exc}")

    elapsed = time.time() - start_time
    log("SUCCESS", f"Downloaded {downloaded / (1024 * 1024):.1f} MiB in {elapsed:.1f}s")
    return actual


def ensure_fetched(target: FetchTarget, session: Optional[requests.Session] = None) -> bool:
    """Make sure ``target.path`` holds a complete copy of ``target.url``.

    Returns True when a transfer happened, False when the local copy was reused.
    """
    if is_complete(target):
        log("INFO", f"{target.label.capitalize()} already present: {target.path}")
        return False

    session = session or new_session()
    probe_url(target.url, session)

    try:
        ensure_directory(target.path.parent)
    except OSError as exc:
        raise TransferFailed(f"Cannot create {target.path.parent}: {exc}")

    digest = download_file(target.url, target.path, session=session, expected_sha256=target.sha256)
    try:
        atomic_write_text(checksum_path(target.path), f"{digest}  {target.path.name}\n")
    except OSError as exc:
        log("WARN", f"Could not record checksum for {target.path}: {exc}")
    return True
