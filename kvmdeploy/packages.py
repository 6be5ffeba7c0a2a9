"""Host package presence checks for kvmdeploy."""

from __future__ import annotations

import subprocess
from typing import Iterable, Set

from kvmdeploy.exceptions import DelegateCommandFailed
from kvmdeploy.utils import confirm, log, privileged, run


class PackageChecker:
    """Check for required Debian packages and install the missing ones via apt."""

    def __init__(self, interactive: bool = False) -> None:
        self.interactive = interactive

    def is_installed(self, package: str) -> bool:
        try:
            result = run(
                ["dpkg", "-s", package],
                check=False,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
        except FileNotFoundError as exc:
            raise DelegateCommandFailed(f"dpkg not available; cannot check packages: {exc}")
        return result.returncode == 0

    def missing(self, packages: Iterable[str]) -> Set[str]:
        return {pkg for pkg in packages if not self.is_installed(pkg)}

    def ensure(self, packages: Iterable[str]) -> Set[str]:
        """Return the missing subset of ``packages``, installing it unless declined."""
        missing = self.missing(packages)
        if not missing:
            log("INFO", "All required packages are installed.")
            return missing

        names = sorted(missing)
        log("WARN", f"Missing required packages: {' '.join(names)}")
        if self.interactive and not confirm(f"Install missing packages ({' '.join(names)})?"):
            log("WARN", "Package installation declined; continuing without them.")
            return missing

        log("INFO", "Attempting to install missing packages...")
        self._apt(["apt-get", "update"])
        self._apt(["apt-get", "install", "-y", *names])
        log("SUCCESS", f"Installed: {' '.join(names)}")
        return missing

    def _apt(self, cmd) -> None:
        full = privileged(cmd)
        try:
            run(full, capture_output=True)
        except FileNotFoundError as exc:
            raise DelegateCommandFailed(f"Cannot run {' '.join(full)}: {exc}")
        except subprocess.CalledProcessError as exc:
            raise DelegateCommandFailed(
                f"'{' '.join(full)}' failed with exit code {exc.returncode}",
                stderr=exc.stderr or "",
            )
