"""UEFI firmware descriptor installation for kvmdeploy."""

from __future__ import annotations

import json
import subprocess
from pathlib import Path
from typing import Optional

from kvmdeploy import constants
from kvmdeploy.exceptions import DelegateCommandFailed, FirmwareInstallError
from kvmdeploy.utils import atomic_write_text, confirm, ensure_directory, log, privileged, run


def render_descriptor() -> str:
    return json.dumps(constants.FIRMWARE_DESCRIPTOR, indent=4) + "\n"


class FirmwareDescriptorInstaller:
    """Install the custom OVMF descriptor consumed by QEMU firmware auto-selection.

    The descriptor is written once per host. An existing file is never touched,
    and libvirtd is reloaded only after a fresh write.
    """

    def __init__(self, interactive: bool = False, descriptor_dir: Optional[Path] = None) -> None:
        self.interactive = interactive
        self.descriptor_dir = descriptor_dir or constants.FIRMWARE_DESCRIPTOR_DIR
        self.path = self.descriptor_dir / constants.FIRMWARE_DESCRIPTOR_NAME

    def is_installed(self) -> bool:
        return self.path.is_file()

    def install(self) -> bool:
        """Return True if the descriptor was newly written."""
        if self.is_installed():
            log("INFO", "Custom firmware configuration already installed.")
            return False

        if not self.descriptor_dir.is_dir():
            if self.interactive and not confirm(f"Create firmware descriptor directory {self.descriptor_dir}?"):
                log("WARN", "Firmware descriptor installation skipped; the directory was not created.")
                return False
            try:
                ensure_directory(self.descriptor_dir)
            except OSError as exc:
                raise FirmwareInstallError(
                    f"Cannot create {self.descriptor_dir}: {exc}. Run as root or create it manually."
                )

        if self.interactive and not confirm(f"Install custom firmware configuration to {self.path}?"):
            log("WARN", "Firmware descriptor installation declined; continuing.")
            return False

        log("INFO", "Installing custom firmware configuration...")
        try:
            atomic_write_text(self.path, render_descriptor())
        except OSError as exc:
            raise FirmwareInstallError(f"Cannot write {self.path}: {exc}")
        log("SUCCESS", f"Custom firmware configuration installed at {self.path}.")

        self.reload_libvirt()
        return True

    def reload_libvirt(self) -> None:
        cmd = privileged(["systemctl", "reload", constants.LIBVIRT_SERVICE])
        try:
            run(cmd, capture_output=True)
        except FileNotFoundError as exc:
            raise DelegateCommandFailed(f"Cannot run {' '.join(cmd)}: {exc}")
        except subprocess.CalledProcessError as exc:
            raise DelegateCommandFailed(
                f"Reloading {constants.LIBVIRT_SERVICE} failed with exit code {exc.returncode}",
                stderr=exc.stderr or "",
            )
        log("SUCCESS", f"{constants.LIBVIRT_SERVICE} reloaded.")

    @staticmethod
    def warn_on_path_mismatch(code_path: Path, vars_path: Path) -> None:
        """Log when the configured firmware differs from what the descriptor maps."""
        mapping = constants.FIRMWARE_DESCRIPTOR["mapping"]
        expected = {
            "executable": Path(mapping["executable"]["filename"]),
            "nvram-template": Path(mapping["nvram-template"]["filename"]),
        }
        actual = {"executable": code_path, "nvram-template": vars_path}
        for key, path in actual.items():
            if path != expected[key]:
                log(
                    "WARN",
                    f"Firmware descriptor {key} points at {expected[key]} but the configuration uses {path}",
                )
