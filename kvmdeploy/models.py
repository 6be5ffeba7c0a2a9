"""Data models for kvmdeploy."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import List, NamedTuple, Optional, Tuple

from kvmdeploy.constants import (
    DEFAULT_DISK_BUS,
    DEFAULT_GRAPHICS,
    DEFAULT_MACHINE,
    DEFAULT_PACKAGES,
    DEFAULT_VIDEO,
    DEFAULT_WATCHDOG,
)


class FetchTarget(NamedTuple):
    label: str
    url: str
    path: Path
    sha256: Optional[str] = None


@dataclass(frozen=True)
class ProvisionConfig:
    vm_name: str
    memory: int  # MiB
    cpus: int
    os_variant: str
    firmware_dir: Path
    ovmf_base_url: str
    ovmf_code: str
    ovmf_vars: str
    check_packages: bool
    qcow2_image_url: str
    qcow2_image_path: Path
    # Confirmation policy
    interactive: bool = False
    fix_permissions: bool = True
    packages: Tuple[str, ...] = DEFAULT_PACKAGES
    # virt-install device settings
    disk_bus: str = DEFAULT_DISK_BUS
    graphics: str = DEFAULT_GRAPHICS
    video: str = DEFAULT_VIDEO
    machine: str = DEFAULT_MACHINE
    watchdog: str = DEFAULT_WATCHDOG
    # Expected digests
    ovmf_code_sha256: Optional[str] = None
    ovmf_vars_sha256: Optional[str] = None
    qcow2_image_sha256: Optional[str] = None

    @property
    def ovmf_code_path(self) -> Path:
        return self.firmware_dir / self.ovmf_code

    @property
    def ovmf_vars_path(self) -> Path:
        return self.firmware_dir / self.ovmf_vars

    @property
    def ovmf_code_url(self) -> str:
        return f"{self.ovmf_base_url}{self.ovmf_code}"

    @property
    def ovmf_vars_url(self) -> str:
        return f"{self.ovmf_base_url}{self.ovmf_vars}"

    def fetch_targets(self) -> List[FetchTarget]:
        """Artifacts that must be present locally before the VM can be defined."""
        return [
            FetchTarget("firmware code", self.ovmf_code_url, self.ovmf_code_path, self.ovmf_code_sha256),
            FetchTarget("firmware vars", self.ovmf_vars_url, self.ovmf_vars_path, self.ovmf_vars_sha256),
            FetchTarget("disk image", self.qcow2_image_url, self.qcow2_image_path, self.qcow2_image_sha256),
        ]
