"""Provisioning orchestration for kvmdeploy."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Set

import requests

from kvmdeploy import constants
from kvmdeploy.definition import (
    DomainRegistrar,
    build_virt_install_command,
    definition_path,
    print_next_steps,
    render_definition,
    set_permissions,
)
from kvmdeploy.fetch import ensure_fetched, new_session
from kvmdeploy.firmware import FirmwareDescriptorInstaller
from kvmdeploy.models import ProvisionConfig
from kvmdeploy.packages import PackageChecker
from kvmdeploy.utils import host_lock, log


@dataclass
class ProvisionReport:
    missing_packages: Set[str] = field(default_factory=set)
    descriptor_installed: bool = False
    fetched: List[Path] = field(default_factory=list)
    definition: Optional[Path] = None
    defined: bool = False


class Provisioner:
    """Bring the host into the state needed to define one VM.

    Every step is safe to re-run: packages already present are not reinstalled,
    an installed firmware descriptor is left alone and complete artifacts are not
    downloaded again.
    """

    def __init__(
        self,
        cfg: ProvisionConfig,
        output_dir: Optional[Path] = None,
        define: bool = False,
        lock_dir: Optional[Path] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.cfg = cfg
        self.output_dir = output_dir or Path.cwd()
        self.define = define
        self.lock_dir = lock_dir or constants.LOCK_DIR
        self.session = session
        self.package_checker = PackageChecker(interactive=cfg.interactive)
        self.firmware_installer = FirmwareDescriptorInstaller(interactive=cfg.interactive)
        self.report = ProvisionReport()

    def run(self) -> ProvisionReport:
        with host_lock(self.lock_dir):
            self._ensure_packages()
            self._install_firmware_descriptor()
            self._fetch_artifacts()
            self._finalize_permissions()
            xml_path = self._render_definition()
            self.report.defined = self._register(xml_path)
        print_next_steps(self.cfg, xml_path, self.report.defined)
        return self.report

    def _ensure_packages(self) -> None:
        if not self.cfg.check_packages:
            log("INFO", "Package check disabled (check_packages=false)")
            return
        self.report.missing_packages = self.package_checker.ensure(self.cfg.packages)

    def _install_firmware_descriptor(self) -> None:
        self.firmware_installer.warn_on_path_mismatch(self.cfg.ovmf_code_path, self.cfg.ovmf_vars_path)
        self.report.descriptor_installed = self.firmware_installer.install()

    def _fetch_artifacts(self) -> None:
        if self.session is None:
            self.session = new_session()
        for target in self.cfg.fetch_targets():
            if ensure_fetched(target, session=self.session):
                self.report.fetched.append(target.path)

    def _finalize_permissions(self) -> None:
        paths = [target.path for target in self.cfg.fetch_targets()]
        if self.cfg.fix_permissions:
            set_permissions(paths)
        log("SUCCESS", "All required files have been downloaded and placed correctly with proper permissions.")

    def _render_definition(self) -> Path:
        log("INFO", f"Generating VM definition for {self.cfg.vm_name}...")
        xml_path = render_definition(self.cfg, self.output_dir)
        self.report.definition = xml_path
        return xml_path

    def _register(self, xml_path: Path) -> bool:
        if not self.define:
            return False
        registrar = DomainRegistrar()
        try:
            return registrar.define(self.cfg.vm_name, xml_path)
        finally:
            registrar.close()

    def plan(self) -> List[str]:
        """Describe what ``run`` would do, without touching the host."""
        steps: List[str] = []
        if self.cfg.check_packages:
            steps.append(f"Check packages: {', '.join(self.cfg.packages)}")
        else:
            steps.append("Skip package check (check_packages=false)")
        if self.firmware_installer.is_installed():
            steps.append(f"Firmware descriptor present: {self.firmware_installer.path}")
        else:
            steps.append(f"Install firmware descriptor: {self.firmware_installer.path} (then reload libvirtd)")
        for target in self.cfg.fetch_targets():
            if target.path.is_file():
                steps.append(f"Verify {target.label}: {target.path}")
            else:
                steps.append(f"Fetch {target.label}: {target.url} -> {target.path}")
        if self.cfg.fix_permissions:
            steps.append(f"chmod {constants.ARTIFACT_MODE:o} on fetched artifacts")
        steps.append("Run: " + " ".join(build_virt_install_command(self.cfg)))
        steps.append(f"Write definition: {definition_path(self.cfg, self.output_dir)}")
        if self.define:
            steps.append(f"Define domain {self.cfg.vm_name} via {constants.LIBVIRT_URI}")
        return steps
