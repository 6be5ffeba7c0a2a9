"""VM definition synthesis via virt-install, plus optional libvirt registration."""

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Iterable, List, Optional

from kvmdeploy.constants import ARTIFACT_MODE, CONSOLE_SPEC, LIBVIRT_URI
from kvmdeploy.exceptions import DelegateCommandFailed, ProvisionError
from kvmdeploy.models import ProvisionConfig
from kvmdeploy.utils import atomic_write_text, ensure_directory, log, run


def set_permissions(paths: Iterable[Path], mode: int = ARTIFACT_MODE) -> None:
    for path in paths:
        try:
            path.chmod(mode)
        except OSError as exc:
            raise ProvisionError(f"Cannot set permissions {mode:o} on {path}: {exc}")
        log("DEBUG", f"chmod {mode:o} {path}")


def build_virt_install_command(cfg: ProvisionConfig) -> List[str]:
    """Translate the configuration into a ``virt-install --print-xml`` invocation."""
    boot = f"uefi,loader={cfg.ovmf_code_path},nvram_template={cfg.ovmf_vars_path}"
    return [
        "virt-install",
        "--name", cfg.vm_name,
        "--memory", str(cfg.memory),
        "--vcpus", str(cfg.cpus),
        "--os-variant", cfg.os_variant,
        "--import",
        "--disk", f"{cfg.qcow2_image_path},bus={cfg.disk_bus}",
        "--graphics", cfg.graphics,
        "--video", cfg.video,
        "--boot", boot,
        "--machine", cfg.machine,
        "--console", CONSOLE_SPEC,
        "--watchdog", cfg.watchdog,
        "--print-xml",
    ]


def definition_path(cfg: ProvisionConfig, output_dir: Path) -> Path:
    return output_dir / f"{cfg.vm_name}.xml"


def render_definition(cfg: ProvisionConfig, output_dir: Path) -> Path:
    """Run virt-install and store the emitted domain XML as ``<vm_name>.xml``."""
    cmd = build_virt_install_command(cfg)
    try:
        result = run(cmd, capture_output=True)
    except FileNotFoundError:
        raise DelegateCommandFailed("virt-install not found; install the virtinst package")
    except subprocess.CalledProcessError as exc:
        raise DelegateCommandFailed(
            f"virt-install failed with exit code {exc.returncode}",
            stderr=exc.stderr or "",
        )

    xml = result.stdout or ""
    if not xml.strip():
        raise DelegateCommandFailed("virt-install produced an empty definition", stderr=result.stderr or "")

    output_path = definition_path(cfg, output_dir)
    try:
        ensure_directory(output_dir)
        atomic_write_text(output_path, xml)
    except OSError as exc:
        raise ProvisionError(f"Cannot write {output_path}: {exc}")
    log("SUCCESS", f"XML configuration file created: {output_path}")
    return output_path


class DomainRegistrar:
    """Register an emitted definition with libvirtd."""

    def __init__(self, uri: Optional[str] = None) -> None:
        self.uri = uri or LIBVIRT_URI
        self.conn = None
        self._libvirt = None

    def connect(self) -> None:
        try:
            import libvirt  # type: ignore
        except ImportError as exc:
            raise DelegateCommandFailed(
                f"libvirt python bindings not available: {exc}. "
                "Install kvmdeploy[libvirt] or run 'virsh define' manually."
            )
        self._libvirt = libvirt
        try:
            self.conn = libvirt.open(self.uri)
        except libvirt.libvirtError as exc:
            raise DelegateCommandFailed(f"Failed to open libvirt connection to {self.uri}: {exc}")
        if self.conn is None:
            raise DelegateCommandFailed(f"Failed to open libvirt connection to {self.uri}")

    def close(self) -> None:
        if self.conn is not None:
            self.conn.close()
            self.conn = None

    def _domain_exists(self, name: str) -> bool:
        if self.conn is None:
            raise DelegateCommandFailed("libvirt connection not established")
        try:
            self.conn.lookupByName(name)
            return True
        except self._libvirt.libvirtError:
            return False

    def define(self, name: str, xml_path: Path) -> bool:
        """Return True if the domain was newly defined."""
        if self.conn is None:
            self.connect()
        if self._domain_exists(name):
            log("INFO", f"Domain {name} already defined; leaving it untouched")
            return False
        try:
            domain = self.conn.defineXML(xml_path.read_text())
        except self._libvirt.libvirtError as exc:
            raise DelegateCommandFailed(f"libvirt rejected {xml_path}: {exc}")
        if domain is None:
            raise DelegateCommandFailed("Failed to define libvirt domain")
        log("SUCCESS", f"Defined domain {name}")
        return True


def print_next_steps(cfg: ProvisionConfig, xml_path: Path, defined: bool) -> None:
    if not defined:
        print("Edit this file if customization is needed, then run:", flush=True)
        print(f"  virsh define {xml_path}", flush=True)
    print(
        f"VM {cfg.vm_name} is configured. Use 'virsh start {cfg.vm_name}' to run the VM after customization.",
        flush=True,
    )
