"""Global constants and path configuration for kvmdeploy."""

from __future__ import annotations

import os
from pathlib import Path

DEFAULT_CONFIG_PATH = Path(os.environ.get("KVMDEPLOY_CONFIG", "bsc-kvm-config.json"))
# Shared by every user on the host; /run/lock is world-writable on systemd hosts.
LOCK_DIR = Path(os.environ.get("KVMDEPLOY_LOCK_DIR", "/run/lock"))
LOCK_FILE_NAME = "kvmdeploy.lock"
LIBVIRT_URI = os.environ.get("LIBVIRT_URI", "qemu:///system")
TRUTHY = {"1", "true", "yes", "on"}

_LOG_VERBOSE = os.environ.get("LOG_VERBOSE", "").lower() in TRUTHY

# QEMU firmware auto-selection reads descriptors from this directory.
FIRMWARE_DESCRIPTOR_DIR = Path(os.environ.get("QEMU_FIRMWARE_DIR", "/etc/qemu/firmware"))
FIRMWARE_DESCRIPTOR_NAME = "10-sonicwall-x86_64-dev-enrolled.json"
FIRMWARE_DESCRIPTOR = {
    "description": "UEFI firmware for x86_64, with Secure Boot, SB enabled, SonicWall certs enrolled",
    "interface-types": ["uefi"],
    "mapping": {
        "device": "flash",
        "executable": {
            "filename": "/usr/share/OVMF/OVMF_CODE.sw.dev.fd",
            "format": "raw",
        },
        "nvram-template": {
            "filename": "/usr/share/OVMF/OVMF_VARS.sw.dev.fd",
            "format": "raw",
        },
    },
    "targets": [
        {
            "architecture": "x86_64",
            "machines": ["pc-q35-*"],
        }
    ],
    "features": ["verbose-dynamic"],
    "tags": [],
}
LIBVIRT_SERVICE = "libvirtd"

DEFAULT_PACKAGES = ("virt-manager", "libvirt-daemon-system", "libvirt-clients")
DEFAULT_IMAGE_DIR = Path("/var/lib/libvirt/images")
ARTIFACT_MODE = 0o644

DISK_BUSES = {"virtio", "sata", "scsi", "ide", "usb"}
DEFAULT_DISK_BUS = "virtio"
DEFAULT_GRAPHICS = "spice"
DEFAULT_VIDEO = "qxl"
DEFAULT_MACHINE = "q35"
DEFAULT_WATCHDOG = "i6300esb,action=reset"
CONSOLE_SPEC = "pty,target_type=serial"

# (connect, read) seconds
REQUEST_TIMEOUT = (30, 300)
USER_AGENT = "kvmdeploy/1.0"
DOWNLOAD_CHUNK_SIZE = 1024 * 256  # 256 KiB
CHECKSUM_SUFFIX = ".sha256"
