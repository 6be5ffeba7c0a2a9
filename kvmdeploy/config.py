"""Configuration loading and validation for kvmdeploy."""

from __future__ import annotations

import json
import re
import stat
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

try:
    import yaml  # type: ignore
except ImportError as exc:  # pragma: no cover
    raise SystemExit("PyYAML is required but not installed") from exc

from kvmdeploy.constants import (
    DEFAULT_CONFIG_PATH,
    DEFAULT_DISK_BUS,
    DEFAULT_GRAPHICS,
    DEFAULT_IMAGE_DIR,
    DEFAULT_MACHINE,
    DEFAULT_PACKAGES,
    DEFAULT_VIDEO,
    DEFAULT_WATCHDOG,
    DISK_BUSES,
)
from kvmdeploy.exceptions import ConfigError, ConfigFieldMissing, ConfigNotFound
from kvmdeploy.models import ProvisionConfig
from kvmdeploy.utils import log

URL_RE = re.compile(r"^https?://")
SHA256_RE = re.compile(r"^[0-9a-f]{64}$")
DIGITS_RE = re.compile(r"[0-9]+")

KNOWN_FIELDS = {
    "vm_name",
    "memory",
    "cpus",
    "os_variant",
    "firmware_dir",
    "ovmf_base_url",
    "ovmf_code",
    "ovmf_vars",
    "check_packages",
    "qcow2_image_url",
    "qcow2_image_path",
    "qcow2_image_fname",
    "image_dir",
    "interactive",
    "fix_permissions",
    "packages",
    "disk_bus",
    "graphics",
    "video",
    "machine",
    "watchdog",
    "ovmf_code_sha256",
    "ovmf_vars_sha256",
    "qcow2_image_sha256",
}


def _read_document(path: Path) -> Dict[str, Any]:
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigError(f"Cannot read configuration {path}: {exc}")

    if path.suffix.lower() in (".yaml", ".yml"):
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise ConfigError(f"Configuration {path} contains invalid YAML: {exc}")
    else:
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ConfigError(f"Configuration {path} contains invalid JSON: {exc}")

    if not isinstance(data, dict):
        raise ConfigError(f"Configuration {path} must contain an object, got {type(data).__name__}")
    return data


def _require_str(data: Dict[str, Any], name: str) -> str:
    if name not in data or data[name] is None:
        raise ConfigFieldMissing(name, "is required")
    value = data[name]
    if not isinstance(value, str):
        raise ConfigFieldMissing(name, f"must be a string (got {type(value).__name__})")
    value = value.strip()
    if not value:
        raise ConfigFieldMissing(name, "must not be empty")
    return value


def _optional_str(data: Dict[str, Any], name: str, default: Optional[str]) -> Optional[str]:
    if data.get(name) is None:
        return default
    return _require_str(data, name)


def _require_int(data: Dict[str, Any], name: str, min_val: int = 1) -> int:
    if name not in data or data[name] is None:
        raise ConfigFieldMissing(name, "is required")
    raw = data[name]
    # bool is an int subclass; "true" is not a memory size
    if isinstance(raw, bool):
        raise ConfigFieldMissing(name, f"must be an integer (got '{raw}')")
    if isinstance(raw, int):
        value = raw
    elif isinstance(raw, str) and DIGITS_RE.fullmatch(raw.strip()):
        value = int(raw.strip())
    else:
        raise ConfigFieldMissing(name, f"must be an integer (got '{raw}')")
    if value < min_val:
        raise ConfigFieldMissing(name, f"must be >= {min_val} (got {value})")
    return value


def _require_bool(data: Dict[str, Any], name: str) -> bool:
    if name not in data or data[name] is None:
        raise ConfigFieldMissing(name, "is required")
    value = data[name]
    if not isinstance(value, bool):
        raise ConfigFieldMissing(name, f"must be true or false (got '{value}')")
    return value


def _optional_bool(data: Dict[str, Any], name: str, default: bool) -> bool:
    if data.get(name) is None:
        return default
    return _require_bool(data, name)


def _require_url(data: Dict[str, Any], name: str) -> str:
    value = _require_str(data, name)
    if not URL_RE.match(value):
        raise ConfigFieldMissing(name, f"must start with http:// or https:// (got '{value}')")
    return value


def _optional_sha256(data: Dict[str, Any], name: str) -> Optional[str]:
    value = _optional_str(data, name, None)
    if value is None:
        return None
    value = value.lower()
    if not SHA256_RE.match(value):
        raise ConfigFieldMissing(name, "must be a 64 character hex SHA-256 digest")
    return value


def _packages(data: Dict[str, Any]) -> Tuple[str, ...]:
    raw = data.get("packages")
    if raw is None:
        return DEFAULT_PACKAGES
    if not isinstance(raw, list) or not all(isinstance(p, str) and p.strip() for p in raw):
        raise ConfigFieldMissing("packages", "must be a list of package names")
    return tuple(p.strip() for p in raw)


def _image_path(data: Dict[str, Any]) -> Path:
    image_dir = Path(_optional_str(data, "image_dir", str(DEFAULT_IMAGE_DIR)) or DEFAULT_IMAGE_DIR).expanduser()
    if data.get("qcow2_image_path") is not None:
        path = Path(_require_str(data, "qcow2_image_path")).expanduser()
        # relative paths live in the image pool, not the caller's cwd
        return path if path.is_absolute() else image_dir / path
    if data.get("qcow2_image_fname") is not None:
        fname = _require_str(data, "qcow2_image_fname")
        if "/" in fname:
            raise ConfigFieldMissing("qcow2_image_fname", f"must be a bare filename (got '{fname}')")
        return image_dir / fname
    raise ConfigFieldMissing("qcow2_image_path", "is required (or set qcow2_image_fname)")


def load_config(config_path: Optional[Path] = None) -> ProvisionConfig:
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH
    if not config_path.is_file():
        raise ConfigNotFound(f"Configuration file not found at {config_path}")

    data = _read_document(config_path)
    unknown = sorted(set(data) - KNOWN_FIELDS)
    if unknown:
        log("WARN", f"Ignoring unknown configuration keys: {', '.join(unknown)}")

    vm_name = _require_str(data, "vm_name")
    if "/" in vm_name:
        raise ConfigFieldMissing("vm_name", f"must not contain '/' (got '{vm_name}')")

    ovmf_base_url = _require_url(data, "ovmf_base_url")
    if not ovmf_base_url.endswith("/"):
        ovmf_base_url += "/"

    for name in ("ovmf_code", "ovmf_vars"):
        if "/" in _require_str(data, name):
            raise ConfigFieldMissing(name, "must be a bare filename")

    disk_bus = (_optional_str(data, "disk_bus", DEFAULT_DISK_BUS) or DEFAULT_DISK_BUS).lower()
    if disk_bus not in DISK_BUSES:
        supported = ", ".join(sorted(DISK_BUSES))
        raise ConfigFieldMissing("disk_bus", f"must be one of {supported} (got '{disk_bus}')")

    return ProvisionConfig(
        vm_name=vm_name,
        memory=_require_int(data, "memory"),
        cpus=_require_int(data, "cpus"),
        os_variant=_require_str(data, "os_variant"),
        firmware_dir=Path(_require_str(data, "firmware_dir")).expanduser(),
        ovmf_base_url=ovmf_base_url,
        ovmf_code=_require_str(data, "ovmf_code"),
        ovmf_vars=_require_str(data, "ovmf_vars"),
        check_packages=_require_bool(data, "check_packages"),
        qcow2_image_url=_require_url(data, "qcow2_image_url"),
        qcow2_image_path=_image_path(data),
        interactive=_optional_bool(data, "interactive", False),
        fix_permissions=_optional_bool(data, "fix_permissions", True),
        packages=_packages(data),
        disk_bus=disk_bus,
        graphics=_optional_str(data, "graphics", DEFAULT_GRAPHICS) or DEFAULT_GRAPHICS,
        video=_optional_str(data, "video", DEFAULT_VIDEO) or DEFAULT_VIDEO,
        machine=_optional_str(data, "machine", DEFAULT_MACHINE) or DEFAULT_MACHINE,
        watchdog=_optional_str(data, "watchdog", DEFAULT_WATCHDOG) or DEFAULT_WATCHDOG,
        ovmf_code_sha256=_optional_sha256(data, "ovmf_code_sha256"),
        ovmf_vars_sha256=_optional_sha256(data, "ovmf_vars_sha256"),
        qcow2_image_sha256=_optional_sha256(data, "qcow2_image_sha256"),
    )


def check_config_file(config_path: Path) -> ProvisionConfig:
    """Verify the configuration file is present and readable, then validate it."""
    if not config_path.exists():
        raise ConfigNotFound(f"Configuration file not found at {config_path}")
    if not config_path.is_file():
        raise ConfigError(f"{config_path} is not a regular file")

    mode = config_path.stat().st_mode
    if not mode & stat.S_IRUSR:
        log("WARN", f"{config_path} is not readable by its owner. Setting read permission.")
        try:
            config_path.chmod(stat.S_IMODE(mode) | stat.S_IRUSR)
        except OSError as exc:
            raise ConfigError(f"Cannot set read permission on {config_path}: {exc}")
    log("INFO", f"{config_path} exists and is readable.")

    cfg = load_config(config_path)
    log("SUCCESS", f"{config_path} is a valid configuration for VM '{cfg.vm_name}'")
    return cfg
