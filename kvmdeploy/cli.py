"""CLI entry points for kvmdeploy."""

from __future__ import annotations

import argparse
import dataclasses
from pathlib import Path
from typing import List, Optional

from kvmdeploy import constants
from kvmdeploy.config import check_config_file, load_config
from kvmdeploy.exceptions import ProvisionError
from kvmdeploy.models import ProvisionConfig
from kvmdeploy.provisioner import Provisioner
from kvmdeploy.utils import log


def show_config(cfg: ProvisionConfig) -> None:
    """Print the resolved configuration."""
    for f in dataclasses.fields(cfg):
        value = getattr(cfg, f.name)
        if isinstance(value, tuple):
            value = ", ".join(value)
        print(f"  {f.name}: {value}")


def print_summary_banner(cfg: ProvisionConfig) -> None:
    lines: List[str] = []
    lines.append(f"  VM: {cfg.vm_name} ({cfg.os_variant})")
    lines.append(f"  Memory: {cfg.memory} MiB | CPUs: {cfg.cpus} | Machine: {cfg.machine}")
    lines.append(f"  Disk: {cfg.qcow2_image_path} (bus={cfg.disk_bus})")
    lines.append(f"  Firmware: {cfg.ovmf_code_path}")
    max_len = max(len(line) for line in lines)
    border_len = max_len + 2
    banner_colour = "\033[0;36m"
    reset = "\033[0m"
    print(f"{banner_colour}{'=' * border_len}{reset}", flush=True)
    for line in lines:
        print(f"{banner_colour}{line}{reset}", flush=True)
    print(f"{banner_colour}{'=' * border_len}{reset}", flush=True)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kvmdeploy",
        description="Provision host prerequisites and emit a libvirt VM definition with virt-install",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help=f"Path to the JSON/YAML configuration (default: $KVMDEPLOY_CONFIG or {constants.DEFAULT_CONFIG_PATH})",
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--interactive",
        dest="interactive",
        action="store_true",
        default=None,
        help="Ask before installing packages or the firmware descriptor",
    )
    mode.add_argument(
        "--non-interactive",
        dest="interactive",
        action="store_false",
        help="Never prompt; install what is missing",
    )
    parser.add_argument("--output-dir", type=Path, default=None, help="Directory for <vm_name>.xml (default: cwd)")
    parser.add_argument("--define", action="store_true", help="Register the generated definition with libvirt")
    parser.add_argument("--show-config", action="store_true", help="Show resolved configuration and exit")
    parser.add_argument("--dry-run", action="store_true", help="Validate config and print planned steps, then exit")
    parser.add_argument("--check-config", action="store_true", help="Check the configuration file and exit")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    config_path = args.config or constants.DEFAULT_CONFIG_PATH

    if args.check_config:
        try:
            check_config_file(config_path)
        except ProvisionError as exc:
            log("ERROR", str(exc))
            return 1
        return 0

    try:
        cfg = load_config(config_path)
    except ProvisionError as exc:
        log("ERROR", str(exc))
        return 1

    if args.interactive is not None and args.interactive != cfg.interactive:
        cfg = dataclasses.replace(cfg, interactive=args.interactive)

    if args.show_config:
        show_config(cfg)
        return 0

    provisioner = Provisioner(cfg, output_dir=args.output_dir, define=args.define)

    if args.dry_run:
        log("INFO", "=== Configuration ===")
        show_config(cfg)
        log("INFO", "=== Planned steps ===")
        for idx, step in enumerate(provisioner.plan(), start=1):
            log("INFO", f"{idx}. {step}")
        log("INFO", "=== Dry-run complete (nothing changed) ===")
        return 0

    print_summary_banner(cfg)
    try:
        provisioner.run()
    except ProvisionError as exc:
        log("ERROR", str(exc))
        return 1
    except KeyboardInterrupt:
        log("ERROR", "Interrupted")
        return 130
    except Exception as exc:
        log("ERROR", f"Unexpected error: {exc}")
        import traceback

        traceback.print_exc()
        return 1
    return 0
