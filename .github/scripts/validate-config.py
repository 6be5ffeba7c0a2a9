#!/usr/bin/env python3
"""Validate the sample configurations: schema correctness and URL reachability."""

from __future__ import annotations

import sys
from pathlib import Path

from kvmdeploy.config import load_config
from kvmdeploy.exceptions import ProvisionError
from kvmdeploy.fetch import new_session, probe_url
from kvmdeploy.models import ProvisionConfig

REPO_ROOT = Path(__file__).resolve().parents[2]
CONFIG_DIR = REPO_ROOT / "config"


# ── Phase 1: Schema validation (fail-fast) ──────────────────────────


def validate_schemas(paths: list[Path]) -> tuple[list[ProvisionConfig], list[str]]:
    configs: list[ProvisionConfig] = []
    errors: list[str] = []
    for path in paths:
        try:
            configs.append(load_config(path))
        except ProvisionError as exc:
            errors.append(f"[{path.name}] {exc}")
    return configs, errors


# ── Phase 2: URL reachability (collect-all) ──────────────────────────


def validate_urls(configs: list[ProvisionConfig]) -> list[str]:
    errors: list[str] = []
    session = new_session()
    for cfg in configs:
        for target in cfg.fetch_targets():
            try:
                probe_url(target.url, session)
            except ProvisionError as exc:
                errors.append(f"[{cfg.vm_name}] {target.label}: {exc}")
    return errors


# ── Main ─────────────────────────────────────────────────────────────


def main() -> int:
    paths = sorted(CONFIG_DIR.glob("*.json")) + sorted(CONFIG_DIR.glob("*.y*ml"))
    print(f"Loading {len(paths)} configuration(s) from {CONFIG_DIR}")

    print("\n=== Phase 1: Schema validation ===")
    configs, schema_errors = validate_schemas(paths)
    if schema_errors:
        for e in schema_errors:
            print(f"  ERROR: {e}")
        print(f"\nSchema validation failed with {len(schema_errors)} error(s)")
        return 1
    print(f"  OK: {len(configs)} configurations, all schemas valid")

    print("\n=== Phase 2: URL reachability ===")
    url_errors = validate_urls(configs)
    if url_errors:
        for e in url_errors:
            print(f"  ERROR: {e}")
        print(f"\nURL validation failed: {len(url_errors)} unreachable")
        return 1
    print("  OK: all URLs reachable")

    print("\nAll checks passed.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
