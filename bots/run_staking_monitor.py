#!/usr/bin/env python3
"""
Staking monitor keeper - accrues rewards and converts them above target prices.

Usage:
    # Monitor mode (accrue and check, no conversions)
    python bots/run_staking_monitor.py examples/staking_monitor.yml --monitor-only

    # Live mode
    python bots/run_staking_monitor.py examples/staking_monitor.yml

    # Dry run mode (quotes the conversions that would run)
    python bots/run_staking_monitor.py examples/staking_monitor.yml --dry-run
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

import yaml

REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT / "src"))

DEFAULT_STATE_PATH = "state/staking_monitor_state.json"


def load_config(config_file: str) -> dict:
    with open(config_file, "r") as handle:
        return yaml.safe_load(handle) or {}


def resolve_mode(config: dict, *, monitor_only: bool, dry_run: bool) -> str:
    if monitor_only:
        return "monitor"
    if dry_run:
        return "dry-run"
    return config.get("mode", "live")


def run_staking_monitor_from_file(config_file: str) -> None:
    from engine.monitor_runner import run_monitor
    from utils.config_validator import validate_config

    config = load_config(config_file)
    validate_config(config)
    state_path = Path(config.get("state_path", DEFAULT_STATE_PATH))
    state_path.parent.mkdir(parents=True, exist_ok=True)
    run_monitor(config, state_path)


def main() -> None:
    """Main entry point."""
    from engine.monitor_runner import run_monitor
    from utils.config_validator import validate_config
    from utils.logging_config import setup_logging

    parser = argparse.ArgumentParser(description="Staking monitor keeper")
    parser.add_argument("config", help="Path to configuration file (YAML)")
    parser.add_argument(
        "--monitor-only",
        action="store_true",
        help="Monitor mode only (no conversions)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Dry run mode (quote conversions without executing)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit structured JSON log lines",
    )
    args = parser.parse_args()

    setup_logging(level=args.log_level, structured=args.json_logs)

    config = load_config(args.config)
    config["mode"] = resolve_mode(
        config, monitor_only=args.monitor_only, dry_run=args.dry_run
    )
    validate_config(config)

    state_path = Path(config.get("state_path", DEFAULT_STATE_PATH))
    state_path.parent.mkdir(parents=True, exist_ok=True)
    run_monitor(config, state_path)


if __name__ == "__main__":
    main()
