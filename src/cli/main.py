"""CLI entry point for the staking monitor."""

from __future__ import annotations

import argparse
import json
import logging
import sys
import tomllib
from contextlib import nullcontext
from pathlib import Path
from typing import Any, Callable

import yaml

from engine.client_factory import build_monitor
from engine.collaborators import ExternalFailure
from engine.ledger import LedgerError
from engine.monitor import StakingMonitor
from engine.monitor_runner import (
    DEFAULT_ACCRUAL_INTERVAL_SEC,
    DEFAULT_POLL_INTERVAL_SEC,
    MonitorRunner,
)
from engine.state import EngineState, state_lock
from strategies import reward_conversion_describe
from strategies.reward_conversion import (
    DEFAULT_BASE_DECIMALS,
    DEFAULT_PRICE_DECIMALS,
    format_fixed,
    to_fixed,
)
from utils.config_validator import ConfigValidationError, validate_config
from utils.credentials import DEFAULT_SERVICE_NAME, store_api_credentials
from utils.logging_config import setup_logging

LOGGER = logging.getLogger("staking_monitor.cli")

SUPPORTED_FORMATS = (".json", ".toml", ".yaml", ".yml")
EXPECTED_ERRORS = (
    ArithmeticError,
    FileNotFoundError,
    RuntimeError,
    ValueError,
    LedgerError,
    ExternalFailure,
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="staking monitor CLI")
    parser.add_argument("--version", action="version", version="staking-monitor 0.1.0")
    subparsers = parser.add_subparsers(dest="command", required=True)

    deposit_parser = _add_command(
        subparsers, "deposit", "Record a deposit and register the user.", run_deposit
    )
    deposit_parser.add_argument("--user", required=True, help="User address.")
    deposit_parser.add_argument(
        "--amount", required=True, help="Deposit in base asset units (e.g. 0.01)."
    )

    order_parser = _add_command(
        subparsers, "set-order", "Set a user's target price and percentage.", run_set_order
    )
    order_parser.add_argument("--user", required=True, help="User address.")
    order_parser.add_argument(
        "--target-price", required=True, help="Target price in quote units (e.g. 3500)."
    )
    order_parser.add_argument(
        "--percentage",
        required=True,
        type=int,
        help="Share of new rewards to convert, 0-100.",
    )

    _add_command(subparsers, "accrue", "Run one accrual pass.", run_accrue)
    _add_command(subparsers, "check", "Report whether a conversion is due.", run_check)
    _add_command(subparsers, "perform", "Run one conversion pass.", run_perform)
    _add_command(subparsers, "price", "Print the current oracle price.", run_price)
    _add_command(subparsers, "watchlist", "List watched users in order.", run_watchlist)

    status_parser = _add_command(
        subparsers, "status", "Show ledger state for one or all users.", run_status
    )
    status_parser.add_argument("--user", help="Only show this user.")

    run_parser = _add_command(subparsers, "run", "Start the keeper loop.", run_loop)
    run_parser.add_argument(
        "--mode",
        choices=("live", "dry-run", "monitor"),
        help="Override the configured mode.",
    )
    run_parser.add_argument(
        "--max-polls", type=int, help="Stop after this many polls."
    )

    creds_parser = subparsers.add_parser(
        "store-credentials", help="Store exchange API credentials in the OS keychain."
    )
    creds_parser.add_argument("--api-key", required=True)
    creds_parser.add_argument("--api-secret", required=True)
    creds_parser.add_argument("--service", default=DEFAULT_SERVICE_NAME)
    creds_parser.add_argument("--log-level", default="INFO")
    creds_parser.set_defaults(handler=run_store_credentials)
    return parser


def _add_command(
    subparsers: Any,
    name: str,
    help_text: str,
    handler: Callable[[argparse.Namespace], int],
) -> argparse.ArgumentParser:
    command_parser = subparsers.add_parser(name, help=help_text)
    command_parser.add_argument(
        "--config", required=True, help="Path to JSON/TOML/YAML config file."
    )
    command_parser.add_argument(
        "--state-path",
        help="Optional path to state.json (defaults to config file directory).",
    )
    command_parser.add_argument(
        "--log-level",
        default="INFO",
        help="Logging level (DEBUG, INFO, WARNING, ERROR).",
    )
    command_parser.set_defaults(handler=handler)
    return command_parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if hasattr(args, "handler"):
        return args.handler(args)
    parser.print_help()
    return 1


def run_deposit(args: argparse.Namespace) -> int:
    def action(monitor: StakingMonitor, config: dict[str, Any]) -> Any:
        decimals = int(config.get("base_decimals", DEFAULT_BASE_DECIMALS))
        amount = to_fixed(args.amount, decimals)
        account = monitor.deposit(args.user, amount)
        return {"user": monitor.user_key(args.user), **account.to_payload()}

    return _run_with_monitor(args, action, persist=True)


def run_set_order(args: argparse.Namespace) -> int:
    def action(monitor: StakingMonitor, config: dict[str, Any]) -> Any:
        account = monitor.configure_order(args.user, args.target_price, args.percentage)
        return {"user": monitor.user_key(args.user), **account.to_payload()}

    return _run_with_monitor(args, action, persist=True)


def run_accrue(args: argparse.Namespace) -> int:
    return _run_with_monitor(
        args, lambda monitor, config: monitor.run_accrual().to_payload(), persist=True
    )


def run_check(args: argparse.Namespace) -> int:
    def action(monitor: StakingMonitor, config: dict[str, Any]) -> Any:
        needed, context = monitor.check_needed()
        return {
            "needed": needed,
            "price": context.price,
            "eligible_users": list(context.eligible_users),
            "error": context.error,
        }

    return _run_with_monitor(args, action, persist=False)


def run_perform(args: argparse.Namespace) -> int:
    return _run_with_monitor(
        args,
        lambda monitor, config: monitor.perform_action().to_payload(),
        persist=True,
        sign_requests=True,
    )


def run_price(args: argparse.Namespace) -> int:
    def action(monitor: StakingMonitor, config: dict[str, Any]) -> Any:
        price = monitor.get_price()
        decimals = monitor.ledger.price_decimals
        return {"price": price, "decimals": decimals, "value": format_fixed(price, decimals)}

    return _run_with_monitor(args, action, persist=False)


def run_watchlist(args: argparse.Namespace) -> int:
    return _run_with_monitor(
        args,
        lambda monitor, config: list(monitor.ledger.watchlist.snapshot()),
        persist=False,
    )


def run_status(args: argparse.Namespace) -> int:
    def action(monitor: StakingMonitor, config: dict[str, Any]) -> Any:
        if args.user:
            users = [monitor.user_key(args.user)]
        else:
            users = list(monitor.ledger.watchlist.snapshot())
        status = {}
        for user in users:
            account = monitor.get_account(user)
            status[user] = account.to_payload() if account is not None else None
        return status

    return _run_with_monitor(args, action, persist=False)


def run_loop(args: argparse.Namespace) -> int:
    configure_logging(args.log_level)
    try:
        config_path = Path(args.config).expanduser()
        config = load_validated_config(config_path)
        if args.mode:
            config["mode"] = args.mode
        state_path = resolve_state_path(args.state_path, config_path)
        state = load_state(config, state_path)
        monitor = build_monitor(config, state.ledger)
        runner = MonitorRunner(
            monitor,
            state,
            mode=config.get("mode", "monitor"),
            accrual_interval_sec=float(
                config.get("accrual_interval_sec", DEFAULT_ACCRUAL_INTERVAL_SEC)
            ),
            state_path=state_path,
        )
        LOGGER.info("Starting staking monitor")
        LOGGER.info("Description: %s", reward_conversion_describe())
        LOGGER.info("Config file: %s", config_path)
        LOGGER.info("State file: %s", state_path)
        runner.run_forever(
            float(config.get("poll_interval_sec", DEFAULT_POLL_INTERVAL_SEC)),
            max_polls=args.max_polls,
        )
    except KeyboardInterrupt:
        LOGGER.info("Staking monitor stopped by user.")
    except EXPECTED_ERRORS as exc:
        LOGGER.error(str(exc))
        return 2
    except Exception as exc:  # pragma: no cover - safeguard for unexpected issues.
        LOGGER.exception("Unexpected error in keeper loop: %s", exc)
        return 3
    return 0


def run_store_credentials(args: argparse.Namespace) -> int:
    configure_logging(args.log_level)
    try:
        store_api_credentials(args.service, args.api_key, args.api_secret)
    except (RuntimeError, ValueError) as exc:
        LOGGER.error(str(exc))
        return 2
    LOGGER.info("Stored API credentials for service '%s'.", args.service)
    return 0


def _run_with_monitor(
    args: argparse.Namespace,
    action: Callable[[StakingMonitor, dict[str, Any]], Any],
    *,
    persist: bool,
    sign_requests: bool = False,
) -> int:
    """Load state, run ``action`` and save when ``persist`` is set.

    Writing commands hold the state lock from load to save so they cannot
    interleave with a running keeper loop.
    """
    configure_logging(args.log_level)
    try:
        config_path = Path(args.config).expanduser()
        config = load_validated_config(config_path)
        state_path = resolve_state_path(args.state_path, config_path)
        lock = state_lock(state_path) if persist else nullcontext()
        with lock:
            state = load_state(config, state_path)
            monitor = build_monitor(config, state.ledger, sign_requests=sign_requests)
            result = action(monitor, config)
            if persist:
                if isinstance(result, dict) and "operation" in result:
                    state.last_report = {result["operation"]: result}
                state.save(state_path)
        print(json.dumps(result, indent=2, sort_keys=True, default=str))
    except EXPECTED_ERRORS as exc:
        LOGGER.error(str(exc))
        return 2
    except Exception as exc:  # pragma: no cover - safeguard for unexpected issues.
        LOGGER.exception("Unexpected error running %s: %s", args.command, exc)
        return 3
    return 0


def configure_logging(level: str) -> None:
    """Configure logging with sanitization and proper formatting."""
    setup_logging(level=level, sanitize=True, structured=False)


def resolve_state_path(state_path: str | None, config_path: Path) -> Path:
    if state_path:
        return Path(state_path).expanduser()
    return config_path.parent / "state.json"


def load_state(config: dict[str, Any], state_path: Path) -> EngineState:
    price_decimals = int(config.get("price_decimals", DEFAULT_PRICE_DECIMALS))
    state = EngineState.load(state_path, price_decimals=price_decimals)
    if state.ledger.price_decimals != price_decimals:
        raise ValueError(
            f"State file {state_path} uses price_decimals={state.ledger.price_decimals}, "
            f"config says {price_decimals}."
        )
    return state


def load_validated_config(config_path: Path) -> dict[str, Any]:
    config = load_config(config_path)
    try:
        validate_config(config)
    except ConfigValidationError as exc:
        raise ValueError(f"Configuration validation failed: {exc}") from exc
    return config


def load_config(config_path: Path) -> dict[str, Any]:
    if not config_path.exists():
        raise FileNotFoundError(
            f"Config file not found: {config_path}. Ensure the path is correct and readable."
        )
    suffix = config_path.suffix.lower()
    if suffix not in SUPPORTED_FORMATS:
        supported = ", ".join(SUPPORTED_FORMATS)
        raise ValueError(
            f"Unsupported config format '{suffix}'. Supported formats: {supported}."
        )
    text = config_path.read_text(encoding="utf-8")
    try:
        if suffix == ".json":
            data = json.loads(text)
        elif suffix == ".toml":
            data = tomllib.loads(text)
        else:
            data = yaml.safe_load(text)
    except json.JSONDecodeError as exc:
        raise ValueError(
            f"Invalid JSON in config file {config_path}: {exc}. Validate the file format."
        ) from exc
    except (tomllib.TOMLDecodeError, yaml.YAMLError) as exc:
        raise ValueError(f"Failed to parse config file {config_path}: {exc}.") from exc
    if data is None and suffix in (".yaml", ".yml"):
        data = {}
    if not isinstance(data, dict):
        raise ValueError(
            f"Config file {config_path} must contain a JSON/TOML/YAML object mapping."
        )
    return data


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
