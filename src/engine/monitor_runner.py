"""Interval-driven keeper loop for the staking monitor."""

from __future__ import annotations

import logging
import time
from contextlib import nullcontext
from pathlib import Path
from typing import Any, Callable, ContextManager

from engine.client_factory import build_monitor
from engine.monitor import StakingMonitor
from engine.reports import PassReport
from engine.state import EngineState, state_lock
from strategies.reward_conversion import DEFAULT_PRICE_DECIMALS
from utils.logging_config import LogContext

LOGGER = logging.getLogger("staking_monitor.runner")

DEFAULT_ACCRUAL_INTERVAL_SEC = 180.0
DEFAULT_POLL_INTERVAL_SEC = 30.0
RUN_MODES = {"live", "dry-run", "monitor"}


class MonitorRunner:
    """
    Drive accrual and conversion passes on a fixed cadence.

    Modes:
        live: accrue, check, and perform conversions
        dry-run: accrue, check, and log the conversions that would run
        monitor: accrue and check only
    """

    def __init__(
        self,
        monitor: StakingMonitor,
        state: EngineState,
        *,
        mode: str = "monitor",
        accrual_interval_sec: float = DEFAULT_ACCRUAL_INTERVAL_SEC,
        state_path: str | Path | None = None,
        time_provider: Callable[[], float] | None = None,
    ) -> None:
        if mode not in RUN_MODES:
            raise ValueError(f"Unsupported mode: {mode}")
        if state.ledger is not monitor.ledger:
            raise ValueError("state and monitor must share one ledger")
        self.monitor = monitor
        self.state = state
        self.mode = mode
        self.accrual_interval_sec = accrual_interval_sec
        self.state_path = Path(state_path) if state_path is not None else None
        self._time_provider = time_provider or time.time

    def accrual_due(self, now: float) -> bool:
        last = self.state.last_accrual_at
        return last is None or now - last >= self.accrual_interval_sec

    def poll_once(self, now: float | None = None) -> dict[str, PassReport]:
        """Reload the ledger, run one keeper tick and persist state.

        The whole tick holds the state lock, so deposits and orders written by
        other processes are picked up rather than overwritten.
        """
        now = self._time_provider() if now is None else now
        reports: dict[str, PassReport] = {}
        with self._locked(), LogContext(mode=self.mode):
            self._reload_ledger()
            if self.accrual_due(now):
                reports["accrual"] = self.monitor.run_accrual()
                self.state.last_accrual_at = now

            needed, context = self.monitor.check_needed()
            if context.error:
                reports["check"] = PassReport(operation="check", error=context.error)
            elif needed:
                if self.mode == "live":
                    reports["conversion"] = self.monitor.perform_action(context)
                elif self.mode == "dry-run":
                    reports["conversion"] = self.preview_conversions(context.price)
                else:
                    LOGGER.info(
                        "Price %s beats target for %s user(s); monitor mode, no action.",
                        context.price,
                        len(context.eligible_users),
                    )

            for report in reports.values():
                self._log_report(report)
            self.state.last_report = {
                name: report.to_payload() for name, report in reports.items()
            }
            self.state.mark_running()
            self._save()
        return reports

    def preview_conversions(self, price: int | None) -> PassReport:
        """Quote the conversions a live pass would make; the ledger is untouched."""
        report = PassReport(operation="dry-run", price=price)
        if price is None:
            return report
        router = self.monitor.conversion.router
        quote = getattr(router, "quote", None)
        for user, amount_in in self.monitor.conversion.pending_conversions(price):
            report.processed += 1
            if quote is None:
                LOGGER.info("Dry-run: would convert %s for %s.", amount_in, user)
                continue
            try:
                expected = int(quote(amount_in))
            except Exception as exc:
                LOGGER.warning("Dry-run quote failed for %s: %s", user, exc)
                report.record_failure(user, exc)
                continue
            LOGGER.info(
                "Dry-run: would convert %s for %s into ~%s stable units.",
                amount_in,
                user,
                expected,
            )
        return report

    def run_forever(
        self,
        poll_interval_sec: float = DEFAULT_POLL_INTERVAL_SEC,
        *,
        sleep: Callable[[float], None] | None = None,
        max_polls: int | None = None,
    ) -> None:
        sleep = sleep or time.sleep
        polls = 0
        LOGGER.info(
            "Staking monitor started in %s mode (poll=%ss, accrual=%ss).",
            self.mode,
            poll_interval_sec,
            self.accrual_interval_sec,
        )
        while max_polls is None or polls < max_polls:
            try:
                self.poll_once()
            except Exception as exc:
                self._record_error(str(exc))
                raise
            polls += 1
            if max_polls is None or polls < max_polls:
                sleep(poll_interval_sec)

    def _locked(self) -> ContextManager[None]:
        if self.state_path is None:
            return nullcontext()
        return state_lock(self.state_path)

    def _reload_ledger(self) -> None:
        if self.state_path is None or not self.state_path.exists():
            return
        on_disk = EngineState.load(self.state_path)
        self.state.ledger.reload_from(on_disk.ledger)

    def _save(self) -> None:
        if self.state_path is not None:
            self.state.save(self.state_path)

    def _record_error(self, message: str) -> None:
        self.state.mark_error(message)
        if self.state_path is None:
            return
        with state_lock(self.state_path):
            if not self.state_path.exists():
                self.state.save(self.state_path)
                return
            try:
                on_disk = EngineState.load(self.state_path)
            except (OSError, ValueError) as exc:
                LOGGER.error("Could not record error in %s: %s", self.state_path, exc)
                return
            on_disk.mark_error(message)
            on_disk.save(self.state_path)

    def _log_report(self, report: PassReport) -> None:
        if report.error:
            LOGGER.warning("%s pass failed: %s", report.operation, report.error)
        elif report.failures:
            LOGGER.warning(
                "%s pass finished with %s failure(s): %s",
                report.operation,
                len(report.failures),
                ", ".join(sorted(report.failures)),
            )
        elif report.is_noop:
            LOGGER.debug("%s pass: nothing to do.", report.operation)
        else:
            LOGGER.info(
                "%s pass: processed=%s accrued=%s converted=%s",
                report.operation,
                report.processed,
                len(report.accrued),
                len(report.converted),
            )


def build_runner(config: dict[str, Any], state_path: str | Path) -> MonitorRunner:
    state = EngineState.load(
        state_path,
        price_decimals=int(config.get("price_decimals", DEFAULT_PRICE_DECIMALS)),
    )
    monitor = build_monitor(config, state.ledger)
    return MonitorRunner(
        monitor,
        state,
        mode=config.get("mode", "monitor"),
        accrual_interval_sec=float(
            config.get("accrual_interval_sec", DEFAULT_ACCRUAL_INTERVAL_SEC)
        ),
        state_path=state_path,
    )


def run_monitor(config: dict[str, Any], state_path: str | Path) -> None:
    runner = build_runner(config, state_path)
    runner.run_forever(
        float(config.get("poll_interval_sec", DEFAULT_POLL_INTERVAL_SEC))
    )
