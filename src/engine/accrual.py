"""Periodic reward accrual over the watchlist."""

from __future__ import annotations

import logging

from engine.collaborators import BalanceSource
from engine.ledger import UserLedger
from engine.reports import PassReport
from strategies.reward_conversion import calculate_accrual

LOGGER = logging.getLogger("staking_monitor.accrual")


class AccrualEngine:
    """Measure reward growth per watched user and queue the configured share."""

    def __init__(self, ledger: UserLedger, balance_source: BalanceSource) -> None:
        self.ledger = ledger
        self.balance_source = balance_source

    def run_accrual(self) -> PassReport:
        report = PassReport(operation="accrual")
        for user in self.ledger.watchlist.snapshot():
            account = self.ledger.get_account(user)
            if account is None:
                continue
            report.processed += 1
            try:
                current_balance = int(self.balance_source.get_balance(user))
                result = calculate_accrual(
                    current_balance=current_balance,
                    last_observed_balance=account.last_observed_balance,
                    conversion_percentage=account.conversion_percentage,
                )
            except Exception as exc:
                LOGGER.warning("Accrual skipped %s: %s", user, exc)
                report.record_failure(user, exc)
                continue
            self.ledger.record_accrual(user, result.contribution, result.new_snapshot)
            if result.contribution > 0:
                report.accrued[user] = result.contribution
                LOGGER.info(
                    "Accrued %s for %s (delta=%s, pending=%s).",
                    result.contribution,
                    user,
                    result.delta,
                    account.pending_to_convert,
                )
            elif result.delta < 0:
                LOGGER.debug(
                    "Balance for %s dropped by %s; snapshot moved.", user, -result.delta
                )
        return report
