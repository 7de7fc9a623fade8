"""Price-triggered conversion of pending rewards into the stable asset."""

from __future__ import annotations

import logging

from engine.collaborators import ExchangeRouter, ExternalFailure, PriceOracle
from engine.ledger import UserLedger
from engine.reports import PassReport
from strategies.reward_conversion import is_price_triggered

LOGGER = logging.getLogger("staking_monitor.conversion")


class ConversionEngine:
    """Convert each eligible user's pending amount once price beats their target."""

    def __init__(
        self,
        ledger: UserLedger,
        oracle: PriceOracle,
        router: ExchangeRouter,
    ) -> None:
        self.ledger = ledger
        self.oracle = oracle
        self.router = router

    def triggered_users(self, price: int) -> list[str]:
        """Watched users whose target is strictly below ``price``."""
        users = []
        for user in self.ledger.watchlist.snapshot():
            account = self.ledger.get_account(user)
            if account is not None and is_price_triggered(price, account.target_price):
                users.append(user)
        return users

    def pending_conversions(self, price: int) -> list[tuple[str, int]]:
        conversions = []
        for user in self.triggered_users(price):
            account = self.ledger.require_account(user)
            if account.pending_to_convert > 0:
                conversions.append((user, account.pending_to_convert))
        return conversions

    def perform_action(self) -> PassReport:
        report = PassReport(operation="conversion")
        try:
            price = int(self.oracle.get_price())
        except Exception as exc:
            LOGGER.warning("Conversion pass aborted: price read failed: %s", exc)
            report.error = str(exc)
            return report
        report.price = price
        for user, amount_in in self.pending_conversions(price):
            report.processed += 1
            try:
                amount_out = int(self.router.convert(amount_in))
                if amount_out < 0:
                    raise ExternalFailure(
                        "router", f"negative output {amount_out} for {amount_in}"
                    )
            except Exception as exc:
                LOGGER.warning(
                    "Conversion failed for %s (pending=%s): %s", user, amount_in, exc
                )
                report.record_failure(user, exc)
                continue
            self.ledger.record_conversion(user, amount_out)
            report.converted[user] = amount_out
            LOGGER.info(
                "Converted %s for %s into %s stable units at price %s.",
                amount_in,
                user,
                amount_out,
                price,
            )
        return report

    check_conditions_and_perform_swap = perform_action
