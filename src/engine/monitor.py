"""Staking monitor facade wiring the ledger to its engines and collaborators."""

from __future__ import annotations

from decimal import Decimal
from typing import Callable

from engine.accrual import AccrualEngine
from engine.automation import AutomationInterface, CheckContext
from engine.collaborators import BalanceSource, ExchangeRouter, PriceOracle
from engine.conversion import ConversionEngine
from engine.ledger import UserAccount, UserLedger, check_deposit_amount
from engine.reports import PassReport


class StakingMonitor:
    """Entry points for deposits, orders, accrual and conversion.

    ``normalize_user`` maps every identity to the one ledger key it is stored
    under, so two spellings of the same address share one account.
    """

    def __init__(
        self,
        ledger: UserLedger,
        *,
        oracle: PriceOracle,
        router: ExchangeRouter,
        balance_source: BalanceSource,
        normalize_user: Callable[[str], str] | None = None,
    ) -> None:
        self.ledger = ledger
        self.balance_source = balance_source
        self.accrual = AccrualEngine(ledger, balance_source)
        self.conversion = ConversionEngine(ledger, oracle, router)
        self.automation = AutomationInterface(self.conversion)
        self._normalize_user = normalize_user

    def user_key(self, user: str) -> str:
        if self._normalize_user is None:
            return user
        return self._normalize_user(user)

    def deposit(self, user: str, amount: int) -> UserAccount:
        user = self.user_key(user)
        check_deposit_amount(amount)
        observed = 0
        if user not in self.ledger.watchlist:
            observed = int(self.balance_source.get_balance(user))
        return self.ledger.deposit(user, amount, observed_balance=observed)

    def configure_order(
        self,
        user: str,
        target_price: Decimal | int | str,
        conversion_percentage: int,
    ) -> UserAccount:
        return self.ledger.configure_order(
            self.user_key(user), target_price, conversion_percentage
        )

    def run_accrual(self) -> PassReport:
        return self.accrual.run_accrual()

    def check_needed(self) -> tuple[bool, CheckContext]:
        return self.automation.check_needed()

    def perform_action(self, context: CheckContext | bytes | None = None) -> PassReport:
        return self.automation.perform_action(context)

    check_conditions_and_perform_swap = perform_action

    def get_price(self) -> int:
        return self.automation.get_price()

    def get_deposit_balance(self, user: str) -> int:
        return self.ledger.get_deposit_balance(self.user_key(user))

    def get_account(self, user: str) -> UserAccount | None:
        return self.ledger.get_account(self.user_key(user))
