"""Per-user account bookkeeping and the ordered watchlist."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterator

from strategies.reward_conversion import DEFAULT_PRICE_DECIMALS, to_fixed

LOGGER = logging.getLogger("staking_monitor.ledger")


class LedgerError(Exception):
    """Base class for rejected ledger operations."""


class PreconditionViolation(LedgerError):
    """Raised when an operation is attempted before its prerequisite."""


class InvalidParameter(LedgerError, ValueError):
    """Raised when an argument is outside its accepted range."""


def check_deposit_amount(amount: int) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidParameter(f"Deposit amount must be an integer, got: {amount!r}")
    if amount <= 0:
        raise InvalidParameter(f"Deposit amount must be positive, got: {amount}")


@dataclass
class UserAccount:
    deposit_total: int = 0
    last_observed_balance: int = 0
    pending_to_convert: int = 0
    target_price: int | None = None
    conversion_percentage: int = 0
    converted_balance: int = 0

    @property
    def has_order(self) -> bool:
        return self.target_price is not None

    def to_payload(self) -> dict[str, Any]:
        return {
            "deposit_total": self.deposit_total,
            "last_observed_balance": self.last_observed_balance,
            "pending_to_convert": self.pending_to_convert,
            "target_price": self.target_price,
            "conversion_percentage": self.conversion_percentage,
            "converted_balance": self.converted_balance,
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "UserAccount":
        target = payload.get("target_price")
        return cls(
            deposit_total=int(payload.get("deposit_total", 0)),
            last_observed_balance=int(payload.get("last_observed_balance", 0)),
            pending_to_convert=int(payload.get("pending_to_convert", 0)),
            target_price=int(target) if target is not None else None,
            conversion_percentage=int(payload.get("conversion_percentage", 0)),
            converted_balance=int(payload.get("converted_balance", 0)),
        )


class Watchlist:
    """Append-only, index-addressable registry of monitored users."""

    def __init__(self, users: list[str] | None = None) -> None:
        self._users: list[str] = []
        self._members: set[str] = set()
        for user in users or []:
            self.add(user)

    def add(self, user: str) -> bool:
        if user in self._members:
            return False
        self._users.append(user)
        self._members.add(user)
        return True

    def snapshot(self) -> tuple[str, ...]:
        return tuple(self._users)

    def __contains__(self, user: object) -> bool:
        return user in self._members

    def __getitem__(self, index: int) -> str:
        return self._users[index]

    def __len__(self) -> int:
        return len(self._users)

    def __iter__(self) -> Iterator[str]:
        return iter(self.snapshot())


class UserLedger:
    """Explicit store of user accounts keyed by identity plus the watchlist."""

    def __init__(
        self,
        *,
        price_decimals: int = DEFAULT_PRICE_DECIMALS,
        accounts: dict[str, UserAccount] | None = None,
        watchlist: Watchlist | None = None,
    ) -> None:
        self.price_decimals = price_decimals
        self._accounts: dict[str, UserAccount] = dict(accounts or {})
        self.watchlist = watchlist if watchlist is not None else Watchlist()

    def get_account(self, user: str) -> UserAccount | None:
        return self._accounts.get(user)

    def require_account(self, user: str) -> UserAccount:
        account = self._accounts.get(user)
        if account is None:
            raise PreconditionViolation(f"No deposit recorded for {user}.")
        return account

    def get_deposit_balance(self, user: str) -> int:
        account = self._accounts.get(user)
        return account.deposit_total if account else 0

    def deposit(self, user: str, amount: int, *, observed_balance: int) -> UserAccount:
        """Record a deposit, registering the user on first deposit.

        ``observed_balance`` is only used for a new account, where it becomes
        the first accrual snapshot.
        """
        check_deposit_amount(amount)
        account = self._accounts.get(user)
        if account is None:
            account = UserAccount(
                deposit_total=amount, last_observed_balance=observed_balance
            )
            self._accounts[user] = account
            self.watchlist.add(user)
            LOGGER.info(
                "Registered %s with deposit %s (snapshot=%s).",
                user,
                amount,
                observed_balance,
            )
            return account
        account.deposit_total += amount
        LOGGER.info(
            "Deposit of %s for %s (total=%s).", amount, user, account.deposit_total
        )
        return account

    def configure_order(
        self,
        user: str,
        target_price: Decimal | int | str,
        conversion_percentage: int,
    ) -> UserAccount:
        """Replace the user's order with a new target price and percentage."""
        account = self._accounts.get(user)
        if account is None or account.deposit_total <= 0:
            raise PreconditionViolation(
                f"{user} must deposit before configuring an order."
            )
        if isinstance(conversion_percentage, bool) or not isinstance(
            conversion_percentage, int
        ):
            raise InvalidParameter(
                "conversion_percentage must be an integer, "
                f"got: {conversion_percentage!r}"
            )
        if not 0 <= conversion_percentage <= 100:
            raise InvalidParameter(
                f"conversion_percentage must be between 0 and 100, got: {conversion_percentage}"
            )
        try:
            scaled_price = to_fixed(target_price, self.price_decimals)
        except (ArithmeticError, ValueError, TypeError) as exc:
            raise InvalidParameter(f"Invalid target price: {target_price!r}") from exc
        if scaled_price <= 0:
            raise InvalidParameter(f"Target price must be positive, got: {target_price}")
        account.target_price = scaled_price
        account.conversion_percentage = conversion_percentage
        LOGGER.info(
            "Order set for %s: target_price=%s conversion_percentage=%s.",
            user,
            scaled_price,
            conversion_percentage,
        )
        return account

    def record_accrual(self, user: str, contribution: int, snapshot: int) -> None:
        account = self.require_account(user)
        if contribution > 0:
            account.pending_to_convert += contribution
        account.last_observed_balance = snapshot

    def record_conversion(self, user: str, amount_out: int) -> None:
        account = self.require_account(user)
        account.converted_balance += amount_out
        account.pending_to_convert = 0

    def to_payload(self) -> dict[str, Any]:
        return {
            "price_decimals": self.price_decimals,
            "watchlist": list(self.watchlist.snapshot()),
            "accounts": {
                user: account.to_payload() for user, account in self._accounts.items()
            },
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "UserLedger":
        accounts = {
            user: UserAccount.from_payload(item)
            for user, item in payload.get("accounts", {}).items()
        }
        return cls(
            price_decimals=int(payload.get("price_decimals", DEFAULT_PRICE_DECIMALS)),
            accounts=accounts,
            watchlist=Watchlist(list(payload.get("watchlist", []))),
        )

    def reload_from(self, other: "UserLedger") -> None:
        """Take over ``other``'s accounts and watchlist, keeping this instance."""
        if other.price_decimals != self.price_decimals:
            raise ValueError(
                f"Cannot reload ledger with price_decimals={other.price_decimals} "
                f"into one using {self.price_decimals}."
            )
        self._accounts = dict(other._accounts)
        self.watchlist = other.watchlist
