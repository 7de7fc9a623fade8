"""Check/perform pair consumed by an external scheduler."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field

from engine.conversion import ConversionEngine
from engine.reports import PassReport

LOGGER = logging.getLogger("staking_monitor.automation")


@dataclass(frozen=True)
class CheckContext:
    price: int | None = None
    eligible_users: tuple[str, ...] = field(default_factory=tuple)
    error: str | None = None

    def to_bytes(self) -> bytes:
        payload = {
            "price": self.price,
            "eligible_users": list(self.eligible_users),
            "error": self.error,
        }
        return json.dumps(payload, sort_keys=True).encode("utf8")

    @classmethod
    def from_bytes(cls, data: bytes) -> "CheckContext":
        if not data:
            return cls()
        payload = json.loads(data.decode("utf8"))
        return cls(
            price=payload.get("price"),
            eligible_users=tuple(payload.get("eligible_users", [])),
            error=payload.get("error"),
        )


class AutomationInterface:
    def __init__(self, conversion: ConversionEngine) -> None:
        self.conversion = conversion

    def get_price(self) -> int:
        return int(self.conversion.oracle.get_price())

    def check_needed(self) -> tuple[bool, CheckContext]:
        """Report whether any watched user's target is below the current price.

        Read-only and safe to poll; an unavailable oracle reports not needed.
        """
        try:
            price = self.get_price()
        except Exception as exc:
            LOGGER.warning("Upkeep check could not read price: %s", exc)
            return False, CheckContext(error=str(exc))
        eligible = tuple(self.conversion.triggered_users(price))
        return bool(eligible), CheckContext(price=price, eligible_users=eligible)

    def perform_action(self, context: CheckContext | bytes | None = None) -> PassReport:
        """Re-validate against a fresh price and run the conversion pass."""
        if isinstance(context, (bytes, bytearray)):
            context = CheckContext.from_bytes(bytes(context))
        if context is not None and context.price is not None:
            LOGGER.debug(
                "Performing upkeep checked at price %s for %s user(s).",
                context.price,
                len(context.eligible_users),
            )
        return self.conversion.perform_action()
