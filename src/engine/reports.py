"""Outcome records for batch passes over the watchlist."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class PassReport:
    operation: str
    processed: int = 0
    accrued: dict[str, int] = field(default_factory=dict)
    converted: dict[str, int] = field(default_factory=dict)
    failures: dict[str, str] = field(default_factory=dict)
    error: str | None = None
    price: int | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and not self.failures

    @property
    def is_noop(self) -> bool:
        """True when the pass found nothing to do and nothing failed."""
        return self.ok and not self.accrued and not self.converted

    def record_failure(self, user: str, exc: BaseException) -> None:
        self.failures[user] = str(exc)

    def to_payload(self) -> dict[str, Any]:
        return {
            "operation": self.operation,
            "processed": self.processed,
            "accrued": dict(self.accrued),
            "converted": dict(self.converted),
            "failures": dict(self.failures),
            "error": self.error,
            "price": self.price,
            "ok": self.ok,
            "noop": self.is_noop,
        }
