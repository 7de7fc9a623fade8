"""Persistent state for the staking monitor."""

from __future__ import annotations

import fcntl
import json
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterator

from engine.ledger import UserLedger


@dataclass
class EngineState:
    is_running: bool = False
    last_error: str | None = None
    last_accrual_at: float | None = None
    last_report: dict[str, Any] | None = None
    ledger: UserLedger = field(default_factory=UserLedger)

    def mark_running(self) -> None:
        self.is_running = True
        self.last_error = None

    def mark_error(self, message: str) -> None:
        self.is_running = False
        self.last_error = message

    def to_payload(self) -> dict[str, Any]:
        return {
            "is_running": self.is_running,
            "last_error": self.last_error,
            "last_accrual_at": self.last_accrual_at,
            "last_report": self.last_report,
            "ledger": self.ledger.to_payload(),
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "EngineState":
        return cls(
            is_running=payload.get("is_running", False),
            last_error=payload.get("last_error"),
            last_accrual_at=payload.get("last_accrual_at"),
            last_report=payload.get("last_report"),
            ledger=UserLedger.from_payload(payload.get("ledger", {})),
        )

    def save(self, path: str | Path) -> None:
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        payload = self.to_payload()
        tmp_path = target.with_suffix(target.suffix + ".tmp")
        tmp_path.write_text(
            json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8"
        )
        tmp_path.replace(target)

    @classmethod
    def load(cls, path: str | Path, *, price_decimals: int | None = None) -> "EngineState":
        target = Path(path)
        if not target.exists():
            if price_decimals is None:
                return cls()
            return cls(ledger=UserLedger(price_decimals=price_decimals))
        payload = json.loads(target.read_text(encoding="utf-8"))
        return cls.from_payload(payload)


@contextmanager
def state_lock(path: str | Path) -> Iterator[None]:
    """
    Hold an exclusive lock on ``<path>.lock`` for a load-modify-save cycle.

    The keeper loop and CLI commands share one state file; each takes this
    lock before reading the ledger and releases it after saving.
    """
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    lock_path = target.with_suffix(target.suffix + ".lock")
    with open(lock_path, "a+", encoding="utf-8") as handle:
        fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
