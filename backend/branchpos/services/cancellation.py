# Overview: Caller-supplied deadline / cancellation signal for engine transactions.

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field

from ..errors import TransactionCancelled


@dataclass
class CancellationToken:
    """
    Deadline and/or event a caller hands to execute().

    deadline is a time.monotonic() timestamp. The engine calls check()
    between steps and right before commit; once committed, cancellation is
    no longer observed.
    """
    deadline: float | None = None
    event: threading.Event = field(default_factory=threading.Event)

    @classmethod
    def with_timeout(cls, seconds: float) -> "CancellationToken":
        return cls(deadline=time.monotonic() + seconds)

    def cancel(self) -> None:
        self.event.set()

    @property
    def cancelled(self) -> bool:
        if self.event.is_set():
            return True
        return self.deadline is not None and time.monotonic() >= self.deadline

    def check(self, stage: str) -> None:
        if self.event.is_set():
            raise TransactionCancelled(
                f"Cancelled before {stage}", details={"stage": stage, "reason": "cancelled"}
            )
        if self.deadline is not None and time.monotonic() >= self.deadline:
            raise TransactionCancelled(
                f"Deadline exceeded before {stage}", details={"stage": stage, "reason": "deadline"}
            )
