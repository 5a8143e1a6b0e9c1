"""
Payment event counters for /stats.

Two operations feed this: creating a payment intent at the provider and
verifying a payment callback. Each call ends in one outcome. Provider
failures and signature failures are counted apart, since the first means the
gateway is struggling and the second means someone sent a forged callback.
"""
import logging
import time
from collections import Counter, deque
from dataclasses import dataclass
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)

CREATE_INTENT = "create_intent"
VERIFY = "verify"

RECENT_PROBLEMS = 10


class Outcome(str, Enum):
    OK = "ok"
    PROVIDER_ERROR = "provider_error"
    SIGNATURE_INVALID = "signature_invalid"
    REJECTED = "rejected"  # bad input, unknown or cancelled order


@dataclass(frozen=True)
class PaymentEvent:
    at: float
    operation: str
    outcome: Outcome
    latency_ms: Optional[int] = None
    detail: Optional[str] = None


class PaymentStats:
    """Counts payment outcomes per operation, keeping a window of recent events."""

    def __init__(self, window: int = 500):
        self._recent: deque[PaymentEvent] = deque(maxlen=window)
        self._counts: Counter[tuple[str, Outcome]] = Counter()

    def record(
        self,
        operation: str,
        outcome: Outcome,
        latency_ms: Optional[int] = None,
        detail: Optional[str] = None,
    ) -> None:
        self._recent.append(PaymentEvent(time.time(), operation, outcome, latency_ms, detail))
        self._counts[(operation, outcome)] += 1

        if outcome is not Outcome.OK:
            logger.debug("%s ended %s: %s", operation, outcome.value, detail)

    def count(self, operation: Optional[str] = None, outcome: Optional[Outcome] = None) -> int:
        return sum(
            n for (op, out), n in self._counts.items()
            if (operation is None or op == operation) and (outcome is None or out == outcome)
        )

    def _latency(self, operation: str) -> dict:
        timed = [e.latency_ms for e in self._recent if e.operation == operation and e.latency_ms is not None]
        if not timed:
            return {"avg_ms": None, "max_ms": None}
        return {"avg_ms": round(sum(timed) / len(timed)), "max_ms": max(timed)}

    def get_summary(self) -> dict:
        operations = {}
        for operation in sorted({op for op, _ in self._counts}):
            calls = self.count(operation=operation)
            ok = self.count(operation=operation, outcome=Outcome.OK)
            operations[operation] = {
                "calls": calls,
                "outcomes": {o.value: self.count(operation, o) for o in Outcome},
                "success_rate": round(ok / calls * 100, 2),
                "latency": self._latency(operation),
            }

        problems = [e for e in reversed(self._recent) if e.outcome is not Outcome.OK]
        return {
            "operations": operations,
            "provider_failures": self.count(outcome=Outcome.PROVIDER_ERROR),
            "signature_failures": self.count(outcome=Outcome.SIGNATURE_INVALID),
            "recent_problems": [
                {"at": e.at, "operation": e.operation, "outcome": e.outcome.value, "detail": e.detail}
                for e in problems[:RECENT_PROBLEMS]
            ],
        }


_payment_stats: Optional[PaymentStats] = None


def get_payment_stats() -> PaymentStats:
    """Process-wide tracker behind /stats."""
    global _payment_stats
    if _payment_stats is None:
        _payment_stats = PaymentStats()
    return _payment_stats
