"""
Gateway transaction id formats.

Single order:  ``<PREFIX>-<order uuid>``
Bulk charge:   ``<PREFIX>-BULK-<disambiguator>-<order count>``

The disambiguator is a millisecond timestamp that never repeats within a
process; the order count makes cross-process collisions require both the
same millisecond and the same basket size.
"""
import re
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from catering_payments.core.clock import Clock

UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)
BULK_MARKER = "BULK"


class TransactionKind(Enum):
    SINGLE = "single"
    BULK = "bulk"
    FOREIGN = "foreign"
    MALFORMED = "malformed"


@dataclass(frozen=True)
class TransactionRef:
    """A parsed gateway transaction id."""

    raw: str
    kind: TransactionKind
    order_id: Optional[str] = None


class TransactionIdFactory:
    """Issues and parses transaction ids under one reserved prefix."""

    def __init__(self, prefix: str, clock: Clock):
        self.prefix = prefix
        self.clock = clock
        self._lock = threading.Lock()
        self._last_disambiguator = 0

    @property
    def bulk_prefix(self) -> str:
        return f"{self.prefix}-{BULK_MARKER}-"

    def for_single(self, order_id: str) -> str:
        return f"{self.prefix}-{order_id}"

    def for_bulk(self, order_count: int) -> str:
        if order_count < 2:
            raise ValueError("Bulk transactions cover at least two orders")
        return f"{self.bulk_prefix}{self._next_disambiguator()}-{order_count}"

    def for_orders(self, order_ids: list) -> str:
        if len(order_ids) == 1:
            return self.for_single(order_ids[0])
        return self.for_bulk(len(order_ids))

    def _next_disambiguator(self) -> int:
        candidate = int(self.clock.now().timestamp() * 1000)
        with self._lock:
            if candidate <= self._last_disambiguator:
                candidate = self._last_disambiguator + 1
            self._last_disambiguator = candidate
        return candidate

    def parse(self, transaction_id: str) -> TransactionRef:
        """Classify a transaction id reported by the gateway."""
        own_prefix = f"{self.prefix}-"
        if not transaction_id or not transaction_id.startswith(own_prefix):
            return TransactionRef(raw=transaction_id, kind=TransactionKind.FOREIGN)

        if transaction_id.startswith(self.bulk_prefix):
            return TransactionRef(raw=transaction_id, kind=TransactionKind.BULK)

        candidate = transaction_id[len(own_prefix):]
        if UUID_PATTERN.match(candidate):
            return TransactionRef(
                raw=transaction_id, kind=TransactionKind.SINGLE, order_id=candidate.lower()
            )
        return TransactionRef(raw=transaction_id, kind=TransactionKind.MALFORMED)
