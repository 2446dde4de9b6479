"""
Order status model, gateway status mapping and the transition table.

State machine (as driven by this subsystem):

    pending ──► paid
       │  ╲
       │   ╲──► expired
       ▼
     failed

paid and confirmed are terminal: only a repeated "paid" may touch a paid
order, and nothing the gateway reports may touch a confirmed one.
"""
from enum import Enum
from typing import FrozenSet, Optional

import structlog

logger = structlog.get_logger(__name__)


class OrderStatus(str, Enum):
    """Order status values as stored in ``orders.status``."""

    PENDING = "pending"
    PAID = "paid"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class GatewayTransactionStatus(str, Enum):
    """``transaction_status`` values reported by the gateway."""

    CAPTURE = "capture"
    SETTLEMENT = "settlement"
    PENDING = "pending"
    AUTHORIZE = "authorize"
    DENY = "deny"
    CANCEL = "cancel"
    EXPIRE = "expire"
    REFUND = "refund"
    PARTIAL_REFUND = "partial_refund"


class FraudStatus(str, Enum):
    """``fraud_status`` values reported by the gateway."""

    ACCEPT = "accept"
    CHALLENGE = "challenge"
    DENY = "deny"


SETTLED_STATUSES: FrozenSet[OrderStatus] = frozenset(
    {OrderStatus.PAID, OrderStatus.CONFIRMED}
)

_DIRECT_MAPPING = {
    GatewayTransactionStatus.SETTLEMENT: OrderStatus.PAID,
    GatewayTransactionStatus.PENDING: OrderStatus.PENDING,
    GatewayTransactionStatus.AUTHORIZE: OrderStatus.PENDING,
    GatewayTransactionStatus.EXPIRE: OrderStatus.EXPIRED,
    GatewayTransactionStatus.DENY: OrderStatus.FAILED,
    GatewayTransactionStatus.CANCEL: OrderStatus.FAILED,
    GatewayTransactionStatus.REFUND: OrderStatus.FAILED,
    GatewayTransactionStatus.PARTIAL_REFUND: OrderStatus.FAILED,
}

# current status -> incoming statuses that may overwrite it
_ALLOWED_TRANSITIONS = {
    OrderStatus.PENDING: frozenset(OrderStatus),
    OrderStatus.FAILED: frozenset(OrderStatus),
    OrderStatus.EXPIRED: frozenset(OrderStatus),
    OrderStatus.CANCELLED: frozenset(OrderStatus),
    OrderStatus.PAID: frozenset({OrderStatus.PAID}),
    OrderStatus.CONFIRMED: frozenset(),
}


def map_gateway_status(
    transaction_status: Optional[str], fraud_status: Optional[str] = None
) -> OrderStatus:
    """
    Map a gateway ``transaction_status``/``fraud_status`` pair to an order status.

    Unrecognized values map to ``pending`` and are logged.
    """
    try:
        status = GatewayTransactionStatus((transaction_status or "").lower())
    except ValueError:
        logger.warning("unknown_transaction_status", transaction_status=transaction_status)
        return OrderStatus.PENDING

    if status is GatewayTransactionStatus.CAPTURE:
        fraud = (fraud_status or "").lower()
        if fraud == FraudStatus.ACCEPT.value:
            return OrderStatus.PAID
        if fraud == FraudStatus.CHALLENGE.value:
            return OrderStatus.PENDING
        return OrderStatus.FAILED

    return _DIRECT_MAPPING[status]


def can_transition(current: OrderStatus, incoming: OrderStatus) -> bool:
    """Return True if an order in ``current`` may be set to ``incoming``."""
    return incoming in _ALLOWED_TRANSITIONS[current]


def blocked_sources(incoming: OrderStatus) -> FrozenSet[OrderStatus]:
    """Current statuses that ``incoming`` must not overwrite."""
    return frozenset(
        current for current in OrderStatus if not can_transition(current, incoming)
    )


def is_settled(status: OrderStatus) -> bool:
    """Paid or confirmed orders can no longer be charged."""
    return status in SETTLED_STATUSES
