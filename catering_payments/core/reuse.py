"""
Reuse of in-flight gateway sessions.

A customer re-opening an unfinished checkout gets the handle already issued
for those orders instead of a second gateway transaction.
"""
from dataclasses import dataclass
from typing import Optional, Sequence

import structlog

from catering_payments.core.fees import FeePolicy, PaymentInfo
from catering_payments.core.status import OrderStatus
from catering_payments.database.models import Order

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ReusedSession:
    snap_token: str
    redirect_url: str
    transaction_id: Optional[str]
    payment_info: PaymentInfo


def can_reuse(orders: Sequence[Order]) -> bool:
    """
    Return True if the stored handle on ``orders`` is still usable.

    The first order must hold a token and be pending. With several orders,
    every one must share that token and transaction id and be pending too.
    """
    if not orders:
        return False

    first = orders[0]
    if not first.snap_token or first.status != OrderStatus.PENDING.value:
        return False

    return all(
        order.snap_token == first.snap_token
        and order.transaction_id == first.transaction_id
        and order.status == OrderStatus.PENDING.value
        for order in orders[1:]
    )


class ReuseResolver:
    """Builds the reuse answer from what is stored on the orders."""

    def __init__(self, policy: FeePolicy):
        self.policy = policy

    def stored_payment_info(self, orders: Sequence[Order]) -> PaymentInfo:
        """
        Payment summary from the stored fee and method.

        Rows written before fees were stored carry no fee or method; those
        fall back to the current policy.
        """
        base_amount = sum(order.total_amount for order in orders)
        first = orders[0]
        if not first.admin_fee or first.payment_method is None:
            logger.info(
                "stored_fee_missing",
                order_id=first.id,
                admin_fee=first.admin_fee,
                payment_method=first.payment_method,
            )
            return PaymentInfo.from_quote(base_amount, self.policy.quote(base_amount))

        return PaymentInfo(
            base_amount=base_amount,
            admin_fee=first.admin_fee,
            payment_method=first.payment_method,
            fee_type=self.policy.label_for_method(first.payment_method),
        )

    def resolve(self, orders: Sequence[Order], force_new: bool = False) -> Optional[ReusedSession]:
        """
        Return the existing session for ``orders`` or None if a new one is needed.

        Args:
            orders: Loaded orders, first one as requested
            force_new: Skip reuse even when eligible
        """
        if force_new:
            logger.info("reuse_bypassed", order_ids=[o.id for o in orders])
            return None
        if not can_reuse(orders):
            return None

        first = orders[0]
        logger.info(
            "reusing_snap_token",
            order_ids=[o.id for o in orders],
            transaction_id=first.transaction_id,
        )
        return ReusedSession(
            snap_token=first.snap_token,
            redirect_url=first.payment_url or "",
            transaction_id=first.transaction_id,
            payment_info=self.stored_payment_info(orders),
        )
