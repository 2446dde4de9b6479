"""
Persistence of gateway handles onto the orders of one charge.

The write only lands on rows whose ``snap_token`` is still the value read
before the gateway call. When another request got there first the whole
write is rolled back and reported as a conflict.
"""
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence

import structlog

from catering_payments.core.clock import Clock
from catering_payments.core.exceptions import StoreError
from catering_payments.core.fees import PaymentInfo
from catering_payments.database.repository import OrderRepository
from catering_payments.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class UpdateOutcome:
    written: bool
    conflict: bool = False
    error: Optional[str] = None


class OrderPaymentUpdater:
    """Writes transaction id, token, URL, fee and method onto every order of a charge."""

    def __init__(self, repository: OrderRepository, clock: Clock):
        self.repository = repository
        self.clock = clock

    async def apply(
        self,
        expected_tokens: Mapping[str, Optional[str]],
        transaction_id: str,
        snap_token: str,
        redirect_url: str,
        payment_info: PaymentInfo,
    ) -> UpdateOutcome:
        """
        Persist the gateway handles.

        Args:
            expected_tokens: order id -> snap_token as read before the gateway call
            transaction_id: Gateway transaction id shared by the orders
            snap_token: Token returned by the gateway
            redirect_url: Redirect URL returned by the gateway
            payment_info: Fee and method charged

        Returns:
            UpdateOutcome: Never raises for store failures; the token already
            handed out stays usable and a later notification repairs the rows
        """
        order_ids: Sequence[str] = list(expected_tokens)
        values = {
            "transaction_id": transaction_id,
            "snap_token": snap_token,
            "payment_url": redirect_url,
            "admin_fee": payment_info.admin_fee,
            "payment_method": payment_info.payment_method,
            "updated_at": self.clock.now(),
        }

        try:
            written = await self.repository.update_payment_fields(expected_tokens, values)
            if written != len(order_ids):
                await self.repository.rollback()
                metrics.record_payment_update_failure("conflict")
                logger.warning(
                    "payment_update_conflict",
                    transaction_id=transaction_id,
                    order_ids=list(order_ids),
                    expected=len(order_ids),
                    written=written,
                )
                return UpdateOutcome(written=False, conflict=True)

            await self.repository.commit()
        except StoreError as e:
            metrics.record_payment_update_failure("store_error")
            logger.warning(
                "payment_update_failed",
                transaction_id=transaction_id,
                order_ids=list(order_ids),
                error=e.message,
            )
            await self._safe_rollback()
            return UpdateOutcome(written=False, error=e.message)

        logger.info(
            "payment_fields_written",
            transaction_id=transaction_id,
            order_ids=list(order_ids),
            payment_method=payment_info.payment_method,
            admin_fee=payment_info.admin_fee,
        )
        return UpdateOutcome(written=True)

    async def _safe_rollback(self) -> None:
        try:
            await self.repository.rollback()
        except StoreError as e:
            logger.warning("payment_update_rollback_failed", error=e.message)
