"""
Payment notification reconciliation.

Applies a gateway status notification to the orders it covers:
1. Verify the SHA-512 signature
2. Ignore transactions outside our prefix
3. Map the gateway status to an order status
4. Resolve targets (one order, or every order of a bulk transaction)
5. Update every target whose current status allows the transition

Step 5 is a single conditional UPDATE, so replaying a notification
converges to the same state and a settled order is never downgraded.
"""
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

import structlog

from catering_payments.core.clock import Clock
from catering_payments.core.exceptions import StoreError
from catering_payments.core.status import OrderStatus, blocked_sources, map_gateway_status
from catering_payments.core.transaction_ids import TransactionIdFactory, TransactionKind
from catering_payments.database.repository import OrderRepository
from catering_payments.integrations.signature import redact, verify_signature
from catering_payments.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


def _text(value: Any) -> str:
    return "" if value is None else str(value)


@dataclass(frozen=True)
class PaymentNotification:
    """Status document pushed by the gateway (or fetched from its status API)."""

    order_id: str
    status_code: str
    gross_amount: str
    signature_key: str
    transaction_status: str
    fraud_status: Optional[str] = None
    transaction_id: Optional[str] = None
    payment_type: Optional[str] = None
    transaction_time: Optional[str] = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "PaymentNotification":
        return cls(
            order_id=_text(data.get("order_id")),
            status_code=_text(data.get("status_code")),
            gross_amount=_text(data.get("gross_amount")),
            signature_key=_text(data.get("signature_key")),
            transaction_status=_text(data.get("transaction_status")),
            fraud_status=data.get("fraud_status"),
            transaction_id=data.get("transaction_id"),
            payment_type=data.get("payment_type"),
            transaction_time=data.get("transaction_time"),
        )


@dataclass(frozen=True)
class WebhookResult:
    success: bool
    message: str
    order_id: Optional[str] = None
    status: Optional[str] = None
    updated_count: Optional[int] = None

    def to_response(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"success": self.success, "message": self.message}
        if self.order_id is not None:
            body["orderId"] = self.order_id
        if self.status is not None:
            body["status"] = self.status
        if self.updated_count is not None:
            body["updatedCount"] = self.updated_count
        return body


class WebhookReconciler:
    """
    Applies payment notifications to orders.

    Never raises: every outcome is a WebhookResult, because the gateway
    retries any non-2xx answer indefinitely.
    """

    def __init__(self, server_key: str, id_factory: TransactionIdFactory, clock: Clock):
        self.server_key = server_key
        self.id_factory = id_factory
        self.clock = clock

    async def reconcile(
        self, repository: OrderRepository, notification: PaymentNotification
    ) -> WebhookResult:
        """
        Verify and apply one notification.

        Args:
            repository: Store access bound to this request
            notification: Parsed notification body

        Returns:
            WebhookResult: ``success`` is False for rejected notifications
            and store failures, True otherwise (including zero matches)
        """
        start_time = time.time()
        log = logger.bind(
            transaction_id=notification.order_id,
            transaction_status=notification.transaction_status,
        )

        if not verify_signature(
            notification.order_id,
            notification.status_code,
            notification.gross_amount,
            notification.signature_key,
            self.server_key,
        ):
            log.warning(
                "webhook_signature_invalid",
                signature=redact(notification.signature_key),
            )
            metrics.record_webhook("invalid_signature", time.time() - start_time)
            return WebhookResult(success=False, message="Invalid signature")

        ref = self.id_factory.parse(notification.order_id)
        if ref.kind is TransactionKind.FOREIGN:
            log.info("webhook_foreign_transaction_ignored")
            metrics.record_webhook("foreign", time.time() - start_time)
            return WebhookResult(
                success=False,
                message="Ignored: transaction does not belong to this merchant",
                order_id=notification.order_id,
            )
        if ref.kind is TransactionKind.MALFORMED:
            log.warning("webhook_malformed_transaction_id")
            metrics.record_webhook("malformed", time.time() - start_time)
            return WebhookResult(
                success=False,
                message="Invalid order id format",
                order_id=notification.order_id,
            )

        status = map_gateway_status(notification.transaction_status, notification.fraud_status)

        try:
            updated, matched = await self._apply(repository, ref.kind, ref.raw, ref.order_id, status)
        except StoreError as e:
            log.error("webhook_update_failed", error=e.message)
            await self._safe_rollback(repository)
            metrics.record_webhook("error", time.time() - start_time)
            return WebhookResult(
                success=False,
                message="Failed to update order status",
                order_id=notification.order_id,
                status=status.value,
            )

        metrics.record_orders_updated(status.value, updated)
        metrics.record_webhook("applied", time.time() - start_time)
        log.info(
            "webhook_applied",
            kind=ref.kind.value,
            status=status.value,
            matched=matched,
            updated_count=updated,
            skipped=matched - updated,
            payment_type=notification.payment_type,
        )

        message = f"Updated {updated} order(s)" if updated else "No orders updated"
        return WebhookResult(
            success=True,
            message=message,
            order_id=notification.order_id,
            status=status.value,
            updated_count=updated,
        )

    async def _apply(
        self,
        repository: OrderRepository,
        kind: TransactionKind,
        transaction_id: str,
        order_id: Optional[str],
        status: OrderStatus,
    ) -> tuple:
        if kind is TransactionKind.BULK:
            rows = await repository.fetch_statuses_by_transaction(transaction_id)
        else:
            rows = await repository.fetch_statuses([order_id])

        target_ids: List[str] = [row_id for row_id, _ in rows]
        if not target_ids:
            logger.info("webhook_no_matching_orders", transaction_id=transaction_id)
            return 0, 0

        updated = await repository.update_status(
            target_ids,
            status.value,
            blocked_statuses=[blocked.value for blocked in blocked_sources(status)],
            updated_at=self.clock.now(),
        )
        await repository.commit()
        return updated, len(target_ids)

    @staticmethod
    async def _safe_rollback(repository: OrderRepository) -> None:
        try:
            await repository.rollback()
        except StoreError as e:
            logger.warning("webhook_rollback_failed", error=e.message)
