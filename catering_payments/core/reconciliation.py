"""
Pending-payment reconciliation.

Repairs orders left pending by a lost notification or by a payment-field
write that did not land:
- Finds gateway transactions whose orders have been pending too long
- Asks the gateway for each transaction's current status
- Feeds the answer through the webhook reconciler, so the same signature,
  prefix and no-downgrade rules apply
"""
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, List

import structlog

from catering_payments.config import Settings
from catering_payments.core.clock import Clock
from catering_payments.core.exceptions import GatewayError
from catering_payments.core.webhook import PaymentNotification, WebhookReconciler
from catering_payments.database.repository import OrderRepository
from catering_payments.integrations.midtrans_client import MidtransClient
from catering_payments.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


@dataclass
class ReconciliationReport:
    """Summary of one reconciliation run."""

    checked: int = 0
    applied: int = 0
    unknown: int = 0
    errors: int = 0
    orders_updated: int = 0
    failures: List[Dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "checked": self.checked,
            "applied": self.applied,
            "unknown": self.unknown,
            "errors": self.errors,
            "ordersUpdated": self.orders_updated,
            "failures": self.failures,
        }


class PendingPaymentReconciler:
    """
    Periodic repair of pending orders against the gateway.

    Safe to run concurrently with live notifications: every write goes
    through the same conditional status update.
    """

    def __init__(
        self,
        settings: Settings,
        gateway: MidtransClient,
        webhook_reconciler: WebhookReconciler,
        clock: Clock,
    ):
        self.gateway = gateway
        self.webhook_reconciler = webhook_reconciler
        self.clock = clock
        self.min_age = timedelta(minutes=settings.reconciliation_min_age_minutes)
        self.batch_size = settings.reconciliation_batch_size

    async def run_once(self, repository: OrderRepository) -> ReconciliationReport:
        """
        Check one batch of stale pending transactions.

        Returns:
            ReconciliationReport: Counts per outcome

        Raises:
            StoreError: The stale transactions could not be listed
        """
        cutoff = self.clock.now() - self.min_age
        transaction_ids = await repository.find_stale_pending_transactions(
            cutoff, self.batch_size
        )
        logger.info(
            "reconciliation_started",
            cutoff=cutoff.isoformat(),
            candidates=len(transaction_ids),
        )

        report = ReconciliationReport()
        for transaction_id in transaction_ids:
            report.checked += 1
            try:
                document = await self.gateway.get_transaction_status(transaction_id)
            except GatewayError as e:
                report.errors += 1
                report.failures.append({"transactionId": transaction_id, "error": e.message})
                metrics.record_reconciliation_check("error")
                logger.warning(
                    "reconciliation_status_lookup_failed",
                    transaction_id=transaction_id,
                    error=e.message,
                )
                continue

            if document is None:
                report.unknown += 1
                metrics.record_reconciliation_check("unknown")
                continue

            result = await self.webhook_reconciler.reconcile(
                repository, PaymentNotification.from_mapping(document)
            )
            if result.success:
                report.applied += 1
                report.orders_updated += result.updated_count or 0
                metrics.record_reconciliation_check("applied")
            else:
                report.errors += 1
                report.failures.append({"transactionId": transaction_id, "error": result.message})
                metrics.record_reconciliation_check("error")

        metrics.mark_reconciliation_run()
        logger.info("reconciliation_completed", **report.to_dict())
        return report
