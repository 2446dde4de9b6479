"""
Payment session creation.

Orchestrates the create path:
1. Normalize the requested order ids
2. Load and validate the orders
3. Return the stored session when it can be reused
4. Quote the admin fee and payment method
5. Create the gateway transaction
6. Persist the handles onto the orders (conditional write)
"""
import time
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

import structlog

from catering_payments.config import Settings
from catering_payments.core.aggregator import OrderAggregator, OrderBatch
from catering_payments.core.clock import Clock
from catering_payments.core.exceptions import (
    BusinessRuleError,
    PaymentError,
    PaymentValidationError,
    StoreError,
)
from catering_payments.core.fees import FeePolicy, PaymentInfo
from catering_payments.core.reuse import ReuseResolver, can_reuse
from catering_payments.core.transaction_ids import TransactionIdFactory
from catering_payments.core.updater import OrderPaymentUpdater
from catering_payments.database.repository import OrderRepository
from catering_payments.integrations.auth import CallerContext
from catering_payments.integrations.midtrans_client import (
    MidtransClient,
    admin_fee_line,
    line_items_total,
)
from catering_payments.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CreatePaymentResult:
    """Gateway session handed back to the storefront."""

    snap_token: str
    redirect_url: str
    order_ids: List[str]
    reused: bool
    payment_info: PaymentInfo

    def to_response(self) -> Dict[str, Any]:
        return {
            "success": True,
            "snapToken": self.snap_token,
            "redirectUrl": self.redirect_url,
            "orderIds": self.order_ids,
            "reused": self.reused,
            "paymentInfo": self.payment_info.to_dict(),
        }


def normalize_order_ids(
    order_id: Optional[str] = None, order_ids: Optional[Iterable[str]] = None
) -> List[str]:
    """
    Resolve ``orderId``/``orderIds`` into a de-duplicated id list.

    ``orderIds`` wins when both are given and non-empty.

    Raises:
        PaymentValidationError: Neither field yields an id
    """
    candidates: List[str] = []
    if order_ids:
        candidates = [str(value).strip() for value in order_ids]
    elif order_id:
        candidates = [str(order_id).strip()]

    ids = [value for value in dict.fromkeys(candidates) if value]
    if not ids:
        raise PaymentValidationError("Order ID is required")
    return ids


class PaymentService:
    """
    Create-payment orchestrator.

    Stateless between calls: every request gets its own repository, and
    concurrency safety comes from the conditional write in the store.
    """

    def __init__(
        self,
        settings: Settings,
        gateway: MidtransClient,
        clock: Clock,
        id_factory: Optional[TransactionIdFactory] = None,
        policy: Optional[FeePolicy] = None,
    ):
        """
        Initialize payment service.

        Args:
            settings: Application settings
            gateway: Midtrans client
            clock: Time source for delivery checks and row timestamps
            id_factory: Optional transaction id factory
            policy: Optional fee policy (defaults to the configured constants)
        """
        self.settings = settings
        self.gateway = gateway
        self.clock = clock
        self.id_factory = id_factory or TransactionIdFactory(settings.transaction_prefix, clock)
        self.policy = policy or FeePolicy.from_settings(settings)
        self.resolver = ReuseResolver(self.policy)

        logger.info("payment_service_initialized", prefix=self.id_factory.prefix)

    async def create_payment(
        self,
        repository: OrderRepository,
        order_ids: List[str],
        caller: CallerContext,
        force_new: bool = False,
    ) -> CreatePaymentResult:
        """
        Create or reuse a gateway session for the given orders.

        Args:
            repository: Store access bound to this request
            order_ids: Non-empty list of order ids
            caller: Guest or authenticated caller
            force_new: Skip reuse of a stored session

        Returns:
            CreatePaymentResult: Token, redirect URL and amount breakdown

        Raises:
            PaymentValidationError: No ids supplied
            BusinessRuleError: Orders cannot be paid
            GatewayError: Gateway unavailable or rejected the transaction
            StoreError: Orders could not be loaded
        """
        start_time = time.time()
        structlog.contextvars.bind_contextvars(order_ids=list(order_ids))
        try:
            if not order_ids:
                raise PaymentValidationError("Order ID is required")

            batch = await OrderAggregator(repository, self.clock).load(order_ids, caller)

            reused = self.resolver.resolve(batch.orders, force_new=force_new)
            if reused is not None:
                result = CreatePaymentResult(
                    snap_token=reused.snap_token,
                    redirect_url=reused.redirect_url,
                    order_ids=batch.order_ids,
                    reused=True,
                    payment_info=reused.payment_info,
                )
                metrics.record_payment_session(
                    "reused", reused.payment_info.payment_method, time.time() - start_time
                )
                return result

            result = await self._create_new(repository, batch)
            metrics.record_payment_session(
                "reused" if result.reused else "created",
                result.payment_info.payment_method,
                time.time() - start_time,
            )
            return result

        except BusinessRuleError as e:
            metrics.record_payment_session("rejected", "none", time.time() - start_time)
            logger.info("payment_rejected", reason=e.message)
            raise
        except PaymentValidationError:
            metrics.record_payment_session("rejected", "none", time.time() - start_time)
            raise
        except PaymentError as e:
            metrics.record_payment_session("failed", "none", time.time() - start_time)
            logger.error("payment_creation_failed", error=e.message)
            raise
        finally:
            structlog.contextvars.unbind_contextvars("order_ids")

    async def _create_new(self, repository: OrderRepository, batch: OrderBatch) -> CreatePaymentResult:
        base_amount = batch.base_amount
        quote = self.policy.quote(base_amount)
        payment_info = PaymentInfo.from_quote(base_amount, quote)

        items = batch.line_items()
        if quote.fee > 0:
            items.append(admin_fee_line(quote.fee, quote.fee_label))
        if line_items_total(items) != payment_info.total_amount:
            logger.warning(
                "order_total_mismatch",
                gross_amount=payment_info.total_amount,
                items_total=line_items_total(items),
            )

        # Plain copies: a rolled-back write expires the loaded orders
        order_ids = batch.order_ids
        owner = None if batch.caller.is_guest else batch.caller.user_id
        customer = batch.customer(self.settings.customer_email)
        # Tokens as read before the gateway call; the write is conditional on them
        expected_tokens = {order.id: order.snap_token for order in batch.orders}
        transaction_id = self.id_factory.for_orders(order_ids)

        transaction = await self.gateway.create_transaction(
            transaction_id=transaction_id,
            gross_amount=payment_info.total_amount,
            items=items,
            customer=customer,
            payment_method=quote.method,
        )

        outcome = await OrderPaymentUpdater(repository, self.clock).apply(
            expected_tokens=expected_tokens,
            transaction_id=transaction_id,
            snap_token=transaction.token,
            redirect_url=transaction.redirect_url,
            payment_info=payment_info,
        )

        if outcome.conflict:
            winner = await self._reload_winner(repository, order_ids, owner)
            if winner is not None:
                logger.warning(
                    "payment_session_superseded",
                    orphaned_transaction_id=transaction_id,
                    winning_transaction_id=winner.transaction_id,
                )
                return CreatePaymentResult(
                    snap_token=winner.snap_token,
                    redirect_url=winner.redirect_url,
                    order_ids=order_ids,
                    reused=True,
                    payment_info=winner.payment_info,
                )

        logger.info(
            "payment_created",
            transaction_id=transaction_id,
            payment_method=payment_info.payment_method,
            base_amount=payment_info.base_amount,
            admin_fee=payment_info.admin_fee,
            total_amount=payment_info.total_amount,
            persisted=outcome.written,
        )
        return CreatePaymentResult(
            snap_token=transaction.token,
            redirect_url=transaction.redirect_url,
            order_ids=order_ids,
            reused=False,
            payment_info=payment_info,
        )

    async def _reload_winner(
        self, repository: OrderRepository, order_ids: List[str], owner: Optional[str]
    ):
        try:
            orders = await repository.fetch_orders(order_ids, owner_user_id=owner)
        except StoreError as e:
            logger.warning("payment_conflict_reload_failed", error=e.message)
            return None

        if len(orders) != len(order_ids) or not can_reuse(orders):
            return None
        return self.resolver.resolve(orders)
