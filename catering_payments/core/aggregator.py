"""
Order aggregation for one payment request.

Loads every requested order in one fetch, rejects batches that cannot be
paid, and derives the combined base amount, gateway line items and
customer contact details.
"""
from dataclasses import dataclass
from typing import List, Sequence

import structlog

from catering_payments.core.clock import Clock
from catering_payments.core.exceptions import (
    AlreadyPaidError,
    DeliveryWindowExpiredError,
    GuestScopeViolationError,
    OrderNotFoundError,
)
from catering_payments.core.status import OrderStatus, is_settled
from catering_payments.database.models import Order
from catering_payments.database.repository import OrderRepository
from catering_payments.integrations.auth import CallerContext
from catering_payments.integrations.midtrans_client import CustomerDetails, LineItem

logger = structlog.get_logger(__name__)


@dataclass
class OrderBatch:
    """Orders charged together, with everything derived from them."""

    orders: List[Order]
    caller: CallerContext

    @property
    def order_ids(self) -> List[str]:
        return [order.id for order in self.orders]

    @property
    def base_amount(self) -> int:
        return sum(order.total_amount for order in self.orders)

    @property
    def first(self) -> Order:
        return self.orders[0]

    def line_items(self) -> List[LineItem]:
        """Gateway line items for every order line, admin fee excluded."""
        items: List[LineItem] = []
        for order in self.orders:
            for item in order.order_items:
                menu_name = item.menu_item.name if item.menu_item is not None else None
                items.append(
                    LineItem(
                        id=item.menu_item_id or f"item-{item.id}",
                        price=int(round(item.unit_price)),
                        quantity=item.quantity,
                        name=menu_name or "Menu Item",
                    )
                )
        return items

    def customer(self, email: str) -> CustomerDetails:
        first = self.first
        if self.caller.is_guest:
            return CustomerDetails(
                first_name=first.guest_name or "Guest",
                phone=first.guest_phone or "",
                email=email,
            )
        name = first.recipient.name if first.recipient is not None else None
        return CustomerDetails(first_name=name or "Customer", phone="", email=email)


class OrderAggregator:
    """Loads and validates the orders of one payment request."""

    def __init__(self, repository: OrderRepository, clock: Clock):
        self.repository = repository
        self.clock = clock

    async def load(self, order_ids: Sequence[str], caller: CallerContext) -> OrderBatch:
        """
        Load the orders and check they can be paid right now.

        Args:
            order_ids: Non-empty list of order ids
            caller: Guest or authenticated caller

        Returns:
            OrderBatch: Validated orders in request order

        Raises:
            OrderNotFoundError: No order matched
            AlreadyPaidError: An order is paid or confirmed
            DeliveryWindowExpiredError: A delivery date is before today
            GuestScopeViolationError: Guest caller touching an account-bound order
        """
        owner = None if caller.is_guest else caller.user_id
        orders = await self.repository.fetch_orders(order_ids, owner_user_id=owner)
        if not orders:
            logger.info("orders_not_found", order_ids=list(order_ids))
            raise OrderNotFoundError()

        if len(orders) != len(set(order_ids)):
            logger.warning(
                "orders_partially_found",
                requested=len(set(order_ids)),
                found=len(orders),
            )

        self.validate(orders, caller)
        return OrderBatch(orders=orders, caller=caller)

    def validate(self, orders: Sequence[Order], caller: CallerContext) -> None:
        today = self.clock.today()
        for order in orders:
            if order.delivery_date is not None and order.delivery_date < today:
                logger.info(
                    "delivery_window_expired",
                    order_id=order.id,
                    delivery_date=order.delivery_date.isoformat(),
                )
                raise DeliveryWindowExpiredError()

        if caller.is_guest and any(order.user_id is not None for order in orders):
            logger.warning("guest_scope_violation", order_ids=[o.id for o in orders])
            raise GuestScopeViolationError()

        if any(is_settled(OrderStatus(order.status)) for order in orders):
            logger.info("orders_already_paid", order_ids=[o.id for o in orders])
            raise AlreadyPaidError()
