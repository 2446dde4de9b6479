"""
Order store access for the payment paths.

Every round trip is bounded by ``store_timeout_seconds`` and every
SQLAlchemy failure is translated into ``StoreError`` here, so nothing
above this module handles driver exceptions.
"""
import asyncio
from datetime import datetime
from typing import Any, Awaitable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, TypeVar

import structlog
from sqlalchemy import and_, or_, select, text, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from catering_payments.core.exceptions import StoreError
from catering_payments.database.models import Order, OrderItem

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class OrderRepository:
    """Reads and conditional writes against the ``orders`` table."""

    def __init__(self, session: AsyncSession, timeout_seconds: float = 10.0):
        self.session = session
        self.timeout_seconds = timeout_seconds

    async def _run(self, operation: str, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.error("store_timeout", operation=operation, timeout=self.timeout_seconds)
            raise StoreError(f"Store operation '{operation}' timed out")
        except SQLAlchemyError as e:
            logger.error("store_error", operation=operation, error=str(e))
            raise StoreError(f"Store operation '{operation}' failed: {e}")

    async def fetch_orders(
        self, order_ids: Sequence[str], owner_user_id: Optional[str] = None
    ) -> List[Order]:
        """
        Load orders with their line items, menu names and recipient.

        Args:
            order_ids: Ids to load
            owner_user_id: When set, only orders owned by this user are visible

        Returns:
            List[Order]: Matching orders in the order the ids were given
        """
        stmt = (
            select(Order)
            .where(Order.id.in_(list(order_ids)))
            .options(
                selectinload(Order.order_items).selectinload(OrderItem.menu_item),
                selectinload(Order.recipient),
            )
            .execution_options(populate_existing=True)
        )
        if owner_user_id is not None:
            stmt = stmt.where(Order.user_id == owner_user_id)

        result = await self._run("fetch_orders", self.session.execute(stmt))
        by_id = {order.id: order for order in result.scalars().all()}
        return [by_id[order_id] for order_id in dict.fromkeys(order_ids) if order_id in by_id]

    async def fetch_statuses(self, order_ids: Iterable[str]) -> List[Tuple[str, str]]:
        """Return ``(id, status)`` pairs for the given ids."""
        stmt = select(Order.id, Order.status).where(Order.id.in_(list(order_ids)))
        result = await self._run("fetch_statuses", self.session.execute(stmt))
        return [(row.id, row.status) for row in result.all()]

    async def fetch_statuses_by_transaction(self, transaction_id: str) -> List[Tuple[str, str]]:
        """Return ``(id, status)`` pairs for every order of one gateway transaction."""
        stmt = select(Order.id, Order.status).where(Order.transaction_id == transaction_id)
        result = await self._run("fetch_statuses_by_transaction", self.session.execute(stmt))
        return [(row.id, row.status) for row in result.all()]

    async def update_payment_fields(
        self,
        expected_tokens: Mapping[str, Optional[str]],
        values: Dict[str, Any],
    ) -> int:
        """
        Write payment fields onto orders whose ``snap_token`` is unchanged.

        Args:
            expected_tokens: order id -> snap_token read before the gateway call
            values: Column values to set

        Returns:
            int: Number of rows written
        """
        by_token: Dict[Optional[str], List[str]] = {}
        for order_id, token in expected_tokens.items():
            by_token.setdefault(token, []).append(order_id)

        conditions = []
        for token, ids in by_token.items():
            token_clause = Order.snap_token.is_(None) if token is None else Order.snap_token == token
            conditions.append(and_(Order.id.in_(ids), token_clause))

        stmt = (
            update(Order)
            .where(or_(*conditions))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self._run("update_payment_fields", self.session.execute(stmt))
        return result.rowcount

    async def update_status(
        self,
        order_ids: Sequence[str],
        status: str,
        blocked_statuses: Iterable[str],
        updated_at: datetime,
    ) -> int:
        """
        Set ``status`` on the given orders unless they sit in a blocked status.

        The blocked-status filter is part of the UPDATE itself, so a row
        settled concurrently is never overwritten.

        Returns:
            int: Number of rows updated
        """
        if not order_ids:
            return 0
        blocked = list(blocked_statuses)
        stmt = update(Order).where(Order.id.in_(list(order_ids)))
        if blocked:
            stmt = stmt.where(Order.status.not_in(blocked))
        stmt = stmt.values(status=status, updated_at=updated_at).execution_options(
            synchronize_session=False
        )
        result = await self._run("update_status", self.session.execute(stmt))
        return result.rowcount

    async def find_stale_pending_transactions(self, cutoff: datetime, limit: int) -> List[str]:
        """Distinct transaction ids of pending orders untouched since ``cutoff``."""
        stmt = (
            select(Order.transaction_id)
            .where(
                Order.status == "pending",
                Order.transaction_id.is_not(None),
                Order.updated_at < cutoff,
            )
            .group_by(Order.transaction_id)
            .order_by(Order.transaction_id)
            .limit(limit)
        )
        result = await self._run("find_stale_pending_transactions", self.session.execute(stmt))
        return [row[0] for row in result.all()]

    async def ping(self) -> None:
        result = await self._run("ping", self.session.execute(text("SELECT 1")))
        result.scalar()

    async def commit(self) -> None:
        await self._run("commit", self.session.commit())

    async def rollback(self) -> None:
        await self._run("rollback", self.session.rollback())
