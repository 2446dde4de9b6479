"""SQLAlchemy database models for the order store touched by payment processing."""
import uuid
from datetime import date, datetime
from typing import List, Optional

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _new_id() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class Recipient(Base):
    """Student receiving the catering order."""

    __tablename__ = "recipients"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    class_name: Mapped[Optional[str]] = mapped_column("class", String(100), nullable=True)


class MenuItem(Base):
    """Menu entry referenced by order lines."""

    __tablename__ = "menu_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    price: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class Order(Base):
    """
    Catering order.

    Payment fields (admin_fee, payment_method, transaction_id, snap_token,
    payment_url) are shared by every order of one bulk charge.
    """

    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    recipient_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("recipients.id"), nullable=True
    )
    guest_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    guest_phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending", index=True)
    total_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    admin_fee: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, default=0)
    payment_method: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    transaction_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    snap_token: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    payment_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    delivery_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=func.now(), onupdate=func.now()
    )

    recipient: Mapped[Optional[Recipient]] = relationship(lazy="raise")
    order_items: Mapped[List["OrderItem"]] = relationship(
        back_populates="order", lazy="raise", order_by="OrderItem.id"
    )

    __table_args__ = (
        CheckConstraint("total_amount >= 0", name="non_negative_total"),
        CheckConstraint(
            "status IN ('pending', 'paid', 'confirmed', 'failed', 'expired', 'cancelled')",
            name="valid_order_status",
        ),
        Index("idx_orders_status_updated", "status", "updated_at"),
    )

    def __repr__(self) -> str:
        """String representation of Order."""
        return (
            f"<Order(id={self.id}, status={self.status}, "
            f"total={self.total_amount}, transaction_id={self.transaction_id})>"
        )


class OrderItem(Base):
    """One line of an order."""

    __tablename__ = "order_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    order_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    menu_item_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("menu_items.id"), nullable=True
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[int] = mapped_column(Integer, nullable=False)
    subtotal: Mapped[int] = mapped_column(Integer, nullable=False)

    order: Mapped[Order] = relationship(back_populates="order_items", lazy="raise")
    menu_item: Mapped[Optional[MenuItem]] = relationship(lazy="raise")

    __table_args__ = (CheckConstraint("quantity > 0", name="positive_quantity"),)
