"""Database package for catering payments."""
from .connection import close_db, create_engine, create_session_factory, get_db, init_db
from .models import Base, MenuItem, Order, OrderItem, Recipient
from .repository import OrderRepository

__all__ = [
    "Base",
    "MenuItem",
    "Order",
    "OrderItem",
    "OrderRepository",
    "Recipient",
    "close_db",
    "create_engine",
    "create_session_factory",
    "get_db",
    "init_db",
]
