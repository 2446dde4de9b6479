"""Background workers."""
from .reconciliation_worker import start_reconciliation_worker

__all__ = ["start_reconciliation_worker"]
