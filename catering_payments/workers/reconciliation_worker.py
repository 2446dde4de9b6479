"""
Pending-payment reconciliation worker.

Every ``reconciliation_interval_seconds`` it checks stale pending
transactions against Midtrans and applies their current status.
"""
import argparse
import asyncio
import signal
from typing import Any, Optional

import structlog

from catering_payments.config import Settings, get_settings
from catering_payments.core.clock import SystemClock
from catering_payments.core.reconciliation import PendingPaymentReconciler
from catering_payments.core.transaction_ids import TransactionIdFactory
from catering_payments.core.webhook import WebhookReconciler
from catering_payments.database.connection import close_db, create_engine, create_session_factory
from catering_payments.database.repository import OrderRepository
from catering_payments.integrations.midtrans_client import MidtransClient
from catering_payments.monitoring.logging import setup_logging

logger = structlog.get_logger(__name__)


def build_reconciler(settings: Settings) -> PendingPaymentReconciler:
    """Wire the reconciler from settings, the same way the API does."""
    clock = SystemClock(settings.timezone)
    gateway = MidtransClient(settings.gateway_config())
    id_factory = TransactionIdFactory(settings.transaction_prefix, clock)
    webhook_reconciler = WebhookReconciler(settings.midtrans_server_key, id_factory, clock)
    return PendingPaymentReconciler(settings, gateway, webhook_reconciler, clock)


async def run_reconciliation(
    reconciler: PendingPaymentReconciler, session_factory: Any, settings: Settings
) -> None:
    """Run one reconciliation batch in its own session."""
    async with session_factory() as session:
        repository = OrderRepository(session, timeout_seconds=settings.store_timeout_seconds)
        report = await reconciler.run_once(repository)

    if report.errors:
        logger.warning("reconciliation_errors_detected", errors=report.errors)


async def start_reconciliation_worker(
    settings: Optional[Settings] = None, once: bool = False
) -> None:
    """
    Start the reconciliation worker.

    Args:
        settings: Application settings (defaults to the environment)
        once: Run a single batch and exit
    """
    settings = settings or get_settings()
    setup_logging(settings)

    if not settings.midtrans_server_key:
        logger.error("midtrans_server_key_missing")
        raise SystemExit("MIDTRANS_SERVER_KEY not configured")

    interval = settings.reconciliation_interval_seconds
    logger.info("reconciliation_worker_starting", interval_seconds=interval, once=once)

    engine = create_engine(settings)
    session_factory = create_session_factory(engine)
    reconciler = build_reconciler(settings)

    running = True

    def signal_handler(sig: int, frame: Any) -> None:
        nonlocal running
        logger.info("reconciliation_worker_shutdown_signal_received", signal=sig)
        running = False

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        while running:
            try:
                await run_reconciliation(reconciler, session_factory, settings)
            except Exception as e:
                logger.error("reconciliation_execution_error", error=str(e))
                # Continue running even if one batch fails

            if once:
                break

            # Sleep in short steps so a shutdown signal is noticed promptly
            remaining = float(interval)
            while remaining > 0 and running:
                step = min(remaining, 5.0)
                await asyncio.sleep(step)
                remaining -= step

    finally:
        await close_db(engine)
        logger.info("reconciliation_worker_stopped")


def main() -> None:
    parser = argparse.ArgumentParser(description="Pending-payment reconciliation worker")
    parser.add_argument("--once", action="store_true", help="Run a single batch and exit")
    args = parser.parse_args()

    asyncio.run(start_reconciliation_worker(once=args.once))


if __name__ == "__main__":
    main()
