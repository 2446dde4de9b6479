"""
Health checks for liveness/readiness probes.

Checks:
- Order store connectivity
- Gateway credential presence
"""
from typing import Any, Dict

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from catering_payments.config import Settings
from catering_payments.core.exceptions import StoreError
from catering_payments.database.repository import OrderRepository

logger = structlog.get_logger(__name__)


class HealthCheckError(Exception):
    """Raised when health check fails."""

    pass


class HealthCheck:
    """
    Health check service for the payment subsystem's dependencies.

    The gateway is not called; only its configuration is checked, so
    probes never spend gateway quota.
    """

    def __init__(self, settings: Settings, session_factory: async_sessionmaker[AsyncSession]):
        self.settings = settings
        self.session_factory = session_factory

    async def check_database(self) -> Dict[str, Any]:
        """
        Check order store connectivity.

        Raises:
            HealthCheckError: If the store does not answer
        """
        try:
            async with self.session_factory() as session:
                await OrderRepository(session, self.settings.store_timeout_seconds).ping()
        except StoreError as e:
            logger.error("database_health_check_failed", error=e.message)
            raise HealthCheckError(f"Database health check failed: {e.message}")

        return {
            "status": "healthy",
            "service": "database",
            "message": "Database connection successful",
        }

    def check_gateway(self) -> Dict[str, Any]:
        """
        Check the gateway credential is configured.

        Raises:
            HealthCheckError: If the server key is missing
        """
        if not self.settings.midtrans_server_key:
            raise HealthCheckError("MIDTRANS_SERVER_KEY not configured")
        return {
            "status": "healthy",
            "service": "midtrans",
            "message": "Gateway credential configured",
            "production": self.settings.midtrans_is_production,
        }

    async def check_all(self) -> Dict[str, Any]:
        """
        Run all health checks.

        Returns:
            Dict[str, Any]: Overall health status
        """
        checks = {}
        all_healthy = True

        try:
            checks["database"] = await self.check_database()
        except HealthCheckError as e:
            checks["database"] = {"status": "unhealthy", "service": "database", "error": str(e)}
            all_healthy = False

        try:
            checks["midtrans"] = self.check_gateway()
        except HealthCheckError as e:
            checks["midtrans"] = {"status": "unhealthy", "service": "midtrans", "error": str(e)}
            all_healthy = False

        return {
            "status": "healthy" if all_healthy else "unhealthy",
            "checks": checks,
        }

    async def liveness(self) -> Dict[str, Any]:
        """Application is running; dependencies are not checked."""
        return {
            "status": "alive",
            "message": "Application is running",
        }

    async def readiness(self) -> Dict[str, Any]:
        return await self.check_all()
