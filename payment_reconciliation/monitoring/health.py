"""
Health check endpoints for Kubernetes readiness/liveness probes.

Checks:
- Database connectivity
- Gateway circuit breaker state (reported, never fails readiness)
"""
from typing import TYPE_CHECKING, Any, Dict, Optional

import structlog
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from payment_reconciliation.config import Settings, get_settings
from payment_reconciliation.database.connection import get_session_factory

if TYPE_CHECKING:
    from payment_reconciliation.integrations.sslcommerz_client import CircuitBreaker

logger = structlog.get_logger(__name__)


class HealthCheckError(Exception):
    """Raised when health check fails."""

    pass


class HealthCheck:
    """
    Health check service for monitoring system dependencies.

    Provides:
    - Database connectivity check
    - Gateway breaker report
    - Overall system health status
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        circuit_breaker: Optional["CircuitBreaker"] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.session_factory = session_factory
        self.circuit_breaker = circuit_breaker

    async def check_database(self) -> Dict[str, Any]:
        """
        Check database connectivity.

        Returns:
            Dict[str, Any]: Database health status

        Raises:
            HealthCheckError: If database check fails
        """
        session_factory = self.session_factory or get_session_factory()
        try:
            async with session_factory() as db:
                result = await db.execute(text("SELECT 1"))
                result.scalar()
        except (SQLAlchemyError, OSError) as e:
            logger.error("database_health_check_failed", error=str(e))
            raise HealthCheckError(f"Database health check failed: {str(e)}") from e

        return {
            "status": "healthy",
            "service": "database",
            "message": "Database connection successful",
        }

    def check_gateway(self) -> Dict[str, Any]:
        state = self.circuit_breaker.state if self.circuit_breaker else "unknown"
        return {
            "status": "degraded" if state == "open" else "healthy",
            "service": "sslcommerz",
            "circuit_breaker": state,
            "sandbox": self.settings.sslcommerz_sandbox,
        }

    async def check_all(self) -> Dict[str, Any]:
        """
        Run all health checks.

        Returns:
            Dict[str, Any]: Overall health status
        """
        checks: Dict[str, Any] = {}
        all_healthy = True

        try:
            checks["database"] = await self.check_database()
        except HealthCheckError as e:
            checks["database"] = {
                "status": "unhealthy",
                "service": "database",
                "error": str(e),
            }
            all_healthy = False

        # An open breaker only affects initiation; callbacks still reconcile.
        checks["gateway"] = self.check_gateway()

        return {
            "status": "healthy" if all_healthy else "unhealthy",
            "checks": checks,
        }

    async def liveness(self) -> Dict[str, Any]:
        """
        Liveness probe endpoint.

        Does not check external dependencies.
        """
        return {
            "status": "alive",
            "message": "Application is running",
        }

    async def readiness(self) -> Dict[str, Any]:
        """Readiness probe: ready when the payment store answers."""
        return await self.check_all()
