"""
Readiness and liveness probes.

Readiness covers the payments database and whether Paystack verification
can run at all (secret key present). No request is sent to Paystack.
"""
from typing import Any, Awaitable, Callable, Dict

import structlog

from easypass.config import Settings
from easypass.database.connection import Database

logger = structlog.get_logger(__name__)

Probe = Callable[[], Awaitable[Dict[str, Any]]]


class HealthCheckError(Exception):
    """A required dependency is down."""

    pass


class HealthCheck:
    """Runs the probes behind ``/health`` and ``/health/live``."""

    def __init__(self, settings: Settings, database: Database) -> None:
        self.settings = settings
        self.database = database
        # Probes whose failure makes the service unhealthy
        self.required: Dict[str, Probe] = {"database": self.check_database}

    async def check_database(self) -> Dict[str, Any]:
        """
        Run ``SELECT 1`` against the payments database.

        Raises:
            HealthCheckError: If the database cannot be reached
        """
        try:
            await self.database.ping()
        except Exception as e:
            logger.error("database_probe_failed", error=str(e))
            raise HealthCheckError(f"Database unreachable: {e}") from e
        return {"status": "healthy", "service": "database"}

    def check_provider_configuration(self) -> Dict[str, Any]:
        if not self.settings.paystack_secret_key:
            return {
                "status": "degraded",
                "service": "paystack",
                "message": "Secret key missing; verification will fail",
                "test_mode": False,
            }
        return {
            "status": "healthy",
            "service": "paystack",
            "test_mode": self.settings.is_test_mode,
        }

    async def check_all(self) -> Dict[str, Any]:
        """
        Readiness report.

        Only required probes decide the overall status; a missing provider
        key is reported as degraded.
        """
        checks: Dict[str, Any] = {}
        for name, probe in self.required.items():
            try:
                checks[name] = await probe()
            except HealthCheckError as e:
                checks[name] = {"status": "unhealthy", "service": name, "error": str(e)}

        checks["paystack"] = self.check_provider_configuration()

        healthy = all(checks[name]["status"] == "healthy" for name in self.required)
        return {"status": "healthy" if healthy else "unhealthy", "checks": checks}

    async def liveness(self) -> Dict[str, Any]:
        return {"status": "alive", "message": f"{self.settings.app_name} is running"}
