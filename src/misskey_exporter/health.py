"""
Health evaluation for the exporter.

Health is decided by the store alone: if a trivial query against the Misskey
database succeeds, the exporter is healthy. The Misskey API is pinged for
diagnostics only; an unreachable API is logged and does not change the
outcome.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from misskey_exporter.logging import get_logger

if TYPE_CHECKING:
    from misskey_exporter.api_client import MisskeyApiClient
    from misskey_exporter.database import Database

logger = get_logger(__name__)

STATUS_HEALTHY = "healthy"
STATUS_UNHEALTHY = "unhealthy"


@dataclass
class HealthReport:
    """Result of a health evaluation."""

    healthy: bool
    is_updating: bool
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def status(self) -> str:
        return STATUS_HEALTHY if self.healthy else STATUS_UNHEALTHY

    @property
    def status_code(self) -> int:
        """HTTP status code for this report."""
        return 200 if self.healthy else 503

    def to_dict(self) -> dict[str, Any]:
        """Convert to the /health response body."""
        return {
            "status": self.status,
            "timestamp": self.timestamp.isoformat(),
            "isUpdating": self.is_updating,
        }


class HealthChecker:
    """
    Evaluates exporter health against the store and the Misskey API.

    Example:
        >>> checker = HealthChecker(database, api_client)
        >>> report = await checker.check(is_updating=False)
        >>> report.status_code
        200
    """

    def __init__(self, database: Database, api_client: MisskeyApiClient) -> None:
        self._database = database
        self._api_client = api_client

    async def is_healthy(self) -> bool:
        """
        Check whether the store answers queries.

        Returns:
            True if the store query succeeded, regardless of the ping result.
        """
        try:
            await self._database.get_user_count()
        except Exception as e:
            logger.error(
                "Health check failed: database query error",
                extra={"error_type": type(e).__name__, "error": str(e)},
            )
            return False

        if not await self._api_client.ping():
            logger.warning(
                "Health check: Misskey API ping failed",
                extra={"base_url": self._api_client.base_url},
            )

        return True

    async def check(self, is_updating: bool) -> HealthReport:
        """
        Build a health report.

        Args:
            is_updating: Whether a sampling cycle is currently in flight.

        Returns:
            HealthReport for the /health endpoint.
        """
        healthy = await self.is_healthy()
        return HealthReport(healthy=healthy, is_updating=is_updating)
