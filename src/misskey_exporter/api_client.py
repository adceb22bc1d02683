"""
HTTP client for the Misskey API.

Every data request is bounded by a timeout and returns None instead of
raising: a misbehaving or unreachable Misskey API must never abort a
sampling cycle. Failures are logged and surface to callers only as an
absent result.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from misskey_exporter.logging import get_logger
from misskey_exporter.models import InstanceMeta, ServerStats

if TYPE_CHECKING:
    from misskey_exporter.config import MisskeyConfig

logger = get_logger(__name__)

DEFAULT_REQUEST_TIMEOUT_SECONDS = 10.0
DEFAULT_PING_TIMEOUT_SECONDS = 5.0

STATS_ENDPOINT = "/api/stats"
META_ENDPOINT = "/api/meta"
FEDERATION_STATS_ENDPOINT = "/api/federation/stats"
PING_ENDPOINT = "/api/ping"

ModelT = TypeVar("ModelT", bound=BaseModel)


class MisskeyApiClient:
    """
    Timeout-bounded client for the Misskey HTTP API.

    Example:
        >>> client = MisskeyApiClient("https://misskey.example")
        >>> stats = await client.get_server_stats()
        >>> if stats is not None:
        ...     print(stats.notes_count)
    """

    def __init__(
        self,
        base_url: str,
        request_timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
        ping_timeout_seconds: float = DEFAULT_PING_TIMEOUT_SECONDS,
    ) -> None:
        """
        Initialize the API client.

        Args:
            base_url: Base URL of the Misskey instance.
            request_timeout_seconds: Timeout for data requests.
            ping_timeout_seconds: Timeout for ping().
        """
        self._base_url = base_url.rstrip("/")
        self._request_timeout = request_timeout_seconds
        self._ping_timeout = ping_timeout_seconds

    @classmethod
    def from_config(cls, config: MisskeyConfig) -> MisskeyApiClient:
        """Create a MisskeyApiClient from configuration."""
        return cls(
            base_url=config.url,
            request_timeout_seconds=config.request_timeout_seconds,
            ping_timeout_seconds=config.ping_timeout_seconds,
        )

    @property
    def base_url(self) -> str:
        """Return the Misskey base URL."""
        return self._base_url

    async def make_request(
        self,
        endpoint: str,
        body: dict[str, Any] | None = None,
    ) -> Any | None:
        """
        POST a JSON body to an API endpoint.

        Args:
            endpoint: Path below the base URL, e.g. "/api/stats".
            body: JSON request body (defaults to an empty object).

        Returns:
            Decoded JSON response, or None on any HTTP, transport, timeout
            or decoding failure.
        """
        url = f"{self._base_url}{endpoint}"
        try:
            async with httpx.AsyncClient(timeout=self._request_timeout) as client:
                response = await client.post(url, json=body if body is not None else {})
                response.raise_for_status()
                return response.json()
        except httpx.HTTPStatusError as e:
            logger.error(
                "Misskey API returned an error status",
                extra={"endpoint": endpoint, "status_code": e.response.status_code},
            )
        except ValueError as e:
            logger.error(
                "Misskey API returned invalid JSON",
                extra={"endpoint": endpoint, "error": str(e)},
            )
        except Exception as e:
            logger.error(
                "Misskey API request failed",
                extra={
                    "endpoint": endpoint,
                    "error_type": type(e).__name__,
                    "error": str(e),
                },
            )
        return None

    async def get_server_stats(self) -> ServerStats | None:
        """Fetch instance statistics from /api/stats."""
        data = await self.make_request(STATS_ENDPOINT)
        return self._parse(ServerStats, data, STATS_ENDPOINT)

    async def get_instance_meta(self) -> InstanceMeta | None:
        """Fetch instance metadata from /api/meta."""
        data = await self.make_request(META_ENDPOINT, {"detail": False})
        return self._parse(InstanceMeta, data, META_ENDPOINT)

    async def get_federation_stats(self) -> dict[str, Any] | None:
        """Fetch federation statistics from /api/federation/stats."""
        data = await self.make_request(FEDERATION_STATS_ENDPOINT)
        if data is not None and not isinstance(data, dict):
            logger.error(
                "Unexpected Misskey API response shape",
                extra={"endpoint": FEDERATION_STATS_ENDPOINT},
            )
            return None
        return data

    async def ping(self) -> bool:
        """
        Check whether the Misskey API answers /api/ping.

        Returns:
            True on a 2xx response, False on any failure including timeout.
        """
        try:
            async with httpx.AsyncClient(timeout=self._ping_timeout) as client:
                response = await client.post(f"{self._base_url}{PING_ENDPOINT}")
                return response.is_success
        except Exception as e:
            logger.debug("Misskey API ping failed", extra={"error": str(e)})
            return False

    @staticmethod
    def _parse(model: type[ModelT], data: Any, endpoint: str) -> ModelT | None:
        if data is None:
            return None
        try:
            return model.model_validate(data)
        except ValidationError as e:
            logger.error(
                "Unexpected Misskey API response shape",
                extra={"endpoint": endpoint, "error": str(e)},
            )
            return None
