"""
Periodic sampling of the Misskey database and API.

This module implements the MetricsSampler class that:
- Runs one sampling cycle immediately on start
- Fires a new cycle on a fixed wall-clock cadence afterwards
- Drops ticks that arrive while a cycle is still running
- Pushes results into the MetricsCollector and records per-source
  durations and error counts

A failing database sample aborts the rest of its cycle; a failing API sample
never does. Neither stops future ticks.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from misskey_exporter.collector import SOURCE_API, SOURCE_DATABASE, SOURCE_GENERAL
from misskey_exporter.errors import (
    ExporterError,
    FailedPreconditionError,
    InvalidArgumentError,
)
from misskey_exporter.logging import get_logger

if TYPE_CHECKING:
    from misskey_exporter.api_client import MisskeyApiClient
    from misskey_exporter.collector import MetricsCollector
    from misskey_exporter.database import Database

logger = get_logger(__name__)

# =============================================================================
# Constants
# =============================================================================

DEFAULT_UPDATE_INTERVAL_MS = 60000

# How long stop() waits for an in-flight cycle before cancelling it
STOP_TIMEOUT_SECONDS = 10.0


# =============================================================================
# Enums and Data Models
# =============================================================================


class SamplerStatus(str, Enum):
    """Status of the metrics sampler."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


@dataclass
class SamplerState:
    """
    Current state of the metrics sampler.

    Attributes:
        status: Current sampler status.
        job_id: Identifier of the current sampling job.
        interval_ms: Period between cycles.
        started_at: When the sampler was started.
        last_cycle_at: When the last cycle started.
        last_success_at: When the last cycle finished without a database error.
        cycle_count: Number of cycles run.
        dropped_ticks: Ticks dropped because a cycle was still running.
        error_count: Number of cycles that failed.
        last_error: Last error message if any.
    """

    status: SamplerStatus = SamplerStatus.STOPPED
    job_id: str | None = None
    interval_ms: int = DEFAULT_UPDATE_INTERVAL_MS
    started_at: datetime | None = None
    last_cycle_at: datetime | None = None
    last_success_at: datetime | None = None
    cycle_count: int = 0
    dropped_ticks: int = 0
    error_count: int = 0
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "status": self.status.value,
            "job_id": self.job_id,
            "interval_ms": self.interval_ms,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "last_cycle_at": (
                self.last_cycle_at.isoformat() if self.last_cycle_at else None
            ),
            "last_success_at": (
                self.last_success_at.isoformat() if self.last_success_at else None
            ),
            "cycle_count": self.cycle_count,
            "dropped_ticks": self.dropped_ticks,
            "error_count": self.error_count,
            "last_error": self.last_error,
        }


# =============================================================================
# MetricsSampler Class
# =============================================================================


class MetricsSampler:
    """
    Drives sampling cycles and owns the cycle guard.

    Example:
        >>> sampler = MetricsSampler(database, api_client, collector)
        >>> await sampler.start()
        >>> body = sampler.render_metrics()
        >>> await sampler.stop()
    """

    def __init__(
        self,
        database: Database,
        api_client: MisskeyApiClient,
        collector: MetricsCollector,
        interval_ms: int = DEFAULT_UPDATE_INTERVAL_MS,
    ) -> None:
        """
        Initialize the MetricsSampler.

        Args:
            database: Store connector to sample.
            api_client: Misskey API client to sample.
            collector: Collector receiving the results.
            interval_ms: Period between cycles in milliseconds.
        """
        self._database = database
        self._api_client = api_client
        self._collector = collector
        self._state = SamplerState(interval_ms=interval_ms)
        self._is_updating = False
        self._ticker: asyncio.Task[None] | None = None
        self._cycles: set[asyncio.Task[bool]] = set()
        self._stop_event = asyncio.Event()
        self._lock = asyncio.Lock()

    @property
    def is_updating(self) -> bool:
        """Check whether a sampling cycle is in flight."""
        return self._is_updating

    @property
    def is_running(self) -> bool:
        """Check if the periodic schedule is active."""
        return self._state.status == SamplerStatus.RUNNING

    @property
    def collector(self) -> MetricsCollector:
        """Return the collector this sampler writes to."""
        return self._collector

    def get_status(self) -> SamplerState:
        """
        Get the current sampler state.

        Returns:
            Copy of the current SamplerState.
        """
        return SamplerState(**vars(self._state))

    def render_metrics(self) -> bytes:
        """Render the current exposition text."""
        return self._collector.render()

    # -------------------------------------------------------------------------
    # Sampling cycle
    # -------------------------------------------------------------------------

    async def update_metrics(self) -> bool:
        """
        Run one sampling cycle unless one is already running.

        Returns:
            True if the cycle ran, False if it was dropped.
        """
        # Checked and set before the first await
        if self._is_updating:
            self._state.dropped_ticks += 1
            logger.warning(
                "Metrics update already in progress, dropping tick",
                extra={"dropped_ticks": self._state.dropped_ticks},
            )
            return False

        self._is_updating = True
        try:
            self._state.cycle_count += 1
            self._state.last_cycle_at = datetime.now(UTC)
            logger.info("Updating metrics")

            await self.update_database_metrics()
            await self.update_api_metrics()

            self._state.last_success_at = datetime.now(UTC)
            logger.info("Metrics updated successfully")
        except Exception as e:
            self._state.error_count += 1
            self._state.last_error = str(e)
            logger.error(
                "Failed to update metrics",
                extra={"error_type": type(e).__name__, "error": str(e)},
            )
            self._collector.record_scrape_error(SOURCE_GENERAL)
        finally:
            self._is_updating = False

        return True

    async def update_database_metrics(self) -> None:
        """
        Sample the database and write the snapshot.

        Raises:
            Exception: Whatever the store raised; the error is counted first.
        """
        start = time.perf_counter()

        try:
            snapshot = await self._database.get_all_metrics()
        except Exception as e:
            extra: dict[str, Any] = {
                "error_type": type(e).__name__,
                "error": str(e),
                "database": self._database.conninfo_for_log(),
            }
            if isinstance(e, ExporterError):
                extra["error_details"] = e.to_dict()
            logger.error("Database metrics update failed", extra=extra, exc_info=True)
            self._collector.record_scrape_error(SOURCE_DATABASE)
            raise

        self._collector.update_database_metrics(snapshot)
        self._collector.record_scrape_duration(
            SOURCE_DATABASE, time.perf_counter() - start
        )

    async def update_api_metrics(self) -> None:
        """
        Sample the Misskey API and write whatever arrived.

        Never raises: the API is optional for a successful cycle.
        """
        start = time.perf_counter()

        try:
            stats, meta = await asyncio.gather(
                self._api_client.get_server_stats(),
                self._api_client.get_instance_meta(),
            )

            self._collector.update_api_metrics(stats, meta)
            self._collector.record_scrape_duration(
                SOURCE_API, time.perf_counter() - start
            )

            if stats is None or meta is None:
                logger.warning(
                    "Misskey API returned partial data",
                    extra={"stats": stats is not None, "meta": meta is not None},
                )
                self._collector.record_scrape_error(SOURCE_API)
        except Exception as e:
            logger.error(
                "API metrics update failed",
                extra={"error_type": type(e).__name__, "error": str(e)},
            )
            self._collector.record_scrape_error(SOURCE_API)

    # -------------------------------------------------------------------------
    # Scheduling
    # -------------------------------------------------------------------------

    async def start(self, *, interval_ms: int | None = None) -> SamplerState:
        """
        Run one cycle now, then schedule cycles every interval.

        Args:
            interval_ms: Override the period between cycles.

        Returns:
            Current SamplerState after starting.

        Raises:
            InvalidArgumentError: If the interval is not positive.
            FailedPreconditionError: If the sampler is already running.
        """
        async with self._lock:
            if self._state.status in (SamplerStatus.RUNNING, SamplerStatus.STARTING):
                raise FailedPreconditionError(
                    "Sampler is already running",
                    details={"job_id": self._state.job_id},
                )

            if interval_ms is not None:
                if interval_ms <= 0:
                    raise InvalidArgumentError(
                        "interval_ms must be positive",
                        details={"interval_ms": interval_ms},
                    )
                self._state.interval_ms = interval_ms

            self._state.status = SamplerStatus.STARTING
            self._state.job_id = str(uuid.uuid4())[:8]
            self._state.started_at = datetime.now(UTC)
            self._stop_event.clear()

            await self.update_metrics()

            self._ticker = asyncio.create_task(self._tick_loop())
            self._state.status = SamplerStatus.RUNNING

            logger.info(
                "Metrics sampler started",
                extra={
                    "job_id": self._state.job_id,
                    "interval_ms": self._state.interval_ms,
                },
            )

            return self.get_status()

    async def stop(self) -> SamplerState:
        """
        Stop scheduling cycles.

        Waits for an in-flight cycle to finish, cancelling it if it does not
        finish within STOP_TIMEOUT_SECONDS.

        Returns:
            Current SamplerState after stopping.
        """
        async with self._lock:
            if self._state.status not in (SamplerStatus.RUNNING, SamplerStatus.STARTING):
                return self.get_status()

            self._state.status = SamplerStatus.STOPPING
            self._stop_event.set()

            if self._ticker is not None:
                await self._ticker
                self._ticker = None

            if self._cycles:
                pending = set(self._cycles)
                _, still_running = await asyncio.wait(
                    pending, timeout=STOP_TIMEOUT_SECONDS
                )
                if still_running:
                    logger.warning("Sampling cycle did not finish in time, cancelling")
                    for task in still_running:
                        task.cancel()
                    await asyncio.gather(*still_running, return_exceptions=True)

            self._state.status = SamplerStatus.STOPPED

            logger.info(
                "Metrics sampler stopped",
                extra={
                    "job_id": self._state.job_id,
                    "cycle_count": self._state.cycle_count,
                },
            )

            return self.get_status()

    async def _tick_loop(self) -> None:
        """
        Fire a cycle at every multiple of the interval after start.

        Deadlines are computed from the first tick, not from when the previous
        cycle finished, so slow cycles do not shift the cadence. Deadlines the
        loop has already slept past are skipped and counted as dropped.
        """
        loop = asyncio.get_running_loop()
        interval = self._state.interval_ms / 1000
        next_tick = loop.time() + interval

        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(
                    self._stop_event.wait(),
                    timeout=max(0.0, next_tick - loop.time()),
                )
                break
            except TimeoutError:
                pass

            next_tick += interval
            self._fire_cycle()

            now = loop.time()
            if next_tick <= now:
                missed = int((now - next_tick) // interval) + 1
                next_tick += missed * interval
                self._state.dropped_ticks += missed
                logger.warning(
                    "Sampler fell behind, skipping missed ticks",
                    extra={
                        "missed_ticks": missed,
                        "dropped_ticks": self._state.dropped_ticks,
                    },
                )

    def _fire_cycle(self) -> None:
        task = asyncio.create_task(self.update_metrics())
        self._cycles.add(task)
        task.add_done_callback(self._cycles.discard)
