"""
PostgreSQL store connector for the Misskey database.

This module implements the Database class that:
- Owns a single psycopg AsyncConnection to the Misskey database
- Runs the fixed battery of count/size queries behind typed methods
- Recovers from connection loss with a bounded, blocking reconnection loop
- Gathers every query of a cycle into one MetricsSnapshot

Every query follows the same contract: ensure the connection is up, execute
one parameterized statement, and on any failure mark the connection
disconnected and re-raise. No partial results are returned.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import TYPE_CHECKING, Any

import psycopg
from psycopg.rows import dict_row

from misskey_exporter.aid import lower_bound_identifier
from misskey_exporter.errors import UnavailableError
from misskey_exporter.logging import get_logger
from misskey_exporter.models import (
    ActiveUsers,
    DatabaseStats,
    FederationCounts,
    HashtagCount,
    MetricsSnapshot,
    RecentNotes,
)

if TYPE_CHECKING:
    from misskey_exporter.config import DatabaseConfig

logger = get_logger(__name__)

# =============================================================================
# Constants
# =============================================================================

DEFAULT_MAX_RECONNECT_ATTEMPTS = 3
DEFAULT_RECONNECT_DELAY_SECONDS = 5.0
DEFAULT_CONNECT_TIMEOUT_SECONDS = 10

# Reporting windows, as PostgreSQL interval literals
INTERVAL_DAILY = "1 day"
INTERVAL_WEEKLY = "7 days"
INTERVAL_MONTHLY = "30 days"

LOCAL_USERS_QUERY = 'SELECT COUNT(*) AS count FROM "user" WHERE "host" IS NULL'

ACTIVE_USERS_QUERY = """
    SELECT COUNT(*) AS count FROM "user"
    WHERE "host" IS NULL
    AND "lastActiveDate" > NOW() - %s::interval
"""

NOTES_QUERY = 'SELECT COUNT(*) AS count FROM "note"'

# Note ids are AIDs, so "created after T" is an id range scan
RECENT_NOTES_QUERY = 'SELECT COUNT(*) AS count FROM "note" WHERE "id" > %s'

INSTANCES_QUERY = 'SELECT COUNT(*) AS count FROM "instance"'

REMOTE_USERS_QUERY = 'SELECT COUNT(*) AS count FROM "user" WHERE "host" IS NOT NULL'

CONNECTIONS_QUERY = """
    SELECT COUNT(*) AS count
    FROM pg_stat_activity
    WHERE datname = current_database()
"""

DATABASE_SIZE_QUERY = "SELECT pg_database_size(current_database()) AS size"

TOP_HASHTAGS_QUERY = """
    SELECT "tag", COUNT(*) AS count
    FROM "note_hashtag"
    JOIN "hashtag" ON "note_hashtag"."hashtagId" = "hashtag"."id"
    GROUP BY "tag"
    ORDER BY count DESC
    LIMIT %s
"""


class ConnectionState(str, Enum):
    """State of the store connection."""

    DISCONNECTED = "disconnected"
    CONNECTED = "connected"


# =============================================================================
# Database Class
# =============================================================================


class Database:
    """
    Resilient connection to the Misskey PostgreSQL database.

    The connection runs in autocommit mode with dict rows. Reconnection is
    serialized: while one caller is reconnecting, other callers wait for it
    and then re-check the state instead of opening a second connection.

    Example:
        >>> db = Database.from_config(config.database)
        >>> await db.connect()
        >>> snapshot = await db.get_all_metrics()
        >>> await db.disconnect()
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 5432,
        name: str = "misskey",
        user: str = "misskey",
        password: str = "",
        *,
        connect_timeout_seconds: int = DEFAULT_CONNECT_TIMEOUT_SECONDS,
        max_reconnect_attempts: int = DEFAULT_MAX_RECONNECT_ATTEMPTS,
        reconnect_delay_seconds: float = DEFAULT_RECONNECT_DELAY_SECONDS,
    ) -> None:
        """
        Initialize the Database connector without connecting.

        Args:
            host: Database host.
            port: Database port.
            name: Database name.
            user: Database user.
            password: Database password.
            connect_timeout_seconds: Timeout for a single handshake.
            max_reconnect_attempts: Attempts per reconnection sequence.
            reconnect_delay_seconds: Fixed delay between failed attempts.
        """
        self._host = host
        self._port = port
        self._name = name
        self._user = user
        self._password = password
        self._connect_timeout = connect_timeout_seconds
        self._max_reconnect_attempts = max_reconnect_attempts
        self._reconnect_delay = reconnect_delay_seconds

        self._conn: psycopg.AsyncConnection[dict[str, Any]] | None = None
        self._state = ConnectionState.DISCONNECTED
        self._reconnect_attempts = 0
        self._reconnect_lock = asyncio.Lock()

    @classmethod
    def from_config(cls, config: DatabaseConfig) -> Database:
        """Create a Database from configuration."""
        return cls(
            host=config.host,
            port=config.port,
            name=config.name,
            user=config.user,
            password=config.password,
            connect_timeout_seconds=config.connect_timeout_seconds,
            max_reconnect_attempts=config.max_reconnect_attempts,
            reconnect_delay_seconds=config.reconnect_delay_seconds,
        )

    @property
    def state(self) -> ConnectionState:
        """Return the current connection state."""
        return self._state

    @property
    def is_connected(self) -> bool:
        """Check whether the connection is currently usable."""
        return self._state is ConnectionState.CONNECTED

    @property
    def reconnect_attempts(self) -> int:
        """Return the number of failed attempts in the current sequence."""
        return self._reconnect_attempts

    @property
    def max_reconnect_attempts(self) -> int:
        """Return the bound on attempts per reconnection sequence."""
        return self._max_reconnect_attempts

    def conninfo_for_log(self) -> dict[str, Any]:
        """Return connection parameters with the password redacted."""
        return {
            "host": self._host,
            "port": self._port,
            "database": self._name,
            "user": self._user,
            "password_set": bool(self._password),
        }

    # -------------------------------------------------------------------------
    # Connection lifecycle
    # -------------------------------------------------------------------------

    async def _open_connection(self) -> psycopg.AsyncConnection[dict[str, Any]]:
        return await psycopg.AsyncConnection.connect(
            host=self._host,
            port=self._port,
            dbname=self._name,
            user=self._user,
            password=self._password,
            connect_timeout=self._connect_timeout,
            autocommit=True,
            row_factory=dict_row,
        )

    async def connect(self) -> None:
        """
        Open the connection.

        Does not retry; a failed handshake propagates to the caller.

        Raises:
            psycopg.Error: If the connection cannot be established.
        """
        try:
            self._conn = await self._open_connection()
        except Exception as e:
            logger.error(
                "Database connection failed",
                extra={"error": str(e), **self.conninfo_for_log()},
            )
            raise

        self._state = ConnectionState.CONNECTED
        self._reconnect_attempts = 0
        logger.info("Database connected successfully", extra=self.conninfo_for_log())

    async def ensure_connection(self) -> None:
        """
        Make sure the connection is usable, reconnecting if it is not.

        Raises:
            UnavailableError: If the reconnection sequence is exhausted.
        """
        if self._state is ConnectionState.CONNECTED:
            return

        async with self._reconnect_lock:
            # Another caller may have reconnected while we waited
            if self._state is ConnectionState.CONNECTED:
                return

            logger.warning("Database connection lost, attempting to reconnect")
            await self._reconnect()

    async def _reconnect(self) -> None:
        """
        Bounded reconnection loop.

        Each attempt closes the stale connection and opens a fresh one. Failed
        attempts wait a fixed delay, except the last one which raises.
        """
        self._reconnect_attempts = 0

        while True:
            self._reconnect_attempts += 1
            logger.info(
                "Reconnection attempt",
                extra={
                    "attempt": self._reconnect_attempts,
                    "max_attempts": self._max_reconnect_attempts,
                },
            )

            await self._close_connection()

            try:
                self._conn = await self._open_connection()
            except Exception as e:
                logger.error(
                    "Reconnection attempt failed",
                    extra={"attempt": self._reconnect_attempts, "error": str(e)},
                )
                if self._reconnect_attempts >= self._max_reconnect_attempts:
                    raise UnavailableError(
                        f"Failed to reconnect to database after "
                        f"{self._max_reconnect_attempts} attempts",
                        details={
                            "attempts": self._reconnect_attempts,
                            **self.conninfo_for_log(),
                        },
                    ) from e

                logger.info(
                    "Waiting before next reconnection attempt",
                    extra={"delay_seconds": self._reconnect_delay},
                )
                await asyncio.sleep(self._reconnect_delay)
                continue

            self._state = ConnectionState.CONNECTED
            self._reconnect_attempts = 0
            logger.info("Database reconnected successfully")
            return

    async def _close_connection(self) -> None:
        """Close and forget the current connection, if any."""
        conn, self._conn = self._conn, None
        self._state = ConnectionState.DISCONNECTED
        if conn is None:
            return

        try:
            await conn.close()
        except Exception as e:
            logger.debug(
                "Error while closing database connection",
                extra={"error": str(e)},
            )

    async def disconnect(self) -> None:
        """Close the connection. Safe to call when already disconnected."""
        was_connected = self.is_connected
        await self._close_connection()
        if was_connected:
            logger.info("Database disconnected")

    def _connection(self) -> psycopg.AsyncConnection[dict[str, Any]]:
        if self._conn is None:
            raise UnavailableError("Database connection is not open")
        return self._conn

    def _mark_disconnected(
        self,
        conn: psycopg.AsyncConnection[dict[str, Any]],
        error: Exception,
    ) -> None:
        # A failure on a connection that was already replaced says nothing
        # about the current one
        if self._conn is not conn:
            logger.debug(
                "Query failed on a replaced connection",
                extra={"error_type": type(error).__name__, "error": str(error)},
            )
            return

        if self._state is ConnectionState.CONNECTED:
            logger.warning(
                "Database query failed, marking connection as lost",
                extra={"error_type": type(error).__name__, "error": str(error)},
            )
        self._state = ConnectionState.DISCONNECTED

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    async def _fetch_one(
        self,
        query: str,
        params: tuple[Any, ...] | None = None,
    ) -> dict[str, Any]:
        await self.ensure_connection()
        conn = self._connection()
        try:
            cursor = await conn.execute(query, params)
            row = await cursor.fetchone()
            if row is None:
                raise psycopg.DataError("Query returned no rows")
            return row
        except Exception as e:
            self._mark_disconnected(conn, e)
            raise

    async def _fetch_count(
        self,
        query: str,
        params: tuple[Any, ...] | None = None,
    ) -> int:
        row = await self._fetch_one(query, params)
        return int(row["count"])

    async def get_user_count(self) -> int:
        """Count local users."""
        return await self._fetch_count(LOCAL_USERS_QUERY)

    async def get_active_users(self, interval: str) -> int:
        """
        Count local users active within an interval.

        Args:
            interval: PostgreSQL interval literal, e.g. "7 days".
        """
        return await self._fetch_count(ACTIVE_USERS_QUERY, (interval,))

    async def get_notes_count(self) -> int:
        """Count all notes."""
        return await self._fetch_count(NOTES_QUERY)

    async def get_recent_notes(self, interval: str, now_ms: int | None = None) -> int:
        """
        Count notes created within an interval.

        Args:
            interval: Interval string, e.g. "1 day".
            now_ms: Reference time in epoch milliseconds (defaults to now).
        """
        lower_bound = lower_bound_identifier(interval, now_ms)
        return await self._fetch_count(RECENT_NOTES_QUERY, (lower_bound,))

    async def get_federated_instances_count(self) -> int:
        """Count known remote instances."""
        return await self._fetch_count(INSTANCES_QUERY)

    async def get_remote_users_count(self) -> int:
        """Count remote users."""
        return await self._fetch_count(REMOTE_USERS_QUERY)

    async def get_connection_count(self) -> int:
        """Count server connections to the current database."""
        return await self._fetch_count(CONNECTIONS_QUERY)

    async def get_database_size(self) -> int:
        """Return the size of the current database in bytes."""
        row = await self._fetch_one(DATABASE_SIZE_QUERY)
        return int(row["size"])

    async def get_top_hashtags(self, limit: int = 10) -> list[HashtagCount]:
        """
        Return the most used hashtags.

        Args:
            limit: Maximum number of tags to return.

        Returns:
            Tag/count pairs ordered by descending count.
        """
        await self.ensure_connection()
        conn = self._connection()
        try:
            cursor = await conn.execute(TOP_HASHTAGS_QUERY, (limit,))
            rows = await cursor.fetchall()
        except Exception as e:
            self._mark_disconnected(conn, e)
            raise

        return [HashtagCount(tag=row["tag"], count=int(row["count"])) for row in rows]

    async def get_all_metrics(self) -> MetricsSnapshot:
        """
        Run every snapshot query concurrently and assemble the results.

        Returns:
            MetricsSnapshot for this cycle.

        Raises:
            UnavailableError: If the connection cannot be re-established.
            psycopg.Error: If any query fails; no partial snapshot is built
                and the remaining queries are cancelled.
        """
        await self.ensure_connection()

        tasks = [
            asyncio.ensure_future(query)
            for query in (
                self.get_user_count(),
                self.get_active_users(INTERVAL_DAILY),
                self.get_active_users(INTERVAL_WEEKLY),
                self.get_active_users(INTERVAL_MONTHLY),
                self.get_notes_count(),
                self.get_recent_notes(INTERVAL_DAILY),
                self.get_federated_instances_count(),
                self.get_remote_users_count(),
                self.get_connection_count(),
                self.get_database_size(),
            )
        ]

        try:
            (
                total_users,
                daily_active,
                weekly_active,
                monthly_active,
                total_notes,
                daily_notes,
                instances,
                remote_users,
                connections,
                size_bytes,
            ) = await asyncio.gather(*tasks)
        except BaseException:
            # No query of a failed cycle may outlive it
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        return MetricsSnapshot(
            total_users=total_users,
            active_users=ActiveUsers(
                daily=daily_active,
                weekly=weekly_active,
                monthly=monthly_active,
            ),
            total_notes=total_notes,
            recent_notes=RecentNotes(daily=daily_notes),
            federation=FederationCounts(
                instances=instances,
                remote_users=remote_users,
            ),
            database=DatabaseStats(
                connections=connections,
                size_bytes=size_bytes,
            ),
        )
