"""
Pytest configuration for the Misskey exporter tests.
"""

from __future__ import annotations

from unittest import mock

import pytest

from misskey_exporter.collector import MetricsCollector
from misskey_exporter.models import (
    ActiveUsers,
    DatabaseStats,
    FederationCounts,
    InstanceMeta,
    MetricsSnapshot,
    RecentNotes,
    ServerStats,
)

# Configure pytest-asyncio mode
pytest_plugins = ["pytest_asyncio"]


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers",
        "integration: marks tests as integration tests (deselect with '-m \"not integration\"')",
    )


# =============================================================================
# Shared Fixtures
# =============================================================================


@pytest.fixture
def snapshot() -> MetricsSnapshot:
    """A representative store snapshot."""
    return MetricsSnapshot(
        total_users=100,
        active_users=ActiveUsers(daily=10, weekly=50, monthly=80),
        total_notes=1000,
        recent_notes=RecentNotes(daily=25),
        federation=FederationCounts(instances=50, remote_users=500),
        database=DatabaseStats(connections=5, size_bytes=1048576),
    )


@pytest.fixture
def server_stats() -> ServerStats:
    return ServerStats(notes_count=1000, users_count=100, instances_count=50)


@pytest.fixture
def instance_meta() -> InstanceMeta:
    return InstanceMeta(name="Test Instance", version="13.0.0", node_version="18.0.0")


@pytest.fixture
def collector() -> MetricsCollector:
    """A collector on its own fresh registry."""
    return MetricsCollector()


@pytest.fixture
def mock_database(snapshot: MetricsSnapshot) -> mock.AsyncMock:
    """Store connector double returning the snapshot fixture."""
    database = mock.AsyncMock()
    database.get_all_metrics.return_value = snapshot
    database.get_user_count.return_value = snapshot.total_users
    database.conninfo_for_log = mock.Mock(
        return_value={"host": "localhost", "port": 5432, "dbname": "misskey"}
    )
    return database


@pytest.fixture
def mock_api_client(
    server_stats: ServerStats, instance_meta: InstanceMeta
) -> mock.AsyncMock:
    """API client double returning both responses."""
    api_client = mock.AsyncMock()
    api_client.get_server_stats.return_value = server_stats
    api_client.get_instance_meta.return_value = instance_meta
    api_client.ping.return_value = True
    api_client.base_url = "http://localhost:3000"
    return api_client
