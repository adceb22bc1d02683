"""
Prometheus metrics for the Misskey exporter.

MetricsCollector owns its CollectorRegistry instead of registering on the
process-wide default registry, so the sampler and the HTTP layer share
exactly one explicitly passed instance and tests can create fresh ones.

Series names and labels are consumed by existing dashboards and must not
change.
"""

from __future__ import annotations

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from misskey_exporter.models import InstanceMeta, MetricsSnapshot, ServerStats

SCRAPE_DURATION_BUCKETS = (0.1, 0.5, 1, 2, 5)

UNKNOWN_LABEL = "unknown"

# Label values for misskey_exporter_scrape_* series
SOURCE_DATABASE = "database"
SOURCE_API = "api"
SOURCE_GENERAL = "general"


class MetricsCollector:
    """
    Holds every exported series and renders the exposition text.

    Updates are plain gauge sets and counter increments, so a scrape that
    renders concurrently with a sampling cycle sees each series either before
    or after its update.
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        """
        Create all series on the given registry.

        Args:
            registry: Registry to register on; a new one is created if omitted.
        """
        self.registry = registry if registry is not None else CollectorRegistry()

        # User metrics
        self.users_total = Gauge(
            "misskey_users_total",
            "Total number of local users",
            registry=self.registry,
        )
        self.active_users = Gauge(
            "misskey_active_users",
            "Number of active users by period",
            ["period"],
            registry=self.registry,
        )

        # Content metrics
        self.notes_total = Gauge(
            "misskey_notes_total",
            "Total number of notes",
            registry=self.registry,
        )
        self.notes_created = Gauge(
            "misskey_notes_created",
            "Number of notes created by period",
            ["period"],
            registry=self.registry,
        )

        # Federation metrics
        self.federation_instances = Gauge(
            "misskey_federation_instances_total",
            "Number of federated instances",
            registry=self.registry,
        )
        self.federation_remote_users = Gauge(
            "misskey_federation_remote_users_total",
            "Number of remote users",
            registry=self.registry,
        )

        # Database metrics
        self.database_connections = Gauge(
            "misskey_database_connections",
            "Number of database connections",
            registry=self.registry,
        )
        self.database_size = Gauge(
            "misskey_database_size_bytes",
            "Database size in bytes",
            registry=self.registry,
        )

        # API metrics
        self.server_stats = Gauge(
            "misskey_server_stats",
            "Server statistics from Misskey API",
            ["type"],
            registry=self.registry,
        )
        self.instance_info = Gauge(
            "misskey_instance_info",
            "Instance information",
            ["name", "version", "node_version"],
            registry=self.registry,
        )

        # Exporter self-metrics
        self.scrape_duration = Histogram(
            "misskey_exporter_scrape_duration_seconds",
            "Time spent scraping metrics",
            ["source"],
            buckets=SCRAPE_DURATION_BUCKETS,
            registry=self.registry,
        )
        self.scrape_errors = Counter(
            "misskey_exporter_scrape_errors_total",
            "Total number of scrape errors",
            ["source"],
            registry=self.registry,
        )

    def update_database_metrics(self, snapshot: MetricsSnapshot) -> None:
        """Write a complete store snapshot."""
        self.users_total.set(snapshot.total_users)

        self.active_users.labels(period="daily").set(snapshot.active_users.daily)
        self.active_users.labels(period="weekly").set(snapshot.active_users.weekly)
        self.active_users.labels(period="monthly").set(snapshot.active_users.monthly)

        self.notes_total.set(snapshot.total_notes)
        self.notes_created.labels(period="daily").set(snapshot.recent_notes.daily)

        self.federation_instances.set(snapshot.federation.instances)
        self.federation_remote_users.set(snapshot.federation.remote_users)

        self.database_connections.set(snapshot.database.connections)
        self.database_size.set(snapshot.database.size_bytes)

    def update_api_metrics(
        self,
        stats: ServerStats | None,
        meta: InstanceMeta | None,
    ) -> None:
        """
        Write whichever API values arrived.

        Each stats field is applied on its own; a missing field leaves the
        previous value (or no series) in place. The info series is replaced,
        so a version upgrade does not leave the old label set behind.
        """
        if stats is not None:
            for stat_type, value in (
                ("notes", stats.notes_count),
                ("users", stats.users_count),
                ("instances", stats.instances_count),
            ):
                if value is not None:
                    self.server_stats.labels(type=stat_type).set(value)

        if meta is not None:
            self.instance_info.clear()
            self.instance_info.labels(
                name=meta.name or UNKNOWN_LABEL,
                version=meta.version or UNKNOWN_LABEL,
                node_version=meta.node_version or UNKNOWN_LABEL,
            ).set(1)

    def record_scrape_duration(self, source: str, duration_seconds: float) -> None:
        """Observe how long sampling one source took."""
        self.scrape_duration.labels(source=source).observe(duration_seconds)

    def record_scrape_error(self, source: str) -> None:
        """Count a failed sampling of one source."""
        self.scrape_errors.labels(source=source).inc()

    def render(self) -> bytes:
        """Render every series in the Prometheus text format."""
        return generate_latest(self.registry)

    @property
    def content_type(self) -> str:
        """Return the Content-Type of render() output."""
        return CONTENT_TYPE_LATEST
