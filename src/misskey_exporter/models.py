"""
Data models shared between the samplers and the metrics collector.

Store results are immutable dataclasses produced once per cycle. Misskey API
responses are Pydantic models whose fields are all optional: upstream
versions differ in which keys they return, and a missing key must never
prevent the present ones from being exported.
"""

from __future__ import annotations

from dataclasses import dataclass

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

# =============================================================================
# Store Snapshot
# =============================================================================


@dataclass(frozen=True)
class ActiveUsers:
    """Local users active within each reporting period."""

    daily: int
    weekly: int
    monthly: int


@dataclass(frozen=True)
class RecentNotes:
    """Notes created within each reporting period."""

    daily: int


@dataclass(frozen=True)
class FederationCounts:
    """Federation counters."""

    instances: int
    remote_users: int


@dataclass(frozen=True)
class DatabaseStats:
    """PostgreSQL server-side statistics."""

    connections: int
    size_bytes: int


@dataclass(frozen=True)
class MetricsSnapshot:
    """
    One complete set of store values sampled by a single query batch.

    Attributes:
        total_users: Number of local users.
        active_users: Active local users per period.
        total_notes: Number of notes (local and remote).
        recent_notes: Notes created per period.
        federation: Known instances and remote users.
        database: Connection count and database size.
    """

    total_users: int
    active_users: ActiveUsers
    total_notes: int
    recent_notes: RecentNotes
    federation: FederationCounts
    database: DatabaseStats


@dataclass(frozen=True)
class HashtagCount:
    """A hashtag and the number of notes using it."""

    tag: str
    count: int


# =============================================================================
# Misskey API Responses
# =============================================================================


class ServerStats(BaseModel):
    """Response of POST /api/stats."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    notes_count: int | None = Field(default=None, alias="notesCount")
    users_count: int | None = Field(default=None, alias="usersCount")
    instances_count: int | None = Field(
        default=None,
        validation_alias=AliasChoices("instancesCount", "instances", "instances_count"),
    )


class Maintainer(BaseModel):
    """Instance maintainer contact."""

    model_config = ConfigDict(extra="ignore")

    name: str | None = None
    email: str | None = None


class InstanceMeta(BaseModel):
    """Response of POST /api/meta."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str | None = None
    version: str | None = None
    node_version: str | None = Field(default=None, alias="nodeVersion")
    description: str | None = None
    maintainer: Maintainer | None = None
