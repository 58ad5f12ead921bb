"""Cassandra-backed store for user activity events."""
from __future__ import annotations

import logging
import re
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Iterator, List, Optional
from uuid import UUID, uuid4

import pydantic
from cassandra import ConsistencyLevel, DriverException
from cassandra.auth import PlainTextAuthProvider
from cassandra.cluster import EXEC_PROFILE_DEFAULT, Cluster, ExecutionProfile, NoHostAvailable
from cassandra.policies import DCAwareRoundRobinPolicy, TokenAwarePolicy
from cassandra.protocol import ErrorMessage

from ..config import Settings, load_settings
from ..errors import ClusterConnectionError, ReadError, SchemaError, ValidationError, WriteError
from ..models.activity import ActivityRecord, normalize_timestamp, to_utc

LOGGER = logging.getLogger(__name__)

TABLE_NAME = "user_activities"
SECONDS_PER_DAY = 86400
# Largest TTL Cassandra accepts (20 years).
MAX_TTL_SECONDS = 630720000

# Unquoted CQL identifiers fold to lower case; set_keyspace quotes the name,
# so only names that survive folding unchanged are accepted.
_KEYSPACE_PATTERN = re.compile(r"^[a-z][a-z0-9_]{0,47}$")
_DRIVER_ERRORS = (DriverException, NoHostAvailable, ErrorMessage)

KEYSPACE_DDL = (
    "CREATE KEYSPACE IF NOT EXISTS {keyspace} "
    "WITH replication = {{'class': 'NetworkTopologyStrategy', '{datacenter}': {factor}}}"
)

TABLE_DDL = f"""
CREATE TABLE IF NOT EXISTS {TABLE_NAME} (
    user_id UUID,
    timestamp TIMESTAMP,
    activity_id UUID,
    activity_type TEXT,
    PRIMARY KEY ((user_id), timestamp, activity_id)
) WITH CLUSTERING ORDER BY (timestamp DESC, activity_id ASC)
"""

INSERT_CQL = (
    f"INSERT INTO {TABLE_NAME} (user_id, timestamp, activity_id, activity_type) "
    "VALUES (?, ?, ?, ?) USING TTL ?"
)
RECENT_CQL = (
    f"SELECT user_id, timestamp, activity_id, activity_type FROM {TABLE_NAME} "
    "WHERE user_id = ? LIMIT ?"
)
RANGE_CQL = (
    f"SELECT user_id, timestamp, activity_id, activity_type FROM {TABLE_NAME} "
    "WHERE user_id = ? AND timestamp >= ? AND timestamp <= ?"
)


def validate_keyspace(name: str) -> str:
    if not isinstance(name, str) or not _KEYSPACE_PATTERN.match(name):
        raise ValidationError(f"Invalid keyspace name: {name!r}")
    return name


def coerce_user_id(value: Any) -> UUID:
    if isinstance(value, UUID):
        return value
    if isinstance(value, str):
        try:
            return UUID(value)
        except ValueError:
            pass
    raise ValidationError(f"user_id must be a UUID, got {value!r}")


def coerce_timestamp(value: Any, name: str) -> datetime:
    if not isinstance(value, datetime):
        raise ValidationError(f"{name} must be a datetime, got {value!r}")
    return normalize_timestamp(value)


def coerce_count(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{name} must be an integer, got {value!r}")
    if value < 0:
        raise ValidationError(f"{name} must not be negative")
    return value


def build_cluster(
    endpoint: str,
    settings: Settings,
    cluster_factory: Callable[..., Any] = Cluster,
) -> Any:
    profile = ExecutionProfile(
        load_balancing_policy=TokenAwarePolicy(
            DCAwareRoundRobinPolicy(local_dc=settings.local_datacenter)
        ),
        consistency_level=ConsistencyLevel.QUORUM,
        request_timeout=settings.request_timeout,
    )
    auth_provider = None
    if settings.username:
        auth_provider = PlainTextAuthProvider(username=settings.username, password=settings.password or "")
    return cluster_factory(
        contact_points=[endpoint],
        port=settings.port,
        execution_profiles={EXEC_PROFILE_DEFAULT: profile},
        auth_provider=auth_provider,
        connect_timeout=settings.connect_timeout,
    )


class ActivityStore:
    """Owns the cluster session, the activity schema and the prepared queries.

    The driver session is safe to share between threads, so one store is
    opened per process and passed to whoever needs it.
    """

    def __init__(self, cluster: Any, session: Any, *, keyspace: str, default_ttl_days: int = 30) -> None:
        self._cluster = cluster
        self._session = session
        self._keyspace = keyspace
        self._default_ttl_days = default_ttl_days
        self._closed = False
        self._insert = None
        self._recent = None
        self._range = None

    @classmethod
    def initialize(
        cls,
        endpoint: Optional[str] = None,
        keyspace: Optional[str] = None,
        *,
        settings: Optional[Settings] = None,
        cluster_factory: Callable[..., Any] = Cluster,
    ) -> "ActivityStore":
        settings = settings or load_settings()
        endpoint = endpoint or settings.contact_point
        keyspace = validate_keyspace(keyspace or settings.keyspace)

        LOGGER.info("Connecting to %s:%s (dc=%s)", endpoint, settings.port, settings.local_datacenter)
        cluster = None
        try:
            cluster = build_cluster(endpoint, settings, cluster_factory)
            session = cluster.connect()
        except _DRIVER_ERRORS as exc:
            LOGGER.error("Cluster at %s is unreachable: %s", endpoint, exc)
            if cluster is not None:
                cluster.shutdown()
            raise ClusterConnectionError(f"Could not connect to {endpoint}:{settings.port}") from exc

        store = cls(cluster, session, keyspace=keyspace, default_ttl_days=settings.default_ttl_days)
        try:
            store._ensure_schema(settings.local_datacenter, settings.replication_factor)
            store._prepare_statements()
        except BaseException:
            store.shutdown()
            raise
        LOGGER.info("Activity store ready (keyspace=%s, table=%s)", keyspace, TABLE_NAME)
        return store

    def _ensure_schema(self, datacenter: str, replication_factor: int) -> None:
        keyspace_ddl = KEYSPACE_DDL.format(
            keyspace=self._keyspace,
            datacenter=datacenter.replace("'", "''"),
            factor=int(replication_factor),
        )
        try:
            self._session.execute(keyspace_ddl)
            self._session.set_keyspace(self._keyspace)
            self._session.execute(TABLE_DDL)
        except _DRIVER_ERRORS as exc:
            LOGGER.error("Schema creation rejected for keyspace %s: %s", self._keyspace, exc)
            raise SchemaError(f"Could not create schema in keyspace {self._keyspace}") from exc

    def _prepare_statements(self) -> None:
        try:
            self._insert = self._session.prepare(INSERT_CQL)
            self._recent = self._session.prepare(RECENT_CQL)
            self._range = self._session.prepare(RANGE_CQL)
        except _DRIVER_ERRORS as exc:
            LOGGER.error("Statement preparation failed: %s", exc)
            raise SchemaError("Could not prepare activity statements") from exc
        for statement in (self._insert, self._recent, self._range):
            statement.consistency_level = ConsistencyLevel.QUORUM

    @property
    def keyspace(self) -> str:
        return self._keyspace

    @property
    def closed(self) -> bool:
        return self._closed

    def record_activity(
        self,
        user_id: UUID,
        activity_type: str,
        timestamp: datetime,
        ttl_days: Optional[int] = None,
    ) -> ActivityRecord:
        """Write one activity at QUORUM and return the stored record.

        A ``ttl_days`` of zero means the record is already expired, so it is
        not written at all (CQL would read ``USING TTL 0`` as "never expire").
        """

        ttl_days = self._default_ttl_days if ttl_days is None else ttl_days
        ttl_seconds = self._ttl_seconds(ttl_days)
        if not isinstance(activity_type, str) or not activity_type:
            raise ValidationError("activity_type must be a non-empty string")
        try:
            record = ActivityRecord(
                user_id=coerce_user_id(user_id),
                timestamp=coerce_timestamp(timestamp, "timestamp"),
                activity_id=uuid4(),
                activity_type=activity_type,
            )
        except pydantic.ValidationError as exc:
            raise ValidationError(f"Invalid activity for user {user_id!r}: {exc}") from exc
        if ttl_seconds == 0:
            LOGGER.debug("Skipping write of expired activity %s for %s", record.activity_id, user_id)
            return record

        try:
            self._session.execute(
                self._insert,
                (record.user_id, record.timestamp, record.activity_id, record.activity_type, ttl_seconds),
            )
        except _DRIVER_ERRORS as exc:
            LOGGER.error("Write of activity for %s failed: %s", user_id, exc)
            raise WriteError(f"Could not record activity for user {user_id}") from exc
        LOGGER.debug("Recorded %s for %s at %s", activity_type, user_id, record.timestamp)
        return record

    def get_recent_activities(self, user_id: UUID, limit: int) -> List[ActivityRecord]:
        user_id = coerce_user_id(user_id)
        limit = coerce_count(limit, "limit")
        if limit == 0:
            return []
        return self._fetch(self._recent, (user_id, limit), user_id)

    def get_activities_in_time_range(self, user_id: UUID, start: datetime, end: datetime) -> List[ActivityRecord]:
        user_id = coerce_user_id(user_id)
        lower = coerce_timestamp(start, "start")
        upper = coerce_timestamp(end, "end")
        if to_utc(start) > to_utc(end):
            raise ValidationError(f"start {start.isoformat()} is after end {end.isoformat()}")
        return self._fetch(self._range, (user_id, lower, upper), user_id)

    def _fetch(self, statement: Any, params: tuple, user_id: UUID) -> List[ActivityRecord]:
        try:
            rows = list(self._session.execute(statement, params))
        except _DRIVER_ERRORS as exc:
            LOGGER.error("Read of activities for %s failed: %s", user_id, exc)
            raise ReadError(f"Could not read activities for user {user_id}") from exc
        return [ActivityRecord.from_row(row) for row in rows]

    @staticmethod
    def _ttl_seconds(ttl_days: int) -> int:
        seconds = coerce_count(ttl_days, "ttl_days") * SECONDS_PER_DAY
        if seconds > MAX_TTL_SECONDS:
            raise ValidationError(f"ttl_days={ttl_days} exceeds the maximum TTL of {MAX_TTL_SECONDS} seconds")
        return seconds

    def shutdown(self) -> None:
        if self._closed:
            return
        self._closed = True
        LOGGER.info("Shutting down activity store")
        self._cluster.shutdown()

    def __enter__(self) -> "ActivityStore":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.shutdown()


@contextmanager
def open_activity_store(
    endpoint: Optional[str] = None,
    keyspace: Optional[str] = None,
    **kwargs: Any,
) -> Iterator[ActivityStore]:
    store = ActivityStore.initialize(endpoint, keyspace, **kwargs)
    try:
        yield store
    finally:
        store.shutdown()
