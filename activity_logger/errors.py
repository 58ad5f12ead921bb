"""Errors raised by the activity store."""
from __future__ import annotations


class ActivityStoreError(Exception):
    """Base class for every activity store failure."""


class ClusterConnectionError(ActivityStoreError, ConnectionError):
    """The cluster could not be reached while opening the store."""


class SchemaError(ActivityStoreError):
    """Keyspace/table creation or statement preparation was rejected."""


class WriteError(ActivityStoreError):
    """A write did not reach quorum or timed out."""


class ReadError(ActivityStoreError):
    """A read did not reach quorum or timed out."""


class ValidationError(ActivityStoreError, ValueError):
    """Caller supplied malformed input."""
