"""
Cloud State Readers

Read-only query interface over the resources a gate inspects.
"""

from .base import (
    CallerIdentity,
    CloudQueryError,
    CloudStateReader,
    CredentialsUnavailableError,
    DatabaseFacts,
    IngressRule,
    InstanceFacts,
    RouteTable,
    SecretMetadata,
)
from .snapshot import SnapshotError, SnapshotStateReader

__all__ = [
    "CloudStateReader",
    "CloudQueryError",
    "CredentialsUnavailableError",
    "CallerIdentity",
    "SecretMetadata",
    "InstanceFacts",
    "DatabaseFacts",
    "IngressRule",
    "RouteTable",
    "SnapshotStateReader",
    "SnapshotError",
]
