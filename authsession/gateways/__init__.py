"""
Gateways module: Boundaries to the remote identity provider and profile store.

Provides:
- IdentityGateway / ProfileStore: structural protocols consumed by the core
- InMemoryIdentityGateway / InMemoryProfileStore: reference implementations
- PostgresProfileStore: asyncpg-backed relational profile store
"""

from authsession.gateways.protocols import IdentityGateway, ProfileStore
from authsession.gateways.memory import InMemoryIdentityGateway, InMemoryProfileStore
from authsession.gateways.postgres import PostgresProfileStore, classify_pg_error

__all__ = [
    "IdentityGateway",
    "ProfileStore",
    "InMemoryIdentityGateway",
    "InMemoryProfileStore",
    "PostgresProfileStore",
    "classify_pg_error",
]
