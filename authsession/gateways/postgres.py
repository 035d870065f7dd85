"""
PostgreSQL Profile Store: asyncpg-backed ProfileStore

Provides the relational profile store adapter with:
- Connection pooling via asyncpg
- Upsert on id for profile inserts (an existing row is not an error)
- Boundary normalization of asyncpg failures into the error taxonomy

Error mapping:
    connection / interface / timeout / serialization → TransientBackendError
    check / not-null constraint violation            → ValidationError
    unique violation on insert                       → success (row exists)
    anything else                                    → UnexpectedError
"""

from __future__ import annotations

import asyncio
import logging
import re
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

import asyncpg

from authsession.core.config import ProfileStoreConfig
from authsession.core.errors import (
    AuthSessionError,
    TransientBackendError,
    UnexpectedError,
    ValidationError,
)
from authsession.core.types import Err, Ok, Profile, ProfilePatch, Result

logger = logging.getLogger(__name__)

_TABLE_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")

_TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
    asyncpg.PostgresConnectionError,
    asyncpg.InterfaceError,
    asyncpg.CannotConnectNowError,
    asyncpg.TooManyConnectionsError,
    asyncpg.SerializationError,
    asyncpg.DeadlockDetectedError,
    ConnectionError,
    OSError,
    asyncio.TimeoutError,
)

_REJECTION_ERRORS: tuple[type[BaseException], ...] = (
    asyncpg.CheckViolationError,
    asyncpg.NotNullViolationError,
)


def classify_pg_error(error: BaseException, operation: str) -> AuthSessionError:
    """Normalize an asyncpg/transport failure into the error taxonomy."""
    if isinstance(error, _TRANSIENT_ERRORS):
        return TransientBackendError.unreachable(operation, cause=error)
    if isinstance(error, _REJECTION_ERRORS):
        constraint = getattr(error, "constraint_name", None) or "unknown"
        return ValidationError.rejected_by_store(constraint, cause=error)
    return UnexpectedError.wrap(operation, error)


class PostgresProfileStore:
    """
    Profile store over a PostgreSQL `users` table.

    Columns: id, full_name, phone_number, email, created_at.

    Usage:
        result = await PostgresProfileStore.create(config)
        if result.is_ok():
            async with result.unwrap() as store:
                profile = await store.fetch_profile(identity.id)
    """

    __slots__ = ("_config", "_pool", "_table", "_closed")

    def __init__(self, config: ProfileStoreConfig, pool: Any) -> None:
        if not _TABLE_NAME.match(config.table):
            raise ValueError(f"Invalid table name: {config.table!r}")
        self._config = config
        self._pool = pool
        self._table = config.table
        self._closed = False

    @classmethod
    async def create(
        cls,
        config: ProfileStoreConfig,
    ) -> Result[PostgresProfileStore, AuthSessionError]:
        """
        Factory method to create the pool and validate connectivity.
        """
        try:
            pool = await asyncpg.create_pool(
                host=config.host,
                port=config.port,
                database=config.database,
                user=config.user,
                password=config.password,
                min_size=config.pool_min,
                max_size=config.pool_max,
                command_timeout=config.query_timeout_ms / 1000,
            )
            async with pool.acquire() as conn:
                await conn.execute("SELECT 1")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            return Err(classify_pg_error(e, "connect"))

        logger.info(
            "Profile store initialized",
            extra={"dsn": config.dsn, "table": config.table},
        )
        return Ok(cls(config, pool))

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[Any]:
        if self._closed:
            raise RuntimeError("Profile store is closed")
        async with self._pool.acquire() as conn:
            yield conn

    async def fetch_profile(self, profile_id: str) -> Result[Optional[Profile], AuthSessionError]:
        query = (
            f"SELECT id, full_name, phone_number, email, created_at "
            f"FROM {self._table} WHERE id = $1"
        )
        try:
            async with self._connection() as conn:
                row = await conn.fetchrow(query, profile_id)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            return Err(classify_pg_error(e, "fetch_profile"))

        if row is None:
            return Ok(None)
        return Ok(Profile.from_row(dict(row)))

    async def insert_profile(self, profile: Profile) -> Result[None, AuthSessionError]:
        query = f"""
            INSERT INTO {self._table} (id, full_name, phone_number, email, created_at)
            VALUES ($1, $2, $3, $4, $5)
            ON CONFLICT (id) DO UPDATE SET
                full_name = EXCLUDED.full_name,
                phone_number = EXCLUDED.phone_number,
                email = EXCLUDED.email;
        """
        try:
            async with self._connection() as conn:
                await conn.execute(
                    query,
                    profile.id,
                    profile.full_name,
                    profile.phone_number,
                    profile.email,
                    profile.created_at,
                )
        except asyncio.CancelledError:
            raise
        except asyncpg.UniqueViolationError:
            # A concurrent insert already created the row.
            logger.info(f"Profile {profile.id} already exists, continuing")
            return Ok(None)
        except Exception as e:
            return Err(classify_pg_error(e, "insert_profile"))
        return Ok(None)

    async def update_profile(
        self,
        profile_id: str,
        patch: ProfilePatch,
    ) -> Result[None, AuthSessionError]:
        changes = patch.changes()
        if not changes:
            return Err(ValidationError.empty_patch())

        columns = list(changes)
        assignments = ", ".join(f"{col} = ${i + 2}" for i, col in enumerate(columns))
        query = f"UPDATE {self._table} SET {assignments} WHERE id = $1"
        try:
            async with self._connection() as conn:
                await conn.execute(query, profile_id, *(changes[c] for c in columns))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            return Err(classify_pg_error(e, "update_profile"))
        return Ok(None)

    async def close(self) -> None:
        """Close connection pool and release resources."""
        if self._closed:
            return
        self._closed = True
        await self._pool.close()
        logger.info("Profile store closed")

    async def __aenter__(self) -> PostgresProfileStore:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()
