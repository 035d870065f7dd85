"""
Tests for the PostgreSQL profile store.

Uses a fake pool so no database is required; asyncpg supplies the real
exception classes being mapped.
"""

import asyncio
from datetime import datetime, timezone

import asyncpg
import pytest

from authsession.core.config import ProfileStoreConfig
from authsession.core.errors import (
    ErrorCode,
    TransientBackendError,
    UnexpectedError,
    ValidationError,
)
from authsession.core.types import Profile, ProfilePatch
from authsession.gateways.postgres import PostgresProfileStore, classify_pg_error


class _FakeConnection:
    def __init__(self, row=None, error=None):
        self.row = row
        self.error = error
        self.queries = []

    async def fetchrow(self, query, *args):
        self.queries.append((query, args))
        if self.error is not None:
            raise self.error
        return self.row

    async def execute(self, query, *args):
        self.queries.append((query, args))
        if self.error is not None:
            raise self.error
        return "OK"


class _Acquire:
    def __init__(self, conn):
        self._conn = conn

    async def __aenter__(self):
        return self._conn

    async def __aexit__(self, *args):
        return False


class _FakePool:
    def __init__(self, conn):
        self.conn = conn
        self.closed = False

    def acquire(self):
        return _Acquire(self.conn)

    async def close(self):
        self.closed = True


def _store(row=None, error=None):
    pool = _FakePool(_FakeConnection(row=row, error=error))
    return PostgresProfileStore(ProfileStoreConfig(), pool), pool


PROFILE = Profile(
    id="u-1",
    full_name="Ada",
    phone_number="+216",
    email="ada@example.com",
    created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
)


class TestClassifyPgError:
    """Tests for asyncpg failure mapping."""

    def test_connection_failures_are_transient(self):
        for error in (
            ConnectionRefusedError(),
            asyncio.TimeoutError(),
            asyncpg.PostgresConnectionError("connection lost"),
            asyncpg.TooManyConnectionsError("too many clients"),
        ):
            assert isinstance(classify_pg_error(error, "fetch_profile"), TransientBackendError)

    def test_check_violation_is_validation(self):
        error = asyncpg.CheckViolationError("violates check constraint")
        error.constraint_name = "users_phone_number_check"

        mapped = classify_pg_error(error, "insert_profile")

        assert isinstance(mapped, ValidationError)
        assert mapped.code is ErrorCode.VALIDATION_REJECTED_BY_STORE
        assert mapped.context["constraint"] == "users_phone_number_check"

    def test_other_errors_unexpected(self):
        mapped = classify_pg_error(asyncpg.UndefinedTableError("relation does not exist"), "fetch_profile")
        assert isinstance(mapped, UnexpectedError)


class TestPostgresProfileStore:
    """Tests for queries issued through the pool."""

    def test_rejects_unsafe_table_name(self):
        with pytest.raises(ValueError):
            PostgresProfileStore(ProfileStoreConfig(table="users; DROP TABLE users"), _FakePool(None))

    def test_fetch_returns_profile(self):
        store, pool = _store(row=PROFILE.to_row())

        result = asyncio.run(store.fetch_profile("u-1"))

        assert result.unwrap() == PROFILE
        query, args = pool.conn.queries[0]
        assert "FROM users WHERE id = $1" in query
        assert args == ("u-1",)

    def test_fetch_missing_row(self):
        store, _ = _store(row=None)
        assert asyncio.run(store.fetch_profile("u-1")).unwrap() is None

    def test_fetch_connection_failure(self):
        store, _ = _store(error=ConnectionResetError())
        result = asyncio.run(store.fetch_profile("u-1"))
        assert isinstance(result.error, TransientBackendError)

    def test_insert_is_upsert(self):
        store, pool = _store()

        assert asyncio.run(store.insert_profile(PROFILE)).is_ok()

        query, args = pool.conn.queries[0]
        assert "ON CONFLICT (id) DO UPDATE" in query
        assert args[0] == "u-1"

    def test_insert_unique_violation_is_success(self):
        store, _ = _store(error=asyncpg.UniqueViolationError("duplicate key"))
        assert asyncio.run(store.insert_profile(PROFILE)).is_ok()

    def test_insert_check_violation(self):
        store, _ = _store(error=asyncpg.CheckViolationError("violates check constraint"))
        result = asyncio.run(store.insert_profile(PROFILE))
        assert isinstance(result.error, ValidationError)

    def test_update_builds_set_clause(self):
        store, pool = _store()

        patch = ProfilePatch(full_name="Ada King", phone_number="+33")
        assert asyncio.run(store.update_profile("u-1", patch)).is_ok()

        query, args = pool.conn.queries[0]
        assert query == "UPDATE users SET full_name = $2, phone_number = $3 WHERE id = $1"
        assert args == ("u-1", "Ada King", "+33")

    def test_update_empty_patch(self):
        store, pool = _store()
        result = asyncio.run(store.update_profile("u-1", ProfilePatch()))
        assert result.error.code is ErrorCode.VALIDATION_EMPTY_PATCH
        assert pool.conn.queries == []

    def test_close_releases_pool(self):
        store, pool = _store()

        async def scenario():
            async with store:
                pass

        asyncio.run(scenario())
        assert pool.closed

    def test_closed_store_reports_error(self):
        store, _ = _store()

        async def scenario():
            await store.close()
            return await store.fetch_profile("u-1")

        result = asyncio.run(scenario())
        assert isinstance(result.error, UnexpectedError)
