"""Tests for MemoryStore.

Tests cover:
- Unique keys (create → Conflict)
- Fresh instances on every read
- Transaction commit and rollback, including side storage
- Releasing old locks
"""

from datetime import timedelta

import pytest
from returns.result import Success

from encore.idempotency import (
    Conflict,
    Created,
    Isolation,
    MemoryStore,
    RequestRecord,
)
from tests.conftest import NOW


def make_record(key="key-1", locked_at=NOW, **kwargs):
    return RequestRecord(
        idempotency_key=key,
        locked_at=locked_at,
        created_at=NOW,
        updated_at=NOW,
        **kwargs,
    )


# =============================================================================
# Tests: create() / get() / update()
# =============================================================================


class TestCreate:
    """Tests for record insertion."""

    async def test_create_new_key(self, memory_store):
        """First insert for a key is Created with the same instance."""
        record = make_record()

        outcome = await memory_store.create(record)

        assert outcome == Created(record)
        assert outcome.record is record
        assert len(memory_store) == 1

    async def test_duplicate_key_conflicts(self, memory_store):
        """Second insert for a key is a Conflict."""
        await memory_store.create(make_record())

        outcome = await memory_store.create(make_record(request_path="other"))

        assert outcome == Conflict("key-1")
        assert len(memory_store) == 1

    async def test_get_returns_fresh_instance(self, memory_store):
        """Reads never hand out the stored object."""
        record = make_record()
        await memory_store.create(record)

        first = await memory_store.get("key-1")
        second = await memory_store.get("key-1")

        assert first == record
        assert first is not record
        assert first is not second

    async def test_get_missing(self, memory_store):
        """Unknown keys read as None."""
        assert await memory_store.get("missing") is None

    async def test_update_partial(self, memory_store):
        """update() only touches the given columns."""
        record = make_record(request_path="POST /a")
        await memory_store.create(record)

        await memory_store.update(record, {"response_code": "201", "locked_at": None})

        stored = await memory_store.get("key-1")
        assert stored.response_code == "201"
        assert stored.locked_at is None
        assert stored.request_path == "POST /a"

    async def test_update_missing_raises(self, memory_store):
        """Updating a row that was never created is a fault."""
        with pytest.raises(LookupError):
            await memory_store.update(make_record("ghost"), {"locked_at": None})


# =============================================================================
# Tests: transaction()
# =============================================================================


class TestTransaction:
    """Tests for transactional bodies."""

    async def test_commit(self, memory_store):
        """A returning body commits rows and side data."""
        record = make_record()
        await memory_store.create(record)

        async def body(tx):
            await tx.update(record, {"response_code": "200"})
            tx.data["charge"] = 100
            return "done"

        result = await memory_store.transaction(Isolation.DEFAULT, body)

        assert result == Success("done")
        assert (await memory_store.get("key-1")).response_code == "200"
        assert memory_store.data == {"charge": 100}

    async def test_rollback_on_exception(self, memory_store):
        """A raising body leaves no trace and the error propagates."""
        record = make_record()
        await memory_store.create(record)

        async def body(tx):
            await tx.update(record, {"response_code": "200"})
            tx.data["charge"] = 100
            raise RuntimeError("card declined")

        with pytest.raises(RuntimeError, match="card declined"):
            await memory_store.transaction(Isolation.SERIALIZABLE, body)

        assert (await memory_store.get("key-1")).response_code is None
        assert memory_store.data == {}

    async def test_find_one_unlocked_filter(self, memory_store):
        """unlocked=True hides locked rows."""
        await memory_store.create(make_record("locked"))
        await memory_store.create(make_record("idle", locked_at=None))

        async def body(tx):
            return (
                await tx.find_one("locked"),
                await tx.find_one("locked", unlocked=True),
                await tx.find_one("idle", unlocked=True),
                await tx.find_one("missing"),
            )

        match await memory_store.transaction(Isolation.SERIALIZABLE, body):
            case Success((locked, hidden, idle, missing)):
                assert locked.idempotency_key == "locked"
                assert hidden is None
                assert idle.idempotency_key == "idle"
                assert missing is None
            case other:
                pytest.fail(f"unexpected result: {other}")

    async def test_update_unlocked_skips_locked_row(self, memory_store):
        """unlocked=True writes only rows without a lock token."""
        locked = make_record("locked")
        idle = make_record("idle", locked_at=None)
        await memory_store.create(locked)
        await memory_store.create(idle)
        later = NOW + timedelta(seconds=5)

        async def body(tx):
            return (
                await tx.update(locked, {"locked_at": later}, unlocked=True),
                await tx.update(idle, {"locked_at": later}, unlocked=True),
            )

        result = await memory_store.transaction(Isolation.SERIALIZABLE, body)

        assert result == Success((False, True))
        assert (await memory_store.get("locked")).locked_at == NOW
        assert (await memory_store.get("idle")).locked_at == later


# =============================================================================
# Tests: release_locks()
# =============================================================================


class TestReleaseLocks:
    """Tests for the stale lock sweep."""

    async def test_releases_only_older_locks(self, memory_store):
        """Locks at or after the cutoff are kept."""
        await memory_store.create(make_record("old", locked_at=NOW - timedelta(hours=1)))
        await memory_store.create(make_record("fresh", locked_at=NOW))
        await memory_store.create(make_record("idle", locked_at=None))

        released = await memory_store.release_locks(NOW - timedelta(minutes=1))

        assert released == 1
        assert (await memory_store.get("old")).locked_at is None
        assert (await memory_store.get("fresh")).locked_at == NOW
