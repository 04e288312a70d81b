"""Tests for the idempotent() fluent builder."""

from dataclasses import dataclass

import pytest
from returns.result import Failure, Success

from encore.idempotency import (
    Executed,
    Fingerprint,
    IdempotencyErrorKind,
    MemoryStore,
    Replayed,
    ResponseAttributes,
    idempotent,
)


@dataclass(frozen=True)
class ChargeRequest:
    idempotency_key: str
    amount_cents: int
    path: str = "POST /payments"


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def calls():
    return []


@pytest.fixture
def charge(calls):
    """Operation that records each real execution."""

    async def operation(req, tx):
        calls.append(req.idempotency_key)
        if req.amount_cents <= 0:
            raise ValueError("amount must be positive")
        tx.data[req.idempotency_key] = req.amount_cents
        return f"ch_{len(calls)}"

    return operation


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def executor(charge, store, policy):
    return (
        idempotent(charge)
        .key(lambda req: req.idempotency_key)
        .fingerprint(lambda req: Fingerprint(path=req.path, body=str(req.amount_cents)))
        .success_attributes(lambda charge_id: ResponseAttributes("201", charge_id))
        .failure_attributes(lambda exc: ResponseAttributes("422", str(exc)))
        .store(store)
        .policy(policy)
        .build()
    )


# =============================================================================
# Tests: build()
# =============================================================================


class TestBuild:
    """Tests for builder validation."""

    def test_requires_key(self, charge):
        """A key extractor is mandatory."""
        with pytest.raises(ValueError, match="key"):
            idempotent(charge).store(MemoryStore()).build()

    def test_requires_store(self, charge):
        """A store is mandatory."""
        with pytest.raises(ValueError, match="store"):
            idempotent(charge).key(lambda req: req.idempotency_key).build()

    def test_builder_is_immutable(self, charge):
        """Each fluent call returns a new builder."""
        base = idempotent(charge)

        keyed = base.key(lambda req: req.idempotency_key)

        assert keyed is not base
        with pytest.raises(ValueError):
            base.store(MemoryStore()).build()


# =============================================================================
# Tests: run()
# =============================================================================


class TestRun:
    """Tests for executing through the builder."""

    async def test_first_call_executes(self, executor, store, calls):
        """The operation runs and its response is stored."""
        result = await executor.run(ChargeRequest("req-1", 500))

        assert result == Success(Executed("ch_1"))
        assert calls == ["req-1"]
        assert store.data == {"req-1": 500}
        assert (await store.get("req-1")).response_code == "201"

    async def test_retry_replays(self, executor, calls):
        """The same request is not executed twice."""
        await executor.run(ChargeRequest("req-1", 500))

        result = await executor.run(ChargeRequest("req-1", 500))

        match result:
            case Success(Replayed(response=response)):
                assert response == ResponseAttributes("201", "ch_1")
            case _:
                pytest.fail(f"expected Replayed, got {result}")
        assert calls == ["req-1"]

    async def test_different_keys_execute_independently(self, executor, calls):
        """Each key gets its own record."""
        await executor.run(ChargeRequest("req-1", 500))
        await executor.run(ChargeRequest("req-2", 700))

        assert calls == ["req-1", "req-2"]

    async def test_key_reuse_is_mismatch(self, executor, calls):
        """A different payload under the same key is rejected."""
        await executor.run(ChargeRequest("req-1", 500))

        result = await executor.run(ChargeRequest("req-1", 900))

        match result:
            case Failure(error):
                assert error.kind is IdempotencyErrorKind.MISMATCH
            case _:
                pytest.fail(f"expected MISMATCH, got {result}")
        assert calls == ["req-1"]

    async def test_operation_error_is_stored_and_replayed(self, executor, store, calls):
        """A raising operation produces a stored failure response."""
        first = await executor.run(ChargeRequest("req-1", 0))
        second = await executor.run(ChargeRequest("req-1", 0))

        for result in (first, second):
            match result:
                case Success(Replayed(response=response)):
                    assert response == ResponseAttributes("422", "amount must be positive")
                case _:
                    pytest.fail(f"expected Replayed, got {result}")
        assert calls == ["req-1"]
        assert store.data == {}

    async def test_operation_failure_is_stored_and_replayed(self, store, policy):
        """An operation returning Failure is final like a raise; its writes roll back."""

        async def decline(req, tx):
            tx.data[req.idempotency_key] = req.amount_cents
            return Failure("card declined")

        executor = (
            idempotent(decline)
            .key(lambda req: req.idempotency_key)
            .success_attributes(lambda value: ResponseAttributes("201", str(value)))
            .failure_attributes(lambda exc: ResponseAttributes("402", str(exc)))
            .store(store)
            .policy(policy)
            .build()
        )

        first = await executor.run(ChargeRequest("req-1", 500))
        second = await executor.run(ChargeRequest("req-1", 500))

        for result in (first, second):
            assert result.unwrap().response == ResponseAttributes("402", "card declined")
        assert store.data == {}

    async def test_saved_response_shapes_replay(self, charge, store, policy):
        """saved_response builds the replayed value."""
        executor = (
            idempotent(charge)
            .key(lambda req: req.idempotency_key)
            .success_attributes(lambda charge_id: ResponseAttributes("201", charge_id))
            .saved_response(lambda record: (int(record.response_code), record.response_body))
            .store(store)
            .policy(policy)
            .build()
        )
        await executor.run(ChargeRequest("req-1", 500))

        result = await executor.run(ChargeRequest("req-1", 500))

        assert result.unwrap().response == (201, "ch_1")

    async def test_without_fingerprint_never_mismatches(self, charge, store):
        """No fingerprint function means no payload comparison."""
        executor = idempotent(charge).key(lambda req: req.idempotency_key).store(store).build()
        await executor.run(ChargeRequest("req-1", 500))

        result = await executor.run(ChargeRequest("req-1", 900))

        assert isinstance(result, Success)
