"""
Idempotency Example — operations execute exactly once per key.

Run: python -m examples.idempotency_example
"""

import asyncio
from dataclasses import dataclass
from typing import Any

from returns.result import Failure, Success

from encore import idempotency as I
from examples._infra import banner, run


# ═══════════════════════════════════════════════════════════════════════════════
# Domain
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class ChargeRequest:
    order_id: str
    amount_cents: int


call_count = 0


async def charge(req: ChargeRequest, tx: I.MemoryTransaction) -> str:
    """Simulate payment API call; the ledger entry commits with the response."""
    global call_count
    call_count += 1
    print(f"  [API] Charging order {req.order_id} (call #{call_count})")
    await asyncio.sleep(0.05)
    if req.amount_cents <= 0:
        raise ValueError("amount must be positive")
    tx.data[req.order_id] = req.amount_cents
    return f"tx_{req.order_id}_{call_count}"


# ═══════════════════════════════════════════════════════════════════════════════
# Idempotent Executor
# ═══════════════════════════════════════════════════════════════════════════════

store = I.MemoryStore()

executor = (
    I.idempotent(charge)
    .key(lambda req: f"payment:{req.order_id}")
    .fingerprint(lambda req: I.Fingerprint(path="POST /charges", body=str(req.amount_cents)))
    .success_attributes(lambda tx_id: I.ResponseAttributes("201", tx_id))
    .failure_attributes(lambda exc: I.ResponseAttributes("422", str(exc)))
    .store(store)
    .policy(I.Policy().with_stale_after(minutes=15))
    .build()
)


def show(result: Any) -> None:
    match result:
        case Success(I.Executed(value)):
            print(f"   executed: tx={value}")
        case Success(I.Replayed(response=response)):
            print(f"   replayed: code={response.code}, body={response.body}")
        case Failure(error):
            print(f"   rejected: {error.kind.name} ({error.message})")


# ═══════════════════════════════════════════════════════════════════════════════
# Demo
# ═══════════════════════════════════════════════════════════════════════════════


async def main() -> None:
    banner("Idempotency")

    # 1. First call: executes
    print("\n1. First call:")
    show(await executor.run(ChargeRequest("order-123", 9999)))
    print(f"   API calls: {call_count}")

    # 2. Retry: replayed
    print("\n2. Retry (same key):")
    show(await executor.run(ChargeRequest("order-123", 9999)))
    print(f"   API calls: {call_count} (no new call!)")

    # 3. Same key, different amount: mismatch
    print("\n3. Key reused with another amount:")
    show(await executor.run(ChargeRequest("order-123", 1)))

    # 4. Failing charge: stored and replayed
    print("\n4. Invalid amount, twice:")
    show(await executor.run(ChargeRequest("order-456", 0)))
    show(await executor.run(ChargeRequest("order-456", 0)))
    print(f"   API calls: {call_count}")

    print(f"\nSummary: {call_count} API calls for 5 requests, ledger={store.data}")


if __name__ == "__main__":
    run(main, log_level="WARNING")
