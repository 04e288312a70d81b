"""
Idempotent Payments Example

Run: python -m examples.idempotency_payments.main
"""

import asyncio
import tempfile
import uuid
from pathlib import Path

from returns.result import Failure, Result, Success

from examples._infra import banner, run
from examples.idempotency_payments.db import create_database
from examples.idempotency_payments.domain import OrderError, OrderResponse
from examples.idempotency_payments.service import (
    CreateOrderRequest,
    PaymentProvider,
    PaymentService,
)


def new_key() -> str:
    return f"order_{uuid.uuid4().hex[:8]}"


def show(result: Result[OrderResponse, OrderError]) -> None:
    match result:
        case Success(response):
            print(f"   {response.status}: {response.body}")
        case Failure(error):
            print(f"   Error: {error.code} ({error.message})")


async def main() -> None:
    banner("Idempotent Payments")

    with tempfile.TemporaryDirectory() as tmp:
        url = f"sqlite+aiosqlite:///{Path(tmp) / 'payments.db'}"
        session_factory, engine = await create_database(url)
        provider = PaymentProvider(declined_customers=frozenset({"cust_broke"}))
        service = PaymentService(session_factory, provider)

        try:
            # 1. First request
            print("1. First request:")
            req = CreateOrderRequest(new_key(), customer_id="cust_123", amount_cents=9999)
            show(await service.create_order(req))
            print(f"   Provider calls: {provider.call_count}\n")

            # 2. Retry (replayed)
            print("2. Retry (replayed):")
            show(await service.create_order(req))
            print(f"   Provider calls: {provider.call_count} (no new call!)\n")

            # 3. Same key, different amount
            print("3. Key reused for another amount:")
            show(await service.create_order(
                CreateOrderRequest(req.idempotency_key, customer_id="cust_123", amount_cents=1)
            ))

            # 4. Declined card: failure response stored and replayed
            print("\n4. Declined card, twice:")
            declined = CreateOrderRequest(new_key(), customer_id="cust_broke", amount_cents=500)
            show(await service.create_order(declined))
            show(await service.create_order(declined))

            # 5. Concurrent requests with one key
            print("\n5. Concurrent (5 requests):")
            concurrent = CreateOrderRequest(new_key(), customer_id="cust_456", amount_cents=19999)
            before = provider.call_count
            results = await asyncio.gather(
                *(service.create_order(concurrent) for _ in range(5))
            )
            for result in results:
                show(result)
            print(f"   Provider calls: {provider.call_count - before} (at most 1!)\n")

            print(f"Summary: {provider.call_count} provider calls")
            print(f"Stale locks released: {await service.release_stale()}")

        finally:
            await engine.dispose()


if __name__ == "__main__":
    run(main, log_level="WARNING")
