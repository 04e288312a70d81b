"""
Payment Service — one order per idempotency key, driven by the coordinator.
"""

import json
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timezone

from returns.result import Failure, Result, Success
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from encore import idempotency as I
from encore.logging import get_logger

from examples.idempotency_payments.db import IdempotentRequestTable, OrderTable
from examples.idempotency_payments.domain import (
    Order,
    OrderError,
    OrderErrors,
    OrderResponse,
)

logger = get_logger(__name__)

AMOUNT_LIMIT_CENTS = 1_000_000


# ═══════════════════════════════════════════════════════════════════════════════
# Request
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class CreateOrderRequest:
    idempotency_key: str
    customer_id: str
    amount_cents: int
    currency: str = "USD"

    def fingerprint(self) -> I.Fingerprint:
        body = {
            "customer_id": self.customer_id,
            "amount_cents": self.amount_cents,
            "currency": self.currency,
        }
        return I.Fingerprint(path="POST /orders", body=json.dumps(body, sort_keys=True))


# ═══════════════════════════════════════════════════════════════════════════════
# Payment Provider (simulated)
# ═══════════════════════════════════════════════════════════════════════════════


class PaymentDeclined(Exception):
    pass


class PaymentProvider:
    def __init__(self, declined_customers: frozenset[str] = frozenset()) -> None:
        self.call_count = 0
        self._declined = declined_customers

    async def charge(self, amount: int, currency: str, customer: str) -> str:
        self.call_count += 1
        print(f"  [PROVIDER] Charging {amount / 100:.2f} {currency} for {customer}")
        if customer in self._declined:
            raise PaymentDeclined(f"card declined for {customer}")
        return f"ch_{uuid.uuid4().hex[:16]}"


# ═══════════════════════════════════════════════════════════════════════════════
# Payment Service
# ═══════════════════════════════════════════════════════════════════════════════


class PaymentService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        provider: PaymentProvider,
    ) -> None:
        self._provider = provider
        self._coordinator = I.Coordinator(
            I.SQLAlchemyStore(session_factory, model=IdempotentRequestTable),
            I.Policy().with_stale_after(minutes=15),
        )

    async def create_order(self, req: CreateOrderRequest) -> Result[OrderResponse, OrderError]:
        """Create an order at most once per idempotency key."""
        match await self._coordinator.start(req.idempotency_key, req.fingerprint()):
            case Success(record):
                pass
            case Failure(error):
                if error.kind is I.IdempotencyErrorKind.MISMATCH:
                    return Failure(OrderErrors.mismatch(error.message))
                return Failure(OrderErrors.in_progress(error.message))

        record.success_attributes(
            lambda order: I.ResponseAttributes("201", json.dumps(asdict(order)))
        )
        record.failure_attributes(
            lambda exc: I.ResponseAttributes("402", json.dumps({"error": str(exc)}))
        )
        record.saved_response(
            lambda r: OrderResponse(status=int(r.response_code or 500), body=r.response_body or "")
        )

        async def work() -> Result[Order, I.PermanentFailure]:
            if req.amount_cents > AMOUNT_LIMIT_CENTS:
                return await self._coordinator.failure(
                    record,
                    override=I.ResponseAttributes("422", '{"error": "amount over limit"}'),
                )
            return await self._coordinator.success(record, lambda tx: self._place_order(tx, req))

        match await self._coordinator.execute(record, work):
            case Success(I.Executed()):
                return Success(record.replay())
            case Success(I.Replayed(response=response)):
                logger.info("order_replayed", key=req.idempotency_key)
                return Success(response)
            case Failure(error):
                return Failure(OrderError("INTERNAL", str(error)))

    async def release_stale(self) -> int:
        """Periodic job: free keys whose worker died mid-request."""
        return await self._coordinator.release_stale()

    async def _place_order(
        self,
        tx: I.SQLAlchemyTransaction[IdempotentRequestTable],
        req: CreateOrderRequest,
    ) -> Order:
        transaction_id = await self._provider.charge(
            req.amount_cents, req.currency, req.customer_id
        )
        row = OrderTable(
            idempotency_key=req.idempotency_key,
            customer_id=req.customer_id,
            amount_cents=req.amount_cents,
            currency=req.currency,
            transaction_id=transaction_id,
            created_at=datetime.now(timezone.utc),
        )
        tx.session.add(row)
        await tx.session.flush()
        return Order(
            id=row.id,
            customer_id=row.customer_id,
            amount_cents=row.amount_cents,
            currency=row.currency,
            transaction_id=row.transaction_id,
        )
