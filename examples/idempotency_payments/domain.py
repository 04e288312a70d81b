"""Domain models."""

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Order:
    id: int
    customer_id: str
    amount_cents: int
    currency: str
    transaction_id: str


@dataclass(frozen=True, slots=True)
class OrderResponse:
    """What the API returns; also what a retry replays."""

    status: int
    body: str


@dataclass(frozen=True, slots=True)
class OrderError:
    code: str
    message: str


class OrderErrors:
    @staticmethod
    def in_progress(msg: str) -> OrderError:
        return OrderError("IN_PROGRESS", msg)

    @staticmethod
    def mismatch(msg: str) -> OrderError:
        return OrderError("MISMATCH", msg)
