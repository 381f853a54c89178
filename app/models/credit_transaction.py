import uuid
from datetime import datetime
from typing import Literal

from beanie import Document
from pydantic import Field
from pymongo import ASCENDING, DESCENDING, IndexModel

TransactionType = Literal[
    "purchase",
    "premium_service",
    "boost",
    "payout",
    "refund",
    "bonus",
    "earnings_conversion",
    "auto_renewal",
    "mission",
]


class CreditTransaction(Document):
    owner_id: str
    seq: int  # 1-based position in the owner's log
    amount: int  # positive = credit, negative = debit
    balance_after: int
    type: TransactionType
    description: str = ""
    reference_id: str | None = None  # profile_id, payment_id, debit transaction id, ...
    # one log entry per key and owner: purchase:<payment>, refund:<debit>, activation:boost:<boost>, ...
    idempotency_key: str = Field(default_factory=lambda: f"tx:{uuid.uuid4().hex}")
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "credit_transactions"
        indexes = [
            IndexModel([("owner_id", ASCENDING), ("seq", ASCENDING)], unique=True),
            IndexModel([("owner_id", ASCENDING), ("created_at", DESCENDING)]),
            IndexModel([("owner_id", ASCENDING), ("type", ASCENDING), ("reference_id", ASCENDING)]),
            IndexModel(
                [("owner_id", ASCENDING), ("idempotency_key", ASCENDING)],
                unique=True,
                name="uniq_idempotency_key",
            ),
            IndexModel([("type", ASCENDING), ("created_at", ASCENDING)]),
        ]
