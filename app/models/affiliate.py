from datetime import datetime

from beanie import Document, Indexed
from pydantic import Field
from pymongo import ASCENDING, IndexModel


class AffiliateTier(Document):
    name: Indexed(str, unique=True)
    # percentage points added to the base rate of every commission
    commission_rate: float = 0

    class Settings:
        name = "affiliate_tiers"


class Affiliate(Document):
    affiliate_code: Indexed(str, unique=True)
    user_id: str
    status: str = "active"  # active | inactive
    tier_level: str | None = None
    total_earned: float = 0
    paid_out: float = 0
    pending_payout: float = 0
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "affiliates"


class AffiliateReferral(Document):
    affiliate_id: str
    referred_user_id: str
    status: str = "pending"  # pending | converted | paid
    total_transactions: int = 0
    total_revenue_generated: float = 0
    total_commission_earned: float = 0
    first_transaction_at: datetime | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "affiliate_referrals"
        indexes = [
            IndexModel(
                [("affiliate_id", ASCENDING), ("referred_user_id", ASCENDING)],
                unique=True,
            ),
            [("referred_user_id", 1)],
        ]


class AffiliateCommission(Document):
    affiliate_id: str
    referral_id: str
    referred_user_id: str
    transaction_type: str
    transaction_id: str
    transaction_amount: float
    commission_rate: float
    commission_amount: float
    status: str = "approved"
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "affiliate_commissions"
        indexes = [
            # one commission per source transaction
            IndexModel(
                [("transaction_type", ASCENDING), ("transaction_id", ASCENDING)],
                unique=True,
            ),
            [("affiliate_id", 1), ("created_at", -1)],
        ]
