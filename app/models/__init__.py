from app.models.account import Account
from app.models.credit_transaction import CreditTransaction
from app.models.credit_package import CreditPackage
from app.models.premium_service import PremiumService
from app.models.active_service_grant import ActiveServiceGrant
from app.models.boost import Boost, BoostPackage
from app.models.profile import Profile
from app.models.earnings import Earnings
from app.models.payout_request import PayoutRequest
from app.models.affiliate import Affiliate, AffiliateCommission, AffiliateReferral, AffiliateTier
from app.models.mission import DailyMission, MissionProgress
from app.models.story import Story
from app.models.notification import Notification
from app.models.audit_log import AuditLog
from app.models.failed_job import FailedJob

__all__ = [
    "Account",
    "CreditTransaction",
    "CreditPackage",
    "PremiumService",
    "ActiveServiceGrant",
    "Boost",
    "BoostPackage",
    "Profile",
    "Earnings",
    "PayoutRequest",
    "Affiliate",
    "AffiliateReferral",
    "AffiliateTier",
    "AffiliateCommission",
    "DailyMission",
    "MissionProgress",
    "Story",
    "Notification",
    "AuditLog",
    "FailedJob",
]
