import certifi
from beanie import init_beanie
from motor.motor_asyncio import AsyncIOMotorClient

from app.core.config import get_settings
from app.models.account import Account
from app.models.active_service_grant import ActiveServiceGrant
from app.models.affiliate import Affiliate, AffiliateCommission, AffiliateReferral, AffiliateTier
from app.models.audit_log import AuditLog
from app.models.boost import Boost, BoostPackage
from app.models.credit_package import CreditPackage
from app.models.credit_transaction import CreditTransaction
from app.models.earnings import Earnings
from app.models.failed_job import FailedJob
from app.models.mission import DailyMission, MissionProgress
from app.models.notification import Notification
from app.models.payout_request import PayoutRequest
from app.models.premium_service import PremiumService
from app.models.profile import Profile
from app.models.story import Story

DOCUMENT_MODELS = [
    Account,
    CreditTransaction,
    CreditPackage,
    PremiumService,
    ActiveServiceGrant,
    BoostPackage,
    Boost,
    Profile,
    Earnings,
    PayoutRequest,
    Affiliate,
    AffiliateReferral,
    AffiliateTier,
    AffiliateCommission,
    DailyMission,
    MissionProgress,
    Story,
    Notification,
    AuditLog,
    FailedJob,
]


def _use_tls(uri: str) -> bool:
    """True if URI uses TLS (Atlas or explicit tls=true). Avoids TLS for plain mongodb:// in CI."""
    return "mongodb+srv://" in uri or "tls=true" in uri.lower()


def get_client() -> AsyncIOMotorClient:
    settings = get_settings()
    # Atlas in Docker: tlsCAFile + tlsDisableOCSPEndpointCheck avoid TLSV1_ALERT_INTERNAL_ERROR
    kwargs = {}
    if _use_tls(settings.mongodb_uri):
        kwargs["tlsCAFile"] = certifi.where()
        kwargs["tlsDisableOCSPEndpointCheck"] = True
    return AsyncIOMotorClient(settings.mongodb_uri, **kwargs)


async def init_db() -> None:
    settings = get_settings()
    database = get_client()[settings.mongodb_db_name]
    await init_beanie(database=database, document_models=DOCUMENT_MODELS)
