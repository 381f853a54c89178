"""Affiliate referral tracking and commissions are idempotent."""

import asyncio

import pytest

from app.models.affiliate import Affiliate, AffiliateCommission, AffiliateReferral, AffiliateTier
from app.models.credit_package import CreditPackage
from app.models.notification import Notification
from app.services import credits as credits_service
from app.services import referrals as referrals_service

pytestmark = pytest.mark.asyncio


async def _affiliate(code: str = "ANA10", status: str = "active") -> Affiliate:
    affiliate = Affiliate(affiliate_code=code, user_id="aff-user", status=status)
    await affiliate.insert()
    return affiliate


async def test_track_twice_creates_one_row(db):
    affiliate = await _affiliate()
    first = await referrals_service.track("ANA10", "new-user-1")
    second = await referrals_service.track("ANA10", "new-user-1")
    assert first["created"] is True
    assert second["created"] is False
    rows = await AffiliateReferral.find_all().to_list()
    assert len(rows) == 1
    assert rows[0].affiliate_id == str(affiliate.id)
    assert rows[0].status == "pending"


async def test_concurrent_retries_create_one_row(db):
    await _affiliate()
    results = await asyncio.gather(*[referrals_service.track("ANA10", "new-user-1") for _ in range(4)])
    assert sum(r["created"] for r in results) == 1
    assert await AffiliateReferral.find_all().count() == 1


async def test_unknown_or_inactive_code_is_not_an_error(db):
    await _affiliate(code="OLD", status="inactive")
    assert (await referrals_service.track("NOPE", "u1"))["created"] is False
    assert (await referrals_service.track("OLD", "u1"))["created"] is False
    assert (await referrals_service.track("", "u1"))["created"] is False
    assert await AffiliateReferral.find_all().count() == 0


async def test_referral_stats(db):
    affiliate = await _affiliate()
    for user in ("u1", "u2"):
        await referrals_service.track("ANA10", user)
    stats = await referrals_service.referral_stats(str(affiliate.id))
    assert stats == {"total": 2, "by_status": {"pending": 2}}


async def test_commission_uses_base_rate_plus_tier_bonus(db):
    await AffiliateTier(name="gold", commission_rate=5).insert()
    affiliate = Affiliate(affiliate_code="GOLD1", user_id="aff-user", tier_level="gold")
    await affiliate.insert()
    await referrals_service.track("GOLD1", "buyer-1")

    out = await referrals_service.record_commission("buyer-1", "boost", "pay-1", 200)
    assert out == {"recorded": True, "reason": "recorded", "commission_amount": 40.0, "total_rate": 20}
    again = await referrals_service.record_commission("buyer-1", "boost", "pay-1", 200)
    assert again["recorded"] is False

    referral = await AffiliateReferral.find_one(AffiliateReferral.referred_user_id == "buyer-1")
    assert referral.status == "converted"
    assert (referral.total_transactions, referral.total_revenue_generated, referral.total_commission_earned) == (1, 200, 40)
    assert referral.first_transaction_at is not None
    affiliate = await Affiliate.get(affiliate.id)
    assert (affiliate.total_earned, affiliate.pending_payout) == (40, 40)
    assert await AffiliateCommission.find_all().count() == 1
    assert await Notification.find(Notification.type == "affiliate_commission", Notification.user_id == "aff-user").count() == 1


async def test_commission_without_referral_is_a_noop(db):
    out = await referrals_service.record_commission("walk-in", "credits", "pay-1", 100)
    assert out == {"recorded": False, "reason": "no_referral"}
    assert await AffiliateCommission.find_all().count() == 0


async def test_purchase_books_commission_once(db):
    await _affiliate()
    await referrals_service.track("ANA10", "buyer-1")
    package = CreditPackage(name="Starter", credits=100, price=50.0)
    await package.insert()

    for _ in range(2):
        await credits_service.confirm_purchase("buyer-1", str(package.id), "mp-77")
    commissions = await AffiliateCommission.find_all().to_list()
    assert [(c.transaction_type, c.transaction_id, c.commission_amount) for c in commissions] == [("credits", "mp-77", 5.0)]
