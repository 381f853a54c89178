"""Affiliate referral tracking and commissions on referred users' transactions."""

from bson import ObjectId
from pymongo.errors import DuplicateKeyError

from app.core.logging import get_logger
from app.models.affiliate import Affiliate, AffiliateCommission, AffiliateReferral, AffiliateTier
from app.models.notification import Notification

log = get_logger(__name__)


async def track(affiliate_code: str, referred_user_id: str) -> dict:
    """
    Record that `referred_user_id` signed up through `affiliate_code`.
    Best effort: an unknown or inactive code and an already tracked pair both
    return created=False. The unique (affiliate_id, referred_user_id) index
    settles concurrent retries. Storage faults propagate.
    """
    code = (affiliate_code or "").strip()
    if not code or not referred_user_id:
        return {"created": False, "reason": "invalid"}

    affiliate = await Affiliate.find_one(
        Affiliate.affiliate_code == code,
        Affiliate.status == "active",
    )
    if not affiliate:
        log.info("affiliate_not_found", affiliate_code=code)
        return {"created": False, "reason": "affiliate_not_found"}

    affiliate_id = str(affiliate.id)
    existing = await AffiliateReferral.find_one(
        AffiliateReferral.affiliate_id == affiliate_id,
        AffiliateReferral.referred_user_id == referred_user_id,
    )
    if existing:
        return {"created": False, "reason": "already_tracked"}

    try:
        await AffiliateReferral(
            affiliate_id=affiliate_id,
            referred_user_id=referred_user_id,
            status="pending",
        ).insert()
    except DuplicateKeyError:
        log.info("referral_duplicate", affiliate_id=affiliate_id, referred_user_id=referred_user_id)
        return {"created": False, "reason": "already_tracked"}

    log.info("referral_tracked", affiliate_id=affiliate_id, referred_user_id=referred_user_id)
    return {"created": True, "reason": "tracked"}


async def referral_stats(affiliate_id: str) -> dict:
    """Referral counts per status for an affiliate."""
    referrals = await AffiliateReferral.find(AffiliateReferral.affiliate_id == affiliate_id).to_list()
    by_status: dict[str, int] = {}
    for r in referrals:
        by_status[r.status] = by_status.get(r.status, 0) + 1
    return {"total": len(referrals), "by_status": by_status}


# base commission, in percent of the transaction amount
COMMISSION_RATES = {
    "credits": 10,
    "boost": 15,
    "premium": 20,
    "subscription": 10,
    "ppv": 10,
    "geographic_boost": 15,
}


async def _sum_commissions(match: dict) -> dict:
    rows = await AffiliateCommission.find(match).aggregate([
        {
            "$group": {
                "_id": None,
                "count": {"$sum": 1},
                "revenue": {"$sum": "$transaction_amount"},
                "commission": {"$sum": "$commission_amount"},
                "first": {"$min": "$created_at"},
            }
        }
    ]).to_list()
    return rows[0] if rows else {"count": 0, "revenue": 0, "commission": 0, "first": None}


async def refresh_totals(affiliate: Affiliate, referral: AffiliateReferral) -> None:
    """Recompute referral and affiliate totals from the commission rows."""
    per_referral = await _sum_commissions({"referral_id": str(referral.id)})
    status = "converted" if referral.status == "pending" and per_referral["count"] else referral.status
    await referral.set({
        AffiliateReferral.status: status,
        AffiliateReferral.total_transactions: per_referral["count"],
        AffiliateReferral.total_revenue_generated: round(per_referral["revenue"], 2),
        AffiliateReferral.total_commission_earned: round(per_referral["commission"], 2),
        AffiliateReferral.first_transaction_at: per_referral["first"],
    })
    per_affiliate = await _sum_commissions({"affiliate_id": str(affiliate.id)})
    total = round(per_affiliate["commission"], 2)
    await affiliate.set({
        Affiliate.total_earned: total,
        Affiliate.pending_payout: round(total - affiliate.paid_out, 2),
    })


async def record_commission(user_id: str, transaction_type: str, transaction_id: str, amount: float) -> dict:
    """
    Book the referring affiliate's commission on a transaction by `user_id`.
    Rate is the base rate for the transaction type plus the affiliate tier's bonus.
    One commission per (transaction_type, transaction_id); totals are recomputed
    on every call, so a repeated call also repairs totals left stale by a crash.
    """
    referral = await AffiliateReferral.find_one(AffiliateReferral.referred_user_id == user_id)
    if referral is None:
        return {"recorded": False, "reason": "no_referral"}
    affiliate = await Affiliate.get(referral.affiliate_id) if ObjectId.is_valid(referral.affiliate_id) else None
    if affiliate is None or affiliate.status != "active":
        return {"recorded": False, "reason": "affiliate_inactive"}

    tier = await AffiliateTier.find_one(AffiliateTier.name == affiliate.tier_level) if affiliate.tier_level else None
    rate = COMMISSION_RATES.get(transaction_type, 0) + (tier.commission_rate if tier else 0)
    commission_amount = round(amount * rate / 100, 2)
    if commission_amount <= 0:
        log.info("commission_skipped", user_id=user_id, transaction_type=transaction_type, rate=rate, amount=amount)
        return {"recorded": False, "reason": "no_commission"}

    recorded = True
    try:
        await AffiliateCommission(
            affiliate_id=str(affiliate.id),
            referral_id=str(referral.id),
            referred_user_id=user_id,
            transaction_type=transaction_type,
            transaction_id=str(transaction_id),
            transaction_amount=amount,
            commission_rate=rate,
            commission_amount=commission_amount,
        ).insert()
    except DuplicateKeyError:
        log.info("commission_duplicate", transaction_type=transaction_type, transaction_id=transaction_id)
        recorded = False

    await refresh_totals(affiliate, referral)
    if recorded:
        log.info(
            "commission_recorded",
            affiliate_id=str(affiliate.id),
            user_id=user_id,
            transaction_type=transaction_type,
            transaction_id=transaction_id,
            rate=rate,
            commission_amount=commission_amount,
        )
        try:
            await Notification(
                user_id=affiliate.user_id,
                type="affiliate_commission",
                title="New commission received",
                message=f"You earned {commission_amount:.2f} in commission on a {transaction_type} transaction.",
                metadata={
                    "commission_amount": commission_amount,
                    "transaction_type": transaction_type,
                    "transaction_amount": amount,
                },
                dedupe_key=f"affiliate_commission:{transaction_type}:{transaction_id}",
            ).insert()
        except DuplicateKeyError:
            log.debug("commission_already_notified", transaction_id=transaction_id)
    return {
        "recorded": recorded,
        "reason": "recorded" if recorded else "already_recorded",
        "commission_amount": commission_amount,
        "total_rate": rate,
    }
