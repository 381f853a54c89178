"""Premium service activation: credits exchanged for a profile grant."""

from datetime import datetime, timedelta

from beanie import PydanticObjectId
from bson import ObjectId
from pymongo.errors import PyMongoError

from app.core.exceptions import (
    AccountNotFoundError,
    InsufficientBalanceError,
    ServiceNotFoundError,
    StorageFaultError,
)
from app.core.logging import get_logger
from app.models.active_service_grant import ActiveServiceGrant
from app.models.premium_service import PremiumService
from app.services import credits as credits_service
from app.services import ledger
from app.services.recovery import activation_key, document_exists

log = get_logger(__name__)


async def get_active_service(service_id: str) -> PremiumService:
    service = await PremiumService.get(service_id) if ObjectId.is_valid(service_id) else None
    if service is None or not service.is_active:
        raise ServiceNotFoundError()
    return service


def compute_end_date(service: PremiumService, now: datetime) -> datetime | None:
    if service.duration_days:
        return now + timedelta(days=service.duration_days)
    return None


async def activate(
    owner_id: str,
    profile_id: str,
    service_id: str,
    now: datetime | None = None,
) -> ActiveServiceGrant:
    """
    Debit the service cost and create the grant as one unit.
    If the grant cannot be written, the debit is compensated with a refund
    before StorageFaultError is raised. The debit carries the grant's id in
    its idempotency key, so a caller that dies between the two writes leaves
    a debit the recovery sweep can match and refund.
    """
    service = await get_active_service(service_id)

    try:
        balance = await ledger.get_balance(owner_id)
    except AccountNotFoundError:
        balance = 0
    if balance < service.credit_cost:
        log.info(
            "premium_insufficient_balance",
            owner_id=owner_id,
            profile_id=profile_id,
            service_id=service_id,
            balance=balance,
            cost=service.credit_cost,
        )
        raise InsufficientBalanceError(balance=balance, required=service.credit_cost)

    grant_id = PydanticObjectId()
    try:
        debit = await credits_service.debit(
            owner_id,
            service.credit_cost,
            "premium_service",
            description=f"Activation of {service.name}",
            reference_id=profile_id,
            idempotency_key=activation_key("premium", grant_id),
        )
    except AccountNotFoundError:
        raise InsufficientBalanceError(balance=0, required=service.credit_cost)

    now = now or datetime.utcnow()
    grant = ActiveServiceGrant(
        id=grant_id,
        owner_id=owner_id,
        profile_id=profile_id,
        service_id=str(service.id),
        end_date=compute_end_date(service, now),
        transaction_id=str(debit.id),
        created_at=now,
    )
    try:
        await grant.insert()
    except PyMongoError as e:
        if not await document_exists(ActiveServiceGrant, grant_id):
            log.error(
                "premium_grant_failed",
                owner_id=owner_id,
                profile_id=profile_id,
                service_id=service_id,
                reference_id=str(debit.id),
                reason=str(e),
            )
            await credits_service.compensate_debit(owner_id, debit, f"Refund: activation of {service.name} failed")
            raise StorageFaultError(
                "Could not activate service",
                details={"owner_id": owner_id, "profile_id": profile_id, "transaction_id": str(debit.id)},
            ) from e

    log.info(
        "premium_activated",
        owner_id=owner_id,
        profile_id=profile_id,
        service_id=service_id,
        grant_id=str(grant.id),
        transaction_id=str(debit.id),
        end_date=grant.end_date.isoformat() if grant.end_date else None,
    )
    from app.core.audit import log_event
    await log_event(
        owner_id,
        "premium_activated",
        "premium_service",
        str(service.id),
        {"profile_id": profile_id, "grant_id": str(grant.id), "credits": service.credit_cost},
    )
    return grant


async def list_active_grants(profile_id: str, now: datetime | None = None) -> list[ActiveServiceGrant]:
    """Grants on the profile that have not expired (permanent ones included)."""
    now = now or datetime.utcnow()
    grants = await ActiveServiceGrant.find(ActiveServiceGrant.profile_id == profile_id).to_list()
    return [g for g in grants if not g.is_expired(now)]
