from fastapi import APIRouter, Depends
from pydantic import BaseModel

from app.deps import require_scheduler
from app.services import credits as credits_service

router = APIRouter()


class PaymentConfirmation(BaseModel):
    """Approved-payment event forwarded by the payment gateway integration."""
    user_id: str
    package_id: str
    payment_id: str
    status: str = "approved"


@router.post("/confirm", dependencies=[Depends(require_scheduler)])
async def confirm_payment(body: PaymentConfirmation):
    """Credit a purchased package once per payment (idempotent)."""
    if body.status != "approved":
        return {"received": True, "credited": False, "status": body.status}
    entry, created = await credits_service.confirm_purchase(body.user_id, body.package_id, body.payment_id)
    return {"received": True, "credited": created, "transaction_id": str(entry.id)}
