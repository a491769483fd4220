from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy.orm import Session

from app.api.deps import get_current_user, get_payment_service, require_admin
from app.core.errors import ForbiddenError, ValidationError
from app.db.session import get_db
from app.models.user import User
from app.schemas.payments import (
    PaymentOut,
    PaymentStatisticsOut,
    RefundRequest,
    TransactionCreated,
    TransactionRequest,
    WebhookAck,
)
from app.services.payments.service import PaymentService

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("", response_model=TransactionCreated, status_code=201)
def create_transaction(
    payload: TransactionRequest,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    request = payload.model_copy(update={"user_id": user.id})
    result = service.create_transaction(request)
    db.commit()
    return result


@router.post("/webhook", response_model=WebhookAck)
def payment_webhook(
    payload: dict = Body(...),
    db: Session = Depends(get_db),
    service: PaymentService = Depends(get_payment_service),
):
    """Gateway notification endpoint. Authenticated by the payload signature, not a bearer token."""
    result = service.process_webhook(payload)
    db.commit()
    return WebhookAck(
        status="ok",
        transaction_id=result.payment.transaction_id,
        payment_status=result.status,
        applied=result.changed,
    )


@router.get("/methods")
def payment_methods() -> dict:
    return PaymentService.available_payment_methods()


@router.get("/statistics", response_model=PaymentStatisticsOut)
def payment_statistics(
    _: User = Depends(require_admin),
    service: PaymentService = Depends(get_payment_service),
):
    return service.get_payment_statistics()


@router.get("/me", response_model=list[PaymentOut])
def my_payments(
    limit: int = Query(50, ge=1, le=200),
    user: User = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    return service.get_user_payments(user.id, limit=limit)


@router.get("/transactions")
def list_transactions(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=200),
    status: str | None = Query(None),
    _: User = Depends(require_admin),
    service: PaymentService = Depends(get_payment_service),
) -> dict:
    result = service.list_transactions(page=page, limit=limit, status=status)
    result["items"] = [PaymentOut.model_validate(p) for p in result["items"]]
    return result


@router.get("/{transaction_id}", response_model=PaymentOut)
def get_payment(
    transaction_id: str,
    user: User = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    payment = service.get_payment(transaction_id)
    _ensure_owner(payment.user_id, user)
    return payment


@router.post("/{transaction_id}/verify", response_model=PaymentOut)
def verify_payment(
    transaction_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    _ensure_owner(service.get_payment(transaction_id).user_id, user)
    result = service.verify_payment(transaction_id)
    db.commit()
    return result.payment


@router.post("/{transaction_id}/cancel", response_model=PaymentOut)
def cancel_payment(
    transaction_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    _ensure_owner(service.get_payment(transaction_id).user_id, user)
    result = service.cancel_transaction(transaction_id, actor_id=user.id)
    db.commit()
    return result.payment


@router.post("/{transaction_id}/refund", response_model=PaymentOut)
def refund_payment(
    transaction_id: str,
    payload: RefundRequest | None = None,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
    service: PaymentService = Depends(get_payment_service),
):
    payload = payload or RefundRequest()
    if payload.reason is not None and len(payload.reason) > 500:
        raise ValidationError(errors=["Refund reason is too long"])
    result = service.refund_transaction(
        transaction_id,
        amount=payload.amount,
        reason=payload.reason,
        actor_id=admin.id,
    )
    db.commit()
    return result.payment


def _ensure_owner(owner_id: str, user: User) -> None:
    if owner_id != user.id and not user.is_admin:
        raise ForbiddenError("Payment belongs to another user")
