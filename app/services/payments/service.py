"""
PaymentService — reconciles payment intents with the Midtrans gateway.

Responsibilities:
- Validate and create checkout transactions (Snap)
- Apply gateway notifications idempotently (signature checked first)
- Pull-based verification, cancel and refund through the Core API
- Reporting queries and statistics

Status changes are applied with a compare-and-swap UPDATE on the status the
caller observed. Enrollment side effects run only for the caller whose swap
won, so a notification delivered twice activates the enrollment once.
"""
import logging
import math
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

from sqlalchemy import func, or_, update
from sqlalchemy.orm import Session

from app.core.errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    PaymentStateError,
    SignatureMismatchError,
    ValidationError,
)
from app.models.enrollment import Enrollment
from app.models.payment import FAILED_STATUSES, SETTLED_STATUSES, Payment, PaymentStatus
from app.schemas.payments import TransactionRequest
from app.services.audit.service import AuditService
from app.services.enrollments.service import EnrollmentService
from app.services.payments.gateway import MidtransClient
from app.services.payments.signature import verify_webhook_signature
from app.services.payments.status import is_settled, map_gateway_status
from app.services.payments.validators import validate_transaction_request
from app.utils.metrics import (
    payment_status_transitions_total,
    payment_webhooks_total,
    payments_created_total,
)

logger = logging.getLogger(__name__)

APPLY_ATTEMPTS = 3
SETTLED_VALUES = frozenset(s.value for s in SETTLED_STATUSES)
GATEWAY_TZ = timezone(timedelta(hours=7))  # Midtrans timestamps are WIB without offset
PAYABLE_ENROLLMENT_STATUSES = ("pending_payment", "cancelled")

PAYMENT_METHODS = {
    "credit_card": {
        "name": "Credit/Debit Card",
        "enabled": True,
        "icon": "credit-card",
        "currencies": ["IDR", "USD"],
    },
    "bank_transfer": {
        "name": "Bank Transfer",
        "enabled": True,
        "icon": "bank",
        "currencies": ["IDR"],
        "banks": ["bca", "bni", "bri", "mandiri"],
    },
    "e_wallet": {
        "name": "E-Wallet",
        "enabled": True,
        "icon": "wallet",
        "currencies": ["IDR"],
        "providers": ["gopay", "ovo", "dana", "linkaja"],
    },
    "bnpl": {
        "name": "Buy Now Pay Later",
        "enabled": True,
        "icon": "calendar",
        "currencies": ["IDR"],
        "providers": ["kredivo", "akulaku"],
    },
    "echannel": {
        "name": "E-Channel (ATM)",
        "enabled": True,
        "icon": "atm",
        "currencies": ["IDR"],
    },
}


@dataclass
class StatusUpdate:
    payment: Payment
    status: str
    changed: bool


class PaymentService:
    def __init__(
        self,
        db: Session,
        gateway: MidtransClient,
        server_key: str,
        expiry_minutes: int = 60,
    ):
        self.db = db
        self.gateway = gateway
        self._server_key = server_key
        self._expiry_minutes = expiry_minutes

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create_transaction(self, request: TransactionRequest) -> dict:
        errors = validate_transaction_request(request)
        enrollment_id = request.metadata.get("enrollment_id")
        if not enrollment_id:
            errors.append("Enrollment ID is required in metadata")
        if errors:
            raise ValidationError(errors=errors)

        enrollment = self.db.get(Enrollment, enrollment_id)
        if enrollment is None:
            raise NotFoundError("Enrollment not found")
        if enrollment.user_id != request.user_id:
            raise ForbiddenError("Enrollment belongs to another user")
        if enrollment.status not in PAYABLE_ENROLLMENT_STATUSES:
            raise ConflictError("Enrollment does not require payment")

        transaction_id = str(uuid4())
        order_id = f"{request.user_id}-{int(time.time() * 1000)}"
        amount = Decimal(str(request.amount))
        parameter = self._build_snap_parameter(request, order_id, transaction_id, enrollment_id)

        result = self.gateway.create_transaction(parameter)

        payment = Payment(
            transaction_id=transaction_id,
            order_id=order_id,
            enrollment_id=enrollment_id,
            user_id=request.user_id,
            course_id=enrollment.course_id,
            amount=amount,
            status=PaymentStatus.PENDING.value,
            payment_method="unknown",
            snap_token=result["token"],
            redirect_url=result["redirect_url"],
        )
        self.db.add(payment)
        self.db.flush()

        payments_created_total.inc()
        logger.info(
            "payment_created",
            extra={
                "transaction_id": transaction_id,
                "order_id": order_id,
                "enrollment_id": enrollment_id,
                "user_id": request.user_id,
            },
        )
        AuditService(self.db).log(
            actor_type="user",
            actor_id=request.user_id,
            action="payment_created",
            entity_type="payment",
            entity_id=payment.id,
            payload={"order_id": order_id, "amount": str(amount)},
        )
        return {
            "transaction_id": transaction_id,
            "order_id": order_id,
            "amount": amount,
            "snap_token": result["token"],
            "redirect_url": result["redirect_url"],
            "expires_at": datetime.now(timezone.utc) + timedelta(minutes=self._expiry_minutes),
        }

    def _build_snap_parameter(
        self,
        request: TransactionRequest,
        order_id: str,
        transaction_id: str,
        enrollment_id: str,
    ) -> dict:
        customer = request.customer_details
        customer_details = {
            "first_name": customer.first_name,
            "last_name": customer.last_name,
            "email": customer.email,
            "phone": customer.phone,
        }
        if customer.address:
            customer_details["billing_address"] = {
                "address": customer.address,
                "city": customer.city,
                "postal_code": customer.postal_code,
                "country_code": customer.country_code or "IDN",
            }
        parameter = {
            "transaction_details": {"order_id": order_id, "gross_amount": request.amount},
            "customer_details": customer_details,
            "item_details": [
                {
                    "id": item.id,
                    "name": item.name,
                    "price": item.price,
                    "quantity": item.quantity,
                    "merchant_name": item.merchant_name,
                }
                for item in request.items
            ],
            "expiry": {"unit": "minutes", "duration": self._expiry_minutes},
            "custom_field1": transaction_id,
            "custom_field2": enrollment_id,
            "custom_field3": request.order_id,
        }
        if request.discount:
            parameter["promo_code"] = {"name": "Discount", "value": request.discount}
        return parameter

    # ------------------------------------------------------------------
    # Reconcile
    # ------------------------------------------------------------------

    def process_webhook(self, payload: dict) -> StatusUpdate:
        """
        Apply a gateway notification. The signature is checked before
        anything in the payload is used to touch the database.
        """
        transaction_id = str(payload.get("transaction_id") or "")
        order_id = str(payload.get("order_id") or "")
        status_code = str(payload.get("status_code") or payload.get("transaction_status") or "")
        gross_amount = str(payload.get("gross_amount") or "")

        if not verify_webhook_signature(
            transaction_id,
            status_code,
            gross_amount,
            self._server_key,
            payload.get("signature_key"),
        ):
            payment_webhooks_total.labels(outcome="rejected_signature").inc()
            logger.error(
                "webhook_signature_mismatch",
                extra={"order_id": order_id, "transaction_id": transaction_id},
            )
            raise SignatureMismatchError()

        payment = (
            self.db.query(Payment)
            .filter(
                or_(
                    Payment.order_id == order_id,
                    Payment.gateway_transaction_id == transaction_id,
                )
            )
            .first()
        )
        if payment is None:
            payment_webhooks_total.labels(outcome="not_found").inc()
            logger.warning(
                "webhook_payment_not_found",
                extra={"order_id": order_id, "transaction_id": transaction_id},
            )
            raise NotFoundError(f"Payment not found for order {order_id}")

        new_status = map_gateway_status(payload.get("transaction_status"), payload.get("fraud_status"))
        result = self._apply_status(
            payment,
            new_status,
            payment_method=payload.get("payment_type"),
            gateway_transaction_id=transaction_id or None,
            settled_at=_parse_gateway_time(payload.get("settlement_time") or payload.get("transaction_time")),
            failure_reason=payload.get("status_message"),
            actor_type="gateway",
        )
        payment_webhooks_total.labels(outcome="applied" if result.changed else "duplicate").inc()
        logger.info(
            "payment_webhook_processed",
            extra={
                "order_id": order_id,
                "transaction_id": transaction_id,
                "status": result.status,
                "new_status": new_status.value,
            },
        )
        return result

    def verify_payment(self, transaction_id: str) -> StatusUpdate:
        """Pull the current status from the gateway and apply it."""
        payment = self._get_by_reference(transaction_id)
        data = self.gateway.get_status(payment.order_id)
        new_status = map_gateway_status(data.get("transaction_status"), data.get("fraud_status"))
        return self._apply_status(
            payment,
            new_status,
            payment_method=data.get("payment_type"),
            gateway_transaction_id=data.get("transaction_id"),
            settled_at=_parse_gateway_time(data.get("settlement_time") or data.get("transaction_time")),
            failure_reason=data.get("status_message"),
            actor_type="system",
        )

    def cancel_transaction(self, transaction_id: str, actor_id: str | None = None) -> StatusUpdate:
        payment = self._get_by_reference(transaction_id)
        if payment.status != PaymentStatus.PENDING.value:
            raise PaymentStateError(payment.status, PaymentStatus.CANCEL.value)

        self.gateway.cancel(payment.order_id)
        return self._apply_status(
            payment,
            PaymentStatus.CANCEL,
            allowed_from={PaymentStatus.PENDING.value},
            actor_type="user" if actor_id else "system",
            actor_id=actor_id,
        )

    def refund_transaction(
        self,
        transaction_id: str,
        amount=None,
        reason: str | None = None,
        actor_id: str | None = None,
    ) -> StatusUpdate:
        payment = self._get_by_reference(transaction_id)
        settled = {s.value for s in SETTLED_STATUSES}
        if payment.status not in settled:
            raise PaymentStateError(payment.status, PaymentStatus.REFUND.value)

        target = PaymentStatus.REFUND
        parameter: dict = {"refund_key": f"refund-{payment.transaction_id}-{int(time.time() * 1000)}"}
        if amount is not None:
            refund_amount = Decimal(str(amount)) if not isinstance(amount, bool) else None
            if refund_amount is None or refund_amount <= 0 or refund_amount > payment.amount:
                raise ValidationError(errors=["Refund amount must be greater than 0 and at most the paid amount"])
            parameter["amount"] = float(refund_amount)
            if refund_amount < payment.amount:
                target = PaymentStatus.PARTIAL_REFUND
        if reason:
            parameter["reason"] = reason

        self.gateway.refund(payment.order_id, parameter)
        return self._apply_status(
            payment,
            target,
            allowed_from=settled,
            failure_reason=reason,
            actor_type="user" if actor_id else "system",
            actor_id=actor_id,
        )

    def _apply_status(
        self,
        payment: Payment,
        new_status: PaymentStatus,
        payment_method: str | None = None,
        gateway_transaction_id: str | None = None,
        settled_at: datetime | None = None,
        failure_reason: str | None = None,
        allowed_from: set[str] | None = None,
        actor_type: str = "system",
        actor_id: str | None = None,
    ) -> StatusUpdate:
        """
        Move the payment to new_status if it still has the status we read.
        Same status is a no-op. Effects fire only for the winning swap.
        """
        target = new_status.value
        for _ in range(APPLY_ATTEMPTS):
            observed = payment.status
            if observed == target:
                return StatusUpdate(payment=payment, status=observed, changed=False)
            if new_status == PaymentStatus.PENDING and observed in SETTLED_VALUES:
                # a late pending notification never reopens a paid payment
                logger.warning(
                    "payment_stale_pending_ignored",
                    extra={"payment_id": payment.id, "order_id": payment.order_id, "status": observed},
                )
                return StatusUpdate(payment=payment, status=observed, changed=False)
            if allowed_from is not None and observed not in allowed_from:
                raise PaymentStateError(observed, target)

            now = datetime.now(timezone.utc)
            values = {"status": target, "updated_at": now}
            if payment_method:
                values["payment_method"] = payment_method
            if gateway_transaction_id:
                values["gateway_transaction_id"] = gateway_transaction_id
            if new_status in SETTLED_STATUSES:
                values["paid_at"] = func.coalesce(Payment.paid_at, settled_at or now)
            if new_status in FAILED_STATUSES or new_status in (PaymentStatus.REFUND, PaymentStatus.PARTIAL_REFUND):
                if failure_reason:
                    values["failure_reason"] = failure_reason[:500]

            result = self.db.execute(
                update(Payment)
                .where(Payment.id == payment.id, Payment.status == observed)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            self.db.refresh(payment)
            if result.rowcount > 0:
                self._after_transition(payment, observed, new_status, actor_type, actor_id)
                return StatusUpdate(payment=payment, status=payment.status, changed=True)
            logger.info(
                "payment_status_race_lost",
                extra={"payment_id": payment.id, "old_status": observed, "status": payment.status},
            )
        return StatusUpdate(payment=payment, status=payment.status, changed=False)

    def _after_transition(
        self,
        payment: Payment,
        old_status: str,
        new_status: PaymentStatus,
        actor_type: str,
        actor_id: str | None,
    ) -> None:
        payment_status_transitions_total.labels(status=new_status.value).inc()
        logger.info(
            "payment_status_changed",
            extra={
                "payment_id": payment.id,
                "order_id": payment.order_id,
                "old_status": old_status,
                "new_status": new_status.value,
            },
        )
        AuditService(self.db).log(
            actor_type=actor_type,
            actor_id=actor_id,
            action="payment_status_changed",
            entity_type="payment",
            entity_id=payment.id,
            payload={"old_status": old_status, "new_status": new_status.value},
        )

        enrollments = EnrollmentService(self.db)
        if new_status in SETTLED_STATUSES and not is_settled(old_status):
            enrollments.activate_after_payment(payment.enrollment_id)
        elif new_status in (PaymentStatus.CANCEL, PaymentStatus.EXPIRE):
            enrollments.cancel_pending_after_payment(payment.enrollment_id)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _get_by_reference(self, reference: str) -> Payment:
        payment = (
            self.db.query(Payment)
            .filter(or_(Payment.transaction_id == reference, Payment.order_id == reference))
            .first()
        )
        if payment is None:
            raise NotFoundError("Payment not found")
        return payment

    def get_payment(self, transaction_id: str) -> Payment:
        return self._get_by_reference(transaction_id)

    def get_payment_by_order_id(self, order_id: str) -> Payment:
        payment = self.db.query(Payment).filter(Payment.order_id == order_id).one_or_none()
        if payment is None:
            raise NotFoundError("Payment not found")
        return payment

    def get_user_payments(self, user_id: str, limit: int = 50) -> list[Payment]:
        return (
            self.db.query(Payment)
            .filter(Payment.user_id == user_id)
            .order_by(Payment.created_at.desc())
            .limit(min(max(limit, 1), 200))
            .all()
        )

    def list_transactions(self, page: int = 1, limit: int = 20, status: str | None = None) -> dict:
        page = max(page, 1)
        limit = min(max(limit, 1), 200)
        query = self.db.query(Payment)
        if status:
            query = query.filter(Payment.status == status)
        total = query.count()
        items = (
            query.order_by(Payment.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return {
            "items": items,
            "total": total,
            "page": page,
            "limit": limit,
            "pages": math.ceil(total / limit) if total else 0,
        }

    def list_stale_pending(self, older_than_minutes: int, limit: int = 100) -> list[Payment]:
        cutoff = datetime.now(timezone.utc) - timedelta(minutes=older_than_minutes)
        return (
            self.db.query(Payment)
            .filter(Payment.status == PaymentStatus.PENDING.value, Payment.created_at < cutoff)
            .order_by(Payment.created_at)
            .limit(limit)
            .all()
        )

    def get_payment_statistics(self) -> dict:
        rows = (
            self.db.query(Payment.status, func.count(Payment.id), func.sum(Payment.amount))
            .group_by(Payment.status)
            .all()
        )
        settled = {s.value for s in SETTLED_STATUSES}
        failed = {s.value for s in FAILED_STATUSES}

        total = successful = pending = failed_count = 0
        revenue = Decimal(0)
        for status, count, amount_sum in rows:
            total += count
            if status in settled:
                successful += count
                revenue += Decimal(str(amount_sum or 0))
            elif status in failed:
                failed_count += count
            elif status == PaymentStatus.PENDING.value:
                pending += count

        return {
            "total_transactions": total,
            "successful_transactions": successful,
            "pending_transactions": pending,
            "failed_transactions": failed_count,
            "total_revenue": float(revenue),
            "average_transaction_amount": float(revenue / total) if total else 0.0,
            "success_rate": round(successful / total * 100, 2) if total else 0.0,
        }

    @staticmethod
    def available_payment_methods() -> dict:
        return PAYMENT_METHODS


def _parse_gateway_time(value) -> datetime | None:
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=GATEWAY_TZ)
    return parsed

