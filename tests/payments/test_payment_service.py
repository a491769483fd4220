"""PaymentService with a real SQLite session and a mocked gateway."""
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest

from app.core.errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    PaymentStateError,
    SignatureMismatchError,
    ValidationError,
)
from app.services.payments.signature import compute_signature

SERVER_KEY = "SB-Mid-server-test-key"


def _service(db, gateway=None):
    from app.services.payments.service import PaymentService

    return PaymentService(db, gateway or MagicMock(), server_key=SERVER_KEY)


def _payment(db, enrollment, status="pending", amount=Decimal("150000"), order_id=None):
    from app.models.payment import Payment

    n = db.query(Payment).count() + 1
    payment = Payment(
        transaction_id=f"tx-{n}",
        order_id=order_id or f"{enrollment.user_id}-{n}",
        enrollment_id=enrollment.id,
        user_id=enrollment.user_id,
        course_id=enrollment.course_id,
        amount=amount,
        status=status,
    )
    db.add(payment)
    db.flush()
    return payment


def _notification(order_id, transaction_status="settlement", status_code="200", gross_amount="150000.00", **extra):
    payload = {
        "order_id": order_id,
        "transaction_id": "gw-123",
        "transaction_status": transaction_status,
        "status_code": status_code,
        "gross_amount": gross_amount,
        "payment_type": "bank_transfer",
        "transaction_time": "2025-01-10 10:00:00",
    }
    payload.update(extra)
    payload["signature_key"] = compute_signature("gw-123", status_code, gross_amount, SERVER_KEY)
    return payload


def _request(user_id, enrollment_id, **overrides):
    from app.schemas.payments import CustomerDetails, TransactionItem, TransactionRequest

    data = {
        "order_id": "client-order-1",
        "user_id": user_id,
        "amount": 150000,
        "customer_details": CustomerDetails(
            first_name="Siti", last_name="Rahma", email="siti@example.com", phone="081234567890"
        ),
        "items": [TransactionItem(id="course-1", name="Kelas Python", price=150000, quantity=1)],
        "metadata": {"enrollment_id": enrollment_id},
    }
    data.update(overrides)
    return TransactionRequest(**data)


class TestCreateTransaction:
    def test_creates_pending_payment(self, db, make_user, make_course, make_enrollment):
        from app.models.payment import Payment

        user = make_user()
        enrollment = make_enrollment(user, make_course(), status="pending_payment")
        gateway = MagicMock()
        gateway.create_transaction.return_value = {"token": "snap-1", "redirect_url": "https://pay.example/1"}

        result = _service(db, gateway).create_transaction(_request(user.id, enrollment.id))

        assert result["snap_token"] == "snap-1"
        assert result["order_id"].startswith(f"{user.id}-")
        assert result["amount"] == Decimal("150000")
        assert result["expires_at"] > datetime.now(timezone.utc)
        payment = db.query(Payment).one()
        assert payment.status == "pending"
        assert payment.transaction_id == result["transaction_id"]
        assert payment.enrollment_id == enrollment.id

        parameter = gateway.create_transaction.call_args.args[0]
        assert parameter["transaction_details"] == {"order_id": result["order_id"], "gross_amount": 150000}
        assert parameter["custom_field3"] == "client-order-1"

    def test_invalid_request_never_reaches_gateway(self, db, make_user):
        user = make_user()
        gateway = MagicMock()
        with pytest.raises(ValidationError) as exc_info:
            _service(db, gateway).create_transaction(_request(user.id, None, amount=500, metadata={}))
        assert "Minimum amount is 1000 IDR" in exc_info.value.errors
        assert "Enrollment ID is required in metadata" in exc_info.value.errors
        gateway.create_transaction.assert_not_called()

    def test_enrollment_of_another_user(self, db, make_user, make_course, make_enrollment):
        owner, other = make_user(), make_user()
        enrollment = make_enrollment(owner, make_course(), status="pending_payment")
        with pytest.raises(ForbiddenError):
            _service(db).create_transaction(_request(other.id, enrollment.id))

    def test_active_enrollment_needs_no_payment(self, db, make_user, make_course, make_enrollment):
        user = make_user()
        enrollment = make_enrollment(user, make_course(), status="active")
        with pytest.raises(ConflictError):
            _service(db).create_transaction(_request(user.id, enrollment.id))

    def test_unknown_enrollment(self, db, make_user):
        user = make_user()
        with pytest.raises(NotFoundError):
            _service(db).create_transaction(_request(user.id, "missing"))


class TestWebhook:
    def test_bad_signature_rejected_before_lookup(self):
        db = MagicMock()
        payload = _notification("order-1")
        payload["signature_key"] = "0" * 128

        with pytest.raises(SignatureMismatchError):
            _service(db).process_webhook(payload)
        db.query.assert_not_called()
        db.execute.assert_not_called()

    def test_tampered_amount_rejected_before_lookup(self):
        db = MagicMock()
        payload = _notification("order-1")
        payload["gross_amount"] = "1000.00"

        with pytest.raises(SignatureMismatchError):
            _service(db).process_webhook(payload)
        db.query.assert_not_called()

    def test_missing_signature_rejected(self):
        db = MagicMock()
        payload = _notification("order-1")
        del payload["signature_key"]
        with pytest.raises(SignatureMismatchError):
            _service(db).process_webhook(payload)
        db.query.assert_not_called()

    def test_settlement_activates_enrollment(self, db, make_user, make_course, make_enrollment):
        user = make_user()
        enrollment = make_enrollment(user, make_course(), status="pending_payment")
        payment = _payment(db, enrollment)

        result = _service(db).process_webhook(_notification(payment.order_id))

        assert result.changed is True
        assert result.status == "settlement"
        assert payment.paid_at is not None
        assert payment.payment_method == "bank_transfer"
        assert payment.gateway_transaction_id == "gw-123"
        db.refresh(enrollment)
        assert enrollment.status == "active"

    def test_duplicate_notification_applies_once(self, db, make_user, make_course, make_enrollment):
        from app.services.enrollments.service import EnrollmentService

        user = make_user()
        enrollment = make_enrollment(user, make_course(), status="pending_payment")
        payment = _payment(db, enrollment)
        service = _service(db)

        with patch.object(EnrollmentService, "activate_after_payment") as activate:
            first = service.process_webhook(_notification(payment.order_id))
            paid_at = payment.paid_at
            second = service.process_webhook(_notification(payment.order_id))

        assert first.changed is True
        assert second.changed is False
        assert payment.paid_at == paid_at
        activate.assert_called_once_with(enrollment.id)

    def test_capture_after_settlement_keeps_paid_at(self, db, make_user, make_course, make_enrollment):
        user = make_user()
        enrollment = make_enrollment(user, make_course(), status="pending_payment")
        payment = _payment(db, enrollment)
        service = _service(db)

        service.process_webhook(_notification(payment.order_id))
        paid_at = payment.paid_at
        service.process_webhook(
            _notification(payment.order_id, transaction_status="capture", transaction_time="2025-01-11 10:00:00")
        )
        assert payment.status == "capture"
        assert payment.paid_at == paid_at

    def test_late_pending_notification_does_not_reopen_paid_payment(self, db, make_user, make_course, make_enrollment):
        user = make_user()
        enrollment = make_enrollment(user, make_course(), status="pending_payment")
        payment = _payment(db, enrollment)
        gateway = MagicMock()
        service = _service(db, gateway)

        service.process_webhook(_notification(payment.order_id))
        late = service.process_webhook(_notification(payment.order_id, transaction_status="pending", status_code="201"))

        assert late.changed is False
        assert late.status == "settlement"
        assert payment.status == "settlement"
        assert payment.paid_at is not None
        with pytest.raises(PaymentStateError):
            service.cancel_transaction(payment.transaction_id)
        gateway.cancel.assert_not_called()

    def test_fraud_challenge_keeps_pending(self, db, make_user, make_course, make_enrollment):
        user = make_user()
        enrollment = make_enrollment(user, make_course(), status="pending_payment")
        payment = _payment(db, enrollment)

        result = _service(db).process_webhook(
            _notification(payment.order_id, transaction_status="capture", fraud_status="challenge")
        )
        assert result.status == "pending"
        assert result.changed is False
        db.refresh(enrollment)
        assert enrollment.status == "pending_payment"

    def test_expire_cancels_unpaid_enrollment(self, db, make_user, make_course, make_enrollment):
        user = make_user()
        course = make_course()
        course.total_enrollments = 1
        db.flush()
        enrollment = make_enrollment(user, course, status="pending_payment")
        payment = _payment(db, enrollment)

        result = _service(db).process_webhook(
            _notification(payment.order_id, transaction_status="expire", status_code="407")
        )
        assert result.status == "expire"
        db.refresh(enrollment)
        db.refresh(course)
        assert enrollment.status == "cancelled"
        assert course.total_enrollments == 0

    def test_unknown_order(self, db):
        with pytest.raises(NotFoundError):
            _service(db).process_webhook(_notification("no-such-order"))


class TestVerifyCancelRefund:
    def test_verify_pulls_status_from_gateway(self, db, make_user, make_course, make_enrollment):
        user = make_user()
        enrollment = make_enrollment(user, make_course(), status="pending_payment")
        payment = _payment(db, enrollment)
        gateway = MagicMock()
        gateway.get_status.return_value = {
            "transaction_status": "settlement",
            "transaction_id": "gw-9",
            "payment_type": "gopay",
            "settlement_time": "2025-01-10 10:05:00",
        }

        result = _service(db, gateway).verify_payment(payment.transaction_id)

        gateway.get_status.assert_called_once_with(payment.order_id)
        assert result.status == "settlement"
        assert payment.payment_method == "gopay"

    def test_cancel_pending(self, db, make_user, make_course, make_enrollment):
        user = make_user()
        enrollment = make_enrollment(user, make_course(), status="pending_payment")
        payment = _payment(db, enrollment)
        gateway = MagicMock()

        result = _service(db, gateway).cancel_transaction(payment.transaction_id, actor_id=user.id)

        gateway.cancel.assert_called_once_with(payment.order_id)
        assert result.status == "cancel"
        db.refresh(enrollment)
        assert enrollment.status == "cancelled"

    @pytest.mark.parametrize("status", ["settlement", "deny", "expire", "refund"])
    def test_cancel_non_pending_is_illegal(self, db, make_user, make_course, make_enrollment, status):
        user = make_user()
        enrollment = make_enrollment(user, make_course(), status="active")
        payment = _payment(db, enrollment, status=status)
        gateway = MagicMock()

        with pytest.raises(PaymentStateError) as exc_info:
            _service(db, gateway).cancel_transaction(payment.transaction_id)
        assert exc_info.value.current == status
        gateway.cancel.assert_not_called()

    def test_full_refund(self, db, make_user, make_course, make_enrollment):
        user = make_user()
        enrollment = make_enrollment(user, make_course(), status="active")
        payment = _payment(db, enrollment, status="settlement")
        gateway = MagicMock()

        result = _service(db, gateway).refund_transaction(payment.transaction_id, reason="Duplicate purchase")

        assert result.status == "refund"
        assert payment.failure_reason == "Duplicate purchase"
        order_id, parameter = gateway.refund.call_args.args
        assert order_id == payment.order_id
        assert parameter["refund_key"].startswith(f"refund-{payment.transaction_id}-")
        assert "amount" not in parameter

    def test_partial_refund(self, db, make_user, make_course, make_enrollment):
        user = make_user()
        enrollment = make_enrollment(user, make_course(), status="active")
        payment = _payment(db, enrollment, status="capture")

        result = _service(db).refund_transaction(payment.transaction_id, amount=50000)
        assert result.status == "partial_refund"

    @pytest.mark.parametrize("amount", [0, -1, 150001, True])
    def test_refund_amount_bounds(self, db, make_user, make_course, make_enrollment, amount):
        user = make_user()
        enrollment = make_enrollment(user, make_course(), status="active")
        payment = _payment(db, enrollment, status="settlement")
        gateway = MagicMock()

        with pytest.raises(ValidationError):
            _service(db, gateway).refund_transaction(payment.transaction_id, amount=amount)
        gateway.refund.assert_not_called()

    def test_refund_requires_settled_payment(self, db, make_user, make_course, make_enrollment):
        user = make_user()
        enrollment = make_enrollment(user, make_course(), status="pending_payment")
        payment = _payment(db, enrollment)
        with pytest.raises(PaymentStateError):
            _service(db).refund_transaction(payment.transaction_id)

    def test_unknown_payment(self, db):
        with pytest.raises(NotFoundError):
            _service(db).cancel_transaction("missing")


class TestQueries:
    def test_statistics_without_payments(self, db):
        stats = _service(db).get_payment_statistics()
        assert stats == {
            "total_transactions": 0,
            "successful_transactions": 0,
            "pending_transactions": 0,
            "failed_transactions": 0,
            "total_revenue": 0.0,
            "average_transaction_amount": 0.0,
            "success_rate": 0.0,
        }

    def test_statistics(self, db, make_user, make_course, make_enrollment):
        user = make_user()
        enrollment = make_enrollment(user, make_course(), status="active")
        _payment(db, enrollment, status="settlement", amount=Decimal("100000"))
        _payment(db, enrollment, status="capture", amount=Decimal("200000"))
        _payment(db, enrollment, status="pending")

        stats = _service(db).get_payment_statistics()
        assert stats["total_transactions"] == 3
        assert stats["successful_transactions"] == 2
        assert stats["pending_transactions"] == 1
        assert stats["failed_transactions"] == 0
        assert stats["total_revenue"] == 300000.0
        assert stats["average_transaction_amount"] == 100000.0
        assert stats["success_rate"] == 66.67

    def test_average_counts_unpaid_transactions(self, db, make_user, make_course, make_enrollment):
        user = make_user()
        enrollment = make_enrollment(user, make_course(), status="active")
        _payment(db, enrollment, status="settlement", amount=Decimal("100000"))
        _payment(db, enrollment, status="pending", amount=Decimal("100000"))

        stats = _service(db).get_payment_statistics()
        assert stats["total_revenue"] == 100000.0
        assert stats["average_transaction_amount"] == 50000.0

    def test_statistics_serialize_camel_case(self, db):
        from app.schemas.payments import PaymentStatisticsOut

        body = PaymentStatisticsOut(**_service(db).get_payment_statistics()).model_dump(by_alias=True)
        assert set(body) == {
            "totalTransactions",
            "successfulTransactions",
            "pendingTransactions",
            "failedTransactions",
            "totalRevenue",
            "averageTransactionAmount",
            "successRate",
        }

    def test_lookup_by_transaction_or_order_id(self, db, make_user, make_course, make_enrollment):
        user = make_user()
        enrollment = make_enrollment(user, make_course(), status="pending_payment")
        payment = _payment(db, enrollment)
        service = _service(db)
        assert service.get_payment(payment.transaction_id).id == payment.id
        assert service.get_payment(payment.order_id).id == payment.id
        assert service.get_payment_by_order_id(payment.order_id).id == payment.id

    def test_list_transactions_filters_by_status(self, db, make_user, make_course, make_enrollment):
        user = make_user()
        enrollment = make_enrollment(user, make_course(), status="active")
        _payment(db, enrollment, status="settlement")
        _payment(db, enrollment, status="pending")

        result = _service(db).list_transactions(status="pending")
        assert result["total"] == 1
        assert result["items"][0].status == "pending"

    def test_stale_pending(self, db, make_user, make_course, make_enrollment):
        user = make_user()
        enrollment = make_enrollment(user, make_course(), status="pending_payment")
        old = _payment(db, enrollment)
        old.created_at = datetime.now(timezone.utc) - timedelta(hours=2)
        _payment(db, enrollment)
        db.flush()

        stale = _service(db).list_stale_pending(older_than_minutes=30)
        assert [p.id for p in stale] == [old.id]

    def test_payment_methods(self):
        from app.services.payments.service import PaymentService

        methods = PaymentService.available_payment_methods()
        assert {"credit_card", "bank_transfer", "e_wallet", "bnpl", "echannel"} <= set(methods)
