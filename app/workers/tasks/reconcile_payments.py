"""
Celery periodic task: re-check payments stuck in pending against the gateway.
Covers webhooks that never arrived.
"""
import logging

from app.api.deps import get_midtrans_client
from app.core.celery_app import celery_app
from app.core.config import settings
from app.core.errors import AppError, GatewayUnavailableError
from app.db.session import SessionLocal
from app.services.payments.service import PaymentService

logger = logging.getLogger(__name__)


@celery_app.task(name="app.workers.tasks.reconcile_payments.reconcile_pending_payments")
def reconcile_pending_payments() -> dict:
    """Verify every pending payment older than the configured age, one commit per payment."""
    db = SessionLocal()
    checked = updated = failed = 0
    try:
        service = PaymentService(
            db,
            gateway=get_midtrans_client(),
            server_key=settings.midtrans_server_key,
            expiry_minutes=settings.payment_expiry_minutes,
        )
        stale = service.list_stale_pending(
            settings.reconcile_pending_after_minutes,
            limit=settings.reconcile_batch_size,
        )
        transaction_ids = [p.transaction_id for p in stale]
        for transaction_id in transaction_ids:
            checked += 1
            try:
                result = service.verify_payment(transaction_id)
                db.commit()
                if result.changed:
                    updated += 1
            except GatewayUnavailableError:
                db.rollback()
                failed += 1
                logger.warning("reconcile_gateway_unavailable", extra={"transaction_id": transaction_id})
                break
            except AppError as e:
                db.rollback()
                failed += 1
                logger.warning(
                    "reconcile_payment_failed",
                    extra={"transaction_id": transaction_id, "error": e.message, "error_code": e.code},
                )

        logger.info(
            "reconcile_pending_payments_done",
            extra={"count": checked, "status": f"updated={updated} failed={failed}"},
        )
        return {"checked": checked, "updated": updated, "failed": failed}
    except Exception:
        db.rollback()
        logger.exception("reconcile_pending_payments_error")
        return {"checked": checked, "updated": updated, "failed": failed, "error": "exception"}
    finally:
        db.close()
