"""Gateway status -> internal PaymentStatus."""
from app.models.payment import FAILED_STATUSES, SETTLED_STATUSES, PaymentStatus

# Gateway statuses that have a same-named internal status.
_DIRECT = {
    status.value: status
    for status in (
        PaymentStatus.SETTLEMENT,
        PaymentStatus.CAPTURE,
        PaymentStatus.PENDING,
        PaymentStatus.DENY,
        PaymentStatus.CANCEL,
        PaymentStatus.EXPIRE,
        PaymentStatus.REFUND,
        PaymentStatus.PARTIAL_REFUND,
    )
}


def map_gateway_status(transaction_status: str | None, fraud_status: str | None = None) -> PaymentStatus:
    """
    Fraud verdict wins over the transaction status: `challenge` holds the
    payment in pending, `accept` settles it. Unknown statuses stay pending.
    """
    if fraud_status == "challenge":
        return PaymentStatus.PENDING
    if fraud_status == "accept":
        return PaymentStatus.SETTLEMENT
    return _DIRECT.get(transaction_status or "", PaymentStatus.PENDING)


def is_settled(status: str) -> bool:
    return status in {s.value for s in SETTLED_STATUSES}


def is_failed(status: str) -> bool:
    return status in {s.value for s in FAILED_STATUSES}
