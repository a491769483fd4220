"""
Webhook signature check.

The gateway signs each notification with
sha512(transaction_id + status_code + gross_amount + server_key) in hex.
Fields are concatenated exactly as delivered; gross_amount keeps its
decimal formatting ("150000.00").
"""
import hashlib
import hmac


def compute_signature(transaction_id: str, status_code: str, gross_amount: str, server_key: str) -> str:
    raw = f"{transaction_id}{status_code}{gross_amount}{server_key}"
    return hashlib.sha512(raw.encode("utf-8")).hexdigest()


def verify_webhook_signature(
    transaction_id: str,
    status_code: str,
    gross_amount: str,
    server_key: str,
    signature_key: str | None,
) -> bool:
    if not signature_key or not server_key:
        return False
    expected = compute_signature(transaction_id, status_code, gross_amount, server_key)
    return hmac.compare_digest(expected.encode("utf-8"), str(signature_key).encode("utf-8"))
