"""
Certificate entity rules (no database access).

Serial numbers look like CERT-<digits>-<A-Z0-9>. The digit block is the
creation time in milliseconds followed by the zero-padded pool sequence, so
serials from one batch can never collide with each other.
"""
import re
import secrets
import string
import time

from app.core.errors import CertificateStateError
from app.models.certificate import CERTIFICATE_ASSIGNED, CERTIFICATE_AVAILABLE

SERIAL_NUMBER_RE = re.compile(r"^CERT-\d+-[A-Z0-9]+$")
SERIAL_ALPHABET = string.ascii_uppercase + string.digits

MAX_BATCH_SIZE = 10000
BATCH_NAME_MIN = 3
BATCH_NAME_MAX = 100


def generate_serial_number(sequence: int | None = None, now_ms: int | None = None) -> str:
    timestamp = now_ms if now_ms is not None else int(time.time() * 1000)
    digits = f"{timestamp}{sequence:06d}" if sequence is not None else str(timestamp)
    suffix = "".join(secrets.choice(SERIAL_ALPHABET) for _ in range(6))
    return f"CERT-{digits}-{suffix}"


def is_valid_serial_number(serial_number) -> bool:
    if not isinstance(serial_number, str):
        return False
    return SERIAL_NUMBER_RE.match(serial_number) is not None


def ensure_can_assign(status: str) -> None:
    if status != CERTIFICATE_AVAILABLE:
        raise CertificateStateError("Certificate is not available for assignment")


def ensure_can_access(status: str) -> None:
    if status != CERTIFICATE_ASSIGNED:
        raise CertificateStateError("Certificate must be assigned before marking as accessed")


def validate_batch_request(batch_name, storage_folder_ref, count) -> list[str]:
    """Return every problem with a batch request; empty list means valid."""
    errors: list[str] = []
    name = (batch_name or "").strip() if isinstance(batch_name, str) else ""
    if not name:
        errors.append("Batch name is required")
    elif not BATCH_NAME_MIN <= len(name) <= BATCH_NAME_MAX:
        errors.append(f"Batch name must be between {BATCH_NAME_MIN} and {BATCH_NAME_MAX} characters")

    if not isinstance(storage_folder_ref, str) or not storage_folder_ref.strip():
        errors.append("Storage folder reference is required")

    if isinstance(count, bool) or not isinstance(count, int):
        errors.append("Certificate count must be an integer")
    elif count <= 0:
        errors.append("Certificate count must be positive")
    elif count > MAX_BATCH_SIZE:
        errors.append(f"Certificate count cannot exceed {MAX_BATCH_SIZE}")
    return errors


def certificate_file_name(batch_name: str, sequence: int) -> str:
    slug = re.sub(r"[^A-Za-z0-9]+", "_", batch_name.strip()).strip("_").lower() or "certificate"
    return f"{slug}_{sequence:05d}.pdf"
