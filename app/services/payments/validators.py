"""
Payment input rules. Pure functions, no I/O.

Amounts are IDR. Single-value checks return (ok, error); the request check
returns every problem at once so the caller can report them together.
"""
import re
import secrets
import time
from decimal import Decimal, InvalidOperation

from app.schemas.payments import TransactionRequest

MIN_AMOUNT = 1000
MAX_AMOUNT = 999_999_999

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_DIGITS_RE = re.compile(r"^(62|0)?\d{9,12}$")


def _as_number(value) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    if not isinstance(value, (int, float, Decimal)):
        return None
    try:
        number = Decimal(str(value))
    except InvalidOperation:
        return None
    if not number.is_finite():
        return None
    return number


def validate_amount(amount) -> tuple[bool, str | None]:
    number = _as_number(amount)
    if number is None:
        return False, "Amount must be a number"
    if number < MIN_AMOUNT:
        return False, f"Minimum amount is {MIN_AMOUNT} IDR"
    if number > MAX_AMOUNT:
        return False, f"Maximum amount is {MAX_AMOUNT} IDR"
    return True, None


def validate_email(email) -> bool:
    return isinstance(email, str) and EMAIL_RE.match(email) is not None


def validate_phone_number(phone) -> bool:
    if not isinstance(phone, str):
        return False
    digits = re.sub(r"\D", "", phone)
    return PHONE_DIGITS_RE.match(digits) is not None


def validate_discount(discount, amount) -> tuple[bool, str | None]:
    value = _as_number(discount)
    total = _as_number(amount)
    if value is None:
        return False, "Discount must be a number"
    if value < 0:
        return False, "Discount cannot be negative"
    if total is not None and value > total:
        return False, "Discount cannot exceed transaction amount"
    return True, None


def validate_transaction_request(request: TransactionRequest) -> list[str]:
    errors: list[str] = []

    ok, error = validate_amount(request.amount)
    if not ok:
        errors.append(error)

    if not request.order_id:
        errors.append("Order ID is required")
    if not request.user_id:
        errors.append("User ID is required")

    customer = request.customer_details
    if customer is None:
        errors.append("Customer details are required")
    else:
        if not customer.first_name:
            errors.append("Customer first name is required")
        if not customer.last_name:
            errors.append("Customer last name is required")
        if not validate_email(customer.email):
            errors.append("Valid customer email is required")
        if not validate_phone_number(customer.phone):
            errors.append("Valid customer phone number is required")

    if not request.items:
        errors.append("At least one item is required")
    else:
        for index, item in enumerate(request.items, start=1):
            if not item.id:
                errors.append(f"Item {index}: ID is required")
            if not item.name:
                errors.append(f"Item {index}: Name is required")
            if item.price is None or item.price <= 0:
                errors.append(f"Item {index}: Valid price is required")
            if item.quantity is None or item.quantity <= 0:
                errors.append(f"Item {index}: Valid quantity is required")

    if request.discount is not None:
        ok, _ = validate_discount(request.discount, request.amount)
        if not ok:
            errors.append("Discount must be between 0 and amount")

    return errors


def format_currency(amount) -> str:
    """150000 -> 'Rp 150.000' (IDR has no minor unit in display)."""
    number = _as_number(amount) or Decimal(0)
    rounded = int(number.quantize(Decimal(1)))
    grouped = f"{abs(rounded):,}".replace(",", ".")
    sign = "-" if rounded < 0 else ""
    return f"{sign}Rp {grouped}"


def generate_invoice_number() -> str:
    return f"INV-{int(time.time() * 1000)}-{secrets.randbelow(10000)}"
