from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


# Request fields are optional at the schema level: business rules are checked
# together by validate_transaction_request so the client gets every error at once.
class CustomerDetails(BaseModel):
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    phone: str | None = None
    address: str | None = None
    city: str | None = None
    postal_code: str | None = None
    country_code: str | None = "IDN"


class TransactionItem(BaseModel):
    id: str | None = None
    name: str | None = None
    price: float | None = None
    quantity: int | None = None
    merchant_name: str | None = None


class TransactionRequest(BaseModel):
    order_id: str | None = None
    user_id: str | None = None
    amount: float | None = None
    customer_details: CustomerDetails | None = None
    items: list[TransactionItem] | None = None
    discount: float | None = None
    description: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class TransactionCreated(BaseModel):
    transaction_id: str
    order_id: str
    amount: Decimal
    snap_token: str
    redirect_url: str
    expires_at: datetime


class RefundRequest(BaseModel):
    amount: float | None = None
    reason: str | None = None


class PaymentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    transaction_id: str
    order_id: str
    enrollment_id: str
    user_id: str
    course_id: str | None = None
    amount: Decimal
    status: str
    payment_method: str
    redirect_url: str | None = None
    failure_reason: str | None = None
    paid_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class PaymentStatisticsOut(BaseModel):
    total_transactions: int = Field(serialization_alias="totalTransactions")
    successful_transactions: int = Field(serialization_alias="successfulTransactions")
    pending_transactions: int = Field(serialization_alias="pendingTransactions")
    failed_transactions: int = Field(serialization_alias="failedTransactions")
    total_revenue: float = Field(serialization_alias="totalRevenue")
    average_transaction_amount: float = Field(serialization_alias="averageTransactionAmount")
    success_rate: float = Field(serialization_alias="successRate")


class WebhookAck(BaseModel):
    status: str
    transaction_id: str
    payment_status: str
    applied: bool
