"""Typed requests for core operations, validated with Pydantic."""

from datetime import datetime
from typing import Literal

import pydantic
from pydantic import BaseModel, Field, field_validator

from telemed_settlement.errors import ValidationError


def _naive_local(value: datetime | None) -> datetime | None:
    """Store every timestamp as naive local time so ISO strings compare."""
    if value is not None and value.tzinfo is not None:
        return value.astimezone().replace(tzinfo=None)
    return value


def _required_text(value, field_name: str) -> str:
    if value is None or not str(value).strip():
        raise ValueError(f"{field_name} is required")
    return str(value).strip()


class PaymentAuthorization(BaseModel):
    """Checkout result returned by the gateway to the patient's client."""

    order_id: str = Field(..., min_length=1)
    payment_id: str = Field(..., min_length=1)
    signature: str = Field(..., min_length=1)


class BookingRequest(BaseModel):
    patient_id: str = Field(..., min_length=1)
    doctor_id: str = Field(..., min_length=1)
    patient_name: str = Field(..., description="Patient name snapshot at booking time")
    patient_age: int = Field(..., ge=1, le=120)
    patient_gender: str
    scheduled_at: datetime
    symptoms: str | None = None
    records: list[str] = Field(default_factory=list, description="Uploaded record references")
    payment: PaymentAuthorization

    @field_validator("patient_name", "patient_gender", mode="before")
    @classmethod
    def strip_text(cls, v, info):
        return _required_text(v, info.field_name)

    @field_validator("scheduled_at")
    @classmethod
    def normalize_date(cls, v):
        return _naive_local(v)


class RejectRequest(BaseModel):
    reason: str

    @field_validator("reason", mode="before")
    @classmethod
    def reason_required(cls, v):
        return _required_text(v, "reason")


class CancelRequest(RejectRequest):
    pass


class RescheduleRequest(BaseModel):
    new_date: datetime
    reason: str

    @field_validator("reason", mode="before")
    @classmethod
    def reason_required(cls, v):
        return _required_text(v, "reason")

    @field_validator("new_date")
    @classmethod
    def normalize_date(cls, v):
        return _naive_local(v)


class CompleteRequest(BaseModel):
    call_duration: str
    completed_at: datetime | None = None

    @field_validator("call_duration", mode="before")
    @classmethod
    def duration_required(cls, v):
        # Clients send either "12:30" or a number of seconds
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            if v <= 0:
                raise ValueError("call_duration must be positive")
            return str(v)
        return _required_text(v, "call_duration")

    @field_validator("completed_at")
    @classmethod
    def normalize_date(cls, v):
        return _naive_local(v)


class NotesRequest(BaseModel):
    notes: str


class CreateOrderRequest(BaseModel):
    amount: float = Field(..., gt=0, allow_inf_nan=False)
    appointment_id: str | None = None


class VerifyPaymentRequest(PaymentAuthorization):
    appointment_id: str | None = None


class RefundRequest(BaseModel):
    appointment_id: str = Field(..., min_length=1)
    refund_amount: float = Field(..., gt=0, allow_inf_nan=False)


class EarningsQuery(BaseModel):
    doctor_id: str = Field(..., min_length=1)
    start: datetime | None = None
    end: datetime | None = None

    @field_validator("start", "end")
    @classmethod
    def normalize_date(cls, v):
        return _naive_local(v)


class WithdrawalRequest(BaseModel):
    amount: float = Field(..., gt=0, allow_inf_nan=False)


class WithdrawalApproval(BaseModel):
    withdrawal_id: str = Field(..., min_length=1)
    transaction_id: str
    payment_mode: Literal["Bank Transfer", "UPI", "Paytm", "Other"]
    approved_amount: float = Field(..., gt=0, allow_inf_nan=False)
    payment_date: datetime

    @field_validator("transaction_id", mode="before")
    @classmethod
    def transaction_required(cls, v):
        return _required_text(v, "transaction_id")

    @field_validator("payment_date")
    @classmethod
    def normalize_date(cls, v):
        return _naive_local(v)


class BulkWithdrawalApproval(BaseModel):
    """Approve several pending withdrawals, each for its requested amount."""
    withdrawal_ids: list[str] = Field(..., min_length=1)
    transaction_id: str = Field(..., description="Batch reference of the payout run")
    payment_mode: Literal["Bank Transfer", "UPI", "Paytm", "Other"]
    payment_date: datetime

    @field_validator("transaction_id", mode="before")
    @classmethod
    def transaction_required(cls, v):
        return _required_text(v, "transaction_id")

    @field_validator("payment_date")
    @classmethod
    def normalize_date(cls, v):
        return _naive_local(v)


class WithdrawalRejection(BaseModel):
    withdrawal_id: str = Field(..., min_length=1)
    reason: str

    @field_validator("reason", mode="before")
    @classmethod
    def reason_required(cls, v):
        return _required_text(v, "reason")


class SettingsUpdate(BaseModel):
    patient_commission: float | None = Field(None, ge=0, le=100, allow_inf_nan=False)
    doctor_commission: float | None = Field(None, ge=0, le=100, allow_inf_nan=False)
    cancellation_fee: float | None = Field(None, ge=0, allow_inf_nan=False)
    gateway_fee_pct: float | None = Field(None, ge=0, le=100, allow_inf_nan=False)
    gst_on_gateway_fee_pct: float | None = Field(None, ge=0, le=100, allow_inf_nan=False)
    minimum_withdrawal: float | None = Field(None, ge=0, allow_inf_nan=False)


def parse_request(model: type[BaseModel], data):
    """Build a request model, translating Pydantic errors into ValidationError."""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except pydantic.ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'request'}: {err['msg']}"
            for err in e.errors()
        )
        raise ValidationError(f"Invalid {model.__name__}: {problems}", errors=e.errors())
