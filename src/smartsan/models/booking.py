"""Customer and booking models."""

from __future__ import annotations

from decimal import Decimal
from enum import StrEnum

from pydantic import AliasChoices, Field, field_serializer, field_validator

from smartsan.models._base import SmartSanBaseModel, UtcDatetime, new_id, utcnow


class BookingStatus(StrEnum):
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(StrEnum):
    """Payment axis of a booking.

    ``pending`` moves to ``paid`` or ``failed`` exactly once; both are
    absorbing.  ``refunded`` is recorded by operators outside the core.
    """

    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"

    @property
    def is_terminal(self) -> bool:
        return self in (PaymentStatus.PAID, PaymentStatus.FAILED)


class Customer(SmartSanBaseModel):
    id: str = Field(default_factory=new_id)
    name: str
    phone: str
    email: str | None = None
    address: str | None = None
    created_at: UtcDatetime = Field(default_factory=utcnow)


class Booking(SmartSanBaseModel):
    """A customer booking with independent service and payment status axes.

    ``payment_ref`` holds the provider checkout identifier used to correlate
    webhook and poll results; ``payment_reference`` holds the provider
    receipt once the payment completes.
    """

    id: str = Field(default_factory=new_id)
    customer_id: str
    operator_id: str
    unit_id: str | None = None
    service_type: str
    start_date: UtcDatetime
    end_date: UtcDatetime | None = None
    location: str
    price: Decimal
    booking_status: BookingStatus = BookingStatus.CONFIRMED
    payment_status: PaymentStatus = PaymentStatus.PENDING
    payment_ref: str | None = None
    payment_reference: str | None = None
    failure_reason: str | None = None
    special_instructions: str | None = None
    created_at: UtcDatetime = Field(default_factory=utcnow)
    updated_at: UtcDatetime = Field(default_factory=utcnow)

    @field_serializer("price")
    def _price_as_string(self, value: Decimal) -> str:
        return f"{value:.2f}"


class BookingRequest(SmartSanBaseModel):
    """Inbound booking request.

    ``mpesa_number`` is the phone that receives the STK push; it may differ
    from the customer's contact phone.
    """

    customer_name: str = Field(..., min_length=1)
    customer_phone: str = Field(..., min_length=1)
    customer_email: str | None = None
    operator_id: str = Field(..., min_length=1)
    service_type: str = Field(..., min_length=1)
    start_date: UtcDatetime
    location: str = Field(..., min_length=1)
    price: Decimal = Field(..., gt=0)
    mpesa_number: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("mpesaNumber", "mpesa_number", "paymentPhone", "payment_phone"),
    )
    special_instructions: str | None = None
    unit_id: str | None = None

    @field_validator("customer_phone", "mpesa_number")
    @classmethod
    def _normalize_phone(cls, value: str) -> str:
        digits = value.strip().replace(" ", "").lstrip("+")
        if not digits.isdigit() or not 9 <= len(digits) <= 15:
            raise ValueError(f"invalid phone number: {value!r}")
        return digits

    def to_customer(self) -> Customer:
        return Customer(
            name=self.customer_name,
            phone=self.customer_phone,
            email=self.customer_email,
            address=self.location,
        )

    def to_booking(self, customer_id: str) -> Booking:
        return Booking(
            customer_id=customer_id,
            operator_id=self.operator_id,
            unit_id=self.unit_id,
            service_type=self.service_type,
            start_date=self.start_date,
            location=self.location,
            price=self.price,
            special_instructions=self.special_instructions,
        )
