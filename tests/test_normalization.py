from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

import pytest
from pydantic import ValidationError

from smartsan.ingestion.normalize import parse_timestamp, safe_decimal, safe_float, safe_int
from smartsan.models.booking import BookingRequest
from smartsan.models.payment import PaymentInitiation, ProviderPaymentStatus, WebhookPayload
from smartsan.models.telemetry import TelemetryPayload


def test_safe_float_rejects_sentinels_bools_and_non_finite() -> None:
    assert safe_float("12.5") == 12.5
    assert safe_float("--") is None
    assert safe_float(True) is None
    assert safe_float("inf") is None
    assert safe_float(float("nan")) is None
    assert safe_int("7.9") == 7


def test_safe_decimal() -> None:
    assert safe_decimal("525.00") == Decimal("525.00")
    assert safe_decimal("abc") is None
    assert safe_decimal("") is None


@pytest.mark.parametrize(
    "value",
    [1_772_438_400, 1_772_438_400_000, "1772438400", "2026-03-02T08:00:00Z", "2026-03-02T08:00:00"],
)
def test_parse_timestamp_accepts_epoch_and_iso(value: object) -> None:
    assert parse_timestamp(value) == datetime(2026, 3, 2, 8, 0, tzinfo=UTC)


def test_parse_timestamp_missing_and_garbage() -> None:
    assert parse_timestamp(None) is None
    assert parse_timestamp("") is None
    with pytest.raises(ValueError):
        parse_timestamp("yesterday")
    for huge in (1e300, 10**400, float("inf"), "9" * 40):
        with pytest.raises(ValueError):
            parse_timestamp(huge)


def test_telemetry_payload_aliases_and_string_numbers() -> None:
    payload = TelemetryPayload.model_validate(
        {"fillLevel": "55.5", "doorOpenCount": "3", "lat": "-1.3", "lon": 36.8, "firmware": "1.2.0"}
    )

    assert payload.fill_level_pct == 55.5
    assert payload.door_open_count == 3
    assert payload.position is not None
    assert payload.position.longitude == 36.8


def test_telemetry_payload_requires_paired_coordinates() -> None:
    with pytest.raises(ValidationError):
        TelemetryPayload.model_validate({"fillLevelPct": 10, "latitude": -1.3})


def test_telemetry_payload_rejects_non_numeric_reading() -> None:
    with pytest.raises(ValidationError):
        TelemetryPayload.model_validate({"fillLevelPct": "full"})


def test_booking_request_normalizes_phones() -> None:
    request = BookingRequest.model_validate(
        {
            "customerName": "Amina",
            "customerPhone": "+254 700 000 001",
            "operatorId": "op-1",
            "serviceType": "standard",
            "startDate": "2026-03-05",
            "location": "Kibera",
            "price": "525",
            "payment_phone": "0712345678",
        }
    )

    assert request.customer_phone == "254700000001"
    assert request.mpesa_number == "0712345678"
    assert request.price == Decimal("525")


def test_payment_initiation_accepts_nested_invoice() -> None:
    initiation = PaymentInitiation.model_validate(
        {"id": "req-1", "invoice": {"invoice_id": "INV-1", "state": "PENDING"}, "checkout_id": None}
    )

    assert initiation.checkout_id == "INV-1"
    assert initiation.status == "PENDING"


def test_provider_status_normalizes_state_and_amount() -> None:
    status = ProviderPaymentStatus.model_validate(
        {"invoice": {"state": "complete", "value": "525.00", "mpesa_reference": "QK1"}}
    )

    assert status.is_terminal and status.is_complete
    assert status.amount == Decimal("525.00")
    assert status.reference == "QK1"


def test_webhook_amount_and_reference_fallbacks() -> None:
    webhook = WebhookPayload.model_validate({"checkout_id": "ck_1", "state": "failed", "value": 100, "api_ref": "A1"})

    assert webhook.is_terminal
    assert webhook.amount == Decimal("100")
    assert webhook.reference == "A1"
