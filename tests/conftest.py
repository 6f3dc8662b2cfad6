"""Shared pytest fixtures."""

from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest

from telemed_settlement.auth import Principal, Role
from telemed_settlement.invoices import LocalDocumentStorage
from telemed_settlement.ledger.database import DoctorRepository, init_database
from telemed_settlement.ledger.database import connection
from telemed_settlement.ledger.database.doctor_repository import Doctor
from telemed_settlement.operations import BookingOperations
from telemed_settlement.payment_gateway import (
    GatewayOrder,
    GatewayPayment,
    GatewayRefund,
    expected_signature,
)

TEST_KEY_ID = "rzp_test_key"
TEST_SECRET = "test_secret"


def sign(order_id: str, payment_id: str, secret: str = TEST_SECRET) -> str:
    """Signature the gateway would hand the client after checkout."""
    return expected_signature(order_id, payment_id, secret)


@pytest.fixture(autouse=True)
def ledger_db(tmp_path, monkeypatch):
    """Fresh SQLite ledger per test, seeded with default platform settings."""
    monkeypatch.setattr(connection, "DB_PATH", tmp_path / "ledger.db")
    init_database()
    yield tmp_path / "ledger.db"


@pytest.fixture(autouse=True)
def gateway_env(monkeypatch):
    """Gateway credentials present unless a test removes them."""
    monkeypatch.setenv("RAZORPAY_KEY_ID", TEST_KEY_ID)
    monkeypatch.setenv("RAZORPAY_KEY_SECRET", TEST_SECRET)


@pytest.fixture
def doctors():
    """Doctor profiles: one with a bank account, one with UPI, one with neither."""
    repo = DoctorRepository()
    return {
        "bank": repo.create(Doctor(
            id="doc-1", name="Dr. Ananya Rao", consultation_fee=500.0,
            bank_account_number="001234567890", ifsc_code="HDFC0001234",
        )),
        "upi": repo.create(Doctor(
            id="doc-2", name="Dr. Vikram Mehta", consultation_fee=800.0,
            upi_id="vikram@okaxis",
        )),
        "none": repo.create(Doctor(id="doc-3", name="Dr. Priya Nair", consultation_fee=650.0)),
    }


@pytest.fixture
def gateway():
    """Gateway double: a captured 650.00 payment and successful refunds."""
    mock = MagicMock()
    mock.create_order.return_value = GatewayOrder(
        order_id="order_test_1", amount=65000, currency="INR", receipt="r",
    )
    mock.fetch_payment.return_value = GatewayPayment(
        payment_id="pay_1", status="captured", amount_captured=650.0,
        amount_refunded=0.0, method="upi", captured=True,
    )
    mock.refund.side_effect = lambda payment_id, amount_minor, notes=None: GatewayRefund(
        refund_id="rfnd_1", status="processed", amount=amount_minor / 100,
        created_at=datetime.now().isoformat(),
    )
    return mock


@pytest.fixture
def notifier():
    return MagicMock()


@pytest.fixture
def storage(tmp_path):
    return LocalDocumentStorage(tmp_path / "documents")


@pytest.fixture
def ops(gateway, notifier, storage):
    return BookingOperations(gateway=gateway, notifier=notifier, storage=storage)


@pytest.fixture
def patient():
    return Principal("pat-1", Role.PATIENT)


@pytest.fixture
def doctor():
    return Principal("doc-1", Role.DOCTOR)


@pytest.fixture
def admin():
    return Principal("admin-1", Role.ADMIN)


@pytest.fixture
def booking_request():
    """Factory for valid booking payloads."""
    counter = {"n": 0}

    def make(patient_id="pat-1", doctor_id="doc-1", **overrides):
        counter["n"] += 1
        order_id = f"order_{counter['n']}"
        payment_id = f"pay_{counter['n']}"
        data = {
            "patient_id": patient_id,
            "doctor_id": doctor_id,
            "patient_name": "Rahul Sharma",
            "patient_age": 34,
            "patient_gender": "Male",
            "scheduled_at": datetime.now() + timedelta(days=2),
            "symptoms": "Persistent cough",
            "payment": {
                "order_id": order_id,
                "payment_id": payment_id,
                "signature": sign(order_id, payment_id),
            },
        }
        data.update(overrides)
        return data

    return make


@pytest.fixture
def booked(ops, patient, doctors, booking_request):
    """A paid, pending appointment with doc-1 (fee 500, total 650)."""
    result = ops.book(patient, booking_request())
    assert result.ok, result.message
    return result.value


@pytest.fixture
def complete_appointment(ops, doctor):
    """Accept and complete an appointment as its doctor."""

    def run(appointment_id, completed_at=None):
        assert ops.accept(doctor, appointment_id).ok
        payload = {"call_duration": "15:00"}
        if completed_at:
            payload["completed_at"] = completed_at
        result = ops.complete(doctor, appointment_id, payload)
        assert result.ok, result.message
        return result.value

    return run
