"""Tests for payment settlement: orders, verification and refunds."""

import pytest

from telemed_settlement.auth import Principal, Role
from telemed_settlement.errors import GatewayError
from telemed_settlement.ledger.database import AppointmentRepository, SettingsRepository
from telemed_settlement.ledger.database.appointment_repository import (
    Appointment,
    PaymentDetails,
    RefundDetails,
)
from telemed_settlement.payment_gateway import GatewayPayment, GatewayRefund, expected_signature
from telemed_settlement.settlement import quote_refund


@pytest.fixture
def unpaid():
    """An appointment awaiting payment verification."""
    return AppointmentRepository().create(Appointment(
        id="apt-unpaid", patient_id="pat-1", doctor_id="doc-1",
        patient_name="Rahul Sharma", patient_age=34, patient_gender="Male",
        scheduled_at="2026-11-01T10:00:00", consultation_fee=500.0,
        patient_commission_rate=30.0, doctor_commission_rate=10.0, total_fee=650.0,
        payment=PaymentDetails(),
    ))


@pytest.fixture
def canceled(ops, patient, booked):
    """The booked 650.00 appointment, canceled and awaiting refund."""
    result = ops.cancel(patient, booked.id, {"reason": "Feeling better"})
    assert result.value.refund_status == "Pending"
    return result.value


def verification(order_id="order_v", payment_id="pay_v", appointment_id=None, signature=None):
    data = {
        "order_id": order_id,
        "payment_id": payment_id,
        "signature": signature or expected_signature(order_id, payment_id, "test_secret"),
    }
    if appointment_id:
        data["appointment_id"] = appointment_id
    return data


class TestCreateOrder:
    """Tests for create_order."""

    def test_creates_order_in_minor_units(self, ops, patient, gateway):
        result = ops.create_order(patient, {"amount": 650})
        assert result.ok
        assert result.value.order_id == "order_test_1"
        assert result.value.key_id == "rzp_test_key"
        amount_minor, currency, receipt = gateway.create_order.call_args.args
        assert amount_minor == 65000
        assert currency == "INR"
        assert receipt.startswith("order_")

    def test_amount_rounded_before_conversion(self, ops, patient, gateway):
        ops.create_order(patient, {"amount": 499.999})
        assert gateway.create_order.call_args.args[0] == 50000

    @pytest.mark.parametrize("amount", [0, -10])
    def test_amount_must_be_positive(self, ops, patient, gateway, amount):
        result = ops.create_order(patient, {"amount": amount})
        assert result.error_kind == "ValidationError"
        gateway.create_order.assert_not_called()

    def test_for_own_appointment(self, ops, patient, gateway, doctors, unpaid):
        result = ops.create_order(patient, {"amount": 650, "appointment_id": unpaid.id})
        assert result.ok
        assert gateway.create_order.call_args.args[2] == f"appointment_{unpaid.id}"

    def test_for_other_patients_appointment(self, ops, gateway, doctors, unpaid):
        other = Principal("pat-2", Role.PATIENT)
        result = ops.create_order(other, {"amount": 650, "appointment_id": unpaid.id})
        assert result.error_kind == "Forbidden"

    def test_for_missing_appointment(self, ops, patient):
        assert ops.create_order(patient, {"amount": 650, "appointment_id": "nope"}).error_kind == "NotFound"

    def test_missing_credentials(self, ops, patient, gateway, monkeypatch):
        monkeypatch.delenv("RAZORPAY_KEY_ID")
        result = ops.create_order(patient, {"amount": 650})
        assert result.error_kind == "ConfigurationError"
        gateway.create_order.assert_not_called()

    def test_gateway_failure(self, ops, patient, gateway):
        gateway.create_order.side_effect = GatewayError("timed out")
        assert ops.create_order(patient, {"amount": 650}).error_kind == "GatewayError"


class TestVerifyPayment:
    """Tests for verify_payment."""

    def test_signature_only(self, ops, patient):
        result = ops.verify_payment(patient, verification())
        assert result.ok
        assert result.value.payment.payment_id == "pay_v"
        assert result.value.appointment is None

    def test_signature_mismatch(self, ops, patient, doctors, unpaid):
        result = ops.verify_payment(patient, verification(appointment_id=unpaid.id, signature="f" * 64))
        assert result.error_kind == "SignatureMismatch"
        assert AppointmentRepository().get_by_id(unpaid.id).payment_status == "pending"

    def test_marks_appointment_paid(self, ops, patient, doctors, unpaid, notifier):
        result = ops.verify_payment(patient, verification(appointment_id=unpaid.id))
        appointment = result.value.appointment
        assert appointment.payment_status == "paid"
        assert appointment.booking_status == "booked"
        assert appointment.payment.payment_id == "pay_v"
        assert appointment.payment.method == "upi"
        assert appointment.payment.amount_paid == 650
        assert {c.args[0] for c in notifier.notify.call_args_list} == {"pat-1", "doc-1"}

    def test_verify_is_idempotent(self, ops, patient, doctors, unpaid, notifier):
        ops.verify_payment(patient, verification(appointment_id=unpaid.id))
        notifier.reset_mock()
        events_before = len(AppointmentRepository().get_events(unpaid.id))

        result = ops.verify_payment(patient, verification(appointment_id=unpaid.id))

        assert result.ok
        assert result.value.already_recorded
        notifier.notify.assert_not_called()
        assert len(AppointmentRepository().get_events(unpaid.id)) == events_before

    def test_enrichment_failure_is_not_fatal(self, ops, patient, doctors, unpaid, gateway):
        gateway.fetch_payment.side_effect = GatewayError("unreachable")
        result = ops.verify_payment(patient, verification(appointment_id=unpaid.id))
        assert result.ok
        assert result.value.appointment.payment.method == "N/A"
        assert result.value.appointment.payment.amount_paid == 650

    def test_underpaid_capture_not_marked_paid(self, ops, patient, doctors, unpaid, gateway, notifier):
        gateway.fetch_payment.return_value = GatewayPayment(
            payment_id="pay_v", status="captured", amount_captured=1.0,
            amount_refunded=0.0, method="card", captured=True,
        )
        result = ops.verify_payment(patient, verification(appointment_id=unpaid.id))
        assert result.error_kind == "GatewayError"
        stored = AppointmentRepository().get_by_id(unpaid.id)
        assert stored.payment_status == "pending"
        assert stored.payment.payment_id is None
        notifier.notify.assert_not_called()

    def test_payment_of_another_booking(self, ops, patient, booked, unpaid):
        result = ops.verify_payment(patient, verification(
            order_id="order_1", payment_id="pay_1", appointment_id=unpaid.id,
        ))
        assert result.error_kind == "Forbidden"
        assert AppointmentRepository().get_by_id(unpaid.id).payment_status == "pending"

    def test_other_patients_appointment(self, ops, doctors, unpaid):
        other = Principal("pat-2", Role.PATIENT)
        result = ops.verify_payment(other, verification(appointment_id=unpaid.id))
        assert result.error_kind == "Forbidden"

    def test_refunded_appointment(self, ops, patient, admin, canceled):
        ops.process_refund(admin, {"appointment_id": canceled.id, "refund_amount": 600})
        result = ops.verify_payment(patient, verification(appointment_id=canceled.id))
        assert result.error_kind == "InvalidTransition"


class TestQuoteRefund:
    """Refund arithmetic."""

    def test_default_breakdown(self):
        quote = quote_refund(650, 600, SettingsRepository().get())
        assert quote.max_refundable == 600
        assert quote.gateway_fee == 13.0
        assert quote.gst_on_gateway_fee == 2.34
        assert quote.residual_after_refund == pytest.approx(34.66)

    def test_fee_larger_than_total(self):
        settings = SettingsRepository().update({"cancellation_fee": 1000})
        assert quote_refund(650, 10, settings).max_refundable == 0


class TestProcessRefund:
    """Tests for process_refund."""

    def test_refund_through_gateway(self, ops, admin, canceled, gateway):
        result = ops.process_refund(admin, {"appointment_id": canceled.id, "refund_amount": 600})
        assert result.ok
        assert result.value.mode == "gateway"

        payment_id, amount_minor = gateway.refund.call_args.args
        assert payment_id == "pay_1"
        assert amount_minor == 60000
        assert gateway.refund.call_args.kwargs["notes"]["appointment_id"] == canceled.id

        stored = AppointmentRepository().get_by_id(canceled.id)
        assert stored.payment_status == "refunded"
        assert stored.refund_status == "Processed"
        assert stored.refund.refund_id == "rfnd_1"
        assert stored.refund.amount == 600
        assert stored.refund.cancellation_fee == 50
        assert stored.refund.gateway_fee == 13.0
        assert stored.refund.gst_on_gateway_fee == 2.34
        assert stored.refund.residual_after_refund == pytest.approx(34.66)

    def test_refund_boundary(self, ops, admin, canceled, gateway):
        result = ops.process_refund(admin, {"appointment_id": canceled.id, "refund_amount": 600.01})
        assert result.error_kind == "AmountExceeded"
        gateway.refund.assert_not_called()

    def test_second_refund_rejected(self, ops, admin, canceled):
        ops.process_refund(admin, {"appointment_id": canceled.id, "refund_amount": 600})
        result = ops.process_refund(admin, {"appointment_id": canceled.id, "refund_amount": 100})
        assert result.error_kind == "AlreadyProcessed"

    def test_requires_admin(self, ops, patient, canceled):
        result = ops.process_refund(patient, {"appointment_id": canceled.id, "refund_amount": 600})
        assert result.error_kind == "Forbidden"

    def test_amount_must_be_positive(self, ops, admin, canceled):
        result = ops.process_refund(admin, {"appointment_id": canceled.id, "refund_amount": 0})
        assert result.error_kind == "ValidationError"

    def test_missing_appointment(self, ops, admin):
        result = ops.process_refund(admin, {"appointment_id": "nope", "refund_amount": 10})
        assert result.error_kind == "NotFound"

    def test_not_canceled(self, ops, admin, booked):
        result = ops.process_refund(admin, {"appointment_id": booked.id, "refund_amount": 10})
        assert result.error_kind == "NotCancelable"

    def test_unpaid(self, ops, admin, patient, doctors, unpaid):
        ops.cancel(patient, unpaid.id, {"reason": "x"})
        result = ops.process_refund(admin, {"appointment_id": unpaid.id, "refund_amount": 10})
        assert result.error_kind == "NoPayment"

    def test_payment_not_captured(self, ops, admin, canceled, gateway):
        gateway.fetch_payment.return_value = GatewayPayment(
            payment_id="pay_1", status="authorized", amount_captured=650.0, amount_refunded=0.0,
        )
        result = ops.process_refund(admin, {"appointment_id": canceled.id, "refund_amount": 600})
        assert result.error_kind == "GatewayError"
        assert AppointmentRepository().get_by_id(canceled.id).refund_status == "Pending"

    def test_gateway_failure_leaves_refund_pending(self, ops, admin, canceled, gateway, notifier):
        gateway.refund.side_effect = GatewayError("Gateway error 500")
        notifier.reset_mock()
        result = ops.process_refund(admin, {"appointment_id": canceled.id, "refund_amount": 600})
        assert result.error_kind == "GatewayError"
        stored = AppointmentRepository().get_by_id(canceled.id)
        assert stored.refund_status == "Pending"
        assert stored.payment_status == "paid"
        notifier.notify.assert_not_called()

    def test_already_refunded_upstream(self, ops, admin, canceled, gateway):
        gateway.fetch_payment.return_value = GatewayPayment(
            payment_id="pay_1", status="refunded", amount_captured=650.0, amount_refunded=650.0, captured=True,
        )
        result = ops.process_refund(admin, {"appointment_id": canceled.id, "refund_amount": 600})
        assert result.value.mode == "upstream"
        assert result.value.refund.amount == 650
        gateway.refund.assert_not_called()
        assert AppointmentRepository().get_by_id(canceled.id).refund_status == "Processed"

    def test_manual_without_credentials(self, ops, admin, canceled, gateway, monkeypatch):
        gateway.fetch_payment.reset_mock()
        monkeypatch.delenv("RAZORPAY_KEY_SECRET")
        result = ops.process_refund(admin, {"appointment_id": canceled.id, "refund_amount": 550})
        assert result.value.mode == "manual"
        assert result.value.refund.refund_id.startswith("MANUAL-")
        assert result.value.refund.amount == 550
        gateway.fetch_payment.assert_not_called()

    def test_manual_without_payment_id(self, ops, admin, doctors, gateway):
        AppointmentRepository().create(Appointment(
            id="apt-cash", patient_id="pat-1", doctor_id="doc-1",
            patient_name="Rahul Sharma", patient_age=34, patient_gender="Male",
            scheduled_at="2026-11-01T10:00:00", consultation_fee=500.0,
            patient_commission_rate=30.0, doctor_commission_rate=10.0, total_fee=650.0,
            status="canceled", booking_status="booked", payment_status="paid",
            refund_status="Pending",
        ))
        result = ops.process_refund(admin, {"appointment_id": "apt-cash", "refund_amount": 600})
        assert result.value.mode == "manual"
        gateway.fetch_payment.assert_not_called()

    def test_patient_notified(self, ops, admin, canceled, notifier):
        notifier.reset_mock()
        ops.process_refund(admin, {"appointment_id": canceled.id, "refund_amount": 600})
        notifier.notify.assert_called_once()
        assert notifier.notify.call_args.args[0] == "pat-1"

    def test_refund_commit_guarded(self, ops, admin, canceled, gateway):
        """A refund committed by someone else while ours was in flight is not recorded twice."""
        repo = ops.appointment_repo

        def refund_elsewhere(payment_id, amount_minor, notes=None):
            repo.record_refund(canceled.id, RefundDetails(
                refund_id="rfnd_other", amount=600, status="Processed", created_at="2026-10-18T10:00:00",
                cancellation_fee=50, gateway_fee=13, gst_on_gateway_fee=2.34, residual_after_refund=34.66,
            ))
            return GatewayRefund(refund_id="rfnd_ours", status="processed", amount=600, created_at="2026-10-18T10:00:01")

        gateway.refund.side_effect = refund_elsewhere
        result = ops.process_refund(admin, {"appointment_id": canceled.id, "refund_amount": 600})
        assert result.error_kind == "AlreadyProcessed"
        assert repo.get_by_id(canceled.id).refund.refund_id == "rfnd_other"


class TestRefundQueue:
    """Canceled, paid appointments waiting for an admin refund."""

    def test_lists_canceled_paid_appointment(self, ops, admin, canceled, booking_request, patient):
        ops.book(patient, booking_request())
        result = ops.list_pending_refunds(admin)
        assert [a.id for a in result.value] == [canceled.id]

    def test_refunded_appointment_leaves_queue(self, ops, admin, canceled):
        ops.process_refund(admin, {"appointment_id": canceled.id, "refund_amount": 600})
        assert ops.list_pending_refunds(admin).value == []

    def test_unpaid_cancellation_not_listed(self, ops, admin, patient, doctors, unpaid):
        ops.cancel(patient, unpaid.id, {"reason": "x"})
        assert ops.list_pending_refunds(admin).value == []

    def test_requires_admin(self, ops, patient, canceled):
        assert ops.list_pending_refunds(patient).error_kind == "Forbidden"
