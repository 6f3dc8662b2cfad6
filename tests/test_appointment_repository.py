"""Tests for the ledger repositories."""

import pytest

from telemed_settlement.auth import Principal, Role
from telemed_settlement.errors import ConfigurationError, OutOfRange
from telemed_settlement.ledger.database import (
    AppointmentRepository,
    NotificationRepository,
    SettingsRepository,
    WithdrawalRepository,
    get_connection,
)
from telemed_settlement.ledger.database.appointment_repository import (
    Appointment,
    PaymentDetails,
    RefundDetails,
)


@pytest.fixture
def repo():
    return AppointmentRepository()


def make_appointment(appointment_id="apt-1", **overrides) -> Appointment:
    fields = dict(
        id=appointment_id,
        patient_id="pat-1",
        doctor_id="doc-1",
        patient_name="Meera Iyer",
        patient_age=29,
        patient_gender="Female",
        scheduled_at="2026-11-01T10:00:00",
        consultation_fee=500.0,
        patient_commission_rate=30.0,
        doctor_commission_rate=10.0,
        total_fee=650.0,
        records=["records/xray.png"],
        status="pending",
        booking_status="booked",
        payment_status="paid",
        payment=PaymentDetails(order_id="order_1", payment_id="pay_1", signature="sig", amount_paid=650.0),
    )
    fields.update(overrides)
    return Appointment(**fields)


class TestAppointmentRepository:
    """Create, read and list."""

    def test_create_and_get(self, repo):
        repo.create(make_appointment())
        appointment = repo.get_by_id("apt-1")
        assert appointment.patient_name == "Meera Iyer"
        assert appointment.records == ["records/xray.png"]
        assert appointment.payment.payment_id == "pay_1"
        assert appointment.payment.amount_paid == 650.0
        assert appointment.refund is None
        assert appointment.created_at is not None

    def test_get_missing(self, repo):
        assert repo.get_by_id("nope") is None

    def test_find_by_payment_id(self, repo):
        repo.create(make_appointment())
        assert repo.find_by_payment_id("pay_1").id == "apt-1"
        assert repo.find_by_payment_id("pay_other") is None

    def test_list_for_doctor_filters_status(self, repo):
        repo.create(make_appointment("apt-1"))
        repo.create(make_appointment("apt-2", status="completed", payment=PaymentDetails(payment_id="pay_2")))
        repo.create(make_appointment("apt-3", doctor_id="doc-2", payment=PaymentDetails(payment_id="pay_3")))
        assert {a.id for a in repo.list_for_doctor("doc-1")} == {"apt-1", "apt-2"}
        assert [a.id for a in repo.list_for_doctor("doc-1", "completed")] == ["apt-2"]

    def test_list_all_by_payment_status(self, repo):
        repo.create(make_appointment("apt-1"))
        repo.create(make_appointment("apt-2", payment_status="pending", payment=PaymentDetails()))
        assert [a.id for a in repo.list_all(payment_status="pending")] == ["apt-2"]

    def test_duplicate_payment_id_not_inserted(self, repo):
        repo.create(make_appointment("apt-1"))
        assert repo.create(make_appointment("apt-2")) is None
        assert repo.get_by_id("apt-2") is None
        assert repo.find_by_payment_id("pay_1").id == "apt-1"

    def test_list_all_by_refund_status(self, repo):
        repo.create(make_appointment("apt-1", status="canceled", refund_status="Pending"))
        repo.create(make_appointment("apt-2", status="canceled", payment=PaymentDetails(payment_id="pay_2")))
        assert [a.id for a in repo.list_all(status="canceled", refund_status="Pending")] == ["apt-1"]


class TestConditionalUpdates:
    """Guarded writes and the event log."""

    def test_transition_applies_when_guard_holds(self, repo):
        repo.create(make_appointment())
        actor = Principal("doc-1", Role.DOCTOR)
        updated = repo.transition("apt-1", ["pending"], {"status": "accepted"}, "accepted", actor)
        assert updated.status == "accepted"

    def test_transition_noop_when_guard_fails(self, repo):
        repo.create(make_appointment(status="canceled"))
        assert repo.transition("apt-1", ["pending"], {"status": "accepted"}, "accepted") is None
        assert repo.get_by_id("apt-1").status == "canceled"

    def test_transition_payment_guard(self, repo):
        repo.create(make_appointment())
        result = repo.transition(
            "apt-1", ["pending"], {"status": "canceled"}, "canceled", payment_status="pending",
        )
        assert result is None

    def test_transition_missing_row(self, repo):
        assert repo.transition("nope", ["pending"], {"status": "accepted"}, "accepted") is None

    def test_unknown_column_rejected(self, repo):
        repo.create(make_appointment())
        with pytest.raises(ValueError):
            repo.update_fields("apt-1", {"total_fee": 1}, "tamper")

    def test_record_payment_only_once(self, repo):
        repo.create(make_appointment(payment_status="pending", booking_status="pending", payment=PaymentDetails()))
        payment = PaymentDetails(order_id="o", payment_id="p", signature="s", method="card", amount_paid=650.0)
        first = repo.record_payment("apt-1", payment)
        assert first.payment_status == "paid"
        assert first.booking_status == "booked"
        assert repo.record_payment("apt-1", payment) is None

    def test_record_payment_refuses_payment_of_another_appointment(self, repo):
        repo.create(make_appointment("apt-1"))
        repo.create(make_appointment(
            "apt-2", payment_status="pending", booking_status="pending", payment=PaymentDetails(),
        ))
        reused = PaymentDetails(order_id="order_1", payment_id="pay_1", signature="sig", amount_paid=650.0)
        assert repo.record_payment("apt-2", reused) is None
        assert repo.get_by_id("apt-2").payment_status == "pending"

    def test_record_refund_requires_canceled_and_paid(self, repo):
        repo.create(make_appointment())
        refund = RefundDetails(
            refund_id="rfnd_1", amount=600.0, status="Processed", created_at="2026-11-02T10:00:00",
            cancellation_fee=50.0, gateway_fee=13.0, gst_on_gateway_fee=2.34, residual_after_refund=34.66,
        )
        assert repo.record_refund("apt-1", refund) is None

        repo.transition("apt-1", ["pending"], {"status": "canceled", "refund_status": "Pending"}, "canceled")
        updated = repo.record_refund("apt-1", refund)
        assert updated.payment_status == "refunded"
        assert updated.refund_status == "Processed"
        assert updated.refund.residual_after_refund == 34.66
        assert updated.refunded_at is not None

        assert repo.record_refund("apt-1", refund) is None

    def test_events_are_appended(self, repo):
        repo.create(make_appointment(), actor=Principal("pat-1", Role.PATIENT))
        repo.transition("apt-1", ["pending"], {"status": "accepted"}, "accepted", Principal("doc-1", Role.DOCTOR))
        repo.update_fields("apt-1", {"notes": "Bring reports"}, "notes_updated")

        events = repo.get_events("apt-1")
        assert [e["event"] for e in events] == ["booked", "accepted", "notes_updated"]
        assert events[0]["actor_role"] == "patient"
        assert events[1]["from_status"] == "pending"
        assert events[1]["to_status"] == "accepted"
        assert events[2]["actor_id"] == "system"
        assert events[2]["detail"] == {"notes": "Bring reports"}

    def test_failed_guard_logs_no_event(self, repo):
        repo.create(make_appointment(status="completed"))
        repo.transition("apt-1", ["pending"], {"status": "accepted"}, "accepted")
        assert [e["event"] for e in repo.get_events("apt-1")] == ["booked"]


class TestSettingsRepository:
    """Tests for the platform settings singleton."""

    def test_seeded_defaults(self):
        settings = SettingsRepository().get()
        assert settings.patient_commission == 30
        assert settings.doctor_commission == 10
        assert settings.cancellation_fee == 50
        assert settings.gateway_fee_pct == 2
        assert settings.gst_on_gateway_fee_pct == 18
        assert settings.minimum_withdrawal == 1000

    def test_update_ignores_none_and_unknown(self):
        settings = SettingsRepository().update({"patient_commission": 25, "doctor_commission": None, "bogus": 1})
        assert settings.patient_commission == 25
        assert settings.doctor_commission == 10

    def test_missing_row_is_configuration_error(self):
        conn = get_connection()
        conn.execute("DELETE FROM platform_settings")
        conn.commit()
        conn.close()
        with pytest.raises(ConfigurationError):
            SettingsRepository().get()


class TestWithdrawalRepository:
    """Tests for withdrawal persistence."""

    def test_references_are_sequential(self, doctors):
        repo = WithdrawalRepository()
        first = repo.create("doc-1", 1000, "Bank Transfer")
        second = repo.create("doc-1", 1200, "Bank Transfer")
        assert first.reference == "#WD0001"
        assert second.reference == "#WD0002"

    def test_total_approved_uses_approved_amount(self, doctors):
        repo = WithdrawalRepository()
        w1 = repo.create("doc-1", 1000, "Bank Transfer")
        repo.create("doc-1", 1500, "Bank Transfer")
        repo.approve(w1.id, 900, "UPI", "txn-1", "2026-10-01", None, net_earnings=2000)
        assert repo.total_approved("doc-1") == 900

    def test_decision_only_from_pending(self, doctors):
        repo = WithdrawalRepository()
        w = repo.create("doc-1", 1000, "Bank Transfer")
        assert repo.reject(w.id, "Duplicate").status == "rejected"
        assert repo.approve(w.id, 1000, "UPI", "txn-1", "2026-10-01", None, net_earnings=2000) is None

    def test_approve_rechecks_balance(self, doctors):
        repo = WithdrawalRepository()
        w1 = repo.create("doc-1", 1000, "Bank Transfer")
        w2 = repo.create("doc-1", 1000, "Bank Transfer")
        repo.approve(w1.id, 1000, "UPI", "txn-1", "2026-10-01", None, net_earnings=1350)
        with pytest.raises(OutOfRange):
            repo.approve(w2.id, 1000, "UPI", "txn-2", "2026-10-01", None, net_earnings=1350)
        assert repo.get_by_id(w2.id).status == "pending"
        assert repo.total_approved("doc-1") == 1000

    def test_list_all_pending_oldest_first(self, doctors):
        repo = WithdrawalRepository()
        first = repo.create("doc-1", 1000, "Bank Transfer")
        second = repo.create("doc-2", 1200, "UPI")
        rejected = repo.create("doc-1", 1100, "Bank Transfer")
        repo.reject(rejected.id, "Duplicate")
        assert [w.id for w in repo.list_all(status="pending")] == [first.id, second.id]
        assert len(repo.list_all()) == 3


class TestNotificationRepository:

    def test_create_and_list(self):
        repo = NotificationRepository()
        repo.create("pat-1", "Booked", {"appointment_id": "apt-1"})
        items = repo.list_for_recipient("pat-1")
        assert len(items) == 1
        assert items[0]["context"] == {"appointment_id": "apt-1"}
        assert items[0]["read"] is False
