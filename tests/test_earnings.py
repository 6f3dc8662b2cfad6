"""Tests for doctor earnings and platform revenue."""

import random
from datetime import datetime

import pytest

from telemed_settlement.auth import Principal, Role
from telemed_settlement.earnings import EarningsTotals, fold_earnings
from telemed_settlement.ledger.database import WithdrawalRepository
from telemed_settlement.ledger.database.appointment_repository import Appointment


def completed_record(appointment_id, fee, doctor_rate, status="completed") -> Appointment:
    return Appointment(
        id=appointment_id, patient_id="pat-1", doctor_id="doc-1",
        patient_name="Test", patient_age=40, patient_gender="F",
        scheduled_at="2026-01-01T10:00:00", consultation_fee=fee,
        patient_commission_rate=30, doctor_commission_rate=doctor_rate,
        total_fee=fee * 1.3, status=status, completed_at="2026-01-01T10:30:00",
    )


@pytest.fixture
def earned(ops, patient, doctors, booking_request, complete_appointment):
    """Book and complete n appointments with doc-1 (net 450.00 each)."""

    def run(n, completed_at=None):
        completed = []
        for _ in range(n):
            booked = ops.book(patient, booking_request()).value
            completed.append(complete_appointment(booked.id, completed_at))
        return completed

    return run


class TestEarningsTotals:
    """The fold over completed appointments."""

    def test_zero_is_identity(self):
        totals = EarningsTotals.of(completed_record("a", 500, 10))
        assert totals + EarningsTotals.zero() == totals
        assert EarningsTotals.zero() + totals == totals

    def test_commutative_and_associative(self):
        a = EarningsTotals.of(completed_record("a", 333.33, 12.5))
        b = EarningsTotals.of(completed_record("b", 799.99, 7))
        c = EarningsTotals.of(completed_record("c", 1250, 10))
        assert a + b == b + a
        assert (a + b) + c == a + (b + c)

    def test_fold_is_order_independent(self):
        records = [completed_record(f"apt-{i}", 100 + i * 37.37, i % 20) for i in range(40)]
        shuffled = records[:]
        random.Random(7).shuffle(shuffled)
        assert fold_earnings(records) == fold_earnings(shuffled)

    def test_fold_skips_non_completed(self):
        records = [
            completed_record("a", 500, 10),
            completed_record("b", 500, 10, status="canceled"),
            completed_record("c", 500, 10, status="accepted"),
        ]
        totals = fold_earnings(records)
        assert totals.count == 1
        assert totals.gross == 500
        assert totals.commission == 50
        assert totals.net == 450

    def test_incremental_equals_full_replay(self):
        records = [completed_record(f"apt-{i}", 250 + i, 10) for i in range(5)]
        running = EarningsTotals.zero()
        for record in records:
            running = running + EarningsTotals.of(record)
        assert running == fold_earnings(records)


class TestComputeDoctorEarnings:
    """Tests for compute_doctor_earnings."""

    def test_no_appointments(self, ops, doctor, doctors):
        result = ops.compute_doctor_earnings(doctor, {"doctor_id": "doc-1"})
        earnings = result.value
        assert earnings.gross == 0
        assert earnings.net == 0
        assert earnings.pending_payout == 0
        assert earnings.completed_appointments == 0

    def test_completed_only(self, ops, doctor, patient, booked, earned):
        earned(2)
        earnings = ops.compute_doctor_earnings(doctor, {"doctor_id": "doc-1"}).value
        assert earnings.completed_appointments == 2
        assert earnings.gross == 1000
        assert earnings.commission == 100
        assert earnings.net == 900
        assert earnings.pending_payout == 900

    def test_each_record_uses_its_frozen_rate(self, ops, doctor, admin, earned):
        earned(1)
        ops.update_platform_settings(admin, {"doctor_commission": 20})
        earned(1)
        earnings = ops.compute_doctor_earnings(doctor, {"doctor_id": "doc-1"}).value
        assert earnings.commission == 150
        assert earnings.net == 850

    def test_date_range_uses_completion_date(self, ops, doctor, earned):
        earned(1, completed_at=datetime(2026, 1, 10, 12, 0))
        earned(1, completed_at=datetime(2026, 3, 10, 12, 0))
        result = ops.compute_doctor_earnings(doctor, {
            "doctor_id": "doc-1", "start": datetime(2026, 2, 1), "end": datetime(2026, 4, 1),
        })
        assert result.value.completed_appointments == 1
        assert result.value.net == 450

    def test_withdrawn_reduces_pending_payout(self, ops, doctor, doctors, earned):
        earned(3)
        repo = WithdrawalRepository()
        w = repo.create("doc-1", 1000, "Bank Transfer")
        repo.approve(w.id, 1000, "Bank Transfer", "txn-1", "2026-10-01", None, net_earnings=1350)

        earnings = ops.compute_doctor_earnings(doctor, {"doctor_id": "doc-1"}).value
        assert earnings.net == 1350
        assert earnings.withdrawn == 1000
        assert earnings.pending_payout == 350
        assert ops.earnings.available_balance("doc-1") == 350

    def test_pending_payout_never_negative(self, ops, doctor, doctors, earned):
        earned(1)
        repo = WithdrawalRepository()
        w = repo.create("doc-1", 1000, "Bank Transfer")
        repo.approve(w.id, 1000, "Bank Transfer", "txn-1", "2026-10-01", None, net_earnings=1350)
        assert ops.compute_doctor_earnings(doctor, {"doctor_id": "doc-1"}).value.pending_payout == 0

    def test_other_doctor_forbidden(self, ops, doctors):
        other = Principal("doc-2", Role.DOCTOR)
        assert ops.compute_doctor_earnings(other, {"doctor_id": "doc-1"}).error_kind == "Forbidden"

    def test_patient_forbidden(self, ops, patient, doctors):
        assert ops.compute_doctor_earnings(patient, {"doctor_id": "doc-1"}).error_kind == "Forbidden"

    def test_admin_can_view(self, ops, admin, earned):
        earned(1)
        assert ops.compute_doctor_earnings(admin, {"doctor_id": "doc-1"}).value.net == 450


class TestEarningsBreakdown:

    def test_one_row_per_completed_appointment(self, ops, doctor, earned):
        completed = earned(2)
        rows = ops.earnings_breakdown(doctor, "doc-1").value
        assert {row["appointment_id"] for row in rows} == {a.id for a in completed}
        assert rows[0]["commission"] == 50
        assert rows[0]["net_earning"] == 450
        assert rows[0]["payment_status"] == "paid"


class TestPlatformRevenue:
    """Tests for compute_platform_revenue."""

    def test_revenue_with_refund(self, ops, admin, patient, doctors, booking_request, earned):
        earned(2)
        canceled = ops.book(patient, booking_request()).value
        ops.cancel(patient, canceled.id, {"reason": "Feeling better"})
        assert ops.process_refund(admin, {"appointment_id": canceled.id, "refund_amount": 600}).ok

        revenue = ops.compute_platform_revenue(admin).value
        assert revenue.completed_appointments == 2
        assert revenue.collected == 1300
        assert revenue.patient_commission == 300
        assert revenue.doctor_commission == 100
        assert revenue.platform_revenue == 400
        assert revenue.refunded_appointments == 1
        assert revenue.refunded_amount == 600
        assert revenue.gateway_fees == 13
        assert revenue.gst_on_gateway_fees == 2.34
        assert revenue.refund_residuals == 34.66
        assert revenue.net_profit == 434.66

    def test_requires_admin(self, ops, doctor):
        assert ops.compute_platform_revenue(doctor).error_kind == "Forbidden"

    def test_date_range(self, ops, admin, earned):
        earned(1, completed_at=datetime(2026, 1, 10))
        revenue = ops.compute_platform_revenue(admin, datetime(2026, 2, 1), datetime(2026, 3, 1)).value
        assert revenue.completed_appointments == 0
        assert revenue.net_profit == 0
