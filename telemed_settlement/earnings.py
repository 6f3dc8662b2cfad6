"""Doctor earnings and platform revenue, folded from appointment records."""

from dataclasses import dataclass
from datetime import datetime
from functools import reduce

from telemed_settlement.commission import FeeBreakdown
from telemed_settlement.ledger.database import AppointmentRepository, WithdrawalRepository
from telemed_settlement.payment_gateway import from_minor_units, to_minor_units
from telemed_settlement.state_machine import AppointmentStatus, PaymentStatus


@dataclass(frozen=True)
class EarningsTotals:
    """
    Running totals for a doctor's completed appointments.

    Amounts are kept in minor units so that combining totals is exact:
    folding the same records in any order, or in any grouping, gives the
    same result.
    """
    gross_minor: int = 0
    commission_minor: int = 0
    count: int = 0

    @classmethod
    def zero(cls) -> "EarningsTotals":
        return cls()

    @classmethod
    def of(cls, appointment) -> "EarningsTotals":
        """Totals for a single appointment, at the rates frozen on it."""
        fees = FeeBreakdown.for_appointment(appointment)
        return cls(
            gross_minor=to_minor_units(appointment.consultation_fee),
            commission_minor=to_minor_units(fees.doctor_commission_amount),
            count=1,
        )

    def __add__(self, other: "EarningsTotals") -> "EarningsTotals":
        return EarningsTotals(
            gross_minor=self.gross_minor + other.gross_minor,
            commission_minor=self.commission_minor + other.commission_minor,
            count=self.count + other.count,
        )

    @property
    def gross(self) -> float:
        return from_minor_units(self.gross_minor)

    @property
    def commission(self) -> float:
        return from_minor_units(self.commission_minor)

    @property
    def net(self) -> float:
        return from_minor_units(self.gross_minor - self.commission_minor)


def fold_earnings(appointments) -> EarningsTotals:
    """Fold completed appointments into EarningsTotals; others contribute zero."""
    return reduce(
        lambda acc, appt: acc + EarningsTotals.of(appt),
        (a for a in appointments if a.status == AppointmentStatus.COMPLETED.value),
        EarningsTotals.zero(),
    )


@dataclass
class DoctorEarnings:
    doctor_id: str
    gross: float
    commission: float
    net: float
    withdrawn: float
    pending_payout: float
    completed_appointments: int


@dataclass
class PlatformRevenue:
    completed_appointments: int
    collected: float
    patient_commission: float
    doctor_commission: float
    platform_revenue: float
    refunded_appointments: int
    refunded_amount: float
    gateway_fees: float
    gst_on_gateway_fees: float
    refund_residuals: float
    net_profit: float


def _in_range(timestamp: str | None, start: datetime | None, end: datetime | None) -> bool:
    if start is None and end is None:
        return True
    if not timestamp:
        return False
    moment = datetime.fromisoformat(timestamp)
    if start is not None and moment < start:
        return False
    if end is not None and moment > end:
        return False
    return True


class EarningsAggregator:
    """Read-only views over appointments and withdrawals. Nothing is cached."""

    def __init__(
        self,
        appointments: AppointmentRepository | None = None,
        withdrawals: WithdrawalRepository | None = None,
    ):
        self.appointments = appointments or AppointmentRepository()
        self.withdrawals = withdrawals or WithdrawalRepository()

    def compute_doctor_earnings(
        self,
        doctor_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> DoctorEarnings:
        """
        Sum a doctor's completed appointments, optionally within a completion date range.

        Withdrawn is lifetime regardless of the range, since payouts are drawn
        against the doctor's whole balance.
        """
        completed = [
            appt for appt in self.appointments.list_for_doctor(doctor_id, AppointmentStatus.COMPLETED.value)
            if _in_range(appt.completed_at, start, end)
        ]
        totals = fold_earnings(completed)
        withdrawn = round(self.withdrawals.total_approved(doctor_id), 2)

        return DoctorEarnings(
            doctor_id=doctor_id,
            gross=totals.gross,
            commission=totals.commission,
            net=totals.net,
            withdrawn=withdrawn,
            pending_payout=round(max(totals.net - withdrawn, 0), 2),
            completed_appointments=totals.count,
        )

    def available_balance(self, doctor_id: str) -> float:
        """What the doctor can still withdraw: lifetime net less approved payouts."""
        return self.compute_doctor_earnings(doctor_id).pending_payout

    def earnings_breakdown(self, doctor_id: str) -> list[dict]:
        """One row per completed appointment, newest completion first."""
        rows = []
        for appt in self.appointments.list_for_doctor(doctor_id, AppointmentStatus.COMPLETED.value):
            fees = FeeBreakdown.for_appointment(appt)
            rows.append({
                "appointment_id": appt.id,
                "patient_name": appt.patient_name,
                "scheduled_at": appt.scheduled_at,
                "completed_at": appt.completed_at,
                "consultation_fee": round(appt.consultation_fee, 2),
                "commission_rate": appt.doctor_commission_rate,
                "commission": round(fees.doctor_commission_amount, 2),
                "net_earning": round(fees.doctor_net_earning, 2),
                "payment_status": appt.payment_status,
            })
        rows.sort(key=lambda row: row["completed_at"] or "", reverse=True)
        return rows

    def compute_platform_revenue(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> PlatformRevenue:
        """
        Platform-wide revenue report.

        Completed appointments are ranged by completion date, refunds by the
        date the refund was recorded.
        """
        collected = patient_commission = doctor_commission = 0
        completed_count = 0
        for appt in self.appointments.list_all(status=AppointmentStatus.COMPLETED.value):
            if not _in_range(appt.completed_at, start, end):
                continue
            fees = FeeBreakdown.for_appointment(appt)
            completed_count += 1
            collected += to_minor_units(appt.total_fee)
            patient_commission += to_minor_units(fees.patient_commission_amount)
            doctor_commission += to_minor_units(fees.doctor_commission_amount)

        refunded_amount = gateway_fees = gst = residuals = 0
        refunded_count = 0
        for appt in self.appointments.list_all(payment_status=PaymentStatus.REFUNDED.value):
            if appt.refund is None or not _in_range(appt.refunded_at, start, end):
                continue
            refunded_count += 1
            refunded_amount += to_minor_units(appt.refund.amount)
            gateway_fees += to_minor_units(appt.refund.gateway_fee or 0)
            gst += to_minor_units(appt.refund.gst_on_gateway_fee or 0)
            residuals += to_minor_units(appt.refund.residual_after_refund or 0)

        platform_revenue = patient_commission + doctor_commission
        return PlatformRevenue(
            completed_appointments=completed_count,
            collected=from_minor_units(collected),
            patient_commission=from_minor_units(patient_commission),
            doctor_commission=from_minor_units(doctor_commission),
            platform_revenue=from_minor_units(platform_revenue),
            refunded_appointments=refunded_count,
            refunded_amount=from_minor_units(refunded_amount),
            gateway_fees=from_minor_units(gateway_fees),
            gst_on_gateway_fees=from_minor_units(gst),
            refund_residuals=from_minor_units(residuals),
            net_profit=from_minor_units(platform_revenue + residuals),
        )
