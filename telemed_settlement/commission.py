"""Commission policy: fee splits between patient, doctor and platform."""

import math
from dataclasses import dataclass

from telemed_settlement.errors import InvalidInput


@dataclass(frozen=True)
class FeeBreakdown:
    total_fee: float
    patient_commission_amount: float
    doctor_commission_amount: float
    doctor_net_earning: float
    platform_earning: float

    @classmethod
    def for_appointment(cls, appointment) -> "FeeBreakdown":
        """Apply the policy at the rates frozen on an appointment record."""
        return compute_fees(
            appointment.consultation_fee,
            appointment.patient_commission_rate,
            appointment.doctor_commission_rate,
        )


def _check_rate(name: str, value) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidInput(f"{name} must be a number", **{name: value})
    if not math.isfinite(value):
        raise InvalidInput(f"{name} must be finite", **{name: value})
    if value < 0 or value > 100:
        raise InvalidInput(f"{name} must be between 0 and 100", **{name: value})
    return float(value)


def compute_fees(
    consultation_fee: float,
    patient_commission_pct: float,
    doctor_commission_pct: float,
) -> FeeBreakdown:
    """
    Split a consultation fee into what the patient pays and who keeps what.

    Args:
        consultation_fee: Doctor's base fee
        patient_commission_pct: Platform surcharge on the patient, in percent
        doctor_commission_pct: Platform cut from the doctor's fee, in percent

    Returns:
        FeeBreakdown with total_fee, both commission amounts, the doctor's net
        earning and the platform earning

    Raises:
        InvalidInput: negative or non-finite fee, or a rate outside [0, 100]
    """
    if isinstance(consultation_fee, bool) or not isinstance(consultation_fee, (int, float)):
        raise InvalidInput("consultation_fee must be a number", consultation_fee=consultation_fee)
    if not math.isfinite(consultation_fee):
        raise InvalidInput("consultation_fee must be finite", consultation_fee=consultation_fee)
    if consultation_fee < 0:
        raise InvalidInput("consultation_fee cannot be negative", consultation_fee=consultation_fee)
    patient_pct = _check_rate("patient_commission_pct", patient_commission_pct)
    doctor_pct = _check_rate("doctor_commission_pct", doctor_commission_pct)

    fee = float(consultation_fee)
    patient_commission = fee * patient_pct / 100
    doctor_commission = fee * doctor_pct / 100

    return FeeBreakdown(
        total_fee=fee + patient_commission,
        patient_commission_amount=patient_commission,
        doctor_commission_amount=doctor_commission,
        doctor_net_earning=fee - doctor_commission,
        platform_earning=patient_commission + doctor_commission,
    )
