"""Seed the ledger with demo doctors and appointments in every lifecycle state.

Run with: python -m telemed_settlement.ledger.scripts.seed_database
"""

from datetime import datetime, timedelta

from telemed_settlement.commission import compute_fees
from telemed_settlement.ledger.database import (
    AppointmentRepository,
    DoctorRepository,
    SettingsRepository,
    init_database,
)
from telemed_settlement.ledger.database.appointment_repository import Appointment, PaymentDetails
from telemed_settlement.ledger.database.doctor_repository import Doctor


MOCK_DOCTORS = [
    Doctor(
        id="doc-001",
        name="Dr. Ananya Rao",
        email="ananya.rao@clinic.example",
        consultation_fee=500.0,
        bank_account_number="001234567890",
        ifsc_code="HDFC0001234",
    ),
    Doctor(
        id="doc-002",
        name="Dr. Vikram Mehta",
        email="vikram.mehta@clinic.example",
        consultation_fee=800.0,
        upi_id="vikram.mehta@okaxis",
    ),
    Doctor(
        id="doc-003",
        name="Dr. Priya Nair",
        email="priya.nair@clinic.example",
        consultation_fee=650.0,
    ),
]

# (appointment id, patient id, patient name, doctor, days from today, status)
MOCK_APPOINTMENTS = [
    ("apt-001", "pat-001", "Rahul Sharma", "doc-001", -20, "completed"),
    ("apt-002", "pat-002", "Meera Iyer", "doc-001", -12, "completed"),
    ("apt-003", "pat-003", "Arjun Singh", "doc-001", -5, "completed"),
    ("apt-004", "pat-001", "Rahul Sharma", "doc-002", -3, "completed"),
    ("apt-005", "pat-004", "Kavya Reddy", "doc-002", 2, "accepted"),
    ("apt-006", "pat-005", "Sanjay Gupta", "doc-001", 4, "pending"),
    ("apt-007", "pat-002", "Meera Iyer", "doc-003", 1, "canceled"),
]


def seed_database():
    """Seed the database with mock data."""
    init_database()

    doctors = DoctorRepository()
    appointments = AppointmentRepository()
    patient_rate, doctor_rate = SettingsRepository().get_current_rates()

    for doctor in MOCK_DOCTORS:
        if doctors.get_by_id(doctor.id):
            print(f"  Skipping {doctor.name} (already exists)")
            continue
        doctors.create(doctor)
        print(f"  Created doctor: {doctor.name}")

    fees_by_doctor = {d.id: d.consultation_fee for d in MOCK_DOCTORS}
    created = 0
    for apt_id, patient_id, patient_name, doctor_id, days, status in MOCK_APPOINTMENTS:
        if appointments.get_by_id(apt_id):
            print(f"  Skipping appointment {apt_id} (already exists)")
            continue

        fee = fees_by_doctor[doctor_id]
        fees = compute_fees(fee, patient_rate, doctor_rate)
        scheduled = (datetime.now() + timedelta(days=days)).replace(hour=10, minute=0, second=0, microsecond=0)
        total_fee = round(fees.total_fee, 2)

        appointments.create(Appointment(
            id=apt_id,
            patient_id=patient_id,
            doctor_id=doctor_id,
            patient_name=patient_name,
            patient_age=34,
            patient_gender="Other",
            scheduled_at=scheduled.isoformat(),
            consultation_fee=fee,
            patient_commission_rate=patient_rate,
            doctor_commission_rate=doctor_rate,
            total_fee=total_fee,
            symptoms="Follow-up consultation",
            status="pending",
            booking_status="booked",
            payment_status="paid",
            payment=PaymentDetails(
                order_id=f"order_demo_{apt_id}",
                payment_id=f"pay_demo_{apt_id}",
                signature="demo",
                method="upi",
                amount_paid=total_fee,
                paid_at=(scheduled - timedelta(days=2)).isoformat(),
            ),
        ))

        if status in ("accepted", "completed"):
            appointments.transition(apt_id, ["pending"], {"status": "accepted"}, "accepted")
        if status == "completed":
            appointments.transition(
                apt_id, ["accepted"],
                {
                    "status": "completed",
                    "call_duration": "15:00",
                    "completed_at": (scheduled + timedelta(minutes=15)).isoformat(),
                },
                "completed",
            )
        if status == "canceled":
            appointments.transition(
                apt_id, ["pending"],
                {
                    "status": "canceled",
                    "cancellation_reason": "Patient unavailable",
                    "canceled_at": datetime.now().isoformat(),
                    "refund_status": "Pending",
                },
                "canceled",
            )
        created += 1
        print(f"  Created appointment {apt_id} ({status}) for {patient_name}")

    print("\nDatabase seeded successfully!")
    print(f"  - {len(MOCK_DOCTORS)} doctors")
    print(f"  - {created} appointments")


if __name__ == "__main__":
    seed_database()
