"""Doctor payout profiles: consultation fee and bank details."""

from dataclasses import dataclass

from .connection import get_connection


@dataclass
class Doctor:
    id: str
    name: str
    consultation_fee: float
    email: str | None = None
    bank_account_number: str | None = None
    ifsc_code: str | None = None
    upi_id: str | None = None

    @property
    def has_payout_details(self) -> bool:
        return bool(self.bank_account_number or self.upi_id)


class DoctorRepository:

    def create(self, doctor: Doctor) -> Doctor:
        conn = get_connection()
        conn.execute("""
            INSERT INTO doctors (id, name, email, consultation_fee, bank_account_number, ifsc_code, upi_id)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """, (
            doctor.id, doctor.name, doctor.email, doctor.consultation_fee,
            doctor.bank_account_number, doctor.ifsc_code, doctor.upi_id,
        ))
        conn.commit()
        conn.close()
        return doctor

    def get_by_id(self, doctor_id: str) -> Doctor | None:
        """Get a doctor by ID."""
        conn = get_connection()
        cursor = conn.cursor()
        cursor.execute("SELECT * FROM doctors WHERE id = ?", (doctor_id,))
        row = cursor.fetchone()
        conn.close()
        return self._row_to_doctor(row) if row else None

    def update_bank_details(
        self,
        doctor_id: str,
        bank_account_number: str | None = None,
        ifsc_code: str | None = None,
        upi_id: str | None = None,
    ) -> Doctor | None:
        conn = get_connection()
        conn.execute(
            "UPDATE doctors SET bank_account_number = ?, ifsc_code = ?, upi_id = ? WHERE id = ?",
            (bank_account_number, ifsc_code, upi_id, doctor_id),
        )
        conn.commit()
        conn.close()
        return self.get_by_id(doctor_id)

    def _row_to_doctor(self, row) -> Doctor:
        return Doctor(
            id=row["id"],
            name=row["name"],
            email=row["email"],
            consultation_fee=row["consultation_fee"],
            bank_account_number=row["bank_account_number"],
            ifsc_code=row["ifsc_code"],
            upi_id=row["upi_id"],
        )
