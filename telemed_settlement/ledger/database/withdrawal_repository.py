"""Withdrawal repository: doctor payout requests and their terminal decisions."""

import uuid
from dataclasses import dataclass
from datetime import datetime

from telemed_settlement.errors import OutOfRange

from .connection import get_connection


def _minor(amount: float) -> int:
    return int(round(round(amount, 2) * 100))


@dataclass
class Withdrawal:
    id: str
    doctor_id: str
    amount: float
    method: str
    status: str = "pending"
    reference: str | None = None
    requested_at: str | None = None
    approved_amount: float | None = None
    payment_mode: str | None = None
    transaction_id: str | None = None
    payment_date: str | None = None
    invoice_url: str | None = None
    rejection_reason: str | None = None
    rejected_at: str | None = None


class WithdrawalRepository:
    """Repository for withdrawal requests. Only pending rows are ever updated."""

    def create(self, doctor_id: str, amount: float, method: str) -> Withdrawal:
        """Create a pending withdrawal with the next #WD reference."""
        conn = get_connection()
        cursor = conn.cursor()

        withdrawal_id = str(uuid.uuid4())
        now = datetime.now().isoformat()

        cursor.execute("BEGIN IMMEDIATE")
        cursor.execute("SELECT COUNT(*) FROM withdrawals")
        reference = f"#WD{cursor.fetchone()[0] + 1:04d}"
        cursor.execute("""
            INSERT INTO withdrawals (id, reference, doctor_id, amount, method, status, requested_at)
            VALUES (?, ?, ?, ?, ?, 'pending', ?)
        """, (withdrawal_id, reference, doctor_id, amount, method, now))

        conn.commit()
        conn.close()

        return Withdrawal(
            id=withdrawal_id,
            doctor_id=doctor_id,
            amount=amount,
            method=method,
            reference=reference,
            requested_at=now,
        )

    def get_by_id(self, withdrawal_id: str) -> Withdrawal | None:
        """Get a withdrawal by ID."""
        conn = get_connection()
        cursor = conn.cursor()
        cursor.execute("SELECT * FROM withdrawals WHERE id = ?", (withdrawal_id,))
        row = cursor.fetchone()
        conn.close()
        return self._row_to_withdrawal(row) if row else None

    def list_for_doctor(self, doctor_id: str, status: str | None = None) -> list[Withdrawal]:
        """Get a doctor's withdrawals, newest first."""
        conn = get_connection()
        cursor = conn.cursor()
        query = "SELECT * FROM withdrawals WHERE doctor_id = ?"
        params = [doctor_id]
        if status:
            query += " AND status = ?"
            params.append(status)
        query += " ORDER BY requested_at DESC, rowid DESC"
        cursor.execute(query, params)
        rows = cursor.fetchall()
        conn.close()
        return [self._row_to_withdrawal(row) for row in rows]

    def total_approved(self, doctor_id: str) -> float:
        """Sum of paid-out amounts for a doctor (approved amount, else requested)."""
        conn = get_connection()
        total = self._approved_total(conn.cursor(), doctor_id)
        conn.close()
        return total

    def list_all(self, status: str | None = None) -> list[Withdrawal]:
        """Withdrawals across all doctors, oldest first, for the admin queue."""
        conn = get_connection()
        cursor = conn.cursor()
        query = "SELECT * FROM withdrawals"
        params = []
        if status:
            query += " WHERE status = ?"
            params.append(status)
        query += " ORDER BY requested_at, rowid"
        cursor.execute(query, params)
        rows = cursor.fetchall()
        conn.close()
        return [self._row_to_withdrawal(row) for row in rows]

    def approve(
        self,
        withdrawal_id: str,
        approved_amount: float,
        payment_mode: str,
        transaction_id: str,
        payment_date: str,
        invoice_url: str | None,
        net_earnings: float,
    ) -> Withdrawal | None:
        """
        Mark a pending withdrawal approved. Returns None if it is no longer pending.

        The doctor's approved total is re-read in the same write transaction,
        so two approvals racing for one balance cannot both commit. Completed
        appointments never leave that state, so a net_earnings read before the
        transaction can only understate the balance.

        Raises:
            OutOfRange: approving would take approved payouts past net_earnings
        """
        conn = get_connection()
        try:
            conn.execute("BEGIN IMMEDIATE")
            cursor = conn.cursor()
            cursor.execute("SELECT doctor_id, status FROM withdrawals WHERE id = ?", (withdrawal_id,))
            row = cursor.fetchone()
            if not row or row["status"] != "pending":
                conn.rollback()
                return None

            already_approved = self._approved_total(cursor, row["doctor_id"])
            available = round(max(net_earnings - already_approved, 0), 2)
            if _minor(approved_amount) > _minor(available):
                conn.rollback()
                raise OutOfRange(
                    f"Approved amount exceeds the doctor's available balance of {available:.2f}",
                    withdrawal_id=withdrawal_id,
                    approved_amount=approved_amount,
                    available=available,
                )

            cursor.execute("""
                UPDATE withdrawals
                SET status = 'approved', approved_amount = ?, payment_mode = ?,
                    transaction_id = ?, payment_date = ?, invoice_url = ?
                WHERE id = ? AND status = 'pending'
            """, (approved_amount, payment_mode, transaction_id, payment_date, invoice_url, withdrawal_id))
            if cursor.rowcount == 0:
                conn.rollback()
                return None
            conn.commit()
        finally:
            conn.close()
        return self.get_by_id(withdrawal_id)

    def reject(self, withdrawal_id: str, reason: str) -> Withdrawal | None:
        """Mark a pending withdrawal rejected. Returns None if it is no longer pending."""
        conn = get_connection()
        cursor = conn.cursor()
        cursor.execute("""
            UPDATE withdrawals
            SET status = 'rejected', rejection_reason = ?, rejected_at = ?
            WHERE id = ? AND status = 'pending'
        """, (reason, datetime.now().isoformat(), withdrawal_id))

        if cursor.rowcount == 0:
            conn.close()
            return None

        conn.commit()
        conn.close()
        return self.get_by_id(withdrawal_id)

    def _approved_total(self, cursor, doctor_id: str) -> float:
        cursor.execute("""
            SELECT COALESCE(SUM(COALESCE(approved_amount, amount)), 0)
            FROM withdrawals
            WHERE doctor_id = ? AND status = 'approved'
        """, (doctor_id,))
        return float(cursor.fetchone()[0])

    def _row_to_withdrawal(self, row) -> Withdrawal:
        """Convert a database row to a Withdrawal object."""
        return Withdrawal(
            id=row["id"],
            doctor_id=row["doctor_id"],
            amount=row["amount"],
            method=row["method"],
            status=row["status"],
            reference=row["reference"],
            requested_at=row["requested_at"],
            approved_amount=row["approved_amount"],
            payment_mode=row["payment_mode"],
            transaction_id=row["transaction_id"],
            payment_date=row["payment_date"],
            invoice_url=row["invoice_url"],
            rejection_reason=row["rejection_reason"],
            rejected_at=row["rejected_at"],
        )
