"""Appointment repository with conditional updates and an append-only event log."""

import json
import sqlite3
import uuid
from dataclasses import dataclass, field
from datetime import datetime

from .connection import get_connection


@dataclass
class PaymentDetails:
    order_id: str | None = None
    payment_id: str | None = None
    signature: str | None = None
    method: str = "N/A"
    amount_paid: float = 0.0
    paid_at: str | None = None


@dataclass
class RefundDetails:
    refund_id: str
    amount: float
    status: str
    created_at: str
    cancellation_fee: float
    gateway_fee: float
    gst_on_gateway_fee: float
    residual_after_refund: float


@dataclass
class Appointment:
    id: str
    patient_id: str
    doctor_id: str
    patient_name: str
    patient_age: int
    patient_gender: str
    scheduled_at: str
    consultation_fee: float
    patient_commission_rate: float
    doctor_commission_rate: float
    total_fee: float
    symptoms: str | None = None
    notes: str | None = None
    records: list[str] = field(default_factory=list)
    rescheduled_at: str | None = None
    reschedule_reason: str | None = None
    status: str = "pending"
    booking_status: str = "pending"
    reject_reason: str | None = None
    payment_status: str = "pending"
    payment: PaymentDetails = field(default_factory=PaymentDetails)
    refund_status: str | None = None
    refunded_at: str | None = None
    refund: RefundDetails | None = None
    call_duration: str | None = None
    completed_at: str | None = None
    prescription_status: str = "Pending"
    cancellation_reason: str | None = None
    canceled_at: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


class AppointmentRepository:
    """Durable appointment records.

    Every mutation is a single UPDATE guarded by the state the caller expects
    to find. A guard that no longer holds (a concurrent writer got there
    first) makes the update a no-op and the method returns None.
    """

    # Columns a transition may write
    MUTABLE_FIELDS = {
        "notes", "rescheduled_at", "reschedule_reason", "status", "booking_status",
        "reject_reason", "payment_status", "payment_order_id", "payment_id",
        "payment_signature", "payment_method", "amount_paid", "paid_at",
        "refund_status", "refunded_at", "refund_id", "refund_amount",
        "refund_created_at", "refund_cancellation_fee", "refund_gateway_fee",
        "refund_gst_on_gateway_fee", "refund_residual", "call_duration",
        "completed_at", "prescription_status", "cancellation_reason", "canceled_at",
    }

    def create(self, appointment: Appointment, actor=None) -> Appointment | None:
        """Insert a new appointment and log the booking event.

        Returns None if the gateway payment id is already recorded against
        another appointment.
        """
        conn = get_connection()
        cursor = conn.cursor()

        appointment.id = appointment.id or str(uuid.uuid4())
        now = datetime.now().isoformat()
        payment = appointment.payment

        try:
            self._insert(cursor, appointment, now)
        except sqlite3.IntegrityError:
            conn.rollback()
            conn.close()
            if payment.payment_id and self.find_by_payment_id(payment.payment_id):
                return None
            raise

        self._log_event(
            cursor, appointment.id, "booked", None, appointment.status, actor,
            {"total_fee": appointment.total_fee, "payment_status": appointment.payment_status},
        )

        conn.commit()
        conn.close()

        appointment.created_at = now
        appointment.updated_at = now
        return appointment

    def _insert(self, cursor, appointment: Appointment, now: str) -> None:
        payment = appointment.payment
        cursor.execute("""
            INSERT INTO appointments (
                id, patient_id, doctor_id, patient_name, patient_age, patient_gender,
                symptoms, notes, records, scheduled_at, status, booking_status,
                consultation_fee, patient_commission_rate, doctor_commission_rate, total_fee,
                payment_status, payment_order_id, payment_id, payment_signature,
                payment_method, amount_paid, paid_at, prescription_status,
                created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            appointment.id, appointment.patient_id, appointment.doctor_id,
            appointment.patient_name, appointment.patient_age, appointment.patient_gender,
            appointment.symptoms, appointment.notes, json.dumps(appointment.records),
            appointment.scheduled_at, appointment.status, appointment.booking_status,
            appointment.consultation_fee, appointment.patient_commission_rate,
            appointment.doctor_commission_rate, appointment.total_fee,
            appointment.payment_status, payment.order_id, payment.payment_id,
            payment.signature, payment.method, payment.amount_paid, payment.paid_at,
            appointment.prescription_status, now, now,
        ))

    def get_by_id(self, appointment_id: str) -> Appointment | None:
        """Get an appointment by ID."""
        conn = get_connection()
        cursor = conn.cursor()
        cursor.execute("SELECT * FROM appointments WHERE id = ?", (appointment_id,))
        row = cursor.fetchone()
        conn.close()
        return self._row_to_appointment(row) if row else None

    def find_by_payment_id(self, payment_id: str) -> Appointment | None:
        """Get the appointment a gateway payment was recorded against, if any."""
        conn = get_connection()
        cursor = conn.cursor()
        cursor.execute("SELECT * FROM appointments WHERE payment_id = ?", (payment_id,))
        row = cursor.fetchone()
        conn.close()
        return self._row_to_appointment(row) if row else None

    def list_for_doctor(self, doctor_id: str, status: str | None = None) -> list[Appointment]:
        """Get a doctor's appointments, optionally filtered by clinical status."""
        query = "SELECT * FROM appointments WHERE doctor_id = ?"
        params = [doctor_id]
        if status:
            query += " AND status = ?"
            params.append(status)
        query += " ORDER BY scheduled_at"
        return self._fetch(query, params)

    def list_for_patient(self, patient_id: str) -> list[Appointment]:
        """Get a patient's appointments, newest first."""
        return self._fetch(
            "SELECT * FROM appointments WHERE patient_id = ? ORDER BY scheduled_at DESC",
            [patient_id],
        )

    def list_all(
        self,
        status: str | None = None,
        payment_status: str | None = None,
        refund_status: str | None = None,
    ) -> list[Appointment]:
        """Get all appointments matching optional status filters."""
        query = "SELECT * FROM appointments WHERE 1 = 1"
        params = []
        if status:
            query += " AND status = ?"
            params.append(status)
        if payment_status:
            query += " AND payment_status = ?"
            params.append(payment_status)
        if refund_status:
            query += " AND refund_status = ?"
            params.append(refund_status)
        query += " ORDER BY created_at"
        return self._fetch(query, params)

    def transition(
        self,
        appointment_id: str,
        from_statuses: list[str],
        updates: dict,
        event: str,
        actor=None,
        payment_status: str | None = None,
    ) -> Appointment | None:
        """Apply updates only if the appointment is still in one of from_statuses.

        If payment_status is given the payment state must also still match,
        so fields derived from it (refund_status on cancel) stay consistent.
        """
        placeholders = ", ".join("?" for _ in from_statuses)
        guard_sql = f"status IN ({placeholders})"
        guard_params = list(from_statuses)
        if payment_status is not None:
            guard_sql += " AND payment_status = ?"
            guard_params.append(payment_status)
        return self._conditional_update(appointment_id, updates, guard_sql, guard_params, event, actor)

    def record_payment(self, appointment_id: str, payment: PaymentDetails, actor=None) -> Appointment | None:
        """Mark an appointment paid, unless it already is (or was refunded)."""
        updates = {
            "payment_status": "paid",
            "booking_status": "booked",
            "payment_order_id": payment.order_id,
            "payment_id": payment.payment_id,
            "payment_signature": payment.signature,
            "payment_method": payment.method,
            "amount_paid": payment.amount_paid,
            "paid_at": payment.paid_at,
        }
        return self._conditional_update(
            appointment_id,
            updates,
            "payment_status NOT IN ('paid', 'refunded')",
            [],
            "payment_verified",
            actor,
            detail={"payment_id": payment.payment_id, "amount_paid": payment.amount_paid},
        )

    def record_refund(self, appointment_id: str, refund: RefundDetails, actor=None) -> Appointment | None:
        """Store a processed refund if the appointment is still canceled, paid and unrefunded."""
        updates = {
            "payment_status": "refunded",
            "refund_status": "Processed",
            "refunded_at": datetime.now().isoformat(),
            "refund_id": refund.refund_id,
            "refund_amount": refund.amount,
            "refund_created_at": refund.created_at,
            "refund_cancellation_fee": refund.cancellation_fee,
            "refund_gateway_fee": refund.gateway_fee,
            "refund_gst_on_gateway_fee": refund.gst_on_gateway_fee,
            "refund_residual": refund.residual_after_refund,
        }
        return self._conditional_update(
            appointment_id,
            updates,
            "status = 'canceled' AND payment_status = 'paid' "
            "AND (refund_status IS NULL OR refund_status != 'Processed')",
            [],
            "refund_processed",
            actor,
            detail={"refund_id": refund.refund_id, "amount": refund.amount},
        )

    def update_fields(self, appointment_id: str, updates: dict, event: str, actor=None) -> Appointment | None:
        """Write status-independent fields (notes, prescription status)."""
        return self._conditional_update(appointment_id, updates, "1 = 1", [], event, actor)

    def get_events(self, appointment_id: str) -> list[dict]:
        """Get the audit trail for an appointment, oldest first."""
        conn = get_connection()
        cursor = conn.cursor()
        cursor.execute("""
            SELECT * FROM appointment_events
            WHERE appointment_id = ?
            ORDER BY created_at, rowid
        """, (appointment_id,))
        rows = cursor.fetchall()
        conn.close()
        events = []
        for row in rows:
            event = dict(row)
            event["detail"] = json.loads(event["detail"]) if event["detail"] else None
            events.append(event)
        return events

    # Private helpers

    def _fetch(self, query: str, params: list) -> list[Appointment]:
        conn = get_connection()
        cursor = conn.cursor()
        cursor.execute(query, params)
        rows = cursor.fetchall()
        conn.close()
        return [self._row_to_appointment(row) for row in rows]

    def _conditional_update(
        self,
        appointment_id: str,
        updates: dict,
        guard_sql: str,
        guard_params: list,
        event: str,
        actor=None,
        detail: dict | None = None,
    ) -> Appointment | None:
        """Run one guarded UPDATE plus its event row inside a single write transaction."""
        unknown = set(updates) - self.MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Not writable: {sorted(unknown)}")

        conn = get_connection()
        try:
            conn.execute("BEGIN IMMEDIATE")
            cursor = conn.cursor()
            cursor.execute("SELECT status FROM appointments WHERE id = ?", (appointment_id,))
            row = cursor.fetchone()
            if not row:
                conn.rollback()
                return None
            from_status = row["status"]

            now = datetime.now().isoformat()
            set_clause = ", ".join(f"{column} = ?" for column in updates)
            set_clause += ", updated_at = ?"
            values = list(updates.values()) + [now, appointment_id] + list(guard_params)
            try:
                cursor.execute(
                    f"UPDATE appointments SET {set_clause} WHERE id = ? AND {guard_sql}",
                    values,
                )
            except sqlite3.IntegrityError:
                # payment_id already belongs to another appointment
                conn.rollback()
                return None
            if cursor.rowcount == 0:
                conn.rollback()
                return None

            to_status = updates.get("status", from_status)
            if detail is None:
                detail = {
                    k: v for k, v in updates.items()
                    if k not in ("status", "updated_at") and v is not None
                }
            self._log_event(cursor, appointment_id, event, from_status, to_status, actor, detail)
            conn.commit()
        finally:
            conn.close()

        return self.get_by_id(appointment_id)

    def _log_event(
        self,
        cursor,
        appointment_id: str,
        event: str,
        from_status: str | None,
        to_status: str | None,
        actor,
        detail: dict | None,
    ) -> None:
        """Append an event to the audit table."""
        cursor.execute("""
            INSERT INTO appointment_events
                (id, appointment_id, event, from_status, to_status, actor_id, actor_role, detail, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            str(uuid.uuid4()), appointment_id, event, from_status, to_status,
            actor.id if actor else "system",
            actor.role.value if actor else None,
            json.dumps(detail, default=str) if detail else None,
            datetime.now().isoformat(),
        ))

    def _row_to_appointment(self, row) -> Appointment:
        """Convert a database row to an Appointment object."""
        refund = None
        if row["refund_id"]:
            refund = RefundDetails(
                refund_id=row["refund_id"],
                amount=row["refund_amount"],
                status=row["refund_status"],
                created_at=row["refund_created_at"],
                cancellation_fee=row["refund_cancellation_fee"],
                gateway_fee=row["refund_gateway_fee"],
                gst_on_gateway_fee=row["refund_gst_on_gateway_fee"],
                residual_after_refund=row["refund_residual"],
            )
        return Appointment(
            id=row["id"],
            patient_id=row["patient_id"],
            doctor_id=row["doctor_id"],
            patient_name=row["patient_name"],
            patient_age=row["patient_age"],
            patient_gender=row["patient_gender"],
            scheduled_at=row["scheduled_at"],
            consultation_fee=row["consultation_fee"],
            patient_commission_rate=row["patient_commission_rate"],
            doctor_commission_rate=row["doctor_commission_rate"],
            total_fee=row["total_fee"],
            symptoms=row["symptoms"],
            notes=row["notes"],
            records=json.loads(row["records"]) if row["records"] else [],
            rescheduled_at=row["rescheduled_at"],
            reschedule_reason=row["reschedule_reason"],
            status=row["status"],
            booking_status=row["booking_status"],
            reject_reason=row["reject_reason"],
            payment_status=row["payment_status"],
            payment=PaymentDetails(
                order_id=row["payment_order_id"],
                payment_id=row["payment_id"],
                signature=row["payment_signature"],
                method=row["payment_method"] or "N/A",
                amount_paid=row["amount_paid"] or 0.0,
                paid_at=row["paid_at"],
            ),
            refund_status=row["refund_status"],
            refunded_at=row["refunded_at"],
            refund=refund,
            call_duration=row["call_duration"],
            completed_at=row["completed_at"],
            prescription_status=row["prescription_status"],
            cancellation_reason=row["cancellation_reason"],
            canceled_at=row["canceled_at"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
