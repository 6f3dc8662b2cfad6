"""Appointment lifecycle: booking and the clinical status transitions."""

import logging
import uuid
from datetime import datetime

from telemed_settlement.auth import Principal, Role, require_role
from telemed_settlement.commission import compute_fees
from telemed_settlement.errors import Forbidden, InvalidTransition, NotFound
from telemed_settlement.ledger.database import (
    AppointmentRepository,
    DoctorRepository,
    SettingsRepository,
)
from telemed_settlement.ledger.database.appointment_repository import Appointment
from telemed_settlement.notifications import send_notification
from telemed_settlement.schemas import (
    BookingRequest,
    CancelRequest,
    CompleteRequest,
    NotesRequest,
    RejectRequest,
    RescheduleRequest,
)
from telemed_settlement.state_machine import (
    AppointmentStatus,
    BookingStatus,
    PaymentStatus,
    PrescriptionStatus,
    RefundStatus,
    check_transition,
    sources_for,
)

logger = logging.getLogger(__name__)


class AppointmentService:
    """
    Books appointments and moves them through the lifecycle table.

    Each transition is validated against the table first (for a clear error)
    and then written with a guarded update, so a concurrent writer that got
    there first turns this call into InvalidTransition instead of a lost update.
    """

    def __init__(
        self,
        appointments: AppointmentRepository | None = None,
        doctors: DoctorRepository | None = None,
        settings: SettingsRepository | None = None,
        settlement=None,
        notifier=None,
    ):
        self.appointments = appointments or AppointmentRepository()
        self.doctors = doctors or DoctorRepository()
        self.settings = settings or SettingsRepository()
        self.settlement = settlement
        self.notifier = notifier

    # Booking

    def book(self, principal: Principal, request: BookingRequest) -> Appointment:
        """
        Create a paid appointment for the calling patient.

        The payment authorization is verified before anything is written, and
        the captured amount must cover the total fee when the gateway can be
        reached. One gateway payment books at most one appointment.
        Commission rates are read once and frozen onto the record.
        """
        require_role(principal, Role.PATIENT)
        if principal.id != request.patient_id:
            raise Forbidden("Patients can only book for themselves", principal_id=principal.id)

        doctor = self.doctors.get_by_id(request.doctor_id)
        if not doctor:
            raise NotFound("Doctor not found", doctor_id=request.doctor_id)

        auth = request.payment
        self.settlement.check_signature(auth.order_id, auth.payment_id, auth.signature)

        # A retried booking with the same payment returns the original record
        existing = self.appointments.find_by_payment_id(auth.payment_id)
        if existing:
            return self._existing_booking(principal, existing, auth.payment_id)

        patient_rate, doctor_rate = self.settings.get_current_rates()
        fees = compute_fees(doctor.consultation_fee, patient_rate, doctor_rate)
        total_fee = round(fees.total_fee, 2)

        appointment = Appointment(
            id=str(uuid.uuid4()),
            patient_id=request.patient_id,
            doctor_id=doctor.id,
            patient_name=request.patient_name,
            patient_age=request.patient_age,
            patient_gender=request.patient_gender,
            scheduled_at=request.scheduled_at.isoformat(),
            consultation_fee=doctor.consultation_fee,
            patient_commission_rate=patient_rate,
            doctor_commission_rate=doctor_rate,
            total_fee=total_fee,
            symptoms=request.symptoms,
            records=list(request.records),
            status=AppointmentStatus.PENDING.value,
            booking_status=BookingStatus.BOOKED.value,
            payment_status=PaymentStatus.PAID.value,
        )
        appointment.payment.order_id = auth.order_id
        appointment.payment.payment_id = auth.payment_id
        appointment.payment.signature = auth.signature
        appointment.payment.amount_paid = total_fee
        appointment.payment.paid_at = datetime.now().isoformat()
        self.settlement.confirm_capture(appointment.payment, total_fee)

        if self.appointments.create(appointment, actor=principal) is None:
            # A duplicate delivery of this payment committed first
            existing = self.appointments.find_by_payment_id(auth.payment_id)
            return self._existing_booking(principal, existing, auth.payment_id)

        logger.info(
            "Booked appointment %s with doctor %s for %.2f (payment %s)",
            appointment.id, doctor.id, total_fee, auth.payment_id,
        )

        send_notification(
            self.notifier, appointment.patient_id,
            "Your appointment has been booked. We will inform you when the doctor accepts it.",
            {"appointment_id": appointment.id, "event": "booked"},
        )
        send_notification(
            self.notifier, doctor.id,
            f"New appointment booked by {appointment.patient_name}.",
            {"appointment_id": appointment.id, "event": "booked"},
        )
        return appointment

    # Doctor actions

    def accept(self, principal: Principal, appointment_id: str) -> Appointment:
        appointment = self._load_for_doctor(principal, appointment_id)
        updated = self._move(
            principal, appointment, AppointmentStatus.ACCEPTED,
            {"status": AppointmentStatus.ACCEPTED.value},
        )
        self._notify_patient(updated, "Your appointment has been accepted by the doctor.", "accepted")
        return updated

    def reject(self, principal: Principal, appointment_id: str, request: RejectRequest) -> Appointment:
        appointment = self._load_for_doctor(principal, appointment_id)
        updated = self._move(
            principal, appointment, AppointmentStatus.REJECTED,
            {"status": AppointmentStatus.REJECTED.value, "reject_reason": request.reason},
        )
        self._notify_patient(updated, f"Your appointment was rejected: {request.reason}", "rejected")
        return updated

    def reschedule(self, principal: Principal, appointment_id: str, request: RescheduleRequest) -> Appointment:
        """Move an appointment to a new date. Doctors reschedule their own; admins any."""
        require_role(principal, Role.DOCTOR, Role.ADMIN)
        appointment = self._load(appointment_id)
        if principal.role == Role.DOCTOR:
            self._check_owner(principal, appointment.doctor_id, appointment_id)

        updated = self._move(
            principal, appointment, AppointmentStatus.RESCHEDULED,
            {
                "status": AppointmentStatus.RESCHEDULED.value,
                "rescheduled_at": request.new_date.isoformat(),
                "reschedule_reason": request.reason,
            },
        )
        self._notify_patient(
            updated,
            f"Your appointment has been rescheduled to {request.new_date:%d %b %Y %H:%M}.",
            "rescheduled",
        )
        return updated

    def complete(self, principal: Principal, appointment_id: str, request: CompleteRequest) -> Appointment:
        appointment = self._load_for_doctor(principal, appointment_id)
        completed_at = request.completed_at or datetime.now()
        updated = self._move(
            principal, appointment, AppointmentStatus.COMPLETED,
            {
                "status": AppointmentStatus.COMPLETED.value,
                "call_duration": request.call_duration,
                "completed_at": completed_at.isoformat(),
            },
        )
        logger.info("Appointment %s completed (duration %s)", updated.id, updated.call_duration)
        self._notify_patient(updated, "Your consultation has been marked as completed.", "completed")
        return updated

    def complete_prescription(self, principal: Principal, appointment_id: str) -> Appointment:
        appointment = self._load_for_doctor(principal, appointment_id)
        updated = self.appointments.update_fields(
            appointment.id,
            {"prescription_status": PrescriptionStatus.COMPLETED.value},
            "prescription_completed",
            actor=principal,
        )
        if updated is None:
            raise NotFound("Appointment not found", appointment_id=appointment_id)
        self._notify_patient(updated, "Your prescription is ready.", "prescription_completed")
        return updated

    def update_notes(self, principal: Principal, appointment_id: str, request: NotesRequest) -> Appointment:
        appointment = self._load_for_doctor(principal, appointment_id)
        updated = self.appointments.update_fields(
            appointment.id, {"notes": request.notes}, "notes_updated", actor=principal,
        )
        if updated is None:
            raise NotFound("Appointment not found", appointment_id=appointment_id)
        return updated

    # Cancellation

    def cancel(self, principal: Principal, appointment_id: str, request: CancelRequest) -> Appointment:
        """
        Cancel an appointment. Allowed for admins and the owning patient.

        A paid appointment gets refund_status Pending in the same write, which
        is what puts it in the admin refund queue.
        """
        require_role(principal, Role.PATIENT, Role.ADMIN)
        appointment = self._load(appointment_id)
        if principal.role == Role.PATIENT:
            self._check_owner(principal, appointment.patient_id, appointment_id)

        updates = {
            "status": AppointmentStatus.CANCELED.value,
            "cancellation_reason": request.reason,
            "canceled_at": datetime.now().isoformat(),
        }
        paid = appointment.payment_status == PaymentStatus.PAID.value
        if paid:
            updates["refund_status"] = RefundStatus.PENDING.value

        updated = self._move(
            principal, appointment, AppointmentStatus.CANCELED, updates,
            payment_status=appointment.payment_status,
        )
        logger.info(
            "Appointment %s canceled by %s %s (refund %s)",
            updated.id, principal.role.value, principal.id, "pending" if paid else "not applicable",
        )

        send_notification(
            self.notifier, updated.doctor_id,
            f"Appointment with {updated.patient_name} was canceled: {request.reason}",
            {"appointment_id": updated.id, "event": "canceled"},
        )
        if principal.role == Role.ADMIN:
            self._notify_patient(updated, f"Your appointment was canceled: {request.reason}", "canceled")
        return updated

    # Reads

    def get_appointment(self, principal: Principal, appointment_id: str) -> Appointment:
        """Fetch an appointment visible to the principal."""
        appointment = self._load(appointment_id)
        if principal.role == Role.PATIENT:
            self._check_owner(principal, appointment.patient_id, appointment_id)
        elif principal.role == Role.DOCTOR:
            self._check_owner(principal, appointment.doctor_id, appointment_id)
        return appointment

    def get_history(self, principal: Principal, appointment_id: str) -> list[dict]:
        """Audit trail of an appointment, oldest first."""
        self.get_appointment(principal, appointment_id)
        return self.appointments.get_events(appointment_id)

    # Private helpers

    def _existing_booking(self, principal: Principal, existing: Appointment, payment_id: str) -> Appointment:
        if existing.patient_id != principal.id:
            logger.error(
                "Payment %s already recorded against appointment %s of another patient",
                payment_id, existing.id,
            )
            raise Forbidden("Payment already used for another booking", payment_id=payment_id)
        logger.info("Booking retry for payment %s returns appointment %s", payment_id, existing.id)
        return existing

    def _move(
        self,
        principal: Principal,
        appointment: Appointment,
        target: AppointmentStatus,
        updates: dict,
        payment_status: str | None = None,
    ) -> Appointment:
        """Validate against the table, then write with a guard on the source status."""
        check_transition(appointment.status, target)
        updated = self.appointments.transition(
            appointment.id,
            [status.value for status in sources_for(target)],
            updates,
            target.value,
            actor=principal,
            payment_status=payment_status,
        )
        if updated is None:
            current = self.appointments.get_by_id(appointment.id)
            if current is None:
                raise NotFound("Appointment not found", appointment_id=appointment.id)
            logger.warning(
                "Lost race moving appointment %s to %s (now %s)",
                appointment.id, target.value, current.status,
            )
            raise InvalidTransition(
                f"Appointment changed concurrently and is now '{current.status}'",
                appointment_id=appointment.id,
                current=current.status,
                target=target.value,
            )
        return updated

    def _load(self, appointment_id: str) -> Appointment:
        appointment = self.appointments.get_by_id(appointment_id)
        if not appointment:
            raise NotFound("Appointment not found", appointment_id=appointment_id)
        return appointment

    def _load_for_doctor(self, principal: Principal, appointment_id: str) -> Appointment:
        require_role(principal, Role.DOCTOR)
        appointment = self._load(appointment_id)
        self._check_owner(principal, appointment.doctor_id, appointment_id)
        return appointment

    def _check_owner(self, principal: Principal, owner_id: str, appointment_id: str) -> None:
        if principal.id != owner_id:
            raise Forbidden(
                "Appointment belongs to someone else",
                appointment_id=appointment_id,
                principal_id=principal.id,
            )

    def _notify_patient(self, appointment: Appointment, message: str, event: str) -> None:
        send_notification(
            self.notifier, appointment.patient_id, message,
            {"appointment_id": appointment.id, "event": event},
        )
