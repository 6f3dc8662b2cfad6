"""Entry points for the settlement engine.

Each verb validates its request, calls the owning service and returns an
OperationResult. Services raise SettlementError subclasses; this module is
the only place they are turned into result values.
"""

import logging
from dataclasses import dataclass
from typing import Any

from telemed_settlement.appointments import AppointmentService
from telemed_settlement.auth import Principal, Role, require_role
from telemed_settlement.earnings import EarningsAggregator
from telemed_settlement.errors import Forbidden, SettlementError
from telemed_settlement.ledger.database import (
    AppointmentRepository,
    DoctorRepository,
    SettingsRepository,
    WithdrawalRepository,
)
from telemed_settlement.notifications import DatabaseNotifier
from telemed_settlement.schemas import (
    BookingRequest,
    BulkWithdrawalApproval,
    CancelRequest,
    CompleteRequest,
    CreateOrderRequest,
    EarningsQuery,
    NotesRequest,
    RefundRequest,
    RejectRequest,
    RescheduleRequest,
    SettingsUpdate,
    VerifyPaymentRequest,
    WithdrawalApproval,
    WithdrawalRejection,
    WithdrawalRequest,
    parse_request,
)
from telemed_settlement.settlement import PaymentSettlementService
from telemed_settlement.withdrawals import WithdrawalLedger

logger = logging.getLogger(__name__)


@dataclass
class OperationResult:
    """Outcome of a core operation: a value on success, an error kind otherwise."""
    ok: bool
    value: Any = None
    error_kind: str | None = None
    message: str | None = None

    @classmethod
    def success(cls, value=None) -> "OperationResult":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: SettlementError) -> "OperationResult":
        return cls(ok=False, error_kind=error.kind, message=error.message)


class BookingOperations:
    """Facade over the appointment, settlement, earnings and withdrawal services."""

    def __init__(
        self,
        gateway=None,
        notifier=None,
        storage=None,
        credentials=None,
    ):
        self.appointment_repo = AppointmentRepository()
        self.doctor_repo = DoctorRepository()
        self.settings_repo = SettingsRepository()
        self.withdrawal_repo = WithdrawalRepository()
        self.notifier = notifier or DatabaseNotifier()

        self.settlement = PaymentSettlementService(
            appointments=self.appointment_repo,
            settings=self.settings_repo,
            gateway=gateway,
            notifier=self.notifier,
            credentials=credentials,
        )
        self.appointments = AppointmentService(
            appointments=self.appointment_repo,
            doctors=self.doctor_repo,
            settings=self.settings_repo,
            settlement=self.settlement,
            notifier=self.notifier,
        )
        self.earnings = EarningsAggregator(
            appointments=self.appointment_repo,
            withdrawals=self.withdrawal_repo,
        )
        self.withdrawals = WithdrawalLedger(
            withdrawals=self.withdrawal_repo,
            doctors=self.doctor_repo,
            settings=self.settings_repo,
            earnings=self.earnings,
            storage=storage,
            notifier=self.notifier,
        )

    # Appointments

    def book(self, principal: Principal, request) -> OperationResult:
        return self._run("book", lambda: self.appointments.book(
            principal, parse_request(BookingRequest, request),
        ))

    def accept(self, principal: Principal, appointment_id: str) -> OperationResult:
        return self._run("accept", lambda: self.appointments.accept(principal, appointment_id))

    def reject(self, principal: Principal, appointment_id: str, request) -> OperationResult:
        return self._run("reject", lambda: self.appointments.reject(
            principal, appointment_id, parse_request(RejectRequest, request),
        ))

    def reschedule(self, principal: Principal, appointment_id: str, request) -> OperationResult:
        return self._run("reschedule", lambda: self.appointments.reschedule(
            principal, appointment_id, parse_request(RescheduleRequest, request),
        ))

    def complete(self, principal: Principal, appointment_id: str, request) -> OperationResult:
        return self._run("complete", lambda: self.appointments.complete(
            principal, appointment_id, parse_request(CompleteRequest, request),
        ))

    def complete_prescription(self, principal: Principal, appointment_id: str) -> OperationResult:
        return self._run(
            "complete_prescription",
            lambda: self.appointments.complete_prescription(principal, appointment_id),
        )

    def update_notes(self, principal: Principal, appointment_id: str, request) -> OperationResult:
        return self._run("update_notes", lambda: self.appointments.update_notes(
            principal, appointment_id, parse_request(NotesRequest, request),
        ))

    def cancel(self, principal: Principal, appointment_id: str, request) -> OperationResult:
        return self._run("cancel", lambda: self.appointments.cancel(
            principal, appointment_id, parse_request(CancelRequest, request),
        ))

    def get_appointment(self, principal: Principal, appointment_id: str) -> OperationResult:
        return self._run("get_appointment", lambda: self.appointments.get_appointment(principal, appointment_id))

    def get_appointment_history(self, principal: Principal, appointment_id: str) -> OperationResult:
        return self._run("get_appointment_history", lambda: self.appointments.get_history(principal, appointment_id))

    # Payments

    def create_order(self, principal: Principal, request) -> OperationResult:
        return self._run("create_order", lambda: self.settlement.create_order(
            principal, parse_request(CreateOrderRequest, request),
        ))

    def verify_payment(self, principal: Principal, request) -> OperationResult:
        return self._run("verify_payment", lambda: self.settlement.verify_payment(
            principal, parse_request(VerifyPaymentRequest, request),
        ))

    def process_refund(self, principal: Principal, request) -> OperationResult:
        return self._run("process_refund", lambda: self.settlement.process_refund(
            principal, parse_request(RefundRequest, request),
        ))

    def list_pending_refunds(self, principal: Principal) -> OperationResult:
        return self._run("list_pending_refunds", lambda: self.settlement.list_pending_refunds(principal))

    # Earnings

    def compute_doctor_earnings(self, principal: Principal, query) -> OperationResult:
        def run():
            parsed = parse_request(EarningsQuery, query)
            self._check_earnings_access(principal, parsed.doctor_id)
            return self.earnings.compute_doctor_earnings(parsed.doctor_id, parsed.start, parsed.end)
        return self._run("compute_doctor_earnings", run)

    def earnings_breakdown(self, principal: Principal, doctor_id: str) -> OperationResult:
        def run():
            self._check_earnings_access(principal, doctor_id)
            return self.earnings.earnings_breakdown(doctor_id)
        return self._run("earnings_breakdown", run)

    def compute_platform_revenue(self, principal: Principal, start=None, end=None) -> OperationResult:
        def run():
            require_role(principal, Role.ADMIN)
            return self.earnings.compute_platform_revenue(start, end)
        return self._run("compute_platform_revenue", run)

    # Withdrawals

    def request_withdrawal(self, principal: Principal, request) -> OperationResult:
        return self._run("request_withdrawal", lambda: self.withdrawals.request_withdrawal(
            principal, parse_request(WithdrawalRequest, request),
        ))

    def approve_withdrawal(self, principal: Principal, request) -> OperationResult:
        return self._run("approve_withdrawal", lambda: self.withdrawals.approve_withdrawal(
            principal, parse_request(WithdrawalApproval, request),
        ))

    def reject_withdrawal(self, principal: Principal, request) -> OperationResult:
        return self._run("reject_withdrawal", lambda: self.withdrawals.reject_withdrawal(
            principal, parse_request(WithdrawalRejection, request),
        ))

    def list_withdrawals(self, principal: Principal, doctor_id: str) -> OperationResult:
        return self._run("list_withdrawals", lambda: self.withdrawals.list_withdrawals(principal, doctor_id))

    def list_pending_withdrawals(self, principal: Principal) -> OperationResult:
        return self._run(
            "list_pending_withdrawals",
            lambda: self.withdrawals.list_pending_withdrawals(principal),
        )

    def bulk_approve_withdrawals(self, principal: Principal, request) -> OperationResult:
        return self._run("bulk_approve_withdrawals", lambda: self.withdrawals.bulk_approve(
            principal, parse_request(BulkWithdrawalApproval, request),
        ))

    # Settings

    def get_platform_settings(self, principal: Principal) -> OperationResult:
        def run():
            require_role(principal, Role.ADMIN)
            return self.settings_repo.get()
        return self._run("get_platform_settings", run)

    def update_platform_settings(self, principal: Principal, request) -> OperationResult:
        def run():
            require_role(principal, Role.ADMIN)
            update = parse_request(SettingsUpdate, request)
            settings = self.settings_repo.update(update.model_dump(exclude_none=True))
            logger.info("Platform settings updated by %s: %s", principal.id, update.model_dump(exclude_none=True))
            return settings
        return self._run("update_platform_settings", run)

    # Private helpers

    def _check_earnings_access(self, principal: Principal, doctor_id: str) -> None:
        require_role(principal, Role.DOCTOR, Role.ADMIN)
        if principal.role == Role.DOCTOR and principal.id != doctor_id:
            raise Forbidden("Doctors can only view their own earnings", principal_id=principal.id)

    def _run(self, operation: str, action) -> OperationResult:
        try:
            return OperationResult.success(action())
        except SettlementError as e:
            logger.info("%s failed with %s: %s", operation, e.kind, e.message)
            return OperationResult.failure(e)
