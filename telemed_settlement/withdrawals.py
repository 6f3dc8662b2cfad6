"""Doctor withdrawal requests and admin payout decisions."""

import logging
from dataclasses import dataclass, field
from enum import Enum

from telemed_settlement.auth import Principal, Role, require_role
from telemed_settlement.earnings import EarningsAggregator
from telemed_settlement.errors import (
    BankDetailsMissing,
    Forbidden,
    InvalidTransition,
    NotFound,
    OutOfRange,
    SettlementError,
)
from telemed_settlement.invoices import LocalDocumentStorage, invoice_path, render_withdrawal_invoice
from telemed_settlement.ledger.database import (
    DoctorRepository,
    SettingsRepository,
    WithdrawalRepository,
)
from telemed_settlement.ledger.database.withdrawal_repository import Withdrawal
from telemed_settlement.notifications import send_notification
from telemed_settlement.schemas import (
    BulkWithdrawalApproval,
    WithdrawalApproval,
    WithdrawalRejection,
    WithdrawalRequest,
)

logger = logging.getLogger(__name__)


class WithdrawalStatus(Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass
class BulkApprovalResult:
    approved: list[Withdrawal] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)  # withdrawal id -> error kind


class WithdrawalLedger:
    """
    Payout requests against a doctor's available balance.

    A withdrawal only moves out of pending once. Approval re-checks the
    balance inside the committing transaction, since other payouts may have
    been approved since the request was made or while the invoice rendered.
    """

    def __init__(
        self,
        withdrawals: WithdrawalRepository | None = None,
        doctors: DoctorRepository | None = None,
        settings: SettingsRepository | None = None,
        earnings: EarningsAggregator | None = None,
        storage=None,
        notifier=None,
    ):
        self.withdrawals = withdrawals or WithdrawalRepository()
        self.doctors = doctors or DoctorRepository()
        self.settings = settings or SettingsRepository()
        self.earnings = earnings or EarningsAggregator(withdrawals=self.withdrawals)
        self.storage = storage or LocalDocumentStorage()
        self.notifier = notifier

    def request_withdrawal(self, principal: Principal, request: WithdrawalRequest) -> Withdrawal:
        """Create a pending withdrawal for the calling doctor."""
        require_role(principal, Role.DOCTOR)

        doctor = self.doctors.get_by_id(principal.id)
        if not doctor:
            raise NotFound("Doctor profile not found", doctor_id=principal.id)
        if not doctor.has_payout_details:
            raise BankDetailsMissing(
                "Please update your bank details or UPI ID before requesting a withdrawal",
                doctor_id=doctor.id,
            )

        minimum = self.settings.get().minimum_withdrawal
        available = self.earnings.available_balance(doctor.id)
        if request.amount < minimum or request.amount > available:
            logger.warning(
                "Withdrawal of %.2f by %s outside [%.2f, %.2f]",
                request.amount, doctor.id, minimum, available,
            )
            raise OutOfRange(
                f"Withdrawal amount must be between {minimum:.2f} and {available:.2f}",
                amount=request.amount,
                minimum=minimum,
                available=available,
            )

        method = "UPI" if doctor.upi_id else "Bank Transfer"
        withdrawal = self.withdrawals.create(doctor.id, round(request.amount, 2), method)
        logger.info(
            "Withdrawal %s requested by %s: %.2f via %s",
            withdrawal.reference, doctor.id, withdrawal.amount, method,
        )
        return withdrawal

    def approve_withdrawal(self, principal: Principal, request: WithdrawalApproval) -> Withdrawal:
        """Approve a pending withdrawal, render its invoice and notify the doctor."""
        require_role(principal, Role.ADMIN)
        withdrawal = self._load_pending(request.withdrawal_id)
        return self._approve(
            withdrawal,
            approved_amount=round(request.approved_amount, 2),
            transaction_id=request.transaction_id,
            payment_mode=request.payment_mode,
            payment_date=request.payment_date.date().isoformat(),
        )

    def bulk_approve(self, principal: Principal, request: BulkWithdrawalApproval) -> BulkApprovalResult:
        """
        Approve several pending withdrawals in one payout run.

        Each withdrawal goes through the same guarded approval as a single
        one, for its requested amount. One failing item does not stop the
        rest; failures are reported per id.
        """
        require_role(principal, Role.ADMIN)
        payment_date = request.payment_date.date().isoformat()
        result = BulkApprovalResult()

        for withdrawal_id in dict.fromkeys(request.withdrawal_ids):
            try:
                withdrawal = self._load_pending(withdrawal_id)
                approved = self._approve(
                    withdrawal,
                    approved_amount=withdrawal.amount,
                    transaction_id=request.transaction_id,
                    payment_mode=request.payment_mode,
                    payment_date=payment_date,
                )
            except SettlementError as e:
                result.failed[withdrawal_id] = e.kind
                continue
            result.approved.append(approved)

        logger.info(
            "Bulk approval %s: %d approved, %d failed",
            request.transaction_id, len(result.approved), len(result.failed),
        )
        return result

    def list_pending_withdrawals(self, principal: Principal) -> list[Withdrawal]:
        """Pending withdrawals across all doctors, oldest first."""
        require_role(principal, Role.ADMIN)
        return self.withdrawals.list_all(status=WithdrawalStatus.PENDING.value)

    def reject_withdrawal(self, principal: Principal, request: WithdrawalRejection) -> Withdrawal:
        require_role(principal, Role.ADMIN)
        withdrawal = self._load_pending(request.withdrawal_id)

        rejected = self.withdrawals.reject(withdrawal.id, request.reason)
        if rejected is None:
            logger.warning("Withdrawal %s was decided concurrently", withdrawal.reference)
            raise InvalidTransition("Withdrawal is no longer pending", withdrawal_id=withdrawal.id)

        logger.info("Withdrawal %s rejected: %s", rejected.reference, request.reason)
        send_notification(
            self.notifier, rejected.doctor_id,
            f"Your withdrawal {rejected.reference} was rejected: {request.reason}",
            {"withdrawal_id": rejected.id, "event": "withdrawal_rejected"},
        )
        return rejected

    def list_withdrawals(self, principal: Principal, doctor_id: str) -> list[Withdrawal]:
        """A doctor's withdrawal history, newest first. Doctors see only their own."""
        require_role(principal, Role.DOCTOR, Role.ADMIN)
        if principal.role == Role.DOCTOR and principal.id != doctor_id:
            raise Forbidden("Doctors can only list their own withdrawals", principal_id=principal.id)
        return self.withdrawals.list_for_doctor(doctor_id)

    def _approve(
        self,
        withdrawal: Withdrawal,
        approved_amount: float,
        transaction_id: str,
        payment_mode: str,
        payment_date: str,
    ) -> Withdrawal:
        earnings = self.earnings.compute_doctor_earnings(withdrawal.doctor_id)
        if approved_amount > earnings.pending_payout:
            logger.warning(
                "Approval of %.2f for withdrawal %s exceeds available balance %.2f",
                approved_amount, withdrawal.reference, earnings.pending_payout,
            )
            raise OutOfRange(
                f"Approved amount exceeds the doctor's available balance of {earnings.pending_payout:.2f}",
                withdrawal_id=withdrawal.id,
                approved_amount=approved_amount,
                available=earnings.pending_payout,
            )

        doctor = self.doctors.get_by_id(withdrawal.doctor_id)
        pdf = render_withdrawal_invoice(
            withdrawal,
            doctor,
            approved_amount=approved_amount,
            transaction_id=transaction_id,
            payment_mode=payment_mode,
            payment_date=payment_date,
        )
        path = invoice_path(withdrawal)
        invoice_url = self.storage.store(pdf, path)

        try:
            approved = self.withdrawals.approve(
                withdrawal.id,
                approved_amount=approved_amount,
                payment_mode=payment_mode,
                transaction_id=transaction_id,
                payment_date=payment_date,
                invoice_url=invoice_url,
                net_earnings=earnings.net,
            )
        except OutOfRange:
            logger.warning(
                "Approval of %.2f for withdrawal %s lost the balance to a concurrent payout",
                approved_amount, withdrawal.reference,
            )
            self.storage.delete(path)
            raise
        if approved is None:
            logger.warning("Withdrawal %s was decided concurrently", withdrawal.reference)
            self.storage.delete(path)
            raise InvalidTransition("Withdrawal is no longer pending", withdrawal_id=withdrawal.id)

        logger.info(
            "Withdrawal %s approved: %.2f to %s (txn %s)",
            approved.reference, approved.approved_amount, approved.doctor_id, approved.transaction_id,
        )
        send_notification(
            self.notifier, approved.doctor_id,
            f"Your withdrawal {approved.reference} of {approved.approved_amount:.2f} has been approved.",
            {"withdrawal_id": approved.id, "invoice_url": invoice_url, "event": "withdrawal_approved"},
        )
        return approved

    def _load_pending(self, withdrawal_id: str) -> Withdrawal:
        withdrawal = self.withdrawals.get_by_id(withdrawal_id)
        if not withdrawal:
            raise NotFound("Withdrawal not found", withdrawal_id=withdrawal_id)
        if withdrawal.status != WithdrawalStatus.PENDING.value:
            raise InvalidTransition(
                f"Withdrawal is already {withdrawal.status}",
                withdrawal_id=withdrawal_id,
                status=withdrawal.status,
            )
        return withdrawal
