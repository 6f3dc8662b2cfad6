"""Payment settlement: gateway orders, payment verification and refunds."""

import logging
import time
from dataclasses import dataclass
from datetime import datetime

from telemed_settlement.auth import Principal, Role, require_role
from telemed_settlement.config import GATEWAY_CURRENCY, gateway_credentials
from telemed_settlement.errors import (
    AlreadyProcessed,
    AmountExceeded,
    ConfigurationError,
    Forbidden,
    GatewayError,
    InvalidTransition,
    NoPayment,
    NotCancelable,
    NotFound,
    SignatureMismatch,
)
from telemed_settlement.ledger.database import AppointmentRepository, SettingsRepository
from telemed_settlement.ledger.database.appointment_repository import (
    Appointment,
    PaymentDetails,
    RefundDetails,
)
from telemed_settlement.ledger.database.settings_repository import PlatformSettings
from telemed_settlement.notifications import send_notification
from telemed_settlement.payment_gateway import RazorpayGateway, signature_matches, to_minor_units
from telemed_settlement.schemas import CreateOrderRequest, RefundRequest, VerifyPaymentRequest
from telemed_settlement.state_machine import AppointmentStatus, PaymentStatus, RefundStatus

logger = logging.getLogger(__name__)


@dataclass
class OrderResult:
    order_id: str
    amount: int  # minor units, as the checkout widget expects
    currency: str
    key_id: str


@dataclass
class VerificationResult:
    payment: PaymentDetails
    appointment: Appointment | None = None
    already_recorded: bool = False


@dataclass(frozen=True)
class RefundQuote:
    """Refund arithmetic, computed once at refund time and stored on the record."""
    total_fee: float
    refund_amount: float
    cancellation_fee: float
    max_refundable: float
    gateway_fee: float
    gst_on_gateway_fee: float
    residual_after_refund: float


@dataclass
class RefundResult:
    appointment: Appointment
    refund: RefundDetails
    quote: RefundQuote
    mode: str  # "gateway", "upstream" (already refunded at the gateway) or "manual"


def quote_refund(total_fee: float, refund_amount: float, settings: PlatformSettings) -> RefundQuote:
    """Apply the cancellation fee, gateway fee and GST rules to a refund request."""
    gateway_fee = total_fee * settings.gateway_fee_pct / 100
    gst_on_gateway_fee = gateway_fee * settings.gst_on_gateway_fee_pct / 100
    residual = (total_fee - gateway_fee - gst_on_gateway_fee) - refund_amount
    return RefundQuote(
        total_fee=total_fee,
        refund_amount=refund_amount,
        cancellation_fee=settings.cancellation_fee,
        max_refundable=round(max(total_fee - settings.cancellation_fee, 0), 2),
        gateway_fee=round(gateway_fee, 2),
        gst_on_gateway_fee=round(gst_on_gateway_fee, 2),
        residual_after_refund=round(residual, 2),
    )


class PaymentSettlementService:
    """Reconciles gateway payments and refunds into appointment records.

    No lock is held across gateway calls. Correctness comes from the guarded
    writes in AppointmentRepository, which re-check payment and refund state
    at commit time.
    """

    def __init__(
        self,
        appointments: AppointmentRepository | None = None,
        settings: SettingsRepository | None = None,
        gateway=None,
        notifier=None,
        credentials=None,
        currency: str = GATEWAY_CURRENCY,
    ):
        self.appointments = appointments or AppointmentRepository()
        self.settings = settings or SettingsRepository()
        self._gateway_override = gateway
        self.notifier = notifier
        self._credentials = credentials or gateway_credentials
        self.currency = currency

    # Orders

    def create_order(self, principal: Principal, request: CreateOrderRequest) -> OrderResult:
        """Create a gateway order for the client to complete checkout against."""
        require_role(principal, Role.PATIENT)
        amount = round(request.amount, 2)

        if request.appointment_id:
            self._load_owned(principal, request.appointment_id)

        key_id, key_secret = self._credentials()
        if not key_id or not key_secret:
            logger.error("Cannot create order for %s: gateway credentials missing", principal.id)
            raise ConfigurationError("Payment gateway credentials missing")

        receipt = (
            f"appointment_{request.appointment_id}"
            if request.appointment_id
            else f"order_{int(time.time() * 1000)}"
        )
        try:
            order = self._gateway().create_order(to_minor_units(amount), self.currency, receipt)
        except GatewayError:
            logger.error(
                "Order creation failed (patient=%s appointment=%s amount=%.2f)",
                principal.id, request.appointment_id, amount,
            )
            raise

        logger.info("Created order %s for %.2f %s", order.order_id, amount, order.currency)
        return OrderResult(order.order_id, order.amount, order.currency, key_id)

    # Verification

    def verify_payment(self, principal: Principal, request: VerifyPaymentRequest) -> VerificationResult:
        """
        Verify a checkout signature and, if an appointment is named, mark it paid.

        Verifying the same payment again is a no-op that reports success.
        """
        require_role(principal, Role.PATIENT)
        self.check_signature(request.order_id, request.payment_id, request.signature)

        payment = PaymentDetails(
            order_id=request.order_id,
            payment_id=request.payment_id,
            signature=request.signature,
            paid_at=datetime.now().isoformat(),
        )
        if not request.appointment_id:
            return VerificationResult(payment=payment)

        appointment = self._load_owned(principal, request.appointment_id)
        if appointment.payment_status == PaymentStatus.PAID.value:
            return self._already_paid(appointment, request.payment_id)
        if appointment.payment_status == PaymentStatus.REFUNDED.value:
            raise InvalidTransition(
                "Appointment payment was already refunded",
                appointment_id=appointment.id,
            )

        other = self.appointments.find_by_payment_id(request.payment_id)
        if other and other.id != appointment.id:
            logger.error(
                "Payment %s already recorded against appointment %s; refusing it for %s",
                request.payment_id, other.id, appointment.id,
            )
            raise Forbidden("Payment already used for another booking", payment_id=request.payment_id)

        payment.amount_paid = appointment.total_fee
        self.confirm_capture(payment, appointment.total_fee)

        updated = self.appointments.record_payment(appointment.id, payment, actor=principal)
        if updated is None:
            current = self.appointments.get_by_id(appointment.id)
            if current and current.payment_status == PaymentStatus.PAID.value:
                return self._already_paid(current, request.payment_id)
            raise InvalidTransition(
                "Appointment payment state changed during verification",
                appointment_id=appointment.id,
            )

        logger.info(
            "Payment %s recorded for appointment %s (%.2f)",
            payment.payment_id, updated.id, payment.amount_paid,
        )
        send_notification(
            self.notifier, updated.patient_id,
            "Your appointment has been booked. We will inform you when the doctor accepts it.",
            {"appointment_id": updated.id, "event": "payment_verified"},
        )
        send_notification(
            self.notifier, updated.doctor_id,
            f"New appointment booked by {updated.patient_name}.",
            {"appointment_id": updated.id, "event": "payment_verified"},
        )
        return VerificationResult(payment=updated.payment, appointment=updated)

    def confirm_capture(self, payment: PaymentDetails, expected_total: float) -> None:
        """
        Fill method and captured amount from the gateway, and check the amount.

        An unreachable gateway is not fatal: the signed authorization stands
        and the expected total is kept. A gateway that reports less than
        expected_total raises GatewayError and nothing is marked paid.
        """
        try:
            details = self._gateway().fetch_payment(payment.payment_id)
        except (GatewayError, ConfigurationError) as e:
            logger.warning("Could not fetch payment %s details: %s", payment.payment_id, e)
            return
        if details.method:
            payment.method = details.method
        if not details.amount_captured:
            return
        if to_minor_units(details.amount_captured) < to_minor_units(expected_total):
            logger.error(
                "Payment %s (order %s) is for %.2f, short of the %.2f due",
                payment.payment_id, payment.order_id, details.amount_captured, expected_total,
            )
            raise GatewayError(
                f"Payment amount {details.amount_captured:.2f} does not cover the total fee {expected_total:.2f}",
                payment_id=payment.payment_id,
                amount_captured=details.amount_captured,
                total_fee=expected_total,
            )
        payment.amount_paid = details.amount_captured

    def check_signature(self, order_id: str, payment_id: str, signature: str) -> None:
        """Raise SignatureMismatch unless the signature was produced with our secret."""
        _, key_secret = self._credentials()
        if not key_secret:
            raise ConfigurationError("Payment gateway secret missing")
        if not signature_matches(order_id, payment_id, signature, key_secret):
            logger.warning("Signature mismatch for order %s payment %s", order_id, payment_id)
            raise SignatureMismatch("Invalid payment signature", order_id=order_id, payment_id=payment_id)

    # Refunds

    def process_refund(self, principal: Principal, request: RefundRequest) -> RefundResult:
        """Refund a canceled, paid appointment, less the cancellation fee."""
        require_role(principal, Role.ADMIN)

        appointment = self.appointments.get_by_id(request.appointment_id)
        if not appointment:
            raise NotFound("Appointment not found", appointment_id=request.appointment_id)
        if appointment.status != AppointmentStatus.CANCELED.value:
            raise NotCancelable(
                "Refund can only be processed for canceled appointments",
                appointment_id=appointment.id,
                status=appointment.status,
            )
        if appointment.refund_status == RefundStatus.PROCESSED.value:
            raise AlreadyProcessed("Refund already processed", appointment_id=appointment.id)
        if appointment.payment_status != PaymentStatus.PAID.value:
            raise NoPayment("No payment to refund", appointment_id=appointment.id)

        quote = quote_refund(appointment.total_fee, request.refund_amount, self.settings.get())
        if request.refund_amount > quote.max_refundable:
            logger.warning(
                "Refund of %.2f for %s exceeds maximum %.2f",
                request.refund_amount, appointment.id, quote.max_refundable,
            )
            raise AmountExceeded(
                f"Refund amount exceeds maximum refundable amount of {quote.max_refundable:.2f} "
                f"(total fee {quote.total_fee:.2f} - cancellation fee {quote.cancellation_fee:.2f})",
                appointment_id=appointment.id,
                refund_amount=request.refund_amount,
                max_refundable=quote.max_refundable,
            )

        refund, mode = self._issue_refund(appointment, quote)

        updated = self.appointments.record_refund(appointment.id, refund, actor=principal)
        if updated is None:
            logger.error(
                "Refund %s (%.2f) for appointment %s was issued but not recorded: "
                "appointment changed concurrently; reconcile manually",
                refund.refund_id, refund.amount, appointment.id,
            )
            raise AlreadyProcessed(
                "Appointment refund state changed while the refund was in flight",
                appointment_id=appointment.id,
                refund_id=refund.refund_id,
            )

        logger.info(
            "Refund %s processed for appointment %s: %.2f (%s)",
            refund.refund_id, appointment.id, refund.amount, mode,
        )
        send_notification(
            self.notifier, updated.patient_id,
            f"Your refund of {refund.amount:.2f} has been processed and will be credited "
            "to your original payment method within 5-7 working days.",
            {"appointment_id": updated.id, "refund_id": refund.refund_id, "event": "refund_processed"},
        )
        return RefundResult(appointment=updated, refund=updated.refund or refund, quote=quote, mode=mode)

    def list_pending_refunds(self, principal: Principal) -> list[Appointment]:
        """Canceled, paid appointments still waiting for their refund."""
        require_role(principal, Role.ADMIN)
        return self.appointments.list_all(
            status=AppointmentStatus.CANCELED.value,
            payment_status=PaymentStatus.PAID.value,
            refund_status=RefundStatus.PENDING.value,
        )

    # Private helpers

    def _issue_refund(self, appointment: Appointment, quote: RefundQuote) -> tuple[RefundDetails, str]:
        """Refund at the gateway when possible; otherwise record a manual refund."""
        payment_id = appointment.payment.payment_id
        key_id, key_secret = self._credentials()

        if not payment_id:
            logger.warning(
                "No payment id for appointment %s; recording manual refund of %.2f",
                appointment.id, quote.refund_amount,
            )
            return self._refund_details(f"MANUAL-{int(time.time() * 1000)}", quote.refund_amount, quote), "manual"
        if not key_id or not key_secret:
            logger.warning(
                "Gateway credentials not configured; recording manual refund of %.2f for %s",
                quote.refund_amount, appointment.id,
            )
            return self._refund_details(f"MANUAL-{int(time.time() * 1000)}", quote.refund_amount, quote), "manual"

        gateway = self._gateway()
        try:
            payment = gateway.fetch_payment(payment_id)
            if not payment.is_captured:
                raise GatewayError(
                    f"Payment not eligible for refund (status: {payment.status})",
                    payment_id=payment_id,
                )
            if payment.is_fully_refunded:
                logger.warning("Payment %s already fully refunded at the gateway", payment_id)
                return self._refund_details(
                    f"{payment_id}-ALREADY-REFUNDED", payment.amount_refunded, quote,
                ), "upstream"

            gateway_refund = gateway.refund(
                payment_id,
                to_minor_units(quote.refund_amount),
                notes={
                    "appointment_id": appointment.id,
                    "cancellation_fee": quote.cancellation_fee,
                    "gateway_fee": quote.gateway_fee,
                    "gst_on_gateway_fee": quote.gst_on_gateway_fee,
                    "residual_after_refund": quote.residual_after_refund,
                },
            )
            if gateway_refund.status == "failed":
                raise GatewayError("Gateway reported the refund as failed", refund_id=gateway_refund.refund_id)
        except (GatewayError, ConfigurationError) as e:
            logger.error(
                "Gateway refund failed for appointment %s payment %s amount %.2f: %s "
                "(refund left pending)",
                appointment.id, payment_id, quote.refund_amount, e,
            )
            raise

        return self._refund_details(
            gateway_refund.refund_id, gateway_refund.amount, quote, gateway_refund.created_at,
        ), "gateway"

    def _refund_details(
        self,
        refund_id: str,
        amount: float,
        quote: RefundQuote,
        created_at: str | None = None,
    ) -> RefundDetails:
        return RefundDetails(
            refund_id=refund_id,
            amount=amount,
            status=RefundStatus.PROCESSED.value,
            created_at=created_at or datetime.now().isoformat(),
            cancellation_fee=quote.cancellation_fee,
            gateway_fee=quote.gateway_fee,
            gst_on_gateway_fee=quote.gst_on_gateway_fee,
            residual_after_refund=quote.residual_after_refund,
        )

    def _already_paid(self, appointment: Appointment, payment_id: str) -> VerificationResult:
        if appointment.payment.payment_id and appointment.payment.payment_id != payment_id:
            logger.error(
                "Appointment %s already paid by %s; second payment %s needs reconciliation",
                appointment.id, appointment.payment.payment_id, payment_id,
            )
        return VerificationResult(payment=appointment.payment, appointment=appointment, already_recorded=True)

    def _load_owned(self, principal: Principal, appointment_id: str) -> Appointment:
        appointment = self.appointments.get_by_id(appointment_id)
        if not appointment:
            raise NotFound("Appointment not found", appointment_id=appointment_id)
        if appointment.patient_id != principal.id:
            raise Forbidden(
                "Appointment belongs to another patient",
                appointment_id=appointment_id,
                principal_id=principal.id,
            )
        return appointment

    def _gateway(self):
        if self._gateway_override is not None:
            return self._gateway_override
        return RazorpayGateway.from_env()
