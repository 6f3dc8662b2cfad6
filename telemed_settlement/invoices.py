"""Withdrawal invoice rendering and document storage."""

import io
import logging
import uuid
from datetime import datetime
from pathlib import Path

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from telemed_settlement.config import GATEWAY_CURRENCY, INVOICE_STORAGE_DIR
from telemed_settlement.errors import StorageError

logger = logging.getLogger(__name__)


class LocalDocumentStorage:
    """Stores artifacts on the local filesystem and returns a file:// URL."""

    def __init__(self, base_dir: Path | str | None = None):
        self.base_dir = Path(base_dir or INVOICE_STORAGE_DIR)

    def store(self, data: bytes, path: str) -> str:
        target = self.base_dir / path
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as e:
            logger.error("Could not store %s: %s", target, e)
            raise StorageError(f"Could not store document: {e}", path=path)
        logger.info("Stored %d bytes at %s", len(data), target)
        return target.resolve().as_uri()

    def delete(self, path: str) -> None:
        """Remove a stored document; a missing file is not an error."""
        target = self.base_dir / path
        try:
            target.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Could not delete %s: %s", target, e)


def invoice_path(withdrawal, attempt: str | None = None) -> str:
    """Relative storage path for a withdrawal's invoice.

    Each approval attempt gets its own file, so an attempt that loses the
    commit never overwrites the invoice of the one that won.
    """
    attempt = attempt or uuid.uuid4().hex[:12]
    return f"invoices/withdrawal_{withdrawal.id}_{attempt}.pdf"


def render_withdrawal_invoice(
    withdrawal,
    doctor,
    approved_amount: float,
    transaction_id: str,
    payment_mode: str,
    payment_date: str,
) -> bytes:
    """
    Render the payout invoice sent to a doctor when a withdrawal is approved.

    Returns:
        PDF document as bytes
    """
    buffer = io.BytesIO()
    styles = getSampleStyleSheet()
    story = []

    doc = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        leftMargin=20 * mm,
        rightMargin=20 * mm,
        topMargin=20 * mm,
        bottomMargin=20 * mm,
        title=f"Withdrawal invoice {withdrawal.reference or withdrawal.id}",
    )

    # ---------------- Header ----------------
    story.append(Paragraph("<b>Withdrawal Invoice</b>", styles["Title"]))
    story.append(Paragraph(f"Issued {datetime.now().strftime('%d-%b-%Y %H:%M')}", styles["Normal"]))
    story.append(Spacer(1, 8))

    # ---------------- Payout details ----------------
    info = [
        ["Withdrawal", withdrawal.reference or withdrawal.id],
        ["Doctor", doctor.name if doctor else withdrawal.doctor_id],
        ["Amount Requested", f"{GATEWAY_CURRENCY} {withdrawal.amount:.2f}"],
        ["Amount Paid", f"{GATEWAY_CURRENCY} {approved_amount:.2f}"],
        ["Transaction ID", transaction_id],
        ["Payment Mode", payment_mode],
        ["Date of Payment", payment_date],
    ]
    table = Table(info, colWidths=[120, 300])
    table.setStyle(TableStyle([
        ("BOX", (0, 0), (-1, -1), 0.25, colors.black),
        ("INNERGRID", (0, 0), (-1, -1), 0.25, colors.grey),
        ("FONTNAME", (0, 0), (0, -1), "Helvetica-Bold"),
        ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
    ]))
    story.append(table)
    story.append(Spacer(1, 15))
    story.append(Paragraph("This is a system generated invoice.", styles["Normal"]))

    doc.build(story)
    return buffer.getvalue()
