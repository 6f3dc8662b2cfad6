"""Environment configuration for the settlement engine."""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv(override=True)

DB_PATH = Path(os.getenv("TELEMED_DB_PATH", Path(__file__).parent / "ledger" / "telemed_ledger.db"))

# Payment gateway (Razorpay REST dialect)
RAZORPAY_API_URL = os.getenv("RAZORPAY_API_URL", "https://api.razorpay.com/v1")
GATEWAY_CURRENCY = os.getenv("GATEWAY_CURRENCY", "INR")
GATEWAY_TIMEOUT_SECONDS = float(os.getenv("GATEWAY_TIMEOUT_SECONDS", "10"))

# Invoice artifacts
INVOICE_STORAGE_DIR = Path(os.getenv("INVOICE_STORAGE_DIR", Path(__file__).parent / "ledger" / "invoices"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Principal id the operator console acts as
OPERATOR_ID = os.getenv("TELEMED_OPERATOR_ID", "admin")

# Seed values for the platform_settings row. Only read by init_database();
# after that the database row is authoritative.
DEFAULT_PLATFORM_SETTINGS = {
    "patient_commission": float(os.getenv("DEFAULT_PATIENT_COMMISSION", "30")),
    "doctor_commission": float(os.getenv("DEFAULT_DOCTOR_COMMISSION", "10")),
    "cancellation_fee": float(os.getenv("DEFAULT_CANCELLATION_FEE", "50")),
    "gateway_fee_pct": float(os.getenv("DEFAULT_GATEWAY_FEE_PCT", "2")),
    "gst_on_gateway_fee_pct": float(os.getenv("DEFAULT_GST_ON_GATEWAY_FEE_PCT", "18")),
    "minimum_withdrawal": float(os.getenv("DEFAULT_MINIMUM_WITHDRAWAL", "1000")),
}


def gateway_credentials() -> tuple[str | None, str | None]:
    """Read gateway credentials at call time so rotation needs no restart."""
    return os.getenv("RAZORPAY_KEY_ID"), os.getenv("RAZORPAY_KEY_SECRET")
