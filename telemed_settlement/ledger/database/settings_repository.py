"""Platform settings repository (singleton row)."""

from dataclasses import dataclass
from datetime import datetime

from telemed_settlement.errors import ConfigurationError

from .connection import get_connection


@dataclass
class PlatformSettings:
    patient_commission: float
    doctor_commission: float
    cancellation_fee: float
    gateway_fee_pct: float
    gst_on_gateway_fee_pct: float
    minimum_withdrawal: float
    updated_at: str | None = None


class SettingsRepository:
    """Read and update the platform-wide commission and fee settings."""

    def get(self) -> PlatformSettings:
        """Get current settings. A missing row is an operator error, never defaulted."""
        conn = get_connection()
        cursor = conn.cursor()
        cursor.execute("SELECT * FROM platform_settings WHERE id = 1")
        row = cursor.fetchone()
        conn.close()
        if not row:
            raise ConfigurationError("Platform settings have not been initialized")
        return self._row_to_settings(row)

    def get_current_rates(self) -> tuple[float, float]:
        """Get (patient_commission, doctor_commission) percentages."""
        settings = self.get()
        return settings.patient_commission, settings.doctor_commission

    def update(self, updates: dict) -> PlatformSettings:
        """Update settings fields. Existing appointments keep their frozen rates."""
        allowed = {
            "patient_commission", "doctor_commission", "cancellation_fee",
            "gateway_fee_pct", "gst_on_gateway_fee_pct", "minimum_withdrawal",
        }
        valid_updates = {k: v for k, v in updates.items() if k in allowed and v is not None}
        if valid_updates:
            conn = get_connection()
            set_clause = ", ".join(f"{column} = ?" for column in valid_updates)
            set_clause += ", updated_at = ?"
            values = list(valid_updates.values()) + [datetime.now().isoformat()]
            cursor = conn.execute(f"UPDATE platform_settings SET {set_clause} WHERE id = 1", values)
            if cursor.rowcount == 0:
                conn.close()
                raise ConfigurationError("Platform settings have not been initialized")
            conn.commit()
            conn.close()
        return self.get()

    def _row_to_settings(self, row) -> PlatformSettings:
        return PlatformSettings(
            patient_commission=row["patient_commission"],
            doctor_commission=row["doctor_commission"],
            cancellation_fee=row["cancellation_fee"],
            gateway_fee_pct=row["gateway_fee_pct"],
            gst_on_gateway_fee_pct=row["gst_on_gateway_fee_pct"],
            minimum_withdrawal=row["minimum_withdrawal"],
            updated_at=row["updated_at"],
        )
