from .connection import get_connection, init_database
from .appointment_repository import AppointmentRepository
from .doctor_repository import DoctorRepository
from .notification_repository import NotificationRepository
from .settings_repository import SettingsRepository
from .withdrawal_repository import WithdrawalRepository

__all__ = [
    "get_connection",
    "init_database",
    "AppointmentRepository",
    "DoctorRepository",
    "NotificationRepository",
    "SettingsRepository",
    "WithdrawalRepository",
]
