# Models package (re-export feature modules for stable imports)
from .scheduling.schedule import DoctorSchedule
from .scheduling.appointment import Appointment
from .scheduling.day_cancellation import ScheduleDayCancellation
from .wallet.wallet import PatientWallet
from .wallet.transaction import WalletTransaction
from .wallet.refund import AppointmentRefund
from .notifications.notification import Notification

__all__ = [
    "DoctorSchedule",
    "Appointment",
    "ScheduleDayCancellation",
    "PatientWallet",
    "WalletTransaction",
    "AppointmentRefund",
    "Notification",
]
