import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional

from ...config import settings
from ...enums import AppointmentStatus
from ..ports.notifier import Notifier
from ..ports.queue_repo import AppointmentDto

logger = logging.getLogger(__name__)

STATUS_MESSAGES = {
    AppointmentStatus.start: ("Your appointment has started", "Your consultation has begun. Please proceed to the doctor's room."),
    AppointmentStatus.hold: ("Your appointment is on hold", "Your appointment has been placed on hold"),
    AppointmentStatus.pause: ("Your appointment has been paused", "Your appointment has been paused"),
    AppointmentStatus.cancel: ("Your appointment has been cancelled", "Your appointment has been cancelled"),
    AppointmentStatus.completed: ("Your appointment is complete", "Your consultation has been completed."),
    AppointmentStatus.no_show: ("Appointment missed", "You were marked as not present for your appointment"),
}


@dataclass
class QueueNotifications:
    """Patient-facing hooks. Delivery failures are logged, never raised."""

    notifier: Notifier
    next_in_line_count: int = settings.NEXT_IN_LINE_NOTIFY_COUNT
    currency_symbol: str = settings.CURRENCY_SYMBOL

    def _send(self, user_id: Optional[int], appointment_id: Optional[int], type: str, title: str, message: str) -> None:
        if user_id is None:
            # walk-in patients have no account to notify
            return
        try:
            self.notifier.notify(user_id, appointment_id, type, title, message)
        except Exception:
            logger.exception(f"Failed to send {type} notification for appointment {appointment_id}")

    def status_changed(self, appointment: AppointmentDto, status: AppointmentStatus, notes: Optional[str] = None) -> None:
        if status not in STATUS_MESSAGES:
            return
        title, message = STATUS_MESSAGES[status]
        if notes and status in (AppointmentStatus.hold, AppointmentStatus.pause, AppointmentStatus.cancel):
            message = f"{message}: {notes}"
        elif status in (AppointmentStatus.hold, AppointmentStatus.pause, AppointmentStatus.cancel):
            message = f"{message}."
        self._send(appointment.patient_id, appointment.id, f"status_{status.value}", title, message)

    def next_in_line(self, waiting: Iterable[AppointmentDto]) -> None:
        queue = sorted(waiting, key=lambda a: a.token_number)[: self.next_in_line_count]
        for position, appt in enumerate(queue, start=1):
            if position == 1:
                self._send(appt.patient_id, appt.id, "next_in_line", "You're next in line", "You'll be seeing the doctor shortly. Please be ready.")
            else:
                self._send(appt.patient_id, appt.id, "upcoming", "Your appointment is coming up", f"You are number {position} in line. Please remain in the waiting area.")

    def doctor_arrived(self, waiting: Iterable[AppointmentDto]) -> None:
        for appt in waiting:
            eta = appt.estimated_start_time.strftime("%H:%M") if appt.estimated_start_time else None
            message = "Your doctor has arrived at the clinic."
            if eta:
                message = f"{message} Your estimated consultation time is {eta}."
            self._send(appt.patient_id, appt.id, "doctor_arrival", "Your doctor has arrived", message)

    def refund_processed(self, appointment: AppointmentDto, amount: Decimal, reason: str) -> None:
        self._send(
            appointment.patient_id,
            appointment.id,
            "wallet_refund",
            "Refund Processed",
            f"{self.currency_symbol}{amount} has been refunded to your wallet - {reason}",
        )

    def schedule_paused(self, appointments: Iterable[AppointmentDto], reason: Optional[str]) -> None:
        for appt in appointments:
            self._send(appt.patient_id, appt.id, "schedule_paused", "Schedule Paused", f"Your appointment has been temporarily paused. Reason: {reason or 'not given'}")

    def schedule_resumed(self, appointments: Iterable[AppointmentDto]) -> None:
        for appt in appointments:
            self._send(appt.patient_id, appt.id, "schedule_resumed", "Schedule Resumed", "The doctor's schedule has resumed. Your appointment will proceed as planned.")
