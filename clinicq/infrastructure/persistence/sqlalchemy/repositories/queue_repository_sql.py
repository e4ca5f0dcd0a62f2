from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import func, or_
from sqlmodel import Session, select

from .....application.ports.queue_repo import AppointmentDto, QueueRepository, ScheduleDto
from .....db.models import Appointment, DoctorSchedule, ScheduleDayCancellation
from ..errors import translate_storage_errors


@translate_storage_errors
class SqlQueueRepository(QueueRepository):
    def __init__(self, session: Session):
        self.session = session

    def _schedule_to_dto(self, s: DoctorSchedule) -> ScheduleDto:
        return ScheduleDto(
            id=s.id,
            doctor_id=s.doctor_id,
            clinic_id=s.clinic_id,
            day_of_week=s.day_of_week,
            schedule_date=s.schedule_date,
            start_time=s.start_time,
            end_time=s.end_time,
            max_tokens=s.max_tokens,
            average_consultation_time=s.average_consultation_time,
            actual_arrival_time=s.actual_arrival_time,
            is_active=bool(s.is_active),
            is_paused=bool(s.is_paused),
            is_cancelled=bool(s.is_cancelled),
            cancel_reason=s.cancel_reason,
        )

    def _appt_to_dto(self, a: Appointment) -> AppointmentDto:
        return AppointmentDto(
            id=a.id,
            schedule_id=a.schedule_id,
            doctor_id=a.doctor_id,
            clinic_id=a.clinic_id,
            patient_id=a.patient_id,
            patient_name=a.patient_name,
            appointment_date=a.appointment_date,
            token_number=a.token_number,
            status=a.status,
            status_notes=a.status_notes,
            estimated_start_time=a.estimated_start_time,
            actual_start_time=a.actual_start_time,
            actual_end_time=a.actual_end_time,
            times_estimated=bool(a.times_estimated),
            consultation_fee=a.consultation_fee,
            is_paid=bool(a.is_paid),
            is_refund_eligible=bool(a.is_refund_eligible),
            has_been_refunded=bool(a.has_been_refunded),
            refund_amount=a.refund_amount,
        )

    # Schedules

    def get_schedule(self, schedule_id: int, for_update: bool = False) -> Optional[ScheduleDto]:
        stmt = select(DoctorSchedule).where(DoctorSchedule.id == schedule_id)
        if for_update:
            stmt = stmt.with_for_update()
        s = self.session.exec(stmt).first()
        return self._schedule_to_dto(s) if s else None

    def find_schedules(self, doctor_id: int, clinic_id: int, on_date: date) -> List[ScheduleDto]:
        rows = self.session.exec(
            select(DoctorSchedule)
            .where(DoctorSchedule.doctor_id == doctor_id)
            .where(DoctorSchedule.clinic_id == clinic_id)
            .where(DoctorSchedule.is_active == True)  # noqa: E712
            .where(DoctorSchedule.is_cancelled == False)  # noqa: E712
            .where(
                DoctorSchedule.id.not_in(
                    select(ScheduleDayCancellation.schedule_id).where(ScheduleDayCancellation.cancel_date == on_date)
                )
            )
            .where(
                or_(
                    DoctorSchedule.schedule_date == on_date,
                    (DoctorSchedule.schedule_date == None) & (DoctorSchedule.day_of_week == on_date.weekday()),  # noqa: E711
                )
            )
            .order_by(DoctorSchedule.start_time)
        ).all()
        return [self._schedule_to_dto(r) for r in rows]

    def update_schedule(self, schedule_id: int, **fields) -> None:
        s = self.session.get(DoctorSchedule, schedule_id)
        if not s:
            return
        for key, value in fields.items():
            setattr(s, key, value)
        self.session.add(s)
        self.session.flush()

    def cancel_schedule_day(self, schedule_id: int, on_date: date, reason: str, cancelled_by: Optional[int] = None) -> None:
        existing = self.session.exec(
            select(ScheduleDayCancellation)
            .where(ScheduleDayCancellation.schedule_id == schedule_id)
            .where(ScheduleDayCancellation.cancel_date == on_date)
        ).first()
        if existing:
            return
        self.session.add(
            ScheduleDayCancellation(schedule_id=schedule_id, cancel_date=on_date, reason=reason, cancelled_by=cancelled_by)
        )
        self.session.flush()

    # Appointments

    def max_token_number(self, schedule_id: int, on_date: date) -> int:
        value = self.session.exec(
            select(func.max(Appointment.token_number))
            .where(Appointment.schedule_id == schedule_id)
            .where(Appointment.appointment_date == on_date)
        ).one()
        return value or 0

    def count_appointments(self, schedule_id: int, on_date: date) -> int:
        return self.session.exec(
            select(func.count(Appointment.id))
            .where(Appointment.schedule_id == schedule_id)
            .where(Appointment.appointment_date == on_date)
        ).one()

    def create_appointment(self, schedule_id: int, doctor_id: int, clinic_id: int, patient_id: Optional[int], patient_name: Optional[str], appointment_date: date, token_number: int, estimated_start_time: datetime, consultation_fee: Decimal, is_refund_eligible: bool) -> AppointmentDto:
        appt = Appointment(
            schedule_id=schedule_id,
            doctor_id=doctor_id,
            clinic_id=clinic_id,
            patient_id=patient_id,
            patient_name=patient_name,
            appointment_date=appointment_date,
            token_number=token_number,
            estimated_start_time=estimated_start_time,
            consultation_fee=consultation_fee,
            is_refund_eligible=is_refund_eligible,
        )
        self.session.add(appt)
        self.session.flush()
        self.session.refresh(appt)
        return self._appt_to_dto(appt)

    def get_appointment(self, appointment_id: int, for_update: bool = False) -> Optional[AppointmentDto]:
        stmt = select(Appointment).where(Appointment.id == appointment_id)
        if for_update:
            stmt = stmt.with_for_update()
        a = self.session.exec(stmt).first()
        return self._appt_to_dto(a) if a else None

    def list_schedule_appointments(self, schedule_id: int, on_date: Optional[date] = None) -> List[AppointmentDto]:
        stmt = select(Appointment).where(Appointment.schedule_id == schedule_id)
        if on_date is not None:
            stmt = stmt.where(Appointment.appointment_date == on_date)
        rows = self.session.exec(stmt.order_by(Appointment.appointment_date, Appointment.token_number)).all()
        return [self._appt_to_dto(r) for r in rows]

    def list_day_appointments(self, doctor_id: int, clinic_id: int, on_date: date) -> List[AppointmentDto]:
        rows = self.session.exec(
            select(Appointment)
            .join(DoctorSchedule, DoctorSchedule.id == Appointment.schedule_id)
            .where(Appointment.doctor_id == doctor_id)
            .where(Appointment.clinic_id == clinic_id)
            .where(Appointment.appointment_date == on_date)
            .order_by(DoctorSchedule.start_time, Appointment.token_number)
        ).all()
        return [self._appt_to_dto(r) for r in rows]

    def update_appointment(self, appointment_id: int, **fields) -> None:
        a = self.session.get(Appointment, appointment_id)
        if not a:
            return
        for key, value in fields.items():
            setattr(a, key, value)
        self.session.add(a)
        self.session.flush()

    def set_estimated_start_times(self, etas: Dict[int, datetime]) -> None:
        if not etas:
            return
        rows = self.session.exec(select(Appointment).where(Appointment.id.in_(list(etas)))).all()
        for a in rows:
            a.estimated_start_time = etas[a.id]
            self.session.add(a)
        self.session.flush()

    # Unit of work

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()
