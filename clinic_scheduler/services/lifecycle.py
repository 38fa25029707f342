# clinic_scheduler/services/lifecycle.py
from __future__ import annotations

from typing import Optional, Union

from clinic_scheduler.core.errors import InvalidTransition
from clinic_scheduler.core.logging import get_logger
from clinic_scheduler.db.base import Appointment
from clinic_scheduler.db.enums import AppointmentStatus, CancelledBy
from clinic_scheduler.services.appointments import AppointmentService

logger = get_logger(__name__)


def ensure_transition(current: AppointmentStatus, requested: AppointmentStatus) -> None:
    """Raise InvalidTransition when ``current`` is terminal."""
    if not current.can_transition_to(requested):
        raise InvalidTransition(current.value, requested.value)


class AppointmentLifecycle:
    """
    Status changes for booked appointments.

    Terminal statuses (completed, both cancellations, no_show) are final.
    Any move out of scheduled or confirmed_by_patient is accepted.
    """

    def __init__(self, appointments: AppointmentService):
        self.appointments = appointments

    async def transition(
        self,
        appointment: Union[Appointment, str],
        new_status: Union[AppointmentStatus, str],
    ) -> Appointment:
        current = await self._load(appointment)
        requested = AppointmentStatus(new_status)
        ensure_transition(current.status, requested)

        updated = await self.appointments.set_status(current.id, requested)
        logger.info(
            "appointment_status_changed",
            appointment_id=current.id,
            from_status=current.status.value,
            to_status=requested.value,
        )
        return updated

    async def cancel(
        self,
        appointment: Union[Appointment, str],
        cancelled_by: Union[CancelledBy, str] = CancelledBy.CLINIC,
    ) -> Appointment:
        return await self.transition(appointment, CancelledBy(cancelled_by).status)

    async def confirm(self, appointment: Union[Appointment, str]) -> Appointment:
        return await self.transition(appointment, AppointmentStatus.CONFIRMED_BY_PATIENT)

    async def complete(self, appointment: Union[Appointment, str]) -> Appointment:
        return await self.transition(appointment, AppointmentStatus.COMPLETED)

    async def mark_no_show(self, appointment: Union[Appointment, str]) -> Appointment:
        return await self.transition(appointment, AppointmentStatus.NO_SHOW)

    async def _load(self, appointment: Union[Appointment, str]) -> Appointment:
        # always re-read so the check runs against the stored status
        appointment_id: Optional[str] = appointment if isinstance(appointment, str) else appointment.id
        return await self.appointments.get_appointment(appointment_id)
