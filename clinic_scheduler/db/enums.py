"""Appointment and calendar-sync enums."""

from enum import Enum


class AppointmentStatus(str, Enum):
    """
    Appointment lifecycle status.

    Flow: scheduled <-> confirmed_by_patient -> completed
              \\-> cancelled_by_clinic
              \\-> cancelled_by_patient
              \\-> no_show
    """

    SCHEDULED = "scheduled"
    CONFIRMED_BY_PATIENT = "confirmed_by_patient"
    COMPLETED = "completed"
    CANCELLED_BY_CLINIC = "cancelled_by_clinic"
    CANCELLED_BY_PATIENT = "cancelled_by_patient"
    NO_SHOW = "no_show"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def blocks_slot(self) -> bool:
        """Whether an appointment in this status still occupies its time slot."""
        return self not in SLOT_RELEASING_STATUSES

    def can_transition_to(self, target: "AppointmentStatus") -> bool:
        # Non-terminal states may move anywhere; terminal states are final.
        return not self.is_terminal


TERMINAL_STATUSES = frozenset({
    AppointmentStatus.COMPLETED,
    AppointmentStatus.CANCELLED_BY_CLINIC,
    AppointmentStatus.CANCELLED_BY_PATIENT,
    AppointmentStatus.NO_SHOW,
})

# Cancelled and no-show appointments free their slot; completed ones do not.
SLOT_RELEASING_STATUSES = frozenset({
    AppointmentStatus.CANCELLED_BY_CLINIC,
    AppointmentStatus.CANCELLED_BY_PATIENT,
    AppointmentStatus.NO_SHOW,
})

ACTIVE_STATUSES = frozenset(set(AppointmentStatus) - TERMINAL_STATUSES)


class AppointmentType(str, Enum):
    CONSULTATION = "consultation"
    FOLLOW_UP = "follow_up"
    CHECK_UP = "check_up"
    PROCEDURE = "procedure"
    EMERGENCY = "emergency"


class AppointmentSource(str, Enum):
    INTERNAL = "internal"
    EXTERNAL = "external"  # imported from the calendar provider


class CancelledBy(str, Enum):
    CLINIC = "clinic"
    PATIENT = "patient"

    @property
    def status(self) -> AppointmentStatus:
        if self is CancelledBy.CLINIC:
            return AppointmentStatus.CANCELLED_BY_CLINIC
        return AppointmentStatus.CANCELLED_BY_PATIENT


class SyncDirection(str, Enum):
    TO_EXTERNAL = "to_external"
    FROM_EXTERNAL = "from_external"
    BIDIRECTIONAL = "bidirectional"

    @property
    def allows_outbound(self) -> bool:
        return self in (SyncDirection.TO_EXTERNAL, SyncDirection.BIDIRECTIONAL)

    @property
    def allows_inbound(self) -> bool:
        return self in (SyncDirection.FROM_EXTERNAL, SyncDirection.BIDIRECTIONAL)


class SyncStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"


DEFAULT_APPOINTMENT_STATUS = AppointmentStatus.SCHEDULED
DEFAULT_APPOINTMENT_TYPE = AppointmentType.CONSULTATION
