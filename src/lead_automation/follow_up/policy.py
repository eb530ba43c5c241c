"""Default follow-up actions for each pipeline stage."""

from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Dict, List, Optional

from ..core.models import ActionType, LeadPriority, LeadStage
from .templates import TemplateId


class Anchor(Enum):
    """What a policy delay is measured from."""
    NOW = "now"
    APPOINTMENT = "appointment"  # delay counts backward from the appointment


@dataclass(frozen=True)
class PolicyEntry:
    """One default action for a stage."""
    action_type: ActionType
    delay: timedelta
    priority: LeadPriority
    reason: str
    template_id: Optional[str] = None
    requires_phone: bool = False
    anchor: Anchor = Anchor.NOW


# Reminder fires this long before a stored appointment
APPOINTMENT_LEAD_TIME = timedelta(hours=2)

# Used when an appointment-stage lead has no usable appointment time
CONFIRM_APPOINTMENT = PolicyEntry(
    action_type=ActionType.CREATE_TASK,
    delay=timedelta(hours=1),
    priority=LeadPriority.MEDIUM,
    reason="Confirm appointment time with customer",
)

STAGE_POLICY: Dict[LeadStage, List[PolicyEntry]] = {
    LeadStage.INQUIRY: [
        PolicyEntry(
            ActionType.SEND_EMAIL, timedelta(hours=2), LeadPriority.HIGH,
            "Initial response to new inquiry",
            template_id=TemplateId.INITIAL_INQUIRY.value,
        ),
        PolicyEntry(
            ActionType.SCHEDULE_CALL, timedelta(hours=4), LeadPriority.MEDIUM,
            "Personal follow-up call",
            requires_phone=True,
        ),
    ],
    LeadStage.CONTACTED: [
        PolicyEntry(
            ActionType.SEND_EMAIL, timedelta(hours=24), LeadPriority.MEDIUM,
            "Continue engagement with interested prospect",
            template_id=TemplateId.FOLLOW_UP_INTERESTED.value,
        ),
    ],
    LeadStage.QUALIFIED: [
        PolicyEntry(
            ActionType.SCHEDULE_APPOINTMENT, timedelta(hours=2), LeadPriority.HIGH,
            "Schedule test drive for qualified lead",
        ),
    ],
    LeadStage.APPOINTMENT_SCHEDULED: [
        PolicyEntry(
            ActionType.SEND_SMS, APPOINTMENT_LEAD_TIME, LeadPriority.HIGH,
            "Appointment reminder",
            template_id=TemplateId.APPOINTMENT_REMINDER.value,
            anchor=Anchor.APPOINTMENT,
        ),
    ],
    LeadStage.TEST_DRIVE_COMPLETED: [
        PolicyEntry(
            ActionType.SEND_EMAIL, timedelta(hours=2), LeadPriority.HIGH,
            "Follow up on test drive",
            template_id=TemplateId.TEST_DRIVE_FOLLOW_UP.value,
        ),
        PolicyEntry(
            ActionType.SCHEDULE_CALL, timedelta(hours=24), LeadPriority.MEDIUM,
            "Call to discuss next steps after test drive",
            requires_phone=True,
        ),
    ],
    LeadStage.NEGOTIATING: [
        PolicyEntry(
            ActionType.SEND_EMAIL, timedelta(hours=4), LeadPriority.HIGH,
            "Send financing options",
            template_id=TemplateId.FINANCING_OPTIONS.value,
        ),
        PolicyEntry(
            ActionType.SCHEDULE_CALL, timedelta(hours=24), LeadPriority.HIGH,
            "Call to close the deal",
            requires_phone=True,
        ),
    ],
    LeadStage.CLOSED_WON: [
        PolicyEntry(
            ActionType.SEND_EMAIL, timedelta(days=30), LeadPriority.LOW,
            "First maintenance reminder",
            template_id=TemplateId.MAINTENANCE_REMINDER.value,
        ),
    ],
    LeadStage.CLOSED_LOST: [
        PolicyEntry(
            ActionType.CREATE_TASK, timedelta(days=30), LeadPriority.LOW,
            "Re-engage lost lead",
        ),
    ],
}
