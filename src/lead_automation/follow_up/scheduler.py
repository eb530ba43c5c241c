"""Stage-driven follow-up suggestions."""

import logging
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from ..core.config import resolve_timezone
from ..core.models import (
    ActionType, Channel, FollowUpAction, Lead, LeadPriority, parse_datetime, utcnow
)
from ..routing.router import Rep
from .policy import STAGE_POLICY, CONFIRM_APPOINTMENT, Anchor, PolicyEntry
from .templates import TemplateStore

logger = logging.getLogger(__name__)


class FollowUpScheduler:
    """Turn a lead's stage into timed, rendered follow-up actions."""

    def __init__(
        self,
        templates: TemplateStore,
        policy: Optional[Dict] = None,
        clock: Optional[Callable[[], datetime]] = None,
        timezone: str = "UTC",
        defaults: Optional[Dict[str, str]] = None
    ):
        self.templates = templates
        self.policy = policy or STAGE_POLICY
        self.clock = clock or utcnow
        self.timezone = timezone
        self.defaults = defaults or {}

    def suggest(
        self,
        lead: Lead,
        now: Optional[datetime] = None,
        assignee: Optional[Rep] = None
    ) -> List[FollowUpAction]:
        """Ordered follow-up drafts for the lead's current stage."""
        # Timestamp every call afresh
        now = parse_datetime(now) or self.clock()
        urgent = lead.priority == LeadPriority.URGENT
        entries = self.policy.get(lead.stage, [])
        variables = self.message_variables(lead, assignee)

        actions = []
        for position, entry in enumerate(entries):
            if entry.requires_phone and not lead.phone:
                continue

            scheduled = self._schedule_time(entry, lead, now, urgent)
            if scheduled is None:
                entry = CONFIRM_APPOINTMENT
                scheduled = self._schedule_time(entry, lead, now, urgent)

            priority = entry.priority
            if urgent and position == 0:
                priority = LeadPriority.URGENT

            actions.append(self._build_action(lead, entry, scheduled, priority, variables, assignee))

        actions.sort(key=lambda a: a.scheduled_time)
        return actions

    def create_manual(
        self,
        lead: Lead,
        action_type: ActionType,
        scheduled_time: Optional[datetime] = None,
        template_id: Optional[str] = None,
        custom_message: Optional[str] = None,
        priority: Optional[LeadPriority] = None,
        assignee: Optional[Rep] = None,
        reason: str = "Manual follow-up",
        now: Optional[datetime] = None
    ) -> FollowUpAction:
        """Build a single follow-up from an explicit request."""
        now = parse_datetime(now) or self.clock()
        scheduled_time = parse_datetime(scheduled_time) or now
        entry = PolicyEntry(
            action_type=action_type,
            delay=scheduled_time - now,
            priority=priority or LeadPriority.MEDIUM,
            reason=reason,
            template_id=template_id,
        )
        action = self._build_action(
            lead,
            entry,
            scheduled_time,
            entry.priority,
            self.message_variables(lead, assignee),
            assignee
        )
        if custom_message:
            action.body = custom_message
        return action

    def _schedule_time(
        self,
        entry: PolicyEntry,
        lead: Lead,
        now: datetime,
        urgent: bool
    ) -> Optional[datetime]:
        if entry.anchor == Anchor.APPOINTMENT:
            appointment = parse_datetime(lead.attributes.get("appointment_time"))
            if appointment is None:
                logger.info(f"Lead {lead.id} has no appointment time; asking rep to confirm")
                return None
            return max(appointment - entry.delay, now)

        delay = entry.delay / 2 if urgent else entry.delay
        return now + delay

    def _resolve_channel(self, action_type: ActionType, lead: Lead):
        """Return (action_type, channel, target) for the lead's contact details."""
        email, phone = lead.email, lead.phone

        if action_type == ActionType.SEND_EMAIL:
            if email:
                return action_type, Channel.EMAIL, email
            if phone:
                return ActionType.SEND_SMS, Channel.SMS, phone
            return ActionType.CREATE_TASK, None, None

        if action_type == ActionType.SEND_SMS:
            if phone:
                return action_type, Channel.SMS, phone
            if email:
                return ActionType.SEND_EMAIL, Channel.EMAIL, email
            return ActionType.CREATE_TASK, None, None

        if action_type == ActionType.SCHEDULE_CALL:
            return action_type, None, phone
        if action_type == ActionType.SCHEDULE_APPOINTMENT:
            return action_type, None, phone or email
        return action_type, None, None

    def _build_action(
        self,
        lead: Lead,
        entry: PolicyEntry,
        scheduled: datetime,
        priority: LeadPriority,
        variables: Dict[str, Any],
        assignee: Optional[Rep]
    ) -> FollowUpAction:
        action_type, channel, target = self._resolve_channel(entry.action_type, lead)
        if action_type != entry.action_type:
            logger.info(
                f"Lead {lead.id}: {entry.action_type.value} became {action_type.value} "
                f"for lack of a contact address"
            )

        action = FollowUpAction(
            id=str(uuid.uuid4()),
            lead_id=lead.id,
            action_type=action_type,
            scheduled_time=scheduled,
            priority=priority,
            template_id=entry.template_id,
            channel=channel,
            target=target,
            reason=entry.reason,
            assigned_to=assignee.id if assignee else lead.assignee,
        )

        if entry.template_id:
            render_channel = channel or Channel.EMAIL
            rendered = self.templates.render_message(entry.template_id, render_channel, variables)
            action.subject = rendered.subject
            action.body = rendered.body

        return action

    def message_variables(self, lead: Lead, assignee: Optional[Rep] = None) -> Dict[str, Any]:
        """Values available to ``{placeholder}`` tokens."""
        variables: Dict[str, Any] = dict(self.defaults)
        for key, value in lead.attributes.items():
            if value is not None and not isinstance(value, (dict, list)):
                variables[key] = value

        variables["customer_name"] = lead.attributes.get("first_name") or lead.display_name
        variables["lead_id"] = lead.id

        appointment = parse_datetime(lead.attributes.get("appointment_time"))
        if appointment is not None:
            local = appointment.astimezone(resolve_timezone(self.timezone))
            variables["appointment_date"] = local.strftime("%A, %B %d, %Y")
            variables["appointment_time"] = local.strftime("%I:%M %p").lstrip("0")

        if assignee is not None:
            variables["agent_name"] = assignee.name or assignee.id
            if assignee.email:
                variables["agent_email"] = assignee.email
            if assignee.phone:
                variables["agent_phone"] = assignee.phone
        return variables
