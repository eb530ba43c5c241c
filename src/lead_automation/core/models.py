"""Data models for leads and follow-up actions."""

from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Dict, Any, Tuple


def utcnow() -> datetime:
    """Current instant as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse a datetime or ISO string; naive values are taken as UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class LeadStage(Enum):
    """Stage of a lead in the sales pipeline."""

    INQUIRY = "inquiry"
    CONTACTED = "contacted"
    QUALIFIED = "qualified"
    APPOINTMENT_SCHEDULED = "appointment_scheduled"
    TEST_DRIVE_COMPLETED = "test_drive_completed"
    NEGOTIATING = "negotiating"
    CLOSED_WON = "closed_won"
    CLOSED_LOST = "closed_lost"


class LeadPriority(Enum):
    """Priority levels shared by leads and follow-up actions."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"

    @property
    def rank(self) -> int:
        return ["low", "medium", "high", "urgent"].index(self.value)


class ActionType(Enum):
    """Follow-up action types."""

    SCHEDULE_CALL = "schedule_call"
    SEND_EMAIL = "send_email"
    SEND_SMS = "send_sms"
    SCHEDULE_APPOINTMENT = "schedule_appointment"
    CREATE_TASK = "create_task"

    @property
    def carries_message(self) -> bool:
        return self in (ActionType.SEND_EMAIL, ActionType.SEND_SMS)


class ActionStatus(Enum):
    """Follow-up action status."""

    SCHEDULED = "scheduled"
    SENT = "sent"
    FAILED = "failed"


class Channel(Enum):
    """Message channels a template can be rendered for."""

    EMAIL = "email"
    SMS = "sms"


@dataclass
class Lead:
    """Snapshot of a lead as handed to the engine."""

    id: str
    tenant_id: str = "default"
    stage: LeadStage = LeadStage.INQUIRY
    priority: LeadPriority = LeadPriority.MEDIUM

    # Arbitrary scalar fields: budget, lead_score, state, email, phone...
    attributes: Dict[str, Any] = field(default_factory=dict)

    assignee: Optional[str] = None
    follow_up_count: int = 0
    last_follow_up: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)

    @property
    def email(self) -> Optional[str]:
        return self.attributes.get("email") or self.attributes.get("contact_email") or None

    @property
    def phone(self) -> Optional[str]:
        return self.attributes.get("phone") or self.attributes.get("contact_phone") or None

    @property
    def display_name(self) -> str:
        """Get best available name for display."""
        name = self.attributes.get("name")
        if name:
            return str(name)
        first = self.attributes.get("first_name") or ""
        last = self.attributes.get("last_name") or ""
        full = f"{first} {last}".strip()
        return full or self.email or f"Lead #{self.id}"

    def rule_attributes(self) -> Dict[str, Any]:
        """Attribute map seen by routing conditions."""
        data = dict(self.attributes)
        data.setdefault("created_time", self.created_at)
        data.setdefault("created_at", self.created_at)
        data["stage"] = self.stage.value
        data["priority"] = self.priority.value
        return data

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "stage": self.stage.value,
            "priority": self.priority.value,
            "attributes": self.attributes,
            "assignee": self.assignee,
            "follow_up_count": self.follow_up_count,
            "last_follow_up": self.last_follow_up.isoformat() if self.last_follow_up else None,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Lead':
        """Create from dictionary."""
        return cls(
            id=str(data["id"]),
            tenant_id=data.get("tenant_id", "default"),
            stage=LeadStage(data.get("stage", "inquiry")),
            priority=LeadPriority(data.get("priority", "medium")),
            attributes=dict(data.get("attributes") or {}),
            assignee=data.get("assignee"),
            follow_up_count=data.get("follow_up_count", 0) or 0,
            last_follow_up=parse_datetime(data.get("last_follow_up")),
            created_at=parse_datetime(data.get("created_at")) or utcnow(),
        )


@dataclass
class DegradedTask:
    """Schema-minimal fallback shape for a follow-up.

    Only title, description, due date and priority are meaningful to the
    store; lead_id and key let the writer keep the fallback idempotent.
    """

    title: str
    description: str
    due_date: datetime
    priority: LeadPriority
    lead_id: str = ""
    key: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "description": self.description,
            "due_date": self.due_date.isoformat(),
            "priority": self.priority.value,
        }


@dataclass
class FollowUpAction:
    """A scheduled follow-up for a lead."""

    id: str
    lead_id: str
    action_type: ActionType
    scheduled_time: datetime
    priority: LeadPriority
    status: ActionStatus = ActionStatus.SCHEDULED

    template_id: Optional[str] = None
    channel: Optional[Channel] = None
    subject: Optional[str] = None
    body: Optional[str] = None
    target: Optional[str] = None  # email address or phone number

    reason: str = ""
    assigned_to: Optional[str] = None
    degraded: bool = False
    created_at: datetime = field(default_factory=utcnow)

    @property
    def idempotency_key(self) -> Tuple[str, str, str]:
        return (
            str(self.lead_id),
            self.action_type.value,
            self.scheduled_time.astimezone(timezone.utc).isoformat(),
        )

    @property
    def key(self) -> str:
        return "|".join(self.idempotency_key)

    @property
    def title(self) -> str:
        label = self.action_type.value.replace("_", " ").capitalize()
        if self.template_id:
            return f"{label}: {self.template_id.replace('_', ' ')}"
        return label

    def to_degraded_task(self) -> DegradedTask:
        """Build the narrow fallback record for this action."""
        lines = [self.reason] if self.reason else []
        if self.target:
            lines.append(f"Contact: {self.target}")
        if self.subject:
            lines.append(f"Subject: {self.subject}")
        if self.body:
            lines.append(self.body)
        return DegradedTask(
            title=self.title,
            description="\n".join(lines),
            due_date=self.scheduled_time,
            priority=self.priority,
            lead_id=self.lead_id,
            key=self.key,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        data = asdict(self)
        data['action_type'] = self.action_type.value
        data['status'] = self.status.value
        data['priority'] = self.priority.value
        data['channel'] = self.channel.value if self.channel else None
        data['scheduled_time'] = self.scheduled_time.isoformat()
        data['created_at'] = self.created_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FollowUpAction':
        """Create from dictionary."""
        data = dict(data)
        data['action_type'] = ActionType(data['action_type'])
        data['status'] = ActionStatus(data.get('status', 'scheduled'))
        data['priority'] = LeadPriority(data['priority'])
        data['channel'] = Channel(data['channel']) if data.get('channel') else None
        data['scheduled_time'] = parse_datetime(data['scheduled_time'])
        data['created_at'] = parse_datetime(data.get('created_at')) or utcnow()
        data['degraded'] = bool(data.get('degraded', False))
        return cls(**data)
