"""Message templates for follow-up emails and texts."""

import json
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional

from ..core.models import Channel
from ..errors import UnknownTemplate

logger = logging.getLogger(__name__)

PLACEHOLDER = re.compile(r'\{(\w+)\}')


class TemplateId(Enum):
    """Templates the follow-up policy can reference."""
    INITIAL_INQUIRY = "initial_inquiry"
    FOLLOW_UP_INTERESTED = "follow_up_interested"
    APPOINTMENT_REMINDER = "appointment_reminder"
    TEST_DRIVE_FOLLOW_UP = "test_drive_follow_up"
    FINANCING_OPTIONS = "financing_options"
    TRADE_IN_EVALUATION = "trade_in_evaluation"
    MAINTENANCE_REMINDER = "maintenance_reminder"


@dataclass(frozen=True)
class MessageTemplate:
    """Per-channel content with ``{placeholder}`` tokens."""
    id: str
    name: str
    email_subject: Optional[str] = None
    email_body: Optional[str] = None
    sms_body: Optional[str] = None

    def content(self, channel: Channel) -> Optional[str]:
        if channel == Channel.EMAIL:
            return self.email_body
        return self.sms_body

    def subject(self, channel: Channel) -> Optional[str]:
        return self.email_subject if channel == Channel.EMAIL else None

    @property
    def channels(self) -> List[Channel]:
        return [c for c in Channel if self.content(c) is not None]


@dataclass
class RenderedMessage:
    """Result of rendering a template for one channel."""
    subject: Optional[str]
    body: str
    missing: List[str] = field(default_factory=list)


def substitute(text: str, variables: Mapping[str, Any], missing: List[str]) -> str:
    """Replace every ``{name}`` token; absent names become empty strings."""

    def replace(match: re.Match) -> str:
        name = match.group(1)
        value = variables.get(name)
        if value is None:
            if name not in missing:
                missing.append(name)
            return ""
        return str(value)

    return PLACEHOLDER.sub(replace, text)


class TemplateStore:
    """Immutable template lookup plus rendering."""

    def __init__(self, templates: Mapping[str, MessageTemplate]):
        self._templates = MappingProxyType(dict(templates))

    @classmethod
    def default(cls) -> 'TemplateStore':
        return cls({t.id: t for t in DEFAULT_TEMPLATES})

    @classmethod
    def from_file(cls, path: Optional[Path]) -> 'TemplateStore':
        """Built-in templates with overrides from a JSON file.

        The file maps template id to ``{"name", "email": {"subject", "body"},
        "sms"}``; fields left out keep the built-in content.
        """
        templates = {t.id: t for t in DEFAULT_TEMPLATES}
        if not path:
            return cls(templates)

        path = Path(path)
        with open(path, 'r') as f:
            data = json.load(f)

        for template_id, item in data.items():
            base = templates.get(template_id) or MessageTemplate(id=template_id, name=template_id)
            email = item.get("email") or {}
            templates[template_id] = MessageTemplate(
                id=template_id,
                name=item.get("name", base.name),
                email_subject=email.get("subject", base.email_subject),
                email_body=email.get("body", base.email_body),
                sms_body=item.get("sms", base.sms_body),
            )
        logger.info(f"Loaded {len(data)} template override(s) from {path}")
        return cls(templates)

    def template_ids(self) -> List[str]:
        return sorted(self._templates)

    def get(self, template_id: str, channel: Channel) -> MessageTemplate:
        template = self._templates.get(template_id)
        if template is None or template.content(channel) is None:
            raise UnknownTemplate(template_id, channel.value)
        return template

    def placeholders(self, template_id: str, channel: Channel) -> List[str]:
        template = self.get(template_id, channel)
        text = f"{template.subject(channel) or ''} {template.content(channel)}"
        seen: List[str] = []
        for name in PLACEHOLDER.findall(text):
            if name not in seen:
                seen.append(name)
        return seen

    def render_message(
        self,
        template_id: str,
        channel: Channel,
        variables: Mapping[str, Any]
    ) -> RenderedMessage:
        """Render subject and body for a channel."""
        template = self.get(template_id, channel)
        missing: List[str] = []
        subject = template.subject(channel)
        if subject is not None:
            subject = substitute(subject, variables, missing)
        body = substitute(template.content(channel), variables, missing)
        if missing:
            logger.warning(
                f"Template {template_id}/{channel.value} rendered without: {', '.join(missing)}"
            )
        return RenderedMessage(subject=subject, body=body, missing=missing)

    def render(self, template_id: str, channel: Channel, variables: Mapping[str, Any]) -> str:
        """Render the body text for a channel."""
        return self.render_message(template_id, channel, variables).body


DEFAULT_TEMPLATES = [
    MessageTemplate(
        id=TemplateId.INITIAL_INQUIRY.value,
        name="Initial Inquiry",
        email_subject="Thank you for your interest in {vehicle_make} {vehicle_model}",
        email_body="""Hi {customer_name},

Thank you for your interest in the {vehicle_year} {vehicle_make} {vehicle_model}!

I'm {agent_name}, your personal automotive specialist. I'd love to help you find the perfect vehicle that fits your needs and budget.

Based on your inquiry, I can schedule:
- A personal consultation to discuss your needs
- A test drive at your convenience
- Financing pre-approval (if needed)

When would be a good time to connect? I'm available:
- Phone: {dealership_phone}
- Email: {agent_email}
- In-person at our showroom

Best regards,
{agent_name}
{dealership_name}""",
        sms_body=(
            "Hi {customer_name}! Thanks for your interest in the {vehicle_year} {vehicle_make} "
            "{vehicle_model}. I'm {agent_name} from {dealership_name}. When's a good time to "
            "discuss your vehicle needs? Call me at {agent_phone} or reply here. Thanks!"
        ),
    ),
    MessageTemplate(
        id=TemplateId.FOLLOW_UP_INTERESTED.value,
        name="Follow Up - Interested",
        email_subject="Following up on your {vehicle_make} {vehicle_model} inquiry",
        email_body="""Hi {customer_name},

I wanted to follow up on your recent inquiry about the {vehicle_year} {vehicle_make} {vehicle_model}.

Here's what I can offer you:
- Competitive pricing and flexible financing options
- Trade-in evaluation for your current vehicle
- Extended warranty options

Would you like to schedule a test drive? I can also arrange financing pre-approval to streamline your buying experience.

Best regards,
{agent_name}
{dealership_name}
{agent_phone}""",
        sms_body=(
            "Hi {customer_name}, following up on the {vehicle_make} {vehicle_model} you were "
            "interested in. Want to schedule a test drive? - {agent_name}, {dealership_name}"
        ),
    ),
    MessageTemplate(
        id=TemplateId.APPOINTMENT_REMINDER.value,
        name="Appointment Reminder",
        email_subject="Reminder: Your appointment at {dealership_name}",
        email_body="""Hi {customer_name},

This is a friendly reminder about your appointment:

Date: {appointment_date}
Time: {appointment_time}
Location: {dealership_address}
Vehicle: {vehicle_year} {vehicle_make} {vehicle_model}

What to bring:
- Valid driver's license
- Current insurance card
- Trade-in vehicle (if applicable)

If you need to reschedule, please call {dealership_phone} as soon as possible.

{agent_name}
{dealership_name}""",
        sms_body=(
            "Reminder: Your appointment at {dealership_name} is at {appointment_time} on "
            "{appointment_date} for the {vehicle_make} {vehicle_model}. Bring your license & "
            "insurance. See you then! - {agent_name}"
        ),
    ),
    MessageTemplate(
        id=TemplateId.TEST_DRIVE_FOLLOW_UP.value,
        name="Test Drive Follow Up",
        email_subject="How was your test drive of the {vehicle_make} {vehicle_model}?",
        email_body="""Hi {customer_name},

Thank you for taking the time to test drive the {vehicle_year} {vehicle_make} {vehicle_model} with us!

Next steps I can help with:
- Financing options and payment calculations
- Trade-in appraisal for your current vehicle
- Extended warranty and protection plans

When would be a good time to discuss moving forward?

Best regards,
{agent_name}
{dealership_name}
{agent_phone}""",
        sms_body=(
            "Hi {customer_name}! How did you like the {vehicle_make} {vehicle_model} test drive? "
            "I can run financing numbers today. Ready to move forward? - {agent_name}"
        ),
    ),
    MessageTemplate(
        id=TemplateId.FINANCING_OPTIONS.value,
        name="Financing Options",
        email_subject="Financing options for your {vehicle_make} {vehicle_model}",
        email_body="""Hi {customer_name},

I've prepared financing options for the {vehicle_year} {vehicle_make} {vehicle_model}:

- Loan Term: {loan_term} months
- Interest Rate: {interest_rate}% APR
- Monthly Payment: {monthly_payment}
- Down Payment: {down_payment}

When can you come in to finalize?

{agent_name}
{dealership_name}
{agent_phone}""",
        sms_body=(
            "Hi {customer_name}! Your financing options for the {vehicle_make} {vehicle_model} "
            "are ready: {monthly_payment}/month. Call {agent_phone} - {agent_name}"
        ),
    ),
    MessageTemplate(
        id=TemplateId.TRADE_IN_EVALUATION.value,
        name="Trade-In Evaluation",
        email_subject="Your trade-in evaluation at {dealership_name}",
        email_body="""Hi {customer_name},

Thinking about trading in your {trade_in_vehicle}? We can give you a no-obligation appraisal in about 20 minutes.

Bring the vehicle by {dealership_address} or reply with a time that works for you.

{agent_name}
{dealership_name}
{agent_phone}""",
        sms_body=(
            "Hi {customer_name}, want a quick appraisal on your {trade_in_vehicle}? Stop by "
            "{dealership_name} or reply with a time. - {agent_name}"
        ),
    ),
    MessageTemplate(
        id=TemplateId.MAINTENANCE_REMINDER.value,
        name="Maintenance Reminder",
        email_subject="Time for service on your {vehicle_make} {vehicle_model}",
        email_body="""Hi {customer_name},

Thank you again for choosing {dealership_name}. Your {vehicle_year} {vehicle_make} {vehicle_model} is due for its first scheduled maintenance.

Call {dealership_phone} to book a service appointment.

{agent_name}
{dealership_name}""",
        sms_body=(
            "Hi {customer_name}, your {vehicle_make} {vehicle_model} is due for service. Call "
            "{dealership_phone} to book. - {dealership_name}"
        ),
    ),
]
