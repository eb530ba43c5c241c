"""Follow-up policy, templates and scheduling."""

from .policy import STAGE_POLICY, PolicyEntry
from .scheduler import FollowUpScheduler
from .templates import MessageTemplate, TemplateId, TemplateStore

__all__ = [
    "STAGE_POLICY",
    "PolicyEntry",
    "FollowUpScheduler",
    "MessageTemplate",
    "TemplateId",
    "TemplateStore",
]
