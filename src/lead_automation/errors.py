"""Errors raised by the routing and follow-up engine."""

from typing import Optional


class LeadAutomationError(Exception):
    """Base error carrying the lead and rule a failure belongs to."""

    def __init__(
        self,
        message: str,
        lead_id: Optional[str] = None,
        rule_id: Optional[str] = None
    ):
        super().__init__(message)
        self.message = message
        self.lead_id = lead_id
        self.rule_id = rule_id

    def context(self) -> str:
        """Human readable context for manual intervention."""
        parts = []
        if self.lead_id is not None:
            parts.append(f"lead={self.lead_id}")
        if self.rule_id is not None:
            parts.append(f"rule={self.rule_id}")
        return ", ".join(parts)

    def __str__(self) -> str:
        context = self.context()
        return f"{self.message} ({context})" if context else self.message


class LeadNotFound(LeadAutomationError):
    """The lead does not exist for this tenant."""


class NoEligibleAssignee(LeadAutomationError):
    """No active rep or team member could take the lead."""


class UnknownTemplate(LeadAutomationError):
    """A template id / channel pair is not configured."""

    def __init__(self, template_id: str, channel: str, lead_id: Optional[str] = None):
        super().__init__(
            f"Unknown template '{template_id}' for channel '{channel}'",
            lead_id=lead_id
        )
        self.template_id = template_id
        self.channel = channel


class RepositoryWriteFailed(LeadAutomationError):
    """A follow-up record could not be written.

    ``structural`` is True when the store rejected the shape of the record
    (unknown column, constraint violation) rather than failing transiently.
    """

    def __init__(
        self,
        message: str,
        lead_id: Optional[str] = None,
        rule_id: Optional[str] = None,
        structural: bool = False
    ):
        super().__init__(message, lead_id=lead_id, rule_id=rule_id)
        self.structural = structural
