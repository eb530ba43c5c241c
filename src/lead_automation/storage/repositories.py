"""Interfaces of the stores the engine reads from and writes to."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Tuple


class LeadRepository(ABC):
    """Lead snapshots and the fields the engine writes back."""

    @abstractmethod
    def get_lead(self, tenant_id: str, lead_id: str):
        """Return a Lead or None."""

    @abstractmethod
    def save_lead(self, lead):
        pass

    @abstractmethod
    def set_assignee(self, tenant_id: str, lead_id: str, rep_id: str):
        pass

    @abstractmethod
    def record_follow_up(self, tenant_id: str, lead_id: str, at: datetime) -> int:
        """Increment follow_up_count, set last_follow_up, return the count."""


class RosterRepository(ABC):
    """Reps, team membership and live load counters."""

    @abstractmethod
    def load_roster(self, tenant_id: str):
        """Return a Roster snapshot."""

    @abstractmethod
    def increment_load(self, tenant_id: str, rep_id: str) -> int:
        """Atomically add one to the rep's load and return the new value."""


class RuleRepository(ABC):
    """Assignment rules maintained by administrators."""

    @abstractmethod
    def list_rules(self, tenant_id: str) -> List:
        pass

    @abstractmethod
    def record_match(self, tenant_id: str, rule_id: str):
        """Bump the rule's assigned-lead counter."""


class FollowUpRepository(ABC):
    """Scheduled follow-ups, with a narrow task shape as fallback."""

    @abstractmethod
    def save_action(self, tenant_id: str, action) -> Tuple[object, bool]:
        """Persist a FollowUpAction; return (stored action, is_new).

        Raises RepositoryWriteFailed when the write is rejected.
        """

    @abstractmethod
    def save_degraded(self, tenant_id: str, task) -> Tuple[str, bool]:
        """Persist a DegradedTask; return (task id, is_new)."""

    @abstractmethod
    def list_for_lead(self, tenant_id: str, lead_id: str) -> List:
        pass
