"""First-match assignment rule selection."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from ..core.models import Lead, utcnow, parse_datetime
from .conditions import Condition, matches
from .router import AssignmentDirective

logger = logging.getLogger(__name__)


class RuleStatus(Enum):
    """Rule activation status."""
    ACTIVE = "active"
    INACTIVE = "inactive"


@dataclass
class AssignmentRule:
    """Rule for routing leads: all conditions must hold."""

    id: str
    name: str
    priority: int  # Lower = evaluated first
    directive: AssignmentDirective
    conditions: List[Condition] = field(default_factory=list)
    status: RuleStatus = RuleStatus.ACTIVE
    description: str = ""

    # Creation order, breaks priority ties
    sequence: int = 0
    created_at: datetime = field(default_factory=utcnow)
    leads_assigned: int = 0

    @property
    def is_active(self) -> bool:
        return self.status == RuleStatus.ACTIVE

    def sort_key(self):
        return (self.priority, self.sequence, self.created_at)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "priority": self.priority,
            "status": self.status.value,
            "description": self.description,
            "conditions": [c.to_dict() for c in self.conditions],
            "directive": self.directive.to_dict(),
            "sequence": self.sequence,
            "created_at": self.created_at.isoformat(),
            "leads_assigned": self.leads_assigned,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AssignmentRule':
        return cls(
            id=str(data["id"]),
            name=data.get("name", ""),
            priority=int(data.get("priority", 0)),
            status=RuleStatus(data.get("status", "active")),
            description=data.get("description", ""),
            conditions=[Condition.from_dict(c) for c in data.get("conditions", [])],
            directive=AssignmentDirective.from_dict(data.get("directive") or {}),
            sequence=int(data.get("sequence", 0)),
            created_at=parse_datetime(data.get("created_at")) or utcnow(),
            leads_assigned=int(data.get("leads_assigned", 0)),
        )


@dataclass
class ConditionReport:
    condition: Condition
    matched: bool


@dataclass
class RuleReport:
    """Evaluation trace of one rule for a lead."""
    rule: AssignmentRule
    conditions: List[ConditionReport]
    selected: bool = False

    @property
    def matched(self) -> bool:
        return self.rule.is_active and all(c.matched for c in self.conditions)


class RulesEngine:
    """Select the rule that owns a lead."""

    def __init__(self, timezone: str = "UTC"):
        self.timezone = timezone

    def order(self, rules: Sequence[AssignmentRule]) -> List[AssignmentRule]:
        """Active rules in evaluation order."""
        return sorted((r for r in rules if r.is_active), key=AssignmentRule.sort_key)

    def rule_matches(self, rule: AssignmentRule, attributes: Dict[str, Any]) -> bool:
        return all(matches(c, attributes, self.timezone) for c in rule.conditions)

    def select(self, lead: Lead, rules: Sequence[AssignmentRule]) -> Optional[AssignmentRule]:
        """Return the first active rule whose conditions all match."""
        attributes = lead.rule_attributes()
        for rule in self.order(rules):
            if self.rule_matches(rule, attributes):
                logger.debug(f"Lead {lead.id} matched rule {rule.id} ({rule.name})")
                return rule
        logger.debug(f"Lead {lead.id} matched no assignment rule")
        return None

    def explain(self, lead: Lead, rules: Sequence[AssignmentRule]) -> List[RuleReport]:
        """Per-condition trace of every rule, in evaluation order."""
        attributes = lead.rule_attributes()
        active = self.order(rules)
        inactive = sorted((r for r in rules if not r.is_active), key=AssignmentRule.sort_key)

        reports = []
        selected = False
        for rule in active + inactive:
            report = RuleReport(
                rule=rule,
                conditions=[
                    ConditionReport(c, matches(c, attributes, self.timezone))
                    for c in rule.conditions
                ]
            )
            if not selected and report.matched:
                report.selected = True
                selected = True
            reports.append(report)
        return reports
