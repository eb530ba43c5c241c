"""Lead routing and assignment system."""

from .conditions import Condition, ConditionOperator, matches
from .router import AssignmentDirective, AssignmentResolver, DirectiveType, Rep, Roster
from .rules_engine import AssignmentRule, RuleStatus, RulesEngine

__all__ = [
    "Condition",
    "ConditionOperator",
    "matches",
    "AssignmentDirective",
    "AssignmentResolver",
    "DirectiveType",
    "Rep",
    "Roster",
    "AssignmentRule",
    "RuleStatus",
    "RulesEngine",
]
