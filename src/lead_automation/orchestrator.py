"""Per-lead entry point: route the lead, then schedule its follow-ups."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from .core.config import EngineConfig
from .core.models import (
    ActionStatus, ActionType, FollowUpAction, Lead, LeadPriority, parse_datetime, utcnow
)
from .errors import LeadNotFound, RepositoryWriteFailed, UnknownTemplate
from .follow_up.scheduler import FollowUpScheduler
from .follow_up.templates import TemplateStore
from .routing.router import AssignmentDirective, AssignmentResolver, Rep, Roster
from .routing.rules_engine import AssignmentRule, RulesEngine
from .storage.counters import CounterStore, InMemoryCounterStore, SqliteCounterStore

logger = logging.getLogger(__name__)


class LeadEvent(Enum):
    """What happened to the lead."""
    CREATED = "created"
    STAGE_CHANGED = "stage_changed"
    MANUAL = "manual"


@dataclass
class RoutingResult:
    """Outcome of one orchestrator run."""
    lead_id: str
    assignee: Rep
    rule_id: Optional[str]
    directive: str
    actions: List[FollowUpAction] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lead_id": self.lead_id,
            "assignee": self.assignee.id,
            "rule_id": self.rule_id,
            "directive": self.directive,
            "actions": [a.to_dict() for a in self.actions],
        }


class Orchestrator:
    """Compose rule selection, assignment and follow-up scheduling for a tenant."""

    def __init__(
        self,
        tenant_id: str,
        leads,
        roster,
        rules,
        follow_ups,
        templates: Optional[TemplateStore] = None,
        counters: Optional[CounterStore] = None,
        config: Optional[EngineConfig] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.tenant_id = tenant_id
        self.leads = leads
        self.roster = roster
        self.rules = rules
        self.follow_ups = follow_ups
        self.config = config or EngineConfig()
        self.clock = clock or utcnow

        self.engine = RulesEngine(timezone=self.config.timezone)
        self.resolver = AssignmentResolver(roster, counters or InMemoryCounterStore())
        self.scheduler = FollowUpScheduler(
            templates or TemplateStore.default(),
            clock=self.clock,
            timezone=self.config.timezone,
            defaults=self.config.template_defaults,
        )
        self.default_directive = AssignmentDirective.from_dict(self.config.default_directive)

    @classmethod
    def from_database(
        cls,
        db,
        tenant_id: str,
        config: Optional[EngineConfig] = None,
        templates: Optional[TemplateStore] = None,
        counters: Optional[CounterStore] = None,
        clock: Optional[Callable[[], datetime]] = None
    ) -> 'Orchestrator':
        """Build an orchestrator whose repositories all live in one database.

        Round-robin cursors default to the same database file so every
        orchestrator on it shares them.
        """
        return cls(
            tenant_id, db, db, db, db,
            templates=templates,
            counters=counters or SqliteCounterStore(db.db_path),
            config=config,
            clock=clock,
        )

    def _load_lead(self, lead_id: str) -> Lead:
        lead = self.leads.get_lead(self.tenant_id, str(lead_id))
        if lead is None:
            raise LeadNotFound(f"Lead not found for tenant {self.tenant_id}", lead_id=str(lead_id))
        return lead

    # === ROUTING ===

    def route_and_schedule(
        self,
        lead_id: str,
        event: LeadEvent = LeadEvent.CREATED,
        now: Optional[datetime] = None
    ) -> RoutingResult:
        """Assign the lead and persist its follow-up actions."""
        now = parse_datetime(now) or self.clock()
        lead = self._load_lead(lead_id)

        # Snapshots taken once per invocation
        roster = self.roster.load_roster(self.tenant_id)
        rules = self.rules.list_rules(self.tenant_id)

        assignee, rule, directive = self._route(lead, roster, rules, event)
        rule_id = rule.id if rule else None

        try:
            drafts = self.scheduler.suggest(lead, now=now, assignee=assignee)
        except UnknownTemplate as e:
            e.lead_id = lead.id
            e.rule_id = rule_id
            raise

        actions = [self._persist(lead, action, rule_id, now) for action in drafts]

        logger.info(
            f"Lead {lead.id} -> {assignee.id} via {directive}; "
            f"{len(actions)} follow-up(s) scheduled"
        )
        return RoutingResult(
            lead_id=lead.id,
            assignee=assignee,
            rule_id=rule_id,
            directive=directive,
            actions=actions,
        )

    def _route(
        self,
        lead: Lead,
        roster: Roster,
        rules: List[AssignmentRule],
        event: LeadEvent
    ) -> Tuple[Rep, Optional[AssignmentRule], str]:
        """Return (rep, matched rule, directive description)."""
        # A retried or stage-change event keeps the owner; only manual events re-route
        if event != LeadEvent.MANUAL and lead.assignee:
            current = roster.get(lead.assignee)
            if current is not None and current.active:
                return current, None, "existing"

        rule = self.engine.select(lead, rules)
        if rule is not None:
            directive = rule.directive
            cursor_key = f"{self.tenant_id}:rr:{rule.id}"
        else:
            directive = self.default_directive
            cursor_key = f"{self.tenant_id}:rr:default"

        rep = self.resolver.resolve(
            directive,
            roster,
            cursor_key,
            lead_id=lead.id,
            rule_id=rule.id if rule else None
        )

        self.leads.set_assignee(self.tenant_id, lead.id, rep.id)
        lead.assignee = rep.id
        if rule is not None:
            self.rules.record_match(self.tenant_id, rule.id)

        return rep, rule, directive.describe()

    # === PERSISTENCE ===

    def _persist(
        self,
        lead: Lead,
        action: FollowUpAction,
        rule_id: Optional[str],
        now: datetime
    ) -> FollowUpAction:
        """Write an action, falling back once to the generic task shape."""
        try:
            stored, is_new = self.follow_ups.save_action(self.tenant_id, action)
        except RepositoryWriteFailed as e:
            logger.warning(
                f"Follow-up {action.action_type.value} for lead {lead.id} rejected "
                f"({e.message}); storing as task"
            )
            try:
                _, is_new = self.follow_ups.save_degraded(self.tenant_id, action.to_degraded_task())
            except RepositoryWriteFailed as fallback_error:
                raise RepositoryWriteFailed(
                    f"Follow-up {action.action_type.value} could not be stored: {fallback_error.message}",
                    lead_id=lead.id,
                    rule_id=rule_id,
                    structural=fallback_error.structural
                ) from fallback_error
            stored = action
            stored.degraded = True
            stored.status = ActionStatus.SCHEDULED

        if is_new:
            lead.follow_up_count = self.leads.record_follow_up(self.tenant_id, lead.id, now)
            lead.last_follow_up = now
        return stored

    # === QUERIES AND MANUAL ACTIONS ===

    def suggested_actions(self, lead_id: str, now: Optional[datetime] = None) -> List[FollowUpAction]:
        """Preview follow-ups without assigning or persisting anything."""
        lead = self._load_lead(lead_id)
        assignee = None
        if lead.assignee:
            assignee = self.roster.load_roster(self.tenant_id).get(lead.assignee)
        try:
            return self.scheduler.suggest(lead, now=now, assignee=assignee)
        except UnknownTemplate as e:
            e.lead_id = lead.id
            raise

    def create_follow_up(
        self,
        lead_id: str,
        action_type: ActionType,
        scheduled_time: Optional[datetime] = None,
        template_id: Optional[str] = None,
        custom_message: Optional[str] = None,
        priority: Optional[LeadPriority] = None,
        assigned_to: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> FollowUpAction:
        """Schedule one explicitly requested follow-up."""
        now = parse_datetime(now) or self.clock()
        lead = self._load_lead(lead_id)

        assignee = None
        rep_id = assigned_to or lead.assignee
        if rep_id:
            assignee = self.roster.load_roster(self.tenant_id).get(rep_id)

        try:
            action = self.scheduler.create_manual(
                lead,
                action_type,
                scheduled_time=scheduled_time,
                template_id=template_id,
                custom_message=custom_message,
                priority=priority,
                assignee=assignee,
                now=now
            )
        except UnknownTemplate as e:
            e.lead_id = lead.id
            raise
        if assigned_to and assignee is None:
            action.assigned_to = assigned_to

        return self._persist(lead, action, None, now)
