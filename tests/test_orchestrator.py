"""Tests for end-to-end routing and follow-up scheduling."""

import pytest
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

from lead_automation import (
    LeadEvent,
    LeadNotFound,
    NoEligibleAssignee,
    Orchestrator,
    RepositoryWriteFailed,
    UnknownTemplate,
)
from lead_automation.core.config import EngineConfig
from lead_automation.core.models import ActionStatus, ActionType, Lead, LeadPriority, LeadStage
from lead_automation.follow_up import TemplateStore
from lead_automation.routing import (
    AssignmentDirective, AssignmentRule, Condition, DirectiveType, Rep
)
from lead_automation.storage import FollowUpRepository, InMemoryCounterStore
from lead_automation.storage.database import AutomationDatabase

TENANT = "acme-motors"
NOW = datetime(2026, 3, 10, 15, 0, tzinfo=timezone.utc)


class FlakyFollowUps(FollowUpRepository):
    """Follow-up store that rejects full records and optionally fallback tasks."""

    def __init__(self, db: AutomationDatabase, fail_fallback: bool = False):
        self.db = db
        self.fail_fallback = fail_fallback
        self.action_attempts = 0
        self.fallback_attempts = 0

    def save_action(self, tenant_id, action):
        self.action_attempts += 1
        raise RepositoryWriteFailed("table follow_up_actions has no column named channel",
                                    lead_id=action.lead_id, structural=True)

    def save_degraded(self, tenant_id, task):
        self.fallback_attempts += 1
        if self.fail_fallback:
            raise RepositoryWriteFailed("database is locked", lead_id=task.lead_id)
        return self.db.save_degraded(tenant_id, task)

    def list_for_lead(self, tenant_id, lead_id):
        return []


@pytest.fixture
def temp_data_dir():
    """Create temporary data directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def db(temp_data_dir):
    """Database with three active reps and one inactive rep."""
    database = AutomationDatabase(temp_data_dir / "automation.db")
    database.save_rep(TENANT, Rep("alice", name="Alice Moore", email="alice@acme.test", max_capacity=10))
    database.save_rep(TENANT, Rep("bob", name="Bob Diaz", max_capacity=10))
    database.save_rep(TENANT, Rep("carol", name="Carol Wu", active=False))
    database.save_rep(TENANT, Rep("dave", name="Dave Kim", max_capacity=10))
    return database


@pytest.fixture
def orchestrator(db):
    return Orchestrator.from_database(
        db,
        TENANT,
        config=EngineConfig(template_defaults={"dealership_name": "Acme Motors"}),
        counters=InMemoryCounterStore(),
        clock=lambda: NOW,
    )


def add_lead(db, lead_id="1001", stage=LeadStage.INQUIRY, priority=LeadPriority.HIGH, **attributes):
    attrs = {"first_name": "Ana", "email": "ana@example.com", "phone": "555-0100"}
    attrs.update(attributes)
    db.save_lead(Lead(id=lead_id, tenant_id=TENANT, stage=stage, priority=priority,
                      attributes=attrs, created_at=NOW))


class TestRouteAndSchedule:
    """Tests for Orchestrator.route_and_schedule."""

    def test_new_inquiry_end_to_end(self, db, orchestrator):
        """Test an unmatched inquiry goes round-robin and gets email +2h and call +4h."""
        add_lead(db)

        result = orchestrator.route_and_schedule("1001", now=NOW)

        assert result.assignee.id == "alice"
        assert result.assignee.current_load == 1
        assert result.rule_id is None
        assert result.directive == "round_robin:*"
        assert [a.action_type for a in result.actions] == [
            ActionType.SEND_EMAIL, ActionType.SCHEDULE_CALL
        ]
        assert result.actions[0].scheduled_time == NOW + timedelta(hours=2)
        assert result.actions[0].template_id == "initial_inquiry"
        assert result.actions[1].scheduled_time == NOW + timedelta(hours=4)
        assert all(a.status == ActionStatus.SCHEDULED for a in result.actions)
        assert all(not a.degraded for a in result.actions)
        assert "Alice Moore" in result.actions[0].body

        lead = db.get_lead(TENANT, "1001")
        assert lead.assignee == "alice"
        assert lead.follow_up_count == 2
        assert lead.last_follow_up == NOW
        assert len(db.list_for_lead(TENANT, "1001")) == 2
        assert db.load_roster(TENANT).get("alice").current_load == 1

    def test_default_rotation_skips_inactive(self, db, orchestrator):
        for lead_id in ["1", "2", "3", "4"]:
            add_lead(db, lead_id)

        assignees = [orchestrator.route_and_schedule(i, now=NOW).assignee.id for i in ["1", "2", "3", "4"]]

        assert assignees == ["alice", "bob", "dave", "alice"]

    def test_matching_rule_wins(self, db, orchestrator):
        db.save_rule(TENANT, AssignmentRule(
            id="big-budget",
            name="Big budgets to Bob",
            priority=1,
            conditions=[Condition("budget", "greater_than", "50000")],
            directive=AssignmentDirective(DirectiveType.USER, candidates=["bob", "carol"]),
        ))
        add_lead(db, budget=65000)

        result = orchestrator.route_and_schedule("1001", now=NOW)

        assert result.assignee.id == "bob"
        assert result.rule_id == "big-budget"
        assert db.list_rules(TENANT)[0].leads_assigned == 1

    def test_no_eligible_assignee(self, db, orchestrator):
        db.save_rule(TENANT, AssignmentRule(
            id="carol-only",
            name="Carol only",
            priority=1,
            directive=AssignmentDirective(DirectiveType.USER, candidates=["carol"]),
        ))
        add_lead(db)

        with pytest.raises(NoEligibleAssignee) as exc:
            orchestrator.route_and_schedule("1001", now=NOW)

        assert exc.value.lead_id == "1001"
        assert exc.value.rule_id == "carol-only"
        assert db.get_lead(TENANT, "1001").assignee is None
        assert db.list_for_lead(TENANT, "1001") == []

    def test_unknown_lead(self, orchestrator):
        with pytest.raises(LeadNotFound) as exc:
            orchestrator.route_and_schedule("404")
        assert exc.value.lead_id == "404"

    def test_unknown_template(self, db):
        add_lead(db)
        orchestrator = Orchestrator.from_database(
            db, TENANT, templates=TemplateStore({}), clock=lambda: NOW
        )

        with pytest.raises(UnknownTemplate) as exc:
            orchestrator.route_and_schedule("1001")

        assert exc.value.lead_id == "1001"
        assert db.list_for_lead(TENANT, "1001") == []

    def test_retry_with_same_instant_is_idempotent(self, db, orchestrator):
        add_lead(db)
        orchestrator.route_and_schedule("1001", now=NOW)

        result = orchestrator.route_and_schedule("1001", event=LeadEvent.STAGE_CHANGED, now=NOW)

        assert result.directive == "existing"
        assert result.assignee.id == "alice"
        assert len(db.list_for_lead(TENANT, "1001")) == 2
        assert db.get_lead(TENANT, "1001").follow_up_count == 2
        assert db.load_roster(TENANT).get("alice").current_load == 1

    def test_stage_change_schedules_new_stage(self, db, orchestrator):
        add_lead(db)
        orchestrator.route_and_schedule("1001", now=NOW)
        add_lead(db, stage=LeadStage.CONTACTED)
        db.set_assignee(TENANT, "1001", "alice")

        later = NOW + timedelta(hours=3)
        result = orchestrator.route_and_schedule("1001", event=LeadEvent.STAGE_CHANGED, now=later)

        assert result.assignee.id == "alice"
        assert [a.template_id for a in result.actions] == ["follow_up_interested"]
        assert result.actions[0].scheduled_time == later + timedelta(hours=24)
        assert db.get_lead(TENANT, "1001").follow_up_count == 3

    def test_stage_change_reassigns_inactive_owner(self, db, orchestrator):
        add_lead(db)
        db.set_assignee(TENANT, "1001", "carol")

        result = orchestrator.route_and_schedule("1001", event=LeadEvent.STAGE_CHANGED, now=NOW)

        assert result.assignee.id == "alice"
        assert db.get_lead(TENANT, "1001").assignee == "alice"

    def test_manual_event_reroutes_owned_lead(self, db, orchestrator):
        add_lead(db)
        orchestrator.route_and_schedule("1001", now=NOW)

        result = orchestrator.route_and_schedule("1001", event=LeadEvent.MANUAL, now=NOW)

        assert result.directive == "round_robin:*"
        assert result.assignee.id == "bob"
        assert db.get_lead(TENANT, "1001").assignee == "bob"
        assert db.load_roster(TENANT).get("bob").current_load == 1

    def test_database_orchestrators_share_rotation(self, db):
        """Test two orchestrators on one database continue the same rotation."""
        add_lead(db, "1")
        add_lead(db, "2")
        first = Orchestrator.from_database(db, TENANT, clock=lambda: NOW)
        second = Orchestrator.from_database(db, TENANT, clock=lambda: NOW)

        assert first.route_and_schedule("1", now=NOW).assignee.id == "alice"
        assert second.route_and_schedule("2", now=NOW).assignee.id == "bob"


class TestFallback:
    """Tests for the degraded task fallback."""

    def test_one_fallback_per_rejected_action(self, db):
        add_lead(db)
        follow_ups = FlakyFollowUps(db)
        orchestrator = Orchestrator(TENANT, db, db, db, follow_ups, clock=lambda: NOW)

        result = orchestrator.route_and_schedule("1001", now=NOW)

        assert follow_ups.action_attempts == 2
        assert follow_ups.fallback_attempts == 2
        assert all(a.degraded for a in result.actions)
        assert all(a.status == ActionStatus.SCHEDULED for a in result.actions)
        tasks = db.list_tasks(TENANT, "1001")
        assert [t["title"] for t in tasks] == ["Send email: initial inquiry", "Schedule call"]
        assert db.get_lead(TENANT, "1001").follow_up_count == 2

    def test_failed_fallback_raises(self, db):
        add_lead(db)
        follow_ups = FlakyFollowUps(db, fail_fallback=True)
        orchestrator = Orchestrator(TENANT, db, db, db, follow_ups, clock=lambda: NOW)

        with pytest.raises(RepositoryWriteFailed) as exc:
            orchestrator.route_and_schedule("1001", now=NOW)

        assert follow_ups.action_attempts == 1
        assert follow_ups.fallback_attempts == 1
        assert exc.value.lead_id == "1001"
        assert not exc.value.structural
        assert db.get_lead(TENANT, "1001").follow_up_count == 0

    def test_retry_after_failed_fallback_keeps_assignee(self, db):
        """Test retrying a failed write neither moves the lead nor adds load."""
        add_lead(db)
        follow_ups = FlakyFollowUps(db, fail_fallback=True)
        orchestrator = Orchestrator(TENANT, db, db, db, follow_ups,
                                    counters=InMemoryCounterStore(), clock=lambda: NOW)

        for _ in range(2):
            with pytest.raises(RepositoryWriteFailed):
                orchestrator.route_and_schedule("1001", now=NOW)

        assert db.get_lead(TENANT, "1001").assignee == "alice"
        roster = db.load_roster(TENANT)
        assert roster.get("alice").current_load == 1
        assert sum(r.current_load for r in roster.reps.values()) == 1

    def test_retry_after_fallback_does_not_duplicate(self, db, orchestrator):
        """Test a healthy retry skips actions already stored as fallback tasks."""
        add_lead(db)
        degraded = Orchestrator(TENANT, db, db, db, FlakyFollowUps(db),
                                counters=InMemoryCounterStore(), clock=lambda: NOW)
        degraded.route_and_schedule("1001", now=NOW)

        result = orchestrator.route_and_schedule("1001", now=NOW)

        assert all(a.degraded for a in result.actions)
        assert db.list_for_lead(TENANT, "1001") == []
        assert len(db.list_tasks(TENANT, "1001")) == 2
        assert db.get_lead(TENANT, "1001").follow_up_count == 2


class TestSuggestedActions:
    """Tests for the read-only preview."""

    def test_preview_changes_nothing(self, db, orchestrator):
        add_lead(db)

        actions = orchestrator.suggested_actions("1001", now=NOW)

        assert [a.action_type for a in actions] == [ActionType.SEND_EMAIL, ActionType.SCHEDULE_CALL]
        lead = db.get_lead(TENANT, "1001")
        assert lead.assignee is None
        assert lead.follow_up_count == 0
        assert db.list_for_lead(TENANT, "1001") == []
        assert all(r.current_load == 0 for r in db.load_roster(TENANT).reps.values())

    def test_preview_uses_current_owner(self, db, orchestrator):
        add_lead(db)
        db.set_assignee(TENANT, "1001", "alice")
        actions = orchestrator.suggested_actions("1001", now=NOW)
        assert actions[0].assigned_to == "alice"
        assert "alice@acme.test" in actions[0].body


class TestManualFollowUp:
    """Tests for explicitly requested follow-ups."""

    def test_create_follow_up(self, db, orchestrator):
        add_lead(db)
        when = NOW + timedelta(days=1)

        action = orchestrator.create_follow_up(
            "1001",
            ActionType.SEND_SMS,
            scheduled_time=when,
            custom_message="Your Civic is ready.",
            assigned_to="bob",
        )

        assert action.assigned_to == "bob"
        assert action.target == "555-0100"
        stored = db.list_for_lead(TENANT, "1001")
        assert len(stored) == 1
        assert stored[0].body == "Your Civic is ready."
        assert stored[0].scheduled_time == when
        assert db.get_lead(TENANT, "1001").follow_up_count == 1
