"""SQLite store for leads, reps, rules and follow-ups."""

import json
import logging
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, List, Dict, Any, Generator, Tuple

from ..core.config import data_dir
from ..core.models import (
    ActionStatus, ActionType, Channel, DegradedTask, FollowUpAction, Lead,
    LeadPriority, LeadStage, parse_datetime, utcnow
)
from ..errors import RepositoryWriteFailed
from ..routing.conditions import Condition
from ..routing.router import AssignmentDirective, Rep, Roster
from ..routing.rules_engine import AssignmentRule, RuleStatus
from .repositories import (
    FollowUpRepository, LeadRepository, RosterRepository, RuleRepository
)

logger = logging.getLogger(__name__)

_TRANSIENT_MARKERS = ("locked", "busy", "disk i/o")


def _iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat()


def _write_failure(error: sqlite3.Error, what: str, lead_id: str) -> RepositoryWriteFailed:
    """Classify a sqlite error as structural (bad shape) or transient."""
    message = str(error).lower()
    structural = isinstance(error, (
        sqlite3.IntegrityError, sqlite3.InterfaceError, sqlite3.ProgrammingError
    ))
    if isinstance(error, sqlite3.OperationalError):
        structural = not any(marker in message for marker in _TRANSIENT_MARKERS)
    return RepositoryWriteFailed(
        f"Could not write {what}: {error}",
        lead_id=lead_id,
        structural=structural
    )


class AutomationDatabase(LeadRepository, RosterRepository, RuleRepository, FollowUpRepository):
    """SQLite database implementing every repository the engine needs."""

    def __init__(self, db_path: Optional[Path] = None):
        """Initialize database connection."""
        if db_path is None:
            db_path = data_dir() / "automation.db"

        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._init_db()

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Get a database connection with row factory."""
        conn = sqlite3.connect(self.db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self):
        """Initialize database schema."""
        with self._get_connection() as conn:
            cursor = conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS leads (
                    tenant_id TEXT NOT NULL,
                    id TEXT NOT NULL,
                    stage TEXT NOT NULL DEFAULT 'inquiry',
                    priority TEXT NOT NULL DEFAULT 'medium',
                    attributes_json TEXT,
                    assignee TEXT,
                    follow_up_count INTEGER NOT NULL DEFAULT 0,
                    last_follow_up TIMESTAMP,
                    created_at TIMESTAMP NOT NULL,
                    updated_at TIMESTAMP,

                    PRIMARY KEY (tenant_id, id)
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS reps (
                    tenant_id TEXT NOT NULL,
                    id TEXT NOT NULL,
                    name TEXT,
                    email TEXT,
                    phone TEXT,
                    active INTEGER NOT NULL DEFAULT 1,
                    current_load INTEGER NOT NULL DEFAULT 0 CHECK (current_load >= 0),
                    max_capacity INTEGER NOT NULL DEFAULT 20,

                    PRIMARY KEY (tenant_id, id)
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS team_members (
                    tenant_id TEXT NOT NULL,
                    team_id TEXT NOT NULL,
                    rep_id TEXT NOT NULL,

                    PRIMARY KEY (tenant_id, team_id, rep_id)
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS assignment_rules (
                    tenant_id TEXT NOT NULL,
                    id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    description TEXT,
                    priority INTEGER NOT NULL DEFAULT 0,
                    status TEXT NOT NULL DEFAULT 'active',
                    conditions_json TEXT NOT NULL DEFAULT '[]',
                    directive_json TEXT NOT NULL,
                    sequence INTEGER NOT NULL,
                    created_at TIMESTAMP NOT NULL,
                    leads_assigned INTEGER NOT NULL DEFAULT 0,

                    PRIMARY KEY (tenant_id, id)
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS follow_up_actions (
                    tenant_id TEXT NOT NULL,
                    id TEXT NOT NULL,
                    lead_id TEXT NOT NULL,
                    action_type TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'scheduled',
                    scheduled_time TIMESTAMP NOT NULL,
                    priority TEXT NOT NULL,
                    template_id TEXT,
                    channel TEXT,
                    subject TEXT,
                    body TEXT,
                    target TEXT,
                    reason TEXT,
                    assigned_to TEXT,
                    created_at TIMESTAMP NOT NULL,

                    PRIMARY KEY (tenant_id, id),
                    UNIQUE (tenant_id, lead_id, action_type, scheduled_time)
                )
            """)

            # Generic task shape used when a follow-up cannot be stored as such
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS tasks (
                    tenant_id TEXT NOT NULL,
                    id TEXT NOT NULL,
                    lead_id TEXT,
                    title TEXT NOT NULL,
                    description TEXT,
                    due_date TIMESTAMP NOT NULL,
                    priority TEXT NOT NULL,
                    dedupe_key TEXT,
                    created_at TIMESTAMP NOT NULL,

                    PRIMARY KEY (tenant_id, id),
                    UNIQUE (tenant_id, dedupe_key)
                )
            """)

            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_follow_ups_lead
                ON follow_up_actions(tenant_id, lead_id)
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_follow_ups_time
                ON follow_up_actions(tenant_id, scheduled_time)
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_rules_order
                ON assignment_rules(tenant_id, priority, sequence)
            """)

    # === LEADS ===

    def _row_to_lead(self, row: sqlite3.Row) -> Lead:
        """Convert a database row to a Lead object."""
        return Lead(
            id=row["id"],
            tenant_id=row["tenant_id"],
            stage=LeadStage(row["stage"]),
            priority=LeadPriority(row["priority"]),
            attributes=json.loads(row["attributes_json"]) if row["attributes_json"] else {},
            assignee=row["assignee"],
            follow_up_count=row["follow_up_count"] or 0,
            last_follow_up=parse_datetime(row["last_follow_up"]),
            created_at=parse_datetime(row["created_at"]) or utcnow(),
        )

    def get_lead(self, tenant_id: str, lead_id: str) -> Optional[Lead]:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM leads WHERE tenant_id = ? AND id = ?",
                (tenant_id, str(lead_id))
            ).fetchone()
            return self._row_to_lead(row) if row else None

    def save_lead(self, lead: Lead) -> Lead:
        """Insert or replace a lead snapshot."""
        with self._get_connection() as conn:
            conn.execute("""
                INSERT INTO leads (
                    tenant_id, id, stage, priority, attributes_json, assignee,
                    follow_up_count, last_follow_up, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(tenant_id, id) DO UPDATE SET
                    stage = excluded.stage,
                    priority = excluded.priority,
                    attributes_json = excluded.attributes_json,
                    assignee = COALESCE(excluded.assignee, leads.assignee),
                    updated_at = excluded.updated_at
            """, (
                lead.tenant_id, str(lead.id), lead.stage.value, lead.priority.value,
                json.dumps(lead.attributes, default=str), lead.assignee,
                lead.follow_up_count, _iso(lead.last_follow_up),
                _iso(lead.created_at), _iso(utcnow()),
            ))
        return lead

    def list_leads(self, tenant_id: str, limit: int = 50) -> List[Lead]:
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM leads WHERE tenant_id = ? ORDER BY created_at DESC LIMIT ?",
                (tenant_id, limit)
            ).fetchall()
            return [self._row_to_lead(row) for row in rows]

    def set_assignee(self, tenant_id: str, lead_id: str, rep_id: str):
        with self._get_connection() as conn:
            conn.execute(
                "UPDATE leads SET assignee = ?, updated_at = ? WHERE tenant_id = ? AND id = ?",
                (rep_id, _iso(utcnow()), tenant_id, str(lead_id))
            )

    def record_follow_up(self, tenant_id: str, lead_id: str, at: datetime) -> int:
        with self._get_connection() as conn:
            rows = conn.execute("""
                UPDATE leads
                SET follow_up_count = follow_up_count + 1, last_follow_up = ?, updated_at = ?
                WHERE tenant_id = ? AND id = ?
                RETURNING follow_up_count
            """, (_iso(at), _iso(utcnow()), tenant_id, str(lead_id))).fetchall()
            return rows[0][0] if rows else 0

    # === ROSTER ===

    def save_rep(self, tenant_id: str, rep: Rep) -> Rep:
        with self._get_connection() as conn:
            conn.execute("""
                INSERT INTO reps (tenant_id, id, name, email, phone, active, current_load, max_capacity)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(tenant_id, id) DO UPDATE SET
                    name = excluded.name,
                    email = excluded.email,
                    phone = excluded.phone,
                    active = excluded.active,
                    max_capacity = excluded.max_capacity
            """, (
                tenant_id, rep.id, rep.name, rep.email, rep.phone,
                1 if rep.active else 0, rep.current_load, rep.max_capacity,
            ))
            for team_id in rep.team_ids:
                conn.execute(
                    "INSERT OR IGNORE INTO team_members (tenant_id, team_id, rep_id) VALUES (?, ?, ?)",
                    (tenant_id, team_id, rep.id)
                )
        return rep

    def set_rep_active(self, tenant_id: str, rep_id: str, active: bool) -> bool:
        with self._get_connection() as conn:
            cursor = conn.execute(
                "UPDATE reps SET active = ? WHERE tenant_id = ? AND id = ?",
                (1 if active else 0, tenant_id, rep_id)
            )
            return cursor.rowcount == 1

    def save_team(self, tenant_id: str, team_id: str, rep_ids: List[str]):
        """Replace a team's membership."""
        with self._get_connection() as conn:
            conn.execute(
                "DELETE FROM team_members WHERE tenant_id = ? AND team_id = ?",
                (tenant_id, team_id)
            )
            conn.executemany(
                "INSERT INTO team_members (tenant_id, team_id, rep_id) VALUES (?, ?, ?)",
                [(tenant_id, team_id, rep_id) for rep_id in rep_ids]
            )

    def load_roster(self, tenant_id: str) -> Roster:
        with self._get_connection() as conn:
            rep_rows = conn.execute(
                "SELECT * FROM reps WHERE tenant_id = ? ORDER BY id", (tenant_id,)
            ).fetchall()
            team_rows = conn.execute(
                "SELECT team_id, rep_id FROM team_members WHERE tenant_id = ? ORDER BY team_id, rep_id",
                (tenant_id,)
            ).fetchall()

        teams: Dict[str, List[str]] = {}
        memberships: Dict[str, List[str]] = {}
        for row in team_rows:
            teams.setdefault(row["team_id"], []).append(row["rep_id"])
            memberships.setdefault(row["rep_id"], []).append(row["team_id"])

        reps = {
            row["id"]: Rep(
                id=row["id"],
                name=row["name"] or "",
                email=row["email"] or "",
                phone=row["phone"] or "",
                active=bool(row["active"]),
                current_load=row["current_load"],
                max_capacity=row["max_capacity"],
                team_ids=memberships.get(row["id"], []),
            )
            for row in rep_rows
        }
        return Roster(tenant_id=tenant_id, reps=reps, teams=teams)

    def increment_load(self, tenant_id: str, rep_id: str) -> int:
        with self._get_connection() as conn:
            rows = conn.execute(
                "UPDATE reps SET current_load = current_load + 1 "
                "WHERE tenant_id = ? AND id = ? RETURNING current_load",
                (tenant_id, rep_id)
            ).fetchall()
            return rows[0][0] if rows else 0

    def release_load(self, tenant_id: str, rep_id: str) -> int:
        """Decrement a rep's load, e.g. when a deal closes."""
        with self._get_connection() as conn:
            rows = conn.execute(
                "UPDATE reps SET current_load = MAX(current_load - 1, 0) "
                "WHERE tenant_id = ? AND id = ? RETURNING current_load",
                (tenant_id, rep_id)
            ).fetchall()
            return rows[0][0] if rows else 0

    # === RULES ===

    def _row_to_rule(self, row: sqlite3.Row) -> AssignmentRule:
        return AssignmentRule(
            id=row["id"],
            name=row["name"],
            description=row["description"] or "",
            priority=row["priority"],
            status=RuleStatus(row["status"]),
            conditions=[Condition.from_dict(c) for c in json.loads(row["conditions_json"])],
            directive=AssignmentDirective.from_dict(json.loads(row["directive_json"])),
            sequence=row["sequence"],
            created_at=parse_datetime(row["created_at"]) or utcnow(),
            leads_assigned=row["leads_assigned"],
        )

    def list_rules(self, tenant_id: str) -> List[AssignmentRule]:
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM assignment_rules WHERE tenant_id = ? ORDER BY priority, sequence",
                (tenant_id,)
            ).fetchall()
            return [self._row_to_rule(row) for row in rows]

    def save_rule(self, tenant_id: str, rule: AssignmentRule) -> AssignmentRule:
        """Insert a rule, stamping its creation order, or update it in place."""
        with self._get_connection() as conn:
            existing = conn.execute(
                "SELECT sequence FROM assignment_rules WHERE tenant_id = ? AND id = ?",
                (tenant_id, rule.id)
            ).fetchone()
            if existing:
                rule.sequence = existing["sequence"]
            else:
                row = conn.execute(
                    "SELECT COALESCE(MAX(sequence), 0) + 1 FROM assignment_rules WHERE tenant_id = ?",
                    (tenant_id,)
                ).fetchone()
                rule.sequence = row[0]

            conn.execute("""
                INSERT INTO assignment_rules (
                    tenant_id, id, name, description, priority, status,
                    conditions_json, directive_json, sequence, created_at, leads_assigned
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(tenant_id, id) DO UPDATE SET
                    name = excluded.name,
                    description = excluded.description,
                    priority = excluded.priority,
                    status = excluded.status,
                    conditions_json = excluded.conditions_json,
                    directive_json = excluded.directive_json
            """, (
                tenant_id, rule.id, rule.name, rule.description, rule.priority,
                rule.status.value,
                json.dumps([c.to_dict() for c in rule.conditions]),
                json.dumps(rule.directive.to_dict()),
                rule.sequence, _iso(rule.created_at), rule.leads_assigned,
            ))
        return rule

    def set_rule_status(self, tenant_id: str, rule_id: str, status: RuleStatus) -> bool:
        with self._get_connection() as conn:
            cursor = conn.execute(
                "UPDATE assignment_rules SET status = ? WHERE tenant_id = ? AND id = ?",
                (status.value, tenant_id, rule_id)
            )
            return cursor.rowcount == 1

    def record_match(self, tenant_id: str, rule_id: str):
        with self._get_connection() as conn:
            conn.execute(
                "UPDATE assignment_rules SET leads_assigned = leads_assigned + 1 "
                "WHERE tenant_id = ? AND id = ?",
                (tenant_id, rule_id)
            )

    # === FOLLOW-UPS ===

    def _row_to_action(self, row: sqlite3.Row) -> FollowUpAction:
        return FollowUpAction(
            id=row["id"],
            lead_id=row["lead_id"],
            action_type=ActionType(row["action_type"]),
            status=ActionStatus(row["status"]),
            scheduled_time=parse_datetime(row["scheduled_time"]),
            priority=LeadPriority(row["priority"]),
            template_id=row["template_id"],
            channel=Channel(row["channel"]) if row["channel"] else None,
            subject=row["subject"],
            body=row["body"],
            target=row["target"],
            reason=row["reason"] or "",
            assigned_to=row["assigned_to"],
            created_at=parse_datetime(row["created_at"]) or utcnow(),
        )

    def save_action(self, tenant_id: str, action: FollowUpAction) -> Tuple[FollowUpAction, bool]:
        """Insert a follow-up unless one with the same key exists.

        An action already stored as a fallback task counts as existing and is
        returned marked degraded.
        """
        lead_id, action_type, scheduled = action.idempotency_key
        try:
            with self._get_connection() as conn:
                fallback = conn.execute(
                    "SELECT id FROM tasks WHERE tenant_id = ? AND dedupe_key = ?",
                    (tenant_id, action.key)
                ).fetchone()
                if fallback:
                    action.degraded = True
                    return action, False

                cursor = conn.execute("""
                    INSERT INTO follow_up_actions (
                        tenant_id, id, lead_id, action_type, status, scheduled_time,
                        priority, template_id, channel, subject, body, target,
                        reason, assigned_to, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(tenant_id, lead_id, action_type, scheduled_time) DO NOTHING
                """, (
                    tenant_id, action.id, lead_id, action_type, action.status.value,
                    scheduled, action.priority.value, action.template_id,
                    action.channel.value if action.channel else None,
                    action.subject, action.body, action.target, action.reason,
                    action.assigned_to, _iso(action.created_at),
                ))
                is_new = cursor.rowcount == 1
                row = conn.execute("""
                    SELECT * FROM follow_up_actions
                    WHERE tenant_id = ? AND lead_id = ? AND action_type = ? AND scheduled_time = ?
                """, (tenant_id, lead_id, action_type, scheduled)).fetchone()
        except sqlite3.Error as e:
            raise _write_failure(e, "follow-up action", action.lead_id) from e

        return self._row_to_action(row), is_new

    def save_degraded(self, tenant_id: str, task: DegradedTask) -> Tuple[str, bool]:
        """Insert a generic task carrying only title/description/due date/priority."""
        try:
            with self._get_connection() as conn:
                cursor = conn.execute("""
                    INSERT INTO tasks (
                        tenant_id, id, lead_id, title, description, due_date,
                        priority, dedupe_key, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(tenant_id, dedupe_key) DO NOTHING
                """, (
                    tenant_id, str(uuid.uuid4()), task.lead_id, task.title,
                    task.description, _iso(task.due_date), task.priority.value,
                    task.key or None, _iso(utcnow()),
                ))
                is_new = cursor.rowcount == 1
                row = conn.execute(
                    "SELECT id FROM tasks WHERE tenant_id = ? AND dedupe_key = ?",
                    (tenant_id, task.key)
                ).fetchone()
        except sqlite3.Error as e:
            raise _write_failure(e, "fallback task", task.lead_id) from e

        return (row["id"] if row else ""), is_new

    def list_for_lead(self, tenant_id: str, lead_id: str) -> List[FollowUpAction]:
        with self._get_connection() as conn:
            rows = conn.execute("""
                SELECT * FROM follow_up_actions
                WHERE tenant_id = ? AND lead_id = ?
                ORDER BY scheduled_time
            """, (tenant_id, str(lead_id))).fetchall()
            return [self._row_to_action(row) for row in rows]

    def list_tasks(self, tenant_id: str, lead_id: Optional[str] = None) -> List[Dict[str, Any]]:
        query = "SELECT * FROM tasks WHERE tenant_id = ?"
        params: List[Any] = [tenant_id]
        if lead_id is not None:
            query += " AND lead_id = ?"
            params.append(str(lead_id))
        query += " ORDER BY due_date"
        with self._get_connection() as conn:
            return [dict(row) for row in conn.execute(query, params).fetchall()]
