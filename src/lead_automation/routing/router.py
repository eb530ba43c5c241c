"""Resolve an assignment directive to a concrete sales rep."""

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional

from ..errors import NoEligibleAssignee
from ..storage.counters import CounterStore

logger = logging.getLogger(__name__)


class DirectiveType(Enum):
    """How a matched rule hands out its leads."""
    USER = "user"
    TEAM = "team"
    ROUND_ROBIN = "round_robin"
    LOAD_BALANCE = "load_balance"


@dataclass
class AssignmentDirective:
    """Assignment type plus its target data."""

    type: DirectiveType
    candidates: List[str] = field(default_factory=list)  # rep ids
    team_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "candidates": list(self.candidates),
            "team_id": self.team_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AssignmentDirective':
        candidates = data.get("candidates") or data.get("assign_to") or []
        if isinstance(candidates, str):
            candidates = [c.strip() for c in candidates.split(",") if c.strip()]
        return cls(
            type=DirectiveType(data.get("type", "round_robin")),
            candidates=list(candidates),
            team_id=data.get("team_id"),
        )

    def describe(self) -> str:
        if self.type == DirectiveType.TEAM:
            return f"team:{self.team_id}"
        if self.candidates:
            return f"{self.type.value}:{','.join(self.candidates)}"
        return f"{self.type.value}:*"


@dataclass
class Rep:
    """Sales rep who can receive leads."""

    id: str
    name: str = ""
    email: str = ""
    phone: str = ""
    active: bool = True

    # Advisory only; exceeding it logs a warning
    current_load: int = 0
    max_capacity: int = 20

    team_ids: List[str] = field(default_factory=list)

    @property
    def load_ratio(self) -> float:
        if self.max_capacity <= 0:
            return float("inf")
        return self.current_load / self.max_capacity

    @property
    def at_capacity(self) -> bool:
        return self.current_load >= self.max_capacity

    @property
    def load_percentage(self) -> int:
        if self.max_capacity <= 0:
            return 100
        return round(self.current_load / self.max_capacity * 100)


@dataclass
class Roster:
    """Snapshot of a tenant's reps and team memberships."""

    tenant_id: str
    reps: Dict[str, Rep] = field(default_factory=dict)
    teams: Dict[str, List[str]] = field(default_factory=dict)

    def get(self, rep_id: str) -> Optional[Rep]:
        return self.reps.get(rep_id)

    def active_reps(self) -> List[Rep]:
        return [r for r in self.reps.values() if r.active]

    def team_members(self, team_id: Optional[str]) -> List[str]:
        return list(self.teams.get(team_id or "", []))


class AssignmentResolver:
    """Pick a rep for a directive and record the new load."""

    MAX_CURSOR_ATTEMPTS = 100

    def __init__(self, roster_repository, counters: CounterStore):
        self.roster_repository = roster_repository
        self.counters = counters

    def resolve(
        self,
        directive: AssignmentDirective,
        roster: Roster,
        cursor_key: str,
        lead_id: Optional[str] = None,
        rule_id: Optional[str] = None
    ) -> Rep:
        """Return the chosen rep with its incremented load."""
        if directive.type == DirectiveType.ROUND_ROBIN:
            rep = self._round_robin_select(directive, roster, cursor_key, lead_id, rule_id)
        else:
            if directive.type == DirectiveType.TEAM:
                candidate_ids = roster.team_members(directive.team_id)
            elif directive.type == DirectiveType.LOAD_BALANCE:
                candidate_ids = list(roster.reps)
            else:
                candidate_ids = directive.candidates
            rep = self._least_loaded_select(candidate_ids, roster, directive, lead_id, rule_id)

        if rep.at_capacity:
            logger.warning(
                f"Assigning lead {lead_id} to {rep.id} at or above capacity "
                f"({rep.current_load}/{rep.max_capacity})"
            )

        new_load = self.roster_repository.increment_load(roster.tenant_id, rep.id)
        return replace(rep, current_load=new_load)

    def _eligible(self, candidate_ids: List[str], roster: Roster) -> List[Rep]:
        reps = (roster.get(rep_id) for rep_id in candidate_ids)
        return [r for r in reps if r is not None and r.active]

    def _least_loaded_select(
        self,
        candidate_ids: List[str],
        roster: Roster,
        directive: AssignmentDirective,
        lead_id: Optional[str],
        rule_id: Optional[str]
    ) -> Rep:
        """Lowest load/capacity ratio, ties by rep id."""
        available = self._eligible(candidate_ids, roster)
        if not available:
            raise NoEligibleAssignee(
                f"No active rep for {directive.describe()}",
                lead_id=lead_id,
                rule_id=rule_id
            )
        available.sort(key=lambda r: (r.load_ratio, r.id))
        return available[0]

    def _round_robin_select(
        self,
        directive: AssignmentDirective,
        roster: Roster,
        cursor_key: str,
        lead_id: Optional[str],
        rule_id: Optional[str]
    ) -> Rep:
        """Next active candidate after the shared cursor."""
        candidates = directive.candidates or sorted(roster.reps)
        if not self._eligible(candidates, roster):
            raise NoEligibleAssignee(
                f"No active rep for {directive.describe()}",
                lead_id=lead_id,
                rule_id=rule_id
            )

        count = len(candidates)
        for _ in range(self.MAX_CURSOR_ATTEMPTS):
            cursor = self.counters.get(cursor_key, CounterStore.MISSING)
            start = (cursor + 1) % count
            for offset in range(count):
                index = (start + offset) % count
                rep = roster.get(candidates[index])
                if rep is not None and rep.active:
                    break
            # Another worker may have moved the cursor since we read it
            if self.counters.compare_and_set(cursor_key, cursor, index):
                return rep

        raise NoEligibleAssignee(
            f"Round-robin cursor {cursor_key} kept changing",
            lead_id=lead_id,
            rule_id=rule_id
        )
