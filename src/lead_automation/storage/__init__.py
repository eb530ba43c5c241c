"""Storage layer: repository interfaces, counters and the SQLite store.

``AutomationDatabase`` lives in ``storage.database``; it is not re-exported
here because it depends on the routing models.
"""

from .counters import CounterStore, InMemoryCounterStore, SqliteCounterStore
from .repositories import (
    FollowUpRepository,
    LeadRepository,
    RosterRepository,
    RuleRepository,
)

__all__ = [
    "CounterStore",
    "InMemoryCounterStore",
    "SqliteCounterStore",
    "FollowUpRepository",
    "LeadRepository",
    "RosterRepository",
    "RuleRepository",
]
