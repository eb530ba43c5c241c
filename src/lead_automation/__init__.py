"""Lead routing and follow-up orchestration for dealership CRMs."""

__version__ = "1.0.0"

from .errors import (
    LeadAutomationError,
    LeadNotFound,
    NoEligibleAssignee,
    RepositoryWriteFailed,
    UnknownTemplate,
)
from .orchestrator import Orchestrator, LeadEvent, RoutingResult

__all__ = [
    "Orchestrator",
    "LeadEvent",
    "RoutingResult",
    "LeadAutomationError",
    "LeadNotFound",
    "NoEligibleAssignee",
    "RepositoryWriteFailed",
    "UnknownTemplate",
]
