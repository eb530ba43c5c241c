"""Core models and configuration."""

from .config import ConfigManager, EngineConfig
from .models import (
    ActionStatus,
    ActionType,
    Channel,
    DegradedTask,
    FollowUpAction,
    Lead,
    LeadPriority,
    LeadStage,
)

__all__ = [
    "ConfigManager",
    "EngineConfig",
    "ActionStatus",
    "ActionType",
    "Channel",
    "DegradedTask",
    "FollowUpAction",
    "Lead",
    "LeadPriority",
    "LeadStage",
]
