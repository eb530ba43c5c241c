"""Tenant engine configuration and persistence."""

import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional, Any

import pytz

logger = logging.getLogger(__name__)


def data_dir() -> Path:
    """Directory holding the database and config files."""
    home = os.getenv("LEAD_AUTOMATION_HOME")
    if home:
        return Path(home).expanduser()
    return Path.home() / ".lead-automation"


def resolve_timezone(name: Optional[str]):
    """Return a pytz zone, falling back to UTC for unknown names."""
    if not name:
        return pytz.UTC
    try:
        return pytz.timezone(name)
    except pytz.exceptions.UnknownTimeZoneError:
        logger.warning(f"Unknown time zone '{name}', using UTC")
        return pytz.UTC


@dataclass
class EngineConfig:
    """Per-tenant routing and follow-up settings."""

    # Hours windows in outside_hours conditions are read in this zone
    timezone: str = "UTC"

    # Used when no assignment rule matches
    default_directive: Dict[str, Any] = field(default_factory=lambda: {
        "type": "round_robin",
        "candidates": [],
    })

    # Values every rendered message can rely on
    template_defaults: Dict[str, str] = field(default_factory=lambda: {
        "dealership_name": "Our Dealership",
        "dealership_phone": "",
        "dealership_address": "",
    })

    # Optional JSON file with template overrides, loaded once at startup
    templates_path: Optional[str] = None

    updated_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timezone": self.timezone,
            "default_directive": self.default_directive,
            "template_defaults": self.template_defaults,
            "templates_path": self.templates_path,
            "updated_at": self.updated_at.isoformat(),
        }


class ConfigManager:
    """Load and persist the engine configuration."""

    def __init__(self, config_path: Optional[Path] = None):
        """Initialize config manager."""
        self.config_path = config_path or data_dir() / "config.json"
        self.config = self._load_config()

    def _load_config(self) -> EngineConfig:
        """Load configuration from file, then apply environment overrides."""
        config = EngineConfig()
        if self.config_path.exists():
            try:
                with open(self.config_path, 'r') as f:
                    data = json.load(f)
                config = EngineConfig(
                    timezone=data.get("timezone", "UTC"),
                    default_directive=data.get("default_directive") or EngineConfig().default_directive,
                    template_defaults={
                        **EngineConfig().template_defaults,
                        **data.get("template_defaults", {}),
                    },
                    templates_path=data.get("templates_path"),
                )
            except (OSError, ValueError) as e:
                logger.error(f"Error loading engine config: {e}")

        env_tz = os.getenv("LEAD_AUTOMATION_TZ")
        if env_tz:
            config.timezone = env_tz

        # Normalise to a zone pytz knows about
        config.timezone = resolve_timezone(config.timezone).zone
        return config

    def save_config(self):
        """Save configuration to file."""
        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        self.config.updated_at = datetime.now()
        with open(self.config_path, 'w') as f:
            json.dump(self.config.to_dict(), f, indent=2)

    def set_value(self, key: str, value: str):
        """Update a top-level or template default setting."""
        if key == "timezone":
            self.config.timezone = resolve_timezone(value).zone
        elif key == "templates_path":
            self.config.templates_path = value or None
        elif key == "default_directive":
            self.config.default_directive = json.loads(value)
        elif key in self.config.template_defaults or key.startswith("dealership_"):
            self.config.template_defaults[key] = value
        else:
            raise KeyError(key)
        self.save_config()
