"""Condition evaluation for assignment rules.

Operators fail closed: anything that cannot be evaluated is a non-match
rather than an exception.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from ..core.config import resolve_timezone
from ..core.models import parse_datetime

logger = logging.getLogger(__name__)

_RANGE = re.compile(r'^\s*(-?\d+(?:\.\d+)?)\s*-\s*(-?\d+(?:\.\d+)?)\s*$')


class ConditionOperator(Enum):
    """Operators available in the rule editor."""
    EQUALS = "equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    IN = "in"
    BETWEEN = "between"
    OUTSIDE_HOURS = "outside_hours"


class ValueKind(Enum):
    """Kinds a raw condition or attribute value resolves to."""
    STRING = "string"
    NUMBER = "number"
    DATE = "date"
    BOOLEAN = "boolean"


@dataclass(frozen=True)
class ConditionValue:
    """A raw value resolved once into a tagged string/number/date/boolean."""

    kind: ValueKind
    text: str
    number: Optional[float] = None
    date: Optional[datetime] = None

    @classmethod
    def parse(cls, raw: Any) -> 'ConditionValue':
        if isinstance(raw, datetime):
            return cls(ValueKind.DATE, raw.isoformat(), date=parse_datetime(raw))
        if isinstance(raw, bool):
            return cls(ValueKind.BOOLEAN, str(raw).lower())
        if isinstance(raw, (int, float)):
            return cls(ValueKind.NUMBER, str(raw), number=float(raw))

        text = "" if raw is None else str(raw).strip()
        if text.lower() in ("true", "false"):
            return cls(ValueKind.BOOLEAN, text.lower())
        try:
            return cls(ValueKind.NUMBER, text, number=float(text.replace(",", "")))
        except ValueError:
            pass
        # Only strings that look like ISO timestamps are dates
        if len(text) >= 10 and text[4:5] == "-" and text[7:8] == "-":
            date = parse_datetime(text)
            if date is not None:
                return cls(ValueKind.DATE, text, date=date)
        return cls(ValueKind.STRING, text)

    @property
    def is_number(self) -> bool:
        return self.kind == ValueKind.NUMBER

    def same_as(self, other: 'ConditionValue') -> bool:
        """Equality with numeric coercion when both sides are numbers."""
        if self.is_number and other.is_number:
            return self.number == other.number
        if self.kind == ValueKind.DATE and other.kind == ValueKind.DATE:
            return self.date == other.date
        return self.text == other.text


@dataclass
class Condition:
    """A single predicate: ``field operator value``."""

    field: str
    operator: str
    value: str

    def to_dict(self) -> Dict[str, str]:
        return {"field": self.field, "operator": self.operator, "value": self.value}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Condition':
        return cls(
            field=str(data.get("field", "")),
            operator=str(data.get("operator", "")),
            value="" if data.get("value") is None else str(data.get("value")),
        )

    def __str__(self) -> str:
        return f"{self.field} {self.operator} {self.value}"


def parse_range(raw: str) -> Optional[Tuple[float, float]]:
    """Parse ``"lo-hi"`` into a pair of floats."""
    match = _RANGE.match(raw or "")
    if not match:
        return None
    return float(match.group(1)), float(match.group(2))


def _in_window(hour: int, start: int, end: int) -> bool:
    if start <= end:
        return start <= hour < end
    # Window wraps past midnight, e.g. 22-6
    return hour >= start or hour < end


def matches(condition: Condition, attributes: Dict[str, Any], timezone: str = "UTC") -> bool:
    """Check a condition against a lead's attribute map."""
    try:
        operator = ConditionOperator(condition.operator)
    except ValueError:
        logger.debug(f"Unknown operator '{condition.operator}' treated as no match")
        return False

    raw = attributes.get(condition.field)
    if raw is None or raw == "":
        return False

    actual = ConditionValue.parse(raw)

    if operator == ConditionOperator.EQUALS:
        return actual.same_as(ConditionValue.parse(condition.value))

    if operator in (ConditionOperator.GREATER_THAN, ConditionOperator.LESS_THAN):
        expected = ConditionValue.parse(condition.value)
        if not (actual.is_number and expected.is_number):
            return False
        if operator == ConditionOperator.GREATER_THAN:
            return actual.number > expected.number
        return actual.number < expected.number

    if operator == ConditionOperator.IN:
        options = [ConditionValue.parse(v) for v in condition.value.split(",") if v.strip()]
        return any(actual.same_as(option) for option in options)

    if operator == ConditionOperator.BETWEEN:
        bounds = parse_range(condition.value)
        if bounds is None or not actual.is_number:
            return False
        low, high = bounds
        return low <= actual.number <= high

    if operator == ConditionOperator.OUTSIDE_HOURS:
        bounds = parse_range(condition.value)
        if bounds is None or actual.date is None:
            return False
        start, end = int(bounds[0]), int(bounds[1])
        try:
            local = actual.date.astimezone(resolve_timezone(timezone))
        except (OverflowError, ValueError) as e:
            logger.debug(f"Cannot place {actual.text} in {timezone}: {e}")
            return False
        return not _in_window(local.hour, start, end)

    return False
