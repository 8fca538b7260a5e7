"""Date arithmetic for recurring tasks and series.

Every date crossing this module's boundary is an ISO ``YYYY-MM-DD`` string.
Custom rules are stored as canonical JSON (``{"interval":2,"unit":"week"}``)
and accepted here either in that form, as a mapping, or as a parsed
``CustomRecurrenceRule``.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Mapping

from dateutil.relativedelta import relativedelta

from recurrence_core.core.dates import is_iso_date, parse_iso_date, to_iso_date

RECURRENCE_TYPES = ("none", "daily", "weekly", "monthly", "custom")
SERIES_TYPES = ("daily", "weekly", "monthly", "custom")
RECURRENCE_BEHAVIORS = ("after_completion", "duplicate_on_schedule")
DEFAULT_BEHAVIOR = "after_completion"
CUSTOM_UNITS = ("day", "week", "month")
PRIORITIES = ("low", "medium", "high")

MIN_INTERVAL = 1
MAX_INTERVAL = 365
_DEFAULT_PREVIEW_LIMIT = 500


class RecurrenceRuleError(ValueError):
    """Invalid recurrence definition supplied by a caller."""


@dataclass(frozen=True, slots=True)
class CustomRecurrenceRule:
    interval: int
    unit: str


RuleInput = CustomRecurrenceRule | Mapping[str, Any] | str | None


def is_recurrence_type(value: Any) -> bool:
    return isinstance(value, str) and value in RECURRENCE_TYPES


def is_series_type(value: Any) -> bool:
    return isinstance(value, str) and value in SERIES_TYPES


def is_recurrence_behavior(value: Any) -> bool:
    return isinstance(value, str) and value in RECURRENCE_BEHAVIORS


def is_priority(value: Any) -> bool:
    return isinstance(value, str) and value in PRIORITIES


def parse_custom_rule(value: RuleInput) -> CustomRecurrenceRule | None:
    """Return the rule when ``value`` has a valid shape, else ``None``.

    Callers decide whether a ``None`` is fatal.
    """
    if isinstance(value, CustomRecurrenceRule):
        value = {"interval": value.interval, "unit": value.unit}
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            return None
    if not isinstance(value, Mapping):
        return None

    interval = value.get("interval")
    unit = value.get("unit")
    # bool is an int subclass; reject it explicitly.
    if not isinstance(interval, int) or isinstance(interval, bool):
        return None
    if interval < MIN_INTERVAL or interval > MAX_INTERVAL:
        return None
    if unit not in CUSTOM_UNITS:
        return None
    return CustomRecurrenceRule(interval=interval, unit=unit)


def serialize_custom_rule(rule: CustomRecurrenceRule) -> str:
    return json.dumps({"interval": rule.interval, "unit": rule.unit}, sort_keys=True, separators=(",", ":"))


def resolve_series_rule(recurrence_type: str, raw_rule: RuleInput) -> str | None:
    """Validate the rule against its type and return the value to persist.

    Raises RecurrenceRuleError for a custom type without a valid rule and for a
    rule supplied alongside a non-custom type.
    """
    if recurrence_type == "custom":
        parsed = parse_custom_rule(raw_rule)
        if parsed is None:
            raise RecurrenceRuleError(
                "recurrence_rule is required for custom recurrence and must include "
                f"interval ({MIN_INTERVAL}-{MAX_INTERVAL}) and unit (day|week|month)"
            )
        return serialize_custom_rule(parsed)
    if raw_rule is not None:
        raise RecurrenceRuleError("recurrence_rule can only be set when recurrence_type is custom")
    return None


def _step(anchor: str, unit: str, amount: int) -> str:
    current = parse_iso_date(anchor)
    if unit == "day":
        return to_iso_date(current + timedelta(days=amount))
    if unit == "week":
        return to_iso_date(current + timedelta(weeks=amount))
    # relativedelta clamps to the last day of the target month.
    return to_iso_date(current + relativedelta(months=amount))


def next_occurrence(anchor: str, recurrence_type: str, rule: RuleInput = None) -> str | None:
    if not is_iso_date(anchor):
        return None
    if recurrence_type == "daily":
        return _step(anchor, "day", 1)
    if recurrence_type == "weekly":
        return _step(anchor, "week", 1)
    if recurrence_type == "monthly":
        return _step(anchor, "month", 1)
    if recurrence_type == "custom":
        parsed = parse_custom_rule(rule)
        if parsed is None:
            return None
        return _step(anchor, parsed.unit, parsed.interval)
    return None


def _fixed_step_days(recurrence_type: str, rule: RuleInput) -> int | None:
    if recurrence_type == "daily":
        return 1
    if recurrence_type == "weekly":
        return 7
    if recurrence_type == "custom":
        parsed = parse_custom_rule(rule)
        if parsed is not None and parsed.unit == "day":
            return parsed.interval
        if parsed is not None and parsed.unit == "week":
            return parsed.interval * 7
    return None


def next_occurrence_on_or_after(
    anchor: str,
    recurrence_type: str,
    rule: RuleInput,
    floor: str,
    *,
    limit: int = _DEFAULT_PREVIEW_LIMIT,
) -> str | None:
    """First occurrence after ``anchor`` that is not before ``floor``. Preview only.

    Day and week cadences jump straight to the floor. Month cadences step one
    occurrence at a time because clamping makes each step depend on the last,
    and give up after ``limit`` steps.
    """
    if not is_iso_date(floor):
        return None
    cursor = next_occurrence(anchor, recurrence_type, rule)
    if cursor is None:
        return None
    span = _fixed_step_days(recurrence_type, rule)
    if span is not None:
        if cursor >= floor:
            return cursor
        gap = (parse_iso_date(floor) - parse_iso_date(cursor)).days
        steps = -(-gap // span)
        return to_iso_date(parse_iso_date(cursor) + timedelta(days=steps * span))

    for _ in range(limit):
        if cursor is None:
            return None
        if cursor >= floor:
            return cursor
        following = next_occurrence(cursor, recurrence_type, rule)
        if following is None or following <= cursor:
            return None
        cursor = following
    return None


_UNIT_LABELS = {"day": ("day", "days"), "week": ("week", "weeks"), "month": ("month", "months")}


def describe_cadence(recurrence_type: str, rule: RuleInput = None) -> str:
    if recurrence_type == "daily":
        return "Daily"
    if recurrence_type == "weekly":
        return "Weekly"
    if recurrence_type == "monthly":
        return "Monthly"
    if recurrence_type == "custom":
        parsed = parse_custom_rule(rule)
        if parsed is None:
            return "Custom"
        singular, plural = _UNIT_LABELS[parsed.unit]
        if parsed.interval == 1:
            return f"Every {singular}"
        return f"Every {parsed.interval} {plural}"
    return "Does not repeat"
