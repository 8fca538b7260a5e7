from __future__ import annotations

from datetime import date, timedelta

import pytest

from recurrence_core.core.recurrence_rules import (
    CustomRecurrenceRule,
    RecurrenceRuleError,
    describe_cadence,
    next_occurrence,
    next_occurrence_on_or_after,
    parse_custom_rule,
    resolve_series_rule,
    serialize_custom_rule,
)


def test_fixed_steps() -> None:
    assert next_occurrence("2024-05-01", "daily") == "2024-05-02"
    assert next_occurrence("2024-12-31", "daily") == "2025-01-01"
    assert next_occurrence("2024-05-01", "weekly") == "2024-05-08"
    assert next_occurrence("2024-05-15", "monthly") == "2024-06-15"
    assert next_occurrence("2024-12-15", "monthly") == "2025-01-15"


def test_monthly_clamps_to_month_end() -> None:
    assert next_occurrence("2024-01-31", "monthly") == "2024-02-29"
    assert next_occurrence("2023-01-31", "monthly") == "2023-02-28"
    assert next_occurrence("2024-03-31", "monthly") == "2024-04-30"
    assert next_occurrence("2024-08-31", "monthly") == "2024-09-30"


def test_custom_steps() -> None:
    assert next_occurrence("2024-05-01", "custom", {"interval": 3, "unit": "day"}) == "2024-05-04"
    assert next_occurrence("2024-05-01", "custom", '{"interval":2,"unit":"week"}') == "2024-05-15"
    assert next_occurrence("2024-01-31", "custom", CustomRecurrenceRule(1, "month")) == "2024-02-29"
    assert next_occurrence("2024-01-31", "custom", {"interval": 2, "unit": "month"}) == "2024-03-31"
    assert next_occurrence("2024-05-01", "custom", {"interval": 365, "unit": "day"}) == "2025-05-01"


def test_next_occurrence_returns_none_without_usable_rule() -> None:
    assert next_occurrence("2024-05-01", "custom", None) is None
    assert next_occurrence("2024-05-01", "custom", {"interval": 0, "unit": "day"}) is None
    assert next_occurrence("2024-05-01", "custom", "not json") is None
    assert next_occurrence("2024-05-01", "none") is None
    assert next_occurrence("2024-05-01", "yearly") is None
    assert next_occurrence("2024-5-1", "daily") is None
    assert next_occurrence("2024-02-30", "daily") is None


def test_next_occurrence_is_strictly_after_anchor() -> None:
    rules = [
        ("daily", None),
        ("weekly", None),
        ("monthly", None),
        ("custom", {"interval": 1, "unit": "day"}),
        ("custom", {"interval": 5, "unit": "week"}),
        ("custom", {"interval": 13, "unit": "month"}),
    ]
    start = date(2023, 12, 25)
    for offset in range(0, 400, 7):
        anchor = (start + timedelta(days=offset)).isoformat()
        for kind, rule in rules:
            result = next_occurrence(anchor, kind, rule)
            assert result is not None
            assert result > anchor


def test_parse_custom_rule_accepts_valid_shapes() -> None:
    assert parse_custom_rule({"interval": 2, "unit": "week"}) == CustomRecurrenceRule(2, "week")
    assert parse_custom_rule('{"unit": "month", "interval": 365}') == CustomRecurrenceRule(365, "month")
    assert parse_custom_rule(CustomRecurrenceRule(1, "day")) == CustomRecurrenceRule(1, "day")


@pytest.mark.parametrize(
    "raw",
    [
        None,
        "",
        "every_2_days",
        [2, "week"],
        {"interval": 0, "unit": "day"},
        {"interval": 366, "unit": "day"},
        {"interval": 400, "unit": "week"},
        {"interval": 2.0, "unit": "day"},
        {"interval": "2", "unit": "day"},
        {"interval": True, "unit": "day"},
        {"interval": 2, "unit": "year"},
        {"interval": 2},
        {"unit": "day"},
    ],
)
def test_parse_custom_rule_rejects_invalid_shapes(raw) -> None:
    assert parse_custom_rule(raw) is None


def test_serialize_is_canonical_and_parses_back() -> None:
    for raw in ({"interval": 2, "unit": "week"}, '{"unit":"day","interval":10}', {"interval": 1, "unit": "month"}):
        rule = parse_custom_rule(raw)
        text = serialize_custom_rule(rule)
        assert parse_custom_rule(text) == rule
    assert serialize_custom_rule(CustomRecurrenceRule(2, "week")) == '{"interval":2,"unit":"week"}'


def test_resolve_series_rule() -> None:
    assert resolve_series_rule("custom", {"unit": "day", "interval": 4}) == '{"interval":4,"unit":"day"}'
    assert resolve_series_rule("weekly", None) is None
    with pytest.raises(RecurrenceRuleError):
        resolve_series_rule("custom", None)
    with pytest.raises(RecurrenceRuleError):
        resolve_series_rule("custom", {"interval": 400, "unit": "day"})
    with pytest.raises(RecurrenceRuleError):
        resolve_series_rule("daily", {"interval": 2, "unit": "day"})


def test_describe_cadence() -> None:
    assert describe_cadence("daily") == "Daily"
    assert describe_cadence("weekly") == "Weekly"
    assert describe_cadence("monthly") == "Monthly"
    assert describe_cadence("custom", {"interval": 2, "unit": "week"}) == "Every 2 weeks"
    assert describe_cadence("custom", '{"interval":1,"unit":"month"}') == "Every month"
    assert describe_cadence("custom", None) == "Custom"
    assert describe_cadence("none") == "Does not repeat"


def test_next_occurrence_on_or_after() -> None:
    assert next_occurrence_on_or_after("2024-05-01", "daily", None, "2024-05-10") == "2024-05-10"
    assert next_occurrence_on_or_after("2024-05-01", "weekly", None, "2024-05-10") == "2024-05-15"
    # Anchor already past the floor still moves one step.
    assert next_occurrence_on_or_after("2024-05-20", "weekly", None, "2024-05-10") == "2024-05-27"
    assert next_occurrence_on_or_after("2024-05-01", "custom", None, "2024-05-10") is None


def test_next_occurrence_on_or_after_long_overdue_anchor() -> None:
    assert next_occurrence_on_or_after("2020-01-01", "daily", None, "2024-05-10") == "2024-05-10"
    assert next_occurrence_on_or_after("2020-01-01", "weekly", None, "2024-05-10") == "2024-05-15"
    assert (
        next_occurrence_on_or_after("2024-01-01", "custom", {"interval": 3, "unit": "day"}, "2024-01-10")
        == "2024-01-10"
    )
    # Month steps chain through the clamped day.
    assert next_occurrence_on_or_after("2020-01-31", "monthly", None, "2024-05-10") == "2024-05-29"
