"""
tests/test_conditions.py — Typed Rule Condition Parsing
=========================================================
"""

from __future__ import annotations

import pytest

from ceremony.engine.conditions import (
    DefaultCondition,
    IndustryCondition,
    MemberTypeCondition,
    RandomCondition,
    TimeWindowCondition,
    parse_conditions,
)
from ceremony.errors import MalformedConditions


class TestWellFormed:
    def test_default_ignores_payload(self):
        assert parse_conditions("default", '{"anything": 1}') == DefaultCondition()

    def test_default_accepts_missing_payload(self):
        assert parse_conditions("default", None) == DefaultCondition()
        assert parse_conditions("default", "") == DefaultCondition()

    def test_member_type_from_json_text(self):
        cond = parse_conditions("member_type", '{"member_types": ["Core", "Gold"]}')
        assert cond == MemberTypeCondition(frozenset({"Core", "Gold"}))

    def test_industry_from_dict(self):
        cond = parse_conditions("industry", {"industries": ["Finance"]})
        assert cond == IndustryCondition(frozenset({"Finance"}))

    def test_time_window(self):
        cond = parse_conditions("time_based", '{"start_hour": 8, "end_hour": 11}')
        assert cond == TimeWindowCondition(start_hour=8, end_hour=11)

    def test_time_window_single_hour(self):
        cond = parse_conditions("time_based", {"start_hour": 23, "end_hour": 23})
        assert cond == TimeWindowCondition(23, 23)

    def test_random_probability(self):
        assert parse_conditions("random", '{"probability": 0.3}') == RandomCondition(0.3)

    def test_random_defaults_to_half(self):
        assert parse_conditions("random", "{}") == RandomCondition(0.5)

    @pytest.mark.parametrize("raw", [None, "", "null"])
    def test_random_without_document_never_fires(self, raw):
        assert parse_conditions("random", raw) == RandomCondition(0.0)

    @pytest.mark.parametrize("p", [0, 1, 0.0, 1.0])
    def test_random_bounds_inclusive(self, p):
        assert parse_conditions("random", {"probability": p}).probability == float(p)


class TestMalformed:
    def test_unknown_rule_type(self):
        with pytest.raises(MalformedConditions, match="unknown rule type"):
            parse_conditions("weekday", "{}")

    def test_invalid_json(self):
        with pytest.raises(MalformedConditions, match="invalid JSON"):
            parse_conditions("member_type", "{member_types: [Core]")

    def test_non_object_payload(self):
        with pytest.raises(MalformedConditions, match="JSON object"):
            parse_conditions("industry", '["Finance"]')

    @pytest.mark.parametrize(
        "payload",
        [{}, {"member_types": []}, {"member_types": "Core"}, {"member_types": ["Core", 3]}],
    )
    def test_member_type_list_required(self, payload):
        with pytest.raises(MalformedConditions):
            parse_conditions("member_type", payload)

    @pytest.mark.parametrize(
        "payload",
        [
            {"start_hour": 8},
            {"start_hour": -1, "end_hour": 5},
            {"start_hour": 8, "end_hour": 24},
            {"start_hour": "8", "end_hour": 11},
            {"start_hour": True, "end_hour": 11},
        ],
    )
    def test_bad_hours(self, payload):
        with pytest.raises(MalformedConditions, match="hour"):
            parse_conditions("time_based", payload)

    def test_window_does_not_wrap_midnight(self):
        with pytest.raises(MalformedConditions, match="after end_hour"):
            parse_conditions("time_based", {"start_hour": 22, "end_hour": 2})

    @pytest.mark.parametrize("p", [-0.1, 1.5, "0.3", None, True])
    def test_bad_probability(self, p):
        with pytest.raises(MalformedConditions):
            parse_conditions("random", {"probability": p})

    def test_is_a_value_error(self):
        with pytest.raises(ValueError):
            parse_conditions("industry", {"industries": []})
