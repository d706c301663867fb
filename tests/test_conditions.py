"""Tests for the precondition evaluator."""
import pytest
from models.schemas import RuleCondition
from utils.conditions import evaluate_condition, evaluate_conditions, first_failed, get_nested_value


class TestGetNestedValue:
    def test_flat_key(self):
        assert get_nested_value({"name": "Asha"}, "name") == "Asha"

    def test_nested_key(self):
        data = {"selected_idea": {"title": "Tiffin Service", "home_based": True}}
        assert get_nested_value(data, "selected_idea.title") == "Tiffin Service"
        assert get_nested_value(data, "selected_idea.home_based") is True

    def test_missing_key(self):
        assert get_nested_value({"a": 1}, "b") is None

    def test_missing_nested_key(self):
        assert get_nested_value({"a": {"b": 1}}, "a.c") is None

    def test_path_through_scalar(self):
        assert get_nested_value({"location": "Pune"}, "location.city") is None


class TestExists:
    @pytest.mark.parametrize("value", ["Pune", 0, False, ["cooking"], {"title": "x"}])
    def test_present_values(self, value):
        cond = RuleCondition(field="fact")
        assert evaluate_condition(cond, {"fact": value})

    @pytest.mark.parametrize("value", [None, "", "   ", [], {}])
    def test_empty_values_count_as_missing(self, value):
        cond = RuleCondition(field="fact")
        assert not evaluate_condition(cond, {"fact": value})

    def test_absent_key(self):
        assert not evaluate_condition(RuleCondition(field="location"), {"name": "Asha"})

    def test_not_exists(self):
        cond = RuleCondition(field="generated_plan", operator="not_exists")
        assert evaluate_condition(cond, {"name": "Asha"})
        assert not evaluate_condition(cond, {"generated_plan": {"title": "Plan"}})


class TestComparisons:
    def test_eq(self):
        cond = RuleCondition(field="interests", operator="eq", value="cooking")
        assert evaluate_condition(cond, {"interests": "cooking"})
        assert not evaluate_condition(cond, {"interests": "sewing"})

    def test_neq(self):
        cond = RuleCondition(field="interests", operator="neq", value="cooking")
        assert evaluate_condition(cond, {"interests": "sewing"})

    def test_numeric(self):
        assert evaluate_condition(RuleCondition(field="budget", operator="gt", value=10000), {"budget": 50000})
        assert evaluate_condition(RuleCondition(field="budget", operator="gte", value=50000), {"budget": 50000})
        assert evaluate_condition(RuleCondition(field="budget", operator="lt", value=15000), {"budget": 10000})
        assert not evaluate_condition(RuleCondition(field="budget", operator="lte", value=9999), {"budget": 10000})

    def test_in(self):
        cond = RuleCondition(field="interests", operator="in", value=["cooking", "dairy"])
        assert evaluate_condition(cond, {"interests": "dairy"})
        assert not evaluate_condition(cond, {"interests": "retail"})

    def test_regex(self):
        cond = RuleCondition(field="location", operator="regex", value=r"^Pu")
        assert evaluate_condition(cond, {"location": "Pune"})
        assert not evaluate_condition(cond, {"location": "Nashik"})
        assert not evaluate_condition(cond, {})

    def test_invalid_operator(self):
        assert not evaluate_condition(RuleCondition(field="x", operator="invalid_op", value=1), {"x": 1})

    def test_type_error_returns_false(self):
        cond = RuleCondition(field="budget", operator="gt", value=10)
        assert not evaluate_condition(cond, {"budget": "not_a_number"})
        assert not evaluate_condition(cond, {})


class TestFirstFailed:
    def test_returns_first_failing_condition(self):
        conditions = [
            RuleCondition(field="location", message_key="need_location"),
            RuleCondition(field="selected_idea", message_key="need_idea"),
        ]
        failed = first_failed(conditions, {})
        assert failed.message_key == "need_location"

        failed = first_failed(conditions, {"location": "Pune"})
        assert failed.message_key == "need_idea"

    def test_none_when_all_pass(self):
        conditions = [RuleCondition(field="location"), RuleCondition(field="selected_idea.title")]
        assert first_failed(conditions, {"location": "Pune", "selected_idea": {"title": "Tiffin"}}) is None

    def test_evaluate_conditions(self):
        assert evaluate_conditions([], {})
        assert not evaluate_conditions([RuleCondition(field="name")], {"location": "Pune"})
