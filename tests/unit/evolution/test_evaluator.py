"""
Unit tests for rule evaluation against outcome batches.

Covers condition operators, batch scoring and the moving-average merge.
"""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from leakrules.config import EvolutionConfig
from leakrules.evolution.evaluator import (
    RuleEvaluator,
    evaluate_condition,
    merge_performance,
    score_batch,
)
from leakrules.evolution.repositories import LineageLocks, RuleRepository
from leakrules.evolution.schemas import (
    ConditionOperator,
    EvolvableRule,
    LeakType,
    RevenueLeak,
    RuleCondition,
    RuleKey,
    RulePerformance,
    RuleStatus,
)


def leak(leak_type: LeakType = LeakType.UNDERBILLING, revenue: float = 0.0, **metadata):
    return RevenueLeak(
        id=f"leak_{len(metadata)}_{revenue}",
        type=leak_type,
        potential_revenue=revenue,
        metadata=metadata,
    )


def underbilling_rule() -> EvolvableRule:
    return EvolvableRule(
        key=RuleKey("underbilling", 1),
        name="Underbilling Detection",
        leak_type=LeakType.UNDERBILLING,
        conditions=[RuleCondition("deal_amount", ConditionOperator.LESS_THAN, 0.7, 0.85)],
        performance=RulePerformance(
            accuracy=0.8,
            precision=0.8,
            recall=0.8,
            f1_score=0.8,
            total_applications=100,
            successful_applications=80,
            average_impact=1000.0,
        ),
    )


class TestEvaluateCondition:
    """Tests for single-condition matching."""

    def condition(self, operator, value):
        return RuleCondition("f", operator, value)

    def test_numeric_operators(self):
        assert evaluate_condition(self.condition(ConditionOperator.LESS_THAN, 0.7), 0.5)
        assert not evaluate_condition(self.condition(ConditionOperator.LESS_THAN, 0.7), 0.7)
        assert evaluate_condition(self.condition(ConditionOperator.LESS_THAN_OR_EQUAL, 0.7), 0.7)
        assert evaluate_condition(self.condition(ConditionOperator.GREATER_THAN, 30), 31)
        assert not evaluate_condition(self.condition(ConditionOperator.GREATER_THAN, 30), 30)
        assert evaluate_condition(self.condition(ConditionOperator.GREATER_THAN_OR_EQUAL, 30), 30)

    def test_numeric_strings_are_converted(self):
        assert evaluate_condition(self.condition(ConditionOperator.GREATER_THAN, 3), "4")

    def test_non_numeric_value_never_matches_numeric_operator(self):
        assert not evaluate_condition(self.condition(ConditionOperator.GREATER_THAN, 3), "soon")
        assert not evaluate_condition(self.condition(ConditionOperator.LESS_THAN, 3), True)

    def test_equals(self):
        assert evaluate_condition(self.condition(ConditionOperator.EQUALS, "won"), "won")
        assert not evaluate_condition(self.condition(ConditionOperator.EQUALS, "won"), "lost")
        assert evaluate_condition(self.condition(ConditionOperator.NOT_EQUALS, "won"), "lost")

    def test_booleans_only_equal_booleans(self):
        """Test 0 never equals False and 1 never equals True."""
        assert evaluate_condition(self.condition(ConditionOperator.EQUALS, False), False)
        assert not evaluate_condition(self.condition(ConditionOperator.EQUALS, False), 0)
        assert not evaluate_condition(self.condition(ConditionOperator.EQUALS, True), 1)

    def test_missing_value_never_matches(self):
        """Test a None value fails every operator, including equals None."""
        assert not evaluate_condition(self.condition(ConditionOperator.EQUALS, None), None)
        assert not evaluate_condition(self.condition(ConditionOperator.NOT_EQUALS, "x"), None)
        assert not evaluate_condition(self.condition(ConditionOperator.LESS_THAN, 5), None)


class TestScoreBatch:
    """Tests for per-batch scoring."""

    def test_mixed_batch(self):
        rule = underbilling_rule()
        outcomes = [
            leak(revenue=1000.0, deal_amount=0.5),
            leak(revenue=3000.0, deal_amount=0.6),
            leak(revenue=500.0, deal_amount=0.9),
            leak(revenue=200.0),
        ]

        score = score_batch(rule, outcomes)

        assert score.precision == 1.0
        assert score.recall == pytest.approx(0.5)
        assert score.f1_score == pytest.approx(2 / 3)
        assert score.accuracy == score.f1_score
        assert score.total_applications == 4
        assert score.successful_applications == 2
        assert score.average_impact == pytest.approx(2000.0)

    def test_no_matches_is_zero_safe(self):
        """Test zero denominators produce zeros, not errors."""
        rule = underbilling_rule()

        score = score_batch(rule, [leak(deal_amount=0.95)])

        assert score.precision == 0.0
        assert score.recall == 0.0
        assert score.f1_score == 0.0
        assert score.average_impact == 1000.0

    def test_rule_without_conditions_matches_everything(self):
        rule = underbilling_rule()
        rule.conditions = []

        score = score_batch(rule, [leak(), leak(revenue=10.0)])

        assert score.successful_applications == 2
        assert score.f1_score == 1.0


class TestMergePerformance:
    """Tests for the moving-average merge."""

    def test_weighted_merge(self):
        existing = underbilling_rule().performance
        batch = RulePerformance(
            accuracy=2 / 3,
            precision=1.0,
            recall=0.5,
            f1_score=2 / 3,
            total_applications=4,
            successful_applications=2,
            average_impact=2000.0,
        )

        merged = merge_performance(existing, batch, 0.3)

        assert merged.f1_score == pytest.approx(0.76)
        assert merged.precision == pytest.approx(0.86)
        assert merged.recall == pytest.approx(0.71)
        assert merged.total_applications == 104
        assert merged.successful_applications == 82
        assert merged.average_impact == pytest.approx(1500.0)

    def test_inputs_untouched(self):
        existing = RulePerformance(f1_score=0.5)
        batch = RulePerformance(f1_score=1.0)

        merge_performance(existing, batch)

        assert existing.f1_score == 0.5
        assert batch.f1_score == 1.0

    @given(
        existing=st.floats(min_value=0.0, max_value=1.0),
        batch=st.floats(min_value=0.0, max_value=1.0),
        weight=st.floats(min_value=0.0, max_value=1.0),
    )
    @settings(max_examples=100)
    def test_ratios_stay_in_unit_interval(self, existing, batch, weight):
        """Test merged ratios stay within [0, 1] for any inputs in range."""
        merged = merge_performance(
            RulePerformance(precision=existing, recall=existing, f1_score=existing),
            RulePerformance(precision=batch, recall=batch, f1_score=batch),
            weight,
        )

        for value in (merged.precision, merged.recall, merged.f1_score):
            assert 0.0 <= value <= 1.0


class TestRuleEvaluator:
    """Tests for RuleEvaluator."""

    @pytest.fixture
    def rules(self):
        repo = RuleRepository()
        repo.add(underbilling_rule())
        repo.add(
            EvolvableRule(
                key=RuleKey("billing-gap", 1),
                name="Billing Gap",
                leak_type=LeakType.BILLING_GAP,
                conditions=[RuleCondition("invoice_generated", ConditionOperator.EQUALS, False)],
                performance=RulePerformance(f1_score=0.87, total_applications=250),
            )
        )
        return repo

    @pytest.fixture
    def evaluator(self, rules):
        return RuleEvaluator(rules, LineageLocks(), EvolutionConfig())

    def test_empty_batch_changes_nothing(self, rules, evaluator):
        before = [r.to_dict() for r in rules.list_all()]

        assert evaluator.evaluate_rules([]) == {}
        assert [r.to_dict() for r in rules.list_all()] == before

    def test_updates_matching_rule(self, rules, evaluator):
        outcomes = [
            leak(revenue=1000.0, deal_amount=0.5),
            leak(revenue=3000.0, deal_amount=0.6),
            leak(revenue=500.0, deal_amount=0.9),
            leak(revenue=200.0),
        ]

        results = evaluator.evaluate_rules(outcomes)

        assert list(results) == ["underbilling-v1"]
        assert results["underbilling-v1"].total_applications == 4
        stored = rules.find("underbilling-v1").performance
        assert stored.f1_score == pytest.approx(0.76)
        assert stored.total_applications == 104

    def test_rules_without_relevant_outcomes_skipped(self, rules, evaluator):
        """Test a rule sees only outcomes of its own leak type."""
        billing = rules.find("billing-gap-v1")
        before = billing.performance.to_dict()

        evaluator.evaluate_rules([leak(deal_amount=0.5)])

        assert billing.performance.to_dict() == before

    def test_deprecated_rules_not_scored(self, rules, evaluator):
        rules.find("underbilling-v1").status = RuleStatus.DEPRECATED

        results = evaluator.evaluate_rules([leak(deal_amount=0.5)])

        assert results == {}
        assert rules.find("underbilling-v1").performance.total_applications == 100

    def test_counters_grow_by_batch_size(self, rules, evaluator):
        """Test repeated evaluation adds exactly the batch size each time."""
        batch = [leak(deal_amount=0.5), leak(deal_amount=0.9)]

        evaluator.evaluate_rules(batch)
        evaluator.evaluate_rules(batch)

        stored = rules.find("underbilling-v1").performance
        assert stored.total_applications == 104
        assert stored.successful_applications == 82

    def test_accepts_generator(self, rules, evaluator):
        results = evaluator.evaluate_rules(leak(deal_amount=v) for v in (0.1, 0.2))
        assert results["underbilling-v1"].successful_applications == 2

    def test_plain_data_outcomes(self, rules, evaluator):
        """Test outcomes with string type and severity score like enum-typed ones."""
        rules.find("billing-gap-v1").conditions = [
            RuleCondition("severity", ConditionOperator.EQUALS, "high"),
        ]
        outcome = RevenueLeak(id="leak_plain", type="billing_gap", severity="high")

        results = evaluator.evaluate_rules([outcome])

        assert results["billing-gap-v1"].successful_applications == 1
