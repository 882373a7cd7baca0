"""
Unit tests for the RuleEvolutionEngine facade.

Tests default seeding, auto-evolution, stats and the full
mutate -> test -> promote lifecycle.
"""

import pytest

from leakrules.config import EvolutionConfig
from leakrules.evolution import (
    ABTestWinner,
    ConditionAdd,
    ConditionOperator,
    HistoryEventType,
    InvalidStateError,
    LeakType,
    MutationStatus,
    MutationType,
    NotFoundError,
    RevenueLeak,
    RuleCondition,
    RuleEvolutionEngine,
    RulePerformance,
    RuleRepository,
    RuleStatus,
    default_rules,
)


class FixedRandom:
    """Random source that always returns the same draw."""

    def __init__(self, value: float):
        self.value = value
        self.calls = 0

    def random(self) -> float:
        self.calls += 1
        return self.value


class TestDefaultRules:
    """Tests for the seeded catalog."""

    def test_catalog(self):
        rules = default_rules()

        assert [r.id for r in rules] == [
            "underbilling-v1",
            "missed-renewal-v1",
            "cs-handoff-v1",
            "crosssell-v1",
            "billing-gap-v1",
        ]
        assert [r.leak_type for r in rules] == [
            LeakType.UNDERBILLING,
            LeakType.MISSED_RENEWAL,
            LeakType.STALLED_CS_HANDOFF,
            LeakType.UNTRIGGERED_CROSSSELL,
            LeakType.BILLING_GAP,
        ]
        assert all(r.status == RuleStatus.ACTIVE for r in rules)
        assert all(r.parent_key is None for r in rules)

    def test_each_call_builds_fresh_objects(self):
        first, second = default_rules(), default_rules()
        first[0].performance.f1_score = 0.0
        assert second[0].performance.f1_score == 0.81


class TestEngineSetup:
    """Tests for engine construction and rule store access."""

    def test_engine_starts_empty(self):
        engine = RuleEvolutionEngine()
        assert engine.get_all_rules() == []
        assert engine.get_stats().total_rules == 0

    def test_with_default_rules(self):
        engine = RuleEvolutionEngine.with_default_rules()

        assert len(engine.get_active_rules()) == 5
        assert engine.get_rule("underbilling-v1").name == "Underbilling Detection"
        history = engine.get_rule_history("underbilling-v1")
        assert history.event_types() == [HistoryEventType.CREATED]
        assert history.events[0].details == "Rule created: Underbilling Detection"

    def test_engines_do_not_share_state(self):
        first = RuleEvolutionEngine.with_default_rules()
        second = RuleEvolutionEngine.with_default_rules()

        first.get_rule("underbilling-v1").performance.f1_score = 0.1

        assert second.get_rule("underbilling-v1").performance.f1_score == 0.81

    def test_add_duplicate_rule(self):
        engine = RuleEvolutionEngine.with_default_rules()
        with pytest.raises(InvalidStateError, match="already exists"):
            engine.add_rule(default_rules()[0])

    def test_out_of_range_performance_rejected(self):
        """Test rules can never carry an F1 score above 1."""
        engine = RuleEvolutionEngine()
        rule = default_rules()[0]

        with pytest.raises(ValueError, match="f1_score must be between 0 and 1"):
            rule.performance = RulePerformance(f1_score=1.7)

        engine.add_rule(rule)
        assert engine.get_stats().average_performance == pytest.approx(0.81)

    def test_injected_empty_repository_is_used(self):
        rules = RuleRepository()
        engine = RuleEvolutionEngine(rules=rules, initial_rules=default_rules())
        assert len(rules) == 5
        assert engine.rules is rules

    def test_unknown_lookups(self):
        engine = RuleEvolutionEngine.with_default_rules()

        assert engine.get_rule("non-existent") is None
        assert engine.get_rule_history("non-existent") is None
        assert engine.get_mutation("non-existent") is None
        assert engine.get_candidate("non-existent") is None
        assert engine.get_test("non-existent") is None

    def test_not_found_messages(self):
        engine = RuleEvolutionEngine.with_default_rules()

        with pytest.raises(NotFoundError, match="Rule non-existent not found"):
            engine.generate_mutations("non-existent")
        with pytest.raises(NotFoundError, match="Mutation non-existent not found"):
            engine.apply_mutation("non-existent")
        with pytest.raises(NotFoundError, match="Test non-existent not found"):
            engine.complete_test("non-existent")


class TestAutoEvolve:
    """Tests for auto-evolution cycles."""

    def test_disabled_engine_does_nothing(self):
        """Test a disabled engine returns an empty result and keeps state."""
        engine = RuleEvolutionEngine.with_default_rules(
            config=EvolutionConfig(auto_evolve_enabled=False), rng=FixedRandom(0.0)
        )

        result = engine.auto_evolve()

        assert result.evolved_rules == []
        assert result.mutations == []
        assert engine.get_pending_mutations() == []
        assert engine.candidates.list_all() == []

    def test_master_switch_disables_auto_evolve(self):
        engine = RuleEvolutionEngine.with_default_rules(
            config=EvolutionConfig(enabled=False), rng=FixedRandom(0.0)
        )
        assert engine.auto_evolve().mutations == []

    def test_every_default_rule_triggers(self):
        """Test all seeded rules exceed the sample-size trigger."""
        rng = FixedRandom(0.99)
        engine = RuleEvolutionEngine.with_default_rules(rng=rng)

        result = engine.auto_evolve()

        assert len(result.mutations) == 16
        assert result.evolved_rules == []
        assert rng.calls == 5
        assert engine.candidates.list_all() == []
        assert len(engine.get_pending_mutations()) == 16

    def test_low_draw_applies_first_mutation(self):
        engine = RuleEvolutionEngine.with_default_rules(rng=FixedRandom(0.0))

        result = engine.auto_evolve()

        assert result.evolved_rules == [r.id for r in default_rules()]
        candidates = engine.candidates.list_all()
        assert len(candidates) == 5
        tested = [m for m in result.mutations if m.status == MutationStatus.TESTING]
        assert len(tested) == 5
        assert engine.get_active_tests() == []

    def test_healthy_rule_with_few_samples_skipped(self):
        engine = RuleEvolutionEngine(rng=FixedRandom(0.0))
        rule = default_rules()[2]
        rule.performance.total_applications = 10
        engine.add_rule(rule)

        assert engine.auto_evolve().mutations == []

    def test_underperforming_rule_triggers(self):
        engine = RuleEvolutionEngine(rng=FixedRandom(0.5))
        rule = default_rules()[2]
        rule.performance.total_applications = 10
        rule.performance.f1_score = 0.6
        engine.add_rule(rule)

        result = engine.auto_evolve()

        assert len(result.mutations) == 2
        assert result.evolved_rules == []

    def test_seeded_engines_are_reproducible(self):
        import random

        first = RuleEvolutionEngine.with_default_rules(
            config=EvolutionConfig(mutation_rate=0.5), rng=random.Random(42)
        )
        second = RuleEvolutionEngine.with_default_rules(
            config=EvolutionConfig(mutation_rate=0.5), rng=random.Random(42)
        )

        assert first.auto_evolve().evolved_rules == second.auto_evolve().evolved_rules


class TestLifecycle:
    """End-to-end lifecycle through the facade."""

    def test_mutate_test_promote(self):
        engine = RuleEvolutionEngine.with_default_rules()

        mutations = engine.generate_mutations("underbilling-v1")
        assert [m.mutation_type for m in mutations] == [
            MutationType.THRESHOLD_ADJUST,
            MutationType.THRESHOLD_ADJUST,
            MutationType.CONDITION_REMOVE,
        ]
        assert mutations[0].changes.to_value == pytest.approx(0.77)

        candidate = engine.apply_mutation(mutations[0].id)
        test = engine.start_test("underbilling-v1", candidate.id)
        engine.record_test_results(test.id, {"f1_score": 0.9})
        test = engine.complete_test(test.id)
        assert test.winner == ABTestWinner.CANDIDATE

        new_rule = engine.promote_candidate(candidate.id)

        assert new_rule.id == "underbilling-v2"
        assert new_rule.conditions[0].value == pytest.approx(0.77)
        assert [r.id for r in engine.get_lineage("underbilling")] == [
            "underbilling-v1",
            "underbilling-v2",
        ]
        assert engine.get_rule_history("underbilling-v1").event_types() == [
            HistoryEventType.CREATED,
            HistoryEventType.MUTATED,
            HistoryEventType.TESTED,
            HistoryEventType.TESTED,
            HistoryEventType.DEPRECATED,
        ]

        stats = engine.get_stats()
        assert stats.total_rules == 6
        assert stats.active_rules == 5
        assert stats.deprecated_rules == 1
        assert stats.promoted_rules == 1
        assert stats.pending_mutations == 2

    def test_losing_candidate_discarded(self):
        engine = RuleEvolutionEngine.with_default_rules()
        mutation = engine.generate_mutations("billing-gap-v1")[0]
        candidate = engine.apply_mutation(mutation.id)
        test = engine.start_test("billing-gap-v1", candidate.id)
        engine.record_test_results(test.id, {"f1_score": 0.5})

        assert engine.complete_test(test.id).winner == ABTestWinner.CONTROL
        engine.discard_candidate(candidate.id)

        assert engine.get_mutation(mutation.id).status == MutationStatus.REJECTED
        assert engine.get_candidate(candidate.id) is None
        assert engine.get_rule("billing-gap-v1").status == RuleStatus.ACTIVE

    def test_propose_condition_add(self):
        engine = RuleEvolutionEngine.with_default_rules()
        added = RuleCondition("region", ConditionOperator.EQUALS, "emea", 0.9)

        mutation = engine.propose_mutation("cs-handoff-v1", ConditionAdd(added), "Narrow to EMEA")
        candidate = engine.apply_mutation(mutation.id)

        assert [c.field for c in candidate.conditions][-1] == "region"
        assert len(engine.get_rule("cs-handoff-v1").conditions) == 3

    def test_evaluate_then_stats(self):
        engine = RuleEvolutionEngine.with_default_rules()
        outcome = RevenueLeak(
            id="leak_1",
            type=LeakType.BILLING_GAP,
            potential_revenue=1200.0,
            metadata={
                "service_delivered": True,
                "invoice_generated": False,
                "days_since_delivery": 10,
            },
        )

        results = engine.evaluate_rules([outcome])

        assert list(results) == ["billing-gap-v1"]
        assert engine.get_rule("billing-gap-v1").performance.total_applications == 251

    def test_stats_average_over_active_rules(self):
        engine = RuleEvolutionEngine.with_default_rules()

        stats = engine.get_stats()

        assert stats.average_performance == pytest.approx((0.81 + 0.76 + 0.92 + 0.68 + 0.87) / 5)
        assert stats.pending_mutations == 0
        assert stats.active_tests == 0
