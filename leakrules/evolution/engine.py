"""
Rule evolution engine.

Facade over the rule store, mutation generator, candidate builder, A/B
test controller, promotion manager, evaluator and history ledger. All
state lives in repositories injected at construction.
"""

import random
from typing import Dict, Iterable, List, Optional

from loguru import logger

from leakrules.config import EvolutionConfig
from leakrules.evolution.ab_testing import ABTestController
from leakrules.evolution.defaults import default_rules
from leakrules.evolution.evaluator import RuleEvaluator
from leakrules.evolution.mutations import CandidateBuilder, MutationGenerator
from leakrules.evolution.promotion import PromotionManager
from leakrules.evolution.repositories import (
    CandidateRepository,
    HistoryLedger,
    LineageLocks,
    MutationRepository,
    RuleRepository,
    TestRepository,
)
from leakrules.evolution.schemas import (
    AutoEvolveResult,
    EvolutionHistory,
    EvolutionStats,
    EvolvableRule,
    HistoryEventType,
    MutationChange,
    RevenueLeak,
    RuleCandidate,
    RuleMutation,
    RulePerformance,
    RuleStatus,
    RuleTest,
)
from leakrules.logging import LIFECYCLE_COMPONENT, get_component_logger, log_lifecycle_event


class RuleEvolutionEngine:
    """
    Manages versioned detection rules through mutation, A/B testing and
    promotion.

    Example:
        engine = RuleEvolutionEngine.with_default_rules()

        mutations = engine.generate_mutations("underbilling-v1")
        candidate = engine.apply_mutation(mutations[0].id)

        test = engine.start_test("underbilling-v1", candidate.id)
        engine.record_test_results(test.id, {"f1_score": 0.9})
        test = engine.complete_test(test.id)

        if test.winner == ABTestWinner.CANDIDATE:
            engine.promote_candidate(candidate.id)  # -> underbilling-v2
        else:
            engine.discard_candidate(candidate.id)
    """

    def __init__(
        self,
        config: Optional[EvolutionConfig] = None,
        rules: Optional[RuleRepository] = None,
        mutations: Optional[MutationRepository] = None,
        candidates: Optional[CandidateRepository] = None,
        tests: Optional[TestRepository] = None,
        history: Optional[HistoryLedger] = None,
        locks: Optional[LineageLocks] = None,
        rng: Optional[random.Random] = None,
        initial_rules: Optional[Iterable[EvolvableRule]] = None,
    ):
        """
        Initialize the engine.

        Args:
            config: Evolution settings (defaults to ``EvolutionConfig()``)
            rules: Rule store
            mutations: Mutation store
            candidates: Candidate store
            tests: A/B test store
            history: Lifecycle event ledger
            locks: Per-family locks
            rng: Random source for auto-evolution; anything with ``random()``
            initial_rules: Rules to add at construction
        """
        self.config = config or EvolutionConfig()
        self.rules = rules if rules is not None else RuleRepository()
        self.mutations = mutations or MutationRepository()
        self.candidates = candidates or CandidateRepository()
        self.tests = tests or TestRepository()
        self.history = history or HistoryLedger()
        self.locks = locks or LineageLocks()
        self.rng = rng or random.Random()

        self.generator = MutationGenerator(self.rules, self.mutations, self.config)
        self.builder = CandidateBuilder(
            self.rules,
            self.mutations,
            self.candidates,
            self.tests,
            self.history,
            self.locks,
            self.config,
        )
        self.ab_tests = ABTestController(
            self.rules, self.candidates, self.tests, self.history, self.locks, self.config
        )
        self.promotion = PromotionManager(
            self.rules, self.mutations, self.candidates, self.tests, self.history, self.locks
        )
        self.evaluator = RuleEvaluator(self.rules, self.locks, self.config)
        self._lifecycle_log = get_component_logger(LIFECYCLE_COMPONENT)

        for rule in initial_rules or []:
            self.add_rule(rule)

        logger.info(
            f"Initialized RuleEvolutionEngine with {len(self.rules)} rules "
            f"(enabled={self.config.enabled}, auto_evolve={self.config.auto_evolve_enabled})"
        )

    @classmethod
    def with_default_rules(cls, **kwargs) -> "RuleEvolutionEngine":
        """Create an engine seeded with the default rule catalog."""
        return cls(initial_rules=default_rules(), **kwargs)

    # ------------------------------------------------------------------
    # Rule store
    # ------------------------------------------------------------------

    def add_rule(self, rule: EvolvableRule) -> None:
        """
        Add a rule and open its history.

        Raises:
            InvalidStateError: If the id exists or the family already has an
                active version
        """
        with self.locks.hold(rule.family_id):
            self.rules.add(rule)
            self.history.open(rule.id)
            self.history.append(rule.id, HistoryEventType.CREATED, f"Rule created: {rule.name}")
        log_lifecycle_event(self._lifecycle_log, HistoryEventType.CREATED.value, rule.id)

    def get_rule(self, rule_id: str) -> Optional[EvolvableRule]:
        return self.rules.find(rule_id)

    def get_active_rules(self) -> List[EvolvableRule]:
        return self.rules.list_active()

    def get_all_rules(self) -> List[EvolvableRule]:
        return self.rules.list_all()

    def get_lineage(self, family_id: str) -> List[EvolvableRule]:
        """All versions of a rule family, oldest first."""
        return self.rules.family(family_id)

    def get_rule_history(self, rule_id: str) -> Optional[EvolutionHistory]:
        return self.history.get(rule_id)

    # ------------------------------------------------------------------
    # Mutations and candidates
    # ------------------------------------------------------------------

    def generate_mutations(self, rule_id: str) -> List[RuleMutation]:
        return self.generator.generate_mutations(rule_id)

    def propose_mutation(
        self, rule_id: str, changes: MutationChange, hypothesis: str
    ) -> RuleMutation:
        return self.generator.propose(rule_id, changes, hypothesis)

    def apply_mutation(self, mutation_id: str) -> RuleCandidate:
        candidate = self.builder.apply_mutation(mutation_id)
        log_lifecycle_event(
            self._lifecycle_log,
            HistoryEventType.MUTATED.value,
            candidate.parent_rule_id,
            candidate_id=candidate.id,
        )
        return candidate

    def discard_candidate(self, candidate_id: str) -> RuleCandidate:
        return self.builder.discard_candidate(candidate_id)

    def get_mutation(self, mutation_id: str) -> Optional[RuleMutation]:
        return self.mutations.get(mutation_id)

    def get_pending_mutations(self) -> List[RuleMutation]:
        return self.mutations.list_pending()

    def get_candidate(self, candidate_id: str) -> Optional[RuleCandidate]:
        return self.candidates.get(candidate_id)

    # ------------------------------------------------------------------
    # A/B tests
    # ------------------------------------------------------------------

    def start_test(self, rule_id: str, candidate_id: str) -> RuleTest:
        return self.ab_tests.start_test(rule_id, candidate_id)

    def record_test_results(self, test_id: str, metrics: Dict[str, float]) -> RuleTest:
        return self.ab_tests.record_test_results(test_id, metrics)

    def complete_test(self, test_id: str) -> RuleTest:
        test = self.ab_tests.complete_test(test_id)
        log_lifecycle_event(
            self._lifecycle_log,
            HistoryEventType.TESTED.value,
            test.rule_id,
            test_id=test.id,
            winner=test.winner.value,
        )
        return test

    def cancel_test(self, test_id: str) -> RuleTest:
        return self.ab_tests.cancel_test(test_id)

    def get_test(self, test_id: str) -> Optional[RuleTest]:
        return self.ab_tests.get_test(test_id)

    def get_active_tests(self) -> List[RuleTest]:
        return self.ab_tests.get_active_tests()

    # ------------------------------------------------------------------
    # Promotion and evaluation
    # ------------------------------------------------------------------

    def promote_candidate(self, candidate_id: str) -> EvolvableRule:
        rule = self.promotion.promote_candidate(candidate_id)
        log_lifecycle_event(
            self._lifecycle_log,
            HistoryEventType.PROMOTED.value,
            rule.id,
            parent_rule_id=rule.parent_rule_id,
        )
        return rule

    def evaluate_rules(self, outcomes: Iterable[RevenueLeak]) -> Dict[str, RulePerformance]:
        return self.evaluator.evaluate_rules(outcomes)

    def auto_evolve(self) -> AutoEvolveResult:
        """
        Run one auto-evolution cycle.

        Active rules below the F1 floor, or with enough applications, get
        mutations generated. With probability ``mutation_rate`` the first
        mutation of such a rule is applied right away. Tests are never
        started or completed here.

        Returns:
            Rule ids that produced a candidate and every generated mutation
        """
        result = AutoEvolveResult()
        if not (self.config.enabled and self.config.auto_evolve_enabled):
            logger.debug("Auto-evolution disabled, skipping cycle")
            return result

        for rule in self.rules.list_active():
            needs_improvement = (
                rule.performance.f1_score < self.config.underperformance_f1
                or rule.performance.total_applications >= self.config.min_sample_size
            )
            if not needs_improvement:
                continue

            mutations = self.generate_mutations(rule.id)
            result.mutations.extend(mutations)

            if mutations and self.rng.random() < self.config.mutation_rate:
                self.apply_mutation(mutations[0].id)
                result.evolved_rules.append(rule.id)

        logger.info(
            f"Auto-evolution cycle: {len(result.mutations)} mutations, "
            f"{len(result.evolved_rules)} rules evolved"
        )
        return result

    def get_stats(self) -> EvolutionStats:
        rules = self.get_all_rules()
        active = [r for r in rules if r.is_active]
        deprecated = [r for r in rules if r.status == RuleStatus.DEPRECATED]
        average = sum(r.performance.f1_score for r in active) / len(active) if active else 0.0

        return EvolutionStats(
            total_rules=len(rules),
            active_rules=len(active),
            deprecated_rules=len(deprecated),
            average_performance=average,
            pending_mutations=len(self.get_pending_mutations()),
            active_tests=len(self.get_active_tests()),
            promoted_rules=len([r for r in rules if r.parent_key is not None]),
        )
