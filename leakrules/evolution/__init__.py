"""
Rule evolution: mutation, A/B testing and promotion of detection rules.

Example usage:
    >>> from leakrules.evolution import RuleEvolutionEngine, ABTestWinner
    >>>
    >>> engine = RuleEvolutionEngine.with_default_rules()
    >>> mutations = engine.generate_mutations("underbilling-v1")
    >>> candidate = engine.apply_mutation(mutations[0].id)
    >>>
    >>> test = engine.start_test("underbilling-v1", candidate.id)
    >>> engine.record_test_results(test.id, {"f1_score": 0.9})
    >>> test = engine.complete_test(test.id)
    >>> if test.winner == ABTestWinner.CANDIDATE:
    ...     new_rule = engine.promote_candidate(candidate.id)
"""

from .errors import (
    InvalidStateError,
    NotFoundError,
    RuleEvolutionError,
)

from .schemas import (
    ABTestPeriod,
    ABTestStatus,
    ABTestWinner,
    AutoEvolveResult,
    ConditionAdd,
    ConditionOperator,
    ConditionRemove,
    EvolutionHistory,
    EvolutionStats,
    EvolvableRule,
    HistoryEvent,
    HistoryEventType,
    LeakSeverity,
    LeakType,
    MutationStatus,
    MutationType,
    RevenueLeak,
    RuleAction,
    RuleCandidate,
    RuleCondition,
    RuleKey,
    RuleMutation,
    RulePerformance,
    RuleStatus,
    RuleTest,
    ThresholdAdjust,
)

from .repositories import (
    CandidateRepository,
    HistoryLedger,
    LineageLocks,
    MutationRepository,
    RuleRepository,
    TestRepository,
)

from .engine import RuleEvolutionEngine
from .defaults import default_rules

__all__ = [
    # Errors
    "InvalidStateError",
    "NotFoundError",
    "RuleEvolutionError",
    # Schemas
    "ABTestPeriod",
    "ABTestStatus",
    "ABTestWinner",
    "AutoEvolveResult",
    "ConditionAdd",
    "ConditionOperator",
    "ConditionRemove",
    "EvolutionHistory",
    "EvolutionStats",
    "EvolvableRule",
    "HistoryEvent",
    "HistoryEventType",
    "LeakSeverity",
    "LeakType",
    "MutationStatus",
    "MutationType",
    "RevenueLeak",
    "RuleAction",
    "RuleCandidate",
    "RuleCondition",
    "RuleKey",
    "RuleMutation",
    "RulePerformance",
    "RuleStatus",
    "RuleTest",
    "ThresholdAdjust",
    # Repositories
    "CandidateRepository",
    "HistoryLedger",
    "LineageLocks",
    "MutationRepository",
    "RuleRepository",
    "TestRepository",
    # Engine
    "RuleEvolutionEngine",
    "default_rules",
]
