"""
Scoring of active rules against batches of classified outcomes.

Every condition match is counted as a true positive: no confirmed-negative
signal reaches this layer, so false positives stay at zero and precision
is biased upward. Batch scores are merged into each rule's stored metrics
with an exponential moving average so one noisy batch cannot swing a
rule's long-run score.
"""

from datetime import datetime
from typing import Any, Dict, Iterable, List

from loguru import logger

from leakrules.config import EvolutionConfig
from leakrules.evolution.repositories import LineageLocks, RuleRepository
from leakrules.evolution.schemas import (
    ConditionOperator,
    EvolvableRule,
    RevenueLeak,
    RuleCondition,
    RulePerformance,
    is_numeric,
)


def _safe_ratio(numerator: float, denominator: float) -> float:
    return numerator / denominator if denominator else 0.0


def _clamp(value: float) -> float:
    return min(1.0, max(0.0, value))


def _as_number(value: Any):
    if is_numeric(value):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def _strict_equals(left: Any, right: Any) -> bool:
    # 0 == False in Python; flags only equal flags.
    if isinstance(left, bool) != isinstance(right, bool):
        return False
    return left == right


def evaluate_condition(condition: RuleCondition, value: Any) -> bool:
    """
    Test a single outcome value against a condition.

    Missing values never match. Numeric operators fail on values that do
    not convert to numbers.
    """
    if value is None:
        return False

    operator = condition.operator
    if operator == ConditionOperator.EQUALS:
        return _strict_equals(value, condition.value)
    elif operator == ConditionOperator.NOT_EQUALS:
        return not _strict_equals(value, condition.value)

    left = _as_number(value)
    right = _as_number(condition.value)
    if left is None or right is None:
        return False

    if operator == ConditionOperator.GREATER_THAN:
        return left > right
    elif operator == ConditionOperator.GREATER_THAN_OR_EQUAL:
        return left >= right
    elif operator == ConditionOperator.LESS_THAN:
        return left < right
    elif operator == ConditionOperator.LESS_THAN_OR_EQUAL:
        return left <= right
    return False


def evaluate_conditions(conditions: List[RuleCondition], leak: RevenueLeak) -> bool:
    """All conditions must hold (logical AND)."""
    return all(evaluate_condition(c, leak.get_field(c.field)) for c in conditions)


def merge_performance(
    existing: RulePerformance, batch: RulePerformance, weight: float = 0.3
) -> RulePerformance:
    """
    Merge a batch score into a running score.

    Ratios use an exponential moving average favoring ``existing``,
    counters accumulate and average impact is the mean of both values.
    """
    return RulePerformance(
        accuracy=_clamp(existing.accuracy * (1 - weight) + batch.accuracy * weight),
        precision=_clamp(existing.precision * (1 - weight) + batch.precision * weight),
        recall=_clamp(existing.recall * (1 - weight) + batch.recall * weight),
        f1_score=_clamp(existing.f1_score * (1 - weight) + batch.f1_score * weight),
        total_applications=existing.total_applications + batch.total_applications,
        successful_applications=existing.successful_applications + batch.successful_applications,
        average_impact=(existing.average_impact + batch.average_impact) / 2,
    )


def score_batch(rule: EvolvableRule, outcomes: List[RevenueLeak]) -> RulePerformance:
    """
    Score one rule against outcomes already filtered to its leak type.

    Args:
        rule: Rule to score
        outcomes: Non-empty list of outcomes of the rule's leak type

    Returns:
        Batch performance with batch-sized counters
    """
    true_positives = 0
    false_positives = 0
    total_impact = 0.0

    for leak in outcomes:
        if evaluate_conditions(rule.conditions, leak):
            true_positives += 1
            total_impact += leak.potential_revenue

    precision = _safe_ratio(true_positives, true_positives + false_positives)
    recall = _safe_ratio(true_positives, len(outcomes))
    f1_score = _clamp(_safe_ratio(2 * precision * recall, precision + recall))

    if true_positives:
        average_impact = total_impact / true_positives
    else:
        average_impact = rule.performance.average_impact

    return RulePerformance(
        accuracy=f1_score,
        precision=precision,
        recall=recall,
        f1_score=f1_score,
        total_applications=len(outcomes),
        successful_applications=true_positives,
        average_impact=average_impact,
    )


class RuleEvaluator:
    """Scores active rules and folds the scores into their running metrics."""

    def __init__(self, rules: RuleRepository, locks: LineageLocks, config: EvolutionConfig):
        self.rules = rules
        self.locks = locks
        self.config = config

    def evaluate_rules(self, outcomes: Iterable[RevenueLeak]) -> Dict[str, RulePerformance]:
        """
        Evaluate every active rule against a batch of outcomes.

        Rules with no outcome of their leak type are skipped and keep their
        performance unchanged.

        Args:
            outcomes: Classified outcomes from the detection engine

        Returns:
            Batch performance keyed by rule id, for scored rules only
        """
        batch = list(outcomes)
        results: Dict[str, RulePerformance] = {}
        if not batch:
            return results

        for rule in self.rules.list_active():
            relevant = [leak for leak in batch if leak.type == rule.leak_type]
            if not relevant:
                continue

            with self.locks.hold(rule.family_id):
                # Promotion may have retired the rule since the listing.
                if not rule.is_active:
                    continue

                performance = score_batch(rule, relevant)
                rule.performance = merge_performance(
                    rule.performance, performance, self.config.merge_weight
                )
                rule.last_modified = datetime.now()

            results[rule.id] = performance
            logger.debug(
                f"Evaluated {rule.id} on {len(relevant)} outcomes: "
                f"f1={performance.f1_score:.3f}, merged f1={rule.performance.f1_score:.3f}"
            )

        logger.info(f"Evaluated {len(results)} rules against {len(batch)} outcomes")
        return results
