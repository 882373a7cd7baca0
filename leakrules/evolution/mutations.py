"""
Mutation generation and candidate materialization.

The generator runs a local, rule-at-a-time search: it perturbs numeric
thresholds and proposes dropping low-confidence conditions. The builder
turns one mutation into a complete alternate rule body without touching
the parent rule.
"""

import copy
import uuid
from datetime import datetime, timedelta
from typing import List

from loguru import logger

from leakrules.config import EvolutionConfig
from leakrules.evolution.errors import InvalidStateError, NotFoundError
from leakrules.evolution.repositories import (
    CandidateRepository,
    HistoryLedger,
    LineageLocks,
    MutationRepository,
    RuleRepository,
    TestRepository,
)
from leakrules.evolution.schemas import (
    ABTestPeriod,
    ConditionAdd,
    ConditionRemove,
    EvolvableRule,
    HistoryEventType,
    MutationChange,
    MutationStatus,
    RuleCandidate,
    RuleCondition,
    RuleMutation,
    ThresholdAdjust,
    is_numeric,
)

THRESHOLD_STEP = 0.1


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def apply_change(conditions: List[RuleCondition], changes: MutationChange) -> List[RuleCondition]:
    """
    Return a new condition list with ``changes`` applied.

    The input list and its conditions are left untouched.
    """
    result = copy.deepcopy(conditions)

    if isinstance(changes, ThresholdAdjust):
        for condition in result:
            if condition.field == changes.field:
                condition.value = changes.to_value
        return result
    elif isinstance(changes, ConditionRemove):
        removed = set(changes.fields)
        return [c for c in result if c.field not in removed]
    elif isinstance(changes, ConditionAdd):
        result.append(copy.deepcopy(changes.condition))
        return result

    raise ValueError(f"Unsupported mutation payload: {type(changes).__name__}")


class MutationGenerator:
    """Proposes candidate modifications for a single rule."""

    def __init__(
        self,
        rules: RuleRepository,
        mutations: MutationRepository,
        config: EvolutionConfig,
    ):
        self.rules = rules
        self.mutations = mutations
        self.config = config

    def generate_mutations(self, rule_id: str) -> List[RuleMutation]:
        """
        Generate and store mutations for a rule.

        Every numeric condition yields a raised and a lowered threshold.
        Conditions below the low-confidence threshold are proposed for
        removal together in a single mutation.

        Args:
            rule_id: Display id of the target rule

        Returns:
            The new mutations, all in ``proposed`` status

        Raises:
            NotFoundError: If the rule is unknown
        """
        rule = self.rules.require(rule_id)
        generated: List[RuleMutation] = []

        for condition in rule.conditions:
            if not is_numeric(condition.value):
                continue

            generated.append(
                self._create(
                    rule,
                    ThresholdAdjust(
                        field=condition.field,
                        from_value=condition.value,
                        to_value=condition.value * (1 + THRESHOLD_STEP),
                    ),
                    f"Increase {condition.field} threshold by 10% to reduce false positives",
                )
            )
            generated.append(
                self._create(
                    rule,
                    ThresholdAdjust(
                        field=condition.field,
                        from_value=condition.value,
                        to_value=condition.value * (1 - THRESHOLD_STEP),
                    ),
                    f"Decrease {condition.field} threshold by 10% to improve recall",
                )
            )

        low_confidence = [
            c.field for c in rule.conditions if c.confidence < self.config.low_confidence_threshold
        ]
        if low_confidence:
            generated.append(
                self._create(
                    rule,
                    ConditionRemove(fields=low_confidence),
                    "Remove low-confidence conditions to simplify rule",
                )
            )

        for mutation in generated:
            self.mutations.add(mutation)

        logger.debug(f"Generated {len(generated)} mutations for {rule.id}")
        return generated

    def propose(self, rule_id: str, changes: MutationChange, hypothesis: str) -> RuleMutation:
        """
        Store a caller-supplied mutation, e.g. a ``ConditionAdd``.

        Raises:
            NotFoundError: If the rule is unknown
        """
        rule = self.rules.require(rule_id)
        mutation = self._create(rule, changes, hypothesis)
        self.mutations.add(mutation)
        logger.debug(f"Proposed {mutation.mutation_type.value} mutation {mutation.id} for {rule.id}")
        return mutation

    def _create(
        self, rule: EvolvableRule, changes: MutationChange, hypothesis: str
    ) -> RuleMutation:
        return RuleMutation(
            id=_new_id("mut"),
            rule_key=rule.key,
            changes=changes,
            hypothesis=hypothesis,
            status=MutationStatus.PROPOSED,
            created_at=datetime.now(),
        )


class CandidateBuilder:
    """Materializes mutations into candidates and discards losing ones."""

    def __init__(
        self,
        rules: RuleRepository,
        mutations: MutationRepository,
        candidates: CandidateRepository,
        tests: TestRepository,
        history: HistoryLedger,
        locks: LineageLocks,
        config: EvolutionConfig,
    ):
        self.rules = rules
        self.mutations = mutations
        self.candidates = candidates
        self.tests = tests
        self.history = history
        self.locks = locks
        self.config = config

    def apply_mutation(self, mutation_id: str) -> RuleCandidate:
        """
        Build a candidate from a proposed mutation.

        Args:
            mutation_id: Id of a mutation in ``proposed`` status

        Returns:
            The stored candidate

        Raises:
            NotFoundError: If the mutation or its target rule is missing
            InvalidStateError: If the mutation was already applied or rejected
        """
        mutation = self.mutations.require(mutation_id)
        rule = self.rules.get(mutation.rule_key)
        if rule is None:
            raise NotFoundError("Rule", mutation.rule_id)

        with self.locks.hold(rule.family_id):
            if mutation.status != MutationStatus.PROPOSED:
                raise InvalidStateError(
                    f"Mutation {mutation.id} is {mutation.status.value}, expected proposed"
                )

            now = datetime.now()
            candidate = RuleCandidate(
                id=_new_id("cand"),
                parent_key=rule.key,
                mutation_id=mutation.id,
                conditions=apply_change(rule.conditions, mutation.changes),
                actions=copy.deepcopy(rule.actions),
                hypothesis=mutation.hypothesis,
                expected_improvement=self.config.expected_improvement,
                test_period=ABTestPeriod(
                    start=now,
                    end=now + timedelta(days=self.config.testing_period_days),
                ),
            )

            self.candidates.add(candidate)
            mutation.transition(MutationStatus.TESTING)

        self.history.append(
            rule.id, HistoryEventType.MUTATED, f"Mutation applied: {mutation.hypothesis}"
        )
        logger.info(f"Applied mutation {mutation.id} to {rule.id} -> candidate {candidate.id}")
        return candidate

    def discard_candidate(self, candidate_id: str) -> RuleCandidate:
        """
        Drop a candidate that lost or tied its test.

        A test still running for the candidate is cancelled, and the source
        mutation, if still under test, is marked rejected.

        Raises:
            NotFoundError: If the candidate is unknown
        """
        candidate = self.candidates.require(candidate_id)
        family_id = candidate.parent_key.family_id if candidate.parent_key else candidate.id

        with self.locks.hold(family_id):
            if not self.candidates.delete(candidate_id):
                raise NotFoundError("Candidate", candidate_id)

            for test in self.tests.running_for_candidate(candidate.id):
                test.cancel()
                self.history.append(
                    test.rule_id, HistoryEventType.TESTED, f"A/B test cancelled: {test.id}"
                )
                logger.info(f"Cancelled A/B test {test.id} of discarded candidate {candidate.id}")

            if candidate.mutation_id:
                mutation = self.mutations.get(candidate.mutation_id)
                if mutation is not None and mutation.status == MutationStatus.TESTING:
                    mutation.transition(MutationStatus.REJECTED)

            if candidate.parent_rule_id:
                self.history.append(
                    candidate.parent_rule_id,
                    HistoryEventType.TESTED,
                    f"Candidate {candidate.id} discarded",
                )

        logger.info(f"Discarded candidate {candidate.id}")
        return candidate
