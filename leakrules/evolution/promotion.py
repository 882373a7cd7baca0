"""
Promotion of winning candidates into new rule versions.
"""

import copy
from datetime import datetime

from loguru import logger

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
    ABTestWinner,
    EvolvableRule,
    HistoryEventType,
    MutationStatus,
    RuleStatus,
)


class PromotionManager:
    """Installs a candidate as the next version of its parent's family."""

    def __init__(
        self,
        rules: RuleRepository,
        mutations: MutationRepository,
        candidates: CandidateRepository,
        tests: TestRepository,
        history: HistoryLedger,
        locks: LineageLocks,
    ):
        self.rules = rules
        self.mutations = mutations
        self.candidates = candidates
        self.tests = tests
        self.history = history
        self.locks = locks

    def promote_candidate(self, candidate_id: str) -> EvolvableRule:
        """
        Promote a candidate to the active version of its rule family.

        The parent is deprecated and the child installed as a single atomic
        repository step, so the family never has two active versions.

        Args:
            candidate_id: Candidate to promote

        Returns:
            The newly active rule version

        Raises:
            NotFoundError: If the candidate or its parent rule is missing
            InvalidStateError: If the candidate has no parent, the parent is
                no longer active, the candidate is still under test or lost
                its completed test, or the next version already exists
        """
        candidate = self.candidates.require(candidate_id)
        if candidate.parent_key is None:
            raise InvalidStateError(f"Candidate {candidate.id} has no parent rule")

        with self.locks.hold(candidate.parent_key.family_id):
            parent = self.rules.get(candidate.parent_key)
            if parent is None:
                raise NotFoundError("Rule", candidate.parent_key.display_id)
            if not parent.is_active:
                raise InvalidStateError(
                    f"Parent rule {parent.id} is {parent.status.value}, cannot promote onto it"
                )
            running = self.tests.running_for_candidate(candidate.id)
            if running:
                raise InvalidStateError(
                    f"Candidate {candidate.id} is still under test in {running[0].id}"
                )
            if candidate.test_winner not in (None, ABTestWinner.CANDIDATE):
                raise InvalidStateError(
                    f"Candidate {candidate.id} did not win its test "
                    f"(winner: {candidate.test_winner.value})"
                )

            now = datetime.now()
            performance = candidate.test_results or parent.performance
            child = EvolvableRule(
                key=parent.key.next(),
                name=parent.name,
                description=parent.description,
                leak_type=parent.leak_type,
                conditions=copy.deepcopy(candidate.conditions),
                actions=copy.deepcopy(candidate.actions),
                performance=copy.deepcopy(performance),
                status=RuleStatus.ACTIVE,
                parent_key=parent.key,
                created_at=now,
                last_modified=now,
            )

            self.rules.supersede(parent.key, child)
            self.candidates.delete(candidate.id)

            if candidate.mutation_id:
                mutation = self.mutations.get(candidate.mutation_id)
                if mutation is not None and mutation.status == MutationStatus.TESTING:
                    mutation.transition(MutationStatus.ADOPTED)

            self.history.open(child.id)
            self.history.append(parent.id, HistoryEventType.DEPRECATED, f"Superseded by {child.id}")
            self.history.append(child.id, HistoryEventType.PROMOTED, f"Evolved from {parent.id}")

        logger.info(f"Promoted candidate {candidate.id}: {parent.id} -> {child.id}")
        return child
