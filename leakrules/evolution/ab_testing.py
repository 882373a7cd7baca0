"""
A/B Testing controller for candidate rules.

Compares a candidate's live performance against a snapshot of its parent
rule over an advisory test window. The decision is a deterministic F1
threshold rule, not a significance test.
"""

import copy
import uuid
from datetime import datetime
from typing import Dict, List, Optional

from loguru import logger

from leakrules.config import EvolutionConfig
from leakrules.evolution.errors import InvalidStateError
from leakrules.evolution.repositories import (
    CandidateRepository,
    HistoryLedger,
    LineageLocks,
    RuleRepository,
    TestRepository,
)
from leakrules.evolution.schemas import (
    ABTestStatus,
    ABTestWinner,
    HistoryEventType,
    RulePerformance,
    RuleTest,
)


def decide_winner(
    control: RulePerformance, test: RulePerformance, improvement_threshold: float
) -> ABTestWinner:
    """
    Pick the winner of a test from the two arms' F1 scores.

    Either side must lead by more than ``improvement_threshold``,
    otherwise the result is a tie.
    """
    if test.f1_score > control.f1_score + improvement_threshold:
        return ABTestWinner.CANDIDATE
    elif control.f1_score > test.f1_score + improvement_threshold:
        return ABTestWinner.CONTROL
    return ABTestWinner.TIE


class ABTestController:
    """
    Manages the lifecycle of candidate-vs-parent comparisons.

    Workflow:
    1. start_test snapshots the parent's performance as the control arm
    2. record_test_results accumulates scored outcomes for the candidate arm
    3. complete_test decides the winner and freezes it
    4. The caller promotes the candidate on a win or discards it otherwise

    Results may be recorded from many threads at once; every
    check-and-update runs under the rule family's lock.
    """

    def __init__(
        self,
        rules: RuleRepository,
        candidates: CandidateRepository,
        tests: TestRepository,
        history: HistoryLedger,
        locks: LineageLocks,
        config: EvolutionConfig,
    ):
        self.rules = rules
        self.candidates = candidates
        self.tests = tests
        self.history = history
        self.locks = locks
        self.config = config

    def start_test(self, rule_id: str, candidate_id: str) -> RuleTest:
        """
        Start an A/B test of a candidate against its parent rule.

        Args:
            rule_id: Display id of the parent (control) rule
            candidate_id: Candidate under test

        Returns:
            The running test

        Raises:
            NotFoundError: If either id does not resolve
            InvalidStateError: If the candidate was not derived from the rule
                or is already under test
        """
        rule = self.rules.require(rule_id)
        candidate = self.candidates.require(candidate_id)

        if candidate.parent_key != rule.key:
            raise InvalidStateError(
                f"Candidate {candidate.id} was derived from {candidate.parent_rule_id}, not {rule.id}"
            )

        with self.locks.hold(rule.family_id):
            running = self.tests.running_for_candidate(candidate.id)
            if running:
                raise InvalidStateError(
                    f"Candidate {candidate.id} is already under test in {running[0].id}"
                )

            test = RuleTest(
                id=f"abtest_{uuid.uuid4().hex[:12]}",
                rule_key=rule.key,
                candidate_id=candidate.id,
                control_results=copy.deepcopy(rule.performance),
                test_results=RulePerformance.zero(),
                status=ABTestStatus.RUNNING,
                start_date=datetime.now(),
            )
            self.tests.add(test)
            self.history.append(rule.id, HistoryEventType.TESTED, f"A/B test started: {test.id}")

        logger.info(f"Started A/B test {test.id}: {rule.id} vs candidate {candidate.id}")
        return test

    def record_test_results(self, test_id: str, metrics: Dict[str, float]) -> RuleTest:
        """
        Merge a partial metric update into a running test's candidate arm.

        Given fields overwrite the accumulated values, then the application
        counter is incremented once for the scored outcome.

        Args:
            test_id: Running test
            metrics: Partial ``RulePerformance`` fields, e.g. ``{"f1_score": 0.8}``

        Raises:
            NotFoundError: If the test is unknown
            InvalidStateError: If the test is no longer running
            ValueError: For unknown metric names, non-numeric values, ratios
                outside [0, 1] or counters that are not non-negative integers
        """
        test = self.tests.require(test_id)
        _validate_metrics(metrics)

        with self.locks.hold(test.rule_key.family_id):
            if not test.is_running:
                raise InvalidStateError(f"Test {test.id} is {test.status.value}, not running")

            for name, value in metrics.items():
                setattr(test.test_results, name, value)
            test.test_results.total_applications += 1

        logger.debug(
            f"Recorded results for {test.id}: f1={test.test_results.f1_score:.3f}, "
            f"n={test.test_results.total_applications}"
        )
        return test

    def complete_test(self, test_id: str) -> RuleTest:
        """
        Complete a running test and determine the winner.

        The winner and the candidate arm's results are copied onto the
        candidate so promotion can check them.

        Raises:
            NotFoundError: If the test is unknown
            InvalidStateError: If the test already completed or was cancelled
        """
        test = self.tests.require(test_id)

        with self.locks.hold(test.rule_key.family_id):
            if not test.is_running:
                raise InvalidStateError(f"Test {test.id} is {test.status.value}, not running")

            test.winner = decide_winner(
                test.control_results, test.test_results, self.config.improvement_threshold
            )
            test.status = ABTestStatus.COMPLETED
            test.end_date = datetime.now()

            candidate = self.candidates.get(test.candidate_id)
            if candidate is not None:
                candidate.test_results = copy.deepcopy(test.test_results)
                candidate.test_winner = test.winner

            self.history.append(
                test.rule_id,
                HistoryEventType.TESTED,
                f"A/B test completed. Winner: {test.winner.value}",
            )

        logger.info(
            f"Completed A/B test {test.id}: winner={test.winner.value} "
            f"(delta f1={test.f1_delta:+.3f})"
        )
        return test

    def cancel_test(self, test_id: str) -> RuleTest:
        """
        Cancel a running test without picking a winner.

        Raises:
            NotFoundError: If the test is unknown
            InvalidStateError: If the test is not running
        """
        test = self.tests.require(test_id)

        with self.locks.hold(test.rule_key.family_id):
            test.cancel()
            self.history.append(
                test.rule_id, HistoryEventType.TESTED, f"A/B test cancelled: {test.id}"
            )

        logger.info(f"Cancelled A/B test {test.id}")
        return test

    def get_test(self, test_id: str) -> Optional[RuleTest]:
        return self.tests.get(test_id)

    def get_active_tests(self) -> List[RuleTest]:
        return self.tests.list_running()


def _validate_metrics(metrics: Dict[str, float]) -> None:
    allowed = set(RulePerformance().to_dict())
    for name, value in metrics.items():
        if name not in allowed:
            raise ValueError(f"Unknown performance metric: {name}")
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"{name} must be a number, got {value!r}")
        if name in RulePerformance.RATIO_METRICS and not 0.0 <= value <= 1.0:
            raise ValueError(f"{name} must be between 0 and 1, got {value}")
        if name in RulePerformance.COUNTERS:
            if not isinstance(value, int):
                raise ValueError(f"{name} must be an integer, got {value!r}")
            if value < 0:
                raise ValueError(f"{name} must be non-negative, got {value}")
