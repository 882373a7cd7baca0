"""
In-memory repositories for rule evolution state.

Each repository owns one entity type and guards its map with its own lock,
so the engine can be given fakes in tests or a persistent backing store in
production without touching the evolution algorithms.
"""

import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, Iterator, List, Optional

from loguru import logger

from leakrules.evolution.errors import InvalidStateError, NotFoundError
from leakrules.evolution.schemas import (
    ABTestStatus,
    EvolutionHistory,
    EvolvableRule,
    HistoryEvent,
    HistoryEventType,
    MutationStatus,
    RuleCandidate,
    RuleKey,
    RuleMutation,
    RuleStatus,
    RuleTest,
)


class RuleRepository:
    """
    Stores every version of every rule, keyed by ``RuleKey``.

    A display-id index lets callers at the API boundary look rules up by
    their string id without any parsing.
    """

    def __init__(self):
        self._rules: Dict[RuleKey, EvolvableRule] = {}
        self._ids: Dict[str, RuleKey] = {}
        self._lock = threading.RLock()

    def add(self, rule: EvolvableRule) -> None:
        """
        Store a new rule version.

        Raises:
            InvalidStateError: If the id is taken, or the rule is active and
                its family already has an active version
        """
        with self._lock:
            self._check_insertable(rule)
            self._insert(rule)

    def get(self, key: RuleKey) -> Optional[EvolvableRule]:
        with self._lock:
            return self._rules.get(key)

    def find(self, rule_id: str) -> Optional[EvolvableRule]:
        """Look up a rule by its display id."""
        with self._lock:
            key = self._ids.get(rule_id)
            return self._rules.get(key) if key else None

    def require(self, rule_id: str) -> EvolvableRule:
        rule = self.find(rule_id)
        if rule is None:
            raise NotFoundError("Rule", rule_id)
        return rule

    def list_all(self) -> List[EvolvableRule]:
        with self._lock:
            return list(self._rules.values())

    def list_active(self) -> List[EvolvableRule]:
        with self._lock:
            return [r for r in self._rules.values() if r.is_active]

    def active_in_family(self, family_id: str) -> Optional[EvolvableRule]:
        with self._lock:
            for rule in self._rules.values():
                if rule.family_id == family_id and rule.is_active:
                    return rule
            return None

    def family(self, family_id: str) -> List[EvolvableRule]:
        """All versions of a family, oldest first."""
        with self._lock:
            versions = [r for r in self._rules.values() if r.family_id == family_id]
        return sorted(versions, key=lambda r: r.version)

    def supersede(self, old_key: RuleKey, new_rule: EvolvableRule) -> EvolvableRule:
        """
        Deprecate ``old_key`` and install ``new_rule`` as one atomic step.

        Readers holding the repository lock never observe both versions
        active, nor the family without an active version.

        Raises:
            NotFoundError: If ``old_key`` is unknown
            InvalidStateError: If the old rule is not active or the new id
                is already taken
        """
        with self._lock:
            old = self._rules.get(old_key)
            if old is None:
                raise NotFoundError("Rule", old_key.display_id)
            if not old.is_active:
                raise InvalidStateError(
                    f"Rule {old.id} is {old.status.value}, only active rules can be superseded"
                )
            if new_rule.key in self._rules:
                raise InvalidStateError(f"Rule {new_rule.id} already exists")

            old.status = RuleStatus.DEPRECATED
            old.last_modified = datetime.now()
            self._insert(new_rule)

        logger.debug(f"Superseded {old_key} with {new_rule.key}")
        return old

    def __len__(self) -> int:
        with self._lock:
            return len(self._rules)

    def _check_insertable(self, rule: EvolvableRule) -> None:
        if rule.key in self._rules:
            raise InvalidStateError(f"Rule {rule.id} already exists")
        if rule.is_active:
            current = self.active_in_family(rule.family_id)
            if current is not None:
                raise InvalidStateError(
                    f"Family {rule.family_id} already has active version {current.id}"
                )

    def _insert(self, rule: EvolvableRule) -> None:
        self._rules[rule.key] = rule
        self._ids[rule.id] = rule.key


class MutationRepository:
    """Stores generated mutations by id."""

    def __init__(self):
        self._mutations: Dict[str, RuleMutation] = {}
        self._lock = threading.RLock()

    def add(self, mutation: RuleMutation) -> None:
        with self._lock:
            self._mutations[mutation.id] = mutation

    def get(self, mutation_id: str) -> Optional[RuleMutation]:
        with self._lock:
            return self._mutations.get(mutation_id)

    def require(self, mutation_id: str) -> RuleMutation:
        mutation = self.get(mutation_id)
        if mutation is None:
            raise NotFoundError("Mutation", mutation_id)
        return mutation

    def list_all(self) -> List[RuleMutation]:
        with self._lock:
            return list(self._mutations.values())

    def list_pending(self) -> List[RuleMutation]:
        with self._lock:
            return [m for m in self._mutations.values() if m.status == MutationStatus.PROPOSED]


class CandidateRepository:
    """Stores ephemeral candidates until they are promoted or discarded."""

    def __init__(self):
        self._candidates: Dict[str, RuleCandidate] = {}
        self._lock = threading.RLock()

    def add(self, candidate: RuleCandidate) -> None:
        with self._lock:
            self._candidates[candidate.id] = candidate

    def get(self, candidate_id: str) -> Optional[RuleCandidate]:
        with self._lock:
            return self._candidates.get(candidate_id)

    def require(self, candidate_id: str) -> RuleCandidate:
        candidate = self.get(candidate_id)
        if candidate is None:
            raise NotFoundError("Candidate", candidate_id)
        return candidate

    def delete(self, candidate_id: str) -> bool:
        with self._lock:
            return self._candidates.pop(candidate_id, None) is not None

    def list_all(self) -> List[RuleCandidate]:
        with self._lock:
            return list(self._candidates.values())


class TestRepository:
    """Stores A/B tests by id."""

    __test__ = False

    def __init__(self):
        self._tests: Dict[str, RuleTest] = {}
        self._lock = threading.RLock()

    def add(self, test: RuleTest) -> None:
        with self._lock:
            self._tests[test.id] = test

    def get(self, test_id: str) -> Optional[RuleTest]:
        with self._lock:
            return self._tests.get(test_id)

    def require(self, test_id: str) -> RuleTest:
        test = self.get(test_id)
        if test is None:
            raise NotFoundError("Test", test_id)
        return test

    def list_running(self) -> List[RuleTest]:
        with self._lock:
            return [t for t in self._tests.values() if t.status == ABTestStatus.RUNNING]

    def running_for_candidate(self, candidate_id: str) -> List[RuleTest]:
        with self._lock:
            return [
                t
                for t in self._tests.values()
                if t.candidate_id == candidate_id and t.status == ABTestStatus.RUNNING
            ]

    def list_all(self) -> List[RuleTest]:
        with self._lock:
            return list(self._tests.values())


class HistoryLedger:
    """
    Append-only, per-rule lifecycle event log.

    Events are never modified or removed. Readers get copies, so the
    ledger stays the sole source of truth for audit.
    """

    def __init__(self):
        self._histories: Dict[str, EvolutionHistory] = {}
        self._lock = threading.Lock()

    def open(self, rule_id: str) -> None:
        """Create an empty history for a rule if it has none yet."""
        with self._lock:
            self._histories.setdefault(rule_id, EvolutionHistory(rule_id=rule_id))

    def append(self, rule_id: str, event_type: HistoryEventType, details: str) -> HistoryEvent:
        event = HistoryEvent(timestamp=datetime.now(), event_type=event_type, details=details)
        with self._lock:
            history = self._histories.setdefault(rule_id, EvolutionHistory(rule_id=rule_id))
            history.events.append(event)
        logger.debug(f"History [{rule_id}] {event_type.value}: {details}")
        return event

    def get(self, rule_id: str) -> Optional[EvolutionHistory]:
        with self._lock:
            history = self._histories.get(rule_id)
            if history is None:
                return None
            return EvolutionHistory(rule_id=history.rule_id, events=list(history.events))

    def __contains__(self, rule_id: str) -> bool:
        with self._lock:
            return rule_id in self._histories


class LineageLocks:
    """One re-entrant lock per rule family."""

    def __init__(self):
        self._locks: Dict[str, threading.RLock] = {}
        self._guard = threading.Lock()

    def lock_for(self, family_id: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(family_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[family_id] = lock
            return lock

    @contextmanager
    def hold(self, family_id: str) -> Iterator[None]:
        with self.lock_for(family_id):
            yield
