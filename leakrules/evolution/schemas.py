"""
Data structures for rule evolution.

Defines versioned detection rules, their conditions and performance, the
mutation payloads proposed against them, candidates built from mutations,
A/B tests and the per-rule history ledger entries.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Union

from leakrules.evolution.errors import InvalidStateError

ConditionValue = Union[int, float, str, bool, None]


class LeakType(str, Enum):
    """Category of revenue anomaly a rule targets."""

    UNDERBILLING = "underbilling"
    MISSED_RENEWAL = "missed_renewal"
    UNTRIGGERED_CROSSSELL = "untriggered_crosssell"
    STALLED_CS_HANDOFF = "stalled_cs_handoff"
    INVALID_LIFECYCLE_PATH = "invalid_lifecycle_path"
    BILLING_GAP = "billing_gap"
    STALE_PIPELINE = "stale_pipeline"
    MISSED_HANDOFF = "missed_handoff"
    DATA_QUALITY = "data_quality"


class LeakSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ConditionOperator(str, Enum):
    """Comparison applied between an outcome field and a condition value."""

    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    GREATER_THAN_OR_EQUAL = "greater_than_or_equal"
    LESS_THAN = "less_than"
    LESS_THAN_OR_EQUAL = "less_than_or_equal"


class RuleStatus(str, Enum):
    """Lifecycle status of a rule version."""

    ACTIVE = "active"
    TESTING = "testing"
    DEPRECATED = "deprecated"


class MutationType(str, Enum):
    THRESHOLD_ADJUST = "threshold_adjust"
    CONDITION_REMOVE = "condition_remove"
    CONDITION_ADD = "condition_add"


class MutationStatus(str, Enum):
    """Status of a proposed mutation. Transitions only move forward."""

    PROPOSED = "proposed"
    TESTING = "testing"
    REJECTED = "rejected"
    ADOPTED = "adopted"


_MUTATION_TRANSITIONS = {
    MutationStatus.PROPOSED: {MutationStatus.TESTING, MutationStatus.REJECTED},
    MutationStatus.TESTING: {MutationStatus.ADOPTED, MutationStatus.REJECTED},
    MutationStatus.REJECTED: set(),
    MutationStatus.ADOPTED: set(),
}


class ABTestStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ABTestWinner(str, Enum):
    CONTROL = "control"
    CANDIDATE = "candidate"
    TIE = "tie"


class HistoryEventType(str, Enum):
    CREATED = "created"
    MUTATED = "mutated"
    TESTED = "tested"
    PROMOTED = "promoted"
    DEPRECATED = "deprecated"


def is_numeric(value: Any) -> bool:
    """True for int and float values. Booleans are not thresholds."""
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


@dataclass(frozen=True)
class RuleKey:
    """
    Composite identity of a rule version.

    All versions of a rule share a family id; the display id used at the
    API boundary is derived, never parsed.
    """

    family_id: str
    version: int = 1

    def __post_init__(self) -> None:
        if not self.family_id:
            raise ValueError("family_id must not be empty")
        if self.version < 1:
            raise ValueError(f"Version must be >= 1, got {self.version}")

    @property
    def display_id(self) -> str:
        return f"{self.family_id}-v{self.version}"

    def next(self) -> "RuleKey":
        """Key of the next version in the same family."""
        return RuleKey(family_id=self.family_id, version=self.version + 1)

    def __str__(self) -> str:
        return self.display_id

    def to_dict(self) -> Dict[str, Any]:
        return {"family_id": self.family_id, "version": self.version}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RuleKey":
        return cls(family_id=data["family_id"], version=data["version"])


@dataclass
class RuleCondition:
    """A single field/operator/value test with a static confidence weight."""

    field: str
    operator: ConditionOperator
    value: ConditionValue
    confidence: float = 1.0

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"Confidence must be between 0 and 1, got {self.confidence}")
        self.operator = ConditionOperator(self.operator)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field": self.field,
            "operator": self.operator.value,
            "value": self.value,
            "confidence": self.confidence,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RuleCondition":
        return cls(
            field=data["field"],
            operator=ConditionOperator(data["operator"]),
            value=data.get("value"),
            confidence=data.get("confidence", 1.0),
        )


@dataclass
class RuleAction:
    """Side effect taken when a rule's conditions match."""

    type: str
    config: Dict[str, Any] = field(default_factory=dict)
    priority: int = 1

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "config": dict(self.config), "priority": self.priority}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RuleAction":
        return cls(
            type=data["type"],
            config=data.get("config", {}),
            priority=data.get("priority", 1),
        )


@dataclass
class RulePerformance:
    """Running performance metrics of a rule or of a test arm."""

    RATIO_METRICS: ClassVar[tuple] = ("accuracy", "precision", "recall", "f1_score")
    COUNTERS: ClassVar[tuple] = ("total_applications", "successful_applications")

    accuracy: float = 0.0
    precision: float = 0.0
    recall: float = 0.0
    f1_score: float = 0.0
    total_applications: int = 0
    successful_applications: int = 0
    average_impact: float = 0.0

    def __post_init__(self) -> None:
        for name in self.RATIO_METRICS:
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be between 0 and 1, got {value}")
        for name in self.COUNTERS:
            value = getattr(self, name)
            if value < 0:
                raise ValueError(f"{name} must be non-negative, got {value}")

    @classmethod
    def zero(cls) -> "RulePerformance":
        return cls()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "accuracy": self.accuracy,
            "precision": self.precision,
            "recall": self.recall,
            "f1_score": self.f1_score,
            "total_applications": self.total_applications,
            "successful_applications": self.successful_applications,
            "average_impact": self.average_impact,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RulePerformance":
        return cls(
            accuracy=data.get("accuracy", 0.0),
            precision=data.get("precision", 0.0),
            recall=data.get("recall", 0.0),
            f1_score=data.get("f1_score", 0.0),
            total_applications=data.get("total_applications", 0),
            successful_applications=data.get("successful_applications", 0),
            average_impact=data.get("average_impact", 0.0),
        )


@dataclass
class EvolvableRule:
    """A single version of a condition-based leak detection rule."""

    key: RuleKey
    name: str
    leak_type: LeakType
    conditions: List[RuleCondition] = field(default_factory=list)
    actions: List[RuleAction] = field(default_factory=list)
    performance: RulePerformance = field(default_factory=RulePerformance)
    status: RuleStatus = RuleStatus.ACTIVE
    description: str = ""
    parent_key: Optional[RuleKey] = None
    created_at: datetime = field(default_factory=datetime.now)
    last_modified: datetime = field(default_factory=datetime.now)

    def __post_init__(self) -> None:
        self.leak_type = LeakType(self.leak_type)
        self.status = RuleStatus(self.status)

    @property
    def id(self) -> str:
        return self.key.display_id

    @property
    def family_id(self) -> str:
        return self.key.family_id

    @property
    def version(self) -> int:
        return self.key.version

    @property
    def parent_rule_id(self) -> Optional[str]:
        return self.parent_key.display_id if self.parent_key else None

    @property
    def is_active(self) -> bool:
        return self.status == RuleStatus.ACTIVE

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "key": self.key.to_dict(),
            "name": self.name,
            "description": self.description,
            "leak_type": self.leak_type.value,
            "conditions": [c.to_dict() for c in self.conditions],
            "actions": [a.to_dict() for a in self.actions],
            "performance": self.performance.to_dict(),
            "status": self.status.value,
            "parent_key": self.parent_key.to_dict() if self.parent_key else None,
            "created_at": self.created_at.isoformat(),
            "last_modified": self.last_modified.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EvolvableRule":
        """Create from dictionary."""
        return cls(
            key=RuleKey.from_dict(data["key"]),
            name=data["name"],
            description=data.get("description", ""),
            leak_type=LeakType(data["leak_type"]),
            conditions=[RuleCondition.from_dict(c) for c in data.get("conditions", [])],
            actions=[RuleAction.from_dict(a) for a in data.get("actions", [])],
            performance=RulePerformance.from_dict(data.get("performance", {})),
            status=RuleStatus(data.get("status", "active")),
            parent_key=RuleKey.from_dict(data["parent_key"]) if data.get("parent_key") else None,
            created_at=datetime.fromisoformat(data["created_at"]),
            last_modified=datetime.fromisoformat(data["last_modified"]),
        )


@dataclass
class ThresholdAdjust:
    """Rewrite the value of every condition on ``field``."""

    mutation_type: ClassVar[MutationType] = MutationType.THRESHOLD_ADJUST

    field: str
    from_value: Union[int, float]
    to_value: Union[int, float]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.mutation_type.value,
            "field": self.field,
            "from_value": self.from_value,
            "to_value": self.to_value,
        }


@dataclass
class ConditionRemove:
    """Drop every condition whose field is listed."""

    mutation_type: ClassVar[MutationType] = MutationType.CONDITION_REMOVE

    fields: List[str]

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.mutation_type.value, "fields": list(self.fields)}


@dataclass
class ConditionAdd:
    """Append a new condition."""

    mutation_type: ClassVar[MutationType] = MutationType.CONDITION_ADD

    condition: RuleCondition

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.mutation_type.value, "condition": self.condition.to_dict()}


MutationChange = Union[ThresholdAdjust, ConditionRemove, ConditionAdd]


def mutation_change_from_dict(data: Dict[str, Any]) -> MutationChange:
    """Rebuild a mutation payload from its tagged dictionary form."""
    mutation_type = MutationType(data["type"])
    if mutation_type == MutationType.THRESHOLD_ADJUST:
        return ThresholdAdjust(
            field=data["field"], from_value=data["from_value"], to_value=data["to_value"]
        )
    elif mutation_type == MutationType.CONDITION_REMOVE:
        return ConditionRemove(fields=list(data["fields"]))
    elif mutation_type == MutationType.CONDITION_ADD:
        return ConditionAdd(condition=RuleCondition.from_dict(data["condition"]))
    raise ValueError(f"Unknown mutation type: {mutation_type}")


@dataclass
class RuleMutation:
    """A proposed structural change to a rule, not yet in production."""

    id: str
    rule_key: RuleKey
    changes: MutationChange
    hypothesis: str
    status: MutationStatus = MutationStatus.PROPOSED
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def mutation_type(self) -> MutationType:
        return self.changes.mutation_type

    @property
    def rule_id(self) -> str:
        return self.rule_key.display_id

    def transition(self, new_status: MutationStatus) -> None:
        """
        Move the mutation forward in its lifecycle.

        Raises:
            InvalidStateError: If the transition would move backwards or
                out of a terminal state
        """
        if new_status not in _MUTATION_TRANSITIONS[self.status]:
            raise InvalidStateError(
                f"Mutation {self.id} cannot move from {self.status.value} to {new_status.value}"
            )
        self.status = new_status

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "rule_key": self.rule_key.to_dict(),
            "mutation_type": self.mutation_type.value,
            "changes": self.changes.to_dict(),
            "hypothesis": self.hypothesis,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RuleMutation":
        return cls(
            id=data["id"],
            rule_key=RuleKey.from_dict(data["rule_key"]),
            changes=mutation_change_from_dict(data["changes"]),
            hypothesis=data["hypothesis"],
            status=MutationStatus(data.get("status", "proposed")),
            created_at=datetime.fromisoformat(data["created_at"]),
        )


@dataclass
class ABTestPeriod:
    """Advisory wall-clock window of an A/B test."""

    start: datetime
    end: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}


@dataclass
class RuleCandidate:
    """A complete alternate rule body produced by applying one mutation."""

    id: str
    conditions: List[RuleCondition]
    actions: List[RuleAction]
    hypothesis: str
    expected_improvement: float
    test_period: ABTestPeriod
    parent_key: Optional[RuleKey] = None
    mutation_id: Optional[str] = None
    test_results: Optional[RulePerformance] = None
    test_winner: Optional[ABTestWinner] = None

    @property
    def parent_rule_id(self) -> Optional[str]:
        return self.parent_key.display_id if self.parent_key else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "parent_key": self.parent_key.to_dict() if self.parent_key else None,
            "mutation_id": self.mutation_id,
            "conditions": [c.to_dict() for c in self.conditions],
            "actions": [a.to_dict() for a in self.actions],
            "hypothesis": self.hypothesis,
            "expected_improvement": self.expected_improvement,
            "test_period": self.test_period.to_dict(),
            "test_results": self.test_results.to_dict() if self.test_results else None,
            "test_winner": self.test_winner.value if self.test_winner else None,
        }


@dataclass
class RuleTest:
    """A/B comparison of a candidate against its parent rule."""

    id: str
    rule_key: RuleKey
    candidate_id: str
    control_results: RulePerformance
    test_results: RulePerformance = field(default_factory=RulePerformance.zero)
    status: ABTestStatus = ABTestStatus.RUNNING
    start_date: datetime = field(default_factory=datetime.now)
    end_date: Optional[datetime] = None
    winner: Optional[ABTestWinner] = None

    @property
    def rule_id(self) -> str:
        return self.rule_key.display_id

    @property
    def is_running(self) -> bool:
        return self.status == ABTestStatus.RUNNING

    @property
    def f1_delta(self) -> float:
        return self.test_results.f1_score - self.control_results.f1_score

    def cancel(self) -> None:
        """Stop a running test without a winner."""
        if not self.is_running:
            raise InvalidStateError(f"Test {self.id} is {self.status.value}, not running")
        self.status = ABTestStatus.CANCELLED
        self.end_date = datetime.now()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "rule_key": self.rule_key.to_dict(),
            "candidate_id": self.candidate_id,
            "status": self.status.value,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "control_results": self.control_results.to_dict(),
            "test_results": self.test_results.to_dict(),
            "winner": self.winner.value if self.winner else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RuleTest":
        return cls(
            id=data["id"],
            rule_key=RuleKey.from_dict(data["rule_key"]),
            candidate_id=data["candidate_id"],
            status=ABTestStatus(data.get("status", "running")),
            start_date=datetime.fromisoformat(data["start_date"]),
            end_date=_parse_datetime(data.get("end_date")),
            control_results=RulePerformance.from_dict(data["control_results"]),
            test_results=RulePerformance.from_dict(data.get("test_results", {})),
            winner=ABTestWinner(data["winner"]) if data.get("winner") else None,
        )


@dataclass(frozen=True)
class HistoryEvent:
    timestamp: datetime
    event_type: HistoryEventType
    details: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "details": self.details,
        }


@dataclass
class EvolutionHistory:
    """Ordered lifecycle events of a single rule version."""

    rule_id: str
    events: List[HistoryEvent] = field(default_factory=list)

    def event_types(self) -> List[HistoryEventType]:
        return [e.event_type for e in self.events]

    def to_dict(self) -> Dict[str, Any]:
        return {"rule_id": self.rule_id, "events": [e.to_dict() for e in self.events]}


@dataclass
class RevenueLeak:
    """A classified outcome produced by the upstream detection engine."""

    id: str
    type: LeakType
    severity: LeakSeverity = LeakSeverity.MEDIUM
    description: str = ""
    potential_revenue: float = 0.0
    affected_entity: Dict[str, Any] = field(default_factory=dict)
    detected_at: datetime = field(default_factory=datetime.now)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.type = LeakType(self.type)
        self.severity = LeakSeverity(self.severity)

    def get_field(self, name: str) -> Any:
        """Resolve a condition field against this outcome."""
        if name == "severity":
            return self.severity.value
        if name == "potential_revenue":
            return self.potential_revenue
        if name == "type":
            return self.type.value
        return self.metadata.get(name)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RevenueLeak":
        return cls(
            id=data["id"],
            type=LeakType(data["type"]),
            severity=LeakSeverity(data.get("severity", "medium")),
            description=data.get("description", ""),
            potential_revenue=data.get("potential_revenue", 0.0),
            affected_entity=data.get("affected_entity", {}),
            detected_at=_parse_datetime(data.get("detected_at")) or datetime.now(),
            metadata=data.get("metadata", {}),
        )


@dataclass
class EvolutionStats:
    """Summary counters across the rule population."""

    total_rules: int
    active_rules: int
    deprecated_rules: int
    average_performance: float
    pending_mutations: int
    active_tests: int
    promoted_rules: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_rules": self.total_rules,
            "active_rules": self.active_rules,
            "deprecated_rules": self.deprecated_rules,
            "average_performance": self.average_performance,
            "pending_mutations": self.pending_mutations,
            "active_tests": self.active_tests,
            "promoted_rules": self.promoted_rules,
        }


@dataclass
class AutoEvolveResult:
    """Outcome of one auto-evolution cycle."""

    evolved_rules: List[str] = field(default_factory=list)
    mutations: List[RuleMutation] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "evolved_rules": list(self.evolved_rules),
            "mutations": [m.to_dict() for m in self.mutations],
        }
