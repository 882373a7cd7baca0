"""
Default catalog of evolvable leak detection rules.

Each call builds fresh rule objects so engines never share state.
"""

from datetime import datetime
from typing import List

from leakrules.evolution.schemas import (
    ConditionOperator,
    EvolvableRule,
    LeakType,
    RuleAction,
    RuleCondition,
    RuleKey,
    RulePerformance,
    RuleStatus,
)

EQ = ConditionOperator.EQUALS
GT = ConditionOperator.GREATER_THAN
LT = ConditionOperator.LESS_THAN


def _rule(
    family_id: str,
    name: str,
    description: str,
    leak_type: LeakType,
    conditions: List[RuleCondition],
    actions: List[RuleAction],
    performance: RulePerformance,
) -> EvolvableRule:
    now = datetime.now()
    return EvolvableRule(
        key=RuleKey(family_id=family_id, version=1),
        name=name,
        description=description,
        leak_type=leak_type,
        conditions=conditions,
        actions=actions,
        performance=performance,
        status=RuleStatus.ACTIVE,
        created_at=now,
        last_modified=now,
    )


def default_rules() -> List[EvolvableRule]:
    """The seeded rule set, one active version per family."""
    return [
        _rule(
            "underbilling",
            "Underbilling Detection",
            "Detect deals priced significantly below pipeline average",
            LeakType.UNDERBILLING,
            [
                # deal amount as a fraction of the pipeline average
                RuleCondition("deal_amount", LT, 0.7, confidence=0.85),
                RuleCondition("discount_applied", EQ, False, confidence=0.6),
            ],
            [
                RuleAction("flag", {"severity": "medium"}, priority=1),
                RuleAction("notify", {"recipient": "deal_owner"}, priority=2),
            ],
            RulePerformance(
                accuracy=0.82,
                precision=0.78,
                recall=0.85,
                f1_score=0.81,
                total_applications=500,
                successful_applications=410,
                average_impact=5000,
            ),
        ),
        _rule(
            "missed-renewal",
            "Missed Renewal Detection",
            "Detect contracts approaching renewal without engagement",
            LeakType.MISSED_RENEWAL,
            [
                RuleCondition("days_to_renewal", LT, 90, confidence=0.9),
                RuleCondition("last_engagement_days", GT, 30, confidence=0.75),
            ],
            [
                RuleAction("flag", {"severity": "high"}, priority=1),
                RuleAction("create_task", {"type": "renewal_outreach"}, priority=2),
            ],
            RulePerformance(
                accuracy=0.75,
                precision=0.72,
                recall=0.80,
                f1_score=0.76,
                total_applications=300,
                successful_applications=225,
                average_impact=15000,
            ),
        ),
        _rule(
            "cs-handoff",
            "CS Handoff Detection",
            "Detect won deals without CS owner assignment",
            LeakType.STALLED_CS_HANDOFF,
            [
                RuleCondition("deal_status", EQ, "won", confidence=1.0),
                RuleCondition("cs_owner", EQ, None, confidence=0.95),
                RuleCondition("days_since_close", GT, 3, confidence=0.8),
            ],
            [
                RuleAction("auto_assign", {"assignType": "round_robin"}, priority=1),
                RuleAction("notify", {"recipient": "cs_manager"}, priority=2),
            ],
            RulePerformance(
                accuracy=0.92,
                precision=0.90,
                recall=0.94,
                f1_score=0.92,
                total_applications=200,
                successful_applications=184,
                average_impact=8000,
            ),
        ),
        _rule(
            "crosssell",
            "Cross-sell Opportunity Detection",
            "Detect customers eligible for product expansion",
            LeakType.UNTRIGGERED_CROSSSELL,
            [
                RuleCondition("customer_tenure_months", GT, 6, confidence=0.7),
                RuleCondition("product_usage_score", GT, 70, confidence=0.75),
                RuleCondition("has_expansion_potential", EQ, True, confidence=0.65),
            ],
            [
                RuleAction("flag", {"severity": "medium"}, priority=1),
                RuleAction("create_opportunity", {"type": "expansion"}, priority=2),
            ],
            RulePerformance(
                accuracy=0.68,
                precision=0.65,
                recall=0.72,
                f1_score=0.68,
                total_applications=150,
                successful_applications=102,
                average_impact=12000,
            ),
        ),
        _rule(
            "billing-gap",
            "Billing Gap Detection",
            "Detect gaps between service delivery and billing",
            LeakType.BILLING_GAP,
            [
                RuleCondition("service_delivered", EQ, True, confidence=0.95),
                RuleCondition("invoice_generated", EQ, False, confidence=0.9),
                RuleCondition("days_since_delivery", GT, 7, confidence=0.85),
            ],
            [
                RuleAction("generate_invoice", {}, priority=1),
                RuleAction("notify", {"recipient": "billing_team"}, priority=2),
            ],
            RulePerformance(
                accuracy=0.88,
                precision=0.85,
                recall=0.90,
                f1_score=0.87,
                total_applications=250,
                successful_applications=220,
                average_impact=3500,
            ),
        ),
    ]
