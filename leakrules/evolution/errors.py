"""
Custom exceptions for the rule evolution engine.

Provides specific error types for unresolved ids and illegal lifecycle
transitions.
"""

from __future__ import annotations


class RuleEvolutionError(Exception):
    """Base exception for all rule evolution errors."""

    pass


class NotFoundError(RuleEvolutionError):
    """A rule, mutation, candidate or test id does not resolve."""

    def __init__(self, entity: str, entity_id: str):
        super().__init__(f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


class InvalidStateError(RuleEvolutionError):
    """The requested operation is not legal in the entity's current state."""

    pass
