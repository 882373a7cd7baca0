"""
Logging infrastructure for the rule evolution engine.
"""

from .logger import (
    LIFECYCLE_COMPONENT,
    get_component_logger,
    initialize_logging,
    log_lifecycle_event,
)

__all__ = [
    "LIFECYCLE_COMPONENT",
    "get_component_logger",
    "initialize_logging",
    "log_lifecycle_event",
]
