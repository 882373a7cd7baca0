"""
Logging setup for the rule evolution engine.

Provides loguru sinks with:
- Component-bound loggers
- Optional rotating file logs
- A dedicated log for rule lifecycle transitions
"""

import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from leakrules.config import LogConfig

LIFECYCLE_COMPONENT = "evolution"


def initialize_logging(log_config: Optional[LogConfig] = None) -> LogConfig:
    """
    Configure loguru sinks.

    This should be called once at application startup. Library code only
    logs; it never adds sinks on its own.

    Args:
        log_config: Logging settings (defaults to ``LogConfig()``)

    Returns:
        The applied configuration
    """
    log_config = log_config or LogConfig()

    # Remove default handler
    logger.remove()

    if log_config.enable_console_logging:
        logger.add(
            sys.stderr,
            format=log_config.format,
            level=log_config.level,
            colorize=True,
        )

    if log_config.enable_file_logging:
        log_dir = Path(log_config.log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)

        logger.add(
            log_dir / "leakrules.log",
            format=log_config.format,
            level=log_config.level,
            rotation=log_config.rotation,
            retention=log_config.retention,
            compression="zip",
        )

        # Lifecycle transitions only
        logger.add(
            log_dir / "evolution.log",
            format=log_config.format,
            level="INFO",
            rotation=log_config.rotation,
            retention=log_config.retention,
            compression="zip",
            filter=lambda record: record["extra"].get("component") == LIFECYCLE_COMPONENT,
        )

        logger.add(
            log_dir / "errors.log",
            format=log_config.format,
            level="ERROR",
            rotation=log_config.rotation,
            retention=log_config.retention,
            compression="zip",
        )

    return log_config


def get_component_logger(component: str = "system") -> Any:
    """
    Get a component-specific logger.

    Example:
        >>> log = get_component_logger("evolution")
        >>> log.info("Promoted rule", rule_id="underbilling-v2")
    """
    return logger.bind(component=component)


def log_lifecycle_event(
    logger_instance: Any, event_type: str, rule_id: str, **kwargs: Any
) -> None:
    """
    Log a rule lifecycle transition with structured context.

    Args:
        logger_instance: Logger to use
        event_type: History event type (e.g. "promoted")
        rule_id: Rule the event belongs to
        **kwargs: Additional context
    """
    logger_instance.info(
        f"Rule {rule_id}: {event_type}",
        event_type=event_type,
        rule_id=rule_id,
        timestamp=datetime.now().isoformat(),
        **kwargs,
    )
