"""
Configuration management for the rule evolution engine.

This module provides centralized configuration for all components:
- Evolution loop switches and rates
- A/B test and scoring constants
- Logging settings
"""

import os
from typing import Literal, cast

from dotenv import load_dotenv
from pydantic import BaseModel, Field

# Load environment variables from .env file
load_dotenv()


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class EvolutionConfig(BaseModel):
    """Configuration for rule mutation, testing and promotion."""

    enabled: bool = Field(default=True, description="Master switch for the engine")
    auto_evolve_enabled: bool = Field(
        default=True, description="Whether auto_evolve may generate and apply mutations"
    )
    mutation_rate: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Probability of applying the first mutation of a triggered rule",
    )
    testing_period_days: int = Field(
        default=14, gt=0, description="Length of a candidate's advisory test window"
    )
    min_sample_size: int = Field(
        default=50,
        ge=0,
        description="Applications after which a rule is considered for evolution",
    )
    improvement_threshold: float = Field(
        default=0.02,
        ge=0.0,
        le=1.0,
        description="F1 margin either A/B arm needs to win",
    )
    merge_weight: float = Field(
        default=0.3,
        ge=0.0,
        le=1.0,
        description="Weight of a new batch score in the moving average",
    )
    low_confidence_threshold: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        description="Conditions below this confidence are proposed for removal",
    )
    underperformance_f1: float = Field(
        default=0.75,
        ge=0.0,
        le=1.0,
        description="Rules scoring below this F1 are considered for evolution",
    )
    expected_improvement: float = Field(
        default=0.05,
        ge=0.0,
        description="Fixed heuristic improvement attached to every candidate",
    )


class LogConfig(BaseModel):
    """Configuration for logging system."""

    level: Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    format: str = Field(
        default="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
        "<level>{level: <8}</level> | "
        "<cyan>{name}</cyan>:<cyan>{function}</cyan> - "
        "<level>{message}</level>",
        description="Log message format",
    )
    rotation: str = Field(default="100 MB", description="Log file rotation size")
    retention: str = Field(default="1 month", description="Log file retention period")
    log_dir: str = Field(default="logs", description="Directory for log files")
    enable_file_logging: bool = Field(
        default=False, description="Whether to enable file logging"
    )
    enable_console_logging: bool = Field(
        default=True, description="Whether to enable console logging"
    )


class Config(BaseModel):
    """Main configuration object."""

    evolution: EvolutionConfig = Field(default_factory=EvolutionConfig)
    logging: LogConfig = Field(default_factory=LogConfig)

    @classmethod
    def from_env(cls) -> "Config":
        """Create configuration from environment variables."""
        return cls(
            evolution=EvolutionConfig(
                enabled=_env_flag("RULE_EVOLUTION_ENABLED", True),
                auto_evolve_enabled=_env_flag("RULE_AUTO_EVOLVE", True),
                mutation_rate=float(os.getenv("RULE_MUTATION_RATE", "0.1")),
                testing_period_days=int(os.getenv("RULE_TESTING_PERIOD_DAYS", "14")),
                min_sample_size=int(os.getenv("RULE_MIN_SAMPLE_SIZE", "50")),
            ),
            logging=LogConfig(
                level=cast(
                    Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
                    os.getenv("LOG_LEVEL", "INFO"),
                ),
                log_dir=os.getenv("LOG_DIR", "logs"),
                enable_file_logging=_env_flag("LOG_TO_FILE", False),
            ),
        )


# Global configuration instance
config = Config.from_env()
