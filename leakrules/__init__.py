"""
leakrules - Rule Evolution Engine

Manages versioned revenue-leak detection rules: proposes mutations,
validates candidates through A/B comparison against live outcomes and
promotes winners into new rule versions.
"""

__version__ = "0.1.0"

# Configuration is available at top level for convenience
from leakrules.config import config

__all__ = ["config", "__version__"]
