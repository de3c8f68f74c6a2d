"""specrollout: progressive rollout and experimentation for versioned specs.

Decides per request which variant of an operation spec to serve, tracks
outcome metrics per variant, and advances, holds or rolls back staged
rollouts based on statistical guardrails.
"""

from specrollout.engine import RolloutEngine, create_engine

__version__ = "0.1.0"

__all__ = ["RolloutEngine", "create_engine", "__version__"]
