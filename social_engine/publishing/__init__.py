"""Publishing: one-attempt orchestrator and the scheduled dispatch loop."""

from social_engine.publishing.dispatcher import DispatchLoop, DispatchSummary
from social_engine.publishing.orchestrator import PublishingOrchestrator

__all__ = [
    "DispatchLoop",
    "DispatchSummary",
    "PublishingOrchestrator",
]
