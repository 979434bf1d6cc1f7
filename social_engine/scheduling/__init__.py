"""Scheduling intelligence: posting-time suggestions and intelligent scheduling."""

from social_engine.scheduling.engine import (
    BASE_REACH,
    DEFAULT_TIMINGS,
    SchedulingEngine,
    post_engagement,
)

__all__ = [
    "BASE_REACH",
    "DEFAULT_TIMINGS",
    "SchedulingEngine",
    "post_engagement",
]
