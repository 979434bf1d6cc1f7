"""Structured engine logging: event log, models and dispatch run tracking."""

from social_engine.logging.component_logger import ComponentLogger, TimedOperation
from social_engine.logging.dispatch_run_logger import DispatchRunLogger
from social_engine.logging.event_logger import (
    EngineLogger,
    get_logger,
    init_logger,
    reset_logger,
)
from social_engine.logging.models import LogComponent, LogEntry, LogLevel

__all__ = [
    "ComponentLogger",
    "DispatchRunLogger",
    "EngineLogger",
    "LogComponent",
    "LogEntry",
    "LogLevel",
    "get_logger",
    "init_logger",
    "reset_logger",
    "TimedOperation",
]
