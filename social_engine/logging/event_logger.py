"""Structured engine event log with file and Supabase outputs.

Provides the ``EngineLogger`` class that writes structured ``LogEntry``
records as JSON lines to a daily file (via ``aiofiles``), mirrors
errors into ``errors.log``, and optionally persists entries at or above
a severity threshold to the ``engine_logs`` table.  A small in-memory
ring buffer allows ``get_recent()`` queries without touching disk.

Global helpers:
    - ``init_logger()``  -- create and register a singleton ``EngineLogger``
    - ``get_logger()``   -- retrieve the singleton (raises if not initialised)
"""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set

import aiofiles

from social_engine.logging.models import LogComponent, LogEntry, LogLevel
from social_engine.utils import Clock, utc_now

logger = logging.getLogger(__name__)


class EngineLogger:
    """Central structured log for dispatch runs and publish attempts.

    Parameters:
        log_dir: Directory for log files (created if missing).
        db: Optional database client exposing ``save_engine_log()``.
        min_level: Minimum level for database writes.
        clock: Returns the current UTC time.
    """

    def __init__(
        self,
        log_dir: str = "logs",
        db: Any = None,
        min_level: LogLevel = LogLevel.WARNING,
        clock: Clock = utc_now,
    ) -> None:
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)

        self.db = db
        self.min_level = min_level
        self.clock = clock

        self._run_id: Optional[str] = None
        self._error_log = self.log_dir / "errors.log"

        self._recent_logs: List[LogEntry] = []
        self._max_recent: int = 500

        self._handlers: List[Callable[[LogEntry], None]] = []
        self._pending_tasks: Set["asyncio.Task[None]"] = set()

    # ------------------------------------------------------------------
    # Context management
    # ------------------------------------------------------------------

    def set_context(self, run_id: Optional[str] = None) -> None:
        """Tag subsequent entries with *run_id*."""
        if run_id is not None:
            self._run_id = run_id

    def clear_context(self) -> None:
        self._run_id = None

    def add_handler(self, handler: Callable[[LogEntry], None]) -> None:
        """Register a custom synchronous log handler."""
        self._handlers.append(handler)

    def daily_log_path(self) -> Path:
        """``engine-YYYY-MM-DD.log`` for the current UTC day."""
        return self.log_dir / f"engine-{self.clock().strftime('%Y-%m-%d')}.log"

    # ------------------------------------------------------------------
    # Core log method
    # ------------------------------------------------------------------

    async def log(
        self,
        level: LogLevel,
        component: LogComponent,
        message: str,
        data: Optional[Dict[str, Any]] = None,
        error: Optional[BaseException] = None,
        duration_ms: Optional[int] = None,
        post_id: Optional[str] = None,
        platform: Optional[str] = None,
    ) -> LogEntry:
        """Record a structured event.

        Posts are dispatched concurrently, so ``post_id`` and ``platform``
        are passed per call rather than held as logger context.
        """
        entry = LogEntry(
            timestamp=self.clock(),
            level=level,
            component=component,
            message=message,
            run_id=self._run_id,
            post_id=post_id,
            platform=platform,
            data=data or {},
            duration_ms=duration_ms,
        )
        if error is not None:
            entry.error_type = type(error).__name__
            entry.error_message = str(error)

        self._recent_logs.append(entry)
        if len(self._recent_logs) > self._max_recent:
            self._recent_logs.pop(0)

        await self._write_to_file(entry)

        if self.db is not None and level.value >= self.min_level.value:
            task = asyncio.create_task(self._write_to_db(entry))
            self._pending_tasks.add(task)
            task.add_done_callback(self._pending_tasks.discard)

        for handler in self._handlers:
            try:
                handler(entry)
            except Exception:
                logger.exception("[LOGGING] Log handler %r failed", handler)

        return entry

    async def debug(self, component: LogComponent, message: str, **kwargs: Any) -> LogEntry:
        return await self.log(LogLevel.DEBUG, component, message, **kwargs)

    async def info(self, component: LogComponent, message: str, **kwargs: Any) -> LogEntry:
        return await self.log(LogLevel.INFO, component, message, **kwargs)

    async def warning(self, component: LogComponent, message: str, **kwargs: Any) -> LogEntry:
        return await self.log(LogLevel.WARNING, component, message, **kwargs)

    async def error(self, component: LogComponent, message: str, **kwargs: Any) -> LogEntry:
        return await self.log(LogLevel.ERROR, component, message, **kwargs)

    async def critical(self, component: LogComponent, message: str, **kwargs: Any) -> LogEntry:
        return await self.log(LogLevel.CRITICAL, component, message, **kwargs)

    # ------------------------------------------------------------------
    # Query
    # ------------------------------------------------------------------

    def get_recent(
        self,
        limit: int = 20,
        level: Optional[LogLevel] = None,
        component: Optional[LogComponent] = None,
        run_id: Optional[str] = None,
    ) -> List[LogEntry]:
        """Return recent entries from the in-memory ring buffer."""
        logs = self._recent_logs.copy()

        if level is not None:
            logs = [entry for entry in logs if entry.level == level]
        if component is not None:
            logs = [entry for entry in logs if entry.component == component]
        if run_id is not None:
            logs = [entry for entry in logs if entry.run_id == run_id]

        return logs[-limit:]

    async def flush(self) -> None:
        """Wait for pending database writes.  Call before shutdown."""
        if self._pending_tasks:
            await asyncio.gather(*self._pending_tasks, return_exceptions=True)
            self._pending_tasks.clear()

    # ------------------------------------------------------------------
    # Outputs
    # ------------------------------------------------------------------

    async def _write_to_file(self, entry: LogEntry) -> None:
        """Append the entry to the daily log; errors also go to ``errors.log``."""
        json_line = entry.to_json() + "\n"

        async with aiofiles.open(self.daily_log_path(), "a", encoding="utf-8") as f:
            await f.write(json_line)

        if entry.level.value >= LogLevel.ERROR.value:
            async with aiofiles.open(self._error_log, "a", encoding="utf-8") as f:
                await f.write(json_line)

    async def _write_to_db(self, entry: LogEntry) -> None:
        try:
            await self.db.save_engine_log(entry.to_dict())
        except Exception as exc:
            # The database may be what is failing; stderr keeps it visible
            print(f"[LOGGING] Failed to write to engine_logs: {exc}", file=sys.stderr)


# ======================================================================
# GLOBAL LOGGER SINGLETON
# ======================================================================

_logger: Optional[EngineLogger] = None


def init_logger(
    log_dir: str = "logs",
    db: Any = None,
    min_level: LogLevel = LogLevel.WARNING,
) -> EngineLogger:
    """Initialise and register the global ``EngineLogger`` singleton."""
    global _logger
    _logger = EngineLogger(log_dir=log_dir, db=db, min_level=min_level)
    return _logger


def get_logger() -> EngineLogger:
    """Retrieve the global ``EngineLogger`` singleton.

    Raises:
        RuntimeError: If ``init_logger()`` has not been called yet.
    """
    if _logger is None:
        raise RuntimeError("Logger not initialized. Call init_logger() first.")
    return _logger


def reset_logger() -> None:
    """Forget the global logger (used by tests)."""
    global _logger
    _logger = None
