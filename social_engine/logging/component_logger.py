"""Per-component logger wrapper and timed-operation context manager.

``ComponentLogger`` binds a ``LogComponent`` to an ``EngineLogger`` (the
global one unless given) so that services can log without repeating the
component.  ``TimedOperation``, returned by ``ComponentLogger.timed()``,
logs the elapsed duration and outcome of a block of code.
"""

import time
from typing import Any, Optional

from social_engine.logging.event_logger import EngineLogger, get_logger
from social_engine.logging.models import LogComponent


class ComponentLogger:
    """Wrapper that binds a fixed ``LogComponent`` to an engine logger::

        self.log = ComponentLogger(LogComponent.ANALYTICS, event_logger)
        await self.log.info("Snapshot stored", data={"credential_id": cid})
    """

    def __init__(
        self, component: LogComponent, logger: Optional[EngineLogger] = None
    ) -> None:
        self.component = component
        self._logger = logger

    @property
    def logger(self) -> EngineLogger:
        return self._logger if self._logger is not None else get_logger()

    async def debug(self, message: str, **kwargs: Any) -> None:
        await self.logger.debug(self.component, message, **kwargs)

    async def info(self, message: str, **kwargs: Any) -> None:
        await self.logger.info(self.component, message, **kwargs)

    async def warning(self, message: str, **kwargs: Any) -> None:
        await self.logger.warning(self.component, message, **kwargs)

    async def error(
        self, message: str, error: Optional[BaseException] = None, **kwargs: Any
    ) -> None:
        await self.logger.error(self.component, message, error=error, **kwargs)

    def timed(self, message: str) -> "TimedOperation":
        """Return an async context manager that logs the block's duration.

        Usage::

            async with self.log.timed("Refreshing channel stats"):
                stats = await adapter.get_channel_stats()
        """
        return TimedOperation(self, message)


class TimedOperation:
    """Async context manager that measures and logs operation duration.

    On successful exit logs INFO with ``duration_ms``.  On exception logs
    ERROR with the error and re-raises it (the exception is not suppressed).
    """

    def __init__(self, logger: ComponentLogger, message: str) -> None:
        self.logger = logger
        self.message = message
        self.start: Optional[float] = None

    async def __aenter__(self) -> "TimedOperation":
        self.start = time.monotonic()
        await self.logger.debug(f"Starting: {self.message}")
        return self

    async def __aexit__(
        self,
        exc_type: Optional[type],
        exc_val: Optional[BaseException],
        exc_tb: Any,
    ) -> None:
        assert self.start is not None
        duration_ms = int((time.monotonic() - self.start) * 1000)

        if exc_type is not None:
            await self.logger.error(
                f"Failed: {self.message}", error=exc_val, duration_ms=duration_ms
            )
        else:
            await self.logger.info(f"Completed: {self.message}", duration_ms=duration_ms)
