"""Per-pass tracking of dispatch outcomes.

``DispatchRunLogger`` wraps an ``EngineLogger`` for one dispatch pass:

1. Instantiate with a ``run_id`` -- this sets the logger context.
2. Call ``record()`` once per post the pass touched.
3. Call ``finish()`` when the pass is done -- returns a summary dict.
4. Call ``get_summary_text()`` for a human-readable summary.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from social_engine.logging.event_logger import EngineLogger
from social_engine.logging.models import LogComponent, LogLevel

# Outcomes that are logged above INFO
_OUTCOME_LEVELS = {
    "published": LogLevel.INFO,
    "retry": LogLevel.WARNING,
    "cancelled": LogLevel.WARNING,
    "expired": LogLevel.WARNING,
    "skipped": LogLevel.DEBUG,
    "error": LogLevel.ERROR,
}


class DispatchRunLogger:
    """Track one dispatch pass with per-post outcome entries.

    Parameters:
        run_id: Unique identifier of the pass.
        logger: The engine event log to write to.
    """

    def __init__(self, run_id: str, logger: EngineLogger) -> None:
        self.run_id = run_id
        self.logger = logger
        self.logger.set_context(run_id=run_id)

        self.start_time: datetime = logger.clock()
        self.outcomes: List[Dict[str, Any]] = []

    async def record(
        self,
        post_id: str,
        platform: Optional[str],
        outcome: str,
        detail: Optional[str] = None,
        error: Optional[BaseException] = None,
    ) -> None:
        """Record what happened to one post in this pass.

        Args:
            post_id: Scheduled post id.
            platform: Target platform value.
            outcome: ``published``, ``retry``, ``cancelled``, ``expired``,
                ``skipped`` or ``error``.
            detail: Error text or URL to keep alongside the outcome.
            error: Exception that aborted processing of the post, if any.
        """
        self.outcomes.append({
            "post_id": post_id,
            "platform": platform,
            "outcome": outcome,
            "detail": detail,
        })
        await self.logger.log(
            _OUTCOME_LEVELS.get(outcome, LogLevel.INFO),
            LogComponent.DISPATCH,
            f"Post {outcome}" + (f": {detail}" if detail else ""),
            post_id=post_id,
            platform=platform,
            error=error,
        )

    def counts(self) -> Dict[str, int]:
        result: Dict[str, int] = {}
        for item in self.outcomes:
            result[item["outcome"]] = result.get(item["outcome"], 0) + 1
        return result

    async def finish(self) -> Dict[str, Any]:
        """Close the pass and return its summary dict."""
        end_time = self.logger.clock()
        total_duration_ms = int((end_time - self.start_time).total_seconds() * 1000)

        summary: Dict[str, Any] = {
            "run_id": self.run_id,
            "start_time": self.start_time.isoformat(),
            "end_time": end_time.isoformat(),
            "total_duration_ms": total_duration_ms,
            "counts": self.counts(),
        }

        await self.logger.info(
            LogComponent.DISPATCH,
            f"Dispatch pass completed: {len(self.outcomes)} post(s)",
            data=summary,
            duration_ms=total_duration_ms,
        )
        self.logger.clear_context()
        return summary

    def get_summary_text(self) -> str:
        """Human-readable summary suitable for console output."""
        lines: List[str] = [f"Dispatch Run: {self.run_id}", ""]
        for item in self.outcomes:
            marker = "[OK]" if item["outcome"] == "published" else f"[{item['outcome'].upper()}]"
            line = f"{marker} {item['post_id']} ({item['platform']})"
            if item["detail"]:
                line += f" - {item['detail']}"
            lines.append(line)
        if not self.outcomes:
            lines.append("No posts due")
        return "\n".join(lines)
