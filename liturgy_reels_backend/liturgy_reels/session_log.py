"""
Bounded in-memory log for a production session.

One SessionLog is created per session and handed to every core component.
Entries are kept in a drop-oldest ring buffer and mirrored to stdlib logging.
"""
import json
import logging
from collections import deque
from datetime import datetime, timezone
from typing import Any, Deque, List, Optional

from pydantic import BaseModel

from .settings import LOG_BUFFER_SIZE


class LogEntry(BaseModel):
    timestamp: str
    level: str
    message: str


def preview(text: Optional[str], limit: int = 50) -> str:
    """Truncate text/prompt for log context."""
    if not text:
        return ""
    return text if len(text) <= limit else text[:limit] + "..."


class SessionLog:
    def __init__(self, capacity: int = LOG_BUFFER_SIZE, logger: Optional[logging.Logger] = None):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._entries: Deque[LogEntry] = deque(maxlen=capacity)
        self._logger = logger or logging.getLogger("liturgy_reels")

    def _add(self, level: int, message: str, context: dict):
        full = message
        if context:
            full += f" - Details: {json.dumps(context, default=str, ensure_ascii=False)}"
        entry = LogEntry(
            timestamp=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            level=logging.getLevelName(level),
            message=full,
        )
        self._entries.append(entry)
        self._logger.log(level, full)

    def info(self, message: str, **context: Any):
        self._add(logging.INFO, message, context)

    def warning(self, message: str, **context: Any):
        self._add(logging.WARNING, message, context)

    def error(self, message: str, exc: Optional[BaseException] = None, **context: Any):
        if exc is not None:
            message = f"{message}: {type(exc).__name__}: {exc}"
        self._add(logging.ERROR, message, context)

    def entries(self) -> List[LogEntry]:
        return list(self._entries)

    def clear(self):
        self._entries.clear()

    def render(self) -> str:
        return "\n".join(f"[{e.timestamp}] {e.level}: {e.message}" for e in self._entries)
