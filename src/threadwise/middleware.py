"""Write serialization middleware for threadwise.

Write tools run strictly one at a time: each write decision is taken against
the session ledger, and two interleaved writes at the same location would both
see it empty.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

from fastmcp.server.middleware.middleware import CallNext, Middleware, MiddlewareContext

logger = logging.getLogger(__name__)

WRITE_TOOLS = frozenset({
    "comment",
    "suggest",
    "reply",
    "update",
    "resolve",
})

SLOW_WRITE_SECONDS = 30.0


class WriteSerializationMiddleware(Middleware):
    """Serialize write tool calls through a single lock.

    - Read tools pass straight through
    - Write tools wait for any in-flight write to finish first
    - Warns on slow writes (>30s) and on writes that had to queue
    """

    def __init__(self, *, slow_threshold: float = SLOW_WRITE_SECONDS) -> None:
        self._lock = asyncio.Lock()
        self._slow_threshold = slow_threshold
        self._writes = 0

    @property
    def write_count(self) -> int:
        return self._writes

    async def on_call_tool(self, context: MiddlewareContext, call_next: CallNext) -> Any:
        tool_name = getattr(context.message, "name", "unknown")
        if tool_name not in WRITE_TOOLS:
            return await call_next(context)

        if self._lock.locked():
            logger.info("Write %s queued behind an in-flight write", tool_name)

        async with self._lock:
            self._writes += 1
            start = time.perf_counter()
            try:
                return await call_next(context)
            finally:
                duration = time.perf_counter() - start
                if duration > self._slow_threshold:
                    logger.warning("Slow write operation: %s took %.0fms", tool_name, duration * 1000)
                else:
                    logger.debug("Write %s took %.0fms", tool_name, duration * 1000)
