"""
Detached post-response writes (cache fills, ledger appends).

Each write runs the blocking store call in the default executor inside its own
task. The writer keeps a strong reference to every pending task so nothing is
garbage-collected mid-flight; tasks are not tied to the request, so a client
disconnect does not cancel them. Failures go to the log only and never change
a verdict that was already returned.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable

from backend_riskgate.riskgate_logging import get_logger

logger = get_logger(__name__)


class BackgroundWriter:
    def __init__(self) -> None:
        self._pending: set[asyncio.Task] = set()
        self._completed = 0
        self._failed = 0

    @property
    def pending(self) -> int:
        return len(self._pending)

    def submit(self, name: str, fn: Callable[..., Any], *args: Any) -> asyncio.Task:
        """Schedule fn(*args) off the event loop. Must be called from a running loop."""

        async def _run() -> None:
            loop = asyncio.get_running_loop()
            try:
                await loop.run_in_executor(None, fn, *args)
                self._completed += 1
            except Exception as e:
                self._failed += 1
                logger.warning("background_write_failed", write=name, error=str(e))

        task = asyncio.get_running_loop().create_task(_run(), name=f"riskgate-{name}")
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        """Wait until every pending write has finished (shutdown, report reads, tests)."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def stats(self) -> dict[str, int]:
        return {
            "pending": len(self._pending),
            "completed": self._completed,
            "failed": self._failed,
        }
