"""In-process scheduler for background pipeline stages.

A stage is an async callable ``stage(session, scheduler, **kwargs)``. Each run
gets its own database session, so a stage only sees what earlier stages
committed.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)

Stage = Callable[..., Awaitable[Any]]


class Scheduler:
    """Runs pipeline stages as asyncio tasks."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def run_after(self, delay: float, stage: Stage, /, **kwargs: Any) -> asyncio.Task:
        """Schedule ``stage`` to run after ``delay`` seconds."""
        task = asyncio.get_running_loop().create_task(
            self._run(delay, stage, kwargs),
            name=f"stage:{stage.__name__}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.debug(f"Scheduled {stage.__name__} in {delay}s with {kwargs}")
        return task

    async def _run(self, delay: float, stage: Stage, kwargs: dict[str, Any]) -> None:
        if delay > 0:
            await asyncio.sleep(delay)
        async with self._session_factory() as session:
            try:
                await stage(session, self, **kwargs)
            except Exception as e:
                logger.error(f"Stage {stage.__name__} failed with {kwargs}: {e}", exc_info=True)
                await session.rollback()

    async def drain(self) -> None:
        """Wait until no stages are pending, including ones scheduled meanwhile."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self, timeout: float = 10.0) -> None:
        """Give running stages ``timeout`` seconds, then cancel the rest."""
        if not self._tasks:
            return
        logger.info(f"Waiting for {len(self._tasks)} pipeline stages to finish")
        try:
            await asyncio.wait_for(self.drain(), timeout=timeout)
        except asyncio.TimeoutError:
            for task in list(self._tasks):
                task.cancel()
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
            logger.warning("Cancelled unfinished pipeline stages on shutdown")
