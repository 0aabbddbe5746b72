"""
Correction Scheduler
====================

Periodic sweep over scheduled corrections.

A sweep executes every pending task whose due time has passed and marks it
executed. Executed and cancelled tasks are never run again, so repeating a
sweep against the same persisted state is harmless.

Usage:
    from selfcorrect.scheduler import CorrectionScheduler

    scheduler = CorrectionScheduler(engine, store, interval_seconds=60)
    executed = await scheduler.sweep()

    stop = asyncio.Event()
    await scheduler.run(stop)
"""

import asyncio
import logging
from datetime import datetime
from typing import Optional

from selfcorrect.correction_engine import CorrectionEngine
from selfcorrect.models import CorrectionTask, TaskStatus, utc_now
from selfcorrect.store import LearningStore

logger = logging.getLogger(__name__)


class CorrectionScheduler:
    """Runs due correction tasks on a fixed interval."""

    def __init__(self, engine: CorrectionEngine, store: LearningStore, interval_seconds: float = 60.0):
        self.engine = engine
        self.store = store
        self.interval_seconds = interval_seconds
        self.sweeps = 0

    def due_tasks(self, now: Optional[datetime] = None) -> list[CorrectionTask]:
        """Pending tasks whose scheduled time is at or before now."""
        now = now or utc_now()
        return [task for task in self.store.tasks_by_status(TaskStatus.PENDING) if task.is_due(now)]

    async def sweep(self, now: Optional[datetime] = None) -> list[CorrectionTask]:
        """Execute every due task. Returns the tasks executed by this sweep."""
        self.sweeps += 1
        # Tasks may have been scheduled by another process since the last tick
        await self.store.reload()
        executed = []
        for task in self.due_tasks(now):
            current = self.store.get_task(task.id)
            if current is None or current.status != TaskStatus.PENDING:
                continue
            logger.info("Executing scheduled correction %s", task.id)
            executed.append(await self.engine.execute_task(current))
        return executed

    async def cancel(self, task_id: str) -> bool:
        """Cancel a pending task. Returns False if it is unknown or already done."""
        await self.store.reload()
        task = self.store.get_task(task_id)
        if task is None or task.status != TaskStatus.PENDING:
            return False
        task.status = TaskStatus.CANCELLED
        await self.store.update_task(task)
        return True

    async def run(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """Sweep every interval until stop_event is set or the task is cancelled."""
        stop_event = stop_event or asyncio.Event()
        logger.info("Scheduled correction sweep every %ss", self.interval_seconds)
        while not stop_event.is_set():
            try:
                await self.sweep()
            except Exception:
                # One bad tick must not stop the monitor
                logger.exception("Scheduled correction sweep failed")
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                continue
