"""
Periodic overdue sweep.

The sweep runs on the application's event loop timer but does its
database work in a worker thread, so request handling is never blocked.
"""

import asyncio
import contextlib
import logging
from typing import Callable, List, Optional

from library_service import loans
from library_service.config import settings
from library_service.database import SessionLocal
from library_service.models import Loan, utcnow


logger = logging.getLogger(__name__)


def run_overdue_check(
    session_factory=SessionLocal,
    clock: Callable = utcnow,
    batch_size: Optional[int] = None,
) -> List[int]:
    """
    Run one sweep pass and log a reminder for every newly overdue loan.

    Returns the ids of the loans flipped to overdue.
    """
    now = clock()
    flipped = loans.sweep_overdue(
        session_factory, now, batch_size or settings.sweep_batch_size
    )

    if not flipped:
        logger.info("[OVERDUE REMINDER] No newly overdue loans found.")
        return flipped

    logger.warning("[OVERDUE REMINDER] Found %d newly overdue loans", len(flipped))
    session = session_factory()
    try:
        overdue = session.query(Loan).filter(Loan.id.in_(flipped)).order_by(Loan.due_date).all()
        for loan in overdue:
            logger.warning(
                "  - Loan %d: '%s' borrowed by %s <%s>, due %s",
                loan.id,
                loan.book.title,
                loan.member.name,
                loan.member.email,
                loan.due_date.strftime("%Y-%m-%d"),
            )
    finally:
        session.close()
    return flipped


class OverdueScheduler:
    """
    Runs run_overdue_check every interval_minutes until stopped.

    interval_seconds overrides the minute interval when given.
    """

    def __init__(
        self,
        interval_minutes: int,
        session_factory=SessionLocal,
        clock: Callable = utcnow,
        batch_size: Optional[int] = None,
        interval_seconds: Optional[float] = None,
    ):
        if interval_seconds is None:
            if interval_minutes < 1:
                raise ValueError("interval_minutes must be at least 1")
            interval_seconds = interval_minutes * 60
        elif interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.interval_minutes = interval_minutes
        self.interval_seconds = interval_seconds
        self.session_factory = session_factory
        self.clock = clock
        self.batch_size = batch_size
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())
        logger.info("Overdue checks scheduled (every %g seconds)", self.interval_seconds)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("Overdue checks stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            logger.info("[CRON JOB] Checking for overdue loans...")
            try:
                await asyncio.to_thread(
                    run_overdue_check, self.session_factory, self.clock, self.batch_size
                )
            except Exception:
                # Keep the timer alive; the next pass retries from scratch.
                logger.exception("[OVERDUE REMINDER ERROR] Overdue check failed")
