"""Periodic reward cycle evaluation.

Each tick fetches every unpublished cycle, runs it through the state
machine and writes the outcome back. Records are handled one at a time
and each write stands alone, so a failure part way through a pass leaves
the remaining teams to the next tick.
"""
import asyncio
import logging
import threading
from datetime import datetime, timezone

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from rewardcycles.database import get_db_context
from rewardcycles.errors import CycleError
from rewardcycles.models.reward_cycle import ResultPublishState
from rewardcycles.services.cycle_engine import CycleRecord, evaluate
from rewardcycles.services.cycle_repository import RewardCycleRepository

logger = logging.getLogger(__name__)

# At most one pass in flight, whether started by the timer or the API.
_pass_lock = threading.Lock()


def utcnow() -> datetime:
    """Naive UTC timestamp, matching how cycle dates are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def run_evaluation_pass(session_factory: sessionmaker, now: datetime | None = None) -> dict:
    """Evaluate all unpublished cycles once.

    Returns counts of evaluated, rolled over and failed records. If another
    pass is already running this one is skipped and `skipped` is True.
    """
    if not _pass_lock.acquire(blocking=False):
        logger.warning("Reward cycle evaluation already in progress, skipping this tick")
        return {"evaluated": 0, "rolled_over": 0, "failed": 0, "skipped": True}

    try:
        now = now or utcnow()
        with get_db_context(session_factory) as db:
            cycles = RewardCycleRepository(db).list_unpublished_cycles()

        logger.info(f"Evaluating {len(cycles)} reward cycles at {now.isoformat()}")
        evaluated = 0
        rolled_over = 0
        failed = 0

        for cycle in cycles:
            try:
                outcome = _evaluate_and_store(session_factory, cycle.cycle_id, now)
                if outcome is None:
                    continue
                if outcome:
                    rolled_over += 1
                evaluated += 1
            except CycleError as e:
                logger.error(f"Skipping reward cycle {cycle.cycle_id} ({e.code}): {e.message}", exc_info=True)
                failed += 1
            except SQLAlchemyError as e:
                logger.error(f"Failed to store reward cycle {cycle.cycle_id} for team {cycle.team_id}: {e}")
                failed += 1

        logger.info(
            f"Reward cycle evaluation finished: {evaluated} evaluated, "
            f"{rolled_over} rolled over, {failed} failed"
        )
        return {"evaluated": evaluated, "rolled_over": rolled_over, "failed": failed, "skipped": False}
    finally:
        _pass_lock.release()


def _still_current(cycle: CycleRecord) -> bool:
    return cycle.result_published == ResultPublishState.UNPUBLISHED and cycle.superseded_by is None


def _evaluate_and_store(session_factory: sessionmaker, cycle_id: str, now: datetime) -> bool | None:
    """Evaluate the stored cycle and write the outcome back.

    The row is read again in the write session and every write is guarded, so
    a publish or rollover that lands while the pass runs is never reverted.
    Returns whether the cycle rolled over, or None if it was left alone
    because it changed after the pass fetched it.
    """
    with get_db_context(session_factory) as db:
        repository = RewardCycleRepository(db)
        cycle = repository.get(cycle_id)
        if cycle is None or not _still_current(cycle):
            logger.info(f"Reward cycle {cycle_id} was published or rolled over during the pass, skipping")
            return None

        transition = evaluate(cycle, now)
        if transition.rolled_over:
            stored = repository.close_and_insert_successor(transition.closed, transition.cycle)
        elif transition.cycle != cycle:
            stored = repository.update_if_current(transition.cycle)
        else:
            stored = True

        if not stored:
            logger.info(f"Reward cycle {cycle_id} changed while it was being evaluated, skipping")
            return None
        if transition.rolled_over:
            logger.info(
                f"Team {cycle.team_id}: rolled cycle {cycle.cycle_id} over into "
                f"{transition.cycle.cycle_id} ending {transition.cycle.reward_cycle_end_date.date()}"
            )

    return transition.rolled_over


class CycleScheduler:
    """Runs `run_evaluation_pass` on a fixed interval inside the event loop."""

    def __init__(self, session_factory: sessionmaker, interval_minutes: int, shutdown_timeout_seconds: float = 30.0):
        self.session_factory = session_factory
        self.interval_seconds = interval_minutes * 60
        self.shutdown_timeout_seconds = shutdown_timeout_seconds
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        logger.info(f"Reward cycle scheduler started, interval {self.interval_seconds}s")
        self._task = asyncio.create_task(self._loop(), name="reward-cycle-scheduler")

    async def stop(self) -> None:
        """Cancel the loop and wait for any pass still running in its worker thread.

        Cancelling the task does not interrupt the thread, so shutdown blocks
        on the pass lock for up to `shutdown_timeout_seconds`.
        """
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        if not await asyncio.to_thread(self._wait_for_pass):
            logger.warning(
                f"Reward cycle pass still running after {self.shutdown_timeout_seconds}s, stopping anyway"
            )
        logger.info("Reward cycle scheduler stopped")

    def _wait_for_pass(self) -> bool:
        if not _pass_lock.acquire(timeout=self.shutdown_timeout_seconds):
            return False
        _pass_lock.release()
        return True

    async def tick(self) -> dict:
        """Run one pass in a worker thread so the event loop stays responsive."""
        return await asyncio.to_thread(run_evaluation_pass, self.session_factory)

    async def _loop(self) -> None:
        while True:
            try:
                await self.tick()
            except Exception as e:
                logger.error(f"Reward cycle scheduler tick failed: {e}", exc_info=True)
            await asyncio.sleep(self.interval_seconds)
