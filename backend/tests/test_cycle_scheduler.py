import asyncio
import os
import sys
from dataclasses import replace
from datetime import datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SCHEDULER_ENABLED", "false")

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from rewardcycles.database import Base
from rewardcycles.models.reward_cycle import (
    OccurrenceType,
    ResultPublishState,
    RewardCycle,
    RewardCycleState,
)
from rewardcycles.services import cycle_scheduler
from rewardcycles.services.cycle_engine import CycleRecord, next_cycle_id
from rewardcycles.services.cycle_repository import RewardCycleRepository
from rewardcycles.services.cycle_scheduler import CycleScheduler, run_evaluation_pass


@pytest.fixture()
def session_factory():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def _store(session_factory, **fields) -> None:
    db = session_factory()
    try:
        RewardCycleRepository(db).upsert(CycleRecord(**fields))
    finally:
        db.close()


def _current(session_factory, team_id: str) -> CycleRecord | None:
    db = session_factory()
    try:
        return RewardCycleRepository(db).get_current_cycle(team_id)
    finally:
        db.close()


def test_pass_rolls_occurrence_cycle_until_counter_is_spent(session_factory):
    _store(
        session_factory,
        cycle_id="june",
        team_id="team-1",
        reward_cycle_start_date=datetime(2023, 6, 1),
        reward_cycle_end_date=datetime(2023, 6, 8),
        is_recurring=True,
        range_of_occurrence=OccurrenceType.OCCURRENCE,
        number_of_occurrences=1,
        reward_cycle_state=RewardCycleState.ACTIVE,
        created_on=datetime(2023, 6, 1),
    )

    first = run_evaluation_pass(session_factory, now=datetime(2023, 6, 9, 1, 0))

    assert first == {"evaluated": 1, "rolled_over": 1, "failed": 0, "skipped": False}
    current = _current(session_factory, "team-1")
    assert current.cycle_id != "june"
    assert current.reward_cycle_start_date.date().isoformat() == "2023-06-09"
    assert current.reward_cycle_end_date.date().isoformat() == "2023-06-16"
    assert current.number_of_occurrences == 0
    assert current.reward_cycle_state == RewardCycleState.ACTIVE

    db = session_factory()
    try:
        closed = db.get(RewardCycle, "june")
        assert closed.reward_cycle_state == RewardCycleState.INACTIVE
        assert closed.superseded_by == current.cycle_id
        assert db.query(RewardCycle).count() == 2
    finally:
        db.close()

    second = run_evaluation_pass(session_factory, now=datetime(2023, 6, 17, 1, 0))

    assert second["rolled_over"] == 0
    settled = _current(session_factory, "team-1")
    assert settled.cycle_id == current.cycle_id
    assert settled.reward_cycle_state == RewardCycleState.INACTIVE


def test_repeated_pass_on_same_day_does_not_duplicate_rollover(session_factory):
    _store(
        session_factory,
        cycle_id="weekly",
        team_id="team-1",
        reward_cycle_start_date=datetime(2023, 1, 1),
        reward_cycle_end_date=datetime(2023, 1, 8),
        is_recurring=True,
        range_of_occurrence=OccurrenceType.NO_END_DATE,
        created_on=datetime(2023, 1, 1),
    )

    run_evaluation_pass(session_factory, now=datetime(2023, 1, 9, 1, 0))
    second = run_evaluation_pass(session_factory, now=datetime(2023, 1, 9, 2, 0))

    assert second["rolled_over"] == 0
    db = session_factory()
    try:
        assert db.query(RewardCycle).count() == 2
    finally:
        db.close()


def test_pass_skips_broken_record_and_continues(session_factory):
    _store(
        session_factory,
        cycle_id="broken",
        team_id="team-a",
        reward_cycle_start_date=None,
        reward_cycle_end_date=datetime(2023, 1, 8),
        created_on=datetime(2023, 1, 1),
    )
    _store(
        session_factory,
        cycle_id="healthy",
        team_id="team-b",
        reward_cycle_start_date=datetime(2023, 1, 1),
        reward_cycle_end_date=datetime(2023, 1, 8),
        created_on=datetime(2023, 1, 1),
    )

    result = run_evaluation_pass(session_factory, now=datetime(2023, 1, 3))

    assert result == {"evaluated": 1, "rolled_over": 0, "failed": 1, "skipped": False}
    assert _current(session_factory, "team-b").reward_cycle_state == RewardCycleState.ACTIVE


def test_published_cycles_are_never_evaluated(session_factory):
    _store(
        session_factory,
        cycle_id="done",
        team_id="team-1",
        reward_cycle_start_date=datetime(2023, 1, 1),
        reward_cycle_end_date=datetime(2023, 1, 8),
        is_recurring=True,
        result_published=ResultPublishState.PUBLISHED,
        created_on=datetime(2023, 1, 1),
    )

    result = run_evaluation_pass(session_factory, now=datetime(2023, 2, 1))

    assert result["evaluated"] == 0
    db = session_factory()
    try:
        assert db.query(RewardCycle).count() == 1
    finally:
        db.close()


def test_overlapping_pass_is_skipped(session_factory):
    assert cycle_scheduler._pass_lock.acquire(blocking=False)
    try:
        result = run_evaluation_pass(session_factory, now=datetime(2023, 1, 3))
    finally:
        cycle_scheduler._pass_lock.release()

    assert result["skipped"] is True
    assert result["evaluated"] == 0


def test_scheduler_start_and_stop(session_factory):
    scheduler = CycleScheduler(session_factory, interval_minutes=60)

    async def scenario():
        scheduler.start()
        assert scheduler.running
        summary = await scheduler.tick()
        await scheduler.stop()
        return summary

    summary = asyncio.run(scenario())

    assert not scheduler.running
    # stop() returns only once the loop's own first tick has finished.
    assert cycle_scheduler._pass_lock.acquire(blocking=False)
    cycle_scheduler._pass_lock.release()
    assert summary["failed"] == 0


def _publish(session_factory, cycle_id: str) -> None:
    db = session_factory()
    try:
        repository = RewardCycleRepository(db)
        cycle = repository.get(cycle_id)
        repository.upsert(
            replace(
                cycle,
                result_published=ResultPublishState.PUBLISHED,
                result_published_on=datetime(2023, 6, 5, 12, 0),
                reward_cycle_state=RewardCycleState.INACTIVE,
            )
        )
    finally:
        db.close()


def _stored(session_factory, cycle_id: str) -> RewardCycle:
    db = session_factory()
    try:
        row = db.get(RewardCycle, cycle_id)
        db.expunge(row)
        return row
    finally:
        db.close()


def test_publish_after_fetch_is_not_reverted(session_factory, monkeypatch):
    _store(
        session_factory,
        cycle_id="c1",
        team_id="team-1",
        reward_cycle_start_date=datetime(2023, 6, 1),
        reward_cycle_end_date=datetime(2023, 6, 8),
        created_on=datetime(2023, 6, 1),
    )
    real_list = RewardCycleRepository.list_unpublished_cycles

    def list_then_publish(self):
        cycles = real_list(self)
        _publish(session_factory, "c1")
        return cycles

    monkeypatch.setattr(RewardCycleRepository, "list_unpublished_cycles", list_then_publish)

    result = run_evaluation_pass(session_factory, now=datetime(2023, 6, 5))

    assert result == {"evaluated": 0, "rolled_over": 0, "failed": 0, "skipped": False}
    row = _stored(session_factory, "c1")
    assert row.result_published == ResultPublishState.PUBLISHED
    assert row.result_published_on == "2023-06-05T12:00:00"


def test_publish_during_rollover_keeps_cycle_and_adds_no_successor(session_factory, monkeypatch):
    _store(
        session_factory,
        cycle_id="c1",
        team_id="team-1",
        reward_cycle_start_date=datetime(2023, 6, 1),
        reward_cycle_end_date=datetime(2023, 6, 8),
        is_recurring=True,
        range_of_occurrence=OccurrenceType.NO_END_DATE,
        created_on=datetime(2023, 6, 1),
    )
    real_evaluate = cycle_scheduler.evaluate

    def publish_then_evaluate(cycle, now):
        _publish(session_factory, cycle.cycle_id)
        return real_evaluate(cycle, now)

    monkeypatch.setattr(cycle_scheduler, "evaluate", publish_then_evaluate)

    result = run_evaluation_pass(session_factory, now=datetime(2023, 6, 10))

    assert result["rolled_over"] == 0
    row = _stored(session_factory, "c1")
    assert row.result_published == ResultPublishState.PUBLISHED
    assert row.superseded_by is None
    db = session_factory()
    try:
        assert db.query(RewardCycle).count() == 1
    finally:
        db.close()


def test_retried_rollover_keeps_existing_successor(session_factory):
    now = datetime(2023, 1, 9, 1, 0)
    successor_id = next_cycle_id("weekly", now.date())
    _store(
        session_factory,
        cycle_id="weekly",
        team_id="team-1",
        reward_cycle_start_date=datetime(2023, 1, 1),
        reward_cycle_end_date=datetime(2023, 1, 8),
        is_recurring=True,
        range_of_occurrence=OccurrenceType.NO_END_DATE,
        created_on=datetime(2023, 1, 1),
    )
    # Left behind by an earlier attempt, then edited through the API.
    _store(
        session_factory,
        cycle_id=successor_id,
        team_id="team-1",
        reward_cycle_start_date=datetime(2023, 1, 9),
        reward_cycle_end_date=datetime(2023, 1, 23),
        is_recurring=True,
        range_of_occurrence=OccurrenceType.NO_END_DATE,
        reward_cycle_state=RewardCycleState.ACTIVE,
        created_on=datetime(2023, 1, 9),
    )

    run_evaluation_pass(session_factory, now=datetime(2023, 1, 9, 3, 0))

    assert _stored(session_factory, "weekly").superseded_by == successor_id
    assert _stored(session_factory, successor_id).reward_cycle_end_date == "2023-01-23T00:00:00"
