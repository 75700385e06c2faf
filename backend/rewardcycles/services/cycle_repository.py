"""Reward cycle persistence."""
import logging
from datetime import datetime

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from rewardcycles.config import get_settings
from rewardcycles.models.reward_cycle import (
    ResultPublishState,
    RewardCycle,
    RewardCycleState,
)
from rewardcycles.services.cycle_engine import CycleRecord

logger = logging.getLogger(__name__)

_DATETIME_FIELDS = (
    "reward_cycle_start_date",
    "reward_cycle_end_date",
    "range_of_occurrence_end_date",
    "result_published_on",
    "created_on",
)


def _parse_datetime(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value)


def _format_datetime(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def to_record(row: RewardCycle) -> CycleRecord:
    """Convert a stored row into the engine's immutable record."""
    return CycleRecord(
        cycle_id=row.cycle_id,
        team_id=row.team_id,
        reward_cycle_start_date=_parse_datetime(row.reward_cycle_start_date),
        reward_cycle_end_date=_parse_datetime(row.reward_cycle_end_date),
        is_recurring=bool(row.is_recurring),
        range_of_occurrence=row.range_of_occurrence,
        range_of_occurrence_end_date=_parse_datetime(row.range_of_occurrence_end_date),
        number_of_occurrences=row.number_of_occurrences or 0,
        reward_cycle_state=row.reward_cycle_state or RewardCycleState.INACTIVE,
        result_published=row.result_published or ResultPublishState.UNPUBLISHED,
        result_published_on=_parse_datetime(row.result_published_on),
        created_on=_parse_datetime(row.created_on),
        created_by_object_id=row.created_by_object_id,
        created_by_principal_name=row.created_by_principal_name,
        superseded_by=row.superseded_by,
    )


def _record_values(record: CycleRecord) -> dict:
    values = {
        "team_id": record.team_id,
        "is_recurring": 1 if record.is_recurring else 0,
        "range_of_occurrence": record.range_of_occurrence,
        "number_of_occurrences": record.number_of_occurrences,
        "reward_cycle_state": int(record.reward_cycle_state),
        "result_published": int(record.result_published),
        "created_by_object_id": record.created_by_object_id,
        "created_by_principal_name": record.created_by_principal_name,
        "superseded_by": record.superseded_by,
    }
    for field in _DATETIME_FIELDS:
        values[field] = _format_datetime(getattr(record, field))
    return values


def _apply_record(row: RewardCycle, record: CycleRecord) -> None:
    for field, value in _record_values(record).items():
        setattr(row, field, value)


class RewardCycleRepository:
    """Reads and writes reward cycles through a SQLAlchemy session."""

    def __init__(self, db: Session, retry_attempts: int | None = None, max_wait_seconds: float | None = None):
        settings = get_settings()
        self.db = db
        self.retry_attempts = retry_attempts or settings.storage_retry_attempts
        self.max_wait_seconds = (
            max_wait_seconds if max_wait_seconds is not None else settings.storage_retry_max_wait_seconds
        )

    def _current_query(self):
        """Cycles that are still in play: unpublished and not rolled past."""
        return self.db.query(RewardCycle).filter(
            RewardCycle.result_published == ResultPublishState.UNPUBLISHED,
            RewardCycle.superseded_by.is_(None),
        )

    def list_unpublished_cycles(self) -> list[CycleRecord]:
        """The scheduler's working set, one unbounded fetch per tick."""
        rows = self._current_query().order_by(RewardCycle.team_id, RewardCycle.created_on).all()
        return [to_record(row) for row in rows]

    def get(self, cycle_id: str) -> CycleRecord | None:
        row = self.db.get(RewardCycle, cycle_id)
        return to_record(row) if row else None

    def get_current_cycle(self, team_id: str) -> CycleRecord | None:
        row = (
            self._current_query()
            .filter(RewardCycle.team_id == team_id)
            .order_by(RewardCycle.created_on.desc())
            .first()
        )
        return to_record(row) if row else None

    def get_published_cycle(self, team_id: str) -> CycleRecord | None:
        row = (
            self.db.query(RewardCycle)
            .filter(
                RewardCycle.team_id == team_id,
                RewardCycle.result_published == ResultPublishState.PUBLISHED,
            )
            .order_by(RewardCycle.result_published_on.desc())
            .first()
        )
        return to_record(row) if row else None

    def list_team_history(self, team_id: str) -> list[CycleRecord]:
        rows = (
            self.db.query(RewardCycle)
            .filter(RewardCycle.team_id == team_id)
            .order_by(RewardCycle.created_on.desc())
            .all()
        )
        return [to_record(row) for row in rows]

    def _retrying(self) -> Retrying:
        return Retrying(
            retry=retry_if_exception_type(OperationalError),
            stop=stop_after_attempt(self.retry_attempts),
            wait=wait_exponential(multiplier=0.5, max=self.max_wait_seconds),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

    def upsert(self, record: CycleRecord) -> CycleRecord:
        """Insert or replace a cycle by id, retrying transient storage errors."""
        return self._retrying()(self._upsert_once, record)

    def update_if_current(self, record: CycleRecord) -> bool:
        """Overwrite a cycle only while it is still unpublished and not rolled past.

        Returns False, writing nothing, when the stored row has been published
        or superseded since `record` was read.
        """
        return self._retrying()(self._update_if_current_once, record)

    def close_and_insert_successor(self, closed: CycleRecord, successor: CycleRecord) -> bool:
        """Close a rolled-past cycle and insert its successor in one transaction.

        Same guard as `update_if_current` on the closed row. A successor row
        that already exists is left as it is.
        """
        return self._retrying()(self._close_and_insert_successor_once, closed, successor)

    def _guarded_update(self, record: CycleRecord) -> bool:
        updated = (
            self._current_query()
            .filter(RewardCycle.cycle_id == record.cycle_id)
            .update(_record_values(record), synchronize_session=False)
        )
        return updated == 1

    def _update_if_current_once(self, record: CycleRecord) -> bool:
        try:
            if not self._guarded_update(record):
                self.db.rollback()
                return False
            self.db.commit()
        except OperationalError:
            self.db.rollback()
            raise
        return True

    def _close_and_insert_successor_once(self, closed: CycleRecord, successor: CycleRecord) -> bool:
        try:
            if not self._guarded_update(closed):
                self.db.rollback()
                return False
            if self.db.get(RewardCycle, successor.cycle_id) is None:
                row = RewardCycle(cycle_id=successor.cycle_id)
                _apply_record(row, successor)
                self.db.add(row)
            self.db.commit()
        except OperationalError:
            self.db.rollback()
            raise
        return True

    def _upsert_once(self, record: CycleRecord) -> CycleRecord:
        try:
            row = self.db.get(RewardCycle, record.cycle_id)
            if row is None:
                row = RewardCycle(cycle_id=record.cycle_id)
                self.db.add(row)
            _apply_record(row, record)
            self.db.commit()
        except OperationalError:
            self.db.rollback()
            raise
        self.db.refresh(row)
        return to_record(row)
