"""Reward cycle state machine.

Decides, for one stored cycle and an explicit "now", whether the cycle is
Active or Inactive and whether it must roll over into a new cycle of the
same duration. All comparisons use the date part only; any time of day
stored on the cycle is ignored.

The functions here never read a clock and never mutate their input, so
evaluating the same record at the same instant always gives the same
result. Persisting the outcome is the caller's job.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta

from rewardcycles.errors import ConfigurationError, DataIntegrityError, PublishedCycleError
from rewardcycles.models.reward_cycle import (
    OccurrenceType,
    ResultPublishState,
    RewardCycleState,
)

logger = logging.getLogger(__name__)

# Rollover ids are derived from (previous id, rollover date) under this namespace.
CYCLE_ID_NAMESPACE = uuid.UUID("6f1c1d52-3b0e-4f0a-9a43-6c1f2e7b5d10")


@dataclass(frozen=True)
class CycleRecord:
    """Engine-side view of a reward cycle row."""

    cycle_id: str
    team_id: str
    reward_cycle_start_date: datetime | None
    reward_cycle_end_date: datetime | None
    is_recurring: bool = False
    range_of_occurrence: int = OccurrenceType.NO_END_DATE
    range_of_occurrence_end_date: datetime | None = None
    number_of_occurrences: int = 0
    reward_cycle_state: int = RewardCycleState.INACTIVE
    result_published: int = ResultPublishState.UNPUBLISHED
    result_published_on: datetime | None = None
    created_on: datetime | None = None
    created_by_object_id: str | None = None
    created_by_principal_name: str | None = None
    superseded_by: str | None = None

    @property
    def duration_days(self) -> int:
        return (self.reward_cycle_end_date.date() - self.reward_cycle_start_date.date()).days


@dataclass(frozen=True)
class CycleTransition:
    """Outcome of one evaluation.

    `cycle` is the record that is current after the tick. On rollover it is
    the newly minted cycle and `closed` holds the prior cycle, now Inactive
    and pointing at its successor.
    """

    cycle: CycleRecord
    closed: CycleRecord | None = None

    @property
    def rolled_over(self) -> bool:
        return self.closed is not None


def evaluate(cycle: CycleRecord, now: datetime) -> CycleTransition:
    """Compute the next state of `cycle` at `now`."""
    _check_preconditions(cycle)
    today = now.date()
    start = cycle.reward_cycle_start_date.date()
    end = cycle.reward_cycle_end_date.date()

    if not cycle.is_recurring:
        if start <= today <= end:
            return _with_state(cycle, RewardCycleState.ACTIVE)
        return _with_state(cycle, RewardCycleState.INACTIVE)

    try:
        policy = _occurrence_policy(cycle)
    except ConfigurationError as exc:
        logger.warning(f"{exc.message} Treating cycle as inactive.")
        return _with_state(cycle, RewardCycleState.INACTIVE)

    if policy is OccurrenceType.NO_END_DATE:
        if today > end:
            return roll_over(cycle, now)
        return CycleTransition(cycle=cycle)

    if policy is OccurrenceType.END_DATE:
        end_by = _date_or_none(cycle.range_of_occurrence_end_date)
        remaining = (end_by - today).days if end_by is not None else None
        if start <= today <= end:
            return _with_state(cycle, RewardCycleState.ACTIVE)
        # Strict: a runway of exactly one more duration does not roll over.
        if end_by is not None and end < today <= end_by and remaining > cycle.duration_days:
            return roll_over(cycle, now)
        return _with_state(cycle, RewardCycleState.INACTIVE)

    # OccurrenceType.OCCURRENCE
    if cycle.number_of_occurrences > 0 and today > end:
        return roll_over(cycle, now, number_of_occurrences=cycle.number_of_occurrences - 1)
    # >= 0 keeps a spent counter Active until its window ends.
    if cycle.number_of_occurrences >= 0 and today <= end:
        return _with_state(cycle, RewardCycleState.ACTIVE)
    return _with_state(cycle, RewardCycleState.INACTIVE)


def roll_over(cycle: CycleRecord, now: datetime, **overrides) -> CycleTransition:
    """Close `cycle` and mint its successor with the same duration, starting at `now`."""
    new_cycle = replace(
        cycle,
        cycle_id=next_cycle_id(cycle.cycle_id, now.date()),
        created_on=now,
        result_published=ResultPublishState.UNPUBLISHED,
        result_published_on=None,
        reward_cycle_state=RewardCycleState.ACTIVE,
        reward_cycle_start_date=now,
        reward_cycle_end_date=now + timedelta(days=cycle.duration_days),
        superseded_by=None,
        **overrides,
    )
    closed = replace(
        cycle,
        reward_cycle_state=RewardCycleState.INACTIVE,
        superseded_by=new_cycle.cycle_id,
    )
    return CycleTransition(cycle=new_cycle, closed=closed)


def next_cycle_id(previous_cycle_id: str, rollover_date: date) -> str:
    return str(uuid.uuid5(CYCLE_ID_NAMESPACE, f"{previous_cycle_id}:{rollover_date.isoformat()}"))


def _check_preconditions(cycle: CycleRecord) -> None:
    if cycle.result_published == ResultPublishState.PUBLISHED:
        raise PublishedCycleError(cycle.cycle_id)

    missing = [
        name
        for name in ("reward_cycle_start_date", "reward_cycle_end_date")
        if getattr(cycle, name) is None
    ]
    if missing:
        raise DataIntegrityError(cycle.cycle_id, missing)


def _occurrence_policy(cycle: CycleRecord) -> OccurrenceType:
    try:
        return OccurrenceType(cycle.range_of_occurrence)
    except ValueError as exc:
        raise ConfigurationError(cycle.cycle_id, cycle.range_of_occurrence) from exc


def _with_state(cycle: CycleRecord, state: RewardCycleState) -> CycleTransition:
    return CycleTransition(cycle=replace(cycle, reward_cycle_state=state))


def _date_or_none(value: datetime | None) -> date | None:
    return value.date() if value is not None else None
