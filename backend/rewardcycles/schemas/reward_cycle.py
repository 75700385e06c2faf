"""Reward cycle schemas."""
from datetime import datetime, timezone

from pydantic import BaseModel, Field, field_validator

from rewardcycles.models.reward_cycle import OccurrenceType


class RewardCycleSet(BaseModel):
    """Request to set a team's reward cycle."""

    reward_cycle_start_date: datetime | None = None
    reward_cycle_end_date: datetime | None = None
    is_recurring: bool = False
    range_of_occurrence: OccurrenceType = OccurrenceType.NO_END_DATE
    range_of_occurrence_end_date: datetime | None = None
    number_of_occurrences: int | None = None
    created_by_object_id: str | None = Field(None, max_length=36)
    created_by_principal_name: str | None = Field(None, max_length=255)

    @field_validator(
        "reward_cycle_start_date", "reward_cycle_end_date", "range_of_occurrence_end_date"
    )
    @classmethod
    def to_naive_utc(cls, value: datetime | None) -> datetime | None:
        """Cycle dates are stored as naive UTC."""
        if value is not None and value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value


class RewardCycleResponse(BaseModel):
    """Stored reward cycle."""

    cycle_id: str
    team_id: str
    reward_cycle_start_date: datetime | None
    reward_cycle_end_date: datetime | None
    is_recurring: bool
    range_of_occurrence: int
    range_of_occurrence_end_date: datetime | None
    number_of_occurrences: int
    reward_cycle_state: int
    result_published: int
    result_published_on: datetime | None
    created_on: datetime | None
    created_by_object_id: str | None
    created_by_principal_name: str | None
    superseded_by: str | None

    class Config:
        from_attributes = True


class EvaluationSummary(BaseModel):
    """Counts from one evaluation pass."""

    evaluated: int
    rolled_over: int
    failed: int
    skipped: bool
