"""Reward cycle model."""
import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, Index, Integer, String

from rewardcycles.database import Base


class RewardCycleState(enum.IntEnum):
    INACTIVE = 0
    ACTIVE = 1


class ResultPublishState(enum.IntEnum):
    UNPUBLISHED = 0
    PUBLISHED = 1


class OccurrenceType(enum.IntEnum):
    """Which rule ends a recurring cycle."""

    NO_END_DATE = 0  # recur forever
    END_DATE = 1  # recur until range_of_occurrence_end_date
    OCCURRENCE = 2  # recur number_of_occurrences more times


class RewardCycle(Base):
    """A team's nomination window. Rolled-over cycles stay as history rows."""

    __tablename__ = "reward_cycles"
    __table_args__ = (
        Index("ix_reward_cycles_team_current", "team_id", "result_published", "superseded_by"),
        Index("ix_reward_cycles_unpublished", "result_published", "superseded_by"),
    )

    cycle_id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    team_id = Column(String(100), nullable=False, index=True)

    # Window (ISO datetimes; only the date part drives state)
    reward_cycle_start_date = Column(String(26))
    reward_cycle_end_date = Column(String(26))

    # Recurrence
    is_recurring = Column(Integer, default=0)  # SQLite boolean
    range_of_occurrence = Column(Integer, default=OccurrenceType.NO_END_DATE)
    range_of_occurrence_end_date = Column(String(26))
    number_of_occurrences = Column(Integer, default=0)

    # Status
    reward_cycle_state = Column(Integer, default=RewardCycleState.INACTIVE)
    result_published = Column(Integer, default=ResultPublishState.UNPUBLISHED)
    result_published_on = Column(String(26))
    superseded_by = Column(String(36))  # successor cycle_id once rolled past

    # Provenance
    created_on = Column(String(26), default=lambda: datetime.now(timezone.utc).replace(tzinfo=None).isoformat())
    created_by_object_id = Column(String(36))
    created_by_principal_name = Column(String(255))
