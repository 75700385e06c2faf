"""SQLAlchemy models package."""
from rewardcycles.models.reward_cycle import (
    OccurrenceType,
    ResultPublishState,
    RewardCycle,
    RewardCycleState,
)

__all__ = [
    "OccurrenceType",
    "ResultPublishState",
    "RewardCycle",
    "RewardCycleState",
]
