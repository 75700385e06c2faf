"""Reward cycle API endpoints."""
import logging
import uuid
from dataclasses import asdict, replace

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session, sessionmaker

from rewardcycles.api.deps import get_db, get_session_factory
from rewardcycles.config import get_settings
from rewardcycles.models.reward_cycle import (
    OccurrenceType,
    ResultPublishState,
    RewardCycleState,
)
from rewardcycles.schemas.reward_cycle import (
    EvaluationSummary,
    RewardCycleResponse,
    RewardCycleSet,
)
from rewardcycles.services.cycle_engine import CycleRecord
from rewardcycles.services.cycle_repository import RewardCycleRepository
from rewardcycles.services.cycle_scheduler import run_evaluation_pass, utcnow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reward-cycles", tags=["reward-cycles"])


def _response(record: CycleRecord) -> RewardCycleResponse:
    return RewardCycleResponse(**asdict(record))


def _validate_cycle_request(request: RewardCycleSet) -> None:
    """Apply the same checks the cycle settings form enforces."""
    settings = get_settings()

    if request.reward_cycle_start_date is None or request.reward_cycle_end_date is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Start date and end date are required",
        )

    duration = (request.reward_cycle_end_date.date() - request.reward_cycle_start_date.date()).days
    if duration < settings.min_cycle_duration_days:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"End date must be at least {settings.min_cycle_duration_days} days after start date",
        )

    if not request.is_recurring:
        return

    if request.range_of_occurrence == OccurrenceType.OCCURRENCE:
        if not request.number_of_occurrences or request.number_of_occurrences <= 0:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Number of occurrences must be greater than zero",
            )

    if request.range_of_occurrence == OccurrenceType.END_DATE:
        if request.range_of_occurrence_end_date is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="End by date is required",
            )


@router.get("/{team_id}/current", response_model=RewardCycleResponse)
def get_current_cycle(team_id: str, db: Session = Depends(get_db)):
    """Get the team's current (unpublished) reward cycle."""
    cycle = RewardCycleRepository(db).get_current_cycle(team_id)
    if not cycle:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No reward cycle set for this team")
    return _response(cycle)


@router.get("/{team_id}/published", response_model=RewardCycleResponse)
def get_published_cycle(team_id: str, db: Session = Depends(get_db)):
    """Get the team's most recently published reward cycle."""
    cycle = RewardCycleRepository(db).get_published_cycle(team_id)
    if not cycle:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No published reward cycle for this team")
    return _response(cycle)


@router.get("/{team_id}/history", response_model=list[RewardCycleResponse])
def get_cycle_history(team_id: str, db: Session = Depends(get_db)):
    """Get every cycle the team has had, newest first."""
    return [_response(c) for c in RewardCycleRepository(db).list_team_history(team_id)]


@router.put("/{team_id}", response_model=RewardCycleResponse)
def set_reward_cycle(team_id: str, request: RewardCycleSet, db: Session = Depends(get_db)):
    """Create the team's reward cycle, or update the current one."""
    _validate_cycle_request(request)

    repository = RewardCycleRepository(db)
    now = utcnow()
    existing = repository.get_current_cycle(team_id)

    range_of_occurrence = request.range_of_occurrence if request.is_recurring else OccurrenceType.NO_END_DATE
    number_of_occurrences = (
        request.number_of_occurrences if range_of_occurrence == OccurrenceType.OCCURRENCE else 0
    )
    end_by = request.range_of_occurrence_end_date if range_of_occurrence == OccurrenceType.END_DATE else None

    if existing and existing.reward_cycle_state == RewardCycleState.ACTIVE:
        state = RewardCycleState.ACTIVE
    elif request.reward_cycle_start_date.date() == now.date():
        state = RewardCycleState.ACTIVE
    else:
        state = RewardCycleState.INACTIVE

    fields = dict(
        team_id=team_id,
        reward_cycle_start_date=request.reward_cycle_start_date,
        reward_cycle_end_date=request.reward_cycle_end_date,
        is_recurring=request.is_recurring,
        range_of_occurrence=range_of_occurrence,
        range_of_occurrence_end_date=end_by,
        number_of_occurrences=number_of_occurrences,
        reward_cycle_state=state,
        created_by_object_id=request.created_by_object_id,
        created_by_principal_name=request.created_by_principal_name,
    )

    if existing:
        record = replace(existing, **fields)
    else:
        record = CycleRecord(cycle_id=str(uuid.uuid4()), created_on=now, **fields)

    saved = repository.upsert(record)
    logger.info(f"Team {team_id}: reward cycle {saved.cycle_id} set")
    return _response(saved)


@router.post("/{team_id}/publish", response_model=RewardCycleResponse)
def publish_reward_cycle(team_id: str, db: Session = Depends(get_db)):
    """Mark the team's current cycle as published. It is never evaluated again."""
    repository = RewardCycleRepository(db)
    cycle = repository.get_current_cycle(team_id)
    if not cycle:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No reward cycle set for this team")

    published = repository.upsert(
        replace(
            cycle,
            result_published=ResultPublishState.PUBLISHED,
            reward_cycle_state=RewardCycleState.INACTIVE,
            result_published_on=utcnow(),
        )
    )
    logger.info(f"Team {team_id}: reward cycle {published.cycle_id} published")
    return _response(published)


@router.post("/evaluate", response_model=EvaluationSummary)
def evaluate_reward_cycles(session_factory: sessionmaker = Depends(get_session_factory)):
    """Run one evaluation pass now instead of waiting for the scheduler."""
    return EvaluationSummary(**run_evaluation_pass(session_factory))
