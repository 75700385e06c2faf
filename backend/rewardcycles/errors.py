"""
Reward cycle error hierarchy.

Every error carries a machine-readable `code` so the scheduler log and API
callers can branch on it without parsing English messages.
"""
from __future__ import annotations

from typing import Any


class CycleError(Exception):
    """Base class for reward cycle evaluation errors."""
    code: str = "CYCLE_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class DataIntegrityError(CycleError):
    """A stored cycle is missing fields the state machine needs."""
    code = "DATA_INTEGRITY"

    def __init__(self, cycle_id: str, missing: list[str]):
        super().__init__(
            message=f"Reward cycle {cycle_id} is missing required fields: {', '.join(missing)}.",
            details={"cycle_id": cycle_id, "missing": missing},
        )


class ConfigurationError(CycleError):
    """A stored cycle names a recurrence policy that does not exist."""
    code = "UNKNOWN_OCCURRENCE_POLICY"

    def __init__(self, cycle_id: str, range_of_occurrence: Any):
        super().__init__(
            message=f"Reward cycle {cycle_id} has unknown range of occurrence {range_of_occurrence!r}.",
            details={"cycle_id": cycle_id, "range_of_occurrence": range_of_occurrence},
        )


class PublishedCycleError(CycleError):
    """Published cycles are final and must not be evaluated again."""
    code = "CYCLE_ALREADY_PUBLISHED"

    def __init__(self, cycle_id: str):
        super().__init__(
            message=f"Reward cycle {cycle_id} is already published and cannot be evaluated.",
            details={"cycle_id": cycle_id},
        )
