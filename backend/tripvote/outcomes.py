"""Typed results for the scheduling core.

Ledger and vote operations return either their value or one of the
``Failure`` models below. Route handlers turn a failure into an HTTP
error with ``status_code``; nothing in the core raises for these cases.
``StoreBusy`` is the exception: it signals that the store itself could
not take the write and is raised by the repository after retrying.
"""

from __future__ import annotations

from typing import ClassVar, Literal, Optional, Union

from pydantic import BaseModel

from .schemas import Activity, Tally


class Failure(BaseModel):
    kind: str
    message: str

    status_code: ClassVar[int] = 400


class InvalidTimeRange(Failure):
    kind: Literal["invalid_time_range"] = "invalid_time_range"
    message: str = "End time must be after start time"


class SchedulingConflict(Failure):
    kind: Literal["scheduling_conflict"] = "scheduling_conflict"
    conflicting_activity: Activity

    status_code: ClassVar[int] = 409

    @classmethod
    def against(cls, activity: Activity) -> "SchedulingConflict":
        return cls(
            message=(
                f'Time conflict! This overlaps with "{activity.title}" '
                f"({activity.start_time:%H:%M} - {activity.end_time:%H:%M})"
            ),
            conflicting_activity=activity,
        )


class PermissionDenied(Failure):
    kind: Literal["permission_denied"] = "permission_denied"

    status_code: ClassVar[int] = 403


class NotFound(Failure):
    kind: Literal["not_found"] = "not_found"

    status_code: ClassVar[int] = 404


class AlreadyExists(Failure):
    kind: Literal["already_exists"] = "already_exists"

    status_code: ClassVar[int] = 409


AnyFailure = Union[InvalidTimeRange, SchedulingConflict, PermissionDenied, NotFound, AlreadyExists]


class OverlapCheck(BaseModel):
    conflict: bool = False
    with_activity: Optional[Activity] = None


class VoteResult(BaseModel):
    suggestion_id: int
    trip_id: int
    tally: Tally
    votes_needed: int
    promoted: Optional[Activity] = None
    promotion_blocked: Optional[SchedulingConflict] = None


class StoreBusy(RuntimeError):
    """The store stayed locked through every retry; the caller may retry later."""

    def __init__(self, attempts: int) -> None:
        super().__init__(f"Store is busy, gave up after {attempts} attempt(s)")
        self.attempts = attempts
