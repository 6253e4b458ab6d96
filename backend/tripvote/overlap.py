from __future__ import annotations

from datetime import date, time
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from .models import ActivityModel
from .outcomes import OverlapCheck
from .schemas import Activity


def to_minutes(value: time) -> int:
    return value.hour * 60 + value.minute


def intervals_overlap(start_a: int, end_a: int, start_b: int, end_b: int) -> bool:
    # Half-open: [09:00, 10:00) and [10:00, 11:00) only touch.
    return start_a < end_b and start_b < end_a


def detect_overlap(
    db: Session,
    trip_id: int,
    on_date: date,
    start_time: time,
    end_time: time,
    exclude_activity_id: Optional[int] = None,
) -> OverlapCheck:
    """Check a candidate slot against the trip's confirmed activities on the same date.

    Pending suggestions are never considered. When several activities
    conflict the earliest inserted one is reported.
    """
    query = (
        select(ActivityModel)
        .where(ActivityModel.trip_id == trip_id, ActivityModel.date == on_date)
        .order_by(ActivityModel.id)
    )
    if exclude_activity_id is not None:
        query = query.where(ActivityModel.id != exclude_activity_id)

    candidate_start, candidate_end = to_minutes(start_time), to_minutes(end_time)
    for activity in db.execute(query).scalars():
        if intervals_overlap(to_minutes(activity.start_time), to_minutes(activity.end_time), candidate_start, candidate_end):
            return OverlapCheck(conflict=True, with_activity=Activity.model_validate(activity))
    return OverlapCheck(conflict=False)
