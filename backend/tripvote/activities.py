from __future__ import annotations

import logging
from typing import List, Union

from sqlalchemy import select
from sqlalchemy.orm import Session

from .ledger import check_time_range
from .membership import get_trip_by_id, is_group_admin, is_group_member
from .models import ActivityModel
from .outcomes import AnyFailure, NotFound, PermissionDenied, SchedulingConflict
from .overlap import detect_overlap
from .schemas import Activity, ActivityFields, MemberRole

logger = logging.getLogger("tripvote.activities")


def list_trip_activities(db: Session, trip_id: int) -> List[ActivityModel]:
    return list(
        db.execute(
            select(ActivityModel)
            .where(ActivityModel.trip_id == trip_id)
            .order_by(ActivityModel.date, ActivityModel.start_time, ActivityModel.id)
        ).scalars()
    )


def create_activity(
    db: Session, trip_id: int, fields: ActivityFields, actor_id: int
) -> Union[Activity, AnyFailure]:
    """Schedule a confirmed activity directly, bypassing the vote. Admins only."""
    trip = get_trip_by_id(db, trip_id)
    if not trip:
        return NotFound(message="Trip not found")
    if not is_group_admin(db, actor_id, trip.group_id):
        return PermissionDenied(message="Only admins can schedule activities directly")
    invalid = check_time_range(fields)
    if invalid:
        return invalid

    overlap = detect_overlap(db, trip_id, fields.date, fields.start_time, fields.end_time)
    if overlap.conflict:
        return SchedulingConflict.against(overlap.with_activity)

    model = ActivityModel(
        trip_id=trip_id,
        title=fields.title,
        description=fields.description or None,
        location=fields.location or None,
        latitude=fields.latitude,
        longitude=fields.longitude,
        date=fields.date,
        start_time=fields.start_time,
        end_time=fields.end_time,
        created_by=actor_id,
    )
    db.add(model)
    db.flush()
    logger.info("Admin %s scheduled activity %s on trip %s", actor_id, model.id, trip_id)
    return Activity.model_validate(model)


def delete_activity(db: Session, activity_id: int, actor_id: int) -> Union[Activity, AnyFailure]:
    model = db.get(ActivityModel, activity_id)
    if not model:
        return NotFound(message="Activity not found")

    trip = get_trip_by_id(db, model.trip_id)
    role = is_group_member(db, actor_id, trip.group_id)
    if role is None or (role != MemberRole.admin and model.created_by != actor_id):
        return PermissionDenied(message="You don't have permission to delete this activity")

    snapshot = Activity.model_validate(model)
    db.delete(model)
    db.flush()
    logger.info("User %s deleted activity %s on trip %s", actor_id, activity_id, snapshot.trip_id)
    return snapshot
