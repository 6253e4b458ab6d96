"""Lifecycle of a proposed activity: proposed -> promoted | withdrawn.

A pending suggestion lives in ``activity_suggestions``; once promoted it is
a row in ``activities`` instead. ``promote_suggestion`` is the only code
path that moves an item between the two tables.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional, Union

from sqlalchemy import select
from sqlalchemy.orm import Session

from .db import dialect_insert
from .membership import get_trip_by_id, is_group_member
from .models import ActivityModel, SuggestionModel
from .outcomes import AnyFailure, InvalidTimeRange, NotFound, PermissionDenied, SchedulingConflict
from .overlap import detect_overlap, to_minutes
from .schemas import Activity, ActivityFields, MemberRole, Suggestion, SuggestionCreateRequest

logger = logging.getLogger("tripvote.ledger")

COPIED_FIELDS = ("title", "description", "location", "latitude", "longitude", "date", "start_time", "end_time")


def has_valid_time_range(fields: ActivityFields) -> bool:
    return to_minutes(fields.start_time) < to_minutes(fields.end_time)


def check_time_range(fields: ActivityFields) -> Optional[InvalidTimeRange]:
    if fields.start_time is None or fields.end_time is None:
        return InvalidTimeRange(message="Start and end times are required")
    if not has_valid_time_range(fields):
        return InvalidTimeRange()
    return None


def _find_by_token(db: Session, trip_id: int, client_token: str) -> Optional[SuggestionModel]:
    return db.execute(
        select(SuggestionModel).where(
            SuggestionModel.trip_id == trip_id,
            SuggestionModel.client_token == client_token,
        )
    ).scalar_one_or_none()


def propose_suggestion(
    db: Session,
    trip_id: int,
    fields: SuggestionCreateRequest,
    proposer_id: int,
) -> Union[Suggestion, AnyFailure]:
    trip = get_trip_by_id(db, trip_id)
    if not trip:
        return NotFound(message="Trip not found")
    if is_group_member(db, proposer_id, trip.group_id) is None:
        return PermissionDenied(message="You are not a member of this group")

    invalid = check_time_range(fields)
    if invalid:
        return invalid

    if fields.client_token:
        existing = _find_by_token(db, trip_id, fields.client_token)
        if existing:
            logger.info("Replayed proposal token %s on trip %s -> suggestion %s", fields.client_token, trip_id, existing.id)
            return Suggestion.model_validate(existing)

    overlap = detect_overlap(db, trip_id, fields.date, fields.start_time, fields.end_time)
    if overlap.conflict:
        logger.info(
            "Rejected proposal %r on trip %s: overlaps activity %s",
            fields.title,
            trip_id,
            overlap.with_activity.id,
        )
        return SchedulingConflict.against(overlap.with_activity)

    values = dict(
        trip_id=trip_id,
        title=fields.title,
        description=fields.description or None,
        location=fields.location or None,
        latitude=fields.latitude,
        longitude=fields.longitude,
        date=fields.date,
        start_time=fields.start_time,
        end_time=fields.end_time,
        suggested_by=proposer_id,
        created_at=datetime.utcnow(),
        client_token=fields.client_token,
    )
    if fields.client_token:
        # A concurrent request with the same token may have inserted first; keep its row.
        db.execute(
            dialect_insert(db, SuggestionModel)
            .values(**values)
            .on_conflict_do_nothing(index_elements=["trip_id", "client_token"])
        )
        model = _find_by_token(db, trip_id, fields.client_token)
    else:
        model = SuggestionModel(**values)
        db.add(model)
        db.flush()
    logger.info("User %s proposed suggestion %s on trip %s", proposer_id, model.id, trip_id)
    return Suggestion.model_validate(model)


def _discard(db: Session, suggestion: SuggestionModel) -> None:
    # Votes go first so none can outlive their suggestion.
    for vote in list(suggestion.votes):
        db.delete(vote)
    db.delete(suggestion)
    db.flush()


def withdraw_suggestion(db: Session, suggestion_id: int, actor_id: int) -> Union[Suggestion, AnyFailure]:
    suggestion = db.get(SuggestionModel, suggestion_id)
    if not suggestion:
        return NotFound(message="Suggestion not found")

    trip = get_trip_by_id(db, suggestion.trip_id)
    role = is_group_member(db, actor_id, trip.group_id)
    if role is None or (role != MemberRole.admin and suggestion.suggested_by != actor_id):
        return PermissionDenied(message="You don't have permission to delete this suggestion")

    snapshot = Suggestion.model_validate(suggestion)
    _discard(db, suggestion)
    logger.info("User %s withdrew suggestion %s on trip %s", actor_id, suggestion_id, snapshot.trip_id)
    return snapshot


def promote_suggestion(
    db: Session,
    suggestion: SuggestionModel,
    recheck_overlap: bool = False,
) -> Union[Activity, SchedulingConflict]:
    """Turn an approved suggestion into a confirmed activity.

    The proposer becomes the activity's creator. With ``recheck_overlap``
    the slot is validated again against confirmed activities and a
    conflict leaves the suggestion pending.
    """
    if recheck_overlap:
        overlap = detect_overlap(db, suggestion.trip_id, suggestion.date, suggestion.start_time, suggestion.end_time)
        if overlap.conflict:
            logger.warning(
                "Promotion of suggestion %s blocked: overlaps activity %s",
                suggestion.id,
                overlap.with_activity.id,
            )
            return SchedulingConflict.against(overlap.with_activity)

    activity = ActivityModel(
        trip_id=suggestion.trip_id,
        created_by=suggestion.suggested_by,
        **{name: getattr(suggestion, name) for name in COPIED_FIELDS},
    )
    db.add(activity)
    suggestion_id = suggestion.id
    _discard(db, suggestion)
    logger.info("Promoted suggestion %s to activity %s on trip %s", suggestion_id, activity.id, activity.trip_id)
    return Activity.model_validate(activity)
