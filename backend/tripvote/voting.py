from __future__ import annotations

import logging
import math
from typing import Union

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .db import dialect_insert
from .ledger import promote_suggestion
from .membership import count_group_members, get_trip_by_id, is_group_member
from .models import SuggestionModel, VoteModel
from .outcomes import AnyFailure, NotFound, PermissionDenied, SchedulingConflict, VoteResult
from .schemas import Tally, VoteValue

logger = logging.getLogger("tripvote.voting")


def votes_needed(member_count: int) -> int:
    return math.ceil(member_count / 2)


def quorum(db: Session, group_id: int) -> int:
    """Yes votes needed to promote, from the group's membership right now."""
    return votes_needed(count_group_members(db, group_id))


def tally(db: Session, suggestion_id: int) -> Tally:
    rows = db.execute(
        select(VoteModel.vote, func.count()).where(VoteModel.suggestion_id == suggestion_id).group_by(VoteModel.vote)
    ).all()
    counts = {value: count for value, count in rows}
    yes = counts.get(VoteValue.yes.value, 0)
    no = counts.get(VoteValue.no.value, 0)
    return Tally(yes=yes, no=no, total=yes + no)


def evaluate(db: Session, suggestion: SuggestionModel, recheck_overlap: bool = False) -> VoteResult:
    trip = get_trip_by_id(db, suggestion.trip_id)
    current = tally(db, suggestion.id)
    needed = quorum(db, trip.group_id)
    result = VoteResult(suggestion_id=suggestion.id, trip_id=suggestion.trip_id, tally=current, votes_needed=needed)

    if current.yes < needed:
        return result

    outcome = promote_suggestion(db, suggestion, recheck_overlap=recheck_overlap)
    if isinstance(outcome, SchedulingConflict):
        result.promotion_blocked = outcome
    else:
        result.promoted = outcome
    return result


def cast_vote(
    db: Session,
    suggestion_id: int,
    voter_id: int,
    value: VoteValue,
    recheck_overlap: bool = False,
) -> Union[VoteResult, AnyFailure]:
    suggestion = db.get(SuggestionModel, suggestion_id)
    if not suggestion:
        return NotFound(message="Suggestion not found")

    trip = get_trip_by_id(db, suggestion.trip_id)
    if is_group_member(db, voter_id, trip.group_id) is None:
        return PermissionDenied(message="You are not a member of this group")

    # One row per voter, even when the same voter's requests race.
    db.execute(
        dialect_insert(db, VoteModel)
        .values(suggestion_id=suggestion_id, user_id=voter_id, vote=value.value)
        .on_conflict_do_update(index_elements=["suggestion_id", "user_id"], set_={"vote": value.value})
    )
    db.expire(suggestion, ["votes"])
    logger.info("User %s voted %s on suggestion %s", voter_id, value.value, suggestion_id)

    return evaluate(db, suggestion, recheck_overlap=recheck_overlap)
