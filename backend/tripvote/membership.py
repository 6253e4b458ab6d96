"""Lookups the scheduling core needs from group and trip administration."""

from __future__ import annotations

from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .models import GroupMemberModel, TripModel
from .schemas import MemberRole


def is_group_member(db: Session, user_id: int, group_id: int) -> Optional[MemberRole]:
    model = db.get(GroupMemberModel, {"group_id": group_id, "user_id": user_id})
    if not model:
        return None
    return MemberRole(model.role)


def is_group_admin(db: Session, user_id: int, group_id: int) -> bool:
    return is_group_member(db, user_id, group_id) == MemberRole.admin


def get_group_members(db: Session, group_id: int) -> List[GroupMemberModel]:
    return list(
        db.execute(
            select(GroupMemberModel).where(GroupMemberModel.group_id == group_id).order_by(GroupMemberModel.joined_at)
        ).scalars()
    )


def count_group_members(db: Session, group_id: int) -> int:
    return db.execute(
        select(func.count()).select_from(GroupMemberModel).where(GroupMemberModel.group_id == group_id)
    ).scalar_one()


def get_trip_by_id(db: Session, trip_id: int) -> Optional[TripModel]:
    return db.get(TripModel, trip_id)
