from __future__ import annotations

from collections import defaultdict
from contextlib import contextmanager
from datetime import date
import logging
import os
import time
from typing import Callable, Dict, Generator, List, Optional, TypeVar, Union

from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from . import activities, ledger, voting
from .db import SessionLocal
from .membership import get_group_members, get_trip_by_id, is_group_admin, is_group_member
from .models import ActivityModel, GroupMemberModel, GroupModel, TripModel, UserModel, VoteModel
from .outcomes import AlreadyExists, AnyFailure, NotFound, PermissionDenied, StoreBusy, VoteResult
from .schemas import (
    Activity,
    ActivityFields,
    Group,
    GroupCreateRequest,
    GroupMember,
    MemberAddRequest,
    MemberRole,
    PersonalActivity,
    PersonalSchedule,
    Suggestion,
    SuggestionCreateRequest,
    SuggestionView,
    Trip,
    TripCreateRequest,
    TripSchedule,
    User,
    UserCreateRequest,
    VoteValue,
)

logger = logging.getLogger("tripvote.repository")

T = TypeVar("T")


def _env_flag(name: str, default: bool = False) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "on"}


def _is_busy(exc: OperationalError) -> bool:
    text = str(exc.orig or exc).lower()
    return "database is locked" in text or "database is busy" in text or getattr(exc.orig, "sqlstate", None) == "55P03"


def _group_by_date(items: List[T]) -> Dict[str, List[T]]:
    grouped: Dict[str, List[T]] = defaultdict(list)
    for item in items:
        grouped[item.date.isoformat()].append(item)
    return dict(grouped)


class SqlRepository:
    def __init__(self) -> None:
        try:
            self.busy_retries = max(0, int(os.getenv("STORE_BUSY_RETRIES", "2")))
        except ValueError:
            self.busy_retries = 2
        try:
            self.busy_backoff_seconds = max(0.0, float(os.getenv("STORE_BUSY_BACKOFF_SECONDS", "0.05")))
        except ValueError:
            self.busy_backoff_seconds = 0.05
        self.recheck_overlap_on_promotion = _env_flag("PROMOTION_RECHECK_OVERLAP")

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        db = SessionLocal()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def run(self, operation: Callable[[Session], T]) -> T:
        """Run ``operation`` in one transaction, retrying the whole of it while the store is locked."""
        attempts = self.busy_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                with self.session() as db:
                    return operation(db)
            except OperationalError as exc:
                if not _is_busy(exc):
                    raise
                if attempt == attempts:
                    logger.error("Store still busy after %s attempt(s)", attempts)
                    raise StoreBusy(attempts) from exc
                logger.warning("Store busy (attempt %s/%s), retrying", attempt, attempts)
                time.sleep(self.busy_backoff_seconds * attempt)
        raise StoreBusy(attempts)

    # Users and groups

    def create_user(self, payload: UserCreateRequest) -> Union[User, AlreadyExists]:
        def operation(db: Session):
            existing = db.execute(select(UserModel).where(UserModel.email == payload.email)).scalar_one_or_none()
            if existing:
                return AlreadyExists(message="Email already registered")
            model = UserModel(name=payload.name, email=payload.email)
            db.add(model)
            db.flush()
            return User.model_validate(model)

        return self.run(operation)

    def get_user(self, user_id: int) -> Optional[User]:
        with self.session() as db:
            model = db.get(UserModel, user_id)
            return User.model_validate(model) if model else None

    def create_group(self, payload: GroupCreateRequest, owner_id: int) -> Group:
        def operation(db: Session):
            group = GroupModel(name=payload.name, description=payload.description or None, owner_id=owner_id)
            group.members.append(GroupMemberModel(user_id=owner_id, role=MemberRole.admin.value))
            db.add(group)
            db.flush()
            return Group.model_validate(group)

        return self.run(operation)

    def list_members(self, group_id: int, viewer_id: int) -> Union[List[GroupMember], AnyFailure]:
        with self.session() as db:
            if not db.get(GroupModel, group_id):
                return NotFound(message="Group not found")
            if is_group_member(db, viewer_id, group_id) is None:
                return PermissionDenied(message="You are not a member of this group")
            return [
                GroupMember(user_id=m.user_id, name=m.user.name, email=m.user.email, role=MemberRole(m.role))
                for m in get_group_members(db, group_id)
            ]

    def add_member(self, group_id: int, payload: MemberAddRequest, actor_id: int) -> Union[GroupMember, AnyFailure]:
        def operation(db: Session):
            if not db.get(GroupModel, group_id):
                return NotFound(message="Group not found")
            if not is_group_admin(db, actor_id, group_id):
                return PermissionDenied(message="Only admins can add members")
            user = db.get(UserModel, payload.user_id)
            if not user:
                return NotFound(message="User not found")
            if is_group_member(db, payload.user_id, group_id) is not None:
                return AlreadyExists(message="User is already a member of this group")
            db.add(GroupMemberModel(group_id=group_id, user_id=user.id, role=payload.role.value))
            db.flush()
            logger.info("Admin %s added user %s to group %s as %s", actor_id, user.id, group_id, payload.role.value)
            return GroupMember(user_id=user.id, name=user.name, email=user.email, role=payload.role)

        return self.run(operation)

    def remove_member(self, group_id: int, user_id: int, actor_id: int) -> Union[None, AnyFailure]:
        def operation(db: Session):
            if not db.get(GroupModel, group_id):
                return NotFound(message="Group not found")
            if not is_group_admin(db, actor_id, group_id):
                return PermissionDenied(message="Only admins can remove members")
            membership = db.get(GroupMemberModel, {"group_id": group_id, "user_id": user_id})
            if not membership:
                return NotFound(message="Member not found")
            db.delete(membership)
            logger.info("Admin %s removed user %s from group %s", actor_id, user_id, group_id)
            return None

        return self.run(operation)

    # Trips

    def create_trip(self, group_id: int, payload: TripCreateRequest, actor_id: int) -> Union[Trip, AnyFailure]:
        def operation(db: Session):
            if not db.get(GroupModel, group_id):
                return NotFound(message="Group not found")
            if not is_group_admin(db, actor_id, group_id):
                return PermissionDenied(message="Only admins can create trips")
            model = TripModel(group_id=group_id, **payload.model_dump())
            db.add(model)
            db.flush()
            return Trip.model_validate(model)

        return self.run(operation)

    def delete_trip(self, trip_id: int, actor_id: int) -> Union[Trip, AnyFailure]:
        def operation(db: Session):
            model = get_trip_by_id(db, trip_id)
            if not model:
                return NotFound(message="Trip not found")
            if not is_group_admin(db, actor_id, model.group_id):
                return PermissionDenied(message="Only admins can delete trips")
            snapshot = Trip.model_validate(model)
            db.delete(model)
            logger.info("Admin %s deleted trip %s", actor_id, trip_id)
            return snapshot

        return self.run(operation)

    def trip_schedule(self, trip_id: int, viewer_id: int) -> Union[TripSchedule, AnyFailure]:
        with self.session() as db:
            trip = get_trip_by_id(db, trip_id)
            if not trip:
                return NotFound(message="Trip not found")
            role = is_group_member(db, viewer_id, trip.group_id)
            if role is None:
                return PermissionDenied(message="You are not a member of this group")

            total_members = len(get_group_members(db, trip.group_id))
            needed = voting.votes_needed(total_members)
            confirmed = [Activity.model_validate(a) for a in activities.list_trip_activities(db, trip_id)]

            suggestions: List[SuggestionView] = []
            for suggestion in trip.suggestions:
                counts = voting.tally(db, suggestion.id)
                own = db.execute(
                    select(VoteModel.vote).where(VoteModel.suggestion_id == suggestion.id, VoteModel.user_id == viewer_id)
                ).scalar_one_or_none()
                suggestions.append(
                    SuggestionView(
                        **Suggestion.model_validate(suggestion).model_dump(),
                        yes_votes=counts.yes,
                        no_votes=counts.no,
                        total_votes=counts.total,
                        votes_needed=needed,
                        user_vote=VoteValue(own) if own else None,
                    )
                )

            return TripSchedule(
                trip=Trip.model_validate(trip),
                group=Group.model_validate(trip.group),
                is_admin=role == MemberRole.admin,
                total_members=total_members,
                votes_needed=needed,
                activities=confirmed,
                activities_by_date=_group_by_date(confirmed),
                suggestions=suggestions,
            )

    def personal_schedule(self, user_id: int, today: Optional[date] = None) -> PersonalSchedule:
        today = today or date.today()
        with self.session() as db:
            rows = db.execute(
                select(ActivityModel, TripModel, GroupModel)
                .join(TripModel, ActivityModel.trip_id == TripModel.id)
                .join(GroupModel, TripModel.group_id == GroupModel.id)
                .join(GroupMemberModel, GroupMemberModel.group_id == GroupModel.id)
                .where(GroupMemberModel.user_id == user_id)
                .order_by(ActivityModel.date, ActivityModel.start_time, ActivityModel.id)
            ).all()
            items = [
                PersonalActivity(
                    **Activity.model_validate(activity).model_dump(),
                    trip_name=trip.name,
                    trip_destination=trip.destination,
                    group_id=group.id,
                    group_name=group.name,
                )
                for activity, trip, group in rows
            ]
        return PersonalSchedule(
            today=today,
            activities=items,
            activities_by_date=_group_by_date(items),
            upcoming=[item for item in items if item.date >= today],
            past=[item for item in items if item.date < today],
        )

    # Scheduling core

    def propose_suggestion(
        self, trip_id: int, payload: SuggestionCreateRequest, proposer_id: int
    ) -> Union[Suggestion, AnyFailure]:
        return self.run(lambda db: ledger.propose_suggestion(db, trip_id, payload, proposer_id))

    def withdraw_suggestion(self, suggestion_id: int, actor_id: int) -> Union[Suggestion, AnyFailure]:
        return self.run(lambda db: ledger.withdraw_suggestion(db, suggestion_id, actor_id))

    def cast_vote(self, suggestion_id: int, voter_id: int, value: VoteValue) -> Union[VoteResult, AnyFailure]:
        return self.run(
            lambda db: voting.cast_vote(
                db, suggestion_id, voter_id, value, recheck_overlap=self.recheck_overlap_on_promotion
            )
        )

    def create_activity(self, trip_id: int, payload: ActivityFields, actor_id: int) -> Union[Activity, AnyFailure]:
        return self.run(lambda db: activities.create_activity(db, trip_id, payload, actor_id))

    def delete_activity(self, activity_id: int, actor_id: int) -> Union[Activity, AnyFailure]:
        return self.run(lambda db: activities.delete_activity(db, activity_id, actor_id))
