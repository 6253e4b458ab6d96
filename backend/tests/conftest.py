from __future__ import annotations

import os
from datetime import date
from pathlib import Path
from types import SimpleNamespace
from uuid import uuid4

import pytest


DB_PATH = Path(__file__).resolve().parent / "test_tripvote.db"
os.environ["DATABASE_URL"] = f"sqlite:///{DB_PATH}"
os.environ["STORE_BUSY_BACKOFF_SECONDS"] = "0"
os.environ.pop("PROMOTION_RECHECK_OVERLAP", None)

from tripvote.db import Base, SessionLocal, engine  # noqa: E402
from tripvote.models import GroupMemberModel, GroupModel, TripModel, UserModel  # noqa: E402


@pytest.fixture(autouse=True)
def fresh_schema():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


def pytest_sessionfinish(session, exitstatus):
    engine.dispose()
    if DB_PATH.exists():
        DB_PATH.unlink()


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


def add_user(db, name: str = "Traveler") -> UserModel:
    user = UserModel(name=name, email=f"{name.lower().replace(' ', '.')}.{uuid4().hex[:8]}@example.com")
    db.add(user)
    db.flush()
    return user


@pytest.fixture
def join_group(db):
    def join(group: GroupModel, name: str = "Newcomer") -> UserModel:
        user = add_user(db, name)
        db.add(GroupMemberModel(group_id=group.id, user_id=user.id, role="member"))
        db.flush()
        return user

    return join


@pytest.fixture
def make_group(db):
    """Group whose first user is the admin, with one trip in July 2025."""

    def factory(members: int = 4) -> SimpleNamespace:
        users = [add_user(db, f"Traveler {index}") for index in range(members)]
        group = GroupModel(name="Summer crew", description="Coast road trip", owner_id=users[0].id)
        for index, user in enumerate(users):
            group.members.append(GroupMemberModel(user_id=user.id, role="admin" if index == 0 else "member"))
        trip = TripModel(name="Coast", destination="Lisbon", start_date=date(2025, 7, 10), end_date=date(2025, 7, 14))
        group.trips.append(trip)
        db.add(group)
        db.flush()
        return SimpleNamespace(group=group, trip=trip, users=users, admin=users[0])

    return factory
