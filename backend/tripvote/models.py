from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, Date, DateTime, Float, ForeignKey, Integer, String, Text, Time, UniqueConstraint
from sqlalchemy.orm import relationship

from .db import Base


class UserModel(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    email = Column(String, nullable=False, unique=True, index=True)

    memberships = relationship("GroupMemberModel", back_populates="user", cascade="all, delete-orphan")


class GroupModel(Base):
    __tablename__ = "groups"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    members = relationship("GroupMemberModel", back_populates="group", cascade="all, delete-orphan")
    trips = relationship("TripModel", back_populates="group", cascade="all, delete-orphan")


class GroupMemberModel(Base):
    __tablename__ = "group_members"

    group_id = Column(Integer, ForeignKey("groups.id", ondelete="CASCADE"), primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    role = Column(String, nullable=False, default="member")
    joined_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    group = relationship("GroupModel", back_populates="members")
    user = relationship("UserModel", back_populates="memberships")


class TripModel(Base):
    __tablename__ = "trips"

    id = Column(Integer, primary_key=True, autoincrement=True)
    group_id = Column(Integer, ForeignKey("groups.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    destination = Column(String, nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)

    group = relationship("GroupModel", back_populates="trips")
    activities = relationship(
        "ActivityModel", back_populates="trip", cascade="all, delete-orphan", order_by="ActivityModel.id"
    )
    suggestions = relationship(
        "SuggestionModel", back_populates="trip", cascade="all, delete-orphan", order_by="SuggestionModel.id"
    )


class ActivityModel(Base):
    __tablename__ = "activities"

    id = Column(Integer, primary_key=True, autoincrement=True)
    trip_id = Column(Integer, ForeignKey("trips.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    location = Column(String, nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)

    trip = relationship("TripModel", back_populates="activities")


class SuggestionModel(Base):
    __tablename__ = "activity_suggestions"
    __table_args__ = (UniqueConstraint("trip_id", "client_token", name="uq_suggestion_client_token"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    trip_id = Column(Integer, ForeignKey("trips.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    location = Column(String, nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    suggested_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    client_token = Column(String, nullable=True)

    trip = relationship("TripModel", back_populates="suggestions")
    votes = relationship("VoteModel", back_populates="suggestion", cascade="all, delete-orphan")


class VoteModel(Base):
    __tablename__ = "suggestion_votes"
    __table_args__ = (UniqueConstraint("suggestion_id", "user_id", name="uq_vote_per_voter"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    suggestion_id = Column(
        Integer, ForeignKey("activity_suggestions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    vote = Column(String, nullable=False)

    suggestion = relationship("SuggestionModel", back_populates="votes")
