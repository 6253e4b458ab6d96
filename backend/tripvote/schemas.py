from __future__ import annotations

from datetime import date, datetime, time
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class MemberRole(str, Enum):
    admin = "admin"
    member = "member"


class VoteValue(str, Enum):
    yes = "yes"
    no = "no"


MAX_TRIP_DAYS = 60


class UserCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    email: str = Field(min_length=3, max_length=254)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str):
        v = v.strip().lower()
        if "@" not in v or v.startswith("@") or v.endswith("@"):
            raise ValueError("email must look like name@domain")
        return v


class User(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: str


class GroupCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    description: str = Field(default="", max_length=1000)


class Group(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: Optional[str] = None
    owner_id: Optional[int] = None


class MemberAddRequest(BaseModel):
    user_id: int
    role: MemberRole = MemberRole.member


class GroupMember(BaseModel):
    user_id: int
    name: str
    email: str
    role: MemberRole


class TripCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    destination: str = Field(min_length=2, max_length=120)
    start_date: date
    end_date: date

    @field_validator("end_date")
    @classmethod
    def validate_dates(cls, v: date, info):
        start = info.data.get("start_date")
        if start and v < start:
            raise ValueError("end_date must be on or after start_date")
        if start and ((v - start).days + 1) > MAX_TRIP_DAYS:
            raise ValueError(f"trip length must be at most {MAX_TRIP_DAYS} days")
        return v


class Trip(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    group_id: int
    name: str
    destination: str
    start_date: date
    end_date: date


class ActivityFields(BaseModel):
    """Fields shared by a proposed and a confirmed activity.

    Times are naive wall-clock values on ``date``; their presence and
    start/end ordering are checked by the ledger so that a bad range is
    reported as a scheduling outcome rather than a payload error.
    """

    title: str = Field(min_length=1, max_length=200)
    description: str = Field(default="", max_length=2000)
    location: str = Field(default="", max_length=200)
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    date: date
    start_time: Optional[time] = None
    end_time: Optional[time] = None

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_wall_clock(cls, v: Optional[time]):
        if v is None:
            return v
        if v.tzinfo is not None:
            raise ValueError("times are local wall-clock values without a timezone")
        return v.replace(second=0, microsecond=0)

    @field_validator("latitude")
    @classmethod
    def validate_latitude(cls, v: Optional[float]):
        if v is not None and not -90 <= v <= 90:
            raise ValueError("latitude must be between -90 and 90")
        return v

    @field_validator("longitude")
    @classmethod
    def validate_longitude(cls, v: Optional[float]):
        if v is not None and not -180 <= v <= 180:
            raise ValueError("longitude must be between -180 and 180")
        return v


class SuggestionCreateRequest(ActivityFields):
    client_token: Optional[str] = Field(default=None, min_length=1, max_length=64)


class Activity(ActivityFields):
    model_config = ConfigDict(from_attributes=True)

    id: int
    trip_id: int
    start_time: time
    end_time: time
    description: Optional[str] = None
    location: Optional[str] = None
    created_by: Optional[int] = None


class Suggestion(ActivityFields):
    model_config = ConfigDict(from_attributes=True)

    id: int
    trip_id: int
    start_time: time
    end_time: time
    description: Optional[str] = None
    location: Optional[str] = None
    suggested_by: int
    created_at: datetime


class VoteRequest(BaseModel):
    vote: VoteValue


class Tally(BaseModel):
    yes: int = 0
    no: int = 0
    total: int = 0


class SuggestionView(Suggestion):
    yes_votes: int
    no_votes: int
    total_votes: int
    votes_needed: int
    user_vote: Optional[VoteValue] = None


class TripSchedule(BaseModel):
    trip: Trip
    group: Group
    is_admin: bool
    total_members: int
    votes_needed: int
    activities: List[Activity]
    activities_by_date: Dict[str, List[Activity]]
    suggestions: List[SuggestionView]


class PersonalActivity(Activity):
    trip_name: str
    trip_destination: str
    group_id: int
    group_name: str


class PersonalSchedule(BaseModel):
    today: date
    activities: List[PersonalActivity]
    activities_by_date: Dict[str, List[PersonalActivity]]
    upcoming: List[PersonalActivity] = Field(default_factory=list)
    past: List[PersonalActivity] = Field(default_factory=list)
