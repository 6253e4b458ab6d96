from __future__ import annotations

from contextlib import asynccontextmanager
import logging
import os
from typing import List

from fastapi import FastAPI, Header, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from dotenv import load_dotenv

load_dotenv()

from . import models  # noqa: F401
from .db import Base, engine as db_engine
from .outcomes import Failure, SchedulingConflict, StoreBusy
from .repository import SqlRepository
from .schemas import (
    ActivityFields,
    Group,
    GroupCreateRequest,
    GroupMember,
    MemberAddRequest,
    PersonalSchedule,
    SuggestionCreateRequest,
    Trip,
    TripCreateRequest,
    TripSchedule,
    User,
    UserCreateRequest,
    VoteRequest,
)

logging.basicConfig(
    level=(os.getenv("LOG_LEVEL") or "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("tripvote")

DEFAULT_CORS_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]


@asynccontextmanager
async def lifespan(_: FastAPI):
    logger.info(
        "startup_config %s",
        {
            "allow_origins": CORS_ORIGINS,
            "allow_origin_regex": CORS_ORIGIN_REGEX,
            "recheck_overlap_on_promotion": store.recheck_overlap_on_promotion,
            "busy_retries": store.busy_retries,
        },
    )
    Base.metadata.create_all(bind=db_engine)
    yield


def _load_cors_origins() -> list[str]:
    raw = os.getenv("CORS_ALLOW_ORIGINS")
    if raw:
        origins = [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]
        if origins:
            return origins
    return DEFAULT_CORS_ORIGINS.copy()


def _load_cors_origin_regex() -> str | None:
    raw = (os.getenv("CORS_ALLOW_ORIGIN_REGEX") or "").strip()
    return raw or None


CORS_ORIGINS = _load_cors_origins()
CORS_ORIGIN_REGEX = _load_cors_origin_regex()

app = FastAPI(title="Group Trip Activity Voting API", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_origin_regex=CORS_ORIGIN_REGEX,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

store = SqlRepository()


@app.exception_handler(StoreBusy)
async def store_busy_handler(_: Request, exc: StoreBusy):
    return JSONResponse(status_code=503, content={"detail": str(exc)}, headers={"Retry-After": "1"})


def _unwrap(result):
    if isinstance(result, SchedulingConflict):
        raise HTTPException(status_code=result.status_code, detail=result.model_dump(mode="json"))
    if isinstance(result, Failure):
        raise HTTPException(status_code=result.status_code, detail=result.message)
    return result


def _require_user(user_id: int | None) -> int:
    if user_id is None:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    if not store.get_user(user_id):
        raise HTTPException(status_code=401, detail="Unknown user")
    return user_id


def _trip_redirect(trip_id: int) -> RedirectResponse:
    return RedirectResponse(url=f"/trips/{trip_id}", status_code=303)


@app.post("/users", response_model=User)
def register_user(payload: UserCreateRequest):
    return _unwrap(store.create_user(payload))


@app.post("/groups", response_model=Group)
def create_group(payload: GroupCreateRequest, user_id: int | None = Header(default=None, alias="X-User-Id")):
    actor = _require_user(user_id)
    return store.create_group(payload, owner_id=actor)


@app.get("/groups/{group_id}/members", response_model=List[GroupMember])
def list_group_members(group_id: int, user_id: int | None = Header(default=None, alias="X-User-Id")):
    actor = _require_user(user_id)
    return _unwrap(store.list_members(group_id, viewer_id=actor))


@app.post("/groups/{group_id}/members", response_model=GroupMember)
def add_group_member(
    group_id: int,
    payload: MemberAddRequest,
    user_id: int | None = Header(default=None, alias="X-User-Id"),
):
    actor = _require_user(user_id)
    return _unwrap(store.add_member(group_id, payload, actor_id=actor))


@app.post("/groups/{group_id}/members/{member_id}/delete", status_code=204)
def remove_group_member(group_id: int, member_id: int, user_id: int | None = Header(default=None, alias="X-User-Id")):
    actor = _require_user(user_id)
    _unwrap(store.remove_member(group_id, member_id, actor_id=actor))
    return Response(status_code=204)


@app.post("/groups/{group_id}/trips", response_model=Trip)
def create_trip(group_id: int, payload: TripCreateRequest, user_id: int | None = Header(default=None, alias="X-User-Id")):
    actor = _require_user(user_id)
    return _unwrap(store.create_trip(group_id, payload, actor_id=actor))


@app.get("/trips/{trip_id}", response_model=TripSchedule)
def get_trip_schedule(trip_id: int, user_id: int | None = Header(default=None, alias="X-User-Id")):
    actor = _require_user(user_id)
    return _unwrap(store.trip_schedule(trip_id, viewer_id=actor))


@app.post("/trips/{trip_id}/delete", response_model=Trip)
def delete_trip(trip_id: int, user_id: int | None = Header(default=None, alias="X-User-Id")):
    actor = _require_user(user_id)
    return _unwrap(store.delete_trip(trip_id, actor_id=actor))


@app.post("/trips/{trip_id}/activities")
def propose_activity(
    trip_id: int,
    payload: SuggestionCreateRequest,
    user_id: int | None = Header(default=None, alias="X-User-Id"),
):
    actor = _require_user(user_id)
    _unwrap(store.propose_suggestion(trip_id, payload, proposer_id=actor))
    return _trip_redirect(trip_id)


@app.post("/trips/{trip_id}/confirmed-activities")
def schedule_activity(
    trip_id: int,
    payload: ActivityFields,
    user_id: int | None = Header(default=None, alias="X-User-Id"),
):
    actor = _require_user(user_id)
    _unwrap(store.create_activity(trip_id, payload, actor_id=actor))
    return _trip_redirect(trip_id)


@app.post("/activities/{activity_id}/delete")
def delete_activity(activity_id: int, user_id: int | None = Header(default=None, alias="X-User-Id")):
    actor = _require_user(user_id)
    activity = _unwrap(store.delete_activity(activity_id, actor_id=actor))
    return _trip_redirect(activity.trip_id)


@app.post("/suggestions/{suggestion_id}/vote")
def vote_on_suggestion(
    suggestion_id: int,
    payload: VoteRequest,
    user_id: int | None = Header(default=None, alias="X-User-Id"),
):
    actor = _require_user(user_id)
    result = _unwrap(store.cast_vote(suggestion_id, actor, payload.vote))
    return _trip_redirect(result.trip_id)


@app.post("/suggestions/{suggestion_id}/delete")
def withdraw_suggestion(suggestion_id: int, user_id: int | None = Header(default=None, alias="X-User-Id")):
    actor = _require_user(user_id)
    suggestion = _unwrap(store.withdraw_suggestion(suggestion_id, actor_id=actor))
    return _trip_redirect(suggestion.trip_id)


@app.get("/schedule", response_model=PersonalSchedule)
def get_personal_schedule(user_id: int | None = Header(default=None, alias="X-User-Id")):
    actor = _require_user(user_id)
    return store.personal_schedule(actor)


@app.get("/health")
def health():
    return {
        "status": "ok",
        "cors_allow_origins": CORS_ORIGINS,
        "cors_allow_origin_regex": CORS_ORIGIN_REGEX,
        "recheck_overlap_on_promotion": store.recheck_overlap_on_promotion,
    }
