from __future__ import annotations

from datetime import date, time

import pytest

from tripvote.activities import create_activity
from tripvote.ledger import propose_suggestion
from tripvote.overlap import detect_overlap, intervals_overlap, to_minutes
from tripvote.schemas import ActivityFields, Suggestion, SuggestionCreateRequest

DAY = date(2025, 7, 11)


def confirm(db, world, title: str, start: str, end: str, on: str = "2025-07-11"):
    fields = ActivityFields(title=title, date=on, start_time=start, end_time=end)
    return create_activity(db, world.trip.id, fields, world.admin.id)


def test_to_minutes():
    assert to_minutes(time(0, 0)) == 0
    assert to_minutes(time(9, 30)) == 570
    assert to_minutes(time(23, 59)) == 1439


@pytest.mark.parametrize(
    "a, b, expected",
    [
        ((540, 600), (600, 660), False),
        ((600, 660), (540, 600), False),
        ((540, 600), (599, 660), True),
        ((540, 720), (600, 630), True),
        ((600, 630), (540, 720), True),
        ((540, 600), (540, 600), True),
        ((540, 600), (700, 760), False),
    ],
)
def test_intervals_overlap_is_half_open(a, b, expected):
    assert intervals_overlap(a[0], a[1], b[0], b[1]) is expected


def test_back_to_back_activities_do_not_conflict(db, make_group):
    world = make_group(members=2)
    confirm(db, world, "Breakfast", "09:00", "10:00")

    check = detect_overlap(db, world.trip.id, DAY, time(10, 0), time(11, 0))

    assert check.conflict is False
    assert check.with_activity is None


def test_reports_first_inserted_conflict(db, make_group):
    world = make_group(members=2)
    confirm(db, world, "Harbour tour", "10:00", "13:00")
    confirm(db, world, "Lunch", "13:00", "14:00")

    check = detect_overlap(db, world.trip.id, DAY, time(12, 0), time(14, 0))

    assert check.conflict is True
    assert check.with_activity.title == "Harbour tour"


def test_only_same_trip_and_date_are_compared(db, make_group):
    world = make_group(members=2)
    other = make_group(members=1)
    confirm(db, world, "Harbour tour", "10:00", "13:00", on="2025-07-12")
    confirm(db, other, "Harbour tour", "10:00", "13:00")

    check = detect_overlap(db, world.trip.id, DAY, time(10, 0), time(13, 0))

    assert check.conflict is False


def test_excluded_activity_is_ignored(db, make_group):
    world = make_group(members=2)
    activity = confirm(db, world, "Harbour tour", "10:00", "13:00")

    check = detect_overlap(db, world.trip.id, DAY, time(11, 0), time(12, 0), exclude_activity_id=activity.id)

    assert check.conflict is False


def test_pending_suggestions_never_block(db, make_group):
    world = make_group(members=3)
    first = propose_suggestion(
        db,
        world.trip.id,
        SuggestionCreateRequest(title="Surf lesson", date="2025-07-11", start_time="10:00", end_time="12:00"),
        world.users[1].id,
    )
    second = propose_suggestion(
        db,
        world.trip.id,
        SuggestionCreateRequest(title="Kayaking", date="2025-07-11", start_time="11:00", end_time="13:00"),
        world.users[2].id,
    )

    assert isinstance(first, Suggestion)
    assert isinstance(second, Suggestion)
    assert detect_overlap(db, world.trip.id, DAY, time(10, 0), time(13, 0)).conflict is False
