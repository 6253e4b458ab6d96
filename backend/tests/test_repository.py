from __future__ import annotations

import itertools
import sqlite3
import threading

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from tripvote import ledger, voting
from tripvote.models import SuggestionModel, VoteModel
from tripvote.outcomes import StoreBusy, VoteResult
from tripvote.repository import SqlRepository
from tripvote.schemas import Suggestion, SuggestionCreateRequest, VoteValue


def locked_error() -> OperationalError:
    return OperationalError("INSERT INTO suggestion_votes ...", {}, sqlite3.OperationalError("database is locked"))


def hold_at_barrier(monkeypatch, module, name: str, parties: int = 2) -> None:
    """Make the first ``parties`` callers of ``module.name`` wait for each other after the call."""
    barrier = threading.Barrier(parties, timeout=5)
    original = getattr(module, name)
    arrivals = itertools.count()

    def wrapper(*args, **kwargs):
        result = original(*args, **kwargs)
        if next(arrivals) < parties:
            barrier.wait()
        return result

    monkeypatch.setattr(module, name, wrapper)


def run_concurrently(*calls):
    results = [None] * len(calls)
    errors = []

    def worker(index, call):
        try:
            results[index] = call()
        except Exception as exc:
            errors.append(exc)

    threads = [threading.Thread(target=worker, args=(index, call)) for index, call in enumerate(calls)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)
    return results, errors


def committed_suggestion(db, world) -> Suggestion:
    payload = SuggestionCreateRequest(title="Tram 28", date="2025-07-11", start_time="09:00", end_time="10:00")
    suggestion = ledger.propose_suggestion(db, world.trip.id, payload, world.users[1].id)
    db.commit()
    return suggestion


def test_busy_store_is_retried_then_succeeds():
    repo = SqlRepository()
    calls = []

    def operation(db):
        calls.append(db)
        if len(calls) < 2:
            raise locked_error()
        return "done"

    assert repo.run(operation) == "done"
    assert len(calls) == 2


def test_busy_store_gives_up_with_store_busy(monkeypatch):
    monkeypatch.setenv("STORE_BUSY_RETRIES", "3")
    repo = SqlRepository()
    calls = []

    def operation(db):
        calls.append(db)
        raise locked_error()

    with pytest.raises(StoreBusy) as excinfo:
        repo.run(operation)

    assert len(calls) == 4
    assert excinfo.value.attempts == 4


def test_other_operational_errors_are_not_retried():
    repo = SqlRepository()
    calls = []

    def operation(db):
        calls.append(db)
        raise OperationalError("SELECT 1", {}, sqlite3.OperationalError("no such table: trips"))

    with pytest.raises(OperationalError):
        repo.run(operation)

    assert len(calls) == 1


def test_recheck_flag_read_from_environment(monkeypatch):
    monkeypatch.setenv("PROMOTION_RECHECK_OVERLAP", "true")
    assert SqlRepository().recheck_overlap_on_promotion is True

    monkeypatch.setenv("PROMOTION_RECHECK_OVERLAP", "0")
    assert SqlRepository().recheck_overlap_on_promotion is False


def test_racing_identical_votes_leave_one_row(db, make_group, monkeypatch):
    world = make_group(members=5)
    voter_id = world.users[2].id
    suggestion = committed_suggestion(db, world)
    hold_at_barrier(monkeypatch, voting, "is_group_member")
    repo = SqlRepository()

    results, errors = run_concurrently(
        lambda: repo.cast_vote(suggestion.id, voter_id, VoteValue.yes),
        lambda: repo.cast_vote(suggestion.id, voter_id, VoteValue.yes),
    )

    assert errors == []
    assert all(isinstance(result, VoteResult) for result in results)
    rows = db.execute(select(VoteModel.user_id, VoteModel.vote).where(VoteModel.suggestion_id == suggestion.id)).all()
    assert [tuple(row) for row in rows] == [(voter_id, "yes")]


def test_racing_proposals_with_one_token_create_one_suggestion(db, make_group, monkeypatch):
    world = make_group(members=3)
    trip_id = world.trip.id
    proposer_id = world.users[1].id
    db.commit()
    hold_at_barrier(monkeypatch, ledger, "detect_overlap")
    repo = SqlRepository()
    payload = SuggestionCreateRequest(
        title="Fado night", date="2025-07-12", start_time="20:00", end_time="22:00", client_token="tap-once"
    )

    results, errors = run_concurrently(
        lambda: repo.propose_suggestion(trip_id, payload, proposer_id),
        lambda: repo.propose_suggestion(trip_id, payload, proposer_id),
    )

    assert errors == []
    assert all(isinstance(result, Suggestion) for result in results)
    assert results[0].id == results[1].id
    assert db.execute(select(func.count()).select_from(SuggestionModel)).scalar_one() == 1
