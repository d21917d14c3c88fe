"""
Tests for round creation, queries and forced outcomes.
"""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest

from core.exceptions import InvalidColor, RoundAlreadySettled, RoundNotFound
from core.round_manager import RoundManager
from models import Color, EventLog, Round, RoundStatus


def test_open_round_sets_window(db, clock):
    round_obj, created = RoundManager.open_round(db, clock(), 60)

    assert created is True
    assert round_obj.round_number == 1
    assert round_obj.status == RoundStatus.OPEN
    assert round_obj.result is None
    assert round_obj.end_time - round_obj.start_time == timedelta(seconds=60)


def test_open_round_is_create_if_absent(db, clock, open_round):
    """While the latest round is unsettled, no second round is created."""
    again, created = RoundManager.open_round(db, clock(), 60)
    assert created is False
    assert again.id == open_round.id

    # still blocked after it expires but before settlement
    clock.advance(120)
    again, created = RoundManager.open_round(db, clock(), 60)
    assert created is False
    assert db.query(Round).count() == 1


def test_round_numbers_are_gapless(db, clock, make_engine):
    engine = make_engine("red")
    for _ in range(4):
        round_obj, _ = RoundManager.open_round(db, clock(), 60)
        clock.advance(60)
        engine.settle_round(round_obj.id)

    numbers = [r.round_number for r in RoundManager.get_recent_rounds(db, 10)]
    assert numbers == [4, 3, 2, 1]


def test_recent_rounds_limit(db, clock, make_engine):
    engine = make_engine("green")
    for _ in range(3):
        round_obj, _ = RoundManager.open_round(db, clock(), 60)
        clock.advance(60)
        engine.settle_round(round_obj.id)

    assert [r.round_number for r in RoundManager.get_recent_rounds(db, 2)] == [3, 2]


def test_current_round_respects_window(db, clock, open_round):
    assert RoundManager.get_current_round(db, clock()).id == open_round.id
    assert RoundManager.get_current_round(db, clock() + timedelta(seconds=59)).id == open_round.id
    assert RoundManager.get_current_round(db, clock() + timedelta(seconds=60)) is None
    assert RoundManager.get_current_round(db, clock() - timedelta(seconds=1)) is None


def test_get_round_missing(db):
    with pytest.raises(RoundNotFound):
        RoundManager.get_round(db, 42)


def test_force_result_before_settlement(db, open_round):
    round_obj = RoundManager.force_result(db, open_round.id, "violet", actor_id=None)

    assert round_obj.forced_result == Color.VIOLET
    assert round_obj.forced_multiplier == Decimal("4")
    # the public outcome stays undecided until settlement
    assert round_obj.result is None

    log = db.query(EventLog).filter(EventLog.event_type == "FORCE_RESULT").one()
    assert log.data == {"result": "violet", "multiplier": "4"}


def test_force_result_can_be_replaced_before_settlement(db, open_round):
    RoundManager.force_result(db, open_round.id, "violet")
    round_obj = RoundManager.force_result(db, open_round.id, "red", Decimal("3"))
    assert round_obj.forced_result == Color.RED
    assert round_obj.forced_multiplier == Decimal("3")


def test_force_result_after_settlement_rejected(db, clock, open_round, make_engine):
    clock.advance(60)
    make_engine("red").settle_round(open_round.id)

    with pytest.raises(RoundAlreadySettled):
        RoundManager.force_result(db, open_round.id, "green")

    db.expire_all()
    round_obj = RoundManager.get_round(db, open_round.id)
    assert round_obj.result == Color.RED
    assert round_obj.forced_result is None


def test_force_result_unknown_color(db, open_round):
    with pytest.raises(InvalidColor):
        RoundManager.force_result(db, open_round.id, "purple")


def test_force_result_missing_round(db):
    with pytest.raises(RoundNotFound):
        RoundManager.force_result(db, 404, "red")
