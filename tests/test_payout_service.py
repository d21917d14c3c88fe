"""
Tests for color parsing, multipliers and single-bet resolution.
"""

from __future__ import annotations

from decimal import Decimal

import pytest

from core.exceptions import InvalidColor
from models import BetStatus, Color
from services.payout_service import calculate_potential, get_multiplier, parse_color, resolve_bet


def test_parse_color_accepts_known_colors_case_insensitive():
    assert parse_color("red") is Color.RED
    assert parse_color("VIOLET") is Color.VIOLET
    assert parse_color(Color.GREEN) is Color.GREEN


def test_parse_color_rejects_unknown():
    with pytest.raises(InvalidColor):
        parse_color("blue")


def test_common_colors_pay_less_than_rare():
    assert get_multiplier(Color.RED) == Decimal("2")
    assert get_multiplier(Color.GREEN) == Decimal("2")
    assert get_multiplier(Color.VIOLET) == Decimal("4")


def test_potential_uses_color_multiplier():
    assert calculate_potential(Decimal("100"), Color.RED) == Decimal("200.00")
    assert calculate_potential(Decimal("50"), Color.VIOLET) == Decimal("200.00")


def test_potential_with_custom_table():
    table = {"red": Decimal("1.5"), "green": Decimal("1.5"), "violet": Decimal("9")}
    assert calculate_potential(Decimal("10"), Color.VIOLET, table) == Decimal("90.00")


def test_resolve_bet_win_and_loss():
    assert resolve_bet(Color.VIOLET, Color.VIOLET, Decimal("50"), Decimal("200")) == (
        BetStatus.WON, Decimal("150"), Decimal("200")
    )
    status, profit, credit = resolve_bet(Color.RED, Color.GREEN, Decimal("100"), Decimal("200"))
    assert status is BetStatus.LOST
    assert profit == 0
    assert credit == 0
