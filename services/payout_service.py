"""
派彩服務：顏色賠率與單筆下注的輸贏計算

純計算邏輯，不碰資料庫

賠率表（可由 Settings.color_multipliers 覆寫）：
┌────────┬────────────┐
│ Color  │ Multiplier │
├────────┼────────────┤
│ red    │    x2      │
│ green  │    x2      │
│ violet │    x4      │
└────────┴────────────┘

red / green 是一般顏色，violet 是稀有顏色，賠率較高
"""
from decimal import Decimal
from typing import Dict, Optional, Tuple

from models import BetStatus, Color
from core.exceptions import InvalidColor

CENTS = Decimal("0.01")


def parse_color(value) -> Color:
    """
    把輸入轉成 Color enum

    異常：
        InvalidColor: 不在 red / green / violet 之內
    """
    if isinstance(value, Color):
        return value
    try:
        return Color(str(value).lower())
    except ValueError:
        raise InvalidColor(value)


def get_multiplier(color: Color, multipliers: Optional[Dict[str, Decimal]] = None) -> Decimal:
    """
    取得顏色的賠率

    參數：
        color: 顏色
        multipliers: 賠率表，預設讀 Settings

    返回：
        Decimal 賠率
    """
    if multipliers is None:
        from database import get_settings
        multipliers = get_settings().color_multipliers

    try:
        return Decimal(multipliers[color.value])
    except KeyError:
        raise InvalidColor(color.value)


def calculate_potential(amount: Decimal, color: Color,
                        multipliers: Optional[Dict[str, Decimal]] = None) -> Decimal:
    """
    計算下注的可能派彩（下注當下就固定，之後賠率變動不影響）

    範例：
        calculate_potential(Decimal("100"), Color.RED) -> Decimal("200.00")
        calculate_potential(Decimal("50"), Color.VIOLET) -> Decimal("200.00")
    """
    return (Decimal(amount) * get_multiplier(color, multipliers)).quantize(CENTS)


def resolve_bet(color: Color, outcome: Color, amount: Decimal,
                potential: Decimal) -> Tuple[BetStatus, Decimal, Decimal]:
    """
    計算單筆下注的結果

    返回：
        (status, profit, credit)
        - 贏：(WON, potential - amount, potential)
        - 輸：(LOST, 0, 0)，本金在下注時已經扣掉

    範例：
        resolve_bet(VIOLET, VIOLET, 50, 200) -> (WON, 150, 200)
        resolve_bet(RED, GREEN, 100, 200) -> (LOST, 0, 0)
    """
    if color == outcome:
        return BetStatus.WON, Decimal(potential) - Decimal(amount), Decimal(potential)
    return BetStatus.LOST, Decimal("0"), Decimal("0")
