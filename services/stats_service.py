"""
統計服務：管理後台的彙總數字

house profit = 所有輸掉的本金 - 所有贏家拿走的淨利
"""
from decimal import Decimal
from typing import Dict, Any

from sqlalchemy import func
from sqlalchemy.orm import Session

from models import Bet, BetStatus, Round, User


def get_total_house_profit(db: Session) -> Decimal:
    """
    計算莊家總盈餘

    範例：
        輸的下注 100（+100），贏的下注 50 押 violet 淨利 150（-150）
        => -50
    """
    lost = db.query(func.coalesce(func.sum(Bet.amount), 0)).filter(
        Bet.status == BetStatus.LOST
    ).scalar()
    paid = db.query(func.coalesce(func.sum(Bet.profit), 0)).filter(
        Bet.status == BetStatus.WON
    ).scalar()
    return (Decimal(str(lost or 0)) - Decimal(str(paid or 0))).quantize(Decimal("0.01"))


def get_stats(db: Session) -> Dict[str, Any]:
    return {
        "total_users": db.query(User).count(),
        "total_rounds": db.query(Round).count(),
        "total_bets": db.query(Bet).count(),
        "house_profit": get_total_house_profit(db),
    }


def count_user_bets(user_id: int, db: Session) -> int:
    return db.query(Bet).filter(Bet.user_id == user_id).count()
