"""
Bet API Endpoints

職責：
1. 下注
2. 查詢自己的下注紀錄
"""
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
import logging

from database import get_db
from models import User
from schemas import BetCreate, BetResponse, BetHistoryEntry
from api.deps import get_current_user
from core.bet_manager import BetManager
from core.exceptions import (
    GameValidationError,
    RoundNotFound,
    RoundNotOpen,
    InsufficientBalance,
    UserNotFound,
    PersistenceError,
)
from services.history_service import get_user_bet_history

router = APIRouter(prefix="/api/bets", tags=["bets"])
logger = logging.getLogger(__name__)


@router.post("", response_model=BetResponse, status_code=201)
def place_bet(
    bet_data: BetCreate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    下注

    錯誤：
    - 400：顏色或金額不合法
    - 404：回合不存在
    - 409：回合已截止 / 餘額不足
    - 503：資料庫暫時失敗，可重試（沒有任何扣款）
    """
    try:
        bet = BetManager.place_bet(
            db,
            user.id,
            bet_data.round_id,
            bet_data.color,
            bet_data.amount
        )
        return bet

    except RoundNotFound:
        raise HTTPException(status_code=404, detail="Game round not found")
    except RoundNotOpen:
        raise HTTPException(status_code=409, detail="Betting for this round has ended")
    except InsufficientBalance:
        raise HTTPException(status_code=409, detail="Insufficient balance")
    except GameValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except UserNotFound:
        raise HTTPException(status_code=401, detail="User not found")
    except PersistenceError as e:
        logger.warning(f"Bet for user {user.id} failed, retryable: {e}")
        raise HTTPException(status_code=503, detail="Please retry")
    except Exception as e:
        logger.error(f"Failed to place bet: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to place bet")


@router.get("/user", response_model=list[BetHistoryEntry])
def get_user_bets(
    limit: int = Query(20, ge=1, le=200),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """自己的下注紀錄，新到舊"""
    try:
        return get_user_bet_history(user.id, db, limit)
    except Exception as e:
        logger.error(f"Failed to fetch user bets: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to fetch user bets")
