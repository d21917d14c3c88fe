"""
Round API Endpoints

重點：
1. 前端以輪詢 /active 為準，WebSocket 事件只是加速畫面更新
2. 未結算的回合不公開結果
"""
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

import logging

from database import get_db
from models import RoundStatus, utcnow
from schemas import ActiveRoundResponse, RoundResponse
from core.round_manager import RoundManager
from core.exceptions import RoundNotFound

router = APIRouter(prefix="/api/game", tags=["rounds"])
logger = logging.getLogger(__name__)


def _public_round(round_obj) -> RoundResponse:
    response = RoundResponse.model_validate(round_obj)
    if round_obj.status != RoundStatus.SETTLED:
        # 結果寫入到結算完成之間不公開
        response.result = None
        response.multiplier = None
    return response


@router.get("/active", response_model=ActiveRoundResponse)
def get_active_round(db: Session = Depends(get_db)):
    """
    取得目前開放下注的回合

    返回：
        回合資訊 + 剩餘秒數；沒有開放回合時 404
    """
    try:
        now = utcnow()
        current_round = RoundManager.get_current_round(db, now)
        if not current_round:
            raise HTTPException(status_code=404, detail="No active game round")

        return ActiveRoundResponse(
            **_public_round(current_round).model_dump(),
            seconds_remaining=max((current_round.end_time - now).total_seconds(), 0.0)
        )

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to fetch active round: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to fetch active round")


@router.get("/history", response_model=list[RoundResponse])
def get_round_history(
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db)
):
    """最近的回合，依回合數由大到小"""
    try:
        rounds = RoundManager.get_recent_rounds(db, limit)
        return [_public_round(r) for r in rounds]
    except Exception as e:
        logger.error(f"Failed to fetch game history: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to fetch game history")


@router.get("/rounds/{round_id}", response_model=RoundResponse)
def get_round(round_id: int, db: Session = Depends(get_db)):
    try:
        return _public_round(RoundManager.get_round(db, round_id))
    except RoundNotFound:
        raise HTTPException(status_code=404, detail="Round not found")
    except Exception as e:
        logger.error(f"Failed to fetch round {round_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to fetch round")
