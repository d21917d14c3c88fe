"""
Admin API Endpoints

職責：
1. 後台統計
2. 使用者列表 / 修改（不能改餘額）
3. 強制指定回合結果（只在結果決定之前有效）
4. 稽核紀錄
"""
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
import logging

from database import get_db
from models import EventLog, User
from schemas import (
    AdminUserResponse,
    AuditLogResponse,
    ForceRoundRequest,
    RoundResponse,
    StatsResponse,
    UserResponse,
    UserUpdate,
)
from api.deps import require_admin
from core.ledger import LedgerManager
from core.round_manager import RoundManager
from core.exceptions import (
    GameValidationError,
    RoundAlreadySettled,
    RoundNotFound,
    UserNotFound,
)
from services.stats_service import count_user_bets, get_stats

router = APIRouter(prefix="/api/admin", tags=["admin"])
logger = logging.getLogger(__name__)

AUDIT_EVENT_TYPES = ("FORCE_RESULT", "UPDATE_USER")


@router.get("/stats", response_model=StatsResponse)
def admin_stats(admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    try:
        return StatsResponse(**get_stats(db))
    except Exception as e:
        logger.error(f"Failed to fetch statistics: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to fetch statistics")


@router.get("/users", response_model=list[AdminUserResponse])
def list_users(admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    """使用者列表，附每人的下注總數"""
    return [
        AdminUserResponse(
            **UserResponse.model_validate(user).model_dump(),
            total_bets=count_user_bets(user.id, db)
        )
        for user in LedgerManager.list_users(db)
    ]


@router.patch("/users/{user_id}", response_model=UserResponse)
def update_user(
    user_id: int,
    updates: UserUpdate,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    try:
        return LedgerManager.update_user(
            db, user_id, updates.model_dump(exclude_unset=True), actor_id=admin.id
        )
    except UserNotFound:
        raise HTTPException(status_code=404, detail="User not found")
    except Exception as e:
        logger.error(f"Failed to update user {user_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to update user")


@router.post("/force-round", response_model=RoundResponse)
def force_round(
    data: ForceRoundRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """
    強制指定回合結果

    前置條件：
    - 回合結果尚未決定；已開獎或已結算的回合回 409

    注意：
    - 回應中的 result 在結算完成前仍為 null，強制結果只在結算時生效
    """
    try:
        round_obj = RoundManager.force_result(
            db, data.round_id, data.result, data.multiplier, actor_id=admin.id
        )
        response = RoundResponse.model_validate(round_obj)
        response.result = None
        response.multiplier = None
        return response

    except RoundNotFound:
        raise HTTPException(status_code=404, detail="Round not found")
    except RoundAlreadySettled as e:
        raise HTTPException(status_code=409, detail=str(e))
    except GameValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to force round result: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to force round result")


@router.get("/audit-logs", response_model=list[AuditLogResponse])
def audit_logs(
    limit: int = Query(50, ge=1, le=500),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    return (
        db.query(EventLog)
        .filter(EventLog.event_type.in_(AUDIT_EVENT_TYPES))
        .order_by(EventLog.created_at.desc(), EventLog.id.desc())
        .limit(limit)
        .all()
    )
