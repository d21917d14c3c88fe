"""
Round Manager：管理 Round 的建立與查詢

職責：
1. 開新回合（create-if-absent，同一時間最多一個未結算回合）
2. 查詢當前開放回合、最近回合
3. 管理員強制指定結果

Linus 原則：
- 單一職責：只管 Round，不管下注與結算
- 消除特殊情況：只要最新回合未結算，就不開新回合（不管它是開放中還是已過期）
"""
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional, Tuple
import logging

from sqlalchemy.orm import Session

from models import Round, RoundStatus, EventLog, utcnow
from core.locks import with_latest_round_lock, with_round_lock
from core.exceptions import RoundNotFound, RoundAlreadySettled, InvalidAmount
from services.payout_service import parse_color, get_multiplier
from database import transactional

logger = logging.getLogger(__name__)


class RoundManager:
    """Round 生命週期管理器"""

    @staticmethod
    @transactional
    def open_round(db: Session, now: datetime, duration_seconds: int) -> Tuple[Round, bool]:
        """
        開新回合（create-if-absent）

        流程：
        1. 鎖定最新回合
        2. 如果最新回合尚未 SETTLED，直接回傳它（不建立）
        3. 否則建立 round_number + 1 的新回合

        參數：
            db: SQLAlchemy Session
            now: 開始時間
            duration_seconds: 回合長度

        返回：
            (Round, created) tuple

        注意：
            - round_number 有 unique 限制，兩個排程器同時建立時，
              後 commit 的會撞 IntegrityError（transactional 轉成 PersistenceError）
            - 回合號碼連續、不跳號
        """
        latest = with_latest_round_lock(db).first()
        if latest and latest.status != RoundStatus.SETTLED:
            return latest, False

        round_number = latest.round_number + 1 if latest else 1
        round_obj = Round(
            round_number=round_number,
            start_time=now,
            end_time=now + timedelta(seconds=duration_seconds),
            status=RoundStatus.OPEN,
        )
        db.add(round_obj)
        db.flush()

        db.add(EventLog(
            round_id=round_obj.id,
            event_type="ROUND_STARTED",
            data={
                "round_number": round_number,
                "start_time": round_obj.start_time.isoformat(),
                "end_time": round_obj.end_time.isoformat(),
            }
        ))

        logger.info(
            f"Opened round #{round_number} (id={round_obj.id}) "
            f"{round_obj.start_time.isoformat()} -> {round_obj.end_time.isoformat()}"
        )
        return round_obj, True

    @staticmethod
    @transactional
    def force_result(
        db: Session,
        round_id: int,
        color,
        multiplier: Optional[Decimal] = None,
        actor_id: Optional[int] = None,
    ) -> Round:
        """
        管理員強制指定回合結果

        前置條件：
        - 回合結果尚未決定（結算一旦寫入結果就不能再改，
          否則已派彩的下注會和回合結果不一致）

        效果：
        - 寫入 forced_result / forced_multiplier，結算時優先使用
        - 不改變 result，下注端看到的回合仍然是「未開獎」

        異常：
            RoundNotFound: 回合不存在
            RoundAlreadySettled: 結果已決定
            InvalidColor: 顏色不合法
            InvalidAmount: 賠率 <= 0
        """
        color = parse_color(color)
        if multiplier is None:
            multiplier = get_multiplier(color)
        multiplier = Decimal(multiplier)
        if multiplier <= 0:
            raise InvalidAmount(f"Multiplier must be positive, got {multiplier}")

        round_obj = with_round_lock(round_id, db).first()
        if not round_obj:
            raise RoundNotFound(round_id)
        if round_obj.result is not None or round_obj.status == RoundStatus.SETTLED:
            raise RoundAlreadySettled(round_id)

        round_obj.forced_result = color
        round_obj.forced_multiplier = multiplier

        db.add(EventLog(
            round_id=round_id,
            actor_id=actor_id,
            event_type="FORCE_RESULT",
            data={"result": color.value, "multiplier": str(multiplier)}
        ))

        logger.warning(
            f"Admin {actor_id} forced round #{round_obj.round_number} result "
            f"to {color.value} x{multiplier}"
        )
        return round_obj

    @staticmethod
    def get_round(db: Session, round_id: int) -> Round:
        """
        異常：
            RoundNotFound: 回合不存在
        """
        round_obj = db.query(Round).filter(Round.id == round_id).first()
        if not round_obj:
            raise RoundNotFound(round_id)
        return round_obj

    @staticmethod
    def get_current_round(db: Session, now: Optional[datetime] = None) -> Optional[Round]:
        """
        取得當前開放下注的回合（OPEN、未開獎、start <= now < end）

        返回：
            Round 或 None
        """
        now = now or utcnow()
        return db.query(Round).filter(
            Round.status == RoundStatus.OPEN,
            Round.result.is_(None),
            Round.start_time <= now,
            Round.end_time > now,
        ).order_by(Round.round_number.desc()).first()

    @staticmethod
    def get_latest_round(db: Session) -> Optional[Round]:
        return db.query(Round).order_by(Round.round_number.desc()).first()

    @staticmethod
    def get_recent_rounds(db: Session, limit: int = 10) -> List[Round]:
        """最近 N 個回合，依 round_number 由大到小"""
        return db.query(Round).order_by(Round.round_number.desc()).limit(limit).all()
