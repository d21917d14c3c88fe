"""
狀態機：集中管理 Round 的狀態轉換

合法轉換：
    OPEN -> CLOSING -> SETTLED

SETTLED 是終止狀態，回合不會重新開放

狀態以條件式 UPDATE（WHERE status = 目前狀態）寫入，
不支援行級鎖的 SQLite 上也不會有兩個流程同時轉換成功
"""
from sqlalchemy import update
from sqlalchemy.orm import Session
import logging

from models import Round, RoundStatus, EventLog
from core.locks import with_round_lock
from core.exceptions import RoundNotFound, InvalidStateTransition

logger = logging.getLogger(__name__)


ROUND_TRANSITIONS = {
    RoundStatus.OPEN: {RoundStatus.CLOSING},
    RoundStatus.CLOSING: {RoundStatus.SETTLED},
    RoundStatus.SETTLED: set(),
}


class RoundStateMachine:
    """Round 狀態轉換（不負責 commit，交由外層 transaction）"""

    @staticmethod
    def can_transition(current: RoundStatus, target: RoundStatus) -> bool:
        return target in ROUND_TRANSITIONS.get(current, set())

    @staticmethod
    def transition(round_id: int, target: RoundStatus, db: Session) -> Round:
        """
        鎖定 Round 並轉換狀態，同時寫入 ROUND_STATE_CHANGED 事件

        異常：
            RoundNotFound: Round 不存在
            InvalidStateTransition: 轉換不合法
        """
        round_obj = with_round_lock(round_id, db).first()
        if not round_obj:
            raise RoundNotFound(round_id)

        current = round_obj.status
        if not RoundStateMachine.can_transition(current, target):
            raise InvalidStateTransition(
                f"Round {round_id}: cannot transition {current.value} -> {target.value}"
            )

        result = db.execute(
            update(Round)
            .where(Round.id == round_id, Round.status == current)
            .values(status=target)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InvalidStateTransition(
                f"Round {round_id}: status changed concurrently, expected {current.value}"
            )
        db.expire(round_obj, ["status"])

        db.add(EventLog(
            round_id=round_id,
            event_type="ROUND_STATE_CHANGED",
            data={"from": current.value, "to": target.value}
        ))
        db.flush()

        logger.info(f"Round {round_obj.round_number} state {current.value} -> {target.value}")
        return round_obj
