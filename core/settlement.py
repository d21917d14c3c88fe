"""
Settlement Engine：回合結算

流程（每一步都是獨立 transaction，任何一步失敗都可以安全重跑）：
1. 關閉回合：OPEN -> CLOSING（FOR UPDATE，會等進行中的下注完成）
2. 決定結果：有強制結果就用強制結果，否則交給 OutcomeSource 抽
   結果先寫入 DB 再處理下注，重跑時不會重抽
3. 逐筆處理 PENDING 下注：贏的派彩 + 寫 win 交易，輸的只改狀態
4. 全部處理完：CLOSING -> SETTLED
5. 推送 round-end 事件

冪等：已結算的回合直接回傳，非 PENDING 的下注直接跳過
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional
import logging

from sqlalchemy.orm import Session

from models import Bet, BetStatus, Round, RoundStatus, TransactionType, EventLog, utcnow
from core.bet_manager import BetManager
from core.events import EventSink, NullEventSink, ROUND_END, round_end_payload, safe_publish
from core.exceptions import (
    RoundNotFound,
    RoundStillOpen,
    InvalidStateTransition,
    LedgerInvariantViolation,
)
from core.ledger import LedgerManager
from core.locks import with_bet_lock, with_round_lock, with_user_lock
from core.state_machine import RoundStateMachine
from services.outcome_service import OutcomeSource, RandomOutcomeSource
from services.payout_service import get_multiplier, resolve_bet
from database import transactional

logger = logging.getLogger(__name__)


@dataclass
class SettlementResult:
    round_id: int
    round_number: int
    result: str
    multiplier: Decimal
    bets_won: int = 0
    bets_lost: int = 0
    total_payout: Decimal = Decimal("0")
    already_settled: bool = False


@transactional
def close_round(db: Session, round_id: int, now: datetime) -> Round:
    """
    OPEN -> CLOSING

    異常：
        RoundStillOpen: 還沒到 end_time
    """
    round_obj = with_round_lock(round_id, db).first()
    if not round_obj:
        raise RoundNotFound(round_id)
    if round_obj.status != RoundStatus.OPEN:
        return round_obj
    if now < round_obj.end_time:
        raise RoundStillOpen(round_id)

    return RoundStateMachine.transition(round_id, RoundStatus.CLOSING, db)


@transactional
def decide_outcome(db: Session, round_id: int, outcome_source: OutcomeSource) -> Round:
    """
    寫入回合結果（已經有結果就不動）

    強制結果優先；否則由 outcome_source 抽
    """
    round_obj = with_round_lock(round_id, db).first()
    if not round_obj:
        raise RoundNotFound(round_id)
    if round_obj.result is not None:
        return round_obj

    forced = round_obj.forced_result is not None
    if forced:
        result = round_obj.forced_result
        multiplier = round_obj.forced_multiplier
        if multiplier is None:
            multiplier = get_multiplier(result)
    else:
        result = outcome_source.draw(round_obj.round_number)
        multiplier = get_multiplier(result)

    round_obj.result = result
    round_obj.multiplier = multiplier

    db.add(EventLog(
        round_id=round_id,
        event_type="ROUND_OUTCOME",
        data={"result": result.value, "multiplier": str(multiplier), "forced": forced}
    ))

    logger.info(
        f"Round #{round_obj.round_number} outcome {result.value} x{multiplier}"
        f"{' (forced)' if forced else ''}"
    )
    return round_obj


@transactional
def settle_bet(db: Session, bet_id: int, outcome, round_number: int, now: datetime) -> Optional[Bet]:
    """
    結算單筆下注

    返回：
        結算後的 Bet；已經不是 PENDING 的話回傳 None
    """
    bet = with_bet_lock(bet_id, db).first()
    if not bet or bet.status != BetStatus.PENDING:
        return None

    status, profit, credit = resolve_bet(bet.color, outcome, bet.amount, bet.potential)

    if credit > 0:
        user = with_user_lock(bet.user_id, db).first()
        if not user:
            logger.critical(f"Bet {bet.id} references missing user {bet.user_id}")
            raise LedgerInvariantViolation(f"Bet {bet.id} references missing user {bet.user_id}")
        LedgerManager.apply_balance_change(
            db, user, credit, TransactionType.WIN, f"Round #{round_number} Bet #{bet.id}"
        )

    bet.status = status
    bet.profit = profit
    bet.settled_at = now
    return bet


@transactional
def finalize_round(db: Session, round_id: int, now: datetime, summary: dict) -> Round:
    """
    CLOSING -> SETTLED（必須沒有 PENDING 下注）
    """
    pending = db.query(Bet).filter(
        Bet.round_id == round_id,
        Bet.status == BetStatus.PENDING
    ).count()
    if pending:
        raise InvalidStateTransition(
            f"Round {round_id} still has {pending} pending bets"
        )

    round_obj = RoundStateMachine.transition(round_id, RoundStatus.SETTLED, db)
    round_obj.settled_at = now

    db.add(EventLog(
        round_id=round_id,
        event_type="ROUND_SETTLED",
        data=summary
    ))
    return round_obj


class SettlementEngine:
    """
    回合結算引擎

    參數：
        session_factory: 每次結算開一個新的 Session
        outcome_source: 抽結果的來源（預設 RandomOutcomeSource）
        events: round-end 事件接收端
        clock: 目前時間（測試時換成假時鐘）
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        outcome_source: Optional[OutcomeSource] = None,
        events: Optional[EventSink] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self._outcome_source = outcome_source or RandomOutcomeSource()
        self._events = events or NullEventSink()
        self._clock = clock

    def settle_round(self, round_id: int, now: Optional[datetime] = None) -> SettlementResult:
        """
        結算一個回合

        異常：
            RoundNotFound: 回合不存在
            RoundStillOpen: 回合還沒到 end_time
            PersistenceError: DB 失敗（可重跑）
            LedgerInvariantViolation: 帳本不變量被破壞
        """
        now = now or self._clock()
        db = self._session_factory()
        try:
            round_obj = db.query(Round).filter(Round.id == round_id).first()
            if not round_obj:
                raise RoundNotFound(round_id)

            if round_obj.status == RoundStatus.SETTLED:
                logger.info(f"Round #{round_obj.round_number} already settled, skipping")
                return SettlementResult(
                    round_id=round_obj.id,
                    round_number=round_obj.round_number,
                    result=round_obj.result.value,
                    multiplier=round_obj.multiplier,
                    already_settled=True,
                )

            close_round(db, round_id, now)
            round_obj = decide_outcome(db, round_id, self._outcome_source)
            outcome = round_obj.result
            round_number = round_obj.round_number

            result = SettlementResult(
                round_id=round_id,
                round_number=round_number,
                result=outcome.value,
                multiplier=round_obj.multiplier,
            )

            pending_ids = [bet.id for bet in BetManager.get_pending_bets(db, round_id)]
            for bet_id in pending_ids:
                settled = settle_bet(db, bet_id, outcome, round_number, now)
                if settled is None:
                    continue
                if settled.status == BetStatus.WON:
                    result.bets_won += 1
                    result.total_payout += Decimal(settled.potential)
                else:
                    result.bets_lost += 1

            round_obj = finalize_round(db, round_id, now, {
                "bets_won": result.bets_won,
                "bets_lost": result.bets_lost,
                "total_payout": str(result.total_payout),
            })
            db.refresh(round_obj)
            payload = round_end_payload(round_obj)
        finally:
            db.close()

        logger.info(
            f"Settled round #{result.round_number}: {result.result} x{result.multiplier}, "
            f"{result.bets_won} won / {result.bets_lost} lost, payout {result.total_payout}"
        )
        safe_publish(self._events, ROUND_END, payload)
        return result
