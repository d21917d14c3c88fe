"""
Bet Manager：下注（Wager Intake）與下注查詢

職責：
1. 驗證並建立下注
2. 查詢回合內待結算的下注

並發設計：
- 回合是否開放由條件式 UPDATE 判斷（bet_count + 1 WHERE 仍開放），
  這筆寫入在扣款 commit 前都握著回合的寫鎖；關閉回合同樣是條件式 UPDATE，
  所以兩者一定有先後：先下注的會被結算到，先關閉的下注會被拒絕
- 使用者以 FOR UPDATE + version 樂觀鎖，同一使用者的扣款 / 派彩不會交錯
- 回合關閉後才到的下注一律拒絕，不會被排到下一回合
"""
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import List, Optional
import logging

from sqlalchemy import update
from sqlalchemy.orm import Session

from models import Bet, BetStatus, Round, RoundStatus, TransactionType, utcnow
from core.locks import with_user_lock
from core.ledger import LedgerManager
from core.exceptions import (
    RoundNotFound,
    RoundNotOpen,
    InvalidStake,
    UserNotFound,
    InsufficientBalance,
)
from services.payout_service import parse_color, calculate_potential
from database import transactional, get_settings

logger = logging.getLogger(__name__)


def _parse_stake(amount) -> Decimal:
    try:
        stake = Decimal(str(amount))
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidStake(f"Stake must be a number, got {amount!r}")
    if not stake.is_finite() or stake <= 0:
        raise InvalidStake(f"Stake must be positive, got {amount}")
    return stake


def _claim_open_round(db: Session, round_id: int, now: datetime) -> bool:
    """
    在下注的 transaction 裡佔住回合：仍開放才遞增 bet_count

    返回：
        True 回合仍開放（寫鎖持有到 commit / rollback），False 已截止
    """
    result = db.execute(
        update(Round)
        .where(
            Round.id == round_id,
            Round.status == RoundStatus.OPEN,
            Round.result.is_(None),
            Round.start_time <= now,
            Round.end_time > now,
        )
        .values(bet_count=Round.bet_count + 1)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


class BetManager:
    """下注管理器"""

    @staticmethod
    @transactional
    def place_bet(
        db: Session,
        user_id: int,
        round_id: int,
        color,
        amount,
        now: Optional[datetime] = None,
    ) -> Bet:
        """
        下注

        前置條件（依序檢查，各有不同的錯誤）：
        1. 回合存在（RoundNotFound）
        2. 回合開放中：OPEN、未開獎、now < end_time（RoundNotOpen）
        3. 顏色合法（InvalidColor）
        4. 金額 > 0 且 >= 最低下注額（InvalidStake）
        5. 使用者存在且啟用（UserNotFound）
        6. 餘額 >= 金額（InsufficientBalance）

        效果（同一個 transaction）：
        1. 扣款，寫入 bet 交易
        2. 建立 Bet，potential = amount x 該顏色賠率（下注當下固定）

        參數：
            db: SQLAlchemy Session
            user_id: 已驗證的使用者 ID
            round_id: 回合 ID
            color: red / green / violet
            amount: 下注金額
            now: 目前時間（測試用，預設 utcnow）

        返回：
            建立的 Bet
        """
        now = now or utcnow()

        # 1. 確認回合存在，並以條件式 UPDATE 佔住仍開放的回合
        round_obj = db.query(Round).filter(Round.id == round_id).first()
        if not round_obj:
            raise RoundNotFound(round_id)
        if not round_obj.is_open_at(now) or not _claim_open_round(db, round_id, now):
            raise RoundNotOpen(round_id)

        # 2. 驗證輸入
        color = parse_color(color)
        stake = _parse_stake(amount)
        min_stake = Decimal(get_settings().min_stake)
        if stake < min_stake:
            raise InvalidStake(f"Minimum stake is {min_stake}, got {stake}")

        # 3. 鎖定使用者並檢查餘額
        user = with_user_lock(user_id, db).first()
        if not user or not user.is_active:
            raise UserNotFound(user_id)
        if Decimal(user.balance) < stake:
            raise InsufficientBalance(user_id, user.balance, stake)

        # 4. 建立下注 + 扣款
        bet = Bet(
            user_id=user_id,
            round_id=round_id,
            color=color,
            amount=stake,
            potential=calculate_potential(stake, color),
            status=BetStatus.PENDING,
        )
        db.add(bet)
        db.flush()  # 取得 bet.id 作為交易備註

        LedgerManager.apply_balance_change(
            db, user, -stake, TransactionType.BET, f"Bet #{bet.id}"
        )

        logger.info(
            f"User {user_id} bet {stake} on {color.value} in round "
            f"#{round_obj.round_number} (bet={bet.id}, potential={bet.potential})"
        )
        return bet

    @staticmethod
    def get_pending_bets(db: Session, round_id: int) -> List[Bet]:
        """回合內所有 PENDING 的下注"""
        return db.query(Bet).filter(
            Bet.round_id == round_id,
            Bet.status == BetStatus.PENDING
        ).order_by(Bet.id).all()

    @staticmethod
    def get_bet(db: Session, bet_id: int) -> Optional[Bet]:
        return db.query(Bet).filter(Bet.id == bet_id).first()
