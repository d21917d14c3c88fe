"""
並發控制工具

提供 Database-level 的鎖定機制，防止競態條件（Race Condition）

主要使用 PostgreSQL 的 SELECT ... FOR UPDATE 來實現悲觀鎖（Pessimistic Locking）
populate_existing() 確保拿到的是 DB 最新值，而不是 Session 裡的舊資料
SQLite 不支援行級鎖，SQLAlchemy 會直接忽略 with_for_update；
User 另有 version_id_col 做樂觀鎖，兩種後端都能保證同一使用者的餘額不會被同時改寫
"""
from sqlalchemy.orm import Session, Query

from models import User, Round, Bet


def with_user_lock(user_id: int, db: Session) -> Query:
    """
    鎖定一個 User（行級鎖）

    使用場景：
    - 下注扣款
    - 結算派彩
    - 存款 / 提款

    範例：
        user = with_user_lock(user_id, db).first()
        if not user:
            raise UserNotFound(user_id)
        user.balance -= amount

    注意：
        - 必須在 transaction 內使用（確保有 commit 或 rollback）
        - 同一個 transaction 內若也要鎖 Round，必須先鎖 Round 再鎖 User
    """
    return db.query(User).filter(
        User.id == user_id
    ).with_for_update(nowait=False).populate_existing()


def with_round_lock(round_id: int, db: Session) -> Query:
    """
    鎖定一個 Round（行級鎖）

    使用場景：
    - 關閉回合、寫入結果、強制結果

    注意：
        下注不鎖回合，而是用條件式 UPDATE 佔住回合（見 BetManager），
        效果等同寫鎖：關閉回合會等進行中的下注 commit

    參數：
        round_id: Round ID
        db: SQLAlchemy Session

    返回：
        Query object（需要呼叫 .first() 或 .one() 來取得結果）
    """
    return db.query(Round).filter(
        Round.id == round_id
    ).with_for_update(nowait=False).populate_existing()


def with_latest_round_lock(db: Session) -> Query:
    """
    鎖定最新的一個 Round

    用途：
        開新回合時的 create-if-absent，兩個排程器不會同時看到「沒有進行中回合」
    """
    return db.query(Round).order_by(
        Round.round_number.desc()
    ).limit(1).with_for_update(nowait=False).populate_existing()


def with_bet_lock(bet_id: int, db: Session) -> Query:
    """
    鎖定一筆 Bet

    用途：
        結算單筆下注時，確保同一筆不會被兩個結算流程同時處理
    """
    return db.query(Bet).filter(
        Bet.id == bet_id
    ).with_for_update(nowait=False).populate_existing()
