"""
資料模型

所有時間欄位都存 naive UTC（SQLite 不保存時區資訊）
金額一律用 Numeric(18, 2) + Decimal，避免浮點誤差破壞帳本守恆
"""
import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    JSON,
    Numeric,
    String,
)
from sqlalchemy.orm import relationship

from database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


Money = Numeric(18, 2, asdecimal=True)


class Color(str, enum.Enum):
    RED = "red"
    GREEN = "green"
    VIOLET = "violet"


class UserRole(str, enum.Enum):
    USER = "user"
    ADMIN = "admin"


class RoundStatus(str, enum.Enum):
    OPEN = "open"
    CLOSING = "closing"
    SETTLED = "settled"


class BetStatus(str, enum.Enum):
    PENDING = "pending"
    WON = "won"
    LOST = "lost"


class TransactionType(str, enum.Enum):
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    BET = "bet"
    WIN = "win"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String, unique=True, nullable=False, index=True)
    email = Column(String, unique=True, nullable=True)
    name = Column(String, nullable=True)
    balance = Column(Money, nullable=False, default=0)
    role = Column(Enum(UserRole), nullable=False, default=UserRole.USER)
    is_active = Column(Boolean, nullable=False, default=True)
    # 樂觀鎖：每次 UPDATE 都會帶 WHERE version = ?，版本不符會拋 StaleDataError
    version = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    bets = relationship("Bet", back_populates="user")
    transactions = relationship("Transaction", back_populates="user")

    __mapper_args__ = {"version_id_col": version}


class Round(Base):
    __tablename__ = "game_rounds"

    id = Column(Integer, primary_key=True, index=True)
    round_number = Column(Integer, unique=True, nullable=False, index=True)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    status = Column(Enum(RoundStatus), nullable=False, default=RoundStatus.OPEN, index=True)

    # result = None 表示尚未開獎
    result = Column(Enum(Color), nullable=True)
    multiplier = Column(Money, nullable=True)

    # 管理員強制指定的結果，結算時優先使用
    forced_result = Column(Enum(Color), nullable=True)
    forced_multiplier = Column(Money, nullable=True)

    # 下注時以條件式 UPDATE 遞增，和關閉回合的 UPDATE 互斥
    bet_count = Column(Integer, nullable=False, default=0)

    settled_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    bets = relationship("Bet", back_populates="round")

    def is_open_at(self, now: datetime) -> bool:
        return (
            self.status == RoundStatus.OPEN
            and self.result is None
            and self.start_time <= now < self.end_time
        )


class Bet(Base):
    __tablename__ = "bets"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    round_id = Column(Integer, ForeignKey("game_rounds.id"), nullable=False, index=True)
    color = Column(Enum(Color), nullable=False)
    amount = Column(Money, nullable=False)
    potential = Column(Money, nullable=False)
    status = Column(Enum(BetStatus), nullable=False, default=BetStatus.PENDING)
    profit = Column(Money, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    settled_at = Column(DateTime, nullable=True)

    user = relationship("User", back_populates="bets")
    round = relationship("Round", back_populates="bets")

    __table_args__ = (
        Index("ix_bets_round_status", "round_id", "status"),
    )


class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    amount = Column(Money, nullable=False)
    type = Column(Enum(TransactionType), nullable=False)
    reference = Column(String, nullable=True)
    balance_before = Column(Money, nullable=False)
    balance_after = Column(Money, nullable=False)
    created_at = Column(DateTime, default=utcnow)

    user = relationship("User", back_populates="transactions")


class EventLog(Base):
    __tablename__ = "event_logs"

    id = Column(Integer, primary_key=True, index=True)
    round_id = Column(Integer, ForeignKey("game_rounds.id"), nullable=True, index=True)
    actor_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    event_type = Column(String, nullable=False, index=True)
    data = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime, default=utcnow)
