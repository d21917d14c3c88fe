from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from models import BetStatus, Color, RoundStatus, TransactionType, UserRole


class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# ============ Round ============

class RoundResponse(ORMModel):
    id: int
    round_number: int
    start_time: datetime
    end_time: datetime
    status: RoundStatus
    result: Optional[Color] = None
    multiplier: Optional[Decimal] = None


class ActiveRoundResponse(RoundResponse):
    seconds_remaining: float


# ============ Bet ============

class BetCreate(BaseModel):
    round_id: int
    # 顏色與金額由 BetManager 驗證，回傳有區別的錯誤
    color: str
    amount: Decimal


class BetResponse(ORMModel):
    id: int
    user_id: int
    round_id: int
    color: Color
    amount: Decimal
    potential: Decimal
    status: BetStatus
    profit: Optional[Decimal] = None
    created_at: datetime


class BetHistoryEntry(BaseModel):
    bet_id: int
    round_id: int
    round_number: int
    color: Color
    amount: Decimal
    potential: Decimal
    status: BetStatus
    profit: Optional[Decimal] = None
    result: Optional[Color] = None
    created_at: datetime


# ============ Wallet ============

class BalanceResponse(BaseModel):
    balance: Decimal


class WalletAmount(BaseModel):
    amount: Decimal


class TransactionResponse(ORMModel):
    id: int
    user_id: int
    amount: Decimal
    type: TransactionType
    reference: Optional[str] = None
    balance_before: Decimal
    balance_after: Decimal
    created_at: datetime


# ============ User / Admin ============

class UserResponse(ORMModel):
    id: int
    username: str
    email: Optional[str] = None
    name: Optional[str] = None
    balance: Decimal
    role: UserRole
    is_active: bool


class AdminUserResponse(UserResponse):
    total_bets: int = 0


class UserUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    role: Optional[UserRole] = None
    is_active: Optional[bool] = None


class ForceRoundRequest(BaseModel):
    round_id: int
    result: str
    multiplier: Optional[Decimal] = Field(default=None, gt=0)


class StatsResponse(BaseModel):
    total_users: int
    total_rounds: int
    total_bets: int
    house_profit: Decimal


class AuditLogResponse(ORMModel):
    id: int
    round_id: Optional[int] = None
    actor_id: Optional[int] = None
    event_type: str
    data: dict
    created_at: datetime
