"""
Ledger Manager：使用者餘額與交易紀錄

職責：
1. 所有餘額變動的唯一入口（apply_balance_change）
2. 存款 / 提款
3. 使用者查詢與建立

規則：
- 每一次餘額變動都會寫一筆 Transaction，balance_after == balance_before + amount
- 餘額永遠不可為負數，違反時直接拋 LedgerInvariantViolation（不自動修正）
- 呼叫 apply_balance_change 之前，User 必須已經被鎖定
"""
from decimal import Decimal
from typing import List, Optional
import logging

from sqlalchemy.orm import Session

from models import User, UserRole, Transaction, TransactionType, EventLog
from core.locks import with_user_lock
from core.exceptions import (
    UserNotFound,
    InvalidAmount,
    InsufficientBalance,
    LedgerInvariantViolation,
)
from database import transactional

logger = logging.getLogger(__name__)

USER_EDITABLE_FIELDS = {"name", "email", "role", "is_active"}


class LedgerManager:
    """餘額與交易紀錄管理器"""

    @staticmethod
    def apply_balance_change(
        db: Session,
        user: User,
        amount: Decimal,
        tx_type: TransactionType,
        reference: Optional[str] = None,
    ) -> Transaction:
        """
        變更使用者餘額並寫入交易紀錄（不 commit，交由外層 transaction）

        參數：
            db: SQLAlchemy Session
            user: 已鎖定的 User
            amount: 帶正負號的金額（下注 / 提款為負）
            tx_type: 交易類型
            reference: 備註，例如 "Bet #12"、"Round #5"

        返回：
            新建立的 Transaction

        異常：
            LedgerInvariantViolation: 變動後餘額為負
        """
        amount = Decimal(amount)
        balance_before = Decimal(user.balance)
        balance_after = balance_before + amount

        if balance_after < 0:
            logger.critical(
                f"Ledger invariant violated: user {user.id} balance would become "
                f"{balance_after} ({tx_type.value} {amount}, ref={reference})"
            )
            raise LedgerInvariantViolation(
                f"User {user.id} balance would become negative: {balance_after}"
            )

        user.balance = balance_after
        tx = Transaction(
            user_id=user.id,
            amount=amount,
            type=tx_type,
            reference=reference,
            balance_before=balance_before,
            balance_after=balance_after,
        )
        db.add(tx)
        db.flush()
        return tx

    @staticmethod
    @transactional
    def create_user(
        db: Session,
        username: str,
        initial_balance: Decimal = Decimal("1000"),
        role: UserRole = UserRole.USER,
        email: Optional[str] = None,
        name: Optional[str] = None,
    ) -> User:
        """
        建立使用者，起始餘額以一筆 deposit 交易入帳
        """
        user = User(
            username=username,
            email=email,
            name=name,
            role=role,
            balance=Decimal("0"),
        )
        db.add(user)
        db.flush()

        if Decimal(initial_balance) > 0:
            LedgerManager.apply_balance_change(
                db, user, Decimal(initial_balance), TransactionType.DEPOSIT, "Initial balance"
            )

        logger.info(f"Created user {user.id} ({username}) with balance {user.balance}")
        return user

    @staticmethod
    @transactional
    def deposit(db: Session, user_id: int, amount: Decimal) -> Transaction:
        """
        存款

        異常：
            InvalidAmount: 金額 <= 0
            UserNotFound: 使用者不存在
        """
        amount = Decimal(amount)
        if amount <= 0:
            raise InvalidAmount(f"Deposit amount must be positive, got {amount}")

        user = with_user_lock(user_id, db).first()
        if not user:
            raise UserNotFound(user_id)

        tx = LedgerManager.apply_balance_change(
            db, user, amount, TransactionType.DEPOSIT, "Wallet deposit"
        )
        logger.info(f"User {user_id} deposited {amount}, balance {tx.balance_after}")
        return tx

    @staticmethod
    @transactional
    def withdraw(db: Session, user_id: int, amount: Decimal) -> Transaction:
        """
        提款

        異常：
            InvalidAmount: 金額 <= 0
            UserNotFound: 使用者不存在
            InsufficientBalance: 餘額不足
        """
        amount = Decimal(amount)
        if amount <= 0:
            raise InvalidAmount(f"Withdrawal amount must be positive, got {amount}")

        user = with_user_lock(user_id, db).first()
        if not user:
            raise UserNotFound(user_id)
        if Decimal(user.balance) < amount:
            raise InsufficientBalance(user_id, user.balance, amount)

        tx = LedgerManager.apply_balance_change(
            db, user, -amount, TransactionType.WITHDRAWAL, "Wallet withdrawal"
        )
        logger.info(f"User {user_id} withdrew {amount}, balance {tx.balance_after}")
        return tx

    @staticmethod
    @transactional
    def update_user(db: Session, user_id: int, updates: dict, actor_id: Optional[int] = None) -> User:
        """
        管理員修改使用者資料（不能直接改餘額）

        不在 USER_EDITABLE_FIELDS 的欄位、值為 None 的欄位都會被忽略
        """
        user = with_user_lock(user_id, db).first()
        if not user:
            raise UserNotFound(user_id)

        applied = {}
        for field, value in updates.items():
            if field not in USER_EDITABLE_FIELDS or value is None:
                continue
            if field == "role":
                value = UserRole(value)
            setattr(user, field, value)
            applied[field] = value.value if isinstance(value, UserRole) else value

        db.add(EventLog(
            actor_id=actor_id,
            event_type="UPDATE_USER",
            data={"user_id": user_id, "updates": applied}
        ))
        logger.info(f"Admin {actor_id} updated user {user_id}: {applied}")
        return user

    @staticmethod
    def get_user(db: Session, user_id: int) -> User:
        """
        異常：
            UserNotFound: 使用者不存在
        """
        user = db.query(User).filter(User.id == user_id).first()
        if not user:
            raise UserNotFound(user_id)
        return user

    @staticmethod
    def get_user_by_username(db: Session, username: str) -> Optional[User]:
        return db.query(User).filter(User.username == username).first()

    @staticmethod
    def list_users(db: Session) -> List[User]:
        return db.query(User).order_by(User.id).all()

    @staticmethod
    def ensure_user(db: Session, username: str, initial_balance: Decimal, role: UserRole = UserRole.USER,
                    email: Optional[str] = None, name: Optional[str] = None) -> User:
        """使用者不存在才建立（啟動時建立 demo / admin 帳號用）"""
        user = LedgerManager.get_user_by_username(db, username)
        if user:
            return user
        return LedgerManager.create_user(
            db, username, initial_balance, role=role, email=email, name=name
        )
