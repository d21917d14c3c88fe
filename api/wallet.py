"""
Wallet API Endpoints

職責：
1. 查詢餘額與交易紀錄
2. 存款 / 提款（金流串接不在此處理，這裡只記帳）
"""
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
import logging

from database import get_db
from models import User
from schemas import BalanceResponse, TransactionResponse, WalletAmount
from api.deps import get_current_user
from core.ledger import LedgerManager
from core.exceptions import InvalidAmount, InsufficientBalance, PersistenceError
from services.history_service import get_user_transactions

router = APIRouter(prefix="/api/wallet", tags=["wallet"])
logger = logging.getLogger(__name__)


@router.get("/balance", response_model=BalanceResponse)
def get_balance(user: User = Depends(get_current_user)):
    return BalanceResponse(balance=user.balance)


@router.get("/transactions", response_model=list[TransactionResponse])
def get_transactions(
    limit: int = Query(20, ge=1, le=200),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """交易紀錄，新到舊"""
    try:
        return get_user_transactions(user.id, db, limit)
    except Exception as e:
        logger.error(f"Failed to fetch transactions: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to fetch transactions")


@router.post("/deposit", response_model=TransactionResponse, status_code=201)
def deposit(
    data: WalletAmount,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    try:
        return LedgerManager.deposit(db, user.id, data.amount)
    except InvalidAmount as e:
        raise HTTPException(status_code=400, detail=str(e))
    except PersistenceError:
        raise HTTPException(status_code=503, detail="Please retry")
    except Exception as e:
        logger.error(f"Failed to deposit: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to deposit")


@router.post("/withdraw", response_model=TransactionResponse, status_code=201)
def withdraw(
    data: WalletAmount,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    try:
        return LedgerManager.withdraw(db, user.id, data.amount)
    except InvalidAmount as e:
        raise HTTPException(status_code=400, detail=str(e))
    except InsufficientBalance:
        raise HTTPException(status_code=409, detail="Insufficient balance")
    except PersistenceError:
        raise HTTPException(status_code=503, detail="Please retry")
    except Exception as e:
        logger.error(f"Failed to withdraw: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to withdraw")
