"""
API dependencies：身分驗證

Session / 登入由外部身分服務處理，這裡只讀取它注入的 X-User-Id header
"""
from typing import Optional

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from database import get_db
from models import User, UserRole


def get_current_user(
    x_user_id: Optional[int] = Header(default=None),
    db: Session = Depends(get_db)
) -> User:
    if x_user_id is None:
        raise HTTPException(status_code=401, detail="Not authenticated")

    user = db.query(User).filter(User.id == x_user_id).first()
    if not user or not user.is_active:
        raise HTTPException(status_code=401, detail="User not found")
    return user


def require_admin(user: User = Depends(get_current_user)) -> User:
    if user.role != UserRole.ADMIN:
        raise HTTPException(status_code=403, detail="Admin privileges required")
    return user
