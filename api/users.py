"""
User API Endpoints

職責：
1. 查詢目前登入的使用者資訊
"""
from fastapi import APIRouter, Depends

from models import User
from schemas import UserResponse
from api.deps import get_current_user

router = APIRouter(prefix="/api", tags=["users"])


@router.get("/user", response_model=UserResponse)
def get_me(user: User = Depends(get_current_user)):
    return user
