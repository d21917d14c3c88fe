from decimal import Decimal
from typing import Dict

from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.orm.exc import StaleDataError
from pydantic_settings import BaseSettings
from functools import lru_cache, wraps
import logging

from core.exceptions import ColorGameException, ConcurrentUpdate, PersistenceError

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    database_url: str = "sqlite:///./color_game.db"

    # 回合設定
    round_duration_seconds: int = 60
    min_stake: Decimal = Decimal("1")
    color_multipliers: Dict[str, Decimal] = {
        "red": Decimal("2"),
        "green": Decimal("2"),
        "violet": Decimal("4"),
    }

    # 結算重試（指數退避）
    settlement_retry_attempts: int = 5
    settlement_retry_min_seconds: float = 1.0
    settlement_retry_max_seconds: float = 30.0

    scheduler_enabled: bool = True
    seed_demo_users: bool = True
    log_level: str = "INFO"

    class Config:
        env_file = ".env"


@lru_cache()
def get_settings():
    return Settings()


settings = get_settings()

# SQLite 需要特殊設定：connect_args={"check_same_thread": False}
# 這允許多執行緒存取同一個 SQLite 連線（排程 thread 與 request thread 共用）
engine = create_engine(
    settings.database_url,
    connect_args={"check_same_thread": False} if settings.database_url.startswith("sqlite") else {},
    pool_pre_ping=True
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    """
    FastAPI dependency：提供 Database Session

    使用 yield 確保 session 在請求結束後會被關閉
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def transactional(func):
    """
    Transaction decorator：確保資料庫操作的原子性

    使用方式：
        @transactional
        def some_business_logic(db: Session, ...):
            bet = Bet(...)
            db.add(bet)
            # 不需要手動 commit，decorator 會處理

    如果函式內發生異常：
        - 自動 rollback
        - 業務異常（ColorGameException）原樣重新拋出
        - StaleDataError 轉成 ConcurrentUpdate（樂觀鎖衝突，可重試）
        - 其他 SQLAlchemyError 轉成 PersistenceError（可重試）

    注意：
        - 第一個參數必須是 db: Session
        - 不要在函式內手動 commit（decorator 會處理）
    """
    @wraps(func)
    def wrapper(*args, **kwargs):
        # 找出 db session（可能在 args 或 kwargs）
        db = None
        if args and isinstance(args[0], Session):
            db = args[0]
        elif 'db' in kwargs:
            db = kwargs['db']

        if db is None:
            raise ValueError(
                f"@transactional requires 'db: Session' as first argument, "
                f"but got args={args}, kwargs={kwargs}"
            )

        try:
            result = func(*args, **kwargs)
            db.commit()
            return result
        except ColorGameException:
            db.rollback()
            raise
        except StaleDataError as e:
            logger.warning(f"Concurrent update detected in {func.__name__}: {e}")
            db.rollback()
            raise ConcurrentUpdate(str(e)) from e
        except SQLAlchemyError as e:
            logger.error(f"Transaction failed in {func.__name__}: {e}", exc_info=True)
            db.rollback()
            raise PersistenceError(f"{func.__name__} failed: {e}") from e
        except Exception as e:
            logger.error(f"Transaction failed in {func.__name__}: {e}", exc_info=True)
            db.rollback()
            raise

    return wrapper
