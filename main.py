from decimal import Decimal

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import logging

from database import Base, engine, SessionLocal, get_settings
from models import UserRole
from api import rounds, bets, wallet, users, admin, websocket
from core.events import Broadcaster
from core.ledger import LedgerManager
from core.round_scheduler import RoundScheduler
from core.settlement import SettlementEngine

settings = get_settings()
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s"
)
logger = logging.getLogger(__name__)


def seed_demo_users():
    db = SessionLocal()
    try:
        LedgerManager.ensure_user(
            db, "demo", Decimal("50000"), email="demo@example.com", name="Demo User"
        )
        LedgerManager.ensure_user(
            db, "admin", Decimal("10000"), role=UserRole.ADMIN,
            email="admin@example.com", name="System Admin"
        )
    except Exception as e:
        logger.error(f"Error creating demo accounts: {e}", exc_info=True)
    finally:
        db.close()


def build_scheduler(broadcaster: Broadcaster) -> RoundScheduler:
    settlement = SettlementEngine(SessionLocal, events=broadcaster)
    return RoundScheduler(
        SessionLocal,
        settlement,
        events=broadcaster,
        period_seconds=settings.round_duration_seconds,
        retry_attempts=settings.settlement_retry_attempts,
        retry_min_seconds=settings.settlement_retry_min_seconds,
        retry_max_seconds=settings.settlement_retry_max_seconds,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: 建立資料表、demo 帳號，啟動回合排程
    Base.metadata.create_all(bind=engine)
    if settings.seed_demo_users:
        seed_demo_users()

    scheduler = build_scheduler(app.state.broadcaster)
    app.state.scheduler = scheduler
    if settings.scheduler_enabled:
        scheduler.start()

    yield

    # Shutdown: 停止排程（進行中的回合由下次啟動時接手）
    scheduler.stop()


app = FastAPI(
    title="Color Game API",
    description="Timed color-prediction rounds with wagering and settlement",
    version="1.0.0",
    lifespan=lifespan
)
app.state.broadcaster = Broadcaster()

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure this properly in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(rounds.router)
app.include_router(bets.router)
app.include_router(wallet.router)
app.include_router(users.router)
app.include_router(admin.router)
app.include_router(websocket.router)


@app.get("/")
def root():
    return {"message": "Color Game API", "status": "ok"}


@app.get("/health")
def health():
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
