"""
Round Scheduler：驅動回合生命週期

狀態循環：
    NoActiveRound -> RoundOpen -> RoundClosing -> RoundSettled -> (下一回合)

tick() 每次只做一步，並回傳距離下次該醒來的秒數：
- 最新回合 OPEN 且還沒到 end_time：沿用它的計時（重啟後不會重建回合）
- 最新回合已過期或卡在 CLOSING：先結算（重啟後的補結算也走這條）
- 沒有未結算回合：開新回合並推送 round-start

結算失敗時以指數退避重試；重試用完回合仍未結算，就繼續擋住開新回合，
下一次 tick 再試（fail-closed，不會在未結算回合上面蓋新回合）
帳本不變量被破壞則直接停止排程，等人工處理
"""
from datetime import datetime
from typing import Callable, Optional
import logging
import threading

from sqlalchemy.orm import Session
from tenacity import (
    RetryError,
    Retrying,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from models import RoundStatus, utcnow
from core.events import EventSink, NullEventSink, ROUND_START, round_start_payload, safe_publish
from core.exceptions import LedgerInvariantViolation, RoundStillOpen
from core.round_manager import RoundManager
from core.settlement import SettlementEngine

logger = logging.getLogger(__name__)


class RoundScheduler:
    """
    單一實例的回合排程器

    參數：
        session_factory: 產生 Session 的 callable
        settlement: SettlementEngine
        events: round-start 事件接收端
        clock: 目前時間（測試時換成假時鐘）
        period_seconds: 回合長度
        retry_attempts / retry_min_seconds / retry_max_seconds: 結算重試設定
        sleep: 重試之間的等待函式（測試時換掉）
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        settlement: SettlementEngine,
        events: Optional[EventSink] = None,
        clock: Callable[[], datetime] = utcnow,
        period_seconds: int = 60,
        retry_attempts: int = 5,
        retry_min_seconds: float = 1.0,
        retry_max_seconds: float = 30.0,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self._session_factory = session_factory
        self._settlement = settlement
        self._events = events or NullEventSink()
        self._clock = clock
        self.period_seconds = period_seconds
        self._retry_attempts = retry_attempts
        self._retry_min_seconds = retry_min_seconds
        self._retry_max_seconds = retry_max_seconds

        self._stop_event = threading.Event()
        self._sleep = sleep or self._interruptible_sleep
        self._thread: Optional[threading.Thread] = None
        self.halted = False

    # ============ 單步驅動 ============

    def tick(self) -> float:
        """
        執行一步回合生命週期

        返回：
            距離下一次 tick 的秒數

        異常：
            LedgerInvariantViolation: 帳本不變量被破壞（排程會標記為 halted）
        """
        if self.halted:
            return self._retry_max_seconds

        now = self._clock()
        db = self._session_factory()
        try:
            latest = RoundManager.get_latest_round(db)
            if latest and latest.status != RoundStatus.SETTLED:
                if latest.status == RoundStatus.OPEN and now < latest.end_time:
                    return (latest.end_time - now).total_seconds()
                round_id = latest.id
            else:
                round_id = None
        finally:
            db.close()

        if round_id is not None and not self._settle_with_retry(round_id):
            return self._retry_max_seconds

        return self._open_next_round()

    def _settle_with_retry(self, round_id: int) -> bool:
        """
        結算回合，失敗就退避重試

        返回：
            True 結算完成，False 重試用完（回合仍擋住開新回合）
        """
        retrying = Retrying(
            stop=stop_after_attempt(self._retry_attempts),
            wait=wait_exponential(
                multiplier=self._retry_min_seconds,
                min=self._retry_min_seconds,
                max=self._retry_max_seconds,
            ),
            retry=retry_if_not_exception_type((LedgerInvariantViolation, RoundStillOpen)),
            before_sleep=self._log_retry,
            sleep=self._sleep,
        )
        try:
            for attempt in retrying:
                with attempt:
                    self._settlement.settle_round(round_id, now=self._clock())
            return True
        except RetryError as e:
            logger.error(
                f"Settlement of round {round_id} still failing after "
                f"{self._retry_attempts} attempts, blocking new rounds: {e.last_attempt.exception()}"
            )
            return False
        except RoundStillOpen:
            # clock drifted behind end_time, wait for the next tick
            return False
        except LedgerInvariantViolation:
            logger.critical(f"Ledger invariant violated while settling round {round_id}, halting scheduler")
            self.halted = True
            self._stop_event.set()
            raise

    def _log_retry(self, retry_state) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            f"Settlement attempt {retry_state.attempt_number} failed: {exc}; "
            f"retrying in {retry_state.next_action.sleep if retry_state.next_action else 0:.1f}s"
        )

    def _open_next_round(self) -> float:
        now = self._clock()
        db = self._session_factory()
        try:
            round_obj, created = RoundManager.open_round(db, now, self.period_seconds)
            payload = round_start_payload(round_obj)
            remaining = (round_obj.end_time - now).total_seconds()
        except Exception as e:
            logger.error(f"Failed to open new round: {e}", exc_info=True)
            return self._retry_min_seconds
        finally:
            db.close()

        if created:
            safe_publish(self._events, ROUND_START, payload)
        return max(remaining, 0.0)

    # ============ 背景 thread ============

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="round-scheduler", daemon=True)
        self._thread.start()
        logger.info(f"Round scheduler started (period={self.period_seconds}s)")

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Round scheduler stopped")

    def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                delay = self.tick()
            except LedgerInvariantViolation:
                break
            except Exception as e:
                logger.error(f"Round scheduler tick failed: {e}", exc_info=True)
                delay = self._retry_min_seconds
            self._stop_event.wait(delay)

    def _interruptible_sleep(self, seconds: float) -> None:
        self._stop_event.wait(seconds)
