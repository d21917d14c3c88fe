"""
自定義異常類別

集中管理所有業務邏輯異常，方便 API 層統一處理

分類：
- GameValidationError：輸入格式錯誤（顏色不存在、金額非正數），不改變任何狀態
- StateConflictError：狀態衝突（回合未開放、已結算、餘額不足），不改變任何狀態
- PersistenceError：儲存層失敗，可重試，不會留下部分效果
- LedgerInvariantViolation：帳本不變量被破壞，只記錄不自動修正
"""


class ColorGameException(Exception):
    """所有遊戲異常的基類"""
    pass


# ============ 輸入驗證 ============

class GameValidationError(ColorGameException):
    """輸入格式不合法"""
    pass


class InvalidColor(GameValidationError):
    """顏色不在固定集合內"""
    def __init__(self, color):
        self.color = color
        super().__init__(f"Invalid color: {color}")


class InvalidStake(GameValidationError):
    """下注金額非正數或低於最低下注額"""
    pass


class InvalidAmount(GameValidationError):
    """存款 / 提款金額不合法"""
    pass


# ============ 找不到資源 ============

class RoundNotFound(ColorGameException):
    """回合不存在"""
    def __init__(self, round_id):
        self.round_id = round_id
        super().__init__(f"Round {round_id} not found")


class UserNotFound(ColorGameException):
    """使用者不存在或已停用"""
    def __init__(self, user_id):
        self.user_id = user_id
        super().__init__(f"User {user_id} not found")


# ============ 狀態衝突 ============

class StateConflictError(ColorGameException):
    """目前狀態不允許此操作"""
    pass


class RoundNotOpen(StateConflictError):
    """回合已截止或已開獎，不接受下注"""
    def __init__(self, round_id):
        self.round_id = round_id
        super().__init__(f"Round {round_id} is not open for betting")


class RoundStillOpen(StateConflictError):
    """回合尚未到期，不能結算"""
    def __init__(self, round_id):
        self.round_id = round_id
        super().__init__(f"Round {round_id} has not reached its end time")


class RoundAlreadySettled(StateConflictError):
    """回合結果已決定，不能再強制指定"""
    def __init__(self, round_id):
        self.round_id = round_id
        super().__init__(f"Round {round_id} outcome is already decided")


class InsufficientBalance(StateConflictError):
    """餘額不足"""
    def __init__(self, user_id, balance, required):
        self.user_id = user_id
        self.balance = balance
        self.required = required
        super().__init__(
            f"Insufficient balance for user {user_id}: has {balance}, needs {required}"
        )


class InvalidStateTransition(StateConflictError):
    """非法的狀態轉換"""
    pass


# ============ 儲存層 ============

class PersistenceError(ColorGameException):
    """儲存層暫時無法使用，呼叫端可重試"""
    pass


class ConcurrentUpdate(PersistenceError):
    """樂觀鎖版本衝突（同一使用者同時被修改）"""
    pass


# ============ 不變量 ============

class LedgerInvariantViolation(ColorGameException):
    """帳本不變量被破壞（例如餘額變成負數），代表並發 bug，需要人工調查"""
    pass
