"""
服務層

這個 package 包含純計算與查詢邏輯，不負責狀態轉換：
- PayoutService：顏色賠率與輸贏計算
- OutcomeService：開獎來源
- HistoryService：玩家下注 / 交易紀錄
- StatsService：後台統計
"""
