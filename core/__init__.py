"""
核心業務邏輯層

這個 package 包含所有核心業務邏輯，包括：
- 狀態機：集中管理 Round 狀態轉換
- Manager：Round、Bet、Ledger 的生命週期
- Settlement / Scheduler：回合結算與排程
- Locks：並發控制工具
"""
