"""
API 層

每個 router 只負責：解析輸入、呼叫 core manager、把業務異常轉成 HTTP 狀態碼
"""
