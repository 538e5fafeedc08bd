"""单次“发送 → 回复 → 提交”流程的编排。"""

from .chat_session import ChatSession, SessionConfig, SendResult

__all__ = ["ChatSession", "SessionConfig", "SendResult"]
