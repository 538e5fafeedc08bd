"""Chat Core 顶层包。

该包提供单用户聊天客户端的核心状态引擎，
包括会话/消息数据模型、进程内会话存储、按日分组视图、
推理服务适配以及“发送 → 回复 → 提交”的编排。
"""

from chat_core.infrastructure.storage.memory_store import InMemoryConversationStore
from chat_core.session import ChatSession, SendResult

__all__ = ["InMemoryConversationStore", "ChatSession", "SendResult"]
