"""与推理服务交互的请求/响应模型。

- ChatMessage: 发给推理服务的一条消息（system/user/assistant）。
- ChatRequest: 一次完整的非流式请求。
- ChatResult: 从响应 JSON 解析出的统一结果。

Provider 适配器（如 OllamaClient）只依赖这些模型，
并负责在厂商 JSON 和这些模型之间做转换。
"""

from dataclasses import dataclass
from typing import Literal, Optional, List


# 推理服务消息角色（与 /api/chat 的 role 字段对应）
Role = Literal["system", "user", "assistant"]


@dataclass
class ChatMessage:
    role: Role
    content: str


@dataclass
class ChatRequest:
    """一次聊天请求。

    不携带历史消息：每次请求只有 system 指令和本次用户输入。
    """

    provider: str  # 逻辑 Provider 名，如 "ollama"
    model: str  # 逻辑模型名，如 "chat"（再由 registry 映射为真实模型名）
    messages: List[ChatMessage]
    stream: bool = False


@dataclass
class ChatUsage:
    """Provider 返回的 token 统计信息（统一格式）。"""

    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


@dataclass
class ChatResult:
    """一次对话调用的最终结果。

    - message: 助手回复，content 可以是空字符串。
    - usage: 可选的 token 使用统计。
    - raw: 原始响应 JSON，用于调试或日志记录。
    """

    provider: str
    model: str
    message: ChatMessage
    usage: Optional[ChatUsage] = None
    raw: Optional[dict] = None
