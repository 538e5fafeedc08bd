"""Provider 抽象接口。

ChatSession 不直接依赖具体的 HTTP 调用，而是依赖此协议：

- 每个推理服务实现一个 ProviderClient（如 OllamaClient）。
- 负责：将 ChatRequest 转成具体 API 请求，并把响应 JSON 解析为 ChatResult。
- 任何失败都以 CollaboratorUnavailableError 的子类抛出。
"""

from typing import Protocol
from chat_core.domain.models import ChatRequest, ChatResult


class ProviderClient(Protocol):
    """LLM Provider 客户端协议。

    实现者需要提供：
    - name: Provider 名称，用于日志/统计。
    - chat(req): 执行一次非流式对话调用，返回统一的 ChatResult。
    """

    name: str

    async def chat(self, req: ChatRequest) -> ChatResult:
        ...
