"""Ollama Provider 适配器。

本模块负责：

1. 接收统一的 ChatRequest。
2. 将其转换为 /api/chat 的请求体 {model, messages, stream}。
3. 调用 HTTP 接口并把网络/状态码/响应体问题统一映射为
   CollaboratorUnavailableError 的子类。
4. 将响应 JSON 中的 message.content 解析为 ChatResult。
"""

import httpx
from typing import Any, Dict, Optional

from chat_core.domain.models import ChatRequest, ChatResult, ChatMessage, ChatUsage
from chat_core.domain.exceptions import NetworkError, ApiError, RateLimitError, ProtocolError
from chat_core.providers.registry import OLLAMA_CONFIG, resolve_model


class OllamaClient:
    """Ollama 推理服务客户端实现。"""

    name = "ollama"

    def __init__(self, settings):
        # Settings 里包含 base_url、超时等配置
        self._settings = settings

    async def chat(self, req: ChatRequest) -> ChatResult:
        """执行一次非流式对话调用。

        步骤：
        1. 读取模型配置（logical model -> provider model）。
        2. 构造 HTTP 请求 payload。
        3. 发送请求并捕获网络错误/限流/服务端错误。
        4. 解析 message.content，缺失时视为协议错误。
        """

        payload = self._build_payload(req)
        base = getattr(self._settings, "ollama_base_url", None) or OLLAMA_CONFIG.base_url
        url = f"{base}{OLLAMA_CONFIG.chat_path}"
        try:
            async with httpx.AsyncClient(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = await client.post(
                    url,
                    json=payload,
                    headers={"Content-Type": "application/json"},
                )
        except httpx.TimeoutException as e:
            raise NetworkError(code="TIMEOUT", message=f"request to {url} timed out: {e}", provider=self.name)
        except httpx.RequestError as e:
            # DNS 失败、连接被拒绝等
            raise NetworkError(code="NETWORK_ERROR", message=str(e), provider=self.name)
        if resp.status_code == 429:
            raise RateLimitError(code="RATE_LIMIT", message="Ollama rate limit", http_status=429, provider=self.name)
        if not 200 <= resp.status_code < 300:
            raise ApiError(code="API_ERROR", message=resp.text, http_status=resp.status_code, provider=self.name)
        try:
            data = resp.json()
        except ValueError as e:
            raise ProtocolError(code="MALFORMED_RESPONSE", message=f"invalid JSON body: {e}", provider=self.name)
        return self._parse_response(data, req)

    def _build_payload(self, req: ChatRequest) -> Dict[str, Any]:
        """将 ChatRequest 转成 /api/chat 所需的请求 JSON。"""

        return {
            "model": resolve_model(OLLAMA_CONFIG, req.model),
            "messages": [{"role": m.role, "content": m.content} for m in req.messages],
            "stream": False,
        }

    def _parse_response(self, data: Any, req: ChatRequest) -> ChatResult:
        """将原始响应 JSON 解析为 ChatResult。content 可以是空字符串。"""

        message = data.get("message") if isinstance(data, dict) else None
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, str):
            raise ProtocolError(
                code="MALFORMED_RESPONSE",
                message="response body has no message.content",
                provider=self.name,
            )
        return ChatResult(
            provider=self.name,
            model=req.model,
            message=ChatMessage(role="assistant", content=content),
            usage=self._parse_usage(data),
            raw=data,
        )

    @staticmethod
    def _parse_usage(data: Dict[str, Any]) -> Optional[ChatUsage]:
        """token 统计是可选信息，计数缺失或不是整数时直接忽略。"""
        prompt = data.get("prompt_eval_count")
        completion = data.get("eval_count")
        if prompt is None and completion is None:
            return None
        prompt = 0 if prompt is None else prompt
        completion = 0 if completion is None else completion
        if not all(isinstance(v, int) and not isinstance(v, bool) for v in (prompt, completion)):
            return None
        return ChatUsage(prompt_tokens=prompt, completion_tokens=completion, total_tokens=prompt + completion)
