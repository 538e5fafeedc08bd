"""ChatSession：一次发送流程的编排。

流程：校验输入 -> 构造用户消息 -> 调用推理服务 -> 构造助手消息 -> 原子提交。
调用推理服务是唯一的挂起点；提交只在调用成功后发生，失败时不修改任何状态。
"""

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Literal, Optional, Set
from uuid import uuid4

from chat_core.config.settings import settings
from chat_core.domain.conversation import Conversation, ConversationStore, Message
from chat_core.domain.exceptions import (
    BusinessError,
    CollaboratorUnavailableError,
    ConversationBusyError,
    NetworkError,
    ProtocolError,
)
from chat_core.domain.models import ChatMessage, ChatRequest, ChatResult
from chat_core.infrastructure.logging.logger import logger
from chat_core.prompts import load_system_prompt
from chat_core.providers.base import ProviderClient


SendState = Literal["committed", "failed", "skipped"]
ConversationState = Literal["idle", "sending"]


@dataclass
class SessionConfig:
    provider: str
    model: str
    system_prompt: str
    timeout: float = 60.0  # 等待推理服务的总超时（秒）

    @classmethod
    def from_settings(cls, provider: str) -> "SessionConfig":
        return cls(
            provider=provider,
            model=settings.default_model,
            system_prompt=settings.system_prompt or load_system_prompt(settings.prompt_locale),
            timeout=settings.send_timeout,
        )


@dataclass
class SendResult:
    """send_message 的结果。

    - state: "committed" 已提交一次问答；"skipped" 空白输入，未做任何事；
      "failed" 失败，会话保持不变，调用方不应清空输入框。
    - conversation: 提交后的会话（committed），或当前会话（skipped）。
    - error: 失败原因（NotFoundError / ConversationBusyError / CollaboratorUnavailableError）。
    """

    state: SendState
    conversation: Optional[Conversation] = None
    error: Optional[BusinessError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ChatSession:
    def __init__(
        self,
        store: ConversationStore,
        provider_client: ProviderClient,
        config: Optional[SessionConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._store = store
        self._provider_client = provider_client
        self._config = config or SessionConfig.from_settings(provider_client.name)
        self._clock = clock or _utcnow
        self._in_flight: Set[str] = set()
        self._in_flight_lock = threading.Lock()

    def state(self, conversation_id: str) -> ConversationState:
        return "sending" if conversation_id in self._in_flight else "idle"

    async def send_message(self, conversation_id: str, raw_text: str) -> SendResult:
        """发送一条用户消息并提交问答。

        错误不会以异常形式抛出，统一放在 SendResult.error 中返回。
        """
        if not raw_text or not raw_text.strip():
            return SendResult(state="skipped", conversation=self._find(conversation_id))

        log_ctx: Dict[str, Any] = {
            "trace_id": f"tr-{uuid4().hex}",
            "conversation_id": conversation_id,
        }
        try:
            self._store.get_conversation(conversation_id)
        except BusinessError as e:
            self._log(logging.WARNING, "Send rejected", log_ctx, code=e.code)
            return SendResult(state="failed", error=e)

        with self._in_flight_lock:
            busy = conversation_id in self._in_flight
            if not busy:
                self._in_flight.add(conversation_id)
        if busy:
            err = ConversationBusyError(
                code="CONVERSATION_BUSY",
                message=f"conversation {conversation_id!r} already has a send in flight",
                http_status=409,
                conversation_id=conversation_id,
            )
            self._log(logging.WARNING, "Send rejected", log_ctx, code=err.code)
            return SendResult(state="failed", error=err)

        try:
            return await self._send(conversation_id, raw_text, log_ctx)
        finally:
            with self._in_flight_lock:
                self._in_flight.discard(conversation_id)

    async def _send(self, conversation_id: str, raw_text: str, log_ctx: Dict[str, Any]) -> SendResult:
        start_time = time.time()
        user_message = Message(text=raw_text, sender="user", timestamp=self._clock())

        req = ChatRequest(
            provider=self._config.provider,
            model=self._config.model,
            messages=[
                ChatMessage(role="system", content=self._config.system_prompt),
                ChatMessage(role="user", content=raw_text),
            ],
        )
        self._log(
            logging.INFO,
            "Calling provider",
            log_ctx,
            provider=self._config.provider,
            model=self._config.model,
        )
        try:
            result: ChatResult = await asyncio.wait_for(
                self._provider_client.chat(req), timeout=self._config.timeout
            )
        except asyncio.TimeoutError:
            err = NetworkError(
                code="TIMEOUT",
                message=f"no reply within {self._config.timeout}s",
                provider=self._config.provider,
            )
            return self._failed(err, log_ctx)
        except CollaboratorUnavailableError as e:
            return self._failed(e, log_ctx)
        except Exception as e:
            # 第三方 ProviderClient 抛出的未归类异常同样按服务不可用处理
            logger.exception("Provider raised unexpected error", extra={"extra": dict(log_ctx)})
            err = ProtocolError(
                code="PROVIDER_ERROR",
                message=f"{type(e).__name__}: {e}",
                provider=self._config.provider,
            )
            return self._failed(err, log_ctx)

        if result.usage:
            self._log(
                logging.INFO,
                "Token usage",
                log_ctx,
                prompt_tokens=result.usage.prompt_tokens,
                completion_tokens=result.usage.completion_tokens,
                total_tokens=result.usage.total_tokens,
            )

        assistant_message = Message(
            text=result.message.content,
            sender="assistant",
            timestamp=max(self._clock(), user_message.timestamp),
        )
        try:
            conv = self._store.append_exchange(conversation_id, user_message, assistant_message)
        except BusinessError as e:
            return self._failed(e, log_ctx)

        self._log(
            logging.INFO,
            "Committed exchange",
            log_ctx,
            elapsed_seconds=round(time.time() - start_time, 2),
            message_count=len(conv.messages),
        )
        return SendResult(state="committed", conversation=conv)

    def _find(self, conversation_id: str) -> Optional[Conversation]:
        try:
            return self._store.get_conversation(conversation_id)
        except BusinessError:
            return None

    def _failed(self, error: BusinessError, log_ctx: Dict[str, Any]) -> SendResult:
        self._log(logging.ERROR, f"Send failed: {error.message}", log_ctx, code=error.code)
        return SendResult(state="failed", error=error)

    @staticmethod
    def _log(level: int, message: str, log_ctx: Dict[str, Any], **fields: Any) -> None:
        payload = dict(log_ctx)
        payload.update(fields)
        logger.log(level, message, extra={"extra": payload})
