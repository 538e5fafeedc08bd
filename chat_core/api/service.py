"""对外 API 服务模块。

提供简化的函数接口供 UI 层调用：每次操作后 UI 重新读取这里返回的数据来渲染。
"""

import asyncio
from typing import Optional, Dict, Any, List

from chat_core.domain.conversation import Conversation, ConversationSeed, Message
from chat_core.domain.grouping import format_time_label, group_by_day
from chat_core.infrastructure.logging.logger import logger
from chat_core.infrastructure.storage.memory_store import InMemoryConversationStore
from chat_core.providers import create_provider
from chat_core.session import ChatSession


_store: Optional[InMemoryConversationStore] = None
_session: Optional[ChatSession] = None


def get_default_store() -> InMemoryConversationStore:
    """获取默认会话存储（单例，进程内存储）。"""
    global _store
    if _store is None:
        _store = InMemoryConversationStore()
    return _store


def get_default_session() -> ChatSession:
    """获取默认的 ChatSession 实例（单例，与默认存储共享）。"""
    global _session
    if _session is None:
        _session = ChatSession(store=get_default_store(), provider_client=create_provider())
    return _session


def _conversation_to_dict(conv: Conversation, selected_id: str) -> Dict[str, Any]:
    return {
        "id": conv.id,
        "avatar": conv.avatar_ref,
        "handle": conv.handle,
        "display_name": conv.display_name,
        "subtitle": conv.subtitle,
        "preview": conv.preview,
        "selected": conv.id == selected_id,
    }


def _message_to_dict(msg: Message) -> Dict[str, Any]:
    return {
        "text": msg.text,
        "sender": msg.sender,
        "timestamp": msg.timestamp.isoformat(),
        "time_label": format_time_label(msg.timestamp),
    }


async def run_chat_async(user_input: str, conversation_id: Optional[str] = None) -> Dict[str, Any]:
    """发送一条消息到指定会话（默认当前选中会话），供已有事件循环的 UI 使用。

    Returns:
        {"state", "conversation_id", "error"}；失败时 error 含 code/message，
        调用方据此提示用户并保留输入内容。
    """
    session = get_default_session()
    target = conversation_id or get_default_store().selected_id
    result = await session.send_message(target, user_input)
    payload: Dict[str, Any] = {"state": result.state, "conversation_id": target, "error": None}
    if result.error is not None:
        logger.error(f"Chat failed: {result.error.message}", extra={"extra": {
            "conversation_id": target,
            "code": result.error.code,
        }})
        payload["error"] = {"code": result.error.code, "message": result.error.message}
    return payload


def run_chat(user_input: str, conversation_id: Optional[str] = None) -> Dict[str, Any]:
    """run_chat_async 的同步版本。

    内部使用 asyncio.run，不能在已有运行中事件循环的线程里调用
    （会抛出 RuntimeError），此时请直接 await run_chat_async。
    """
    return asyncio.run(run_chat_async(user_input, conversation_id))


def create_conversation(
    display_name: Optional[str] = None,
    subtitle: Optional[str] = None,
) -> Dict[str, Any]:
    """新建会话并选中它。"""
    store = get_default_store()
    conv = store.create_conversation(ConversationSeed(display_name=display_name, subtitle=subtitle))
    return _conversation_to_dict(conv, store.selected_id)


def select_conversation(conversation_id: str) -> Dict[str, Any]:
    """切换选中会话；会话不存在时抛出 NotFoundError。"""
    store = get_default_store()
    store.select(conversation_id)
    return _conversation_to_dict(store.selected, store.selected_id)


def list_conversations(query: str = "") -> List[Dict[str, Any]]:
    """列出会话（可按名称过滤），新建的在前。"""
    store = get_default_store()
    return [_conversation_to_dict(c, store.selected_id) for c in store.filter_by_name(query)]


def get_conversation_messages(conversation_id: Optional[str] = None) -> List[Dict[str, Any]]:
    """获取会话消息的按日分组视图。

    Returns:
        [{"day": "7 Jun, 2024", "messages": [...]}]，最新的一天在前，
        组内消息保持存储顺序（最新在前）。
    """
    store = get_default_store()
    conv = store.get_conversation(conversation_id or store.selected_id)
    return [
        {"day": day, "messages": [_message_to_dict(m) for m in msgs]}
        for day, msgs in group_by_day(conv.messages).items()
    ]
