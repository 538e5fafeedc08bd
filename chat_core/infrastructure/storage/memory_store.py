"""进程内会话存储。

会话列表与当前选中项是唯一的共享可变状态，所有修改都经过本类的方法，
并用一把锁串行化。会话对象不可变，修改时整体替换 tuple 引用，
读者拿到的永远是某一次完整修改后的快照。
"""

import logging
import threading
from dataclasses import replace
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from chat_core.domain.conversation import Conversation, ConversationSeed, ConversationStore, Message
from chat_core.domain.exceptions import NotFoundError, ValidationError
from chat_core.infrastructure.logging.logger import logger


DEFAULT_SEEDS: Tuple[Tuple[str, ConversationSeed], ...] = (
    ("1", ConversationSeed(avatar_ref="/avatar1.png", handle="AI1", display_name="General Assistant", subtitle="General Conversation")),
    ("2", ConversationSeed(avatar_ref="/avatar2.png", handle="AI2", display_name="Code Assistant", subtitle="Code Helper")),
    ("3", ConversationSeed(avatar_ref="/avatar3.png", handle="AI3", display_name="Math Assistant", subtitle="Math Helper")),
)


def build_conversation(conversation_id: str, seed: ConversationSeed) -> Conversation:
    """用 seed 构造空会话，未填写的字段按“新建会话”的默认值补齐。"""
    return Conversation(
        id=conversation_id,
        avatar_ref=seed.avatar_ref if seed.avatar_ref is not None else "/avatar.png",
        handle=seed.handle if seed.handle is not None else f"AI{conversation_id}",
        display_name=seed.display_name if seed.display_name is not None else f"New Chat {conversation_id}",
        subtitle=seed.subtitle if seed.subtitle is not None else "Virtual Assistant",
    )


def seed_conversations(seeds: Iterable[Tuple[str, ConversationSeed]]) -> List[Conversation]:
    """把 (id, seed) 对转换为可传给 InMemoryConversationStore 的会话列表。"""
    return [build_conversation(cid, seed) for cid, seed in seeds]


class InMemoryConversationStore(ConversationStore):
    def __init__(self, seeds: Optional[Sequence[Conversation]] = None):
        """初始化存储。

        Args:
            seeds: 启动时预置的会话（按给定顺序保存，第一个为选中项）；
                为空时使用内置的三个助手。
        """
        if seeds is None:
            seeds = seed_conversations(DEFAULT_SEEDS)
        seeds = list(seeds)
        if not seeds:
            raise ValidationError(code="EMPTY_STORE", message="store must be seeded with at least one conversation")
        ids = [c.id for c in seeds]
        if len(set(ids)) != len(ids):
            raise ValidationError(code="DUPLICATE_CONVERSATION_ID", message=f"duplicate ids in seeds: {ids}")

        self._lock = threading.RLock()
        self._conversations: Tuple[Conversation, ...] = tuple(seeds)
        self._selected_id = seeds[0].id
        self._counter = len(seeds)

    @property
    def conversations(self) -> Tuple[Conversation, ...]:
        return self._conversations

    @property
    def selected_id(self) -> str:
        return self._selected_id

    @property
    def selected(self) -> Conversation:
        return self.get_conversation(self._selected_id)

    def get_conversation(self, conversation_id: str) -> Conversation:
        for conv in self._conversations:
            if conv.id == conversation_id:
                return conv
        raise NotFoundError(
            code="CONVERSATION_NOT_FOUND",
            message=f"conversation {conversation_id!r} not found",
            http_status=404,
            conversation_id=conversation_id,
        )

    def create_conversation(self, seed: Optional[ConversationSeed] = None) -> Conversation:
        with self._lock:
            existing = {c.id for c in self._conversations}
            self._counter += 1
            while str(self._counter) in existing:
                self._counter += 1
            conv = build_conversation(str(self._counter), seed or ConversationSeed())
            self._conversations = (conv,) + self._conversations
            self._selected_id = conv.id
        self._log(logging.INFO, "Created conversation", conv.id, display_name=conv.display_name)
        return conv

    def select(self, conversation_id: str) -> None:
        with self._lock:
            self.get_conversation(conversation_id)
            self._selected_id = conversation_id

    def append_exchange(
        self, conversation_id: str, user_message: Message, assistant_message: Message
    ) -> Conversation:
        """原子地把一次问答追加到会话最前面。

        存储顺序为 [assistant, user, ...旧消息]。时间戳会被抬高到不早于
        会话中最新一条消息，保证会话内时间单调不减。
        """
        with self._lock:
            conv = self.get_conversation(conversation_id)
            floor = conv.messages[0].timestamp if conv.messages else None
            user_message = self._not_before(user_message, floor)
            assistant_message = self._not_before(assistant_message, user_message.timestamp)
            updated = replace(conv, messages=(assistant_message, user_message) + conv.messages)
            self._conversations = tuple(updated if c.id == conversation_id else c for c in self._conversations)
        self._log(logging.INFO, "Appended exchange", conversation_id, message_count=len(updated.messages))
        return updated

    def filter_by_name(self, query: str) -> List[Conversation]:
        needle = (query or "").strip().lower()
        snapshot = self._conversations
        if not needle:
            return list(snapshot)
        return [c for c in snapshot if needle in c.display_name.lower()]

    @staticmethod
    def _not_before(message: Message, floor: Optional[datetime]) -> Message:
        if floor is not None and message.timestamp < floor:
            return replace(message, timestamp=floor)
        return message

    @staticmethod
    def _log(level: int, message: str, conversation_id: str, **fields) -> None:
        payload: Dict[str, object] = {"conversation_id": conversation_id}
        payload.update(fields)
        logger.log(level, message, extra={"extra": payload})
