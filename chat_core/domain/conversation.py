from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal, Optional, List, Protocol, Tuple


# 消息作者，仅用于展示与分组，不是安全边界
Sender = Literal["user", "assistant"]


@dataclass(frozen=True)
class Message:
    text: str
    sender: Sender
    timestamp: datetime


@dataclass(frozen=True)
class Conversation:
    """一个与助手角色的会话。

    messages 按插入顺序倒序存放（最新在前）。会话对象不可变，
    每次追加都会生成新的 Conversation 实例。
    """

    id: str
    avatar_ref: str
    handle: str
    display_name: str
    subtitle: str
    messages: Tuple[Message, ...] = field(default_factory=tuple)

    @property
    def preview(self) -> Optional[str]:
        """最新一条消息的文本；空会话返回 None，占位文案由 UI 提供。"""
        if not self.messages:
            return None
        return self.messages[0].text


@dataclass(frozen=True)
class ConversationSeed:
    """创建会话时的展示元数据，未填写的字段由存储层补默认值。"""

    avatar_ref: Optional[str] = None
    handle: Optional[str] = None
    display_name: Optional[str] = None
    subtitle: Optional[str] = None


class ConversationStore(Protocol):
    @property
    def conversations(self) -> Tuple[Conversation, ...]:
        ...

    @property
    def selected_id(self) -> str:
        ...

    def get_conversation(self, conversation_id: str) -> Conversation:
        ...

    def create_conversation(self, seed: Optional[ConversationSeed] = None) -> Conversation:
        ...

    def select(self, conversation_id: str) -> None:
        ...

    def append_exchange(
        self, conversation_id: str, user_message: Message, assistant_message: Message
    ) -> Conversation:
        ...

    def filter_by_name(self, query: str) -> List[Conversation]:
        ...
