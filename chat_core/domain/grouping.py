"""消息按日分组。

只派生展示视图，不改变底层存储顺序。
"""

from datetime import datetime, tzinfo
from typing import Dict, Iterable, List, Optional

from chat_core.domain.conversation import Message


_MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


def _localize(ts: datetime, tz: Optional[tzinfo]) -> datetime:
    return ts.astimezone(tz) if tz is not None else ts


def format_day_label(ts: datetime, tz: Optional[tzinfo] = None) -> str:
    """日期标签，例如 "7 Jun, 2024"。"""
    local = _localize(ts, tz)
    return f"{local.day} {_MONTHS[local.month - 1]}, {local.year}"


def format_time_label(ts: datetime, tz: Optional[tzinfo] = None) -> str:
    """单条消息的时间标签，例如 "3:05 PM"。"""
    local = _localize(ts, tz)
    hour = local.hour % 12 or 12
    suffix = "AM" if local.hour < 12 else "PM"
    return f"{hour}:{local.minute:02d} {suffix}"


def group_by_day(messages: Iterable[Message], tz: Optional[tzinfo] = None) -> Dict[str, List[Message]]:
    """按自然日分组消息。

    - 分组键是日期标签，分组顺序为各日期在输入中首次出现的顺序。
    - 同一天内的消息保持输入顺序。
    - tz 为空时按时间戳自带的时区取日期。
    """
    groups: Dict[str, List[Message]] = {}
    for msg in messages:
        groups.setdefault(format_day_label(msg.timestamp, tz), []).append(msg)
    return groups
