"""系统提示词加载工具。

按语言(locale) 从 prompts/<locale> 目录读取固定的 system 指令，
用于构造 ChatMessage(role="system")。该指令约束回复的语言、长度与风格。
"""

from pathlib import Path


PROMPTS_DIR = Path(__file__).resolve().parent


def load_system_prompt(locale: str = "fr") -> str:
    """根据语言加载系统提示词文本。"""

    fname = PROMPTS_DIR / locale / "chat_system.md"
    return fname.read_text(encoding="utf-8").strip()
