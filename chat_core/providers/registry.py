"""Provider 与模型配置。

本模块将“逻辑模型名”与“具体厂商模型名”解耦：

- 逻辑名（logical_name）：在代码里使用的统一名称，例如 "chat"。
- provider_model：推理服务实际加载的模型 ID，例如 "llama3.1"。

上层只关心逻辑名，具体用哪个底层模型由这里集中配置，便于后续升级或切换。"""

from dataclasses import dataclass
from typing import Dict, Mapping


@dataclass
class ModelConfig:
    """单个逻辑模型的配置。"""

    logical_name: str
    provider_model: str


@dataclass
class ProviderConfig:
    """某个 Provider 的整体配置。"""

    name: str
    base_url: str
    chat_path: str
    models: Dict[str, ModelConfig]


# 本地 Ollama 推理服务
OLLAMA_CONFIG = ProviderConfig(
    name="ollama",
    base_url="http://localhost:11434",
    chat_path="/api/chat",
    models={
        "chat": ModelConfig(logical_name="chat", provider_model="llama3.1"),
    },
)


PROVIDER_REGISTRY: Mapping[str, ProviderConfig] = {
    "ollama": OLLAMA_CONFIG,
}


def get_provider_config(name: str) -> ProviderConfig:
    """根据名称获取 ProviderConfig，名称不区分大小写。"""

    key = name.lower()
    for k, cfg in PROVIDER_REGISTRY.items():
        if k.lower() == key:
            return cfg
    raise KeyError(f"Unknown provider: {name!r}")


def resolve_model(cfg: ProviderConfig, logical_name: str) -> str:
    """逻辑模型名 -> 厂商模型名；未登记的名字原样透传。"""

    model_cfg = cfg.models.get(logical_name)
    return model_cfg.provider_model if model_cfg else logical_name
