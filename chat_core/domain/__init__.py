"""领域层模型与协议。

包含：
- models: 与推理服务交互的 ChatMessage / ChatRequest / ChatResult 模型。
- conversation: 会话与消息的数据模型及 ConversationStore 抽象。
- grouping: 按日分组等纯展示派生函数。
- exceptions: 业务异常类型定义。
"""
