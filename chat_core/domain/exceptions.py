"""统一业务异常模型。

所有跨模块的业务级错误都继承自 BusinessError，
便于在 service 层或 UI 层做统一捕获与用户提示。
"""


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "CONVERSATION_NOT_FOUND"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 conversation_id、provider 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class NotFoundError(BusinessError):
    """引用了不存在的会话 id。调用方应重新选择一个有效会话。"""


class ValidationError(BusinessError):
    """参数或配置校验失败。"""


class ConversationBusyError(BusinessError):
    """同一会话已有一次发送尚未结束。"""


class CollaboratorUnavailableError(BusinessError):
    """推理服务往返失败，用户可以用同样的输入重试。"""


class NetworkError(CollaboratorUnavailableError):
    """网络层错误，例如连接失败、超时等。"""


class ApiError(CollaboratorUnavailableError):
    """推理服务返回非 2xx/429 状态码。"""


class RateLimitError(CollaboratorUnavailableError):
    """推理服务限流。"""


class ProtocolError(CollaboratorUnavailableError):
    """响应体无法解析或缺少 message.content 字段。"""
