"""
Error taxonomy for gateway failures
"""
from enum import Enum
from typing import Optional


class ClassificationErrorKind(str, Enum):
    BUSY = "busy"
    INVALID_CREDENTIAL = "invalid_credential"
    SERVICE_UNAVAILABLE = "service_unavailable"
    NETWORK_UNAVAILABLE = "network_unavailable"
    UNKNOWN = "unknown"


class StreamErrorKind(str, Enum):
    TRANSPORT_FAILURE = "transport_failure"
    GATEWAY_REJECTED = "gateway_rejected"


# Provider error codes returned in {"error": {"code": ..., "message": ...}}
PROVIDER_BUSY_CODES = {"1302"}
PROVIDER_CREDENTIAL_CODES = {"1301", "1003"}


class ClassificationError(Exception):
    """Classifier gateway failure"""

    def __init__(self, kind: ClassificationErrorKind, detail: Optional[str] = None):
        super().__init__(detail or kind.value)
        self.kind = kind
        self.detail = detail

    @property
    def user_message(self) -> str:
        """Text shown to the user in the assistant entry"""
        if self.kind == ClassificationErrorKind.BUSY:
            message = "服务器繁忙，请稍后重试"
        elif self.kind == ClassificationErrorKind.INVALID_CREDENTIAL:
            message = "API密钥无效，请联系管理员"
        elif self.kind == ClassificationErrorKind.SERVICE_UNAVAILABLE:
            message = f"服务异常：{self.detail or '请稍后重试'}"
        elif self.kind == ClassificationErrorKind.NETWORK_UNAVAILABLE:
            message = "网络连接失败，请稍后重试"
        else:
            message = "未知错误，请稍后重试"
        return f"❌ {message}"

    @classmethod
    def from_provider_error(cls, code: Optional[str], message: Optional[str]) -> "ClassificationError":
        """Map a provider error body onto the taxonomy"""
        code = str(code) if code is not None else None
        if code in PROVIDER_BUSY_CODES:
            return cls(ClassificationErrorKind.BUSY, message)
        if code in PROVIDER_CREDENTIAL_CODES:
            return cls(ClassificationErrorKind.INVALID_CREDENTIAL, message)
        return cls(ClassificationErrorKind.SERVICE_UNAVAILABLE, message)


class StreamError(Exception):
    """Completion stream failure"""

    def __init__(self, kind: StreamErrorKind, detail: Optional[str] = None):
        super().__init__(detail or kind.value)
        self.kind = kind
        self.detail = detail


class CatalogError(Exception):
    """Catalog could not be loaded or queried"""
