# 网关统一的错误分类, str(e) 即为可直接展示给用户的文本
from typing import Optional


class APIError(Exception):
    message = "API error"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.message)


class InvalidURLError(APIError):
    """base URL 为空, 或 base URL + path 无法解析为 http(s) 地址"""
    message = "Invalid URL"


class InvalidResponseError(APIError):
    """传输层返回的不是合法的 HTTP 响应"""
    message = "Invalid response"


class TransportError(APIError):
    """连接失败、超时等网络层错误"""
    message = "Network error"


class DecodeError(APIError):
    """响应体与期望的结构不符"""
    message = "Could not decode server response"


class HTTPError(APIError):
    def __init__(self, status_code: int, body: bytes = b""):
        self.status_code = status_code
        # 原样保留, 仅用于诊断
        self.body = body
        super().__init__(f"HTTP error {status_code}")
