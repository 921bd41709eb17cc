#!/usr/bin/env python3
"""
代理异常定义
所有异常继承自 ProxyError，便于统一捕获
"""
from typing import Any, Dict, Optional


class ProxyError(Exception):
    """代理异常基类"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({detail_str})"
        return self.message


class InvalidRequestError(ProxyError):
    """请求体无法解析为 JSON 对象"""


class CliSpawnError(ProxyError):
    """无法启动 Claude CLI 子进程（可执行文件不存在、权限不足等）"""


class CliTimeoutError(ProxyError):
    """Claude CLI 子进程超出执行时限"""
