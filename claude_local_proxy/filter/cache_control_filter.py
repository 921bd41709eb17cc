#!/usr/bin/env python3
"""
cache_control 过滤器
Claude Code CLI 会加上自己的缓存标记，上游 API 对 cache_control 数量有上限，
所以转发前必须清理客户端带来的全部 cache_control
"""
import copy
from typing import Any, Dict, Iterable, Tuple

CACHE_CONTROL_KEY = 'cache_control'


class CacheControlFilter:
    """清理请求体中的 cache_control 标记"""

    def __init__(self, key: str = CACHE_CONTROL_KEY):
        self.key = key

    def _strip(self, blocks: Iterable[Any]) -> int:
        removed = 0
        for block in blocks:
            if isinstance(block, dict) and self.key in block:
                del block[self.key]
                removed += 1
        return removed

    def sanitize(self, request_data: Dict[str, Any]) -> int:
        """
        原地清理请求数据中的 cache_control

        清理范围: system 数组中的每个 block、每条消息 content 数组中的每个 block、
        每个工具定义。调用方传入的对象会被修改。

        Returns:
            被移除的 cache_control 数量
        """
        if not isinstance(request_data, dict):
            return 0

        removed = 0

        system = request_data.get('system')
        if isinstance(system, list):
            removed += self._strip(system)

        messages = request_data.get('messages')
        if isinstance(messages, list):
            for message in messages:
                if not isinstance(message, dict):
                    continue
                content = message.get('content')
                if isinstance(content, list):
                    removed += self._strip(content)

        tools = request_data.get('tools')
        if isinstance(tools, list):
            removed += self._strip(tools)

        return removed

    def sanitized_copy(self, request_data: Dict[str, Any]) -> Tuple[Dict[str, Any], int]:
        """返回清理后的深拷贝和移除数量，不修改原对象"""
        cleaned = copy.deepcopy(request_data)
        removed = self.sanitize(cleaned)
        return cleaned, removed


# 全局过滤器实例
cache_control_filter = CacheControlFilter()


def sanitize_cache_control(request_data: Dict[str, Any]) -> int:
    """
    原地清理 cache_control 的便捷函数

    Args:
        request_data: 已解析的请求体

    Returns:
        被移除的 cache_control 数量
    """
    return cache_control_filter.sanitize(request_data)
