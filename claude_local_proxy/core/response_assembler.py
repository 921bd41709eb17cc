#!/usr/bin/env python3
"""
非流式响应组装 - 把 CLI 的单个 JSON 输出转换成 Messages API 响应
"""
import json
import logging
from typing import Any, Dict, Optional

from .sse_translator import DEFAULT_MODEL, new_message_id
from .tool_mapping import IdentifierMapper, default_mapper

logger = logging.getLogger('claude_local_proxy.assembler')


def zero_usage() -> Dict[str, int]:
    return {'input_tokens': 0, 'output_tokens': 0}


class ResponseAssembler:
    """CLI 输出 → Messages API 响应"""

    def __init__(self, mapper: Optional[IdentifierMapper] = None):
        self.mapper = mapper or default_mapper

    def _parse(self, text: str) -> Optional[Dict[str, Any]]:
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            logger.warning(f"CLI 输出不是合法 JSON，回退为纯文本: {exc}")
            return None
        if not isinstance(data, dict):
            logger.warning(f"CLI 输出不是 JSON 对象，回退为纯文本: {type(data).__name__}")
            return None
        return data

    def fallback(self, text: str, model: Optional[str] = None) -> Dict[str, Any]:
        """纯文本回退响应，text 原样放入唯一的文本 block"""
        return {
            'id': new_message_id(),
            'type': 'message',
            'role': 'assistant',
            'content': [{'type': 'text', 'text': text}],
            'model': model or DEFAULT_MODEL,
            'stop_reason': 'end_turn',
            'stop_sequence': None,
            'usage': zero_usage(),
        }

    def assemble(self, stdout: str, model: Optional[str] = None) -> Dict[str, Any]:
        """
        组装响应

        Args:
            stdout: CLI 的完整标准输出
            model: 请求中的模型名，原样回显

        Returns:
            Messages API 响应体，解析失败时返回纯文本回退响应
        """
        text = (stdout or '').strip()
        data = self._parse(text)
        if data is None:
            return self.fallback(text, model)

        content = data.get('content')
        if isinstance(content, list):
            content = self.mapper.convert_content(content)
        elif isinstance(data.get('result'), str):
            # --output-format json 的结果对象只有 result 文本
            content = [{'type': 'text', 'text': data['result']}]
        else:
            content = [{'type': 'text', 'text': text}]

        return {
            'id': data.get('id') or new_message_id(),
            'type': 'message',
            'role': 'assistant',
            'content': content,
            'model': model or DEFAULT_MODEL,
            'stop_reason': data.get('stop_reason') or 'end_turn',
            'stop_sequence': data.get('stop_sequence') or None,
            'usage': data.get('usage') or zero_usage(),
        }


def assemble_response(stdout: str, model: Optional[str] = None) -> Dict[str, Any]:
    """使用默认映射表组装响应"""
    return ResponseAssembler().assemble(stdout, model)
