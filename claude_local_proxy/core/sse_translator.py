#!/usr/bin/env python3
"""
流式事件转换 - 把 Claude CLI 的 stream-json 输出转换成 Messages API 的 SSE 事件序列

事件顺序:
    message_start
    content_block_start(0, text)
    content_block_delta(0, text_delta)*
    [content_block_stop(i), content_block_start(i+1, tool_use), content_block_delta(i+1, input_json_delta)]*
    content_block_stop(last)
    message_delta
    message_stop
"""
import json
import logging
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from .tool_mapping import IdentifierMapper, default_mapper

DEFAULT_MODEL = 'claude-sonnet-4-20250514'

logger = logging.getLogger('claude_local_proxy.stream')


@dataclass(frozen=True)
class SSEEvent:
    """单个 SSE 事件"""
    event: str
    data: Dict[str, Any]

    def encode(self) -> str:
        payload = json.dumps(self.data, ensure_ascii=False, separators=(',', ':'))
        return f"event: {self.event}\ndata: {payload}\n\n"


class TranslatorState(str, Enum):
    NOT_STARTED = 'NOT_STARTED'
    STREAMING = 'STREAMING'
    CLOSED = 'CLOSED'


def new_message_id() -> str:
    return f"msg_{uuid.uuid4().hex[:24]}"


def new_tool_use_id() -> str:
    return f"toolu_{uuid.uuid4().hex[:24]}"


class StreamEventTranslator:
    """
    有状态的流式转换器，每个请求一个实例

    CLI 每一行都可能重发累计后的完整文本，这里只输出相对已发送文本新增的后缀；
    tool_use 会关闭当前 block 并以下一个索引开启新的 tool_use block。
    """

    def __init__(
        self,
        model: Optional[str] = None,
        mapper: Optional[IdentifierMapper] = None,
        message_id: Optional[str] = None,
    ):
        self.model = model or DEFAULT_MODEL
        self.mapper = mapper or default_mapper
        self.message_id = message_id or new_message_id()
        self.state = TranslatorState.NOT_STARTED
        self.block_index = 0
        self.block_type: Optional[str] = None
        self.committed_text = ''
        self._seen_tool_ids: Set[str] = set()
        # 当前累计片段在 committed_text 中的起点，按 CLI 的 message.id 切换
        self._segment_start = 0
        self._cli_message_id: Optional[str] = None

    def start(self) -> List[SSEEvent]:
        """会话开始: message_start + 索引 0 的空文本 block"""
        if self.state is not TranslatorState.NOT_STARTED:
            return []
        self.state = TranslatorState.STREAMING
        self.block_index = 0
        self.block_type = 'text'
        self.committed_text = ''
        return [
            SSEEvent('message_start', {
                'type': 'message_start',
                'message': {
                    'id': self.message_id,
                    'type': 'message',
                    'role': 'assistant',
                    'content': [],
                    'model': self.model,
                    'stop_reason': None,
                    'stop_sequence': None,
                    'usage': {'input_tokens': 0, 'output_tokens': 0},
                },
            }),
            SSEEvent('content_block_start', {
                'type': 'content_block_start',
                'index': 0,
                'content_block': {'type': 'text', 'text': ''},
            }),
        ]

    def feed(self, line_event: Dict[str, Any]) -> List[SSEEvent]:
        """处理 CLI 输出的一行事件，只关心 assistant 消息"""
        if self.state is not TranslatorState.STREAMING or not isinstance(line_event, dict):
            return []
        if line_event.get('type') != 'assistant':
            return []
        message = line_event.get('message')
        content = message.get('content') if isinstance(message, dict) else None
        if not isinstance(content, list):
            return []

        cli_message_id = message.get('id')
        if cli_message_id and cli_message_id != self._cli_message_id:
            # 新的 assistant 消息从空文本开始累计
            self._cli_message_id = cli_message_id
            self._segment_start = len(self.committed_text)

        events: List[SSEEvent] = []
        for item in content:
            if not isinstance(item, dict):
                continue
            item_type = item.get('type')
            if item_type == 'text' and item.get('text'):
                events.extend(self._on_text(item['text']))
            elif item_type == 'tool_use':
                events.extend(self._on_tool_use(item))
        return events

    def finish(self) -> List[SSEEvent]:
        """进程退出: 关闭当前 block 并结束消息，只执行一次"""
        if self.state is not TranslatorState.STREAMING:
            return []
        self.state = TranslatorState.CLOSED
        return [
            SSEEvent('content_block_stop', {
                'type': 'content_block_stop',
                'index': self.block_index,
            }),
            SSEEvent('message_delta', {
                'type': 'message_delta',
                'delta': {'stop_reason': 'end_turn', 'stop_sequence': None},
                'usage': {'output_tokens': 0},
            }),
            SSEEvent('message_stop', {'type': 'message_stop'}),
        ]

    def _on_text(self, text: str) -> List[SSEEvent]:
        if self.block_type != 'text':
            # 文本 block 已经关闭，不能再向它追加 delta
            logger.debug(f"tool_use 之后的文本被忽略: {text[:100]}")
            return []

        segment = self.committed_text[self._segment_start:]
        if text.startswith(segment):
            new_text = text[len(segment):]
        elif segment.startswith(text):
            # 旧的累计文本，已经发送过
            new_text = ''
        else:
            # 与当前片段不连续，开始新的累计片段
            self._segment_start = len(self.committed_text)
            new_text = text

        if not new_text:
            return []
        self.committed_text += new_text
        return [SSEEvent('content_block_delta', {
            'type': 'content_block_delta',
            'index': self.block_index,
            'delta': {'type': 'text_delta', 'text': new_text},
        })]

    def _on_tool_use(self, item: Dict[str, Any]) -> List[SSEEvent]:
        tool_id = item.get('id')
        if tool_id and tool_id in self._seen_tool_ids:
            # 累计重发的同一个工具调用
            return []
        if tool_id:
            self._seen_tool_ids.add(tool_id)

        events: List[SSEEvent] = []
        if self.block_type is not None:
            events.append(SSEEvent('content_block_stop', {
                'type': 'content_block_stop',
                'index': self.block_index,
            }))
            self.block_index += 1

        converted = self.mapper.convert_tool_use(item)
        events.append(SSEEvent('content_block_start', {
            'type': 'content_block_start',
            'index': self.block_index,
            'content_block': {
                'type': 'tool_use',
                'id': tool_id or new_tool_use_id(),
                'name': converted.get('name'),
                'input': {},
            },
        }))
        events.append(SSEEvent('content_block_delta', {
            'type': 'content_block_delta',
            'index': self.block_index,
            'delta': {
                'type': 'input_json_delta',
                'partial_json': json.dumps(converted['input'], ensure_ascii=False, separators=(',', ':')),
            },
        }))
        self.block_type = 'tool_use'
        return events
