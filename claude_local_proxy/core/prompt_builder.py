#!/usr/bin/env python3
"""
Prompt 构建 - 把 Messages API 的 messages/tools 折叠成 Claude CLI 能接收的单轮输入
"""
import json
from typing import Any, Dict, List, Optional, Sequence

TOOL_RESULT_PREVIEW_CHARS = 500

TRANSCRIPT_HEADER = 'Here is the conversation history so far:\n\n'
TRANSCRIPT_INSTRUCTION = 'Based on the conversation history above, reply to the following message:\n\n'

PROXY_TOOL_INSTRUCTION = (
    '[PROXY MODE] You are being accessed through a proxy. For this request, use ONLY the '
    'following client-defined tools instead of any built-in tools:\n\n'
    '{tools_json}\n\n'
    'When you want to use one of these tools, respond with tool_use in your content array. '
    "Now here is the user's request:\n\n"
)


def to_json(value: Any, indent: Optional[int] = None) -> str:
    """与 JS 的 JSON.stringify 输出保持一致的序列化"""
    if indent is None:
        return json.dumps(value, ensure_ascii=False, separators=(',', ':'))
    return json.dumps(value, ensure_ascii=False, indent=indent)


def render_block(block: Any) -> str:
    """渲染单个 content block，未知类型返回空字符串"""
    if not isinstance(block, dict):
        return ''
    block_type = block.get('type')
    if block_type == 'text':
        text = block.get('text')
        return '' if text is None else str(text)
    if block_type == 'tool_use':
        return f"[Called tool {block.get('name')} with input: {to_json(block.get('input'))}]"
    if block_type == 'tool_result':
        content = block.get('content')
        if not isinstance(content, str):
            content = to_json(content)
        preview = content[:TOOL_RESULT_PREVIEW_CHARS]
        if len(content) > TOOL_RESULT_PREVIEW_CHARS:
            preview += '...(truncated)'
        return f"[Tool {block.get('tool_use_id')} returned: {preview}]"
    return ''


def render_message(message: Dict[str, Any]) -> str:
    """获取消息文本（支持 string 和 block 数组，包括 tool_use 和 tool_result）"""
    content = message.get('content') if isinstance(message, dict) else None
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        rendered = (render_block(block) for block in content)
        return '\n'.join(part for part in rendered if part)
    return ''


def build_conversation(messages: Optional[Sequence[Dict[str, Any]]]) -> str:
    """把 messages 数组转成对话形式的 prompt"""
    if not messages:
        return ''

    if len(messages) == 1:
        return render_message(messages[0])

    parts: List[str] = [TRANSCRIPT_HEADER]
    for message in messages[:-1]:
        # 非对象消息按 Assistant 处理，内容为空
        is_user = isinstance(message, dict) and message.get('role') == 'user'
        role = 'User' if is_user else 'Assistant'
        parts.append(f'{role}: {render_message(message)}\n\n')

    # 最后一条消息作为当前请求
    parts.append('\n' + TRANSCRIPT_INSTRUCTION + render_message(messages[-1]))
    return ''.join(parts)


def build_tool_instruction(tools: Optional[Sequence[Dict[str, Any]]]) -> str:
    """有工具定义时生成代理模式说明，否则返回空字符串"""
    if not tools:
        return ''
    return PROXY_TOOL_INSTRUCTION.format(tools_json=to_json(list(tools), indent=2))


def build_prompt(
    messages: Optional[Sequence[Dict[str, Any]]],
    tools: Optional[Sequence[Dict[str, Any]]] = None,
) -> str:
    """
    构建发给 CLI 的完整 prompt，流式与非流式共用

    工具说明放在用户消息前面，而不是 system prompt 中
    """
    return build_tool_instruction(tools) + build_conversation(messages)


def build_stream_input(prompt: str) -> Dict[str, Any]:
    """流式模式写入 stdin 的结构化消息"""
    return {
        'type': 'user',
        'message': {'role': 'user', 'content': prompt},
    }
