#!/usr/bin/env python3
"""
工具名/参数名映射 - Claude Code 格式 → OpenCode 格式
映射表只读，进程内共享，注入到需要的组件中
"""
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

# Claude Code → OpenCode 工具名映射
TOOL_NAME_MAPPING: Mapping[str, str] = MappingProxyType({
    # 大写 → 小写
    'Read': 'read',
    'Write': 'write',
    'Edit': 'edit',
    'Bash': 'bash',
    'Glob': 'glob',
    'Grep': 'grep',
    'Task': 'task',
    'TodoWrite': 'todowrite',
    # 特殊映射
    'WebSearch': 'websearch_exa_web_search_exa',
    'WebFetch': 'webfetch',
})

# Claude Code → OpenCode 参数名映射（snake_case → camelCase）
PARAM_KEY_MAPPING: Mapping[str, str] = MappingProxyType({
    'file_path': 'filePath',
    'old_string': 'oldString',
    'new_string': 'newString',
    'replace_all': 'replaceAll',
})


class IdentifierMapper:
    """工具调用标识符转换器，未登记的名称原样返回"""

    def __init__(
        self,
        tool_names: Optional[Mapping[str, str]] = None,
        param_keys: Optional[Mapping[str, str]] = None,
    ):
        self.tool_names = MappingProxyType(dict(TOOL_NAME_MAPPING if tool_names is None else tool_names))
        self.param_keys = MappingProxyType(dict(PARAM_KEY_MAPPING if param_keys is None else param_keys))

    def map_tool_name(self, name: Any) -> Any:
        if not isinstance(name, str):
            return name
        return self.tool_names.get(name, name)

    def map_param_key(self, key: str) -> str:
        return self.param_keys.get(key, key)

    def map_input(self, tool_input: Any) -> Dict[str, Any]:
        """转换参数对象的顶层键名"""
        if not isinstance(tool_input, dict):
            return {}
        return {self.map_param_key(key): value for key, value in tool_input.items()}

    def convert_tool_use(self, block: Dict[str, Any]) -> Dict[str, Any]:
        """返回转换后的 tool_use block 副本，其它类型的 block 原样返回"""
        if not isinstance(block, dict) or block.get('type') != 'tool_use':
            return block
        converted = dict(block)
        converted['name'] = self.map_tool_name(block.get('name'))
        converted['input'] = self.map_input(block.get('input'))
        return converted

    def convert_content(self, content: Any) -> Any:
        """转换 content 数组中的所有 tool_use block"""
        if not isinstance(content, list):
            return content
        return [self.convert_tool_use(block) for block in content]


# 默认映射实例
default_mapper = IdentifierMapper()
