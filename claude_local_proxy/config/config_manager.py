#!/usr/bin/env python3
import json
import os
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

DEFAULT_PORT = 12346
DEFAULT_COMMAND = 'claude'
DEFAULT_MODEL = 'claude-sonnet-4-20250514'
MIN_PORT = 1024
MAX_PORT = 65535


@dataclass
class ProxySettings:
    """代理运行时设置"""
    claude_command: List[str] = field(default_factory=lambda: [DEFAULT_COMMAND])
    execution_timeout: Optional[float] = None
    log_file: Optional[Path] = None
    default_model: str = DEFAULT_MODEL


def validate_port(port: Any) -> Tuple[bool, Optional[str]]:
    """验证端口号，返回 (是否有效, 错误信息)"""
    try:
        num = int(port)
    except (TypeError, ValueError):
        return False, '端口必须是数字'
    if num < MIN_PORT or num > MAX_PORT:
        return False, f'端口范围必须在 {MIN_PORT}-{MAX_PORT} 之间'
    return True, None


class ProxyConfigManager:
    """配置文件管理器，负责读写 ~/.claude-proxy/config.json"""

    def __init__(self, config_dir: Optional[Path] = None, environ: Optional[Dict[str, str]] = None):
        self.config_dir = Path(config_dir) if config_dir else Path.home() / '.claude-proxy'
        self.config_file = self.config_dir / 'config.json'
        self.log_file = self.config_dir / 'proxy.log'
        self.environ = os.environ if environ is None else environ

    def _ensure_config_dir(self):
        """确保配置目录存在"""
        self.config_dir.mkdir(parents=True, exist_ok=True)

    def read_config(self) -> Dict[str, Any]:
        """读取配置文件，文件不存在或损坏时返回空配置"""
        try:
            if self.config_file.exists():
                with open(self.config_file, 'r', encoding='utf-8') as f:
                    data = json.load(f)
                if isinstance(data, dict):
                    return data
                print(f"警告: 配置文件格式错误，必须是 JSON 对象 - {self.config_file}")
        except (json.JSONDecodeError, OSError) as e:
            print(f"警告: 配置文件读取失败 - {e}")
        return {}

    def write_config(self, config: Dict[str, Any]):
        """写入配置文件"""
        self._ensure_config_dir()
        with open(self.config_file, 'w', encoding='utf-8') as f:
            json.dump(config, f, indent=2, ensure_ascii=False)

    def is_first_run(self) -> bool:
        """配置文件不存在即视为首次运行"""
        return not self.config_file.exists()

    def get_port(self, cli_port: Optional[int] = None) -> int:
        """
        获取端口配置

        优先级: CLI 参数 > 配置文件 > 环境变量 PORT > 默认值
        """
        if cli_port is not None:
            return cli_port

        config_port = self.read_config().get('port')
        if config_port:
            try:
                return int(config_port)
            except (TypeError, ValueError):
                print(f"警告: 配置文件中的端口无效 - {config_port}")

        env_port = self.environ.get('PORT')
        if env_port:
            try:
                return int(env_port)
            except ValueError:
                pass

        return DEFAULT_PORT

    def save_port(self, port: int):
        """保存端口配置"""
        config = self.read_config()
        config['port'] = port
        self.write_config(config)

    def get_claude_command(self) -> List[str]:
        """CLI 命令，支持带参数的字符串或数组"""
        value = self.environ.get('CLAUDE_PROXY_COMMAND') or self.read_config().get('claude_command')
        if isinstance(value, list) and value:
            return [str(part) for part in value]
        if isinstance(value, str) and value.strip():
            return shlex.split(value)
        return [DEFAULT_COMMAND]

    def get_execution_timeout(self) -> Optional[float]:
        """单次 CLI 执行时限（秒），未配置或非正数表示不限制"""
        value = self.environ.get('CLAUDE_PROXY_TIMEOUT')
        if value is None:
            value = self.read_config().get('execution_timeout')
        if value in (None, ''):
            return None
        try:
            timeout = float(value)
        except (TypeError, ValueError):
            print(f"警告: 执行时限配置无效 - {value}")
            return None
        return timeout if timeout > 0 else None

    def load_settings(self) -> ProxySettings:
        """汇总运行时设置"""
        return ProxySettings(
            claude_command=self.get_claude_command(),
            execution_timeout=self.get_execution_timeout(),
            log_file=self.log_file,
        )


# 全局实例
proxy_config_manager = ProxyConfigManager()
