#!/usr/bin/env python3
"""
OpenCode 配置管理
负责检测、备份和更新 OpenCode 配置文件中的 Anthropic baseURL
"""
import json
import shutil
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

BACKUP_PREFIX = 'opencode.json.backup.'
BACKUP_KEEP_COUNT = 3


class OpenCodeConfig:
    """OpenCode 配置文件读写"""

    def __init__(self, config_path: Optional[Path] = None):
        self.config_path = Path(config_path) if config_path else Path.home() / '.config' / 'opencode' / 'opencode.json'

    def detect(self) -> Dict[str, Any]:
        """检测配置文件是否存在"""
        return {'exists': self.config_path.exists(), 'path': str(self.config_path)}

    def read(self) -> Dict[str, Any]:
        """读取配置"""
        path = str(self.config_path)
        if not self.config_path.exists():
            return {'success': False, 'error': '配置文件不存在', 'path': path}
        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                return {'success': True, 'config': json.load(f), 'path': path}
        except (json.JSONDecodeError, OSError) as e:
            return {'success': False, 'error': str(e), 'path': path}

    def create_backup(self) -> Dict[str, Any]:
        """创建带时间戳的备份，只保留最近几份"""
        if not self.config_path.exists():
            return {'success': False, 'error': '配置文件不存在'}
        try:
            timestamp = datetime.now().strftime('%Y%m%dT%H%M%S')
            backup_path = self.config_path.with_name(f'{BACKUP_PREFIX}{timestamp}')
            shutil.copy2(self.config_path, backup_path)
        except OSError as e:
            return {'success': False, 'error': str(e)}

        self.cleanup_old_backups(BACKUP_KEEP_COUNT)
        return {'success': True, 'backup_path': str(backup_path)}

    def cleanup_old_backups(self, keep_count: int):
        """按修改时间删除多余的备份，清理失败不影响主流程"""
        try:
            backups = sorted(
                self.config_path.parent.glob(f'{BACKUP_PREFIX}*'),
                key=lambda p: p.stat().st_mtime,
                reverse=True,
            )
            for stale in backups[keep_count:]:
                stale.unlink()
        except OSError as e:
            print(f"清理旧备份失败: {e}")

    def update_base_url(self, port: int, create_backup_first: bool = True) -> Dict[str, Any]:
        """
        把 provider.anthropic.options.baseURL 指向本地代理

        Returns:
            {'success', 'message', 'backup_path'?, 'config_path'}
        """
        config_path = str(self.config_path)
        new_base_url = f'http://localhost:{port}'

        if not self.config_path.exists():
            return {'success': False, 'message': 'OpenCode 配置文件不存在', 'config_path': config_path}

        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                content = f.read()
        except PermissionError:
            return {'success': False, 'message': '权限不足，无法读取 OpenCode 配置文件', 'config_path': config_path}
        except OSError as e:
            return {'success': False, 'message': f'更新失败: {e}', 'config_path': config_path}

        try:
            config = json.loads(content)
        except json.JSONDecodeError:
            return {'success': False, 'message': 'OpenCode 配置文件 JSON 格式无效', 'config_path': config_path}
        if not isinstance(config, dict):
            return {'success': False, 'message': 'OpenCode 配置文件 JSON 格式无效', 'config_path': config_path}

        provider = config.get('provider')
        anthropic = provider.get('anthropic') if isinstance(provider, dict) else None
        options = anthropic.get('options') if isinstance(anthropic, dict) else None
        if isinstance(options, dict) and options.get('baseURL') == new_base_url:
            return {
                'success': True,
                'message': f'OpenCode 配置已是最新 (baseURL: {new_base_url})',
                'config_path': config_path,
            }

        backup_path = None
        if create_backup_first:
            backup = self.create_backup()
            if not backup['success']:
                return {'success': False, 'message': f"备份失败: {backup['error']}", 'config_path': config_path}
            backup_path = backup['backup_path']

        # 确保嵌套结构存在
        if not isinstance(provider, dict):
            provider = config['provider'] = {}
        if not isinstance(anthropic, dict):
            anthropic = provider['anthropic'] = {}
        if not isinstance(options, dict):
            options = anthropic['options'] = {}
        options['baseURL'] = new_base_url

        try:
            with open(self.config_path, 'w', encoding='utf-8') as f:
                json.dump(config, f, indent=2, ensure_ascii=False)
        except PermissionError:
            return {'success': False, 'message': '权限不足，无法写入 OpenCode 配置文件', 'config_path': config_path}
        except OSError as e:
            return {'success': False, 'message': f'更新失败: {e}', 'config_path': config_path}

        return {
            'success': True,
            'message': f'OpenCode 配置已更新 (baseURL: {new_base_url})',
            'backup_path': backup_path,
            'config_path': config_path,
        }

    def manual_config_guide(self, port: int) -> str:
        """手动配置说明"""
        snippet = json.dumps(
            {'provider': {'anthropic': {'options': {'baseURL': f'http://localhost:{port}'}}}},
            indent=2,
        )
        return (
            "\n手动配置 OpenCode:\n"
            f"1. 编辑配置文件: {self.config_path}\n"
            "2. 添加或修改以下配置:\n\n"
            f"{snippet}\n\n"
            "3. 重启 OpenCode 使配置生效\n"
        )


opencode_config = OpenCodeConfig()
