#!/usr/bin/env python3
"""
Claude本地代理服务 - 通过 Claude CLI 提供 Messages API
"""
import logging
import sys
from datetime import datetime
from typing import Optional

from fastapi.middleware.cors import CORSMiddleware

from ..config.config_manager import DEFAULT_PORT, ProxySettings, proxy_config_manager
from ..core.base_proxy import BaseProxyService
from ..core.cli_transport import ClaudeCliTransport
from ..core.tool_mapping import IdentifierMapper

SERVICE_NAME = 'claude-local-proxy'
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class ClaudeLocalProxy(BaseProxyService):
    """Claude CLI 代理服务实现"""

    def __init__(
        self,
        settings: Optional[ProxySettings] = None,
        transport: Optional[ClaudeCliTransport] = None,
        mapper: Optional[IdentifierMapper] = None,
    ):
        super().__init__(
            service_name=SERVICE_NAME,
            settings=settings or proxy_config_manager.load_settings(),
            transport=transport,
            mapper=mapper,
        )

        # 任何来源都可以访问
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["*"],
        )

    def setup_logger(self) -> logging.Logger:
        """日志同时输出到控制台和文件，启动时清空日志文件"""
        logger = logging.getLogger('claude_local_proxy')
        logger.setLevel(logging.INFO)
        logger.propagate = False
        formatter = logging.Formatter(LOG_FORMAT)

        if not any(type(h) is logging.StreamHandler for h in logger.handlers):
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setFormatter(formatter)
            logger.addHandler(console_handler)

        # 同一进程只写一个日志文件
        for handler in [h for h in logger.handlers if isinstance(h, logging.FileHandler)]:
            logger.removeHandler(handler)
            handler.close()

        if self.log_file:
            self.log_file.parent.mkdir(parents=True, exist_ok=True)
            self.log_file.write_text('', encoding='utf-8')
            # 追加模式: 请求中截断文件后，新日志仍然写在文件末尾
            file_handler = logging.FileHandler(self.log_file, mode='a', encoding='utf-8')
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)

        logger.info(f"=== Claude Local Proxy 启动于 {datetime.now().isoformat()} ===")
        return logger


_proxy_instance: Optional[ClaudeLocalProxy] = None


def get_proxy_service() -> ClaudeLocalProxy:
    """Lazily create and reuse the service instance."""
    global _proxy_instance
    if _proxy_instance is None:
        _proxy_instance = ClaudeLocalProxy()
    return _proxy_instance


def startup_banner(port: int) -> str:
    return f"""
╔════════════════════════════════════════════════╗
║       Claude Local Proxy 已启动
╠════════════════════════════════════════════════╣
║  监听地址: http://localhost:{port}
║  API 端点: http://localhost:{port}/v1/messages
╠════════════════════════════════════════════════╣
║  配置说明:
║  • baseURL: "http://localhost:{port}"
║  • API Key: 任意字符串（不验证）
╚════════════════════════════════════════════════╝
"""


def run_app(port: int = DEFAULT_PORT, host: str = '0.0.0.0'):
    """启动代理服务"""
    import uvicorn

    app = get_proxy_service().app
    print(startup_banner(port))
    uvicorn.run(
        app,
        host=host,
        port=port,
        log_level='info',
        timeout_keep_alive=60,
        http='h11',
    )


def __getattr__(name: str):
    """uvicorn claude_local_proxy.claude.proxy:app 时才创建服务实例"""
    if name == 'app':
        return get_proxy_service().app
    raise AttributeError(f"module '{__name__}' has no attribute '{name}'")


if __name__ == '__main__':
    run_app(proxy_config_manager.get_port())
