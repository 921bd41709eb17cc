#!/usr/bin/env python3
"""
基础代理服务类 - Messages API ⇄ Claude CLI
提供路由、请求解析、流式与非流式两条处理链路
"""
import asyncio
import json
import logging
import time
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Mapping, Optional

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse, StreamingResponse

from ..config.config_manager import ProxySettings
from ..filter.cache_control_filter import CacheControlFilter
from .cli_transport import ClaudeCliTransport
from .errors import CliSpawnError, CliTimeoutError, InvalidRequestError
from .prompt_builder import build_prompt, build_stream_input
from .response_assembler import ResponseAssembler
from .sse_translator import StreamEventTranslator
from .tool_mapping import IdentifierMapper, default_mapper

CORS_HEADERS = {
    'Access-Control-Allow-Origin': '*',
    'Access-Control-Allow-Methods': 'GET, POST, OPTIONS',
    'Access-Control-Allow-Headers': 'Content-Type, Authorization, anthropic-version, x-api-key',
}

# 日志超过上限后只保留末尾部分
LOG_MAX_BYTES = 100 * 1024
LOG_KEEP_BYTES = 50 * 1024

STAINLESS_HEADERS = (
    'x-stainless-retry-count',
    'x-stainless-timeout',
    'x-stainless-lang',
    'x-stainless-package-version',
    'x-stainless-os',
    'x-stainless-arch',
    'x-stainless-runtime',
    'x-stainless-runtime-version',
    'anthropic-dangerous-direct-browser-access',
)


def extract_api_key(headers: Mapping[str, str]) -> str:
    """提取 API Key（仅用于日志，不做校验）"""
    lowered = {k.lower(): v for k, v in headers.items()}
    authorization = lowered.get('authorization')
    return (
        lowered.get('x-api-key')
        or (authorization.replace('Bearer ', '', 1) if authorization else None)
        or lowered.get('anthropic-api-key')
        or 'anonymous'
    )


def parse_request_body(body: bytes) -> Dict[str, Any]:
    """解析请求体，必须是 JSON 对象"""
    try:
        data = json.loads(body.decode('utf-8') if body else '')
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise InvalidRequestError(f"请求体不是合法 JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise InvalidRequestError("请求体必须是 JSON 对象")
    return data


def _truncate(text: Any, limit: int) -> Any:
    if isinstance(text, str) and len(text) > limit:
        return text[:limit] + '...'
    return text


class BaseProxyService(ABC):
    """基础代理服务类"""

    def __init__(
        self,
        service_name: str,
        settings: ProxySettings,
        transport: Optional[ClaudeCliTransport] = None,
        mapper: Optional[IdentifierMapper] = None,
    ):
        """
        初始化代理服务

        Args:
            service_name: 服务名称，/health 中返回
            settings: 运行时设置
            transport: CLI 进程启动器，默认按 settings 创建
            mapper: 工具名/参数名映射表
        """
        self.service_name = service_name
        self.settings = settings
        self.mapper = mapper or default_mapper
        self.transport = transport or ClaudeCliTransport(
            command=settings.claude_command,
            timeout=settings.execution_timeout,
        )
        self.assembler = ResponseAssembler(self.mapper)
        self.cache_filter = CacheControlFilter()
        self.log_file: Optional[Path] = settings.log_file
        self.logger = self.setup_logger()

        # 初始化FastAPI应用
        self.app = FastAPI()
        self._setup_routes()

    @abstractmethod
    def setup_logger(self) -> logging.Logger:
        """创建服务日志记录器"""

    def _setup_routes(self):
        """设置API路由"""
        @self.app.get('/health')
        async def health_route():
            return {'status': 'ok', 'service': self.service_name}

        @self.app.post('/v1/messages')
        @self.app.post('/messages')
        async def messages_route(request: Request):
            return await self.handle_messages(request)

        @self.app.api_route(
            "/{path:path}",
            methods=['GET', 'POST', 'PUT', 'DELETE', 'PATCH', 'OPTIONS', 'HEAD']
        )
        async def fallback_route(path: str, request: Request):
            if request.method == 'OPTIONS':
                return Response(status_code=200, headers=CORS_HEADERS)
            # 记录未知请求，方便调试
            self.logger.info(f"未处理的请求: {request.method} /{path}")
            return self.error_response('Not Found', status_code=404)

    @staticmethod
    def error_response(message: str, status_code: int = 500) -> JSONResponse:
        return JSONResponse({'error': {'message': message}}, status_code=status_code)

    def _trim_log_file(self):
        """日志文件超过上限时只保留最后一部分"""
        if not self.log_file:
            return
        try:
            if self.log_file.stat().st_size <= LOG_MAX_BYTES:
                return
            with open(self.log_file, 'rb') as f:
                f.seek(-LOG_KEEP_BYTES, 2)
                tail = f.read()
            with open(self.log_file, 'wb') as f:
                f.write(tail)
        except FileNotFoundError:
            pass
        except OSError as exc:
            self.logger.warning(f"截断日志文件失败: {exc}")

    def log_request(self, request: Request, request_data: Dict[str, Any], api_key: str):
        """详细记录请求信息（用于调试）"""
        headers = request.headers

        def dump(data: Any) -> str:
            return json.dumps(data, ensure_ascii=False, indent=2, default=str)

        system = request_data.get('system')
        messages = request_data.get('messages')
        messages = messages if isinstance(messages, list) else []
        tools = request_data.get('tools')
        tools = tools if isinstance(tools, list) else []
        metadata = request_data.get('metadata')

        self.logger.info('========== 收到请求 ==========')
        self.logger.info(f"User-Agent {dump({'user-agent': headers.get('user-agent')})}")
        self.logger.info('Anthropic Headers ' + dump({
            'x-app': headers.get('x-app'),
            'anthropic-beta': headers.get('anthropic-beta'),
            'anthropic-version': headers.get('anthropic-version'),
        }))
        self.logger.info('Stainless SDK Headers ' + dump({name: headers.get(name) for name in STAINLESS_HEADERS}))
        self.logger.info('Body metadata ' + dump({
            'metadata': metadata,
            'user_id_in_metadata': metadata.get('user_id') if isinstance(metadata, dict) else None,
        }))
        self.logger.info('System Prompt ' + dump({
            'system': _truncate(system, 200) if isinstance(system, str) else (system or 'none'),
        }))
        self.logger.info('用户消息 ' + dump({'messages': [self._summarize_message(m) for m in messages]}))
        self.logger.info('Tools ' + dump({
            'toolsCount': len(tools),
            'toolNames': [t.get('name') for t in tools if isinstance(t, dict)],
        }))
        if tools:
            self.logger.debug('完整 Tools 定义 ' + dump(tools))
        self.logger.info('其他信息 ' + dump({
            'apiKey': api_key[:20] + '...',
            'model': request_data.get('model'),
            'messagesCount': len(messages),
            'stream': request_data.get('stream'),
        }))
        self.logger.info('================================')

    @staticmethod
    def _summarize_message(message: Any) -> Dict[str, Any]:
        if not isinstance(message, dict):
            return {'role': None, 'content': '[complex]'}
        content = message.get('content')
        if isinstance(content, str):
            summary = content[:300]
        elif isinstance(content, list):
            summary = ' '.join(
                str(block.get('text') or '')[:300] if block.get('type') == 'text' else f"[{block.get('type')}]"
                for block in content if isinstance(block, dict)
            )
        else:
            summary = '[complex]'
        return {'role': message.get('role'), 'content': summary}

    async def handle_messages(self, request: Request):
        """处理 /v1/messages 请求，任何未预期的异常都返回 JSON 错误"""
        start_time = time.time()
        request_id = str(uuid.uuid4())

        await asyncio.to_thread(self._trim_log_file)

        try:
            return await self._handle_messages(request, request_id, start_time)
        except InvalidRequestError as exc:
            self.logger.error(f"[错误] {exc}")
            return self.error_response(str(exc))
        except Exception as exc:
            self.logger.exception(f"[错误] 处理请求 {request_id} 失败: {exc}")
            return self.error_response(str(exc) or type(exc).__name__)

    async def _handle_messages(self, request: Request, request_id: str, start_time: float):
        body = await request.body()
        request_data = parse_request_body(body)

        # 清理 cache_control，原始请求对象保持不变
        request_data, removed = self.cache_filter.sanitized_copy(request_data)
        if removed > 0:
            self.logger.info(f"清理了 {removed} 个 cache_control（让 Claude Code 使用自己的缓存策略）")

        api_key = extract_api_key(request.headers)
        self.log_request(request, request_data, api_key)

        messages = request_data.get('messages')
        if not isinstance(messages, list):
            messages = []
        tools = request_data.get('tools')
        if not isinstance(tools, list):
            tools = None
        model = request_data.get('model') or self.settings.default_model
        prompt = build_prompt(messages, tools)

        if request_data.get('stream') is True:
            return StreamingResponse(
                self.stream_messages(prompt, model, request_id, start_time),
                media_type='text/event-stream',
                headers={'Cache-Control': 'no-cache', 'Connection': 'keep-alive'},
            )
        return await self.complete_messages(prompt, model, request_id, start_time)

    async def complete_messages(self, prompt: str, model: str, request_id: str, start_time: float):
        """非流式: 一次性执行 CLI 并组装响应"""
        try:
            result = await self.transport.run_batch(prompt)
        except CliSpawnError as exc:
            self.logger.error(f"[Spawn 错误] {exc}")
            return self.error_response(exc.message)
        except CliTimeoutError as exc:
            self.logger.error(f"[超时] {exc}")
            return self.error_response(exc.message, status_code=504)

        if not result.ok:
            self.logger.error(f"[Claude 错误] 退出码 {result.exit_code}: {result.stderr.strip()}")

        response = self.assembler.assemble(result.stdout, model)
        duration_ms = int((time.time() - start_time) * 1000)
        self.logger.info(f"请求完成 {request_id}: 耗时 {duration_ms}ms, 退出码 {result.exit_code}")
        return JSONResponse(response)

    async def stream_messages(
        self,
        prompt: str,
        model: str,
        request_id: str,
        start_time: float,
    ) -> AsyncIterator[str]:
        """流式: 把 CLI 的 stream-json 输出转换成 SSE"""
        translator = StreamEventTranslator(model=model, mapper=self.mapper)
        for event in translator.start():
            yield event.encode()

        try:
            session = await self.transport.open_stream(build_stream_input(prompt) if prompt else None)
        except CliSpawnError as exc:
            # 启动失败直接结束响应流，不补全事件序列
            self.logger.error(f"[Spawn 错误] {exc}")
            return

        finished = False
        try:
            async for line_event in session.iter_events():
                for event in translator.feed(line_event):
                    yield event.encode()

            exit_code = await session.wait()
            if exit_code != 0:
                self.logger.error(f"[Claude 错误] 退出码 {exit_code}: {session.stderr.strip()}")
            if session.timed_out:
                self.logger.warning(f"流式请求 {request_id} 因超时提前结束")

            for event in translator.finish():
                yield event.encode()
            finished = True

            duration_ms = int((time.time() - start_time) * 1000)
            self.logger.info(f"流式请求完成 {request_id}: 耗时 {duration_ms}ms, block 数 {translator.block_index + 1}")
        finally:
            if not finished:
                # 客户端断开或写入失败，避免遗留子进程
                self.logger.warning(f"流式请求 {request_id} 中断，清理 Claude CLI 进程")
                session.kill()
