#!/usr/bin/env python3
"""
Claude CLI 子进程传输层
每个请求启动一个独立的 CLI 进程：非流式一次性读取 JSON 输出，
流式按行读取 stream-json 事件
"""
import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Sequence

from ..utils.platform_helper import build_child_env, kill_process
from .errors import CliSpawnError, CliTimeoutError

DEFAULT_COMMAND = ('claude',)
BATCH_FLAGS = ('--print', '--output-format', 'json')
STREAM_FLAGS = (
    '--print',
    '--input-format', 'stream-json',
    '--output-format', 'stream-json',
    '--verbose',
)
READ_CHUNK_SIZE = 64 * 1024

logger = logging.getLogger('claude_local_proxy.transport')


class LineBuffer:
    """按换行切分字节流，保留末尾不完整的片段等待下一块数据"""

    def __init__(self):
        self._pending = b''

    @property
    def pending(self) -> bytes:
        return self._pending

    def feed(self, chunk: bytes) -> List[str]:
        """追加一块数据，返回其中所有完整的行"""
        if not chunk:
            return []
        *complete, self._pending = (self._pending + chunk).split(b'\n')
        return [self._decode(line) for line in complete]

    def flush(self) -> Optional[str]:
        """取出剩余的不完整片段（流结束时调用）"""
        if not self._pending:
            return None
        tail, self._pending = self._pending, b''
        return self._decode(tail)

    @staticmethod
    def _decode(raw: bytes) -> str:
        return raw.decode('utf-8', errors='replace').rstrip('\r')


def parse_json_line(line: str) -> Optional[Dict[str, Any]]:
    """解析一行 JSON 输出，空行、非 JSON 或非对象返回 None"""
    text = line.strip()
    if not text:
        return None
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


@dataclass
class BatchResult:
    """非流式执行结果"""
    stdout: str
    stderr: str
    exit_code: Optional[int]

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class CliStreamSession:
    """
    一次流式执行的会话

    持有子进程句柄、stdout 行缓冲和 stderr 收集任务，不在请求之间复用
    """

    def __init__(self, process: asyncio.subprocess.Process, timeout: Optional[float] = None):
        self.process = process
        self.buffer = LineBuffer()
        self.timed_out = False
        self._stderr_chunks: List[bytes] = []
        self._stderr_task = asyncio.ensure_future(self._drain_stderr())
        self._deadline = None
        if timeout:
            self._deadline = asyncio.get_running_loop().call_later(timeout, self._on_deadline)

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def stderr(self) -> str:
        return b''.join(self._stderr_chunks).decode('utf-8', errors='replace')

    async def send(self, payload: Optional[Dict[str, Any]]):
        """写入一行 JSON 后立即关闭 stdin（单轮对话，不再写入）"""
        stdin = self.process.stdin
        if stdin is None:
            return
        try:
            if payload is not None:
                line = json.dumps(payload, ensure_ascii=False, separators=(',', ':')) + '\n'
                stdin.write(line.encode('utf-8'))
                await stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            logger.warning(f"写入 Claude CLI stdin 失败: {exc}")
        finally:
            stdin.close()

    async def iter_lines(self) -> AsyncIterator[str]:
        """逐行产出 stdout，跨数据块的半行会被拼接"""
        stdout = self.process.stdout
        while True:
            chunk = await stdout.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            for line in self.buffer.feed(chunk):
                yield line
        tail = self.buffer.flush()
        if tail is not None:
            yield tail

    async def iter_events(self) -> AsyncIterator[Dict[str, Any]]:
        """逐个产出解析成功的 JSON 事件，解析失败的行直接跳过"""
        async for line in self.iter_lines():
            event = parse_json_line(line)
            if event is None:
                if line.strip():
                    logger.debug(f"跳过非 JSON 输出: {line[:200]}")
                continue
            yield event

    async def wait(self) -> int:
        """等待进程退出并收齐 stderr"""
        exit_code = await self.process.wait()
        self._cancel_deadline()
        await self._stderr_task
        return exit_code

    def kill(self):
        """立即结束子进程及其子进程，不等待退出，可在取消清理中同步调用"""
        self._cancel_deadline()
        if self.process.returncode is None:
            logger.info(f"终止 Claude CLI 进程 (PID: {self.pid})")
            kill_process(self.pid, force=True, timeout=0)
        if not self._stderr_task.done():
            self._stderr_task.cancel()

    async def _drain_stderr(self):
        stderr = self.process.stderr
        if stderr is None:
            return
        while True:
            chunk = await stderr.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            self._stderr_chunks.append(chunk)
            logger.warning(f"[Claude stderr] {chunk.decode('utf-8', errors='replace').rstrip()}")

    def _on_deadline(self):
        self._deadline = None
        if self.process.returncode is not None:
            return
        self.timed_out = True
        logger.warning(f"Claude CLI 执行超时，强制结束 (PID: {self.pid})")
        kill_process(self.pid, force=True, timeout=0)

    def _cancel_deadline(self):
        if self._deadline is not None:
            self._deadline.cancel()
            self._deadline = None


class ClaudeCliTransport:
    """Claude CLI 进程启动器"""

    def __init__(
        self,
        command: Optional[Sequence[str]] = None,
        timeout: Optional[float] = None,
        env: Optional[Mapping[str, str]] = None,
    ):
        """
        Args:
            command: CLI 可执行文件及前置参数，默认 ['claude']
            timeout: 单次执行时限（秒），None 表示不限制
            env: 子进程环境变量，默认继承当前进程
        """
        self.command = list(command or DEFAULT_COMMAND)
        self.timeout = timeout
        self.env = build_child_env(env)

    def batch_args(self, prompt: str) -> List[str]:
        return [*self.command, *BATCH_FLAGS, prompt]

    def stream_args(self) -> List[str]:
        return [*self.command, *STREAM_FLAGS]

    async def _spawn(self, args: List[str], stdin) -> asyncio.subprocess.Process:
        try:
            return await asyncio.create_subprocess_exec(
                *args,
                stdin=stdin,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self.env,
            )
        except OSError as exc:
            raise CliSpawnError(
                f"无法启动 Claude CLI: {exc}",
                details={'command': args[0]},
            ) from exc

    async def run_batch(self, prompt: str) -> BatchResult:
        """
        单次 JSON 输出模式执行，prompt 作为最后一个参数传入

        Raises:
            CliSpawnError: 进程无法启动
            CliTimeoutError: 超出执行时限
        """
        process = await self._spawn(self.batch_args(prompt), stdin=asyncio.subprocess.DEVNULL)
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            kill_process(process.pid, force=True, timeout=0)
            await process.wait()
            raise CliTimeoutError(
                "Claude CLI 执行超时",
                details={'timeout': self.timeout},
            )
        except asyncio.CancelledError:
            kill_process(process.pid, force=True, timeout=0)
            raise
        return BatchResult(
            stdout=stdout.decode('utf-8', errors='replace'),
            stderr=stderr.decode('utf-8', errors='replace'),
            exit_code=process.returncode,
        )

    async def open_stream(self, payload: Optional[Dict[str, Any]]) -> CliStreamSession:
        """
        以 stream-json 模式启动进程并写入唯一一条输入

        Args:
            payload: 写入 stdin 的消息，None 时直接关闭 stdin

        Raises:
            CliSpawnError: 进程无法启动
        """
        process = await self._spawn(self.stream_args(), stdin=asyncio.subprocess.PIPE)
        session = CliStreamSession(process, timeout=self.timeout)
        await session.send(payload)
        return session
