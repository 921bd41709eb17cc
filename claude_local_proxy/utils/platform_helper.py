#!/usr/bin/env python3
import logging
import os
from typing import Dict, List, Mapping, Optional

import psutil

# 嵌套在另一个 Claude Code 会话中时 CLI 会拒绝启动
NESTED_SESSION_ENV_VARS = ('CLAUDECODE',)

logger = logging.getLogger('claude_local_proxy.process')


def is_process_running(pid):
    """跨平台检查进程是否运行，僵尸进程视为已退出"""
    if pid is None:
        return False

    try:
        process = psutil.Process(pid)
        return process.is_running() and process.status() != psutil.STATUS_ZOMBIE
    except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
        return False


def _signal_all(processes: List[psutil.Process], force: bool):
    for proc in processes:
        try:
            if force:
                proc.kill()
            else:
                proc.terminate()
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue


def kill_process(pid, force=False, timeout=5):
    """
    结束进程树（CLI 可能会再拉起工具子进程）

    Args:
        pid: 根进程 PID
        force: True 直接 SIGKILL，否则先 SIGTERM
        timeout: 等待退出的秒数，0 表示不等待，超时仍存活的进程会被强制结束

    Returns:
        bool: 进程是否已不存在或已发出结束信号
    """
    if not is_process_running(pid):
        return True

    try:
        root = psutil.Process(pid)
        tree = root.children(recursive=True) + [root]
    except (psutil.NoSuchProcess, psutil.ZombieProcess):
        return True
    except psutil.AccessDenied as exc:
        logger.warning(f"无权结束进程 {pid}: {exc}")
        return False

    # 先子进程，后父进程
    _signal_all(tree, force)

    _, still_alive = psutil.wait_procs(tree, timeout=timeout)
    if still_alive and not force:
        logger.warning(f"{len(still_alive)} 个进程未响应 SIGTERM，强制结束")
        _signal_all(still_alive, True)
    return True


def build_child_env(base: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    """子进程继承当前环境，去掉会阻止 CLI 启动的变量"""
    env = dict(os.environ if base is None else base)
    for name in NESTED_SESSION_ENV_VARS:
        env.pop(name, None)
    return env
