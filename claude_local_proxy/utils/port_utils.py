#!/usr/bin/env python3
"""端口检测工具"""
import socket
from typing import Optional

from ..config.config_manager import MAX_PORT


def is_port_available(port: int, host: str = '') -> bool:
    """尝试绑定端口判断是否可用，不指定地址时检测所有接口"""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        try:
            sock.bind((host, port))
        except OSError:
            return False
    return True


def find_available_port(start_port: int, max_attempts: int = 10) -> Optional[int]:
    """从 start_port 开始递增查找可用端口"""
    for port in range(start_port, start_port + max_attempts):
        if port > MAX_PORT:
            break
        if is_port_available(port):
            return port
    return None


def port_occupied_message(port: int) -> str:
    """端口被占用时的提示信息"""
    return f"端口 {port} 已被占用。请使用 `lsof -i :{port}` 或 `netstat -an | grep {port}` 查看占用进程。"
