#!/usr/bin/env python3
import argparse
import sys

from claude_local_proxy.claude import proxy as claude_proxy
from claude_local_proxy.config.config_manager import (
    DEFAULT_PORT,
    proxy_config_manager,
    validate_port,
)
from claude_local_proxy.config.opencode_config import opencode_config
from claude_local_proxy.utils.port_utils import (
    find_available_port,
    is_port_available,
    port_occupied_message,
)

VERSION = '1.0.0'
MAX_PORT_ATTEMPTS = 3


def ask(question):
    """读取用户输入，输入流关闭时视为直接回车"""
    try:
        return input(question).strip()
    except EOFError:
        return ''


def prompt_for_port(default_port):
    """交互式获取端口，最多尝试 MAX_PORT_ATTEMPTS 次"""
    attempts = 0
    while attempts < MAX_PORT_ATTEMPTS:
        answer = ask(f"请输入端口号 (默认: {default_port}): ")
        if not answer:
            return default_port

        valid, error = validate_port(answer)
        if valid:
            port = int(answer)
            if is_port_available(port):
                return port
            print(f"\n{port_occupied_message(port)}")
        else:
            print(f"\n错误: {error}")
        attempts += 1

        if attempts < MAX_PORT_ATTEMPTS:
            print(f"请重新输入 (剩余尝试次数: {MAX_PORT_ATTEMPTS - attempts})\n")

    print(f"\n已达到最大尝试次数，将使用默认端口 {default_port}")
    return default_port


def resolve_port(cli_port, interactive):
    """确定最终监听端口"""
    if cli_port is not None:
        return cli_port

    port = proxy_config_manager.get_port()
    if not is_port_available(port):
        print(f"\n默认端口 {port} 已被占用。")
        if interactive:
            return prompt_for_port(DEFAULT_PORT)
        suggestion = find_available_port(port + 1)
        if suggestion:
            print(f"可以使用 --port {suggestion} 指定其他端口。")
        return port

    if proxy_config_manager.is_first_run() and interactive:
        print("\n欢迎使用 Claude Local Proxy!")
        print("这是首次运行，您可以自定义服务器端口。\n")
        if ask(f"使用默认端口 {DEFAULT_PORT}? (Y/n): ").lower() == 'n':
            return prompt_for_port(DEFAULT_PORT)
    return port


def update_opencode(port, interactive):
    """检测并更新 OpenCode 配置"""
    if not opencode_config.detect()['exists']:
        print("\n未检测到 OpenCode 配置文件。")
        print(opencode_config.manual_config_guide(port))
        return

    should_update = True
    if interactive:
        should_update = ask("是否自动更新 OpenCode 配置? (Y/n): ").lower() != 'n'

    if not should_update:
        print("\n跳过 OpenCode 配置更新。")
        print(opencode_config.manual_config_guide(port))
        return

    result = opencode_config.update_base_url(port)
    if result['success']:
        print(f"\n{result['message']}")
        if result.get('backup_path'):
            print(f"备份文件: {result['backup_path']}")
        print("\n请重启 OpenCode 以使配置生效。")
    else:
        print(f"\n警告: {result['message']}")
        print(opencode_config.manual_config_guide(port))


def build_parser():
    return argparse.ArgumentParser(
        description='Claude Local Proxy - 本地代理服务器',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""端口优先级:
  1. 命令行参数 (--port)
  2. 配置文件 ({proxy_config_manager.config_file})
  3. 环境变量 (PORT)
  4. 默认值 ({DEFAULT_PORT})

使用示例:
  claude-local-proxy                 使用默认端口或已保存的配置
  claude-local-proxy -p 8080         使用端口 8080
  claude-local-proxy --skip-opencode 跳过 OpenCode 配置更新""",
        prog='claude-local-proxy'
    )


def main(argv=None):
    """主函数 - 处理命令行参数"""
    parser = build_parser()
    parser.add_argument('-p', '--port', type=int, help='指定服务器监听端口 (1024-65535)')
    parser.add_argument('--skip-opencode', action='store_true', help='跳过 OpenCode 配置自动更新')
    parser.add_argument('-v', '--version', action='version', version=f'claude-local-proxy v{VERSION}')

    # 解析参数
    args = parser.parse_args(argv)

    if args.port is not None:
        valid, error = validate_port(args.port)
        if not valid:
            print(f"错误: {error}", file=sys.stderr)
            return 1

    interactive = sys.stdin.isatty()

    try:
        port = resolve_port(args.port, interactive)

        # 再次检查最终端口是否可用
        if not is_port_available(port):
            print(f"\n错误: 端口 {port} 不可用。", file=sys.stderr)
            print(port_occupied_message(port))
            return 1

        proxy_config_manager.save_port(port)
        print(f"\n端口配置已保存: {port}")

        if not args.skip_opencode:
            update_opencode(port, interactive)
    except (OSError, KeyboardInterrupt) as exc:
        print(f"启动失败: {exc}", file=sys.stderr)
        return 1

    print("\n正在启动代理服务器...\n")
    claude_proxy.run_app(port)
    return 0


if __name__ == '__main__':
    sys.exit(main())
