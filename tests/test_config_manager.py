"""Tests for the proxy config file manager."""

import json

import pytest

from claude_local_proxy.config.config_manager import (
    DEFAULT_PORT,
    ProxyConfigManager,
    validate_port,
)


@pytest.fixture
def manager(tmp_path):
    return ProxyConfigManager(config_dir=tmp_path / "cfg", environ={})


@pytest.mark.parametrize(
    "port,valid",
    [(1024, True), (65535, True), ("8080", True), (80, False), (70000, False), ("abc", False), (None, False)],
)
def test_validate_port(port, valid):
    ok, error = validate_port(port)
    assert ok is valid
    assert (error is None) is valid


class TestPortPriority:
    def test_default(self, manager):
        assert manager.get_port() == DEFAULT_PORT

    def test_env_over_default(self, tmp_path):
        manager = ProxyConfigManager(config_dir=tmp_path, environ={"PORT": "9000"})
        assert manager.get_port() == 9000

    def test_config_over_env(self, tmp_path):
        manager = ProxyConfigManager(config_dir=tmp_path, environ={"PORT": "9000"})
        manager.save_port(9100)
        assert manager.get_port() == 9100

    def test_cli_over_everything(self, tmp_path):
        manager = ProxyConfigManager(config_dir=tmp_path, environ={"PORT": "9000"})
        manager.save_port(9100)
        assert manager.get_port(9200) == 9200


class TestConfigFile:
    def test_first_run_and_save(self, manager):
        assert manager.is_first_run()
        manager.save_port(12000)
        assert not manager.is_first_run()
        assert json.loads(manager.config_file.read_text(encoding="utf-8")) == {"port": 12000}

    def test_save_port_keeps_other_keys(self, manager):
        manager.write_config({"claude_command": "claude --model opus"})
        manager.save_port(12001)
        assert manager.read_config() == {"claude_command": "claude --model opus", "port": 12001}

    @pytest.mark.parametrize("content", ["{broken", "[1, 2]"])
    def test_corrupt_config_reads_as_empty(self, manager, content):
        manager.config_dir.mkdir(parents=True)
        manager.config_file.write_text(content, encoding="utf-8")
        assert manager.read_config() == {}
        assert manager.get_port() == DEFAULT_PORT


class TestRuntimeSettings:
    def test_defaults(self, manager):
        settings = manager.load_settings()
        assert settings.claude_command == ["claude"]
        assert settings.execution_timeout is None
        assert settings.log_file == manager.config_dir / "proxy.log"

    def test_command_from_env_string(self, tmp_path):
        manager = ProxyConfigManager(config_dir=tmp_path, environ={"CLAUDE_PROXY_COMMAND": "npx claude --debug"})
        assert manager.get_claude_command() == ["npx", "claude", "--debug"]

    def test_command_from_config_list(self, manager):
        manager.write_config({"claude_command": ["/opt/claude", "--model", "opus"]})
        assert manager.get_claude_command() == ["/opt/claude", "--model", "opus"]

    @pytest.mark.parametrize("value,expected", [("30", 30.0), ("0", None), ("-5", None), ("soon", None), ("", None)])
    def test_timeout_from_env(self, tmp_path, value, expected):
        manager = ProxyConfigManager(config_dir=tmp_path, environ={"CLAUDE_PROXY_TIMEOUT": value})
        assert manager.get_execution_timeout() == expected

    def test_timeout_from_config(self, manager):
        manager.write_config({"execution_timeout": 120})
        assert manager.get_execution_timeout() == 120.0
