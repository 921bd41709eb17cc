"""Tests for the OpenCode config patcher."""

import json
import os

import pytest

from claude_local_proxy.config.opencode_config import BACKUP_PREFIX, OpenCodeConfig


@pytest.fixture
def opencode(tmp_path):
    return OpenCodeConfig(tmp_path / "opencode.json")


def write_json(path, data):
    path.write_text(json.dumps(data), encoding="utf-8")


def backups(directory):
    return sorted(p.name for p in directory.glob(BACKUP_PREFIX + "*"))


def test_missing_file(opencode):
    assert opencode.detect() == {"exists": False, "path": str(opencode.config_path)}
    assert not opencode.read()["success"]
    result = opencode.update_base_url(12346)
    assert not result["success"]


def test_updates_base_url_and_keeps_other_settings(opencode, tmp_path):
    write_json(opencode.config_path, {
        "theme": "dark",
        "provider": {"anthropic": {"options": {"baseURL": "https://api.anthropic.com", "timeout": 5}}},
    })

    result = opencode.update_base_url(12346)

    assert result["success"]
    assert result["backup_path"]
    config = json.loads(opencode.config_path.read_text(encoding="utf-8"))
    assert config["theme"] == "dark"
    assert config["provider"]["anthropic"]["options"] == {"baseURL": "http://localhost:12346", "timeout": 5}
    assert len(backups(tmp_path)) == 1


def test_creates_missing_nested_sections(opencode):
    write_json(opencode.config_path, {"provider": "not-a-dict"})

    assert opencode.update_base_url(8080, create_backup_first=False)["success"]

    config = json.loads(opencode.config_path.read_text(encoding="utf-8"))
    assert config["provider"] == {"anthropic": {"options": {"baseURL": "http://localhost:8080"}}}


def test_already_current_skips_backup(opencode, tmp_path):
    write_json(opencode.config_path, {"provider": {"anthropic": {"options": {"baseURL": "http://localhost:9000"}}}})

    result = opencode.update_base_url(9000)

    assert result["success"]
    assert "backup_path" not in result
    assert backups(tmp_path) == []


@pytest.mark.parametrize("content", ["{oops", "[]"])
def test_invalid_json_is_not_touched(opencode, content):
    opencode.config_path.write_text(content, encoding="utf-8")

    result = opencode.update_base_url(9000)

    assert not result["success"]
    assert opencode.config_path.read_text(encoding="utf-8") == content


def test_only_newest_backups_are_kept(opencode, tmp_path):
    write_json(opencode.config_path, {})
    for i in range(5):
        stale = tmp_path / f"{BACKUP_PREFIX}2024010{i}T000000"
        stale.write_text("{}", encoding="utf-8")
        os.utime(stale, (1_000_000 + i, 1_000_000 + i))

    opencode.cleanup_old_backups(3)

    assert backups(tmp_path) == [
        f"{BACKUP_PREFIX}20240102T000000",
        f"{BACKUP_PREFIX}20240103T000000",
        f"{BACKUP_PREFIX}20240104T000000",
    ]


def test_manual_guide_mentions_port(opencode):
    guide = opencode.manual_config_guide(4321)
    assert "http://localhost:4321" in guide
    assert str(opencode.config_path) in guide
