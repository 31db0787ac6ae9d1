"""Tests for tool configuration parsing."""

import json
from pathlib import Path
from unittest.mock import patch

import pytest

from mqlbuild.config import (
    DEFAULT_WINE_TIMEOUT,
    Flavor,
    StorageKind,
    ToolsConfig,
    WineConfig,
    find_config_file,
    load_config,
    read_config_file,
    resolve_workspace_path,
)
from mqlbuild.errors import ConfigurationError


class TestToolsConfig:
    def test_defaults(self):
        config = ToolsConfig.from_dict({})
        assert config.metaeditor.metaeditor5_dir == ""
        assert config.wine.binary == "wine64"
        assert config.wine.timeout == DEFAULT_WINE_TIMEOUT
        assert config.auto_check.enabled is False
        assert config.auto_check.delay == 3.0
        assert config.compile_target.storage is StorageKind.WORKSPACE
        assert config.compile_target.infer_max_files == 5000
        assert config.check_on_save is False
        assert config.delete_log is False

    def test_nested_snake_case(self):
        config = ToolsConfig.from_dict(
            {
                "metaeditor": {"metaeditor5_dir": "/opt/mt5/metaeditor64.exe", "include5_dir": "/opt/mt5/MQL5", "portable5": True},
                "wine": {"enabled": True, "prefix": "/home/me/.mt5", "timeout": 90},
                "auto_check": {"enabled": True, "delay": 1.5},
                "compile_target": {"storage": "session", "allow_multi_select": False},
                "check_on_save": True,
                "delete_log": True,
            }
        )
        assert config.metaeditor.metaeditor5_dir == "/opt/mt5/metaeditor64.exe"
        assert config.metaeditor.portable5 is True
        assert config.wine.enabled is True
        assert config.wine.timeout == 90.0
        assert config.auto_check.delay == 1.5
        assert config.compile_target.storage is StorageKind.SESSION
        assert config.compile_target.allow_multi_select is False
        assert config.check_on_save is True
        assert config.delete_log is True

    def test_flat_editor_settings_use_milliseconds(self):
        config = ToolsConfig.from_dict(
            {
                "mql_tools.Metaeditor.Metaeditor4Dir": "C:/MT4/metaeditor.exe",
                "mql_tools.Wine.Enabled": True,
                "mql_tools.Wine.Timeout": 90000,
                "mql_tools.AutoCheck.Delay": 500,
                "mql_tools.CheckOnSave": True,
                "mql_tools.LogFile.DeleteLog": True,
                "mql_tools.CompileTarget.Storage": "globalState",
            }
        )
        assert config.metaeditor.metaeditor4_dir == "C:/MT4/metaeditor.exe"
        assert config.wine.timeout == 90.0
        assert config.auto_check.delay == 0.5
        assert config.check_on_save is True
        assert config.delete_log is True
        assert config.compile_target.storage is StorageKind.GLOBAL

    def test_nested_editor_settings(self):
        config = ToolsConfig.from_dict({"mql_tools": {"Wine": {"Binary": "/usr/bin/wine"}, "Metaeditor": {"Include5Dir": "inc"}}})
        assert config.wine.binary == "/usr/bin/wine"
        assert config.metaeditor.include5_dir == "inc"

    def test_non_positive_timeout_falls_back_to_default(self):
        assert WineConfig.from_dict({"wine": {"timeout": 0}}).timeout == DEFAULT_WINE_TIMEOUT
        assert WineConfig.from_dict({"wine": {"timeout": -5}}).timeout == DEFAULT_WINE_TIMEOUT

    def test_bad_boolean_raises(self):
        with pytest.raises(ConfigurationError):
            ToolsConfig.from_dict({"wine": {"enabled": "sometimes"}})

    def test_unknown_storage_raises(self):
        with pytest.raises(ConfigurationError):
            ToolsConfig.from_dict({"compile_target": {"storage": "cloud"}})

    def test_legacy_storage_names(self):
        assert StorageKind.parse("workspaceState") is StorageKind.WORKSPACE
        assert StorageKind.parse("workspaceSettings") is StorageKind.WORKSPACE
        assert StorageKind.parse("global") is StorageKind.GLOBAL

    def test_invalid_max_files_raises(self):
        with pytest.raises(ConfigurationError):
            ToolsConfig.from_dict({"compile_target": {"infer_max_files": 0}})

    def test_root_must_be_object(self):
        with pytest.raises(ConfigurationError):
            ToolsConfig.from_dict([])  # type: ignore[arg-type]

    def test_for_flavor(self):
        config = ToolsConfig.from_dict(
            {"metaeditor": {"metaeditor4_dir": "a", "include4_dir": "b", "portable4": True, "metaeditor5_dir": "c"}}
        )
        assert config.metaeditor.for_flavor(Flavor.MQL4) == ("a", "b", True)
        assert config.metaeditor.for_flavor(Flavor.MQL5) == ("c", "", False)


class TestWineActive:
    def test_inactive_on_windows(self):
        with patch("sys.platform", "win32"):
            assert WineConfig(enabled=True).active() is False

    def test_active_when_enabled_elsewhere(self):
        with patch("sys.platform", "linux"):
            assert WineConfig(enabled=True).active() is True
            assert WineConfig(enabled=False).active() is False


class TestResolveWorkspacePath:
    def test_expands_workspace_folder(self, tmp_path):
        result = resolve_workspace_path("${workspaceFolder}/tools/me.exe", tmp_path)
        assert Path(result) == tmp_path / "tools" / "me.exe"

    def test_anchors_relative_paths(self, tmp_path):
        assert Path(resolve_workspace_path("Include", tmp_path)) == tmp_path / "Include"

    def test_empty_stays_empty(self, tmp_path):
        assert resolve_workspace_path("  ", tmp_path) == ""

    def test_absolute_untouched(self, tmp_path):
        absolute = str(tmp_path / "x.exe")
        assert resolve_workspace_path(absolute, Path("/elsewhere")) == absolute


class TestConfigFiles:
    def test_read_jsonc(self, tmp_path):
        settings = tmp_path / "settings.json"
        settings.write_text('{\n  // compiler\n  "mql_tools.Wine.Enabled": true,\n}\n', encoding="utf-8")
        assert read_config_file(settings) == {"mql_tools.Wine.Enabled": True}

    def test_read_invalid_json_raises(self, tmp_path):
        settings = tmp_path / "bad.json"
        settings.write_text("{not json", encoding="utf-8")
        with pytest.raises(ConfigurationError):
            read_config_file(settings)

    def test_find_prefers_workspace_file_over_vscode(self, tmp_path, monkeypatch):
        monkeypatch.delenv("MQLBUILD_CONFIG", raising=False)
        (tmp_path / ".vscode").mkdir()
        (tmp_path / ".vscode" / "settings.json").write_text("{}", encoding="utf-8")
        assert find_config_file(tmp_path) == tmp_path / ".vscode" / "settings.json"

        (tmp_path / ".mqlbuild.json").write_text("{}", encoding="utf-8")
        assert find_config_file(tmp_path) == tmp_path / ".mqlbuild.json"

    def test_env_var_wins(self, tmp_path, monkeypatch):
        env_file = tmp_path / "env.json"
        monkeypatch.setenv("MQLBUILD_CONFIG", str(env_file))
        assert find_config_file(tmp_path) == env_file

    def test_load_config_defaults_without_file(self, tmp_path, monkeypatch):
        monkeypatch.delenv("MQLBUILD_CONFIG", raising=False)
        assert load_config(tmp_path) == ToolsConfig()

    def test_load_config_from_file(self, tmp_path, monkeypatch):
        monkeypatch.delenv("MQLBUILD_CONFIG", raising=False)
        (tmp_path / ".mqlbuild.json").write_text(json.dumps({"check_on_save": True}), encoding="utf-8")
        assert load_config(tmp_path).check_on_save is True
