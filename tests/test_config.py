"""Tests for configuration loading and XDG paths."""
import json

import pytest

from whispertui.config import (
    DEFAULTS,
    Config,
    deep_merge,
    format_config,
    is_debug_mode,
    load_config,
    parse_config,
)
from whispertui.errors import ConfigurationError
from whispertui.paths import (
    ensure_all_dirs,
    get_cache_dir,
    get_config_path,
    get_history_dir,
    get_socket_path,
)


def write_config(settings):
    path = get_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(settings if isinstance(settings, str) else json.dumps(settings))
    return path


class TestLoadConfig:
    """Tests for load_config()."""

    @pytest.mark.unit
    def test_defaults_without_file(self):
        config = load_config()

        assert config == Config()
        assert config.transcription.api_key_env == "GROQ_API_KEY"
        assert config.audio.sample_rate == 16000
        assert config.output.paste_method == "wtype"
        assert config.history.max_entries == 1000
        assert config.daemon.idle_timeout == 0

    @pytest.mark.unit
    def test_partial_file_merged_with_defaults(self):
        write_config({"audio": {"sample_rate": 48000}, "output": {"auto_paste": False}})

        config = load_config()

        assert config.audio.sample_rate == 48000
        assert config.audio.device == "default"
        assert config.output.auto_paste is False
        assert config.output.paste_method == "wtype"
        assert config.transcription == Config().transcription

    @pytest.mark.unit
    def test_unknown_keys_ignored(self):
        write_config({"audio": {"gain": 3}, "ui": {"theme": "dark"}})

        assert load_config() == Config()

    @pytest.mark.unit
    def test_code_aware_apps_override(self):
        write_config({"context": {"code_aware_apps": ["wezterm"]}})

        assert load_config().context.code_aware_apps == ("wezterm",)

    @pytest.mark.unit
    def test_malformed_json(self):
        write_config("{not json")

        with pytest.raises(ConfigurationError, match="Failed to parse config file"):
            load_config()

    @pytest.mark.unit
    def test_explicit_path(self, tmp_path):
        path = tmp_path / "custom.json"
        path.write_text(json.dumps({"daemon": {"idle_timeout": 600}}))

        assert load_config(path).daemon.idle_timeout == 600


class TestValidation:
    """Tests for parse_config() value checks."""

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "settings,fragment",
        [
            ({"audio": {"sample_rate": "fast"}}, "audio.sample_rate"),
            ({"audio": {"sample_rate": 0}}, "audio.sample_rate"),
            ({"audio": {"max_duration": -1}}, "audio.max_duration"),
            ({"output": {"auto_paste": "yes"}}, "output.auto_paste"),
            ({"output": {"paste_method": "xdotool"}}, "output.paste_method"),
            ({"transcription": {"backend": "openai"}}, "transcription.backend"),
            ({"transcription": {"timeout": True}}, "transcription.timeout"),
            ({"history": {"max_entries": 0}}, "history.max_entries"),
            ({"context": {"code_aware_apps": "kitty"}}, "context.code_aware_apps"),
            ({"audio": "loud"}, "audio: expected an object"),
        ],
    )
    def test_invalid_values_rejected(self, settings, fragment):
        with pytest.raises(ConfigurationError) as exc_info:
            parse_config(settings)

        assert fragment in str(exc_info.value)

    @pytest.mark.unit
    def test_all_issues_reported_together(self):
        with pytest.raises(ConfigurationError) as exc_info:
            parse_config({"audio": {"device": ""}, "output": {"auto_paste": 1}})

        message = str(exc_info.value)
        assert "audio.device" in message
        assert "output.auto_paste" in message

    @pytest.mark.unit
    def test_top_level_must_be_object(self):
        with pytest.raises(ConfigurationError, match="top level"):
            parse_config(["audio"])

    @pytest.mark.unit
    def test_null_keeps_default(self):
        assert parse_config({"audio": {"device": None}}).audio.device == "default"


class TestHelpers:
    @pytest.mark.unit
    def test_deep_merge_does_not_mutate(self):
        target = {"a": {"b": 1, "c": 2}}

        merged = deep_merge(target, {"a": {"b": 5}})

        assert merged == {"a": {"b": 5, "c": 2}}
        assert target == {"a": {"b": 1, "c": 2}}

    @pytest.mark.unit
    def test_defaults_cover_every_section(self):
        assert set(DEFAULTS) == set(vars(Config()))

    @pytest.mark.unit
    def test_format_config_lists_sections_and_paths(self):
        text = format_config(Config())

        assert "[transcription]" in text
        assert '  paste_method = "wtype"' in text
        assert f"Config file: {get_config_path()}" in text

    @pytest.mark.unit
    def test_debug_mode(self, monkeypatch):
        monkeypatch.setenv("DEBUG_MODE", "True")
        assert is_debug_mode()
        monkeypatch.setenv("DEBUG_MODE", "0")
        assert not is_debug_mode()


class TestPaths:
    @pytest.mark.unit
    def test_xdg_overrides(self, tmp_path):
        assert get_config_path() == tmp_path / "config" / "whispertui" / "config.json"
        assert get_cache_dir() == tmp_path / "cache" / "whispertui"
        assert get_history_dir().is_relative_to(tmp_path / "data" / "whispertui")
        assert get_socket_path().name == "whispertui.sock"

    @pytest.mark.unit
    def test_home_fallback(self, monkeypatch, tmp_path):
        monkeypatch.delenv("XDG_CACHE_HOME")
        monkeypatch.setenv("HOME", str(tmp_path / "home"))

        assert get_cache_dir() == tmp_path / "home" / ".cache" / "whispertui"

    @pytest.mark.unit
    def test_ensure_all_dirs(self):
        ensure_all_dirs()

        assert get_cache_dir().is_dir()
        assert get_history_dir().is_dir()
        assert get_socket_path().parent.is_dir()
