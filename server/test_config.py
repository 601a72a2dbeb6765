"""
Tests for environment-driven server configuration.

Run with: pytest test_config.py -v
"""

import config as config_module
from config import ServerConfig, get_env_bool, get_env_int, get_env_list


class TestEnvHelpers:

    def test_bool_values(self, monkeypatch):
        monkeypatch.setenv("FLAG", "yes")
        assert get_env_bool("FLAG") is True
        monkeypatch.setenv("FLAG", "off")
        assert get_env_bool("FLAG", True) is False
        monkeypatch.setenv("FLAG", "maybe")
        assert get_env_bool("FLAG", True) is True

    def test_int_falls_back_on_garbage(self, monkeypatch):
        monkeypatch.setenv("NUMBER", "abc")
        assert get_env_int("NUMBER", 7) == 7

    def test_list_strips_blanks(self, monkeypatch):
        monkeypatch.setenv("ORIGINS", "http://a, ,http://b")
        assert get_env_list("ORIGINS") == ["http://a", "http://b"]


class TestServerConfig:

    def test_defaults(self, monkeypatch):
        for key in ("PORT", "MAX_PLAYERS_PER_LOBBY", "LOBBY_CODE_LENGTH", "LOBBY_CLEANUP_SECONDS"):
            monkeypatch.delenv(key, raising=False)
        cfg = ServerConfig.from_env()
        assert cfg.PORT == 3001
        assert cfg.MAX_PLAYERS_PER_LOBBY == 4
        assert cfg.LOBBY_CODE_LENGTH == 4
        assert cfg.LOBBY_CLEANUP_SECONDS == 300

    def test_reload_picks_up_environment(self, monkeypatch):
        monkeypatch.setenv("LOBBY_CLEANUP_SECONDS", "30")
        monkeypatch.setenv("ENVIRONMENT", "production")
        try:
            cfg = config_module.reload_config()
            assert cfg.LOBBY_CLEANUP_SECONDS == 30
            assert config_module.config is cfg
            assert cfg.ENVIRONMENT == "production"
        finally:
            monkeypatch.undo()
            config_module.reload_config()
