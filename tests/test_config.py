"""Tests for config.py environment variable parsing and load_settings()."""

import logging
import os
from pathlib import Path
from unittest import mock

import pytest

from config import INSECURE_DEFAULT_SECRET, Settings, get_bool_env, get_float_env, get_int_env, get_list_env, load_settings


class TestGetIntEnv:
    """Tests for get_int_env helper function."""

    def test_returns_default_when_env_not_set(self):
        with mock.patch.dict(os.environ, {}, clear=True):
            assert get_int_env("NONEXISTENT_VAR", 42) == 42

    def test_parses_valid_integer(self):
        with mock.patch.dict(os.environ, {"TEST_INT": "123"}):
            assert get_int_env("TEST_INT", 0) == 123

    def test_returns_default_on_invalid_value(self, caplog):
        with mock.patch.dict(os.environ, {"TEST_INT": "abc"}):
            with caplog.at_level(logging.WARNING):
                assert get_int_env("TEST_INT", 42) == 42
                assert "Invalid TEST_INT='abc'" in caplog.text

    def test_out_of_range_uses_default(self):
        with mock.patch.dict(os.environ, {"TEST_INT": "0"}):
            assert get_int_env("TEST_INT", 5, min_val=1) == 5
        with mock.patch.dict(os.environ, {"TEST_INT": "99999"}):
            assert get_int_env("TEST_INT", 5, max_val=100) == 5


class TestOtherHelpers:
    @pytest.mark.parametrize("value", ["nan", "inf", "-inf", "x"])
    def test_float_rejects_special_values(self, value):
        with mock.patch.dict(os.environ, {"TEST_FLOAT": value}):
            assert get_float_env("TEST_FLOAT", 1.5) == 1.5

    @pytest.mark.parametrize("value,expected", [("true", True), ("1", True), ("YES", True), ("off", False), ("0", False)])
    def test_bool(self, value, expected):
        with mock.patch.dict(os.environ, {"TEST_BOOL": value}):
            assert get_bool_env("TEST_BOOL", not expected) is expected

    def test_list_drops_blanks(self):
        with mock.patch.dict(os.environ, {"TEST_LIST": " https://a.test, ,https://b.test ,"}):
            assert get_list_env("TEST_LIST") == ["https://a.test", "https://b.test"]


class TestLoadSettings:
    """Tests for load_settings()."""

    def test_defaults(self):
        with mock.patch.dict(os.environ, {}, clear=True):
            settings = load_settings()
        assert settings == Settings()
        assert settings.default_page_size == 10
        assert settings.access_cookie_name == "accessToken"

    def test_reads_environment(self):
        env = {
            "VIDSHARE_DATABASE_URL": "sqlite:///./dev.db",
            "VIDSHARE_ACCESS_TOKEN_SECRET": "a" * 32,
            "VIDSHARE_REFRESH_TOKEN_SECRET": "r" * 32,
            "VIDSHARE_PAGE_SIZE_MAX": "50",
            "VIDSHARE_CORS_ORIGINS": "https://app.test",
            "VIDSHARE_TRUSTED_PROXIES": "10.0.0.1,10.0.0.2",
            "VIDSHARE_AUDIT_LOG_PATH": "/tmp/vidshare-audit.log",
            "VIDSHARE_LOG_LEVEL": "debug",
        }
        with mock.patch.dict(os.environ, env, clear=True):
            settings = load_settings()

        assert settings.database_url == "sqlite:///./dev.db"
        assert settings.max_page_size == 50
        assert settings.cors_origins == ["https://app.test"]
        assert settings.trusted_proxies == {"10.0.0.1", "10.0.0.2"}
        assert settings.audit_log_path == Path("/tmp/vidshare-audit.log")
        assert settings.log_level == "DEBUG"

    def test_warns_about_default_secret(self, caplog):
        with mock.patch.dict(os.environ, {}, clear=True):
            with caplog.at_level(logging.WARNING, logger="config"):
                settings = load_settings()
        assert settings.access_token_secret == INSECURE_DEFAULT_SECRET
        assert "VIDSHARE_ACCESS_TOKEN_SECRET is not set" in caplog.text

    def test_settings_are_immutable(self):
        settings = Settings()
        with pytest.raises(Exception):
            settings.database_url = "sqlite://"

    def test_upload_limits_in_bytes(self):
        settings = Settings(max_video_upload_mb=2, max_image_upload_mb=1)
        assert settings.max_video_upload_bytes == 2 * 1024 * 1024
        assert settings.max_image_upload_bytes == 1024 * 1024
