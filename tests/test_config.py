"""Tests for the configuration system."""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from company_finder.core import config as config_module
from company_finder.core.config import Config, get_config, reload_config


@pytest.fixture(autouse=True)
def isolated_cwd(tmp_path, monkeypatch):
    """Run every test in an empty directory with no registry credentials set."""
    monkeypatch.chdir(tmp_path)
    for name in (
        "SUPABASE_URL",
        "SUPABASE_ANON_KEY",
        "NEXT_PUBLIC_SUPABASE_URL",
        "NEXT_PUBLIC_SUPABASE_ANON_KEY",
        "REGISTRY_URL",
        "REGISTRY_ANON_KEY",
        "REGISTRY_BACKEND",
        "LOGGING_LEVEL",
        "API_DEFAULT_LIMIT",
    ):
        monkeypatch.delenv(name, raising=False)
    return tmp_path


class TestConfig:
    """Test the Config class."""

    @pytest.fixture
    def yaml_config(self, tmp_path) -> str:
        config_data = {
            "logging": {"level": "DEBUG"},
            "registry": {"backend": "sqlite", "sqlite_path": "local.db"},
            "search": {"page_size": 24},
        }
        path = tmp_path / "settings.yaml"
        path.write_text(yaml.dump(config_data))
        return str(path)

    def test_defaults(self) -> None:
        config = Config()

        assert config.get("logging.level") == "INFO"
        assert config.get("registry.backend") == "supabase"
        assert config.get("api.default_limit") == 20
        assert config.get("api.max_limit") == 100
        assert config.get("search.page_size") == 12
        assert config.get("search.debounce_seconds") == 1.0
        assert config.get("cache.buster") == "v1"

    def test_load_yaml_config(self, yaml_config: str) -> None:
        """Loaded values win and unspecified keys keep their defaults."""
        config = Config(yaml_config)

        assert config.get("logging.level") == "DEBUG"
        assert config.get("registry.backend") == "sqlite"
        assert config.get("search.page_size") == 24
        assert config.get("search.recent_limit") == 5
        assert config.get("registry.table") == "companies"

    def test_load_toml_config(self, tmp_path) -> None:
        path = tmp_path / "settings.toml"
        path.write_text('[api]\nport = 9000\n\n[logging]\njson_format = true\n')
        config = Config(str(path))

        assert config.get("api.port") == 9000
        assert config.get("logging.json_format") is True
        assert config.get("api.host") == "127.0.0.1"

    def test_auto_load_from_config_dir(self, isolated_cwd: Path) -> None:
        (isolated_cwd / "config").mkdir()
        (isolated_cwd / "config" / "company_finder.yaml").write_text("api:\n  port: 8123\n")
        assert Config().get("api.port") == 8123

    def test_missing_file_uses_defaults(self, tmp_path) -> None:
        config = Config(str(tmp_path / "nope.yaml"))
        assert config.get("logging.level") == "INFO"

    def test_malformed_yaml_uses_defaults(self, tmp_path) -> None:
        path = tmp_path / "broken.yaml"
        path.write_text("logging: [unclosed\n")
        config = Config(str(path))
        assert config.get("logging.level") == "INFO"

    def test_get_with_default(self) -> None:
        config = Config()
        assert config.get("logging.level", "DEFAULT") == "INFO"
        assert config.get("nonexistent.key", "DEFAULT") == "DEFAULT"

    def test_environment_overrides(self, monkeypatch) -> None:
        monkeypatch.setenv("LOGGING_LEVEL", "WARNING")
        monkeypatch.setenv("API_DEFAULT_LIMIT", "50")
        config = Config()

        assert config.get("logging.level") == "WARNING"
        assert config.get_int("api.default_limit") == 50

    def test_typed_getters(self, monkeypatch) -> None:
        config = Config()
        config.set("search.debounce_seconds", "0.5")
        config.set("cache.persist", "no")
        config.set("api.port", "not-a-number")

        assert config.get_float("search.debounce_seconds") == 0.5
        assert config.get_bool("cache.persist") is False
        assert config.get_int("api.port", 8000) == 8000

    def test_set_config_value(self) -> None:
        config = Config()

        config.set("logging.level", "ERROR")
        assert config.get("logging.level") == "ERROR"

        config.set("new.nested.value", "test")
        assert config.get("new.nested.value") == "test"

    def test_get_section(self) -> None:
        section = Config().get_section("registry")
        assert section["table"] == "companies"
        assert section["timeout_seconds"] == 10

    def test_reload(self, yaml_config: str) -> None:
        config = Config(yaml_config)
        config.set("logging.level", "ERROR")
        config.reload()
        assert config.get("logging.level") == "DEBUG"


class TestRegistryCredentials:
    """Tests for get_registry_credentials."""

    def test_from_config(self) -> None:
        config = Config()
        config.set("registry.url", "https://cfg.supabase.test")
        config.set("registry.anon_key", "cfg-key")
        assert config.get_registry_credentials() == ("https://cfg.supabase.test", "cfg-key")

    def test_environment_wins(self, monkeypatch) -> None:
        monkeypatch.setenv("NEXT_PUBLIC_SUPABASE_URL", "https://public.supabase.test")
        monkeypatch.setenv("SUPABASE_ANON_KEY", "env-key")
        config = Config()
        config.set("registry.url", "https://cfg.supabase.test")
        assert config.get_registry_credentials() == ("https://public.supabase.test", "env-key")

    def test_unset(self) -> None:
        assert Config().get_registry_credentials() == ("", "")


class TestValidation:
    """Tests for validate()."""

    def test_sqlite_defaults_valid(self) -> None:
        config = Config()
        config.set("registry.backend", "sqlite")
        result = config.validate()
        assert result.is_valid
        assert str(result) == "Configuration is valid."

    def test_supabase_requires_url(self) -> None:
        result = Config().validate()
        assert not result.is_valid
        assert any("SUPABASE_URL" in error for error in result.errors)
        assert any("anon_key" in warning for warning in result.warnings)

    def test_supabase_with_credentials(self, monkeypatch) -> None:
        monkeypatch.setenv("SUPABASE_URL", "https://x.supabase.test")
        monkeypatch.setenv("SUPABASE_ANON_KEY", "key")
        assert Config().validate().is_valid

    @pytest.mark.parametrize(
        "key,value",
        [
            ("logging.level", "LOUD"),
            ("registry.backend", "oracle"),
            ("api.max_limit", 0),
            ("search.page_size", -1),
            ("search.debounce_seconds", -0.5),
        ],
    )
    def test_invalid_values(self, key, value) -> None:
        config = Config()
        config.set("registry.backend", "sqlite")
        config.set(key, value)
        assert not config.validate().is_valid

    def test_default_limit_above_max(self) -> None:
        config = Config()
        config.set("registry.backend", "sqlite")
        config.set("api.default_limit", 200)
        result = config.validate()
        assert "api.default_limit cannot exceed api.max_limit" in result.errors

    def test_validate_and_raise(self) -> None:
        config = Config()
        config.set("registry.backend", "oracle")
        with pytest.raises(ValueError, match="Invalid configuration"):
            config.validate_and_raise()


class TestGlobalConfig:
    """Tests for the module-level config instance."""

    def test_get_config_is_singleton(self, monkeypatch) -> None:
        monkeypatch.setattr(config_module, "_global_config", None)
        assert get_config() is get_config()

    def test_reload_config(self, monkeypatch) -> None:
        monkeypatch.setattr(config_module, "_global_config", None)
        config = get_config()
        config.set("logging.level", "ERROR")
        reload_config()
        assert get_config() is config
        assert config.get("logging.level") == "INFO"
