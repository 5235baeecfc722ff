"""
Test settings loading: defaults, YAML file, environment
"""
import pytest

from backpack.core.config import Settings


class TestSettings:

    def test_defaults(self):
        settings = Settings.load(environ={})
        assert settings.database_url == ""
        assert settings.oauth_token_ttl == 3600
        assert settings.session_max_age == 2592000
        assert settings.min_password_length == 8
        assert settings.api_key_header == "X-Backpack-API-Key"

    def test_environment_overrides_and_coerces(self):
        settings = Settings.load(environ={
            "DATABASE_URL": "postgresql://db/backpack",
            "PORT": "9000",
            "OAUTH_TOKEN_TTL": "600",
        })
        assert settings.database_url == "postgresql://db/backpack"
        assert settings.port == 9000
        assert settings.oauth_token_ttl == 600

    def test_yaml_file(self, tmp_path):
        config = tmp_path / "backpack.yaml"
        config.write_text("server_url: https://backpack.example.com\nlogin_max_failures: 0\n")

        settings = Settings.load(environ={"BACKPACK_CONFIG": str(config)})
        assert settings.server_url == "https://backpack.example.com"
        assert settings.login_max_failures == 0

    def test_environment_beats_yaml(self, tmp_path):
        config = tmp_path / "backpack.yaml"
        config.write_text("port: 8000\n")

        settings = Settings.load(str(config), environ={"PORT": "8001"})
        assert settings.port == 8001

    def test_missing_file_uses_defaults(self, tmp_path):
        settings = Settings.load(str(tmp_path / "absent.yaml"), environ={})
        assert settings == Settings()

    def test_unknown_keys_are_ignored(self):
        assert Settings.from_dict({"colour": "blue"}) == Settings()

    def test_non_mapping_file_is_rejected(self, tmp_path):
        config = tmp_path / "backpack.yaml"
        config.write_text("- just\n- a list\n")
        with pytest.raises(ValueError):
            Settings.load(str(config), environ={})
