"""Tests for dualhttpd/config.py - server configuration."""

from pathlib import Path

import pytest
import yaml

from dualhttpd.config import (
    CONFIG_ENV_VAR,
    DEFAULT_HOST,
    DEFAULT_HTTP_PORT,
    DEFAULT_HTTPS_PORT,
    DEFAULT_SHUTDOWN_GRACE,
    ConfigError,
    ServerConfig,
    load_config,
)


class TestServerConfig:
    """Tests for ServerConfig defaults and validation."""

    def test_defaults(self):
        config = ServerConfig()

        assert config.host == DEFAULT_HOST == "127.0.0.1"
        assert config.http_port == DEFAULT_HTTP_PORT
        assert config.https_port == DEFAULT_HTTPS_PORT
        assert config.cert_path == Path("cert.pem")
        assert config.key_path == Path("key.pem")
        assert config.static_dir == Path("static")
        assert config.shutdown_grace == DEFAULT_SHUTDOWN_GRACE

    def test_string_paths_converted(self):
        config = ServerConfig(cert_path="tls/c.pem", key_path="tls/k.pem", static_dir="assets")

        assert config.cert_path == Path("tls/c.pem")
        assert config.key_path == Path("tls/k.pem")
        assert config.static_dir == Path("assets")

    @pytest.mark.parametrize("port", [-1, 65536, "80", True])
    def test_invalid_port(self, port):
        with pytest.raises(ConfigError, match="http_port"):
            ServerConfig(http_port=port)

    def test_invalid_grace(self):
        with pytest.raises(ConfigError, match="shutdown_grace"):
            ServerConfig(shutdown_grace=-1)

    def test_invalid_path_type(self):
        with pytest.raises(ConfigError, match="cert_path"):
            ServerConfig(cert_path=443)

    def test_with_overrides_skips_none(self):
        config = ServerConfig().with_overrides(http_port=9000, host=None)

        assert config.http_port == 9000
        assert config.host == DEFAULT_HOST

    def test_immutable(self):
        config = ServerConfig()
        with pytest.raises(AttributeError):
            config.http_port = 1


class TestFromYaml:
    """Tests for ServerConfig.from_yaml."""

    def test_full_file(self, tmp_path):
        path = tmp_path / "dualhttpd.yaml"
        path.write_text(yaml.dump({
            "host": "0.0.0.0",
            "http_port": 80,
            "https_port": 443,
            "tls": {"cert": "/etc/dualhttpd/cert.pem", "key": "/etc/dualhttpd/key.pem"},
            "static_dir": "/srv/static",
            "shutdown_grace": 2.5,
        }))

        config = ServerConfig.from_yaml(path)

        assert config.host == "0.0.0.0"
        assert config.http_port == 80
        assert config.https_port == 443
        assert config.cert_path == Path("/etc/dualhttpd/cert.pem")
        assert config.key_path == Path("/etc/dualhttpd/key.pem")
        assert config.static_dir == Path("/srv/static")
        assert config.shutdown_grace == 2.5

    def test_partial_file_keeps_defaults(self, tmp_path):
        path = tmp_path / "dualhttpd.yaml"
        path.write_text("http_port: 9080\n")

        config = ServerConfig.from_yaml(path)

        assert config.http_port == 9080
        assert config.https_port == DEFAULT_HTTPS_PORT

    def test_empty_file(self, tmp_path):
        path = tmp_path / "dualhttpd.yaml"
        path.write_text("")
        assert ServerConfig.from_yaml(path) == ServerConfig()

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="Cannot read config file"):
            ServerConfig.from_yaml(tmp_path / "missing.yaml")

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "dualhttpd.yaml"
        path.write_text("http_port: [unclosed\n")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            ServerConfig.from_yaml(path)

    def test_top_level_not_mapping(self, tmp_path):
        path = tmp_path / "dualhttpd.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigError, match="mapping"):
            ServerConfig.from_yaml(path)

    def test_bad_value_names_file(self, tmp_path):
        path = tmp_path / "dualhttpd.yaml"
        path.write_text("https_port: not-a-port\n")
        with pytest.raises(ConfigError) as exc_info:
            ServerConfig.from_yaml(path)
        assert str(path) in str(exc_info.value)
        assert "https_port" in str(exc_info.value)


class TestLoadConfig:
    """Tests for load_config resolution order."""

    def test_defaults_without_file(self, monkeypatch):
        monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
        assert load_config() == ServerConfig()

    def test_env_var(self, tmp_path, monkeypatch):
        path = tmp_path / "env.yaml"
        path.write_text("http_port: 7000\n")
        monkeypatch.setenv(CONFIG_ENV_VAR, str(path))

        assert load_config().http_port == 7000

    def test_explicit_path_wins(self, tmp_path, monkeypatch):
        env_path = tmp_path / "env.yaml"
        env_path.write_text("http_port: 7000\n")
        explicit = tmp_path / "explicit.yaml"
        explicit.write_text("http_port: 7001\n")
        monkeypatch.setenv(CONFIG_ENV_VAR, str(env_path))

        assert load_config(explicit).http_port == 7001
