"""Tests for flag/environment configuration."""

import pytest

from drawio_engine.config import (
    DEFAULT_PORT,
    ConfigError,
    ServerConfig,
    parse_config,
    parse_http_port,
    parse_transport,
)


def test_defaults() -> None:
    assert parse_config([], {}) == ServerConfig()
    cfg = parse_config([], {})
    assert cfg.transport == "stdio"
    assert cfg.http_port == DEFAULT_PORT
    assert cfg.icon_library_path is None
    assert cfg.log_level == "WARNING"


def test_environment() -> None:
    cfg = parse_config([], {
        "TRANSPORT": "HTTP",
        "HTTP_PORT": "9000",
        "ICON_LIBRARY_PATH": "/tmp/icons.xml",
        "LOG_LEVEL": "debug",
        "SHAPE_CACHE_SIZE": "500",
    })
    assert cfg == ServerConfig("http", 9000, "/tmp/icons.xml", "DEBUG", 500)


def test_flags_beat_environment() -> None:
    cfg = parse_config(
        ["--transport", "stdio", "--http-port", "3000", "--icon-library", "a.xml", "--log-level", "INFO"],
        {"TRANSPORT": "http", "HTTP_PORT": "9000", "ICON_LIBRARY_PATH": "b.xml", "LOG_LEVEL": "ERROR"},
    )
    assert cfg.transport == "stdio"
    assert cfg.http_port == 3000
    assert cfg.icon_library_path == "a.xml"
    assert cfg.log_level == "INFO"


def test_empty_environment_values_ignored() -> None:
    cfg = parse_config([], {"TRANSPORT": "", "HTTP_PORT": "", "SHAPE_CACHE_SIZE": ""})
    assert cfg == ServerConfig()


class TestInvalidValues:
    def test_transport(self) -> None:
        with pytest.raises(ConfigError, match="Supported transports: stdio, http"):
            parse_transport("sse")

    def test_port_not_a_number(self) -> None:
        with pytest.raises(ConfigError, match="must be a number"):
            parse_http_port("abc")

    @pytest.mark.parametrize("port", ["0", "65536", "-1"])
    def test_port_out_of_range(self, port: str) -> None:
        with pytest.raises(ConfigError, match="between 1 and 65535"):
            parse_http_port(port)

    def test_empty_port_flag(self) -> None:
        with pytest.raises(ConfigError, match="requires a port"):
            parse_config(["--http-port", ""], {})

    def test_log_level(self) -> None:
        with pytest.raises(ConfigError, match="log level"):
            parse_config(["--log-level", "loud"], {})

    def test_cache_size(self) -> None:
        with pytest.raises(ConfigError, match="at least 1"):
            parse_config([], {"SHAPE_CACHE_SIZE": "0"})
        with pytest.raises(ConfigError, match="integer"):
            parse_config([], {"SHAPE_CACHE_SIZE": "lots"})
