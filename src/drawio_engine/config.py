"""
Server configuration from command-line flags and environment variables.

Flags win over environment variables, which win over defaults.
"""

from __future__ import annotations

import argparse
import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence

TRANSPORTS = ("stdio", "http")
PORT_RANGE = (1, 65535)
DEFAULT_PORT = 8080
DEFAULT_LOG_LEVEL = "WARNING"
DEFAULT_SHAPE_CACHE_SIZE = 10_000


class ConfigError(Exception):
    """Invalid configuration value."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


@dataclass(frozen=True)
class ServerConfig:
    transport: str = "stdio"
    http_port: int = DEFAULT_PORT
    icon_library_path: Optional[str] = None
    log_level: str = DEFAULT_LOG_LEVEL
    resolve_cache_size: int = DEFAULT_SHAPE_CACHE_SIZE


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="drawio-engine",
        description="Draw.io diagram engine exposed as an MCP tool server.",
    )
    parser.add_argument("--transport", help="stdio (default) or http")
    parser.add_argument("--http-port", help=f"port for the http transport (default {DEFAULT_PORT})")
    parser.add_argument("--icon-library", help="path to a draw.io <mxlibrary> file")
    parser.add_argument("--log-level", help=f"logging level (default {DEFAULT_LOG_LEVEL})")
    return parser


def parse_transport(value: str) -> str:
    normalized = value.strip().lower()
    if normalized not in TRANSPORTS:
        raise ConfigError(
            f'Invalid transport "{value}". Supported transports: {", ".join(TRANSPORTS)}'
        )
    return normalized


def parse_http_port(value: str) -> int:
    if not value.strip():
        raise ConfigError("--http-port requires a port number")
    try:
        port = int(value)
    except ValueError:
        raise ConfigError(f'Invalid port number "{value}". Port must be a number') from None
    lo, hi = PORT_RANGE
    if not lo <= port <= hi:
        raise ConfigError(f'Invalid port number "{value}". Port must be between {lo} and {hi}')
    return port


def parse_log_level(value: str) -> str:
    level = value.strip().upper()
    if not isinstance(logging.getLevelName(level), int):
        raise ConfigError(f'Invalid log level "{value}"')
    return level


def parse_cache_size(value: str) -> int:
    try:
        size = int(value)
    except ValueError:
        raise ConfigError(f'Invalid SHAPE_CACHE_SIZE "{value}". Must be an integer') from None
    if size < 1:
        raise ConfigError(f'Invalid SHAPE_CACHE_SIZE "{value}". Must be at least 1')
    return size


def parse_config(
    argv: Optional[Sequence[str]] = None,
    env: Optional[Mapping[str, str]] = None,
) -> ServerConfig:
    """Build a :class:`ServerConfig`; invalid values raise :class:`ConfigError`."""
    if env is None:
        env = os.environ
    args = _build_parser().parse_args(argv)

    def pick(flag: Optional[str], var: str) -> Optional[str]:
        if flag is not None:
            return flag
        value = env.get(var)
        return value if value else None

    transport = pick(args.transport, "TRANSPORT")
    port = pick(args.http_port, "HTTP_PORT")
    level = pick(args.log_level, "LOG_LEVEL")
    cache = env.get("SHAPE_CACHE_SIZE")

    return ServerConfig(
        transport=parse_transport(transport) if transport is not None else "stdio",
        http_port=parse_http_port(port) if port is not None else DEFAULT_PORT,
        icon_library_path=pick(args.icon_library, "ICON_LIBRARY_PATH"),
        log_level=parse_log_level(level) if level is not None else DEFAULT_LOG_LEVEL,
        resolve_cache_size=parse_cache_size(cache) if cache else DEFAULT_SHAPE_CACHE_SIZE,
    )
