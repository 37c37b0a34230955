"""Configuration for the EasyProject MCP server.

Reads a TOML file (``config.toml`` in the working directory unless
``EASYPROJECT_MCP_CONFIG`` or an explicit path says otherwise), applies
environment overrides, and returns an immutable :class:`AppConfig`.

Environment overrides:
    EASYPROJECT_API_KEY        -> easyproject.api_key
    EASYPROJECT_BASE_URL       -> easyproject.base_url
    EASYPROJECT_MCP_LOG_LEVEL  -> logging.level
"""

from __future__ import annotations

import logging
import os
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

from easyproject_mcp.errors import ConfigError

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "config.toml"
CONFIG_PATH_ENV = "EASYPROJECT_MCP_CONFIG"

_MAX_RETRIES_CAP = 10
_MAX_DEFAULT_LIMIT = 100
_LOG_LEVELS = frozenset({"debug", "info", "warning", "error", "critical"})


class TransportType(str, Enum):
    STDIO = "stdio"
    WEBSOCKET = "websocket"


class AuthType(str, Enum):
    API_KEY = "api_key"


class LogFormat(str, Enum):
    JSON = "json"
    PRETTY = "pretty"


class EntityKind(str, Enum):
    """Resource families with their own cache TTL."""

    PROJECT = "project"
    ISSUE = "issue"
    USER = "user"
    TIME_ENTRY = "time_entry"
    MILESTONE = "milestone"


class ToolCategory(str, Enum):
    PROJECTS = "projects"
    ISSUES = "issues"
    USERS = "users"
    TIME_ENTRIES = "time_entries"
    MILESTONES = "milestones"
    REPORTS = "reports"


@dataclass(frozen=True)
class ServerConfig:
    name: str = "EasyProject MCP Server"
    version: str = "1.0.0"
    transport: TransportType = TransportType.STDIO
    websocket_port: int | None = None


@dataclass(frozen=True)
class EasyProjectConfig:
    base_url: str = "https://your-easyproject-instance.com"
    api_version: str = "v1"
    auth_type: AuthType = AuthType.API_KEY
    api_key: str | None = None
    api_key_header: str = "X-Redmine-API-Key"


@dataclass(frozen=True)
class HttpConfig:
    timeout_seconds: float = 30
    max_retries: int = 3
    retry_delay_seconds: float = 1
    user_agent: str = "EasyProject-MCP-Server/1.0.0"


@dataclass(frozen=True)
class RateLimitConfig:
    enabled: bool = True
    requests_per_minute: int = 60
    burst_size: int = 10


@dataclass(frozen=True)
class CacheConfig:
    enabled: bool = True
    ttl_seconds: float = 300
    max_entries: int = 1000
    project_ttl: float = 600
    user_ttl: float = 1800
    issue_ttl: float = 60
    time_entry_ttl: float = 30
    milestone_ttl: float = 600
    per_entity_ttl: bool = False

    def ttl_for(self, kind: EntityKind) -> float:
        """Return the TTL (seconds) configured for *kind*."""
        table = {
            EntityKind.PROJECT: self.project_ttl,
            EntityKind.ISSUE: self.issue_ttl,
            EntityKind.USER: self.user_ttl,
            EntityKind.TIME_ENTRY: self.time_entry_ttl,
            EntityKind.MILESTONE: self.milestone_ttl,
        }
        return table[kind]


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "info"
    format: LogFormat = LogFormat.JSON
    target: str = "stderr"


@dataclass(frozen=True)
class ToolGroupConfig:
    enabled: bool = True
    default_limit: int = 25


def _default_tool_groups() -> dict[ToolCategory, ToolGroupConfig]:
    return {category: ToolGroupConfig() for category in ToolCategory}


@dataclass(frozen=True)
class AppConfig:
    server: ServerConfig = field(default_factory=ServerConfig)
    easyproject: EasyProjectConfig = field(default_factory=EasyProjectConfig)
    http: HttpConfig = field(default_factory=HttpConfig)
    rate_limiting: RateLimitConfig = field(default_factory=RateLimitConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    tools: dict[ToolCategory, ToolGroupConfig] = field(default_factory=_default_tool_groups)

    def tool_group(self, category: ToolCategory) -> ToolGroupConfig:
        return self.tools.get(category, ToolGroupConfig())

    def validate(self) -> None:
        """Raise ConfigError on the first invalid setting."""
        parsed = urlparse(self.easyproject.base_url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            msg = f"easyproject.base_url is not a valid http(s) URL: {self.easyproject.base_url!r}"
            raise ConfigError(msg)
        if self.easyproject.auth_type is AuthType.API_KEY and not (self.easyproject.api_key or "").strip():
            msg = "easyproject.api_key is required for auth_type = 'api_key' (or set EASYPROJECT_API_KEY)"
            raise ConfigError(msg)
        if not self.easyproject.api_key_header.strip():
            msg = "easyproject.api_key_header must not be empty"
            raise ConfigError(msg)
        if self.server.transport is TransportType.WEBSOCKET and self.server.websocket_port is None:
            msg = "server.websocket_port is required for the websocket transport"
            raise ConfigError(msg)
        if self.http.timeout_seconds <= 0:
            msg = "http.timeout_seconds must be greater than 0"
            raise ConfigError(msg)
        if self.http.max_retries < 0 or self.http.max_retries > _MAX_RETRIES_CAP:
            msg = f"http.max_retries must be between 0 and {_MAX_RETRIES_CAP}"
            raise ConfigError(msg)
        if self.rate_limiting.enabled:
            if self.rate_limiting.requests_per_minute < 1:
                msg = "rate_limiting.requests_per_minute must be >= 1"
                raise ConfigError(msg)
            if self.rate_limiting.burst_size < 1:
                msg = "rate_limiting.burst_size must be >= 1"
                raise ConfigError(msg)
        if self.cache.enabled:
            if self.cache.ttl_seconds <= 0:
                msg = "cache.ttl_seconds must be greater than 0"
                raise ConfigError(msg)
            if self.cache.max_entries < 1:
                msg = "cache.max_entries must be >= 1"
                raise ConfigError(msg)
            for kind in EntityKind:
                if self.cache.ttl_for(kind) <= 0:
                    msg = f"cache.{kind.value}_ttl must be greater than 0"
                    raise ConfigError(msg)
        if self.logging.level.lower() not in _LOG_LEVELS:
            msg = f"logging.level must be one of {sorted(_LOG_LEVELS)}, got {self.logging.level!r}"
            raise ConfigError(msg)
        for category, group in self.tools.items():
            if not 1 <= group.default_limit <= _MAX_DEFAULT_LIMIT:
                msg = f"tools.{category.value}.default_limit must be between 1 and {_MAX_DEFAULT_LIMIT}"
                raise ConfigError(msg)

    def redacted(self) -> dict[str, Any]:
        """Summary safe to print: the API key is masked."""
        key = self.easyproject.api_key
        return {
            "server": {"name": self.server.name, "version": self.server.version, "transport": self.server.transport.value},
            "base_url": self.easyproject.base_url,
            "api_key": f"{key[:4]}…" if key else None,
            "timeout_seconds": self.http.timeout_seconds,
            "rate_limiting": (
                f"{self.rate_limiting.requests_per_minute}/min, burst {self.rate_limiting.burst_size}"
                if self.rate_limiting.enabled
                else "disabled"
            ),
            "cache": f"ttl {self.cache.ttl_seconds}s, max {self.cache.max_entries}" if self.cache.enabled else "disabled",
            "tools": sorted(c.value for c, g in self.tools.items() if g.enabled),
        }


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def _build_section(cls: type[Any], section: str, data: Any) -> Any:
    """Build dataclass *cls* from a TOML table, rejecting unknown keys."""
    if not isinstance(data, dict):
        msg = f"[{section}] must be a table"
        raise ConfigError(msg)
    known = {f.name: f for f in fields(cls)}
    kwargs: dict[str, Any] = {}
    for key, value in data.items():
        if key not in known:
            msg = f"Unknown config key: {section}.{key}"
            raise ConfigError(msg)
        kwargs[key] = _coerce(known[key].type, f"{section}.{key}", value)
    return cls(**kwargs)


_ENUMS: dict[str, type[Enum]] = {
    "TransportType": TransportType,
    "AuthType": AuthType,
    "LogFormat": LogFormat,
}


def _coerce(type_name: Any, dotted: str, value: Any) -> Any:
    # Field types are strings under ``from __future__ import annotations``.
    type_name = str(type_name)
    if type_name in _ENUMS:
        try:
            return _ENUMS[type_name](value)
        except ValueError:
            allowed = ", ".join(m.value for m in _ENUMS[type_name])
            msg = f"{dotted} must be one of: {allowed} (got {value!r})"
            raise ConfigError(msg) from None
    if type_name == "bool":
        if not isinstance(value, bool):
            msg = f"{dotted} must be a boolean"
            raise ConfigError(msg)
        return value
    if type_name in ("int", "int | None"):
        if value is None and type_name == "int | None":
            return None
        if isinstance(value, bool) or not isinstance(value, int):
            msg = f"{dotted} must be an integer"
            raise ConfigError(msg)
        return value
    if type_name == "float":
        if isinstance(value, bool) or not isinstance(value, int | float):
            msg = f"{dotted} must be a number"
            raise ConfigError(msg)
        return value
    if type_name in ("str", "str | None"):
        if not isinstance(value, str):
            msg = f"{dotted} must be a string"
            raise ConfigError(msg)
        return value
    return value


_SECTIONS: dict[str, type[Any]] = {
    "server": ServerConfig,
    "easyproject": EasyProjectConfig,
    "http": HttpConfig,
    "rate_limiting": RateLimitConfig,
    "cache": CacheConfig,
    "logging": LoggingConfig,
}


def config_from_dict(data: Mapping[str, Any]) -> AppConfig:
    """Build an AppConfig from already-parsed TOML data."""
    sections: dict[str, Any] = {}
    tools = _default_tool_groups()
    for name, table in data.items():
        if name == "tools":
            if not isinstance(table, dict):
                msg = "[tools] must be a table"
                raise ConfigError(msg)
            for category_name, group in table.items():
                try:
                    category = ToolCategory(category_name)
                except ValueError:
                    msg = f"Unknown tool category: tools.{category_name}"
                    raise ConfigError(msg) from None
                tools[category] = _build_section(ToolGroupConfig, f"tools.{category_name}", group)
            continue
        if name not in _SECTIONS:
            msg = f"Unknown config section: [{name}]"
            raise ConfigError(msg)
        sections[name] = _build_section(_SECTIONS[name], name, table)
    return AppConfig(**sections, tools=tools)


def _apply_env(config: AppConfig, env: Mapping[str, str]) -> AppConfig:
    easyproject = config.easyproject
    if env.get("EASYPROJECT_API_KEY"):
        easyproject = replace(easyproject, api_key=env["EASYPROJECT_API_KEY"])
    if env.get("EASYPROJECT_BASE_URL"):
        easyproject = replace(easyproject, base_url=env["EASYPROJECT_BASE_URL"])
    log_config = config.logging
    if env.get("EASYPROJECT_MCP_LOG_LEVEL"):
        log_config = replace(log_config, level=env["EASYPROJECT_MCP_LOG_LEVEL"])
    return replace(config, easyproject=easyproject, logging=log_config)


def load_config(path: Path | None = None, env: Mapping[str, str] | None = None) -> AppConfig:
    """Read config from TOML + environment. Does not validate.

    An explicit *path* must exist; the implicit ``./config.toml`` is optional.
    """
    env = os.environ if env is None else env
    explicit = path is not None or bool(env.get(CONFIG_PATH_ENV))
    config_path = path or Path(env.get(CONFIG_PATH_ENV) or CONFIG_FILENAME)

    data: dict[str, Any] = {}
    if config_path.exists():
        try:
            data = tomllib.loads(config_path.read_text(encoding="utf-8"))
        except OSError as exc:
            msg = f"Failed to read {config_path}: {exc}"
            raise ConfigError(msg) from exc
        except tomllib.TOMLDecodeError as exc:
            msg = f"Failed to parse {config_path}: {exc}"
            raise ConfigError(msg) from exc
    elif explicit:
        msg = f"Config file not found: {config_path}"
        raise ConfigError(msg)
    else:
        logger.debug("No %s found, using defaults and environment", config_path)

    return _apply_env(config_from_dict(data), env)
