from __future__ import annotations
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlencode

import yaml

from shared.log import get_logger

logger = get_logger(__name__)

ENVIRONMENTS = ("development", "test", "production")


class ConfigError(Exception):
    """Raised when client configuration is missing or invalid."""
    pass


def default_config_path() -> Path:
    return Path.home() / ".roomchat" / "config.yaml"


@dataclass(frozen=True)
class ClientConfig:
    """
    Where and how the client dials the chat server.

    Resolution order: defaults, then the YAML config file, then
    ROOMCHAT_* environment variables.
    """
    env: str = "development"
    ws_url: Optional[str] = None     # full base URL, required in production
    ws_host: str = "localhost"
    ws_port: int = 8765
    ws_secure: bool = False
    open_timeout: float = 10.0
    ping_interval: float = 15.0
    ping_timeout: float = 45.0

    def __post_init__(self) -> None:
        if self.env not in ENVIRONMENTS:
            raise ConfigError(f"env must be one of {', '.join(ENVIRONMENTS)}, got {self.env!r}")
        if self.ws_url is not None and not self.ws_url.startswith(("ws://", "wss://")):
            raise ConfigError(f"ws_url must be a ws:// or wss:// URL, got {self.ws_url!r}")
        if not isinstance(self.ws_port, int) or isinstance(self.ws_port, bool) or not 0 < self.ws_port <= 65535:
            raise ConfigError(f"ws_port must be an integer between 1 and 65535, got {self.ws_port!r}")
        for name in ("open_timeout", "ping_interval", "ping_timeout"):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be positive")

    def base_url(self) -> str:
        """Base WebSocket URL, without trailing slash."""
        if self.env == "production":
            if not self.ws_url:
                raise ConfigError("ROOMCHAT_WS_URL is required in production.")
            return self.ws_url.rstrip("/")
        if self.ws_url:
            return self.ws_url.rstrip("/")
        scheme = "wss" if self.ws_secure else "ws"
        return f"{scheme}://{self.ws_host}:{self.ws_port}"

    def build_endpoint(self, room_id: str, user_name: str) -> str:
        return build_endpoint(self.base_url(), room_id, user_name)

    def connect_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments for websockets.connect()."""
        return {
            "open_timeout": self.open_timeout,
            "ping_interval": self.ping_interval,
            "ping_timeout": self.ping_timeout,
        }


def build_endpoint(base_url: str, room_id: str, user_name: str) -> str:
    """ws://host:port/?roomId=...&userName=..."""
    query = urlencode({"roomId": room_id, "userName": user_name})
    return f"{base_url.rstrip('/')}/?{query}"


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off", ""):
        return False
    raise ConfigError(f"Expected a boolean, got {value!r}")


def _from_environ(environ: Mapping[str, str]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if environ.get("ROOMCHAT_ENV"):
        overrides["env"] = environ["ROOMCHAT_ENV"].strip().lower()
    if environ.get("ROOMCHAT_WS_URL"):
        overrides["ws_url"] = environ["ROOMCHAT_WS_URL"].strip()
    if environ.get("ROOMCHAT_WS_HOST"):
        overrides["ws_host"] = environ["ROOMCHAT_WS_HOST"].strip()
    if environ.get("ROOMCHAT_WS_PORT"):
        try:
            overrides["ws_port"] = int(environ["ROOMCHAT_WS_PORT"])
        except ValueError:
            raise ConfigError(f"ROOMCHAT_WS_PORT must be an integer, got {environ['ROOMCHAT_WS_PORT']!r}")
    if environ.get("ROOMCHAT_WS_SECURE"):
        overrides["ws_secure"] = _parse_bool(environ["ROOMCHAT_WS_SECURE"])
    return overrides


def _from_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.debug("No config file at %s", path)
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}")
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping")

    known = {f.name for f in fields(ClientConfig)}
    unknown = set(data) - known
    if unknown:
        logger.warning("Ignoring unknown config keys in %s: %s", path, ", ".join(sorted(unknown)))
    return {k: v for k, v in data.items() if k in known}


def load_config(path: Optional[Path] = None, environ: Optional[Mapping[str, str]] = None) -> ClientConfig:
    """Resolve the client configuration from file and environment."""
    environ = os.environ if environ is None else environ
    config_path = path if path is not None else default_config_path()
    values = _from_yaml(config_path)
    values.update(_from_environ(environ))
    try:
        config = ClientConfig(**values)
    except TypeError as e:
        raise ConfigError(f"Invalid configuration: {e}")
    logger.debug("Loaded config: env=%s base=%s", config.env, config.ws_url or f"{config.ws_host}:{config.ws_port}")
    return config


def with_server(config: ClientConfig, ws_url: Optional[str]) -> ClientConfig:
    """Copy of config pointed at an explicit server URL (CLI --server)."""
    if not ws_url:
        return config
    return replace(config, ws_url=ws_url)
