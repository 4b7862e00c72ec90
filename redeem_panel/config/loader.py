"""
Configuration management and loading.

Settings come from a strictly validated YAML file or from environment
variables (a `.env` file is honoured).
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import find_dotenv, load_dotenv

DEFAULT_CONTACT_EMAIL = "redeem@example.com"


@dataclass(frozen=True)
class ThrottleConfig:
    """Limits for both intake throttling policies."""
    submitter_cooldown_minutes: float = 10
    origin_max_requests: int = 3
    origin_lookback_minutes: float = 15

    def __post_init__(self):
        """Validate throttle values are positive."""
        if self.submitter_cooldown_minutes <= 0:
            raise ValueError("submitter_cooldown_minutes must be > 0")
        if self.origin_max_requests <= 0:
            raise ValueError("origin_max_requests must be > 0")
        if self.origin_lookback_minutes <= 0:
            raise ValueError("origin_lookback_minutes must be > 0")


@dataclass(frozen=True)
class DiscordConfig:
    """Bot credentials and the channel where reviewers act."""
    token: Optional[str] = None
    review_channel_id: Optional[int] = None
    guild_id: Optional[int] = None
    sweep_interval_seconds: float = 30

    def __post_init__(self):
        if self.sweep_interval_seconds <= 0:
            raise ValueError("sweep_interval_seconds must be > 0")


@dataclass(frozen=True)
class WebConfig:
    """HTTP intake settings.

    `proxy_hops` is the number of reverse proxies whose X-Forwarded-For entry
    is trusted; 0 means the socket peer is the client address.
    """
    host: str = "0.0.0.0"
    port: int = 8080
    frontend_url: str = "http://localhost:8080"
    api_rate_limit: int = 5
    api_rate_window_minutes: float = 15
    proxy_hops: int = 1

    def __post_init__(self):
        if not 0 < self.port < 65536:
            raise ValueError("port must be between 1 and 65535")
        if self.api_rate_limit <= 0:
            raise ValueError("api_rate_limit must be > 0")
        if self.api_rate_window_minutes <= 0:
            raise ValueError("api_rate_window_minutes must be > 0")
        if self.proxy_hops < 0:
            raise ValueError("proxy_hops cannot be negative")


@dataclass(frozen=True)
class PanelConfig:
    """Complete application configuration."""
    contact_email: str = DEFAULT_CONTACT_EMAIL
    database_path: str = "data/redeem.db"
    throttle: ThrottleConfig = field(default_factory=ThrottleConfig)
    discord: DiscordConfig = field(default_factory=DiscordConfig)
    web: WebConfig = field(default_factory=WebConfig)

    def __post_init__(self):
        if not self.contact_email or "@" not in self.contact_email:
            raise ValueError("contact_email must be an email address")
        if not self.database_path:
            raise ValueError("database_path cannot be empty")


_SECTIONS = {
    "throttle": (ThrottleConfig, {
        "submitter_cooldown_minutes": (int, float),
        "origin_max_requests": (int,),
        "origin_lookback_minutes": (int, float),
    }),
    "discord": (DiscordConfig, {
        "token": (str,),
        "review_channel_id": (int,),
        "guild_id": (int,),
        "sweep_interval_seconds": (int, float),
    }),
    "web": (WebConfig, {
        "host": (str,),
        "port": (int,),
        "frontend_url": (str,),
        "api_rate_limit": (int,),
        "api_rate_window_minutes": (int, float),
        "proxy_hops": (int,),
    }),
}


def load_panel_config(path: str) -> PanelConfig:
    """Load and validate configuration from a YAML file.

    Strict validation: unknown keys, wrong types and non-positive limits
    are rejected instead of silently ignored.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated PanelConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a dictionary")

    allowed_top_keys = {'contact_email', 'database_path', *_SECTIONS}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    if 'contact_email' not in raw_config:
        raise ValueError("Missing required 'contact_email'")

    kwargs: Dict[str, Any] = {}
    for key in ('contact_email', 'database_path'):
        if key in raw_config:
            if not isinstance(raw_config[key], str):
                raise ValueError(f"'{key}' must be a string")
            kwargs[key] = raw_config[key]

    for section, (section_cls, fields) in _SECTIONS.items():
        if section in raw_config:
            kwargs[section] = _parse_section(raw_config[section], section, section_cls, fields)

    return PanelConfig(**kwargs)


def _parse_section(data: Any, path: str, section_cls: type, fields: Dict[str, tuple]):
    """Parse and validate one nested configuration section.

    Args:
        data: Raw section data
        path: Section name for error messages
        section_cls: Dataclass to build
        fields: Allowed keys mapped to accepted types

    Returns:
        Instance of section_cls

    Raises:
        ValueError: If the section is invalid
    """
    if not isinstance(data, dict):
        raise ValueError(f"'{path}' must be a dictionary")

    unknown_keys = set(data.keys()) - set(fields)
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")

    for key, value in data.items():
        # bool is an int subclass; never accept it for numeric settings
        if isinstance(value, bool) or not isinstance(value, fields[key]):
            raise ValueError(f"'{key}' in {path} has an invalid type")

    return section_cls(**data)


def _env_int(name: str, default: Optional[int] = None) -> Optional[int]:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be an integer")


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be a number")


def config_from_env() -> PanelConfig:
    """Build configuration from environment variables.

    Reads `.env` from the working directory first if present. Recognised
    variables: DATABASE_PATH, REDEEM_EMAIL, COOLDOWN_MINUTES,
    ORIGIN_MAX_REQUESTS, ORIGIN_WINDOW_MINUTES, DISCORD_TOKEN,
    REDEEM_LOGS_CHANNEL_ID, GUILD_ID, SWEEP_INTERVAL_SECONDS, HOST, PORT,
    FRONTEND_URL, RATE_LIMIT_MAX_REQUESTS, RATE_LIMIT_WINDOW_MINUTES,
    PROXY_HOPS.
    """
    load_dotenv(find_dotenv(usecwd=True))

    throttle = ThrottleConfig(
        submitter_cooldown_minutes=_env_float("COOLDOWN_MINUTES", 10),
        origin_max_requests=_env_int("ORIGIN_MAX_REQUESTS", 3),
        origin_lookback_minutes=_env_float("ORIGIN_WINDOW_MINUTES", 15),
    )
    discord = DiscordConfig(
        token=os.getenv("DISCORD_TOKEN") or None,
        review_channel_id=_env_int("REDEEM_LOGS_CHANNEL_ID"),
        guild_id=_env_int("GUILD_ID"),
        sweep_interval_seconds=_env_float("SWEEP_INTERVAL_SECONDS", 30),
    )
    web = WebConfig(
        host=os.getenv("HOST", "0.0.0.0"),
        port=_env_int("PORT", 8080),
        frontend_url=os.getenv("FRONTEND_URL", "http://localhost:8080"),
        api_rate_limit=_env_int("RATE_LIMIT_MAX_REQUESTS", 5),
        api_rate_window_minutes=_env_float("RATE_LIMIT_WINDOW_MINUTES", 15),
        proxy_hops=_env_int("PROXY_HOPS", 1),
    )
    return PanelConfig(
        contact_email=os.getenv("REDEEM_EMAIL", DEFAULT_CONTACT_EMAIL),
        database_path=os.getenv("DATABASE_PATH", "data/redeem.db"),
        throttle=throttle,
        discord=discord,
        web=web,
    )


def load_config(path: Optional[str] = None) -> PanelConfig:
    """YAML configuration if a path is given, environment otherwise."""
    if path:
        return load_panel_config(path)
    return config_from_env()
