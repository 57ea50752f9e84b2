"""
Configuration management for the RPA agent.

Defaults live on the pydantic models below. A JSON or YAML file may
override them, and ``RUNNER_``-prefixed environment variables override
both. File keys may be written in snake_case or camelCase.
"""
import json
import logging
import os
import re
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Type

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from rpa_agent.constants import DEFAULT_CONFIG_FILES, ErrorCode, LogLevel

# Plain stdlib logger: the rich logger reads this module, so it cannot be used here.
config_logger = logging.getLogger("rpa_agent.config")
if not config_logger.handlers:
    _handler = logging.StreamHandler(sys.stderr)
    _handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
    config_logger.addHandler(_handler)
    config_logger.setLevel(logging.INFO)

ENV_PREFIX = "RUNNER_"
CONFIG_PATH_ENV = "RUNNER_CONFIG_PATH"

# Flat environment names kept for compatibility, mapped onto nested fields.
LEGACY_ENV_MAP: Dict[str, Tuple[str, ...]] = {
    "RUNNER_DEFAULT_TIMEOUT_MS": ("wait_policy", "default_timeout_ms"),
    "RUNNER_NAVIGATION_TIMEOUT_MS": ("wait_policy", "navigation_timeout_ms"),
    "RUNNER_A11Y_SNAPSHOT_TIMEOUT_MS": ("wait_policy", "a11y_snapshot_timeout_ms"),
    "RUNNER_VISIBLE_TIMEOUT_MS": ("wait_policy", "visible_timeout_ms"),
    "RUNNER_SETTLE_TIMEOUT_MS": ("wait_policy", "settle_timeout_ms"),
    "RUNNER_RETRY_ENABLED": ("retry_policy", "enabled"),
    "RUNNER_RETRY_MAX_ATTEMPTS": ("retry_policy", "max_attempts"),
    "RUNNER_RETRY_BACKOFF_MS": ("retry_policy", "backoff_ms"),
    "RUNNER_HUMAN_ENABLED": ("human_policy", "enabled"),
    "RUNNER_CLICK_DELAY_MIN_MS": ("human_policy", "click_delay_ms_range", "min"),
    "RUNNER_CLICK_DELAY_MAX_MS": ("human_policy", "click_delay_ms_range", "max"),
    "RUNNER_TYPE_DELAY_MIN_MS": ("human_policy", "type_delay_ms_range", "min"),
    "RUNNER_TYPE_DELAY_MAX_MS": ("human_policy", "type_delay_ms_range", "max"),
    "RUNNER_TRACE_ENABLED": ("observability", "trace_enabled"),
    "RUNNER_TRACE_LOG_ARGS": ("observability", "trace_log_args"),
}

_config: Optional["RunnerConfig"] = None


class DelayRange(BaseModel):
    """Inclusive [min, max] range in milliseconds (or pixels for scroll steps)."""
    min: int = Field(0, ge=0)
    max: int = Field(0, ge=0)


class WaitPolicy(BaseModel):
    """Timeouts applied by the step engine."""
    default_timeout_ms: int = Field(5000, description="Fallback timeout for element actions")
    navigation_timeout_ms: int = Field(15000, description="Timeout for goto/back/reload")
    a11y_snapshot_timeout_ms: int = Field(5000, description="Timeout for accessibility snapshots")
    visible_timeout_ms: int = Field(5000, description="Timeout for wait-for-visible preconditions")
    settle_timeout_ms: int = Field(800, description="Quiet period after navigation")


class RetryPolicy(BaseModel):
    """Retry settings carried for callers; the engine itself never retries."""
    enabled: bool = False
    max_attempts: int = 2
    backoff_ms: int = 300
    retryable_errors: List[str] = Field(
        default_factory=lambda: [ErrorCode.ERR_TIMEOUT.value, ErrorCode.ERR_NOT_INTERACTABLE.value]
    )


class HumanPolicy(BaseModel):
    """Randomized pacing injected after interactive steps."""
    enabled: bool = True
    click_delay_ms_range: DelayRange = Field(default_factory=lambda: DelayRange(min=200, max=600))
    type_delay_ms_range: DelayRange = Field(default_factory=lambda: DelayRange(min=20, max=80))
    scroll_step_px_range: DelayRange = Field(default_factory=lambda: DelayRange(min=160, max=360))
    scroll_delay_ms_range: DelayRange = Field(default_factory=lambda: DelayRange(min=30, max=90))
    idle_behavior: str = "none"

    @field_validator("idle_behavior")
    @classmethod
    def validate_idle_behavior(cls, v):
        if v not in ("none", "light"):
            raise ValueError(f"Invalid idle behavior: {v}. Must be 'none' or 'light'")
        return v


class ObservabilityConfig(BaseModel):
    """Trace and step telemetry toggles."""
    trace_enabled: bool = True
    trace_log_args: bool = False
    trace_file_enabled: bool = False
    trace_file_path: str = ".artifacts/trace/trace.jsonl"
    step_log_level: str = "info"
    screenshot_on_error: bool = False

    @field_validator("step_log_level")
    @classmethod
    def validate_step_log_level(cls, v):
        if v.lower() not in ("debug", "info", "warning"):
            raise ValueError(f"Invalid step log level: {v}")
        return v.lower()


class SchedulerConfig(BaseModel):
    """Per-workspace queue settings."""
    max_concurrent: int = Field(2, ge=1, description="Workspaces allowed to execute at the same time")


class ViewportConfig(BaseModel):
    width: int = 1280
    height: int = 800


class BrowserConfig(BaseModel):
    """Playwright launch settings."""
    browser_type: str = Field("chromium", description="chromium, firefox or webkit")
    headless: bool = True
    channel: Optional[str] = None
    viewport: ViewportConfig = Field(default_factory=ViewportConfig)
    user_data_dir: Optional[str] = Field(None, description="Launch a persistent context from this directory")
    launch_args: List[str] = Field(default_factory=list)

    @field_validator("browser_type")
    @classmethod
    def validate_browser_type(cls, v):
        if v not in ("chromium", "firefox", "webkit"):
            raise ValueError(f"Invalid browser type: {v}")
        return v


class RegistryConfig(BaseModel):
    """Tab-token discovery and recording settings."""
    token_poll_attempts: int = 20
    token_poll_interval_ms: int = 200
    nav_dedupe_window_ms: int = 1200


class LoggingConfig(BaseModel):
    level: str = Field(LogLevel.INFO.value, description="Root log level")
    file: Optional[str] = Field(None, description="Optional log file path")
    emoji_enabled: bool = True
    show_timestamps: bool = True

    @field_validator("level")
    @classmethod
    def validate_level(cls, v):
        allowed = {level.value for level in LogLevel}
        if v.upper() not in allowed:
            raise ValueError(f"Invalid log level: {v}. Must be one of {sorted(allowed)}")
        return v.upper()


class ServerConfig(BaseModel):
    name: str = Field("rpa-agent", description="Name reported to MCP clients")
    ws_host: str = Field("127.0.0.1", description="Command WebSocket bind host")
    ws_port: int = Field(17333, description="Command WebSocket bind port")
    ws_path: str = Field("/ws", description="Command WebSocket route")


class RunnerConfig(BaseSettings):
    """Root configuration object."""

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_nested_delimiter="__",
        extra="ignore",
        validate_default=True,
    )

    wait_policy: WaitPolicy = Field(default_factory=WaitPolicy)
    retry_policy: RetryPolicy = Field(default_factory=RetryPolicy)
    human_policy: HumanPolicy = Field(default_factory=HumanPolicy)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    registry: RegistryConfig = Field(default_factory=RegistryConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)

    @model_validator(mode="before")
    @classmethod
    def normalize_keys(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return normalize_config_keys(data)
        return data

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        # Environment wins over values passed in from the config file.
        return env_settings, dotenv_settings, init_settings, file_secret_settings


def camel_to_snake(name: str) -> str:
    """Convert `visibleTimeoutMs` to `visible_timeout_ms`, leaving `a11y` intact."""
    return re.sub(r"(?<=[a-z0-9])([A-Z])", r"_\1", name).lower()


def normalize_config_keys(data: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively snake_case every key of a config mapping."""
    normalized: Dict[str, Any] = {}
    for key, value in data.items():
        if isinstance(value, dict):
            value = normalize_config_keys(value)
        normalized[camel_to_snake(str(key))] = value
    return normalized


def deep_merge(base: Dict[str, Any], patch: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Return `base` with `patch` merged in recursively. None values in `patch` are skipped."""
    if not patch:
        return dict(base)
    merged = dict(base)
    for key, value in patch.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        elif isinstance(value, dict):
            merged[key] = deep_merge({}, value)
        elif value is not None:
            merged[key] = value
    return merged


def expand_path(path: str) -> str:
    """Expand user and environment variables in a path."""
    return os.path.abspath(os.path.expandvars(os.path.expanduser(path)))


def find_config_file(base_dir: Optional[str] = None) -> Optional[str]:
    """Find the config file named by RUNNER_CONFIG_PATH or the first default that exists."""
    env_path = os.environ.get(CONFIG_PATH_ENV)
    if env_path:
        return expand_path(env_path)
    root = Path(base_dir) if base_dir else Path.cwd()
    for candidate in DEFAULT_CONFIG_FILES:
        path = root / candidate
        if path.is_file():
            return str(path)
    return None


def load_config_from_file(path: str) -> Dict[str, Any]:
    """Load a JSON or YAML config file into a (key-normalized) dict."""
    with open(path, "r", encoding="utf-8") as f:
        if path.endswith((".yaml", ".yml")):
            data = yaml.safe_load(f)
        else:
            data = json.load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping at the top level")
    return normalize_config_keys(data)


def _parse_env_value(value: str) -> Any:
    lowered = value.strip().lower()
    if lowered in ("true", "false"):
        return lowered == "true"
    try:
        return int(value)
    except ValueError:
        pass
    try:
        return float(value)
    except ValueError:
        return value


def load_legacy_env_overrides(environ: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """Build a nested patch from the flat RUNNER_* variables in LEGACY_ENV_MAP."""
    environ = os.environ if environ is None else environ
    patch: Dict[str, Any] = {}
    for env_name, path in LEGACY_ENV_MAP.items():
        if env_name not in environ:
            continue
        cursor = patch
        for part in path[:-1]:
            cursor = cursor.setdefault(part, {})
        cursor[path[-1]] = _parse_env_value(environ[env_name])
    return patch


def load_config(
    config_file_path: Optional[str] = None,
    load_default_files: bool = True,
    overrides: Optional[Dict[str, Any]] = None,
) -> RunnerConfig:
    """Load configuration from defaults, file and environment variables.

    Priority: nested env vars > legacy flat env vars > overrides > config file > defaults

    Args:
        config_file_path: Explicit path to a config file. Must exist.
        load_default_files: Whether to search RUNNER_CONFIG_PATH and `.rpa/` defaults.
        overrides: Extra values merged over the file, mostly for tests and the CLI.

    Returns:
        Validated RunnerConfig
    """
    file_data: Dict[str, Any] = {}
    chosen_path: Optional[str] = None
    if config_file_path:
        chosen_path = expand_path(config_file_path)
        if not os.path.isfile(chosen_path):
            raise FileNotFoundError(f"Specified configuration file not found: {config_file_path}")
    elif load_default_files:
        chosen_path = find_config_file()

    if chosen_path and os.path.isfile(chosen_path):
        try:
            file_data = load_config_from_file(chosen_path)
        except (OSError, ValueError, yaml.YAMLError) as e:
            if config_file_path:
                raise ValueError(f"Failed to load specified config: {chosen_path}") from e
            config_logger.warning(f"Ignoring unreadable config file {chosen_path}: {e}")

    data = deep_merge(file_data, normalize_config_keys(overrides or {}))
    data = deep_merge(data, load_legacy_env_overrides())

    try:
        loaded = RunnerConfig(**data)
    except ValidationError as e:
        config_logger.error("Configuration validation failed. Details below:")
        config_logger.error(str(e))
        raise

    if chosen_path:
        config_logger.debug(f"Configuration loaded from {chosen_path}")
    return loaded


def get_config() -> RunnerConfig:
    """Get the process configuration, loading it on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(config: Optional[RunnerConfig]) -> None:
    """Replace (or with None, clear) the cached process configuration."""
    global _config
    _config = config

