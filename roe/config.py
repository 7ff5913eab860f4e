"""Configuration for the Roe client.

Values are resolved in this order: explicit parameters, ``ROE_*``
environment variables, a profile in ``~/.roe/config.toml``, then defaults.
Profiles are managed with ``RoeConfigManager``.
"""

import logging
import os
import re
import sys
import tempfile
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from roe.errors import ConfigurationError

# Python 3.11+ has tomllib built-in
if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

import tomli_w

DEFAULT_BASE_URL = "https://api.roe-ai.com"
DEFAULT_TIMEOUT = 60.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_INITIAL = 0.2
DEFAULT_RETRY_MAX = 2.0
DEFAULT_RETRY_MULTIPLIER = 2.0
DEFAULT_RETRY_JITTER = 0.2
DEFAULT_MAX_IDLE_CONNS = 100
DEFAULT_MAX_IDLE_CONNS_PER_HOST = 10
DEFAULT_IDLE_CONN_TIMEOUT = 90.0
DEFAULT_REQUEST_ID_HEADER = "X-Request-ID"
DEFAULT_REDACT_HEADERS = ["Authorization", "X-API-Key", "X-Request-ID"]
DEFAULT_PROFILE = "default"

MISSING_API_KEY = "API key is required. Provide it or set ROE_API_KEY"
MISSING_ORGANIZATION_ID = "Organization ID is required. Provide it or set ROE_ORGANIZATION_ID"

RequestHook = Callable[[httpx.Request], None]
ResponseHook = Callable[[httpx.Response, bytes], None]


class RoeConfig(BaseModel):
    """Resolved client configuration.

    Durations are in seconds.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    api_key: str = Field(..., description="API key sent as a bearer token")
    organization_id: str = Field(..., description="Organization that owns the agents")
    base_url: str = Field(default=DEFAULT_BASE_URL, description="API base URL")
    timeout: float = Field(default=DEFAULT_TIMEOUT, description="Per-request timeout")
    max_retries: int = Field(default=DEFAULT_MAX_RETRIES, description="Retries after the first attempt")
    debug: bool = Field(default=False, description="Log requests and responses")

    proxy: Optional[str] = Field(None, description="HTTP(S) proxy URL")
    extra_headers: List[Tuple[str, str]] = Field(
        default_factory=list, description="Headers appended to every request"
    )

    request_id_header: Optional[str] = Field(
        default=DEFAULT_REQUEST_ID_HEADER, description="Header carrying the request id"
    )
    request_id: Optional[str] = Field(None, description="Fixed request id for every request")
    auto_request_id: bool = Field(default=True, description="Generate request ids when none is set")

    retry_initial_interval: float = Field(default=DEFAULT_RETRY_INITIAL)
    retry_max_interval: float = Field(default=DEFAULT_RETRY_MAX)
    retry_multiplier: float = Field(default=DEFAULT_RETRY_MULTIPLIER)
    retry_jitter: float = Field(default=DEFAULT_RETRY_JITTER)

    max_idle_conns: int = Field(default=DEFAULT_MAX_IDLE_CONNS)
    max_idle_conns_per_host: int = Field(default=DEFAULT_MAX_IDLE_CONNS_PER_HOST)
    idle_conn_timeout: float = Field(default=DEFAULT_IDLE_CONN_TIMEOUT)

    redact_headers: List[str] = Field(
        default_factory=lambda: list(DEFAULT_REDACT_HEADERS),
        description="Header names masked in debug logs",
    )
    before_request: List[RequestHook] = Field(default_factory=list)
    after_response: List[ResponseHook] = Field(default_factory=list)
    logger: Optional[logging.Logger] = Field(None, description="Logger for debug output")

    @field_validator("api_key")
    @classmethod
    def _require_api_key(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError(MISSING_API_KEY)
        return value

    @field_validator("organization_id")
    @classmethod
    def _require_organization_id(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError(MISSING_ORGANIZATION_ID)
        return value

    @field_validator("base_url")
    @classmethod
    def _check_base_url(cls, value: str) -> str:
        value = value.strip()
        if not value:
            return DEFAULT_BASE_URL
        return value.rstrip("/")

    @field_validator("timeout")
    @classmethod
    def _check_timeout(cls, value: float) -> float:
        if value < 0:
            raise ValueError("timeout must be non-negative")
        return value

    @field_validator("max_retries")
    @classmethod
    def _check_max_retries(cls, value: int) -> int:
        if value < 0:
            raise ValueError("max retries must be >= 0")
        return value

    @field_validator("retry_initial_interval", "retry_max_interval")
    @classmethod
    def _check_intervals(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("retry intervals must be positive")
        return value

    @field_validator("retry_multiplier")
    @classmethod
    def _check_multiplier(cls, value: float) -> float:
        if value < 1:
            raise ValueError("retry multiplier must be >= 1")
        return value

    @field_validator("retry_jitter")
    @classmethod
    def _check_jitter(cls, value: float) -> float:
        if value < 0 or value > 1:
            raise ValueError("retry jitter must be between 0 and 1")
        return value

    @field_validator("max_idle_conns", "max_idle_conns_per_host")
    @classmethod
    def _check_pool_size(cls, value: int) -> int:
        if value < 0:
            raise ValueError("max idle conns must be >= 0")
        return value

    @field_validator("idle_conn_timeout")
    @classmethod
    def _check_idle_timeout(cls, value: float) -> float:
        if value < 0:
            raise ValueError("idle connection timeout must be non-negative")
        return value


# ============================================================================
# Profiles
# ============================================================================


class RoeProfile(BaseModel):
    """Named set of settings stored in config.toml."""

    api_key: Optional[str] = None
    organization_id: Optional[str] = None
    base_url: Optional[str] = None
    timeout: Optional[float] = None
    max_retries: Optional[int] = None
    debug: Optional[bool] = None
    proxy: Optional[str] = None
    extra_headers: Dict[str, str] = Field(default_factory=dict)
    request_id_header: Optional[str] = None
    auto_request_id: Optional[bool] = None
    retry_initial_interval: Optional[float] = None
    retry_max_interval: Optional[float] = None
    retry_multiplier: Optional[float] = None
    retry_jitter: Optional[float] = None
    max_idle_conns: Optional[int] = None
    max_idle_conns_per_host: Optional[int] = None
    idle_conn_timeout: Optional[float] = None


class RoeProfiles(BaseModel):
    """Contents of config.toml."""

    profiles: Dict[str, RoeProfile] = Field(default_factory=dict)


class RoeConfigManager:
    """Manage Roe profiles in ~/.roe/config.toml.

    Example:
        >>> manager = RoeConfigManager()
        >>> manager.set_profile("staging", RoeProfile(base_url="https://staging.roe-ai.com"))
        >>> manager.get_profile("staging").base_url
        'https://staging.roe-ai.com'
    """

    DEFAULT_PATH = Path.home() / ".roe" / "config.toml"

    def __init__(self, config_path: Optional[Path] = None):
        """Initialize configuration manager.

        Args:
            config_path: Override path to config.toml (defaults to $ROE_CONFIG_FILE,
                then ~/.roe/config.toml)
        """
        if config_path:
            self.config_path = Path(config_path)
        elif os.environ.get("ROE_CONFIG_FILE"):
            self.config_path = Path(os.environ["ROE_CONFIG_FILE"])
        else:
            self.config_path = self.DEFAULT_PATH

    def read(self) -> RoeProfiles:
        """Read and parse the configuration file.

        Returns:
            RoeProfiles, empty when the file does not exist
        """
        if not self.config_path.exists():
            return RoeProfiles()

        with open(self.config_path, "rb") as f:
            data = tomllib.load(f)

        profiles: Dict[str, RoeProfile] = {}
        for name, values in data.get("profiles", {}).items():
            if isinstance(values, dict):
                profiles[name] = RoeProfile(**values)
        return RoeProfiles(profiles=profiles)

    def write(self, config: RoeProfiles) -> None:
        """Write configuration to file atomically.

        Args:
            config: Profiles to write
        """
        self.config_path.parent.mkdir(parents=True, exist_ok=True)

        data: Dict[str, Any] = {"profiles": {}}
        for name, profile in config.profiles.items():
            values = profile.model_dump(exclude_none=True)
            if not values.get("extra_headers"):
                values.pop("extra_headers", None)
            data["profiles"][name] = values

        fd, tmp_path = tempfile.mkstemp(
            dir=self.config_path.parent,
            prefix=".config-tmp-",
            suffix=".toml",
        )
        try:
            with os.fdopen(fd, "wb") as f:
                tomli_w.dump(data, f)
            os.replace(tmp_path, self.config_path)
        except Exception:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

    def get_profile(self, name: str = DEFAULT_PROFILE) -> Optional[RoeProfile]:
        return self.read().profiles.get(name)

    def set_profile(self, name: str, profile: RoeProfile) -> None:
        """Create or replace a profile."""
        config = self.read()
        config.profiles[name] = profile
        self.write(config)

    def remove_profile(self, name: str) -> bool:
        """Remove a profile.

        Returns:
            True if removed, False if not found
        """
        config = self.read()
        if name not in config.profiles:
            return False
        del config.profiles[name]
        self.write(config)
        return True

    def list_profiles(self) -> List[str]:
        return sorted(self.read().profiles)


# ============================================================================
# Environment parsing
# ============================================================================

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")

_TRUE_VALUES = {"1", "t", "true", "y", "yes", "on"}
_FALSE_VALUES = {"0", "f", "false", "n", "no", "off"}


def parse_duration(value: str, unit: float = 1.0) -> float:
    """Parse a duration into seconds.

    Accepts unit suffixes ("500ms", "2s", "1m30s") or a bare number
    interpreted in ``unit`` seconds.

    Raises:
        ValueError: If the value is neither form
    """
    text = value.strip()
    if not text:
        raise ValueError("empty duration")
    sign = 1.0
    if text[0] in "+-":
        sign = -1.0 if text[0] == "-" else 1.0
        body = text[1:]
    else:
        body = text
    pos = 0
    total = 0.0
    while pos < len(body):
        match = _DURATION_PART.match(body, pos)
        if not match:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    if body and pos == len(body):
        return sign * total
    return float(text) * unit


def parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"invalid boolean {value!r}")


def parse_headers(value: str) -> List[Tuple[str, str]]:
    """Parse ``ROE_EXTRA_HEADERS``.

    Entries are separated by ``;``, ``,`` or newlines and written as
    ``Name: value`` or ``Name=value``.

    Example:
        >>> parse_headers("X-Team: ml; X-Env=prod")
        [('X-Team', 'ml'), ('X-Env', 'prod')]
    """
    headers: List[Tuple[str, str]] = []
    for entry in re.split(r"[;,\n]", value):
        if not entry.strip():
            continue
        sep = "=" if "=" in entry else ":"
        if sep not in entry:
            raise ValueError(f"invalid header entry {entry!r}")
        key, _, val = entry.partition(sep)
        key, val = key.strip(), val.strip()
        if not key or not val:
            raise ValueError(f"invalid header entry {entry!r}")
        headers.append((key, val))
    return headers


def _env(name: str) -> Optional[str]:
    value = os.environ.get(name)
    return value if value else None


def _env_parsed(name: str, parser: Callable[[str], Any]) -> Any:
    raw = _env(name)
    if raw is None:
        return None
    try:
        return parser(raw)
    except ValueError as e:
        raise ConfigurationError(f"parse {name}: {e}") from e


def _first(*values: Any) -> Any:
    for value in values:
        if value is not None:
            return value
    return None


def _validation_message(error: ValidationError) -> str:
    messages = []
    for err in error.errors():
        cause = err.get("ctx", {}).get("error")
        messages.append(str(cause) if cause is not None else err["msg"])
    return "; ".join(messages)


def load_config(
    api_key: Optional[str] = None,
    organization_id: Optional[str] = None,
    base_url: Optional[str] = None,
    timeout: Optional[float] = None,
    max_retries: Optional[int] = None,
    *,
    debug: Optional[bool] = None,
    proxy: Optional[str] = None,
    extra_headers: Optional[Any] = None,
    request_id: Optional[str] = None,
    auto_request_id: Optional[bool] = None,
    request_id_header: Optional[str] = None,
    retry_initial_interval: Optional[float] = None,
    retry_max_interval: Optional[float] = None,
    retry_multiplier: Optional[float] = None,
    retry_jitter: Optional[float] = None,
    max_idle_conns: Optional[int] = None,
    max_idle_conns_per_host: Optional[int] = None,
    idle_conn_timeout: Optional[float] = None,
    redact_headers: Optional[List[str]] = None,
    before_request: Optional[List[RequestHook]] = None,
    after_response: Optional[List[ResponseHook]] = None,
    logger: Optional[logging.Logger] = None,
    profile: Optional[str] = None,
    config_path: Optional[Path] = None,
) -> RoeConfig:
    """Resolve a RoeConfig from parameters, environment, profile and defaults.

    Args:
        api_key: API key (falls back to ROE_API_KEY)
        organization_id: Organization id (falls back to ROE_ORGANIZATION_ID)
        base_url: API base URL (falls back to ROE_BASE_URL)
        timeout: Request timeout in seconds; 0 selects the default
        max_retries: Retries after the first attempt
        extra_headers: Mapping or list of (name, value) pairs
        profile: Profile name in config.toml (falls back to ROE_PROFILE, then "default")
        config_path: Override path to config.toml

    Returns:
        Validated RoeConfig

    Raises:
        ConfigurationError: If a value is missing, unparseable or out of range
    """
    profile_name = profile or _env("ROE_PROFILE") or DEFAULT_PROFILE
    stored = RoeConfigManager(config_path).get_profile(profile_name)
    if stored is None:
        if profile is not None:
            raise ConfigurationError(f"profile {profile_name!r} not found")
        stored = RoeProfile()

    headers: List[Tuple[str, str]] = []
    if isinstance(extra_headers, Mapping):
        headers.extend(extra_headers.items())
    elif extra_headers:
        headers.extend(tuple(h) for h in extra_headers)
    headers.extend(_env_parsed("ROE_EXTRA_HEADERS", parse_headers) or [])
    headers.extend(stored.extra_headers.items())

    resolved_timeout = _first(
        timeout or None,
        _env_parsed("ROE_TIMEOUT", parse_duration) or None,
        stored.timeout or None,
        DEFAULT_TIMEOUT,
    )

    values: Dict[str, Any] = {
        "api_key": _first(api_key or None, _env("ROE_API_KEY"), stored.api_key) or "",
        "organization_id": _first(
            organization_id or None, _env("ROE_ORGANIZATION_ID"), stored.organization_id
        )
        or "",
        "base_url": _first(base_url or None, _env("ROE_BASE_URL"), stored.base_url, DEFAULT_BASE_URL),
        "timeout": resolved_timeout,
        "max_retries": _first(
            max_retries,
            _env_parsed("ROE_MAX_RETRIES", int),
            stored.max_retries,
            DEFAULT_MAX_RETRIES,
        ),
        "debug": _first(debug, _env_parsed("ROE_DEBUG", parse_bool), stored.debug, False),
        "proxy": _first(proxy or None, _env("ROE_PROXY"), stored.proxy),
        "extra_headers": headers,
        "request_id": _first(request_id or None, _env("ROE_REQUEST_ID")),
        "auto_request_id": _first(
            auto_request_id,
            _env_parsed("ROE_AUTO_REQUEST_ID", parse_bool),
            stored.auto_request_id,
            True,
        ),
        "request_id_header": _first(
            request_id_header or None,
            _env("ROE_REQUEST_ID_HEADER"),
            stored.request_id_header,
            DEFAULT_REQUEST_ID_HEADER,
        ),
        "retry_initial_interval": _first(
            retry_initial_interval,
            _env_parsed("ROE_RETRY_INITIAL_MS", lambda v: parse_duration(v, 1e-3)) or None,
            stored.retry_initial_interval,
            DEFAULT_RETRY_INITIAL,
        ),
        "retry_max_interval": _first(
            retry_max_interval,
            _env_parsed("ROE_RETRY_MAX_MS", lambda v: parse_duration(v, 1e-3)) or None,
            stored.retry_max_interval,
            DEFAULT_RETRY_MAX,
        ),
        "retry_multiplier": _first(
            retry_multiplier,
            _env_parsed("ROE_RETRY_MULTIPLIER", float),
            stored.retry_multiplier,
            DEFAULT_RETRY_MULTIPLIER,
        ),
        "retry_jitter": _first(
            retry_jitter,
            _env_parsed("ROE_RETRY_JITTER", float),
            stored.retry_jitter,
            DEFAULT_RETRY_JITTER,
        ),
        "max_idle_conns": _first(
            max_idle_conns,
            _env_parsed("ROE_MAX_IDLE_CONNS", int),
            stored.max_idle_conns,
            DEFAULT_MAX_IDLE_CONNS,
        ),
        "max_idle_conns_per_host": _first(
            max_idle_conns_per_host,
            _env_parsed("ROE_MAX_IDLE_CONNS_PER_HOST", int),
            stored.max_idle_conns_per_host,
            DEFAULT_MAX_IDLE_CONNS_PER_HOST,
        ),
        "idle_conn_timeout": _first(
            idle_conn_timeout or None,
            _env_parsed("ROE_IDLE_CONN_TIMEOUT", parse_duration) or None,
            stored.idle_conn_timeout,
            DEFAULT_IDLE_CONN_TIMEOUT,
        ),
        "redact_headers": (
            list(redact_headers) if redact_headers is not None else list(DEFAULT_REDACT_HEADERS)
        ),
        "before_request": list(before_request or []),
        "after_response": list(after_response or []),
        "logger": logger,
    }

    try:
        return RoeConfig(**values)
    except ValidationError as e:
        raise ConfigurationError(_validation_message(e)) from e
