"""
Central configuration loader for QuickDefine.

Reads ``config/config.yaml`` and ``.env``, merges environment-variable
overrides (``QUICKDEFINE_`` prefix), and exposes a typed, immutable
:class:`Settings` value via :func:`get_settings`.
"""

import logging
import os
import threading
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv
from sqlalchemy.engine import make_url

from quickdefine.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Resolve project root (directory containing ``config/``)
# ---------------------------------------------------------------------------

_THIS_DIR = Path(__file__).resolve().parent          # quickdefine/
_PROJECT_ROOT = _THIS_DIR.parent                     # repo root


def _project_path(*parts: str) -> Path:
    """Build an absolute path relative to the project root."""
    return _PROJECT_ROOT.joinpath(*parts)


# ---------------------------------------------------------------------------
# Nested settings dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CacheSettings:
    max_size: int = 500
    ttl_seconds: float = 3600.0


@dataclass(frozen=True)
class StoreSettings:
    enabled: bool = True
    database_url: str = "sqlite+aiosqlite:///data/quickdefine.db"
    echo: bool = False

    @property
    def resolved_database_url(self) -> str:
        """Database URL with a relative SQLite file anchored at the project root."""
        url = make_url(self.database_url)
        database = url.database
        if (
            url.get_backend_name() != "sqlite"
            or database in (None, "", ":memory:")
            or Path(database).is_absolute()
        ):
            return self.database_url
        anchored = url.set(database=str(_project_path(database)))
        return anchored.render_as_string(hide_password=False)


@dataclass(frozen=True)
class RemoteSettings:
    enabled: bool = True
    base_url: str = "https://api.dictionaryapi.dev/api/v2/entries/en"
    timeout_seconds: float = 10.0
    retry_attempts: int = 2
    retry_delay_seconds: float = 1.0
    persist_responses: bool = True


@dataclass(frozen=True)
class PreloadSettings:
    enabled: bool = True
    batch_size: int = 100
    target_count: int = 50000
    data_path: str = "data/dictionary.json"

    @property
    def resolved_data_path(self) -> Path:
        """Bundled dictionary file, relative paths anchored at the project root."""
        path = Path(self.data_path)
        return path if path.is_absolute() else _project_path(self.data_path)


@dataclass(frozen=True)
class LookupSettings:
    max_words: int = 5
    dedupe_inflight: bool = False


@dataclass(frozen=True)
class LoggingSettings:
    level: str = "INFO"
    format: str = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dataclass(frozen=True)
class Settings:
    """Top-level settings container."""
    cache: CacheSettings = field(default_factory=CacheSettings)
    store: StoreSettings = field(default_factory=StoreSettings)
    remote: RemoteSettings = field(default_factory=RemoteSettings)
    preload: PreloadSettings = field(default_factory=PreloadSettings)
    lookup: LookupSettings = field(default_factory=LookupSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)

    def __post_init__(self) -> None:
        if self.cache.max_size < 1:
            raise ConfigurationError("cache.max_size must be at least 1")
        if self.cache.ttl_seconds <= 0:
            raise ConfigurationError("cache.ttl_seconds must be positive")
        if self.remote.timeout_seconds <= 0:
            raise ConfigurationError("remote.timeout_seconds must be positive")
        if self.remote.retry_attempts < 0:
            raise ConfigurationError("remote.retry_attempts must not be negative")
        if self.remote.retry_delay_seconds < 0:
            raise ConfigurationError("remote.retry_delay_seconds must not be negative")
        if self.preload.batch_size < 1:
            raise ConfigurationError("preload.batch_size must be at least 1")
        if self.lookup.max_words < 1:
            raise ConfigurationError("lookup.max_words must be at least 1")


# ---------------------------------------------------------------------------
# YAML loader
# ---------------------------------------------------------------------------

def _load_yaml(path: Path) -> Dict[str, Any]:
    """Read and parse a YAML file.  Returns ``{}`` if the file is missing."""
    if not path.exists():
        logger.debug("Config file not found: %s", path)
        return {}
    with open(path, "r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh)
    return data if isinstance(data, dict) else {}


def _coerce_number(value: Any, field_type: Any) -> Any:
    """Widen YAML integers for float fields (``ttl_seconds: 3600``)."""
    if field_type is float and isinstance(value, int) and not isinstance(value, bool):
        return float(value)
    return value


def _apply_dict(section: Any, data: Dict[str, Any]) -> Any:
    """Return a copy of the frozen *section* with known keys from *data*."""
    types = {f.name: f.type for f in fields(section)}
    updates = {
        key: _coerce_number(value, types[key])
        for key, value in data.items()
        if key in types
    }
    known = set(types)
    unknown = set(data) - known
    if unknown:
        logger.warning(
            "Ignoring unknown config keys",
            extra={"section": type(section).__name__, "keys": sorted(unknown)},
        )
    return replace(section, **updates) if updates else section


# ---------------------------------------------------------------------------
# Env-var overrides  (QUICKDEFINE_SECTION_KEY  e.g. QUICKDEFINE_CACHE_MAX_SIZE)
# ---------------------------------------------------------------------------

_SECTIONS = ["cache", "store", "remote", "preload", "lookup", "logging"]

_TYPE_MAP = {
    int: int,
    float: float,
    bool: lambda v: v.lower() in ("1", "true", "yes"),
    str: str,
}


def _apply_env_overrides(section_name: str, section: Any) -> Any:
    """Override scalar fields via ``QUICKDEFINE_<SECTION>_<KEY>`` env vars."""
    prefix = f"QUICKDEFINE_{section_name.upper()}_"
    updates: Dict[str, Any] = {}
    for f in fields(section):
        env_key = prefix + f.name.upper()
        env_val = os.environ.get(env_key)
        if env_val is None:
            continue
        cast = _TYPE_MAP.get(f.type, str)
        try:
            updates[f.name] = cast(env_val)
            logger.debug("Env override applied: %s=%s", env_key, env_val)
        except (ValueError, TypeError):
            logger.warning("Invalid env override %s=%s", env_key, env_val)
    return replace(section, **updates) if updates else section


def load_settings(
    *,
    yaml_path: Optional[Path] = None,
    env_path: Optional[Path] = None,
) -> Settings:
    """Build a fresh :class:`Settings` from defaults, YAML, ``.env`` and env vars.

    Args:
        yaml_path: Override the YAML config file path.
        env_path: Override the ``.env`` file path.

    Returns:
        A new immutable ``Settings`` instance.

    Raises:
        ConfigurationError: If the merged values fail validation.
    """
    dotenv_path = env_path or _project_path(".env")
    load_dotenv(dotenv_path, override=False)

    config_path = yaml_path or _project_path("config", "config.yaml")
    raw = _load_yaml(config_path)

    defaults = Settings()
    sections: Dict[str, Any] = {}
    for section_name in _SECTIONS:
        section = getattr(defaults, section_name)
        section_data = raw.get(section_name)
        if isinstance(section_data, dict):
            section = _apply_dict(section, section_data)
        sections[section_name] = _apply_env_overrides(section_name, section)

    try:
        settings = Settings(**sections)
    except TypeError as exc:
        raise ConfigurationError(f"Invalid configuration: {exc}") from exc
    logger.info("Settings loaded from %s", config_path)
    return settings


# ---------------------------------------------------------------------------
# Process-wide cached value
# ---------------------------------------------------------------------------

_settings: Optional[Settings] = None
_lock = threading.Lock()


def get_settings(
    *,
    yaml_path: Optional[Path] = None,
    env_path: Optional[Path] = None,
    _force_reload: bool = False,
) -> Settings:
    """Return the cached :class:`Settings`, loading it on first use.

    Args:
        yaml_path: Override the YAML config file path (testing).
        env_path: Override the ``.env`` file path (testing).
        _force_reload: Re-read everything even if already loaded.

    Returns:
        The process-wide ``Settings`` value.
    """
    global _settings

    if _settings is not None and not _force_reload:
        return _settings

    with _lock:
        # Double-check after acquiring lock
        if _settings is not None and not _force_reload:
            return _settings
        _settings = load_settings(yaml_path=yaml_path, env_path=env_path)
        return _settings


def reset_settings() -> None:
    """Clear the cached value (for testing)."""
    global _settings
    with _lock:
        _settings = None
