from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from enum import IntEnum
from pathlib import Path

import orjson

from crawlq.utils.settings import (
    ensure_float,
    ensure_int,
    ensure_str,
    load_config_file,
    load_env,
    map_keys_to_canonical,
    shallow_merge_dicts,
)

logger = logging.getLogger(__name__)

RESOLVER_KINDS = ("proxy", "user_agent", "headers", "auth")

_DOWNLOADER_KEYS = {
    "max_connections",
    "max_connections_per_host",
    "dns_cache_ttl",
    "enable_cleanup_closed",
    "keepalive_timeout",
}


class Priority(IntEnum):
    DEFAULT = 0
    CONFIG_FILE = 10
    ENV = 20  # CRAWLQ_* variables
    PROVIDER = 30  # Provider.custom_settings
    CLI = 40
    EXPLICIT = 100


@dataclass(frozen=True)
class Settings:
    """Immutable runtime settings for crawlq.

    Canonical field names are UPPERCASE. Durations (`TIMEOUT`, `INTERVAL`,
    `RETRY_BACKOFF*`) are milliseconds. Use `Settings.load()` to layer a config file,
    the environment and explicit overrides over the defaults.
    """

    # Scheduling
    CONCURRENCY: int = 10
    INTERVAL: float = 0.0

    # Attempts
    TIMEOUT: float = 30000.0
    RETRY: int = 3
    RETRY_BACKOFF: float = 1000.0
    RETRY_BACKOFF_MAX: float = 60000.0
    RETRY_BACKOFF_JITTER: float = 0.0

    # Outgoing requests
    USER_AGENT: str | None = "crawlq/0.1"
    DEFAULT_REQUEST_HEADERS: dict[str, str] = field(
        default_factory=lambda: {
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "en",
        }
    )
    DOWNLOAD_CHUNK_SIZE: int = 65536

    # aiohttp connector options
    DOWNLOADER_SETTINGS: dict[str, int | bool | float] = field(
        default_factory=lambda: {
            "max_connections": 200,
            "max_connections_per_host": 10,
            "dns_cache_ttl": 300,
            "enable_cleanup_closed": True,
            "keepalive_timeout": 60.0,
        }
    )

    # kind -> dotted path of a resolver callable or class
    RESOLVERS: dict[str, str] = field(default_factory=dict)

    LOG_LEVEL: str = "INFO"
    LOG_FILE: str | None = None
    LOG_FORMAT: str = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    LOG_DATEFORMAT: str | None = None

    def __post_init__(self) -> None:
        """Validation and type coercion of values coming from env/CLI strings."""
        coerce = object.__setattr__

        coerce(self, "CONCURRENCY", ensure_int(self.CONCURRENCY, "CONCURRENCY", minimum=1))
        if self.CONCURRENCY > 10000:
            raise ValueError(f"CONCURRENCY must be 1-10000, got {self.CONCURRENCY}")
        coerce(self, "RETRY", ensure_int(self.RETRY, "RETRY", minimum=0))
        coerce(self, "INTERVAL", ensure_float(self.INTERVAL, "INTERVAL", minimum=0.0))

        coerce(self, "TIMEOUT", ensure_float(self.TIMEOUT, "TIMEOUT"))
        if self.TIMEOUT <= 0:
            raise ValueError(f"TIMEOUT must be > 0, got {self.TIMEOUT}")

        for name in ("RETRY_BACKOFF", "RETRY_BACKOFF_MAX", "RETRY_BACKOFF_JITTER"):
            coerce(self, name, ensure_float(getattr(self, name), name, minimum=0.0))
        if self.RETRY_BACKOFF_JITTER > 1.0:
            raise ValueError("RETRY_BACKOFF_JITTER must be within [0, 1]")

        coerce(
            self,
            "DOWNLOAD_CHUNK_SIZE",
            ensure_int(self.DOWNLOAD_CHUNK_SIZE, "DOWNLOAD_CHUNK_SIZE", minimum=1),
        )

        if self.USER_AGENT is not None:
            coerce(self, "USER_AGENT", ensure_str(self.USER_AGENT, "USER_AGENT"))

        if not isinstance(self.DEFAULT_REQUEST_HEADERS, dict):
            raise TypeError("DEFAULT_REQUEST_HEADERS must be a dict")
        coerce(
            self,
            "DEFAULT_REQUEST_HEADERS",
            {
                ensure_str(k, "DEFAULT_REQUEST_HEADERS key"): ensure_str(
                    v, "DEFAULT_REQUEST_HEADERS value"
                )
                for k, v in self.DEFAULT_REQUEST_HEADERS.items()
            },
        )

        if not isinstance(self.DOWNLOADER_SETTINGS, dict):
            raise TypeError("DOWNLOADER_SETTINGS must be a dict")
        invalid = set(self.DOWNLOADER_SETTINGS) - _DOWNLOADER_KEYS
        if invalid:
            raise ValueError(f"Invalid DOWNLOADER_SETTINGS keys: {sorted(invalid)}")
        for key in ("max_connections", "max_connections_per_host"):
            if key in self.DOWNLOADER_SETTINGS:
                ensure_int(self.DOWNLOADER_SETTINGS[key], key, minimum=0)
        if self.DOWNLOADER_SETTINGS.get("max_connections_per_host") == 0:
            logger.warning("max_connections_per_host=0 allows unlimited per host")

        if not isinstance(self.RESOLVERS, dict):
            raise TypeError("RESOLVERS must be a dict of kind -> dotted path")
        unknown = set(self.RESOLVERS) - set(RESOLVER_KINDS)
        if unknown:
            raise ValueError(
                f"Unknown resolver kind(s) {sorted(unknown)}; expected one of {RESOLVER_KINDS}"
            )

    @property
    def timeout_seconds(self) -> float:
        return self.TIMEOUT / 1000.0

    @property
    def interval_seconds(self) -> float:
        return self.INTERVAL / 1000.0

    @classmethod
    def load(cls, config_file: str | Path | None = None, **overrides: object) -> Settings:
        """Build settings from layers (low -> high).

        - builtin defaults
        - config file (TOML, or JSON for other suffixes)
        - environment (`CRAWLQ_*`)
        - keyword overrides (None values are ignored)
        """
        base = cls()

        if config_file:
            base = base.with_overrides(load_config_file(config_file), priority=Priority.CONFIG_FILE)

        env_conf = load_env()
        if env_conf:
            base = base.with_overrides(env_conf, priority=Priority.ENV)

        explicit = {k: v for k, v in overrides.items() if v is not None}
        if explicit:
            base = base.with_overrides(explicit, priority=Priority.EXPLICIT)

        return base

    def to_dict(self) -> dict[str, object]:
        """Snapshot keyed by canonical names."""
        return asdict(self)

    def to_json(self) -> bytes:
        return orjson.dumps(self.to_dict(), option=orjson.OPT_INDENT_2 | orjson.OPT_SORT_KEYS)

    def with_overrides(
        self, overrides: Mapping[str, object] | None, *, priority: Priority | None = None
    ) -> Settings:
        """Return a new Settings with `overrides` applied.

        - Keys match case-insensitively; unknown keys are ignored with a warning.
        - Dict-valued settings are merged shallowly.
        - The result is re-validated; invalid values raise.
        """
        if not overrides:
            return self

        base = asdict(self)
        known: dict[str, object] = {}
        for k, v in map_keys_to_canonical(overrides, base.keys()).items():
            if k not in base:
                logger.warning(
                    "Ignoring unknown setting %r (source=%s)",
                    k,
                    priority.name if priority is not None else "unknown",
                )
                continue
            known[k] = v

        try:
            return type(self)(**shallow_merge_dicts(base, known))
        except (TypeError, ValueError):
            logger.error(
                "Invalid settings override (source=%s): %r",
                priority.name if priority is not None else "unknown",
                known,
            )
            raise


__all__ = ["Settings", "Priority", "RESOLVER_KINDS"]
