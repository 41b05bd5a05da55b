"""
Feature flag provider with an explicit cache policy.

- TTL: values are reused for ``ttl_seconds`` (default 5 minutes).
- Refresh-on-miss: an expired or absent entry is fetched from the source.
- Default-on-error: a flag the source does not know is ``default`` (off);
  a failing source yields the last cached value, or ``default``.

The clock is injectable so the policy can be tested without sleeping.
"""

from __future__ import annotations

import os
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Protocol

import yaml

from Localstays.config.settings import get_settings
from Localstays.observability.logging import get_module_logger, LogModule

logger = get_module_logger(LogModule.ENTITLEMENT)

REVIEW_COMPENSATION_FLAG = "review_compensation_enabled"


class FeatureFlagSource(Protocol):
    def get_flag(self, name: str) -> Optional[bool]:
        """Return the flag value, None when the flag is not defined. May raise."""
        ...


def _parse_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


class YamlFlagSource:
    """Reads ``flags:`` from a YAML file on every fetch."""

    def __init__(self, path: str):
        self._path = path

    def get_flag(self, name: str) -> Optional[bool]:
        if not os.path.exists(self._path):
            return None
        with open(self._path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        flags = data.get("flags") or {}
        if name not in flags or flags[name] is None:
            return None
        return _parse_bool(flags[name])


class EnvFlagSource:
    """Reads ``LS_FLAG_<NAME>`` environment variables."""

    def __init__(self, prefix: str = "LS_FLAG_"):
        self._prefix = prefix

    def get_flag(self, name: str) -> Optional[bool]:
        raw = os.getenv(f"{self._prefix}{name.upper()}")
        if raw is None or raw.strip() == "":
            return None
        return _parse_bool(raw)


@dataclass(frozen=True)
class _CachedFlag:
    value: bool
    expires_at: float


class FeatureFlagProvider:
    def __init__(
        self,
        source: FeatureFlagSource,
        *,
        ttl_seconds: float = 300,
        clock: Callable[[], float] = time.monotonic,
        default: bool = False,
    ):
        self._source = source
        self._ttl = float(ttl_seconds)
        self._clock = clock
        self._default = default
        self._cache: Dict[str, _CachedFlag] = {}
        self._lock = threading.Lock()

    def is_enabled(self, name: str) -> bool:
        now = self._clock()
        with self._lock:
            cached = self._cache.get(name)
        if cached is not None and now < cached.expires_at:
            return cached.value

        try:
            fetched = self._source.get_flag(name)
        except Exception as e:
            fallback = cached.value if cached is not None else self._default
            logger.warning(f"Feature flag '{name}' fetch failed, using {fallback}: {e}")
            return fallback

        value = self._default if fetched is None else bool(fetched)
        if fetched is None:
            logger.debug(f"Feature flag '{name}' not defined, defaulting to {value}")
        with self._lock:
            self._cache[name] = _CachedFlag(value=value, expires_at=now + self._ttl)
        return value

    def review_compensation_enabled(self) -> bool:
        return self.is_enabled(REVIEW_COMPENSATION_FLAG)

    def invalidate(self, name: Optional[str] = None) -> None:
        with self._lock:
            if name is None:
                self._cache.clear()
            else:
                self._cache.pop(name, None)


_provider: Optional[FeatureFlagProvider] = None


def get_feature_flags() -> FeatureFlagProvider:
    """Process-wide provider backed by the configured YAML file."""
    global _provider
    if _provider is None:
        cfg = get_settings().entitlement
        _provider = FeatureFlagProvider(
            YamlFlagSource(cfg.feature_flags_path),
            ttl_seconds=cfg.feature_flag_ttl_seconds,
        )
    return _provider


def set_feature_flags(provider: Optional[FeatureFlagProvider]) -> None:
    global _provider
    _provider = provider


__all__ = [
    "REVIEW_COMPENSATION_FLAG",
    "FeatureFlagSource",
    "YamlFlagSource",
    "EnvFlagSource",
    "FeatureFlagProvider",
    "get_feature_flags",
    "set_feature_flags",
]
