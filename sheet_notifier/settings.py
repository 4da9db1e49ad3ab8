"""Runtime settings read from the configuration sheet, plus the rate limiter."""

from __future__ import annotations

import logging
import math
import time
from typing import Any, Callable, Dict, List, Optional

from .google_sheets import SheetReader
from .state import RateLimitStore

LOGGER = logging.getLogger(__name__)

PACKAGE_LOGGER_NAME = "sheet_notifier"

CACHE_TTL_SECONDS = 5 * 60

ENABLE_COLOR_NOTIFICATIONS = "ENABLE_COLOR_NOTIFICATIONS"
ENABLE_NEW_RECORDS = "ENABLE_NEW_RECORDS"
NOTIFICATION_DELAY_MS = "NOTIFICATION_DELAY_MS"
MAX_NOTIFICATIONS_PER_MINUTE = "MAX_NOTIFICATIONS_PER_MINUTE"
ENABLE_DEBUG_LOGGING = "ENABLE_DEBUG_LOGGING"
SYSTEM_SHEETS_EXCLUDE = "SYSTEM_SHEETS_EXCLUDE"

SettingValue = bool | int | float | str

_TRUE_VALUES = ("TRUE", "true")
_FALSE_VALUES = ("FALSE", "false")


def default_settings(settings_sheet_name: str) -> Dict[str, SettingValue]:
    return {
        ENABLE_COLOR_NOTIFICATIONS: True,
        ENABLE_NEW_RECORDS: True,
        NOTIFICATION_DELAY_MS: 1000,
        MAX_NOTIFICATIONS_PER_MINUTE: 10,
        ENABLE_DEBUG_LOGGING: False,
        SYSTEM_SHEETS_EXCLUDE: settings_sheet_name,
    }


def coerce_setting(value: Any) -> Any:
    """Turn boolean-like cell text into bool; everything else passes through."""

    if value is True or value in _TRUE_VALUES:
        return True
    if value is False or value in _FALSE_VALUES:
        return False
    return value


def parse_settings_rows(rows: List[List[Any]]) -> Dict[str, Any]:
    parsed: Dict[str, Any] = {}
    for row in rows:
        if not row:
            continue
        key = str(row[0]).strip() if row[0] is not None else ""
        if not key:
            continue
        value = row[1] if len(row) > 1 else ""
        # Later rows override earlier ones
        parsed[key] = coerce_setting(value)
    return parsed


class SettingsStore:
    """Cached key/value settings backed by the configuration sheet.

    The cache is process-local and rebuilt in one bulk read whenever it is
    empty or older than ``ttl_seconds``. A missing configuration sheet simply
    yields the hardcoded defaults.
    """

    def __init__(
        self,
        reader: SheetReader,
        rate_limit_store: RateLimitStore,
        *,
        settings_sheet_name: str,
        ttl_seconds: float = CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._reader = reader
        self._rate_limit_store = rate_limit_store
        self._settings_sheet_name = settings_sheet_name
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._defaults = default_settings(settings_sheet_name)
        self._cache: Optional[Dict[str, Any]] = None
        self._cache_updated_at: Optional[float] = None
        self._saved_log_level: Optional[int] = None

    @property
    def settings_sheet_name(self) -> str:
        return self._settings_sheet_name

    # Cache -------------------------------------------------------------------
    def _is_fresh(self) -> bool:
        if self._cache is None or self._cache_updated_at is None:
            return False
        return (self._clock() - self._cache_updated_at) < self._ttl_seconds

    def invalidate(self) -> None:
        self._cache = None
        self._cache_updated_at = None

    def refresh(self) -> Dict[str, Any]:
        """Re-read the whole configuration sheet and rebuild the cache."""

        try:
            titles = self._reader.sheet_titles()
            if self._settings_sheet_name not in titles:
                LOGGER.info(
                    "Settings sheet '%s' not found; using default settings",
                    self._settings_sheet_name,
                )
                self._cache = dict(self._defaults)
                self._cache_updated_at = self._clock()
                return self._cache
            rows = self._reader.read_columns(self._settings_sheet_name, "A", "B")
        except Exception:
            LOGGER.exception("Failed to read settings sheet '%s'", self._settings_sheet_name)
            # Not timestamped: the next lookup retries the read
            self._cache = dict(self._defaults)
            self._cache_updated_at = None
            return self._cache

        self._cache = {**self._defaults, **parse_settings_rows(rows)}
        self._cache_updated_at = self._clock()
        LOGGER.debug("Settings cache refreshed: %s parameters", len(self._cache))
        return self._cache

    def snapshot(self) -> Dict[str, Any]:
        if not self._is_fresh():
            self.refresh()
        return dict(self._cache or {})

    # Lookups -----------------------------------------------------------------
    def get(self, key: str, default: Any = None) -> Any:
        if not self._is_fresh():
            self.refresh()
        cache = self._cache or {}
        if key in cache:
            return cache[key]
        return default

    def get_bool(self, key: str, default: bool = False) -> bool:
        value = coerce_setting(self.get(key, default))
        if isinstance(value, bool):
            return value
        LOGGER.warning("Setting %s=%r is not a boolean; using %s", key, value, default)
        return default

    def get_number(self, key: str, default: float) -> float:
        value = self.get(key, default)
        if isinstance(value, bool):
            LOGGER.warning("Setting %s=%r is not a number; using %s", key, value, default)
            return default
        if isinstance(value, (int, float)):
            return value
        try:
            return float(str(value).strip().replace(",", "."))
        except ValueError:
            LOGGER.warning("Setting %s=%r is not a number; using %s", key, value, default)
            return default

    def get_list(self, key: str, default: str = "") -> List[str]:
        raw = self.get(key, default)
        if raw is None:
            return []
        return [item.strip() for item in str(raw).split(",") if item.strip()]

    # Derived settings ----------------------------------------------------------
    def is_system_sheet(self, sheet_name: str) -> bool:
        excluded = self.get_list(SYSTEM_SHEETS_EXCLUDE, self._settings_sheet_name)
        return sheet_name in excluded or sheet_name.startswith("_")

    def is_new_records_enabled(self) -> bool:
        return self.get_bool(ENABLE_NEW_RECORDS, True)

    def is_status_notifications_enabled(self) -> bool:
        return self.get_bool(ENABLE_COLOR_NOTIFICATIONS, True)

    def notification_delay_seconds(self) -> float:
        return max(self.get_number(NOTIFICATION_DELAY_MS, 1000), 0) / 1000.0

    def apply_debug_logging(self) -> bool:
        """Switch the package logger to DEBUG while ENABLE_DEBUG_LOGGING is set.

        The level in force before the first switch is restored once the
        setting is turned off again.
        """

        enabled = self.get_bool(ENABLE_DEBUG_LOGGING, False)
        package_logger = logging.getLogger(PACKAGE_LOGGER_NAME)
        if enabled:
            if self._saved_log_level is None:
                self._saved_log_level = package_logger.level
            package_logger.setLevel(logging.DEBUG)
        elif self._saved_log_level is not None:
            package_logger.setLevel(self._saved_log_level)
            self._saved_log_level = None
        return enabled

    # Rate limiting -------------------------------------------------------------
    def check_rate_limit(self) -> bool:
        """Allow at most MAX_NOTIFICATIONS_PER_MINUTE sends per wall-clock minute."""

        max_per_minute = int(self.get_number(MAX_NOTIFICATIONS_PER_MINUTE, 10))
        minute = math.floor(self._clock() / 60)
        allowed, count = self._rate_limit_store.try_acquire(minute, max_per_minute)
        if allowed:
            LOGGER.debug("Rate limit: allowed %s/%s", count, max_per_minute)
        else:
            LOGGER.debug("Rate limit exceeded: %s/%s", count, max_per_minute)
        return allowed
