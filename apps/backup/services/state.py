import logging
from datetime import datetime, timedelta
from typing import Optional

from django.conf import settings
from django.core.cache import caches
from django.utils import timezone

from ..utils.timestamps import from_iso, to_iso

logger = logging.getLogger(__name__)


class LastBackupTracker:
    """
    Advisory "last backup" marker.

    Read once from the backing cache when constructed, written through on every
    ``set``. Last writer wins; nothing depends on it for correctness.
    """

    def __init__(self, cache, key: str = "lastBackupDate", stale_after: timedelta = timedelta(hours=24)):
        self._cache = cache
        self._key = key
        self.stale_after = stale_after
        self._value = self._load()

    @classmethod
    def from_settings(cls) -> "LastBackupTracker":
        return cls(
            caches[settings.BACKUP_STATE_CACHE],
            key=settings.BACKUP_STATE_KEY,
            stale_after=timedelta(hours=settings.BACKUP_STALE_AFTER_HOURS),
        )

    def _load(self) -> Optional[datetime]:
        raw = self._cache.get(self._key)
        if not raw:
            return None
        try:
            return from_iso(raw)
        except ValueError:
            logger.warning("Ignoring unreadable last backup marker %r", raw)
            return None

    def get(self) -> Optional[datetime]:
        return self._value

    def set(self, when: Optional[datetime] = None) -> datetime:
        when = when or timezone.now()
        self._value = when
        try:
            self._cache.set(self._key, to_iso(when), timeout=None)
        except Exception:
            logger.warning("Could not persist last backup marker", exc_info=True)
        return when

    def is_stale(self, now: Optional[datetime] = None) -> bool:
        # Never having backed up does not count as stale; only an old marker does.
        if self._value is None:
            return False
        now = now or timezone.now()
        return now - self._value > self.stale_after
