"""On-disk element-set cache, one JSON file per catalog ID.

Entries are written by the acquisition worker after every successful fetch
and read back before going to the network.  Validity is judged from the
orbital epoch, not from when the file was written: a TLE that was fetched
a minute ago but whose epoch is two weeks old is still expired, because
propagation error grows with time since epoch, not time since download.
"""

from __future__ import annotations

import json
import logging
import os
import sys
import tempfile
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path

from sidereal import as_utc
from tle_parser import ElementRecord

logger = logging.getLogger(__name__)

APP_NAME = "orbtrack"
CACHE_DIR_ENV = "ORBTRACK_CACHE_DIR"
DEFAULT_EXPIRATION_DAYS = 7


class CacheCorrupt(Exception):
    """A cache file exists but could not be read or decoded."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CachedElementEntry:
    """An element record plus the time it was written to disk."""

    record: ElementRecord
    cached_at: datetime

    @property
    def norad_id(self) -> int:
        return self.record.norad_id


@dataclass
class TleCacheConfig:
    enabled: bool = True
    expiration_days: float = DEFAULT_EXPIRATION_DAYS
    verbose_logging: bool = False


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------

class TleCache:
    """Directory of ``<norad_id>.json`` element-set files.

    The directory is resolved and created once, at construction.  Writes go
    through a temporary file and ``os.replace`` so that a reader never sees
    a half-written entry and writers for different IDs never interfere.
    """

    def __init__(
        self,
        cache_dir: Path | str | None = None,
        expiration_days: float = DEFAULT_EXPIRATION_DAYS,
    ):
        self.cache_dir = Path(cache_dir) if cache_dir else default_cache_dir()
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self.expiration_days = expiration_days

    def path_for(self, norad_id: int) -> Path:
        return self.cache_dir / f"{norad_id}.json"

    def read(self, norad_id: int) -> CachedElementEntry | None:
        """Return the cached entry, or None on a miss.

        Raises CacheCorrupt if the file exists but cannot be decoded.
        """
        path = self.path_for(norad_id)
        if not path.exists():
            return None
        try:
            with path.open(encoding="utf-8") as fh:
                data = json.load(fh)
            return _entry_from_dict(data, norad_id)
        except (OSError, json.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
            raise CacheCorrupt(f"{path}: {exc}") from exc

    def load(self, norad_id: int) -> CachedElementEntry | None:
        """Like :meth:`read`, but a corrupt file is logged and treated as a miss."""
        try:
            return self.read(norad_id)
        except CacheCorrupt as exc:
            logger.warning("Ignoring corrupt cache entry: %s", exc)
            return None

    def write(self, entry: CachedElementEntry) -> None:
        """Create or overwrite the entry for ``entry.norad_id``."""
        path = self.path_for(entry.norad_id)
        payload = json.dumps(_entry_to_dict(entry), indent=2)
        fd, tmp_name = tempfile.mkstemp(
            dir=self.cache_dir, prefix=f".{entry.norad_id}-", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(payload)
            os.replace(tmp_name, path)
        except OSError:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def store(self, record: ElementRecord) -> CachedElementEntry:
        """Stamp *record* with the current time and write it."""
        entry = CachedElementEntry(record=record, cached_at=datetime.now(timezone.utc))
        self.write(entry)
        return entry

    def is_valid(
        self,
        entry: CachedElementEntry,
        expiration_days: float | None = None,
        now: datetime | None = None,
    ) -> bool:
        if expiration_days is None:
            expiration_days = self.expiration_days
        return is_valid(entry, expiration_days, now)


def is_valid(
    entry: CachedElementEntry,
    expiration_days: float,
    now: datetime | None = None,
) -> bool:
    """True iff (now − orbital epoch) < expiration_days."""
    now = as_utc(now) if now else datetime.now(timezone.utc)
    return now - entry.record.epoch < timedelta(days=expiration_days)


# ---------------------------------------------------------------------------
# Location
# ---------------------------------------------------------------------------

def default_cache_dir() -> Path:
    """Platform cache directory for element sets.

    $ORBTRACK_CACHE_DIR wins if set; otherwise
      Linux   : $XDG_CACHE_HOME/orbtrack/tle  (~/.cache/orbtrack/tle)
      macOS   : ~/Library/Caches/orbtrack/tle
      Windows : %LOCALAPPDATA%\\orbtrack\\tle
    """
    override = os.environ.get(CACHE_DIR_ENV)
    if override:
        return Path(override)

    home = Path.home()
    if sys.platform == "win32":
        base = Path(os.environ.get("LOCALAPPDATA", home / "AppData" / "Local"))
    elif sys.platform == "darwin":
        base = home / "Library" / "Caches"
    else:
        base = Path(os.environ.get("XDG_CACHE_HOME") or home / ".cache")
    return base / APP_NAME / "tle"


# ---------------------------------------------------------------------------
# Serialisation
# ---------------------------------------------------------------------------

def _entry_to_dict(entry: CachedElementEntry) -> dict:
    rec = entry.record
    return {
        "norad_id": rec.norad_id,
        "name": rec.name,
        "line1": rec.line1,
        "line2": rec.line2,
        "epoch_utc": as_utc(rec.epoch).isoformat(),
        "cached_at": as_utc(entry.cached_at).isoformat(),
    }


def _entry_from_dict(data: dict, norad_id: int | None = None) -> CachedElementEntry:
    stored_id = data["norad_id"]
    if isinstance(stored_id, bool) or not isinstance(stored_id, int):
        raise TypeError(f"norad_id must be an integer, got {stored_id!r}")
    if norad_id is not None and stored_id != norad_id:
        raise ValueError(f"entry is for norad_id {stored_id}, expected {norad_id}")
    name = data["name"]
    if name is not None and not isinstance(name, str):
        raise TypeError(f"name must be a string, got {type(name).__name__}")
    line1, line2 = data["line1"], data["line2"]
    if not isinstance(line1, str) or not isinstance(line2, str):
        raise TypeError("line1/line2 must be strings")
    record = ElementRecord(
        norad_id=stored_id,
        name=name,
        line1=line1,
        line2=line2,
        epoch=as_utc(datetime.fromisoformat(data["epoch_utc"])),
    )
    return CachedElementEntry(
        record=record,
        cached_at=as_utc(datetime.fromisoformat(data["cached_at"])),
    )
