"""Background element-set acquisition.

A single worker thread runs its own asyncio event loop.  The host loop
talks to it through two one-way queues owned by :class:`FetchPipeline`:

    host ── FetchSingle / FetchGroup ──▶ worker
    host ◀── FetchSuccess / FetchFailure / GroupDone / GroupFailure ── worker

Each command becomes its own task, so many requests can be in flight at
once while commands are still taken off the queue one at a time.  HTTP is
done with ``requests`` in the default thread-pool executor; the event loop
never blocks on the network.

Single-object fetches are cache-first: a cached entry whose epoch is within
the expiry window is returned without touching the network.  If the
network then fails, an expired cached entry is still returned (flagged with
a warning) so the object keeps propagating while offline.
"""

from __future__ import annotations

import asyncio
import logging
import queue
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Union

import requests

from tle_cache import TleCache, TleCacheConfig
from tle_parser import ElementRecord, find_tle_pair, parse_tle_pairs, to_record

logger = logging.getLogger(__name__)

CELESTRAK_CATNR_URL = "https://celestrak.org/NORAD/elements/gp.php?CATNR={norad_id}&FORMAT=TLE"
CELESTRAK_GROUP_URL = "https://celestrak.org/NORAD/elements/gp.php?GROUP={group}&FORMAT=TLE"
HTTP_TIMEOUT_S = 30
# Lines of response body quoted in parse-failure messages
ERROR_SAMPLE_LINES = 6

# (group name, label) for commonly used CelesTrak groups
SATELLITE_GROUPS: list[tuple[str, str]] = [
    ("stations", "Space Stations"),
    ("visual", "100 (or so) Brightest"),
    ("active", "Active Satellites"),
    ("geo", "Active Geosynchronous"),
    ("amateur", "Amateur Radio"),
    ("cubesat", "CubeSats"),
    ("weather", "Weather"),
    ("noaa", "NOAA"),
    ("goes", "GOES"),
    ("resource", "Earth Resources"),
    ("science", "Space & Earth Science"),
    ("gps-ops", "GPS Operational"),
    ("glo-ops", "GLONASS Operational"),
    ("galileo", "Galileo"),
    ("beidou", "Beidou"),
    ("iridium-NEXT", "Iridium NEXT"),
    ("starlink", "Starlink"),
    ("oneweb", "OneWeb"),
    ("globalstar", "Globalstar"),
    ("last-30-days", "Last 30 Days' Launches"),
]

TRANSPORT = "transport"
PARSE = "parse"


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FetchSingle:
    norad_id: int


@dataclass(frozen=True)
class FetchGroup:
    group: str          # CelesTrak group name or full URL


@dataclass(frozen=True)
class FetchSuccess:
    record: ElementRecord
    group: str | None = None
    from_cache: bool = False
    warning: str | None = None

    @property
    def norad_id(self) -> int:
        return self.record.norad_id


@dataclass(frozen=True)
class FetchFailure:
    norad_id: int
    kind: str           # TRANSPORT | PARSE
    error: str


@dataclass(frozen=True)
class GroupDone:
    group: str
    count: int


@dataclass(frozen=True)
class GroupFailure:
    group: str
    kind: str
    error: str


FetchCommand = Union[FetchSingle, FetchGroup]
FetchResult = Union[FetchSuccess, FetchFailure, GroupDone, GroupFailure]

_STOP = object()


def group_url(group: str) -> str:
    """Resolve a group name to its CelesTrak URL; URLs pass through."""
    if group.startswith(("http://", "https://")):
        return group
    return CELESTRAK_GROUP_URL.format(group=group)


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

class FetchPipeline:
    """Owns the worker thread and both message queues.

    Parameters
    ----------
    cache        : TleCache to read from / write to, or None for no caching
    cache_config : expiry and logging settings for the cache
    http         : object with a requests-compatible ``get``; defaults to
                   the ``requests`` module itself
    """

    def __init__(
        self,
        cache: TleCache | None = None,
        cache_config: TleCacheConfig | None = None,
        http=None,
        catnr_url: str = CELESTRAK_CATNR_URL,
        timeout: float = HTTP_TIMEOUT_S,
    ):
        self.cache_config = cache_config or TleCacheConfig()
        self.cache = cache if self.cache_config.enabled else None
        self.http = http if http is not None else requests
        self.catnr_url = catnr_url
        self.timeout = timeout

        self._commands: queue.Queue = queue.Queue()
        self._results: queue.Queue = queue.Queue()
        self._thread: threading.Thread | None = None

    # -- lifecycle ---------------------------------------------------------

    def start(self) -> FetchPipeline:
        if self._thread is None:
            self._thread = threading.Thread(
                target=self._run, name="tle-worker", daemon=True
            )
            self._thread.start()
            logger.info("TLE worker started")
        return self

    def close(self, timeout: float | None = None) -> None:
        """Stop taking commands, let in-flight fetches finish, join the thread."""
        if self._thread is None:
            return
        self._commands.put(_STOP)
        self._thread.join(timeout)
        self._thread = None

    def __enter__(self) -> FetchPipeline:
        return self.start()

    def __exit__(self, *exc_info) -> None:
        self.close()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # -- host side ---------------------------------------------------------

    def submit(self, command: FetchCommand) -> None:
        self._commands.put(command)

    def fetch(self, norad_id: int) -> None:
        self.submit(FetchSingle(norad_id))

    def fetch_group(self, group: str) -> None:
        self.submit(FetchGroup(group))

    def poll(self) -> list[FetchResult]:
        """Drain every result currently queued, without blocking."""
        out: list[FetchResult] = []
        while True:
            try:
                out.append(self._results.get_nowait())
            except queue.Empty:
                return out

    def wait_result(self, timeout: float | None = None) -> FetchResult:
        """Block for the next result (raises queue.Empty on timeout)."""
        return self._results.get(timeout=timeout)

    # -- worker side -------------------------------------------------------

    def _run(self) -> None:
        asyncio.run(self._serve())

    async def _serve(self) -> None:
        tasks: set[asyncio.Task] = set()
        while True:
            command = await asyncio.to_thread(self._commands.get)
            if command is _STOP:
                break
            task = asyncio.create_task(self._dispatch(command))
            tasks.add(task)
            task.add_done_callback(tasks.discard)
        if tasks:
            await asyncio.gather(*tasks)
        logger.info("TLE worker stopped")

    async def _dispatch(self, command: FetchCommand) -> None:
        try:
            if isinstance(command, FetchSingle):
                await self._fetch_single(command.norad_id)
            elif isinstance(command, FetchGroup):
                await self._fetch_group(command.group)
            else:
                logger.error("Unknown fetch command: %r", command)
        except Exception:
            # the worker keeps serving other commands
            logger.exception("Unhandled error processing %r", command)
            if isinstance(command, FetchSingle):
                self._emit(FetchFailure(command.norad_id, TRANSPORT, "internal error"))
            elif isinstance(command, FetchGroup):
                self._emit(GroupFailure(command.group, TRANSPORT, "internal error"))

    def _emit(self, result: FetchResult) -> None:
        self._results.put(result)

    async def _fetch_single(self, norad_id: int) -> None:
        cached = await self._cache_lookup(norad_id)
        if cached is not None and self.cache.is_valid(
            cached, self.cache_config.expiration_days
        ):
            self._log_cache("cache hit norad=%d", norad_id)
            self._emit(FetchSuccess(cached.record, from_cache=True))
            return
        if cached is not None:
            self._log_cache("cache expired norad=%d", norad_id)
        else:
            self._log_cache("cache miss norad=%d", norad_id)

        url = self.catnr_url.format(norad_id=norad_id)
        try:
            status, body = await self._http_get(url)
        except requests.RequestException as exc:
            error = f"Request for {norad_id} failed: {exc}"
            if cached is not None:
                logger.warning("norad=%d %s; using expired cache entry", norad_id, error)
                self._emit(FetchSuccess(cached.record, from_cache=True, warning=error))
                return
            logger.warning("[TLE RESULT] norad=%d FAILURE: %s", norad_id, error)
            self._emit(FetchFailure(norad_id, TRANSPORT, error))
            return

        # Parse before looking at the status so error bodies can be logged
        pair = find_tle_pair(body, norad_id)
        if pair is None:
            sample = "\n".join(body.splitlines()[:ERROR_SAMPLE_LINES])
            if not _ok(status):
                kind, error = TRANSPORT, f"HTTP {status} for {norad_id}. Sample: {sample}"
            else:
                kind, error = PARSE, f"No valid TLE pair found for {norad_id}. Sample: {sample}"
            if kind == TRANSPORT and cached is not None:
                logger.warning("norad=%d %s; using expired cache entry", norad_id, error)
                self._emit(FetchSuccess(cached.record, from_cache=True, warning=error))
                return
            logger.warning("[TLE RESULT] norad=%d FAILURE: %s", norad_id, error)
            self._emit(FetchFailure(norad_id, kind, error))
            return

        if not _ok(status):
            logger.warning("norad=%d: HTTP %s but body held a valid TLE pair", norad_id, status)

        record = to_record(pair)
        await self._cache_store(record)
        logger.info(
            "[TLE RESULT] norad=%d SUCCESS epoch=%s", norad_id, record.epoch.isoformat()
        )
        self._emit(FetchSuccess(record))

    async def _fetch_group(self, group: str) -> None:
        url = group_url(group)
        try:
            status, body = await self._http_get(url)
        except requests.RequestException as exc:
            error = f"Request for group {group} failed: {exc}"
            logger.warning("[TLE GROUP RESULT] group=%s FAILURE: %s", group, error)
            self._emit(GroupFailure(group, TRANSPORT, error))
            return

        pairs = parse_tle_pairs(body)
        if not pairs:
            sample = "\n".join(body.splitlines()[:ERROR_SAMPLE_LINES])
            if not _ok(status):
                kind, error = TRANSPORT, f"HTTP {status} for group {group}. Sample: {sample}"
            else:
                kind, error = PARSE, f"No valid TLE pairs for group {group}. Sample: {sample}"
            logger.warning("[TLE GROUP RESULT] group=%s FAILURE: %s", group, error)
            self._emit(GroupFailure(group, kind, error))
            return

        if not _ok(status):
            logger.warning("group=%s: HTTP %s but body held %d TLE pairs", group, status, len(pairs))

        fetched_at = datetime.now(timezone.utc)
        for pair in pairs:
            record = to_record(pair, fallback_epoch=fetched_at)
            await self._cache_store(record)
            logger.debug("[TLE GROUP PARSED] norad=%d name=%r", record.norad_id, record.name)
            self._emit(FetchSuccess(record, group=group))

        logger.info("[TLE GROUP RESULT] group=%s SUCCESS count=%d", group, len(pairs))
        self._emit(GroupDone(group, len(pairs)))

    # -- helpers -----------------------------------------------------------

    async def _http_get(self, url: str) -> tuple[int, str]:
        resp = await asyncio.to_thread(
            self.http.get, url, headers={"accept": "text/plain"}, timeout=self.timeout
        )
        return resp.status_code, resp.text

    async def _cache_lookup(self, norad_id: int):
        if self.cache is None:
            return None
        return await asyncio.to_thread(self.cache.load, norad_id)

    async def _cache_store(self, record: ElementRecord) -> None:
        if self.cache is None:
            return
        try:
            await asyncio.to_thread(self.cache.store, record)
        except OSError as exc:
            logger.warning("norad=%d: cache write failed: %s", record.norad_id, exc)

    def _log_cache(self, msg: str, *args) -> None:
        level = logging.INFO if self.cache_config.verbose_logging else logging.DEBUG
        logger.log(level, msg, *args)


def _ok(status: int) -> bool:
    return 200 <= status < 300
