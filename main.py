"""Headless orbital tracker: CLI entry point.

Runs the tracking core without a renderer: fetches element sets in the
background, advances the simulation clock every tick, and prints each
object's sub-point and which observers have line of sight to it.

Usage examples
--------------
  python main.py
  python main.py --norad 25544 --norad 48274 --lat 51.5074 --lon -0.1278
  python main.py --group stations --cities --time-scale 60 --duration 30
  python main.py --norad 25544 --format json --ticks 1
  python main.py --norad 25544 --coverage --min-elevation 25
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time as time_mod
from datetime import datetime

import numpy as np

from coordinates import EARTH_RADIUS_KM, geodetic_to_ecef, subpoint
from coverage import CoverageParameters, surface_coverage_radius_km
from moon import moon_position_ecef
from tle_cache import DEFAULT_EXPIRATION_DAYS, TleCache, TleCacheConfig
from tle_fetcher import FetchPipeline
from tracker import ObjectState, SimulationClock, Tracker
from visibility import MAJOR_CITIES, observers_ecef, visibility_matrix

ISS_NORAD_ID = 25544
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        description="Track orbiting objects and report line of sight from ground observers.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    p.add_argument("--norad", type=int, action="append", dest="norad_ids",
                   help="Catalog ID to track (repeatable; default: ISS)")
    p.add_argument("--group", action="append", dest="groups", default=[],
                   help="CelesTrak group name or URL to track (repeatable)")
    p.add_argument("--lat", type=float, help="Observer latitude, degrees North")
    p.add_argument("--lon", type=float, help="Observer longitude, degrees East")
    p.add_argument("--cities", action="store_true",
                   help="Add the built-in table of major cities as observers")
    p.add_argument("--duration", type=float, default=10.0,
                   help="Real seconds to run for")
    p.add_argument("--tick", type=float, default=1.0,
                   help="Real seconds between ticks")
    p.add_argument("--ticks", type=int, default=None,
                   help="Stop after this many ticks (overrides --duration)")
    p.add_argument("--time-scale", type=float, default=1.0, dest="time_scale",
                   help="Simulated seconds per real second")
    p.add_argument("--start", type=datetime.fromisoformat, default=None,
                   help="Simulation start instant, ISO-8601 (default: now)")
    p.add_argument("--dut1", type=float, default=0.0,
                   help="UT1 - UTC in seconds, used for sidereal time")
    p.add_argument("--cache-dir", default=None, dest="cache_dir",
                   help="Element-set cache directory (default: platform cache dir)")
    p.add_argument("--no-cache", action="store_true", dest="no_cache",
                   help="Always fetch from the network")
    p.add_argument("--expiry-days", type=float, default=DEFAULT_EXPIRATION_DAYS,
                   dest="expiry_days",
                   help="Cached element sets older than this (by epoch) are refetched")
    p.add_argument("--wait", type=float, default=15.0,
                   help="Max real seconds to wait for the first element sets")
    p.add_argument("--coverage", action="store_true",
                   help="Report each object's coverage footprint radius")
    p.add_argument("--min-elevation", type=float, dest="min_elevation",
                   default=CoverageParameters.min_elevation_deg,
                   help="Footprint mask angle above the horizon, degrees")
    p.add_argument("--format", choices=["table", "json"], default="table",
                   help="Output format")
    p.add_argument("--verbose", action="store_true",
                   help="Debug logging, including cache hits and misses")
    return p


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------

def _fmt_time(dt: datetime) -> str:
    return dt.strftime("%Y-%m-%d %H:%M:%S")


def _fmt_age(seconds: float | None) -> str:
    return "-" if seconds is None else f"{seconds:.0f}s"


def _footprint_km(st: ObjectState, params: CoverageParameters) -> float | None:
    if st.position_ecef is None:
        return None
    _, _, alt = subpoint(st.position_ecef)
    if alt <= 0.0:
        return None
    return surface_coverage_radius_km(alt, params)


def _format_table(
    sim_utc: datetime,
    states: list[ObjectState],
    observer_names: list[str],
    visible: np.ndarray,
    moon_ecef: np.ndarray,
    coverage: CoverageParameters | None = None,
) -> str:
    moon_lat, moon_lon, moon_alt = subpoint(moon_ecef)
    rows = [
        f"Sim time: {_fmt_time(sim_utc)} UTC   "
        f"Moon: {moon_lat:+6.2f}° {moon_lon:+7.2f}°  {moon_alt + EARTH_RADIUS_KM:,.0f} km",
    ]
    hdr = (
        f"{'NORAD':>6}  {'Name':<24}  {'Status':<8}  {'Age':>6}  {'Lat':>7}  {'Lon':>8}  "
        f"{'Alt km':>8}  "
    )
    if coverage is not None:
        hdr += f"{'Foot km':>8}  "
    hdr += "Visible from"
    rows += [hdr, "─" * len(hdr)]

    col = 0
    for st in states:
        head = (
            f"{st.norad_id:>6}  {st.name[:24]:<24}  {st.status.value:<8}  "
            f"{_fmt_age(st.seconds_since_update):>6}  "
        )
        if st.position_ecef is None:
            rows.append(head + (st.error or "waiting for elements"))
            continue
        lat, lon, alt = subpoint(st.position_ecef)
        seen = [observer_names[i] for i in np.flatnonzero(visible[:, col])] if visible.size else []
        col += 1
        foot = ""
        if coverage is not None:
            radius = _footprint_km(st, coverage)
            foot_txt = "-" if radius is None else f"{radius:.0f}"
            foot = f"{foot_txt:>8}  "
        warn = f"  ⚠ {st.error}" if st.error else ""
        rows.append(
            f"{head}{lat:>6.2f}°  {lon:>7.2f}°  {alt:>8.1f}  {foot}"
            f"{', '.join(seen) or '-'}{warn}"
        )
    return "\n".join(rows)


def _format_json(
    sim_utc: datetime,
    states: list[ObjectState],
    observer_names: list[str],
    visible: np.ndarray,
    moon_ecef: np.ndarray,
    coverage: CoverageParameters | None = None,
) -> str:
    objects = []
    col = 0
    for st in states:
        entry = {
            "norad_id": st.norad_id,
            "name": st.name,
            "status": st.status.value,
            "color": [round(c, 4) for c in st.color],
            "error": st.error,
            "last_update": st.last_update.isoformat() if st.last_update else None,
            "seconds_since_update": (
                None if st.seconds_since_update is None else round(st.seconds_since_update, 1)
            ),
            "ecef_km": None,
            "visible_from": [],
        }
        if coverage is not None:
            radius = _footprint_km(st, coverage)
            entry["coverage_radius_km"] = None if radius is None else round(radius, 1)
        if st.position_ecef is not None:
            entry["ecef_km"] = [round(float(v), 3) for v in st.position_ecef]
            if visible.size:
                entry["visible_from"] = [observer_names[i] for i in np.flatnonzero(visible[:, col])]
            col += 1
        objects.append(entry)
    return json.dumps(
        {
            "sim_utc": sim_utc.isoformat(),
            "moon_ecef_km": [round(float(v), 1) for v in moon_ecef],
            "objects": objects,
        }
    )


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
    )

    # ── 1. Observers ──────────────────────────────────────────────────────
    cities: list[tuple[str, float, float]] = []
    if (args.lat is None) != (args.lon is None):
        _log("--lat and --lon must be given together.")
        return 2
    if args.lat is not None:
        try:
            geodetic_to_ecef(args.lat, args.lon)
        except ValueError as exc:
            _log(f"Invalid observer: {exc}")
            return 2
        cities.append((f"Observer ({args.lat:.2f}, {args.lon:.2f})", args.lat, args.lon))
    if args.cities:
        cities.extend(MAJOR_CITIES)
    observer_names, observer_ecef = observers_ecef(cities)

    # ── 2. Fetch pipeline + tracker ───────────────────────────────────────
    cache_config = TleCacheConfig(
        enabled=not args.no_cache,
        expiration_days=args.expiry_days,
        verbose_logging=args.verbose,
    )
    cache = None
    if cache_config.enabled:
        try:
            cache = TleCache(args.cache_dir, cache_config.expiration_days)
        except OSError as exc:
            _log(f"Cache disabled ({exc}).")
    pipeline = FetchPipeline(cache=cache, cache_config=cache_config)

    try:
        clock = SimulationClock(start=args.start, time_scale=args.time_scale)
    except ValueError as exc:
        _log(str(exc))
        return 2

    coverage = None
    if args.coverage:
        if not -90.0 <= args.min_elevation <= 90.0:
            _log(f"--min-elevation must be within [-90, 90], got {args.min_elevation}")
            return 2
        coverage = CoverageParameters(min_elevation_deg=args.min_elevation)

    with pipeline:
        tracker = Tracker(pipeline=pipeline, clock=clock, dut1_seconds=args.dut1)
        norad_ids = args.norad_ids or ([] if args.groups else [ISS_NORAD_ID])
        for norad_id in norad_ids:
            tracker.track(norad_id)
        for group in args.groups:
            tracker.track_group(group)
        _log(f"Requested {len(norad_ids)} objects and {len(args.groups)} groups…")

        # ── 3. Wait (bounded) for the first element sets ──────────────────
        t0 = time_mod.perf_counter()
        while time_mod.perf_counter() - t0 < args.wait:
            tracker.drain_results()
            if tracker.objects and all(o.status.value != "pending" for o in tracker.objects.values()):
                break
            time_mod.sleep(0.1)
        _log(f"  {len(tracker.objects)} objects registered.\n")

        # ── 4. Tick loop ──────────────────────────────────────────────────
        n_ticks = args.ticks if args.ticks is not None else max(1, int(args.duration / max(args.tick, 1e-3)))
        last = time_mod.perf_counter()
        for i in range(n_ticks):
            if i:
                time_mod.sleep(args.tick)
            now = time_mod.perf_counter()
            states = tracker.tick(now - last if i else 0.0)
            last = now

            positions = np.array(
                [s.position_ecef for s in states if s.position_ecef is not None],
                dtype=np.float64,
            ).reshape(-1, 3)
            visible = visibility_matrix(observer_ecef, positions)
            moon_ecef = moon_position_ecef(clock.current_utc, args.dut1)

            if args.format == "json":
                print(_format_json(
                    clock.current_utc, states, observer_names, visible, moon_ecef, coverage
                ))
            else:
                print(_format_table(
                    clock.current_utc, states, observer_names, visible, moon_ecef, coverage
                ))
                print()
            sys.stdout.flush()

    return 0


def _log(msg: str) -> None:
    print(msg, file=sys.stderr)


if __name__ == "__main__":
    sys.exit(main())
