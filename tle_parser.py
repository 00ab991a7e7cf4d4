"""Two-line element (TLE) text scanning.

Responses from element-set services are treated as opaque text: HTML error
pages, CRLF line endings, byte-order marks and trailing blanks all occur in
the wild.  The scanner looks for a line starting with "1" immediately
followed by a line starting with "2"; a plain text line right before the
pair is taken as the object name (the optional "line 0" of the 3LE format).
"""

from __future__ import annotations

import logging
import string
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sidereal import as_utc

logger = logging.getLogger(__name__)

# Alpha-5 catalog numbers: first character A–Z (I and O skipped) → 10–33
_ALPHA5 = "ABCDEFGHJKLMNPQRSTUVWXYZ"

# Characters stripped from both ends of every response line
_STRIP_CHARS = "\ufeff\x7f" + string.whitespace + "".join(chr(c) for c in range(32))


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ElementRecord:
    """One object's element set as received from the service."""

    norad_id: int
    name: str | None
    line1: str
    line2: str
    epoch: datetime     # UTC, from line 1


@dataclass(frozen=True)
class TlePair:
    """A raw (name, line1, line2) triple found in response text."""

    name: str | None
    line1: str
    line2: str
    norad_id: int


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def clean_lines(text: str) -> list[str]:
    """Split response text into stripped, non-empty lines."""
    lines = []
    for raw in text.splitlines():
        line = raw.strip(_STRIP_CHARS)
        if line:
            lines.append(line)
    return lines


def parse_tle_pairs(text: str) -> list[TlePair]:
    """Return every element pair in *text*, in order of appearance.

    Catalog IDs come from each pair's own line 1.  Pairs whose catalog
    field cannot be decoded, or whose two lines disagree on it, are skipped.
    """
    lines = clean_lines(text)
    pairs: list[TlePair] = []
    i = 0
    while i + 1 < len(lines):
        line1 = lines[i]
        line2 = lines[i + 1]
        if not (line1.startswith("1") and line2.startswith("2")):
            i += 1
            continue

        id1 = catalog_id(line1)
        id2 = catalog_id(line2)
        if id1 is None or id1 != id2:
            i += 1
            continue

        name = None
        if i > 0 and not is_element_line(lines[i - 1]):
            name = lines[i - 1]

        pairs.append(TlePair(name=name, line1=line1, line2=line2, norad_id=id1))
        i += 2
    return pairs


def find_tle_pair(text: str, norad_id: int) -> TlePair | None:
    """Return the first pair in *text* whose lines both carry *norad_id*."""
    for pair in parse_tle_pairs(text):
        if pair.norad_id == norad_id:
            return pair
    return None


def to_record(pair: TlePair, fallback_epoch: datetime | None = None) -> ElementRecord:
    """Build an ElementRecord, decoding the epoch from line 1.

    If the epoch field is unreadable, *fallback_epoch* (default: now) is
    used and a warning is logged.
    """
    epoch = tle_epoch_utc(pair.line1)
    if epoch is None:
        epoch = as_utc(fallback_epoch) if fallback_epoch else datetime.now(timezone.utc)
        logger.warning(
            "norad=%d: unreadable epoch field in line 1, using %s",
            pair.norad_id, epoch.isoformat(),
        )
    if not checksum_ok(pair.line1) or not checksum_ok(pair.line2):
        logger.warning("norad=%d: TLE checksum mismatch", pair.norad_id)
    return ElementRecord(
        norad_id=pair.norad_id,
        name=pair.name,
        line1=pair.line1,
        line2=pair.line2,
        epoch=epoch,
    )


# ---------------------------------------------------------------------------
# Field decoding
# ---------------------------------------------------------------------------

def catalog_id(line: str) -> int | None:
    """Decode the catalog number in columns 3–7 (digits or Alpha-5)."""
    field = line[2:7].strip()
    if not field:
        return None
    if field.isdigit():
        return int(field)
    head, tail = field[0].upper(), field[1:]
    if head in _ALPHA5 and len(tail) == 4 and tail.isdigit():
        return (_ALPHA5.index(head) + 10) * 10000 + int(tail)
    return None


def is_element_line(line: str) -> bool:
    """True if *line* looks like TLE line 1 or line 2."""
    return (
        len(line) >= 7
        and line[0] in "12"
        and line[1] == " "
        and catalog_id(line) is not None
    )


def tle_epoch_utc(line1: str) -> datetime | None:
    """Decode the epoch from TLE line 1, or None if unreadable.

    Columns 19–32 (1-indexed) hold YYDDD.DDDDDDDD; years 57–99 are 19xx.
    """
    if len(line1) < 32:
        return None
    field = line1[18:32].strip()
    try:
        year_2d = int(field[:2])
        day_of_year = float(field[2:])
    except ValueError:
        return None
    if not 1.0 <= day_of_year < 367.0:
        return None
    year = (1900 + year_2d) if year_2d >= 57 else (2000 + year_2d)
    return datetime(year, 1, 1, tzinfo=timezone.utc) + timedelta(days=day_of_year - 1.0)


def checksum_ok(line: str) -> bool:
    """Modulo-10 checksum: digits count face value, '-' counts 1."""
    if len(line) < 69 or not line[68].isdigit():
        return False
    total = 0
    for ch in line[:68]:
        if ch.isdigit():
            total += int(ch)
        elif ch == "-":
            total += 1
    return total % 10 == int(line[68])
