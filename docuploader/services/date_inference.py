"""
Date Inference Service - Single Responsibility: guess when a file was taken.

Sources, first success wins:
1. Embedded capture metadata (EXIF / PNG text) -> exif
2. Full date in the filename                   -> filename_full
3. Bare year in the filename (1950-2039)       -> filename_partial
4. Filesystem last-modified time               -> file

Failures never surface; each source just falls through to the next.
"""
import asyncio
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Optional, Tuple

from PIL import Image

from ..models import DateInference, DateSource, FileHandle

log = logging.getLogger(__name__)

EXIF_IFD_POINTER = 0x8769
DATE_TIME_ORIGINAL = 0x9003
DATE_TIME_DIGITIZED = 0x9004  # exiftool: CreateDate
PNG_CREATION_TIME = "Creation Time"

_EMBEDDED_FORMATS = (
    "%Y:%m:%d %H:%M:%S",
    "%Y:%m:%d %H:%M",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%dT%H:%M:%S",
    "%Y:%m:%d",
)

# (regex, group index of year, month, day)
_FULL_DATE_PATTERNS = (
    (re.compile(r"(\d{4})(\d{2})(\d{2})"), (1, 2, 3)),     # YYYYMMDD
    (re.compile(r"(\d{4})-(\d{2})-(\d{2})"), (1, 2, 3)),   # YYYY-MM-DD
    (re.compile(r"(\d{2})-(\d{2})-(\d{4})"), (3, 2, 1)),   # DD-MM-YYYY
)

_YEAR_PATTERN = re.compile(r"(?<!\d)(19[5-9]\d|20[0-3]\d)(?!\d)")


def parse_embedded_timestamp(value) -> Optional[datetime]:
    """Parse an EXIF-style timestamp string, None when unusable."""
    if value is None:
        return None
    if isinstance(value, bytes):
        value = value.decode("ascii", errors="ignore")
    text = str(value).strip().strip("\x00").strip()
    if not text:
        return None

    for fmt in _EMBEDDED_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def read_embedded_date(path: Path) -> Optional[datetime]:
    """
    Read the capture timestamp embedded in an image.

    Blocking; call through asyncio.to_thread. Returns None for any failure:
    unsupported format, corrupt data, missing or malformed tags.
    """
    try:
        with Image.open(path) as img:
            exif = img.getexif()
            exif_ifd = exif.get_ifd(EXIF_IFD_POINTER)
            candidates = (
                exif_ifd.get(DATE_TIME_ORIGINAL),
                exif_ifd.get(DATE_TIME_DIGITIZED),
                img.info.get(PNG_CREATION_TIME),
            )
    except Exception as exc:
        log.debug("No embedded metadata in %s: %s", path, exc)
        return None

    for candidate in candidates:
        parsed = parse_embedded_timestamp(candidate)
        if parsed is not None:
            return parsed
    return None


def _build_date(year: str, month: str, day: str) -> Optional[datetime]:
    try:
        date = datetime(int(year), int(month), int(day))
    except ValueError:
        return None
    # Rolled-over dates must not leak into another year
    if date.year != int(year):
        return None
    return date


def parse_date_from_filename(filename: str) -> Tuple[Optional[datetime], Optional[DateSource]]:
    """
    Extract a date from a filename.

    Each full-date pattern only considers its first match; an invalid match
    moves on to the next pattern rather than the next occurrence.
    """
    for pattern, (y, m, d) in _FULL_DATE_PATTERNS:
        match = pattern.search(filename)
        if not match:
            continue
        date = _build_date(match.group(y), match.group(m), match.group(d))
        if date is not None:
            return date, DateSource.FILENAME_FULL

    match = _YEAR_PATTERN.search(filename)
    if match:
        return datetime(int(match.group(1)), 1, 1), DateSource.FILENAME_PARTIAL

    return None, None


class DateTakenResolver:
    """
    Resolve a best-effort date taken for selected files.

    Usage:
        resolver = DateTakenResolver()
        inference = await resolver.resolve(FileHandle.from_path(path))
    """

    async def resolve(self, file: FileHandle) -> DateInference:
        embedded = await asyncio.to_thread(read_embedded_date, file.path)
        if embedded is not None:
            return DateInference(embedded, DateSource.EXIF)

        date, source = parse_date_from_filename(file.name)
        if date is not None:
            return DateInference(date, source)

        if file.last_modified is not None:
            return DateInference(file.last_modified, DateSource.FILE)

        return DateInference.none()
