"""Raw cell to typed value conversion for mapped CSV rows."""

import logging
import re
from datetime import date
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from patrulha.services.header_mapper import COORDINATES_COMBINED

logger = logging.getLogger(__name__)

DateParser = Callable[[str], str]

TRUE_TOKENS = frozenset({"sim", "true", "yes"})
BOOLEAN_FIELDS = frozenset({"has_cameras", "has_wifi"})
DATE_FIELD = "cadastro_date"

COORDINATE_SPLIT = re.compile(r"[\s,;]+")
ISO_DATE = re.compile(r"\d{4}-\d{2}-\d{2}", re.ASCII)
SLASH_DATE = re.compile(r"(\d{1,2})/(\d{1,2})/(\d{4})", re.ASCII)
LEADING_INT = re.compile(r"\s*([+-]?\d+)", re.ASCII)
MIN_YEAR = 1000


def today_iso() -> str:
    return date.today().isoformat()


def parse_bool(value: Optional[str]) -> bool:
    """True for sim/true/yes in any case, False for anything else."""
    return (value or "").strip().lower() in TRUE_TOKENS


def parse_int(value: Any) -> Optional[int]:
    """Read a leading integer ("3", "3 cameras"); None when there is none."""
    if value is None:
        return None
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    match = LEADING_INT.match(str(value))
    return int(match.group(1)) if match else None


def split_coordinates(value: str) -> Optional[Tuple[str, str]]:
    """Split "lat,lng" style text; None unless exactly two tokens result."""
    tokens = COORDINATE_SPLIT.split(value.strip())
    if len(tokens) != 2:
        return None
    return tokens[0], tokens[1]


def _date_part(value: str) -> str:
    # Drops a trailing time of day ("6/18/2025 9:50:34")
    return value.split()[0]


def _iso_date(text: str) -> Optional[str]:
    if not ISO_DATE.fullmatch(text):
        return None
    try:
        parsed = date.fromisoformat(text)
    except ValueError:
        return None
    return parsed.isoformat() if parsed.year >= MIN_YEAR else None


def _slash_components(text: str) -> Optional[Tuple[int, int, int]]:
    # Two-digit years ("5/6/24") are rejected rather than guessed
    match = SLASH_DATE.fullmatch(text)
    if not match:
        return None
    first, second, year = (int(part) for part in match.groups())
    return first, second, year


def _build_date(year: int, month: int, day: int) -> Optional[str]:
    if not (1 <= day <= 31 and 1 <= month <= 12) or year < MIN_YEAR:
        return None
    try:
        return date(year, month, day).isoformat()
    except ValueError:
        return None


def _parse_date(value: Optional[str], resolve: Callable[[int, int], Tuple[int, int]]) -> str:
    text = (value or "").strip()
    if not text:
        return today_iso()

    date_part = _date_part(text)
    parsed = _iso_date(date_part)
    if parsed is None:
        components = _slash_components(date_part)
        if components is not None:
            first, second, year = components
            day, month = resolve(first, second)
            parsed = _build_date(year, month, day)

    if parsed is None:
        fallback = today_iso()
        logger.debug("Unparseable date %r, using current date %s", value, fallback)
        return fallback
    return parsed


def _resolve_day_month(first: int, second: int) -> Tuple[int, int]:
    if first > 12:
        return first, second
    if second > 12:
        return second, first
    # Ambiguous: Brazilian day-first
    return first, second


def parse_date_auto(value: Optional[str]) -> str:
    """
    Parse D/M/Y or M/D/Y text into an ISO date.

    A first component above 12 is the day; otherwise a second component above
    12 is the day (American order); otherwise the value is read day-first.
    Empty or unparseable input resolves to today's date.
    """
    return _parse_date(value, _resolve_day_month)


def parse_date_mdy(value: Optional[str]) -> str:
    """Parse strictly month-first M/D/Y text; falls back to today's date."""
    return _parse_date(value, lambda first, second: (second, first))


DATE_PARSERS: Dict[str, DateParser] = {
    "auto": parse_date_auto,
    "mdy": parse_date_mdy,
}


def coerce_row(
    headers: List[str],
    row: List[str],
    mapping: Mapping[str, str],
    date_parser: DateParser = parse_date_auto,
) -> Dict[str, Any]:
    """
    Build the field dict for one row.

    Headers without a mapping and cells past the end of a short row are
    skipped. When several headers map to the same field the rightmost wins.
    """
    data: Dict[str, Any] = {}
    for index, header in enumerate(headers):
        field = mapping.get(header)
        if not field or index >= len(row):
            continue
        value = row[index].strip()

        if field == COORDINATES_COMBINED:
            coordinates = split_coordinates(value)
            if coordinates is not None:
                data["latitude"], data["longitude"] = coordinates
        elif field == DATE_FIELD:
            data[field] = date_parser(value)
        elif field in BOOLEAN_FIELDS:
            data[field] = parse_bool(value)
        else:
            data[field] = value or None
    return data
