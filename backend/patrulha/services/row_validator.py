"""Per-row validation of coerced property data."""

import math
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional

from patrulha.core.errors import RowErrorType

PLACEHOLDER = "Não informado"
DEFAULTED_FIELDS = ("cidade", "owner_name")
UNNAMED = "UNNAMED"

DECIMAL = re.compile(r"[+-]?(\d+(\.\d*)?|\.\d+)", re.ASCII)


@dataclass
class RowValidation:
    """Outcome of validating one row.

    On success ``latitude``/``longitude`` hold the parsed coordinates; on
    failure ``error_type`` and ``message`` describe why the row is rejected.
    """

    valid: bool
    error_type: Optional[str] = None
    message: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None


def parse_coordinate(value: Any) -> Optional[float]:
    """
    Parse a latitude/longitude value into a finite float.

    Only plain ASCII decimal text is accepted. A single decimal comma
    ("-23,5") is read as a dot when the text has no dot.
    """
    if value is None:
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        number = float(value)
    else:
        text = str(value).strip()
        if "," in text and "." not in text and text.count(",") == 1:
            text = text.replace(",", ".")
        if not DECIMAL.fullmatch(text):
            return None
        number = float(text)
    return number if math.isfinite(number) else None


def validate_row(data: Dict[str, Any], row_number: int) -> RowValidation:
    """
    Check required fields and coordinates, defaulting optional ones in place.

    ``cidade`` and ``owner_name`` are filled with a placeholder rather than
    rejected.
    """
    missing = [
        field for field in ("name", "latitude", "longitude") if not data.get(field)
    ]
    if missing:
        return RowValidation(
            valid=False,
            error_type=RowErrorType.MISSING_FIELDS,
            message=(
                f"Row {row_number} ({data.get('name') or UNNAMED}): "
                f"Missing {', '.join(missing)}"
            ),
        )

    for field in DEFAULTED_FIELDS:
        if not data.get(field):
            data[field] = PLACEHOLDER

    latitude = parse_coordinate(data["latitude"])
    longitude = parse_coordinate(data["longitude"])
    if latitude is None or longitude is None:
        return RowValidation(
            valid=False,
            error_type=RowErrorType.INVALID_COORDINATES,
            message=(
                f"Row {row_number} ({data['name']}): Invalid coordinates - "
                f"lat: \"{data['latitude']}\", lng: \"{data['longitude']}\""
            ),
        )

    return RowValidation(valid=True, latitude=latitude, longitude=longitude)
