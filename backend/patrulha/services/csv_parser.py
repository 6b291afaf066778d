"""Delimiter detection and row tokenizing for uploaded property CSVs.

Uploads come from spreadsheet exports that use either ``,`` or ``;`` as the
field separator. Quoting is handled only superficially: one enclosing pair of
double quotes is stripped from each field and escaped quotes are left alone.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from patrulha.core.errors import EmptyInputError

logger = logging.getLogger(__name__)

COMMA = ","
SEMICOLON = ";"


@dataclass
class ParsedTable:
    """Tokenized CSV content.

    Rows keep their own field count; they are never padded or truncated to
    ``len(headers)``.
    """

    separator: str
    headers: List[str]
    rows: List[List[str]] = field(default_factory=list)

    @property
    def total_rows(self) -> int:
        return len(self.rows)


def detect_separator(first_line: str) -> str:
    """Choose ``;`` when it outnumbers ``,`` in the first line, else ``,``."""
    if first_line.count(SEMICOLON) > first_line.count(COMMA):
        return SEMICOLON
    return COMMA


def _clean_field(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == '"' and value[-1] == '"':
        value = value[1:-1]
    return value


def split_line(line: str, separator: str) -> List[str]:
    return [_clean_field(part) for part in line.split(separator)]


def decode_upload(raw: bytes) -> str:
    """Decode upload bytes as UTF-8 (BOM tolerated), falling back to Latin-1."""
    try:
        return raw.decode("utf-8-sig")
    except UnicodeDecodeError:
        logger.info("Upload is not valid UTF-8, decoding as latin-1")
        return raw.decode("latin-1")


def tokenize(text: str, separator: Optional[str] = None) -> ParsedTable:
    """
    Split CSV text into headers and rows.

    Args:
        text: Full file content
        separator: Field separator; detected from the first line when None

    Raises:
        EmptyInputError: If no non-blank line remains
    """
    lines = [line for line in text.split("\n") if line.strip()]
    if not lines:
        raise EmptyInputError()

    if separator is None:
        separator = detect_separator(lines[0])

    headers = split_line(lines[0], separator)
    rows = [split_line(line, separator) for line in lines[1:]]

    logger.debug(
        "Tokenized CSV: separator=%r, headers=%d, rows=%d",
        separator,
        len(headers),
        len(rows),
    )
    return ParsedTable(separator=separator, headers=headers, rows=rows)


def parse_csv(raw: bytes) -> ParsedTable:
    """Decode an upload and tokenize it with the detected separator."""
    return tokenize(decode_upload(raw))
