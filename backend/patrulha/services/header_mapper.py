"""Column header to canonical field mapping.

Suggestions come from an ordered rule table evaluated first-match-wins against
the trimmed header text (case-insensitive, full match). Rule order matters
where patterns overlap. Suggestions are advisory; imports always run with the
mapping the caller confirmed.
"""

import json
import logging
import re
from typing import Dict, Iterable, List, NamedTuple, Optional, Pattern

from patrulha.core.errors import InvalidMappingError, MissingMappingError

logger = logging.getLogger(__name__)

COORDINATES_COMBINED = "coordinates_combined"

CANONICAL_FIELDS = (
    "name",
    "latitude",
    "longitude",
    COORDINATES_COMBINED,
    "cidade",
    "bairro",
    "owner_name",
    "owner_phone",
    "owner_rg",
    "equipe",
    "has_cameras",
    "cameras_count",
    "has_wifi",
    "wifi_password",
    "activity",
    "observations",
    "cadastro_date",
)

# Stored as-is, never suggested.
PASSTHROUGH_FIELDS = (
    "numero_placa",
    "description",
    "contact_name",
    "contact_phone",
    "contact_observations",
    "residents_count",
)

KNOWN_FIELDS = frozenset(CANONICAL_FIELDS + PASSTHROUGH_FIELDS)


class HeaderRule(NamedTuple):
    pattern: Pattern[str]
    field: str


def _rule(pattern: str, field: str) -> HeaderRule:
    return HeaderRule(re.compile(pattern, re.IGNORECASE), field)


HEADER_RULES = (
    _rule(r"nome|name|propriedade|property|nome da propriedade", "name"),
    _rule(r"lat|latitude", "latitude"),
    _rule(r"lng|lon|longitude", "longitude"),
    _rule(
        r"coordenadas|coordinates|coord|lat(itude)?\s*[,;/]\s*(lng|lon|longitude)",
        COORDINATES_COMBINED,
    ),
    _rule(r"cidade|city|munic[ií]pio", "cidade"),
    _rule(r"bairro|neighborhood", "bairro"),
    _rule(r"propriet[aá]rio|owner|dono", "owner_name"),
    _rule(r"telefone|phone|celular", "owner_phone"),
    _rule(r"equipe|team", "equipe"),
    _rule(r"c[aâ]meras|possui.*c[aâ]meras", "has_cameras"),
    _rule(r"qtd.*c[aâ]meras|quantidade.*c[aâ]meras", "cameras_count"),
    _rule(r"wifi|wi-fi|possui.*wifi", "has_wifi"),
    _rule(r"senha.*wifi|password.*wifi|wifi.*senha|wifi.*password", "wifi_password"),
    _rule(r"atividade|activity", "activity"),
    _rule(r"observa[cç][oõ]es|observations|obs", "observations"),
    _rule(r"rg|documento", "owner_rg"),
    _rule(r"data|date|cadastro|registro", "cadastro_date"),
)


def suggest_field(header: str, rules: Iterable[HeaderRule] = HEADER_RULES) -> Optional[str]:
    """Return the field of the first rule matching ``header``, or None."""
    text = header.strip()
    for rule in rules:
        if rule.pattern.fullmatch(text):
            return rule.field
    return None


def suggest_mappings(
    headers: Iterable[str], rules: Iterable[HeaderRule] = HEADER_RULES
) -> Dict[str, str]:
    """Suggest a mapping for every header that matches a rule."""
    rules = tuple(rules)
    suggestions: Dict[str, str] = {}
    for header in headers:
        field = suggest_field(header, rules)
        if field:
            suggestions[header] = field
    logger.debug("Suggested mappings: %s", suggestions)
    return suggestions


def mapping_issues(mapping: Dict[str, str]) -> List[str]:
    """List reasons a mapping cannot yield importable rows (advisory only)."""
    targets = {target for target in mapping.values() if target}
    issues = []
    if "name" not in targets:
        issues.append("Campo obrigatório não mapeado: name")
    has_coordinates = COORDINATES_COMBINED in targets or (
        "latitude" in targets and "longitude" in targets
    )
    if not has_coordinates:
        issues.append(
            "É necessário mapear coordenadas (Latitude+Longitude ou Coordenadas Combinadas)"
        )
    return issues


def normalize_mapping(mapping: Dict[str, Optional[str]]) -> Dict[str, str]:
    """
    Validate a caller-confirmed mapping.

    Empty targets mean "do not import" and are dropped.

    Raises:
        InvalidMappingError: If a target is not a known field
    """
    normalized: Dict[str, str] = {}
    unknown: Dict[str, str] = {}
    for header, target in mapping.items():
        if target is None:
            continue
        if not isinstance(target, str):
            raise InvalidMappingError(
                f"Mapping target for column '{header}' must be a string"
            )
        target = target.strip()
        if not target:
            continue
        if target not in KNOWN_FIELDS:
            unknown[header] = target
            continue
        normalized[header] = target

    if unknown:
        raise InvalidMappingError(
            "Column mapping targets unknown fields",
            details={"unknown": unknown},
        )
    return normalized


def load_mapping(raw: Optional[str]) -> Dict[str, str]:
    """
    Parse the JSON-encoded ``columnMapping`` form field.

    Raises:
        MissingMappingError: If no mapping was sent, or it maps no column
        InvalidMappingError: If the value is not a JSON object of strings
    """
    if raw is None or not raw.strip():
        raise MissingMappingError()
    try:
        mapping = json.loads(raw)
    except json.JSONDecodeError as e:
        raise InvalidMappingError(f"Column mapping is not valid JSON: {e.msg}") from e
    if not isinstance(mapping, dict):
        raise InvalidMappingError("Column mapping must be a JSON object")
    normalized = normalize_mapping(mapping)
    if not normalized:
        raise MissingMappingError("Column mapping does not map any column")
    return normalized
