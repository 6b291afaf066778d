"""Dry-run analysis of every row in an upload, without persisting anything."""

import logging
from typing import Mapping

from patrulha.models.import_models import DiagnoseResponse, DiagnoseSummary, RowDiagnosis
from patrulha.services.csv_parser import ParsedTable
from patrulha.services.field_coercer import DateParser, coerce_row, parse_date_auto
from patrulha.services.row_validator import validate_row

logger = logging.getLogger(__name__)

TARGET_SUCCESS_RATE = 90.0


def diagnose_table(
    table: ParsedTable,
    mapping: Mapping[str, str],
    date_parser: DateParser = parse_date_auto,
) -> DiagnoseResponse:
    """Coerce and validate each row and project the import success rate."""
    field_count = len(table.headers)
    analysis = []
    for index, row in enumerate(table.rows):
        row_number = index + 2
        data = coerce_row(table.headers, row, mapping, date_parser)
        mapped = dict(data)
        issues = []
        if len(row) < field_count:
            issues.append(f"Insufficient fields: {len(row)}/{field_count} expected")
        validation = validate_row(data, row_number)
        if not validation.valid:
            issues.append(f"{validation.error_type}: {validation.message}")
        analysis.append(
            RowDiagnosis(
                row_number=row_number,
                field_count=len(row),
                issues=issues,
                mapped_data=mapped,
            )
        )

    total = len(analysis)
    with_issues = sum(1 for item in analysis if item.issues)
    successful = total - with_issues
    rate = round(successful / total * 100, 1) if total else 0.0

    recommendations = [
        f"{with_issues} rows have issues" if with_issues else "No issues detected",
        "Consider reviewing CSV format" if rate < TARGET_SUCCESS_RATE else "CSV format looks good",
        f"Projected success rate: {rate}%",
    ]
    logger.info("Diagnosed %d rows: %d with issues", total, with_issues)

    return DiagnoseResponse(
        summary=DiagnoseSummary(
            total_rows=total,
            rows_with_issues=with_issues,
            successful_rows=successful,
            projected_success_rate=rate,
            separator=table.separator,
            headers=table.headers,
            field_count=field_count,
        ),
        detailed_analysis=analysis,
        recommendations=recommendations,
    )
