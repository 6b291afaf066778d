"""Property import models.

Python attributes are snake_case; the JSON wire format is camelCase
(``rowNumber``, ``suggestedMappings``...), produced by the alias generator.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utc_timestamp() -> str:
    """ISO-8601 UTC timestamp used on row-scoped events."""
    return datetime.now(timezone.utc).isoformat()


class WireModel(BaseModel):
    """Base model serialized with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class ImportRequest(BaseModel):
    """One analyze/import call, built once from the multipart form."""

    model_config = ConfigDict(frozen=True)

    raw_file_bytes: bytes
    action: Literal["analyze", "import"]
    column_mapping: Optional[Dict[str, str]] = None
    skip_existing: bool = False
    date_format: Literal["auto", "mdy"] = "auto"


# Analyze


class AnalyzeData(WireModel):
    headers: List[str]
    sample_data: List[List[str]]
    suggested_mappings: Dict[str, str]
    total_rows: int
    separator: str
    mapping_issues: List[str] = Field(default_factory=list)


class AnalyzeResponse(WireModel):
    success: bool = True
    data: AnalyzeData


# Import result


class RowResult(WireModel):
    row: int
    name: str
    status: str = "success"


class SkippedItem(WireModel):
    row: int
    name: str
    reason: str


class ImportResult(WireModel):
    """Aggregate counters for one import run, mutated row by row."""

    total: int = 0
    successful: int = 0
    failed: int = 0
    skipped: int = 0
    errors: List[str] = Field(default_factory=list)
    results: List[RowResult] = Field(default_factory=list)
    skipped_items: List[SkippedItem] = Field(default_factory=list)
    total_in_file: int = 0
    remaining: int = 0

    @property
    def processed(self) -> int:
        return self.successful + self.failed + self.skipped

    def record_success(self, row: int, name: str) -> None:
        self.successful += 1
        self.results.append(RowResult(row=row, name=name))

    def record_failure(self, message: str) -> None:
        self.failed += 1
        self.errors.append(message)

    def record_skip(self, row: int, name: str, reason: str) -> None:
        self.skipped += 1
        self.skipped_items.append(SkippedItem(row=row, name=name, reason=reason))


# Stream events


class ProgressData(WireModel):
    message: str
    progress: int
    total: int
    successful: int = 0
    failed: int = 0
    skipped: int = 0
    errors: List[str] = Field(default_factory=list)
    last_processed_row: Optional[int] = None


class RowProcessingData(WireModel):
    row_number: int
    total_rows: int
    raw_data: str
    timestamp: str = Field(default_factory=utc_timestamp)


class MappedRowData(WireModel):
    row_number: int
    mapped_data: Dict[str, Any]
    timestamp: str = Field(default_factory=utc_timestamp)


class ErrorDetailData(WireModel):
    row_number: int
    property_name: str
    error_type: str
    error_message: str
    timestamp: str = Field(default_factory=utc_timestamp)


class ProgressEvent(WireModel):
    type: Literal["progress"] = "progress"
    data: ProgressData


class RowProcessingEvent(WireModel):
    type: Literal["row_processing"] = "row_processing"
    data: RowProcessingData


class MappedDataEvent(WireModel):
    type: Literal["mapped_data"] = "mapped_data"
    data: MappedRowData


class ErrorDetailEvent(WireModel):
    type: Literal["error_detail"] = "error_detail"
    data: ErrorDetailData


class CompleteEvent(WireModel):
    type: Literal["complete"] = "complete"
    success: bool = True
    message: str
    data: ImportResult


class ErrorEvent(WireModel):
    type: Literal["error"] = "error"
    error: str


ImportEvent = Union[
    ProgressEvent,
    RowProcessingEvent,
    MappedDataEvent,
    ErrorDetailEvent,
    CompleteEvent,
    ErrorEvent,
]


# Diagnose


class RowDiagnosis(WireModel):
    row_number: int
    field_count: int
    issues: List[str] = Field(default_factory=list)
    mapped_data: Dict[str, Any] = Field(default_factory=dict)


class DiagnoseSummary(WireModel):
    total_rows: int
    rows_with_issues: int
    successful_rows: int
    projected_success_rate: float
    separator: str
    headers: List[str]
    field_count: int


class DiagnoseResponse(WireModel):
    success: bool = True
    summary: DiagnoseSummary
    detailed_analysis: List[RowDiagnosis]
    recommendations: List[str]
