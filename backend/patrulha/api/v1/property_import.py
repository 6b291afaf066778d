"""Property CSV import endpoints."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile, status
from fastapi.responses import JSONResponse, PlainTextResponse, StreamingResponse

from patrulha.core.auth import get_current_caller
from patrulha.core.config import settings
from patrulha.core.deps import get_property_store
from patrulha.core.errors import APIException, ErrorCode, ErrorCategory
from patrulha.core.metrics import metrics
from patrulha.models.auth import CallerProfile
from patrulha.models.import_models import AnalyzeData, AnalyzeResponse, ImportRequest
from patrulha.services.csv_parser import parse_csv
from patrulha.services.event_stream import EventChannel, pump_events, start_background
from patrulha.services.field_coercer import DATE_PARSERS
from patrulha.services.header_mapper import load_mapping, mapping_issues, suggest_mappings
from patrulha.services.import_diagnostics import diagnose_table
from patrulha.services.import_orchestrator import ImportOptions, ImportOrchestrator
from patrulha.services.property_store import PropertyStore

logger = logging.getLogger(__name__)

router = APIRouter()

ACTIONS = ("analyze", "import")
SAMPLE_ROWS = 5

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
    "Access-Control-Allow-Methods": "POST, GET, OPTIONS, PUT, DELETE",
}


async def read_upload(file: Optional[UploadFile]) -> bytes:
    """Read the uploaded file, enforcing presence and the size limit."""
    if file is None:
        raise APIException(
            code=ErrorCode.IMPORT_INVALID_FILE,
            message="Missing file",
            category=ErrorCategory.VALIDATION,
            status_code=status.HTTP_400_BAD_REQUEST,
        )
    content = await file.read()
    if len(content) > settings.import_max_file_size:
        raise APIException(
            code=ErrorCode.IMPORT_INVALID_FILE,
            message="CSV file exceeds maximum allowed size",
            category=ErrorCategory.VALIDATION,
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            details={"max_bytes": settings.import_max_file_size},
        )
    logger.info("Received upload %s (%d bytes)", file.filename, len(content))
    return content


def check_date_format(date_format: str) -> str:
    if date_format not in DATE_PARSERS:
        raise APIException(
            code=ErrorCode.IMPORT_INVALID_OPTION,
            message=f"Invalid dateFormat '{date_format}'",
            category=ErrorCategory.VALIDATION,
            status_code=status.HTTP_400_BAD_REQUEST,
            details={"allowed": sorted(DATE_PARSERS)},
        )
    return date_format


@router.options("/properties", include_in_schema=False)
@router.options("/diagnose", include_in_schema=False)
async def import_preflight() -> PlainTextResponse:
    """Answer CORS preflight requests that reach the router."""
    return PlainTextResponse("ok", headers=CORS_HEADERS)


@router.post("/properties")
async def import_properties(
    file: Optional[UploadFile] = File(None),
    action: Optional[str] = Form(None),
    column_mapping: Optional[str] = Form(None, alias="columnMapping"),
    skip_existing: str = Form("false", alias="skipExisting"),
    date_format: str = Form("auto", alias="dateFormat"),
    caller: CallerProfile = Depends(get_current_caller),
    store: PropertyStore = Depends(get_property_store),
):
    """
    Analyze or import a property CSV.

    - ``action=analyze`` returns headers, the first rows, suggested mappings and
      the advisory mapping issues as one JSON object.
    - ``action=import`` streams newline-delimited JSON events (``progress``,
      ``row_processing``, ``mapped_data``, ``error_detail``) ending with one
      ``complete`` event, or an ``error`` event if the run aborts.
    """
    if action not in ACTIONS:
        raise APIException(
            code=ErrorCode.IMPORT_INVALID_ACTION,
            message="Missing or invalid action",
            category=ErrorCategory.VALIDATION,
            status_code=status.HTTP_400_BAD_REQUEST,
            details={"allowed": list(ACTIONS)},
        )

    content = await read_upload(file)
    table = parse_csv(content)
    logger.info(
        "Parsed upload: separator=%r, %d columns, %d rows, action=%s",
        table.separator,
        len(table.headers),
        table.total_rows,
        action,
    )

    if action == "analyze":
        suggestions = suggest_mappings(table.headers)
        response = AnalyzeResponse(
            data=AnalyzeData(
                headers=table.headers,
                sample_data=table.rows[:SAMPLE_ROWS],
                suggested_mappings=suggestions,
                total_rows=table.total_rows,
                separator=table.separator,
                mapping_issues=mapping_issues(suggestions),
            )
        )
        metrics.record_import_run("analyze", "success")
        return JSONResponse(content=response.to_wire())

    request = ImportRequest(
        raw_file_bytes=content,
        action=action,
        column_mapping=load_mapping(column_mapping),
        skip_existing=skip_existing.strip().lower() == "true",
        date_format=check_date_format(date_format),
    )

    orchestrator = ImportOrchestrator(
        store, ImportOptions.from_settings(caller, request.date_format)
    )
    channel = EventChannel()
    start_background(
        pump_events(
            orchestrator.run(table, request.column_mapping, request.skip_existing),
            channel,
            before=store.connect,
            after=store.close,
        )
    )
    metrics.record_import_run("import", "started")
    logger.info(
        "Import %s accepted for caller %s",
        orchestrator.import_session_id,
        caller.id,
    )

    return StreamingResponse(
        channel.lines(),
        media_type="text/plain; charset=utf-8",
        headers={
            "Cache-Control": "no-cache",
            "X-Import-Session-ID": orchestrator.import_session_id,
        },
    )


@router.post("/diagnose")
async def diagnose_import(
    file: Optional[UploadFile] = File(None),
    column_mapping: Optional[str] = Form(None, alias="columnMapping"),
    date_format: str = Form("auto", alias="dateFormat"),
    caller: CallerProfile = Depends(get_current_caller),
) -> JSONResponse:
    """
    Dry-run every row through coercion and validation without persisting.

    Uses the supplied mapping, or the suggested one when none is sent.
    """
    content = await read_upload(file)
    table = parse_csv(content)
    if column_mapping:
        mapping = load_mapping(column_mapping)
    else:
        mapping = suggest_mappings(table.headers)

    report = diagnose_table(
        table, mapping, DATE_PARSERS[check_date_format(date_format)]
    )
    metrics.record_import_run("diagnose", "success")
    return JSONResponse(content=report.to_wire())
