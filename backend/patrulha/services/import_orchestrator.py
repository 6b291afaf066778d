"""Row-by-row property import.

``ImportOrchestrator.run`` is an async generator of import events. Each row
moves through coerce -> validate -> duplicate check -> persist and ends as
success, failed or skipped. A row failure never stops the batch: it becomes an
``error_detail`` event and the next row starts. The final event is always a
single ``complete`` carrying the aggregate ``ImportResult``.

Rows are processed strictly in order and every store call is awaited before
the next row, so store load is serialized by construction. A short delay
between rows further bounds the load.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional

from patrulha.core.config import Settings, settings
from patrulha.core.errors import RowErrorType, StoreError
from patrulha.core.metrics import metrics
from patrulha.models.auth import CallerProfile
from patrulha.models.import_models import (
    CompleteEvent,
    ErrorDetailData,
    ErrorDetailEvent,
    ImportEvent,
    ImportResult,
    MappedDataEvent,
    MappedRowData,
    ProgressData,
    ProgressEvent,
    RowProcessingData,
    RowProcessingEvent,
)
from patrulha.services.csv_parser import ParsedTable
from patrulha.services.field_coercer import DATE_PARSERS, DateParser, coerce_row, parse_date_auto
from patrulha.services.property_store import PropertyStore
from patrulha.services.row_validator import UNNAMED, validate_row

logger = logging.getLogger(__name__)

FIRST_DATA_ROW = 2  # line 1 is the header
RECENT_ERRORS = 5
UNKNOWN_NAME = "UNKNOWN"
DUPLICATE_REASON = "Propriedade idêntica (nome, coordenadas e cidade) já existe"


@dataclass
class ImportOptions:
    """Per-run knobs. Built from settings by the API layer."""

    caller: CallerProfile
    row_cap: Optional[int] = None
    date_parser: DateParser = parse_date_auto
    row_delay: float = 0.05
    progress_every: int = 5
    emit_diagnostics: bool = True
    log_errors: bool = True

    @classmethod
    def from_settings(
        cls,
        caller: CallerProfile,
        date_format: str = "auto",
        config: Optional[Settings] = None,
    ) -> "ImportOptions":
        config = config or settings
        return cls(
            caller=caller,
            row_cap=config.import_row_cap,
            date_parser=DATE_PARSERS[date_format],
            row_delay=config.import_row_delay,
            progress_every=config.import_progress_every,
            emit_diagnostics=config.import_emit_diagnostics,
            log_errors=config.import_log_errors,
        )


def completion_message(result: ImportResult) -> str:
    if result.failed == 0:
        return (
            "Importação concluída com sucesso! "
            f"{result.successful} propriedades importadas."
        )
    return (
        f"Importação concluída com {result.failed} erros. "
        f"{result.successful} propriedades importadas."
    )


class ImportOrchestrator:
    """Drives one import run against a property store."""

    def __init__(
        self,
        store: PropertyStore,
        options: ImportOptions,
        import_session_id: Optional[str] = None,
    ):
        self.store = store
        self.options = options
        self.import_session_id = import_session_id or str(uuid.uuid4())
        self.result = ImportResult()

    async def run(
        self,
        table: ParsedTable,
        mapping: Mapping[str, str],
        skip_existing: bool,
    ) -> AsyncIterator[ImportEvent]:
        rows = table.rows
        if self.options.row_cap is not None:
            rows = rows[: self.options.row_cap]

        total = len(rows)
        self.result = ImportResult(
            total=total,
            total_in_file=table.total_rows,
            remaining=table.total_rows - total,
        )
        logger.info(
            "Import %s started: %d of %d rows, skip_existing=%s",
            self.import_session_id,
            total,
            table.total_rows,
            skip_existing,
        )

        yield ProgressEvent(
            data=ProgressData(message="Iniciando importação...", progress=0, total=total)
        )

        for index, row in enumerate(rows):
            row_number = index + FIRST_DATA_ROW
            async for event in self._process_row(
                row_number, row, table.headers, mapping, skip_existing, total
            ):
                yield event

            if index % self.options.progress_every == 0 or index == total - 1:
                yield self._progress(index + 1, row_number)

            if self.options.row_delay > 0 and index < total - 1:
                await asyncio.sleep(self.options.row_delay)

        logger.info(
            "Import %s finished: %d rows processed, %d successful, %d failed, %d skipped",
            self.import_session_id,
            self.result.processed,
            self.result.successful,
            self.result.failed,
            self.result.skipped,
        )
        yield CompleteEvent(message=completion_message(self.result), data=self.result)

    async def _process_row(
        self,
        row_number: int,
        row: List[str],
        headers: List[str],
        mapping: Mapping[str, str],
        skip_existing: bool,
        total: int,
    ) -> AsyncIterator[ImportEvent]:
        data: Dict[str, Any] = {}
        try:
            if self.options.emit_diagnostics:
                yield RowProcessingEvent(
                    data=RowProcessingData(
                        row_number=row_number, total_rows=total, raw_data=", ".join(row)
                    )
                )

            data = coerce_row(headers, row, mapping, self.options.date_parser)
            logger.debug("Row %d mapped: %s", row_number, data)
            if self.options.emit_diagnostics:
                yield MappedDataEvent(
                    data=MappedRowData(row_number=row_number, mapped_data=dict(data))
                )

            validation = validate_row(data, row_number)
            if not validation.valid:
                event = self._fail(
                    row_number,
                    data.get("name") or UNNAMED,
                    validation.error_type,
                    validation.message,
                )
                yield event
                await self._audit(event)
                return

            name = data["name"]
            try:
                if skip_existing and await self.store.find_duplicate(
                    name, validation.latitude, validation.longitude, data["cidade"]
                ):
                    self.result.record_skip(row_number, name, DUPLICATE_REASON)
                    metrics.record_import_row("skipped")
                    logger.info("Row %d (%s): duplicate found, skipping", row_number, name)
                    return

                await self.store.create_property(
                    data, validation.latitude, validation.longitude, self.options.caller
                )
            except StoreError as e:
                event = self._fail(
                    row_number,
                    name,
                    RowErrorType.DATABASE_ERROR,
                    f"Row {row_number} ({name}): DB Error - {e.message}",
                )
                yield event
                await self._audit(event)
                return

            self.result.record_success(row_number, name)
            metrics.record_import_row("success")
            logger.info("Row %d: created property %s", row_number, name)

        except Exception as e:
            logger.exception("Unexpected error processing row %d", row_number)
            name = data.get("name") or UNKNOWN_NAME
            event = self._fail(
                row_number,
                name,
                RowErrorType.CRITICAL_ERROR,
                f"Row {row_number} ({name}): CRITICAL - {e}",
            )
            yield event
            await self._audit(event)

    def _fail(
        self, row_number: int, property_name: str, error_type: str, message: str
    ) -> ErrorDetailEvent:
        self.result.record_failure(message)
        metrics.record_import_row("failed")
        metrics.record_row_error(error_type)
        logger.warning("%s: %s", error_type, message)
        return ErrorDetailEvent(
            data=ErrorDetailData(
                row_number=row_number,
                property_name=property_name,
                error_type=error_type,
                error_message=message,
            )
        )

    async def _audit(self, event: ErrorDetailEvent) -> None:
        """Best-effort write of a row failure to the import log table."""
        if not self.options.log_errors:
            return
        detail = event.data
        try:
            await self.store.record_import_error(
                import_session_id=self.import_session_id,
                row_number=detail.row_number,
                property_name=detail.property_name,
                error_type=detail.error_type,
                error_message=detail.error_message,
                created_by=self.options.caller.id,
            )
        except Exception:
            logger.warning(
                "Failed to record import error for row %d", detail.row_number, exc_info=True
            )

    def _progress(self, processed: int, row_number: int) -> ProgressEvent:
        total = self.result.total
        return ProgressEvent(
            data=ProgressData(
                message=f"Processando {processed}/{total} propriedades...",
                progress=processed,
                total=total,
                successful=self.result.successful,
                failed=self.result.failed,
                skipped=self.result.skipped,
                errors=self.result.errors[-RECENT_ERRORS:],
                last_processed_row=row_number,
            )
        )
