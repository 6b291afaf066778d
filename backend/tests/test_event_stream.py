"""Tests for the NDJSON event channel."""

import asyncio
import json
from unittest.mock import patch

import pytest

from patrulha.core.errors import APIException, ErrorCode
from patrulha.models.import_models import (
    CompleteEvent,
    ErrorDetailData,
    ErrorDetailEvent,
    ImportResult,
    ProgressData,
    ProgressEvent,
)
from patrulha.services.event_stream import (
    EventChannel,
    encode_event,
    pump_events,
    running_task_count,
    start_background,
)


def progress(n):
    return ProgressEvent(data=ProgressData(message=f"Processando {n}", progress=n, total=3))


async def events_of(*events):
    for event in events:
        yield event


async def read_all(channel):
    return [json.loads(line) async for line in channel.lines()]


class TestEncodeEvent:
    """Tests for wire encoding."""

    def test_one_line_camel_case(self):
        line = encode_event(
            ErrorDetailEvent(
                data=ErrorDetailData(
                    row_number=3,
                    property_name="Sítio",
                    error_type="MISSING_FIELDS",
                    error_message="Row 3 (Sítio): Missing latitude",
                )
            )
        )
        assert line.endswith("\n")
        assert line.count("\n") == 1
        payload = json.loads(line)
        assert payload["type"] == "error_detail"
        assert payload["data"]["rowNumber"] == 3
        assert payload["data"]["propertyName"] == "Sítio"
        assert payload["data"]["errorType"] == "MISSING_FIELDS"
        assert "timestamp" in payload["data"]
        assert "Sítio" in line

    def test_complete_event_shape(self):
        result = ImportResult(total=1, total_in_file=1)
        result.record_success(2, "Fazenda A")
        payload = json.loads(encode_event(CompleteEvent(message="ok", data=result)))
        assert payload["type"] == "complete"
        assert payload["success"] is True
        assert payload["data"]["successful"] == 1
        assert payload["data"]["results"] == [{"row": 2, "name": "Fazenda A", "status": "success"}]
        assert payload["data"]["skippedItems"] == []
        assert payload["data"]["totalInFile"] == 1


class TestEventChannel:
    """Tests for channel ordering and detachment."""

    @pytest.mark.asyncio
    async def test_lines_in_order_until_close(self):
        channel = EventChannel()
        for n in range(3):
            channel.send(progress(n))
        channel.close()

        payloads = await read_all(channel)
        assert [p["data"]["progress"] for p in payloads] == [0, 1, 2]
        assert channel.sent == 3

    @pytest.mark.asyncio
    async def test_send_after_close_ignored(self):
        channel = EventChannel()
        channel.close()
        channel.send(progress(1))
        channel.close()

        assert await read_all(channel) == []

    @pytest.mark.asyncio
    async def test_detached_channel_drops_events(self):
        channel = EventChannel()
        channel.detach()
        channel.send(progress(1))

        assert channel.detached is True
        assert channel.sent == 0

    @pytest.mark.asyncio
    async def test_consumer_closing_detaches(self):
        channel = EventChannel()
        channel.send(progress(0))
        channel.send(progress(1))

        lines = channel.lines()
        await lines.__anext__()
        await lines.aclose()

        assert channel.detached is True


class TestPumpEvents:
    """Tests for running the producer into a channel."""

    @pytest.mark.asyncio
    async def test_before_and_after_hooks(self):
        calls = []

        async def before():
            calls.append("before")

        async def after():
            calls.append("after")

        channel = EventChannel()
        await pump_events(events_of(progress(0)), channel, before=before, after=after)

        assert calls == ["before", "after"]
        assert [p["type"] for p in await read_all(channel)] == ["progress"]

    @pytest.mark.asyncio
    async def test_setup_failure_becomes_error_event(self):
        async def before():
            raise APIException(code=ErrorCode.DB_CONNECT_FAILED, message="Failed to connect to database")

        closed = []

        async def after():
            closed.append(True)

        channel = EventChannel()
        await pump_events(events_of(progress(0)), channel, before=before, after=after)

        payloads = await read_all(channel)
        assert payloads == [{"type": "error", "error": "Failed to connect to database"}]
        assert closed == [True]

    @pytest.mark.asyncio
    async def test_producer_failure_after_events(self):
        async def failing():
            yield progress(0)
            raise RuntimeError("stream broke")

        channel = EventChannel()
        await pump_events(failing(), channel)

        payloads = await read_all(channel)
        assert [p["type"] for p in payloads] == ["progress", "error"]
        assert payloads[-1]["error"] == "stream broke"

    @pytest.mark.asyncio
    async def test_producer_keeps_running_after_detach(self):
        """A disconnected consumer does not stop the batch."""
        produced = []

        async def producer():
            for n in range(3):
                produced.append(n)
                yield progress(n)

        channel = EventChannel()
        channel.detach()
        task = start_background(pump_events(producer(), channel))
        assert running_task_count() >= 1
        await asyncio.wait_for(task, timeout=5)

        assert produced == [0, 1, 2]
        assert channel.sent == 0
        assert task.done()

    @pytest.mark.asyncio
    async def test_run_outcome_counted(self):
        async def failing():
            yield progress(0)
            raise RuntimeError("stream broke")

        with patch("patrulha.services.event_stream.metrics") as mock_metrics:
            await pump_events(events_of(progress(0)), EventChannel())
            mock_metrics.record_import_run.assert_called_once_with("import", "completed")

            mock_metrics.reset_mock()
            await pump_events(failing(), EventChannel())
            mock_metrics.record_import_run.assert_called_once_with("import", "aborted")
