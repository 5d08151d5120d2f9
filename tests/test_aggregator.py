"""Tests for the client-side stream aggregator."""

import asyncio
import json
import time

import httpx
import pytest

from aggregator import ScanRequestError, ScanSession
from conftest import run
from models import ScanEvent, make_item

URLS = [
    "https://www.example.com/cat/1",
    "https://www.example.com/cat/2",
    "https://www.example.com/cat/3",
]


def processing(url, *steps):
    return ScanEvent(url=url, status="processing", steps=list(steps), currentStep=steps[-1])


def final(url, status, *item_statuses, blocked=False):
    items = [make_item(s, page_url=url, cloudflare_blocked=blocked) for s in item_statuses]
    return ScanEvent(
        url=url, status=status, steps=["Scan complete"], currentStep="Scan complete",
        result={"items": items},
    )


def ndjson(*events):
    return "".join(event.model_dump_json(exclude_none=True) + "\n" for event in events)


def client_for(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://scanner")


async def run_session(session, handler, resume=False):
    async with client_for(handler) as client:
        if resume:
            return await session.resume(client)
        return await session.run(client)


class TestApplyEvents:

    def test_starts_pending(self):
        session = ScanSession(URLS + [URLS[0], "mailto:someone"])
        assert session.urls == URLS
        assert all(s.status == "pending" for s in session.statuses.values())
        assert session.progress() == 0

    def test_processing_then_completed(self):
        session = ScanSession(URLS)
        session.apply_event(processing(URLS[0], "Scanning URL 1 of 3"))
        status = session.statuses[URLS[0]]
        assert status.status == "processing"
        assert status.startTime is not None

        session.apply_event(final(URLS[0], "broken", "working", "broken"))
        assert status.status == "completed"
        assert status.outcome == "broken"
        assert [i.status for i in status.result] == ["working", "broken"]
        assert status.elapsedTime >= 0
        assert session.progress() == 33

    def test_apply_line_decodes_items(self):
        session = ScanSession(URLS)
        session.apply_line(ndjson(final(URLS[1], "working", "working")))
        assert session.statuses[URLS[1]].result[0].status == "working"

    @pytest.mark.parametrize("line", [
        "",
        "   ",
        "not json",
        '{"url": "https://www.example.com/cat/1"}',
        '{"url": "https://www.example.com/cat/1", "status": "exploded"}',
        '{"url": "https://www.example.com/cat/1", "status": "working", '
        '"result": {"items": [{"page_url": "x", "status": "sideways"}]}}',
    ])
    def test_bad_lines_are_ignored(self, line):
        session = ScanSession(URLS)
        assert session.apply_line(line) is None
        assert session.statuses[URLS[0]].status == "pending"

    def test_unknown_url_is_ignored(self):
        session = ScanSession(URLS)
        assert session.apply_event(processing("https://elsewhere.example/", "x")) is None

    def test_halt_marks_in_flight_as_error(self):
        session = ScanSession(URLS)
        session.apply_event(final(URLS[0], "working", "working"))
        session.apply_event(processing(URLS[1], "Page loaded"))
        session.halt()

        assert session.statuses[URLS[0]].status == "completed"
        assert session.statuses[URLS[1]].status == "error"
        assert session.statuses[URLS[1]].error == "Scan halted"
        assert session.statuses[URLS[2]].status == "pending"
        assert session.resumable_urls() == URLS[1:]

    def test_summary_collapses_completed_items(self):
        session = ScanSession(URLS)
        session.apply_event(final(URLS[0], "broken", "working", "broken"))
        session.apply_event(final(URLS[1], "no curated gallery", "no curated gallery", blocked=True))
        result = session.summary()
        assert result.total_pages == 3
        assert result.broken_count == 1
        assert result.no_gallery_count == 1
        assert result.cloudflare_blocked_count == 1
        assert len(result.items) == 2

    def test_reset(self):
        session = ScanSession(URLS)
        session.apply_event(final(URLS[0], "working", "working"))
        session.halt()
        session.reset()
        assert session.resumable_urls() == URLS
        assert not session.halted
        assert session.summary().items == []


class TestRun:

    def test_streams_whole_batch(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, text=ndjson(
                processing(URLS[0], "Scanning URL 1 of 3"),
                final(URLS[0], "working", "working"),
                final(URLS[1], "broken", "broken"),
                final(URLS[2], "no curated gallery", "no curated gallery"),
            ))

        session = ScanSession(URLS)
        result = run(run_session(session, handler))
        assert seen == {"path": "/scan", "body": {"urls": URLS}}
        assert (result.working_count, result.broken_count, result.no_gallery_count) == (1, 1, 1)
        assert session.progress() == 100

    def test_rejected_request(self):
        def handler(request):
            return httpx.Response(400, json={"detail": "No URLs provided"})

        with pytest.raises(ScanRequestError) as excinfo:
            run(run_session(ScanSession(URLS), handler))
        assert excinfo.value.status_code == 400
        assert excinfo.value.detail == "No URLs provided"

    def test_transport_failure_keeps_partial_results(self):
        def handler(request):
            raise httpx.ConnectError("connection reset by peer")

        session = ScanSession(URLS)
        session.apply_event(final(URLS[0], "working", "working"))
        result = run(run_session(session, handler))
        assert result.working_count == 1
        assert session.resumable_urls() == URLS[1:]

    def test_truncated_stream_then_resume(self):
        requests = []

        def first(request):
            return httpx.Response(200, text=ndjson(
                final(URLS[0], "working", "working"),
                processing(URLS[1], "Browser launched"),
            ))

        def second(request):
            requests.append(json.loads(request.content))
            return httpx.Response(200, text=ndjson(
                final(URLS[1], "broken", "broken"),
                final(URLS[2], "working", "working"),
            ))

        session = ScanSession(URLS)
        run(run_session(session, first))
        assert session.statuses[URLS[1]].status == "error"
        assert session.statuses[URLS[2]].status == "pending"

        result = run(run_session(session, second, resume=True))
        assert requests == [{"urls": URLS[1:]}]
        assert result.total_pages == 3
        assert result.working_count == 2
        assert result.broken_count == 1
        assert session.resumable_urls() == []

    def test_halt_while_streaming(self):
        session = ScanSession(URLS)
        apply_line = session.apply_line

        def apply_and_halt(line):
            status = apply_line(line)
            if status is not None and status.status == "completed":
                session.halt()
            return status

        session.apply_line = apply_and_halt

        def handler(request):
            return httpx.Response(200, text=ndjson(
                final(URLS[0], "working", "working"),
                final(URLS[1], "working", "working"),
            ))

        result = run(run_session(session, handler))
        assert result.working_count == 1
        assert session.resumable_urls() == URLS[1:]

    def test_halt_drops_a_stalled_stream(self):
        async def body():
            yield ndjson(processing(URLS[0], "Navigating")).encode()
            await asyncio.sleep(5)
            yield ndjson(final(URLS[0], "working", "working")).encode()

        def handler(request):
            return httpx.Response(200, content=body())

        async def scan_then_halt(session):
            async with client_for(handler) as client:
                task = asyncio.ensure_future(session.run(client))
                await asyncio.sleep(0.3)
                session.halt()
                return await task

        session = ScanSession(URLS)
        started = time.monotonic()
        result = run(scan_then_halt(session))

        assert time.monotonic() - started < 1.0
        assert result.working_count == 0
        assert session.statuses[URLS[0]].status == "error"
        assert session.statuses[URLS[0]].error == "Scan halted"
        assert session.resumable_urls() == URLS
