from pydantic import ValidationError
from typing import Dict, Iterable, List, Optional
from batch import build_scan_result, normalize_targets
from models import GalleryItemBase, ScanEvent, ScanResult, URLScanStatus
import asyncio
import httpx
import logging
import time


logger = logging.getLogger(__name__)


class ScanRequestError(Exception):
    """The scan server rejected a batch request."""

    def __init__(self, status_code: int, detail: str):
        super().__init__(f'Scan request failed with status {status_code}: {detail}')
        self.status_code = status_code
        self.detail = detail


class ScanSession:
    """Live per-URL state for one client scan session."""

    def __init__(self, urls: Iterable[str]):
        self.statuses: Dict[str, URLScanStatus] = {
            url: URLScanStatus(url=url) for url in normalize_targets(urls)
        }
        self._halt_event = asyncio.Event()

    @property
    def urls(self) -> List[str]:
        return list(self.statuses)

    def apply_line(self, line: str) -> Optional[URLScanStatus]:
        """Decode one NDJSON record and apply it. Bad records are ignored."""
        line = line.strip()
        if not line:
            return None
        try:
            event = ScanEvent.model_validate_json(line)
        except ValidationError as e:
            logger.warning('Ignoring malformed scan event: %s', e)
            return None
        return self.apply_event(event)

    def apply_event(self, event: ScanEvent) -> Optional[URLScanStatus]:
        status = self.statuses.get(event.url)
        if status is None:
            logger.debug('Ignoring event for unknown URL %s', event.url)
            return None

        now = time.monotonic()
        if status.startTime is None:
            status.startTime = now
        status.steps = list(event.steps)

        if event.result is None:
            status.status = 'processing'
        else:
            status.status = 'completed'
            status.outcome = event.status
            status.result = list(event.result.items)
            status.error = None
        status.elapsedTime = now - status.startTime
        return status

    def progress(self) -> int:
        """Percentage of URLs that are no longer pending or processing."""
        if not self.statuses:
            return 0
        done = sum(
            1 for s in self.statuses.values() if s.status not in ('pending', 'processing')
        )
        return round(done / len(self.statuses) * 100)

    def halt(self, reason: str = 'Scan halted') -> None:
        """
        Stop the running stream; in-flight URLs become errors.

        A running ``run()`` drops the connection at once, which cancels the
        batch on the server.
        """
        self._halt_event.set()
        for status in self.statuses.values():
            if status.status == 'processing':
                status.status = 'error'
                status.error = reason

    @property
    def halted(self) -> bool:
        return self._halt_event.is_set()

    def resumable_urls(self) -> List[str]:
        return [
            url for url, s in self.statuses.items() if s.status in ('pending', 'error')
        ]

    def items(self) -> List[GalleryItemBase]:
        items = []
        for status in self.statuses.values():
            if status.result:
                items.extend(status.result)
        return items

    def summary(self) -> ScanResult:
        return build_scan_result(self.items(), total_pages=len(self.statuses))

    def reset(self) -> None:
        self.statuses = {url: URLScanStatus(url=url) for url in self.statuses}
        self._halt_event.clear()

    async def run(
        self,
        client: httpx.AsyncClient,
        path: str = '/scan',
        urls: Optional[List[str]] = None
    ) -> ScanResult:
        """
        Stream a batch from the server into this session.

        Returns the summary of everything completed so far, also when the
        stream is halted or the connection drops.
        """
        urls = self.urls if urls is None else urls
        self._halt_event.clear()

        try:
            async with client.stream('POST', path, json={'urls': urls}) as response:
                if response.status_code >= 400:
                    await response.aread()
                    raise ScanRequestError(response.status_code, _error_detail(response))

                reader = asyncio.ensure_future(self._read_lines(response))
                halted = asyncio.ensure_future(self._halt_event.wait())
                try:
                    await asyncio.wait({reader, halted}, return_when=asyncio.FIRST_COMPLETED)
                finally:
                    halted.cancel()
                    if not reader.done():
                        logger.info('Scan stream halted by client')
                        reader.cancel()
                        await asyncio.gather(reader, return_exceptions=True)

                if not reader.cancelled():
                    reader.result()
        except httpx.TransportError as e:
            logger.warning('Scan stream interrupted: %s', e)
            self.halt(f'Stream interrupted: {e}')
            return self.summary()

        if self.halted:
            self.halt()
        else:
            # Stream ended without a final event for these URLs
            for url in urls:
                status = self.statuses.get(url)
                if status is not None and status.status == 'processing':
                    status.status = 'error'
                    status.error = 'Stream ended before the scan completed'
        return self.summary()

    async def _read_lines(self, response: httpx.Response) -> None:
        async for line in response.aiter_lines():
            self.apply_line(line)
            if self.halted:
                break

    async def resume(self, client: httpx.AsyncClient, path: str = '/scan') -> ScanResult:
        """Re-run only the URLs that never completed."""
        urls = self.resumable_urls()
        if not urls:
            return self.summary()
        for url in urls:
            self.statuses[url] = URLScanStatus(url=url)
        return await self.run(client, path, urls)


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text
    if isinstance(body, dict):
        return str(body.get('detail') or body.get('error') or body)
    return str(body)
