from typing import AsyncIterator, Dict, Iterable, List, Optional
from context import ScanCancelled, ScanContext
from models import (
    BROKEN, NO_GALLERY, WORKING, EventResult, GalleryItemBase, ScanEvent,
    ScanResult, with_status,
)
from scraper import GalleryScanner, is_scan_target
import asyncio
import logging


logger = logging.getLogger(__name__)

_DONE = object()


def normalize_targets(urls: Iterable) -> List[str]:
    """Drop malformed entries and exact duplicates, keeping input order."""
    targets = []
    seen = set()
    for url in urls or []:
        if not is_scan_target(url):
            logger.warning('Skipping malformed scan target: %r', url)
            continue
        if url in seen:
            continue
        seen.add(url)
        targets.append(url)
    return targets


def resolve_page_status(items: List[GalleryItemBase]) -> str:
    """Resolve the status reported for a page from all of its items."""
    statuses = {item.status for item in items}
    if BROKEN in statuses:
        return BROKEN
    if NO_GALLERY in statuses and WORKING not in statuses:
        return NO_GALLERY
    return WORKING


def collapse_items(items: Iterable[GalleryItemBase]) -> List[GalleryItemBase]:
    """
    Keep one representative item per page_url.

    broken dominates the status whatever the order; cloudflare_blocked is
    OR-combined independently of the status; a working representative is
    downgraded by a later "no curated gallery" item.
    """
    by_page: Dict[str, GalleryItemBase] = {}
    for item in items:
        existing = by_page.get(item.page_url)
        if existing is None:
            by_page[item.page_url] = item
            continue

        blocked = existing.cloudflare_blocked or item.cloudflare_blocked
        if item.status == BROKEN and existing.status != BROKEN:
            existing = with_status(item, BROKEN, cloudflare_blocked=blocked)
        elif existing.status == WORKING and item.status == NO_GALLERY:
            existing = with_status(existing, NO_GALLERY, cloudflare_blocked=blocked)
        elif blocked != existing.cloudflare_blocked:
            existing = existing.model_copy(update={'cloudflare_blocked': blocked})
        by_page[item.page_url] = existing

    return list(by_page.values())


def build_scan_result(items: Iterable[GalleryItemBase], total_pages: int) -> ScanResult:
    unique = collapse_items(items)
    return ScanResult(
        total_pages=total_pages,
        broken_count=sum(1 for item in unique if item.status == BROKEN),
        working_count=sum(1 for item in unique if item.status == WORKING),
        no_gallery_count=sum(1 for item in unique if item.status == NO_GALLERY),
        cloudflare_blocked_count=sum(1 for item in unique if item.cloudflare_blocked),
        items=unique,
    )


class BatchScanCoordinator:
    """Scans URLs one at a time and reports progress as ScanEvents."""

    def __init__(self, scanner: Optional[GalleryScanner] = None):
        self.scanner = scanner or GalleryScanner()

    async def stream(self, urls: Iterable[str], ctx: ScanContext) -> AsyncIterator[ScanEvent]:
        """
        Yield progress events for every URL, in order.

        Each URL produces "processing" events as steps complete and one
        final event carrying its items. Stops silently once ``ctx`` is
        cancelled.
        """
        targets = normalize_targets(urls)
        logger.info('Starting batch scan of %d URLs', len(targets))

        for index, url in enumerate(targets, start=1):
            if ctx.cancelled:
                logger.info('Batch cancelled before %s (%d/%d)', url, index, len(targets))
                return

            queue: asyncio.Queue = asyncio.Queue()
            steps: List[str] = []

            def on_step(label: str, url=url, steps=steps, queue=queue):
                steps.append(label)
                queue.put_nowait(ScanEvent(
                    url=url, status='processing', steps=list(steps), currentStep=label
                ))

            async def run(url=url, on_step=on_step, queue=queue):
                try:
                    return await self.scanner.scan_one(url, on_step, ctx)
                finally:
                    queue.put_nowait(_DONE)

            on_step(f'Scanning URL {index} of {len(targets)}')
            task = asyncio.create_task(run())
            try:
                while True:
                    event = await queue.get()
                    if event is _DONE:
                        break
                    yield event
                items = await task
            except ScanCancelled:
                logger.info('Batch cancelled while scanning %s', url)
                return
            finally:
                if not task.done():
                    task.cancel()
                    await asyncio.gather(task, return_exceptions=True)

            status = resolve_page_status(items)
            steps.append('Scan complete')
            logger.info('Scanned %s: %s', url, status)
            yield ScanEvent(
                url=url,
                status=status,
                steps=list(steps),
                currentStep='Scan complete',
                result=EventResult(items=items),
            )

        logger.info('Batch scan finished (%d URLs)', len(targets))

    async def scan(self, urls: Iterable[str], ctx: Optional[ScanContext] = None) -> ScanResult:
        """Run a whole batch and return its collapsed summary."""
        ctx = ctx or ScanContext()
        targets = normalize_targets(urls)
        items: List[GalleryItemBase] = []
        async for event in self.stream(targets, ctx):
            if event.result is not None:
                items.extend(event.result.items)
        return build_scan_result(items, total_pages=len(targets))
