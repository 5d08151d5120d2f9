from typing import Callable, List, Optional, Sequence
from config import Settings, settings as default_settings
from context import ScanContext, ScanCancelled
from js_scraper import BrowserFetcher
from static_scraper import HttpFetcher
from models import FetchResult, GalleryItemBase, make_item, BROKEN, NO_GALLERY
from parser import classify_galleries
import asyncio
import logging


logger = logging.getLogger(__name__)

StepCallback = Callable[[str], None]

VIDEO_ONLY_REASON = 'Only video galleries found on this page'


def safe_step(on_step: Optional[StepCallback]) -> StepCallback:
    """Wrap a progress callback so it can never break the pipeline."""
    def step(label: str):
        if on_step is None:
            return
        try:
            on_step(label)
        except Exception:
            logger.debug('Progress callback failed for step %r', label, exc_info=True)
    return step


def is_scan_target(url) -> bool:
    return isinstance(url, str) and url.startswith(('http://', 'https://'))


class PageFetcher:
    """
    Fetch strategy selector.

    Strategies are tried in order; a strategy that raises hands over to the
    next one. The last strategy's error propagates.
    """

    def __init__(self, strategies: Optional[Sequence] = None, settings: Optional[Settings] = None):
        self.settings = settings or default_settings
        if strategies is None:
            strategies = [HttpFetcher(self.settings)]
            if self.settings.use_browser:
                strategies.insert(0, BrowserFetcher(self.settings))
        if not strategies:
            raise ValueError('At least one fetch strategy is required')
        self.strategies = list(strategies)

    async def fetch(self, url: str, on_step: StepCallback, ctx: ScanContext) -> FetchResult:
        step = safe_step(on_step)
        failures = []

        for index, strategy in enumerate(self.strategies):
            is_last = index == len(self.strategies) - 1
            ctx.raise_if_cancelled()
            try:
                result = await ctx.guard(strategy.fetch(url, step))
            except ScanCancelled:
                raise
            except Exception as e:
                if is_last:
                    raise
                logger.warning('%s fetch failed for %s, falling back: %s', strategy.name, url, e)
                failures.append(f'{strategy.name} failed: {e}')
                step('Falling back to plain HTTP fetch')
                continue

            result.debug_trace = failures + result.debug_trace
            return result

        raise RuntimeError('No fetch strategy produced a result')


class GalleryScanner:
    """Runs fetch and classification for a single URL."""

    def __init__(self, fetcher: Optional[PageFetcher] = None, settings: Optional[Settings] = None):
        self.settings = settings or default_settings
        self.fetcher = fetcher or PageFetcher(settings=self.settings)
        self.total_timeout = self.settings.total_timeout

    async def scan_one(
        self,
        url: str,
        on_step: Optional[StepCallback] = None,
        ctx: Optional[ScanContext] = None
    ) -> List[GalleryItemBase]:
        """
        Scan one URL and return its gallery items.

        Never raises for a failed scan: any error becomes a single broken
        item. Only cancellation of the run propagates.
        """
        ctx = ctx or ScanContext()
        try:
            return await asyncio.wait_for(
                self._scan_internal(url, safe_step(on_step), ctx),
                timeout=self.total_timeout
            )
        except ScanCancelled:
            raise
        except asyncio.TimeoutError:
            logger.warning('Scan of %s exceeded %s seconds', url, self.total_timeout)
            return [self._failure_item(url, f'Total scan timeout after {self.total_timeout:g} seconds')]
        except Exception as e:
            logger.exception('Scan failed for %s', url)
            return [self._failure_item(url, str(e) or type(e).__name__)]

    async def _scan_internal(self, url: str, step: StepCallback, ctx: ScanContext) -> List[GalleryItemBase]:
        if not is_scan_target(url):
            raise ValueError(f'Unsupported URL: {url!r}')

        fetched = await self.fetcher.fetch(url, step, ctx)
        debug_info = ' | '.join(fetched.debug_trace)

        if fetched.blocked:
            return [make_item(
                BROKEN,
                page_url=url,
                image_url='N/A',
                alt_text='Cloudflare blocked',
                reason=f'Blocked by Cloudflare (status {fetched.status_code})',
                puppeteer_used=fetched.puppeteer_used,
                debug_info=debug_info,
                cloudflare_blocked=True,
            )]

        if fetched.status_code is not None and not 200 <= fetched.status_code < 300:
            return [make_item(
                BROKEN,
                page_url=url,
                image_url='N/A',
                alt_text='Page error',
                reason=f'Page returned status {fetched.status_code}',
                puppeteer_used=fetched.puppeteer_used,
                debug_info=debug_info,
                cloudflare_blocked=fetched.cloudflare_blocked,
            )]

        step('Classifying galleries')
        items = classify_galleries(
            fetched.html,
            url,
            puppeteer_used=fetched.puppeteer_used,
            debug_info=debug_info,
            cloudflare_blocked=fetched.cloudflare_blocked,
            max_html_chars=self.settings.max_html_chars,
            max_classify_chars=self.settings.max_classify_chars,
            snippet_chars=self.settings.snippet_chars,
        )

        if not items:
            items = [make_item(
                NO_GALLERY,
                page_url=url,
                alt_text='No curated gallery',
                reason=VIDEO_ONLY_REASON,
                puppeteer_used=fetched.puppeteer_used,
                debug_info=debug_info,
                cloudflare_blocked=fetched.cloudflare_blocked,
            )]

        return items

    def _failure_item(self, url, message: str) -> GalleryItemBase:
        return make_item(
            BROKEN,
            page_url=url if isinstance(url, str) else str(url),
            image_url='N/A',
            reason=f'Scan failed: {message}',
            debug_info=f'Fatal error: {message}',
        )
