from playwright.async_api import async_playwright, Error as PlaywrightError, TimeoutError as PlaywrightTimeout
from typing import Callable, Optional
from config import Settings, settings as default_settings
from models import FetchResult
from parser import clean_html, GALLERY_SELECTOR
import asyncio
import logging


logger = logging.getLogger(__name__)

LAUNCH_ARGS = ['--no-sandbox', '--disable-setuid-sandbox', '--disable-dev-shm-usage']


class BrowserFetcher:
    """Render-capable fetch using a headless Playwright Chromium."""

    name = 'Browser'

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or default_settings

    async def fetch(self, url: str, on_step: Callable[[str], None]) -> FetchResult:
        """
        Render ``url`` in a fresh browser and return the cleaned body markup.

        A failed or timed-out navigation marks the page as possibly blocked
        and the scan carries on with whatever was rendered. The browser is
        closed on every exit path, including cancellation.
        """
        trace = []
        cloudflare_blocked = False

        def step(label: str):
            trace.append(label)
            on_step(label)

        step('Initializing browser')
        launch_options = {'headless': True, 'args': LAUNCH_ARGS}
        if self.settings.browser_executable_path:
            launch_options['executable_path'] = self.settings.browser_executable_path

        async with async_playwright() as p:
            browser = await p.chromium.launch(**launch_options)
            try:
                step('Browser launched')
                context = await browser.new_context(user_agent=self.settings.user_agent)
                page = await context.new_page()

                try:
                    await page.goto(
                        url,
                        wait_until='networkidle',
                        timeout=self.settings.navigation_timeout_ms
                    )
                    step('Page loaded')
                except PlaywrightTimeout:
                    cloudflare_blocked = True
                    step('Navigation timed out, continuing')
                    logger.warning('Navigation timeout for %s, treating as possibly blocked', url)
                except PlaywrightError as e:
                    cloudflare_blocked = True
                    step(f'Navigation failed, continuing: {e.message}')
                    logger.warning('Navigation failed for %s: %s', url, e.message)

                try:
                    await page.wait_for_selector(
                        GALLERY_SELECTOR,
                        timeout=self.settings.selector_timeout_ms
                    )
                    step('Gallery elements found')
                except PlaywrightTimeout:
                    step('Gallery selector timeout, continuing')

                # Late-rendering carousel content
                await asyncio.sleep(self.settings.settle_delay)

                html = await page.content()
                step('DOM captured')
            finally:
                await browser.close()

        return FetchResult(
            html=clean_html(html),
            puppeteer_used=True,
            cloudflare_blocked=cloudflare_blocked,
            debug_trace=trace,
        )
