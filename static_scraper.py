import httpx
import logging
from typing import Callable, Optional
from config import Settings, settings as default_settings
from detector import is_blocked
from models import FetchResult


logger = logging.getLogger(__name__)


class HttpFetcher:
    """Plain HTTP fetch using httpx; no script execution."""

    name = 'HTTP'

    def __init__(self, settings: Optional[Settings] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings or default_settings
        self.transport = transport
        self.headers = {
            'User-Agent': self.settings.user_agent
        }

    async def fetch(self, url: str, on_step: Callable[[str], None]) -> FetchResult:
        """
        Fetch the server-delivered HTML for ``url``.

        Transport errors (DNS, connection, timeout) propagate to the caller.
        """
        on_step('Fetching page over HTTP')
        async with httpx.AsyncClient(
            timeout=self.settings.http_timeout,
            follow_redirects=True,
            headers=self.headers,
            transport=self.transport,
        ) as client:
            response = await client.get(url)
            html = response.text

        trace = [f'HTTP status: {response.status_code}']

        if is_blocked(response.status_code, response.headers, html):
            logger.warning('Cloudflare block detected for %s (status %s)', url, response.status_code)
            trace.append('Cloudflare block detected')
            on_step('Cloudflare block detected')
            return FetchResult(
                html=html,
                cloudflare_blocked=True,
                blocked=True,
                status_code=response.status_code,
                debug_trace=trace,
            )

        trace.append('Using fetch fallback (no JS execution)')
        on_step('Content fetched')
        return FetchResult(
            html=html,
            status_code=response.status_code,
            debug_trace=trace,
        )
