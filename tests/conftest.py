"""Shared fixtures and fakes for the scanner tests."""

import asyncio

import pytest

from config import Settings
from models import FetchResult


WORKING_GALLERY = (
    '<div class="c1s88gxp a1wqrctr">'
    '<div class="pub__shoppable-image pub__shoppable-image--visible-dots"><img src="a.jpg">'
    '</div></div>'
)
MISSING_DOTS_GALLERY = (
    '<div class="c1s88gxp a1wqrctr">'
    '<div class="pub__shoppable-image"><img src="a.jpg">'
    '</div></div>'
)
PLAIN_IMAGE_GALLERY = '<div class="c1s88gxp a1wqrctr"><img src="a.jpg" alt="Sofa"></div>'
VIDEO_GALLERY = '<div class="c1s88gxp a1wqrctr"><video src="clip.mp4"></video></div>'


def page(*fragments: str) -> str:
    return '<main>' + ''.join(fragments) + '</main>'


class FakeStrategy:
    """Fetch strategy answering from a url -> FetchResult/Exception table."""

    def __init__(self, name='Fake', responses=None, default=None, steps=(), delay=0.0):
        self.name = name
        self.responses = responses or {}
        self.default = default
        self.steps = steps
        self.delay = delay
        self.calls = []
        self.closed = []

    async def fetch(self, url, on_step):
        self.calls.append(url)
        try:
            for label in self.steps:
                on_step(label)
            if self.delay:
                await asyncio.sleep(self.delay)
            response = self.responses.get(url, self.default)
            if isinstance(response, Exception):
                raise response
            if response is None:
                raise RuntimeError(f'no response for {url}')
            return response.model_copy(deep=True)
        finally:
            self.closed.append(url)


@pytest.fixture
def settings():
    return Settings(
        use_browser=False,
        settle_delay=0,
        total_timeout=5,
        max_html_chars=1000,
    )


@pytest.fixture
def working_fetch():
    return FetchResult(html=page(WORKING_GALLERY), puppeteer_used=True, debug_trace=['DOM captured'])


def run(coro):
    return asyncio.run(coro)
