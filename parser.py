from bs4 import BeautifulSoup
from typing import List, Tuple
from models import GalleryItemBase, make_item, WORKING, BROKEN, NO_GALLERY
import re


# Vendor markup: the curated gallery wrapper carries a structural and a layout
# class token; a healthy gallery renders pub__shoppable-image with the
# --visible-dots modifier inside it.
CONTAINER_PATTERN = re.compile(
    r'<div[^>]*class="[^"]*c1s88gxp[^"]*a1wqrctr[^"]*"[^>]*>(.*?)</div>',
    re.DOTALL,
)
WORKING_PATTERN = re.compile(r'pub__shoppable-image[^"]*--visible-dots')
SHOPPABLE_PATTERN = re.compile(r'pub__shoppable-image')
VIDEO_PATTERN = re.compile(r'<video\b', re.IGNORECASE)

GALLERY_SELECTOR = '[class*="c1s88gxp"], [class*="pub__shoppable-image"]'

NO_GALLERY_REASON = 'No curated gallery components found on this page'
WORKING_REASON = 'Shoppable gallery is working properly'
MISSING_SHOPPABLE_REASON = 'Container has image but missing pub__shoppable-image component'
MISSING_DOTS_REASON = 'Shoppable gallery missing --visible-dots class'

STRIPPED_TAGS = ['script', 'style', 'noscript']

TRUNCATION_MARKER = '...'


def truncate_html(html: str, max_length: int = 500) -> Tuple[str, bool]:
    """Truncate HTML to at most max_length characters, marker included."""
    if len(html) <= max_length:
        return html, False
    return html[:max(max_length - len(TRUNCATION_MARKER), 0)] + TRUNCATION_MARKER, True


def _is_noise_attribute(name: str) -> bool:
    name = name.lower()
    return name.startswith('data-') or (name.startswith('on') and len(name) > 2)


def clean_html(html: str) -> str:
    """
    Reduce a rendered document to its cleaned body markup.

    Keeps only the <body> subtree, removes script/style blocks and strips
    inline event handlers and data-* attributes.
    """
    if not html:
        return ''

    soup = BeautifulSoup(html, 'lxml')
    for tag in soup.find_all(STRIPPED_TAGS):
        tag.decompose()

    for tag in soup.find_all(True):
        noisy = [name for name in tag.attrs if _is_noise_attribute(name)]
        for name in noisy:
            del tag[name]

    body = soup.find('body')
    if body is None:
        return str(soup)
    return body.decode_contents()


def find_containers(html: str) -> List[Tuple[str, str]]:
    """Return (container markup, inner content) for every gallery container."""
    return [(match.group(0), match.group(1)) for match in CONTAINER_PATTERN.finditer(html)]


def classify_container(inner: str) -> Tuple[str, str, str]:
    """Return (status, alt text, reason) for one container's inner content."""
    if WORKING_PATTERN.search(inner):
        return WORKING, 'Curated gallery with visible dots', WORKING_REASON
    if not SHOPPABLE_PATTERN.search(inner):
        return BROKEN, 'Broken curated gallery', MISSING_SHOPPABLE_REASON
    return BROKEN, 'Gallery without visible dots', MISSING_DOTS_REASON


def classify_galleries(
    html: str,
    page_url: str,
    puppeteer_used: bool = False,
    debug_info: str = '',
    cloudflare_blocked: bool = False,
    max_html_chars: int = 50_000,
    max_classify_chars: int = 2_000_000,
    snippet_chars: int = 500,
) -> List[GalleryItemBase]:
    """
    Classify every curated gallery container found in cleaned HTML.

    This is pattern matching over the vendor's class names, not DOM parsing.
    If the vendor renames c1s88gxp/a1wqrctr every page silently becomes
    "no curated gallery". Containers wrapping a <video> are skipped. The
    inner content of a container ends at its first closing </div>.

    Returns one item per non-video container (possibly none), or a single
    "no curated gallery" item when the page has no container at all.
    """
    html = html or ''
    scraped_html, _ = truncate_html(html, max_html_chars)
    common = {
        'page_url': page_url,
        'scraped_html': scraped_html,
        'puppeteer_used': puppeteer_used,
        'debug_info': debug_info,
        'cloudflare_blocked': cloudflare_blocked,
    }

    containers = find_containers(html[:max_classify_chars])
    if not containers:
        return [make_item(
            NO_GALLERY,
            image_url='',
            alt_text='No curated gallery',
            reason=NO_GALLERY_REASON,
            **common
        )]

    items = []
    for container, inner in containers:
        # Video galleries are not classified
        if VIDEO_PATTERN.search(inner):
            continue

        status, alt_text, reason = classify_container(inner)
        items.append(make_item(
            status,
            image_url=container[:snippet_chars],
            alt_text=alt_text,
            reason=reason,
            **common
        ))

    return items
