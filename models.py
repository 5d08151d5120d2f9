from pydantic import BaseModel, Field
from typing import Annotated, List, Optional, Literal, Union


WORKING = "working"
BROKEN = "broken"
NO_GALLERY = "no curated gallery"

GalleryStatus = Literal["broken", "working", "no curated gallery"]
EventStatus = Literal["processing", "broken", "working", "no curated gallery"]
LiveStatus = Literal["pending", "processing", "completed", "error"]


class ScanRequest(BaseModel):
    urls: List[str] = []


class GalleryItemBase(BaseModel):
    page_url: str
    image_url: str = ""
    alt_text: str = ""
    reason: str = ""
    scraped_html: str = ""
    puppeteer_used: bool = False
    debug_info: str = ""
    cloudflare_blocked: bool = False


class WorkingItem(GalleryItemBase):
    status: Literal["working"] = WORKING


class BrokenItem(GalleryItemBase):
    status: Literal["broken"] = BROKEN


class NoGalleryItem(GalleryItemBase):
    status: Literal["no curated gallery"] = NO_GALLERY


GalleryItem = Annotated[
    Union[WorkingItem, BrokenItem, NoGalleryItem],
    Field(discriminator="status"),
]

ITEM_TYPES = {
    WORKING: WorkingItem,
    BROKEN: BrokenItem,
    NO_GALLERY: NoGalleryItem,
}


def make_item(status: str, **fields) -> GalleryItemBase:
    """Build the gallery item variant matching ``status``."""
    return ITEM_TYPES[status](**fields)


def with_status(item: GalleryItemBase, status: str, **updates) -> GalleryItemBase:
    """Return a copy of ``item`` re-tagged as ``status``."""
    fields = item.model_dump(exclude={"status"})
    fields.update(updates)
    return make_item(status, **fields)


class ScanResult(BaseModel):
    total_pages: int
    broken_count: int = 0
    working_count: int = 0
    no_gallery_count: int = 0
    cloudflare_blocked_count: int = 0
    items: List[GalleryItem] = []


class EventResult(BaseModel):
    items: List[GalleryItem]


class ScanEvent(BaseModel):
    url: str
    status: EventStatus
    steps: List[str] = []
    currentStep: str = ""
    result: Optional[EventResult] = None


class URLScanStatus(BaseModel):
    url: str
    status: LiveStatus = "pending"
    steps: List[str] = []
    outcome: Optional[GalleryStatus] = None
    result: Optional[List[GalleryItem]] = None
    error: Optional[str] = None
    startTime: Optional[float] = None
    elapsedTime: Optional[float] = None


class FetchResult(BaseModel):
    html: str = ""
    puppeteer_used: bool = False
    cloudflare_blocked: bool = False
    blocked: bool = False  # anti-bot response returned in place of content
    status_code: Optional[int] = None
    debug_trace: List[str] = []
