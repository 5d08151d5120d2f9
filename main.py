from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, StreamingResponse
from fastapi.middleware.cors import CORSMiddleware
from models import ScanRequest, ScanResult
from batch import BatchScanCoordinator, normalize_targets
from config import settings
from context import ScanContext
import asyncio
import logging


logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Curated Gallery Scanner", version="1.0.0")

# The results UI is served from elsewhere
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

coordinator = BatchScanCoordinator()


def _targets(scan_request: ScanRequest):
    urls = normalize_targets(scan_request.urls)
    if not urls:
        raise HTTPException(status_code=400, detail="No URLs provided")
    return urls


async def _cancel_on_disconnect(request: Request, ctx: ScanContext, interval: float = 0.5):
    """Cancel the batch once the client goes away."""
    while not ctx.cancelled:
        if await request.is_disconnected():
            logger.info("Client disconnected, cancelling scan")
            ctx.cancel()
            return
        await asyncio.sleep(interval)


@app.get("/healthz")
async def health_check():
    """Health check endpoint."""
    return {"status": "ok"}


@app.post("/scan")
async def scan_urls(scan_request: ScanRequest, request: Request):
    """
    Scan URLs sequentially and stream progress as newline-delimited JSON.

    Request body:
        {
            "urls": ["https://example.com/page"]
        }

    Every line is a ScanEvent; the last line for a URL carries its result.
    """
    urls = _targets(scan_request)
    try:
        ctx = ScanContext()

        async def event_stream():
            watcher = asyncio.create_task(_cancel_on_disconnect(request, ctx))
            try:
                async for event in coordinator.stream(urls, ctx):
                    yield event.model_dump_json(exclude_none=True) + "\n"
            finally:
                watcher.cancel()

        return StreamingResponse(event_stream(), media_type="application/x-ndjson")
    except Exception:
        logger.exception("Failed to start scan")
        return JSONResponse(status_code=500, content={"error": "Internal server error"})


@app.post("/scan/summary", response_model=ScanResult)
async def scan_summary(scan_request: ScanRequest):
    """Scan URLs and return only the collapsed batch summary."""
    urls = _targets(scan_request)
    try:
        return await coordinator.scan(urls, ScanContext())
    except Exception:
        logger.exception("Batch scan failed")
        return JSONResponse(status_code=500, content={"error": "Internal server error"})


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.app_host, port=settings.app_port)
