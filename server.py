"""
server.py: HTTP front end for the Threads extractor

POST /api/extract   {"url": "..."}          -> extraction result JSON
GET  /api/download  ?url=...&filename=...   -> media bytes, streamed through
GET  /health                                -> liveness
"""

import asyncio
import logging
import os
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import List, Optional

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, StreamingResponse
from pydantic import BaseModel
from starlette.background import BackgroundTask

from threads_extractor import (
    Config,
    ExtractionError,
    MediaFetchError,
    MediaFetcher,
    MediaNotFound,
    ThreadsExtractor,
    is_trusted_media_url,
    setup_logging,
)

logger = logging.getLogger(__name__)

load_dotenv()


class ExtractRequest(BaseModel):
    url: str = ""


def parse_cors_origins() -> List[str]:
    raw = (os.getenv("CORS_ALLOWED_ORIGINS") or "").strip()
    if not raw:
        return ["https://threadsvid.com"]
    if raw == "*":
        return ["*"]
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


def error_response(message: str, status_code: int = 400) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, "success": False})


def safe_filename(filename: str) -> str:
    return "".join(c for c in filename if c not in '"\\\r\n').strip()


def create_app(
    extractor: Optional[ThreadsExtractor] = None,
    fetcher: Optional[MediaFetcher] = None,
) -> FastAPI:
    extractor = extractor or ThreadsExtractor()
    fetcher = fetcher or MediaFetcher()
    # Playwright's sync API is bound to the thread that started it
    browser_worker = ThreadPoolExecutor(max_workers=1, thread_name_prefix="browser")

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(browser_worker, extractor.start)
        try:
            yield
        finally:
            await loop.run_in_executor(browser_worker, extractor.close)
            browser_worker.shutdown(wait=True)

    app = FastAPI(title="Threads Media Extractor", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=parse_cors_origins(),
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    @app.exception_handler(RequestValidationError)
    async def invalid_payload_handler(_request: Request, _exc: RequestValidationError):
        return error_response("Invalid JSON payload")

    @app.post("/api/extract")
    async def extract(payload: ExtractRequest):
        url = (payload.url or "").strip()
        if not url:
            return error_response("URL is required")

        loop = asyncio.get_running_loop()
        try:
            result = await loop.run_in_executor(browser_worker, extractor.extract, url)
        except ExtractionError as exc:
            logger.warning(f"Extraction error for URL {url}: {exc.message}")
            return error_response(exc.message)
        return result.to_dict()

    @app.get("/api/download")
    def download(url: str = Query(""), filename: str = Query("")):
        if not url:
            return PlainTextResponse("URL parameter is required", status_code=400)
        if not is_trusted_media_url(url):
            return PlainTextResponse("URL must point to Threads media", status_code=400)

        try:
            upstream = fetcher.open_stream(url)
        except MediaNotFound:
            return PlainTextResponse("Media not found", status_code=404)
        except MediaFetchError:
            return PlainTextResponse("Failed to fetch media", status_code=500)

        headers = {}
        if filename:
            headers["Content-Disposition"] = f'attachment; filename="{safe_filename(filename)}"'
        if upstream.headers.get("Content-Length"):
            headers["Content-Length"] = upstream.headers["Content-Length"]

        return StreamingResponse(
            upstream.iter_content(chunk_size=Config.CHUNK_SIZE),
            media_type=upstream.headers.get("Content-Type", "application/octet-stream"),
            headers=headers,
            background=BackgroundTask(upstream.close),
        )

    @app.get("/health")
    def health():
        return {"status": "healthy", "time": datetime.now(timezone.utc).isoformat()}

    return app


def main() -> None:
    setup_logging()
    port = int(os.getenv("PORT", "8080"))
    logger.info(f"Threads media extractor starting on port {port}")
    uvicorn.run(create_app(), host="0.0.0.0", port=port)


if __name__ == "__main__":
    main()
