"""
Sheet Cache Backend - Main FastAPI Application
Serves a cached Google Sheets snapshot, refreshed periodically and on demand
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from html import escape
from typing import Optional

from fastapi import Depends, FastAPI
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse

from app.cache import DataUnavailableError, SheetCacheManager, get_cache_manager
from config.settings import settings

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("main")

# Version tracking
APP_VERSION = "v1.0.0"
APP_NAME = "Sheet Cache Backend"


def _log_diagnostics() -> None:
    """Report which credentials were loaded, never their values."""
    logger.info("--- DIAGNOSTIC CHECK ---")
    logger.info(f"API Key Loaded: {bool(settings.google_sheets_api_key)}")
    logger.info(f"Spreadsheet ID Loaded: {bool(settings.google_spreadsheet_id)}")
    logger.info("--- END DIAGNOSTIC ---")
    if not settings.is_configured:
        logger.error(
            "SERVER STARTUP ERROR: GOOGLE_SHEETS_API_KEY or GOOGLE_SPREADSHEET_ID not set. "
            "Data fetching will fail."
        )


@asynccontextmanager
async def lifespan(app: FastAPI):
    _log_diagnostics()
    manager = get_cache_manager()
    manager.start()
    logger.info(f"{APP_NAME} listening on port {settings.port}")
    logger.info("Data endpoint: /get-sheet-data")
    logger.info("Manual cache refresh endpoint: /refresh-data")
    try:
        yield
    finally:
        # Joins worker threads; keep it off the event loop
        await run_in_threadpool(manager.shutdown)


app = FastAPI(
    title=APP_NAME,
    description="Cached Google Sheets data with periodic and manual refresh",
    version=APP_VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allow_origins,
    allow_methods=["GET"],
    allow_headers=["Origin", "X-Requested-With", "Content-Type", "Accept"],
)


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "ok"}


@app.get("/version")
def version_info():
    """Version information endpoint."""
    return {
        "name": APP_NAME,
        "version": APP_VERSION,
        "full": f"{APP_NAME} {APP_VERSION}",
    }


@app.get("/cache/stats")
def cache_stats(manager: SheetCacheManager = Depends(get_cache_manager)):
    """Get cache statistics."""
    return manager.get_stats()


# =============================================================================
# DATA API
# =============================================================================

@app.get("/get-sheet-data")
def get_sheet_data(manager: SheetCacheManager = Depends(get_cache_manager)):
    """
    Serve the cached sheet snapshot.

    Tiers are consulted in order: memory, cache file, remote fetch.
    Returns 503 if none of them yields data.
    """
    try:
        payload, meta = manager.read()
    except DataUnavailableError as e:
        logger.error(f"Serving 503: {e}")
        return JSONResponse(
            status_code=503,
            content={"error": "Service temporarily unavailable: Could not load data."},
        )
    return JSONResponse(content=payload, headers=meta.to_headers())


@app.get("/refresh-data")
def refresh_data(manager: SheetCacheManager = Depends(get_cache_manager)):
    """
    Manually refresh the cache from Google Sheets.

    Returns 429 while another refresh is running, 500 if the fetch fails.
    """
    logger.info("MANUAL REFRESH triggered via /refresh-data")
    result = manager.refresh(manual=True)

    if result.in_progress:
        return JSONResponse(
            status_code=429,
            content={
                "message": "A cache refresh is already in progress. Please try again in a moment.",
                **result.to_dict(),
            },
            headers={"Retry-After": "30"},
        )

    if not result.success:
        return JSONResponse(
            status_code=500,
            content={
                "message": "Failed to refresh cache. Check server logs for details.",
                **result.to_dict(),
            },
        )

    return {
        "message": "Cache refreshed successfully. New data loaded.",
        **result.to_dict(),
    }


# =============================================================================
# STATUS PAGE
# =============================================================================

def _fmt(moment: Optional[datetime]) -> str:
    return moment.strftime("%Y-%m-%d %H:%M:%S UTC") if moment else "Unknown"


def render_status_page(status: dict) -> str:
    """Render the cache status as a small HTML page."""
    hours = status["max_age_seconds"] / 3600
    file_info = status["file"]
    memory_info = status["memory"]

    if file_info["status"] == "not_found":
        file_html = f"Cache file ({escape(file_info['path'])}) does not currently exist."
    elif file_info["status"] in ("corrupt", "unreadable"):
        reason = "empty or invalid" if file_info["status"] == "corrupt" else "unreadable"
        file_html = (
            f"Cache file last modified (on disk): {_fmt(file_info['last_modified'])}<br>"
            f"Data timestamp inside file: Unknown (file is {reason})<br>"
            f"Is data in file considered stale (older than {hours:g} hrs)? True."
        )
    else:
        file_html = (
            f"Cache file last modified (on disk): {_fmt(file_info['last_modified'])}<br>"
            f"Data timestamp inside file: {_fmt(file_info['updated_at'])}<br>"
            f"Is data in file considered stale (older than {hours:g} hrs)? {file_info['stale']}."
        )

    if memory_info["populated"]:
        memory_html = (
            f"In-memory cache is POPULATED.<br>"
            f"Data timestamp in memory: {_fmt(memory_info['updated_at'])}<br>"
            f"Is data in memory stale? {memory_info['stale']}."
        )
    else:
        memory_html = (
            "In-memory cache is currently EMPTY. It will populate from file or "
            "Google Sheets on the next /get-sheet-data request or during startup."
        )

    activity_html = (
        f"Startup cache population complete? {status['bootstrap_complete']}<br>"
        f"Refresh in progress? {status['refresh_in_flight']}<br>"
        f"Scheduled refresh running? {status['scheduler_running']}"
    )

    warning_html = ""
    if not status["configured"]:
        warning_html = (
            '<br><br><strong style="color:red;">CRITICAL WARNING: GOOGLE_SHEETS_API_KEY or '
            "GOOGLE_SPREADSHEET_ID is not set! Data fetching will fail.</strong>"
        )

    return f"""<!DOCTYPE html>
<html>
<head><title>{APP_NAME}</title></head>
<body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, Arial, sans-serif; padding: 24px;">
    {APP_NAME} with file-based cache is running.<br>
    App data endpoint: <a href="/get-sheet-data">/get-sheet-data</a><br>
    <b>To MANUALLY REFRESH cache: <a href="/refresh-data">/refresh-data</a></b>
    (Visit this link to force an update from Google Sheets)<br><br>
    --- Cache Status ---<br>
    {file_html}
    <br><br>--- Memory Cache Status ---<br>
    {memory_html}
    <br><br>--- Activity ---<br>
    {activity_html}
    {warning_html}
</body>
</html>
"""


@app.get("/", response_class=HTMLResponse)
def home(manager: SheetCacheManager = Depends(get_cache_manager)):
    """Informational status page."""
    return HTMLResponse(content=render_status_page(manager.get_status()))


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app.main:app", host="0.0.0.0", port=settings.port)
