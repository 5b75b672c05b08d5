"""
FastAPI Application for Corgi
Example HTTP endpoint serving offline VIN decodes.
"""
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from typing import Optional
import logging
import json
import time
import uuid
from datetime import datetime, timezone

from .config import config
from .core.errors import InfrastructureError
from .core.schemas import DecodeOptions
from .decoder import VINDecoder, create_decoder
from .observability import metrics


# Structured JSON logging
class JSONFormatter(logging.Formatter):
    def format(self, record):
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if hasattr(record, "request_id"):
            log_entry["request_id"] = record.request_id
        return json.dumps(log_entry)


# Setup logging
handler = logging.StreamHandler()
handler.setFormatter(JSONFormatter())
logging.basicConfig(level=config.LOG_LEVEL, handlers=[handler])
logger = logging.getLogger(__name__)

# Global decoder instance
_decoder: Optional[VINDecoder] = None
_startup_error: Optional[str] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Prepare the dataset and open the decoder on startup."""
    global _decoder, _startup_error

    logger.info("=" * 50)
    logger.info("Corgi VIN decoder API starting...")
    logger.info(f"Environment: {config.ENV}")
    logger.info(f"Cache: {config.cache_path} (downloads {'disabled' if config.DISABLE_DB_DOWNLOAD else 'enabled'})")
    logger.info("=" * 50)

    try:
        _decoder = await create_decoder()
        _startup_error = None
        logger.info("Decoder initialized successfully!")
    except InfrastructureError as e:
        _startup_error = str(e)
        logger.error(f"Decoder unavailable: {e}")

    yield

    logger.info("Shutting down...")
    if _decoder is not None:
        await _decoder.close()
        _decoder = None


app = FastAPI(
    title="Corgi VIN Decoder API",
    description="Offline VIN decoding against a cached vPIC dataset snapshot.",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request ID middleware for tracing
@app.middleware("http")
async def add_request_id(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    start_time = time.time()

    response = await call_next(request)

    process_time = time.time() - start_time
    response.headers["X-Request-ID"] = request_id
    response.headers["X-Process-Time"] = f"{process_time:.3f}s"

    logger.info(f"[{request_id}] {request.method} {request.url.path} - {response.status_code} ({process_time:.3f}s)")

    return response


def set_decoder(decoder: Optional[VINDecoder]) -> None:
    """Install a decoder directly (used when the app is embedded or tested)."""
    global _decoder, _startup_error
    _decoder = decoder
    _startup_error = None


@app.get("/health")
async def health_check():
    """Service status and dataset availability."""
    return {
        "status": "healthy" if _decoder is not None else "degraded",
        "decoder_loaded": _decoder is not None,
        "error": _startup_error,
    }


@app.get("/")
async def root():
    """Root endpoint - API info."""
    return {
        "name": "Corgi VIN Decoder API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
        "decode": "GET /decode?vin=YOURVIN",
    }


@app.get("/metrics")
async def decode_metrics():
    """Decode statistics since startup."""
    return {
        "summary": metrics.get_summary(),
        "recent": metrics.get_recent(),
    }


@app.get("/decode")
async def decode(
    vin: Optional[str] = Query(default=None),
    patterns: bool = Query(default=False),
    year: Optional[int] = Query(default=None, ge=1980, le=2100),
):
    """Decode a VIN. Invalid VINs still return 200 with `valid: false`."""
    if not vin:
        raise HTTPException(status_code=400, detail="Missing vin query parameter")
    if _decoder is None:
        raise HTTPException(status_code=503, detail=_startup_error or "Decoder not initialized")

    options = DecodeOptions(include_pattern_details=patterns, model_year=year)
    try:
        result = await _decoder.decode(vin, options)
    except InfrastructureError as e:
        logger.error(f"Failed to decode VIN {vin}: {e}")
        return JSONResponse(status_code=503, content={"detail": "Failed to decode VIN"})

    return result.to_dict()


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "type": type(exc).__name__}
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "corgi.app:app",
        host=config.API_HOST,
        port=config.API_PORT,
        reload=config.ENV == "development"
    )
