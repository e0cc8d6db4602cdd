from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import os

from chaptergen.config import get_settings
from chaptergen.routers import jobs


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    settings = get_settings()
    os.makedirs(settings.audio_dir, exist_ok=True)
    print(f"✅ Temp audio directory ready: {settings.audio_dir}", flush=True)

    yield

    print("👋 Shutting down...", flush=True)


app = FastAPI(
    title="ChapterGen API",
    description="YouTube chapter generation from captions, audio or transcripts",
    version="1.0.0",
    lifespan=lifespan
)

# CORS middleware for frontend
settings = get_settings()
origins = [o.strip() for o in (settings.app.cors_origins or "").split(",") if o.strip()]
if not origins:
    origins = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

# Note: Wildcard + credentials is not valid CORS. If user sets '*', disable credentials.
allow_credentials = True
if "*" in origins:
    origins = ["*"]
    allow_credentials = False

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(jobs.router, prefix="/api/jobs", tags=["Jobs"])


@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": settings.app.app_name,
        "version": "1.0.0"
    }


@app.get("/health")
async def health_check():
    """Detailed health check."""
    settings = get_settings()
    return {
        "status": "healthy",
        "services": {
            "gemini_configured": bool(settings.gemini.api_key),
            "gemini_model": settings.gemini.model,
            "ytdlp_path": settings.tools.ytdlp_path or "auto",
            "ffmpeg_path": settings.tools.ffmpeg_path or "auto",
            "redis_url": settings.redis_url,
        }
    }


@app.get("/debug/config")
async def debug_config():
    """Debug endpoint to check configuration (remove in production)."""
    settings = get_settings()
    # Disabled in production unless explicitly enabled.
    enable_debug = bool(settings.app.debug) or (os.getenv("ENABLE_DEBUG_ENDPOINT", "").strip().lower() in ("true", "1", "yes"))
    if not enable_debug:
        raise HTTPException(status_code=404, detail="Not found")
    return {
        "gemini": {
            "api_key_set": bool(settings.gemini.api_key),
            "model": settings.gemini.model,
            "stt_model": settings.gemini.stt_model,
        },
        "sampling": settings.sampling.model_dump(),
        "extraction": settings.extraction.model_dump(),
        "chapters": settings.chapters.model_dump(),
        "redis": {
            "url": settings.redis_url,
        },
        "log_level": settings.app.log_level,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "chaptergen.main:app",
        host="0.0.0.0",
        port=8000,
        log_level=settings.app.log_level,
        reload=settings.app.debug,
    )
