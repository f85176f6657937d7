"""
Layer Studio Server
====================

FastAPI server for the layer compositing and edit-session engine.

Features:
- Edit sessions with layers, selection, undo/redo and drag gestures
- Deterministic compositing and PNG export
- Mask painting for inpainting edits
- Image generation, compose, mask edit and background removal
- Video generation with background polling
- History of past results with a local full-resolution cache
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

from .errors import StudioError
from .models.config_models import StudioConfig
from .models.layer_models import ASPECT_RATIOS, VIDEO_ASPECT_RATIOS, VIDEO_DURATIONS, BlendMode, EditMode

# Import services
from .services.asset_cache import AssetCache
from .services.generation_client import GenerationClient
from .services.job_orchestrator import JobOrchestrator
from .services.media_loader import MediaLoader
from .services.video_client import VideoClient

# Import canvas components
from .canvas.compositor import Compositor
from .canvas.record_store import RecordStore
from .canvas.session import SessionManager

# Import API routers
from .api import canvas_routes, generation_routes, history_routes, layer_routes, mask_routes


# Shared service instances
config: StudioConfig = None
session_manager: SessionManager = None
record_store: RecordStore = None
media_loader: MediaLoader = None
generation_client: GenerationClient = None
video_client: VideoClient = None
orchestrator: JobOrchestrator = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    global config, session_manager, record_store, media_loader, generation_client, video_client, orchestrator

    logger.info("[LAYER-STUDIO] Starting up...")
    config = StudioConfig.from_env()

    # History records and their full-resolution cache
    record_store = RecordStore(
        history_file=config.history_file,
        cache=AssetCache(config.cache_dir),
        thumbnail_max_size=config.thumbnail_max_size,
        thumbnail_quality=config.thumbnail_quality,
    )

    session_manager = SessionManager(
        record_store=record_store,
        brush_size=config.brush_size,
        brush_reference_width=config.brush_reference_width,
    )

    media_loader = MediaLoader(timeout=config.request_timeout)
    compositor = Compositor(media_loader, background=config.export_background)

    generation_client = GenerationClient(
        base_url=config.api_base_url,
        api_key=config.api_key,
        image_model=config.image_model,
        vision_model=config.vision_model,
        timeout=config.request_timeout,
    )
    video_client = VideoClient(
        base_url=config.api_base_url,
        api_key=config.api_key,
        model=config.video_model,
        timeout=config.request_timeout,
    )

    orchestrator = JobOrchestrator(
        config=config,
        generation_client=generation_client,
        video_client=video_client,
        compositor=compositor,
        media_loader=media_loader,
        record_store=record_store,
    )

    # Inject into route modules
    canvas_routes.session_manager = session_manager
    canvas_routes.compositor = compositor
    layer_routes.session_manager = session_manager
    mask_routes.session_manager = session_manager
    generation_routes.session_manager = session_manager
    generation_routes.orchestrator = orchestrator
    history_routes.session_manager = session_manager
    history_routes.record_store = record_store

    logger.info("[LAYER-STUDIO] Services initialized")

    yield

    # Cleanup
    logger.info("[LAYER-STUDIO] Shutting down...")
    if orchestrator:
        await orchestrator.shutdown()
    if session_manager:
        session_manager.close_all()
    if generation_client:
        await generation_client.close()
    if video_client:
        await video_client.close()
    if media_loader:
        await media_loader.close()


# Create FastAPI app
app = FastAPI(
    title="Layer Studio",
    description="Layer compositing and edit-session engine with AI generation",
    version="1.0.0",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Allow all origins for development
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StudioError)
async def studio_error_handler(request: Request, exc: StudioError) -> JSONResponse:
    """Translate studio errors into JSON with their status code."""
    if exc.status_code >= 500:
        logger.error(f"[LAYER-STUDIO] {request.method} {request.url.path}: {exc.error_code} {exc.message}")
    else:
        logger.info(f"[LAYER-STUDIO] {request.method} {request.url.path}: {exc.error_code} {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content=jsonable_encoder({
            "success": False,
            "error": exc.message,
            "error_code": exc.error_code,
            "details": exc.details,
        }),
    )


# Include API routers
app.include_router(canvas_routes.router)
app.include_router(layer_routes.router)
app.include_router(mask_routes.router)
app.include_router(generation_routes.router)
app.include_router(history_routes.router)


@app.get("/")
async def root():
    return {
        "service": "Layer Studio",
        "version": "1.0.0",
        "status": "running",
        "endpoints": {
            "canvas": "/api/canvas/state/{session_id}",
            "layers": "/api/layer/{session_id}/{layer_id}",
            "mask": "/api/mask/{session_id}",
            "generation": "/api/generation/{session_id}/{operation}",
            "history": "/api/history"
        }
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": "layer-studio",
        "api_base_url": config.api_base_url if config else None,
        "api_key_configured": bool(config and config.api_key),
        "sessions": len(session_manager) if session_manager else 0,
    }


@app.get("/api/info")
async def api_info():
    """Get supported modes, ratios and blend modes."""
    return {
        "service": "Layer Studio",
        "version": "1.0.0",
        "modes": [mode.value for mode in EditMode],
        "blend_modes": [mode.value for mode in BlendMode],
        "aspect_ratios": [
            {"ratio": ratio, "width": width, "height": height}
            for ratio, (width, height) in ASPECT_RATIOS.items()
        ],
        "video": {
            "aspect_ratios": list(VIDEO_ASPECT_RATIOS),
            "durations": list(VIDEO_DURATIONS),
        },
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "studio.server:app",
        host="0.0.0.0",
        port=8080,
        reload=True
    )
