import os
import asyncio
import logging

# Configure logging before any other imports
debug_mode = os.getenv("DEBUG", "false").lower() == "true"
logging.basicConfig(
    level=logging.DEBUG if debug_mode else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    force=True,
)

from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from .api.routes import audio, books, config, core, tasks, voices
from .core.config import get_configuration_status, get_settings
from .models.websocket import WSMessage, WSMessageType
from .app import get_app_state

logger = logging.getLogger(__name__)

# Get settings
settings = get_settings()


# noinspection PyUnusedLocal
@asynccontextmanager
async def lifespan(storyforest_app: FastAPI):
    """Application lifespan context manager"""
    # Startup
    logger.info("Starting storyforest")
    logger.info(f"CORS origins: {settings.cors_origins_list}")

    if get_configuration_status().get("elevenlabs_configured"):
        logger.info("ElevenLabs configuration found and loaded")
    else:
        logger.warning("ElevenLabs API key is not configured; narration and voice cloning will fail")

    # Initialize app state
    get_app_state()
    logger.info("App state initialized")

    yield

    # Shutdown
    logger.info("Shutting down storyforest")

    try:
        await get_app_state().shutdown()
    except Exception as e:
        logger.error(f"Error cleaning up app state: {e}")

    logger.info("Cleanup completed")


# Create FastAPI app
app = FastAPI(
    title="storyforest",
    description="Narration backend for illustrated children's stories",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

if settings.cors_origins_list:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

# Include API routers
app.include_router(core.router, prefix="/api", tags=["core"])
app.include_router(config.router, prefix="/api", tags=["config"])
app.include_router(books.router, prefix="/api", tags=["books"])
app.include_router(voices.router, prefix="/api", tags=["voices"])
app.include_router(tasks.router, prefix="/api", tags=["tasks"])
app.include_router(audio.router, prefix="/api", tags=["audio"])

# Serve stored narration, voice samples and recordings
settings.media_path.mkdir(parents=True, exist_ok=True)
app.mount(settings.PUBLIC_MEDIA_URL, StaticFiles(directory=settings.media_path), name="media")


@app.get("/api")
async def api_root():
    """API root endpoint"""
    return {
        "message": "storyforest API",
        "version": "1.0.0",
        "status": "running",
        "endpoints": {
            "docs": "/docs",
            "health": "/health",
            "books": "/api/books",
            "voices": "/api/voices",
            "tasks": "/api/tasks/state",
            "audio": "/api/audio",
        },
    }


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    try:
        app_state = get_app_state()
        return {
            "status": "healthy",
            "is_generating": app_state.generator.is_generating,
            "version": "1.0.0",
        }
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "error": str(e)},
        )


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """WebSocket endpoint for queue, preload and preparation updates"""
    app_state = get_app_state()

    try:
        await websocket.accept()
        app_state.add_websocket_connection(websocket)

        welcome_message = WSMessage(
            type=WSMessageType.QUEUE_UPDATE,
            data=app_state.generator.get_state().model_dump(mode="json"),
        )
        await websocket.send_text(welcome_message.model_dump_json())

        try:
            while True:
                message = await websocket.receive_text()
                logger.debug(f"Received WebSocket message: {message}")

                response = WSMessage(
                    type=WSMessageType.STATUS,
                    data={
                        "message": "Message received",
                        "echo": message,
                        "is_generating": app_state.generator.is_generating,
                        "is_preparing": app_state.is_preparing,
                    },
                )
                await websocket.send_text(response.model_dump_json())

        except WebSocketDisconnect:
            logger.info("WebSocket disconnected")

    except Exception as e:
        logger.error(f"WebSocket error: {e}")
        try:
            await websocket.close(code=1011, reason="Internal server error")
        except Exception:
            pass

    finally:
        app_state.remove_websocket_connection(websocket)


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Global exception handler"""
    logger.error(f"Unhandled exception on {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


# Add middleware for request logging
@app.middleware("http")
async def log_requests(request, call_next):
    """Log HTTP requests"""
    start_time = asyncio.get_event_loop().time()

    # Skip logging for health checks and media downloads
    if request.url.path not in ["/health", "/favicon.ico"] and not request.url.path.startswith(
        settings.PUBLIC_MEDIA_URL
    ):
        logger.info(f"{request.method} {request.url.path}")

    response = await call_next(request)

    process_time = asyncio.get_event_loop().time() - start_time

    # Live narration and preloads can be slow; flag them
    if request.url.path.startswith("/api/") and process_time > 1.0:
        logger.warning(f"Slow request: {request.method} {request.url.path} took {process_time:.2f}s")

    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "storyforest.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level="info",
    )
