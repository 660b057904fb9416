import logging
import importlib.metadata

from fastapi import APIRouter, HTTPException

from ...core.config import get_configuration_status
from ...app import get_app_state

logger = logging.getLogger(__name__)

router = APIRouter()


def get_app_version():
    """Get the application version from package metadata"""
    try:
        return importlib.metadata.version("storyforest")
    except importlib.metadata.PackageNotFoundError:
        # Fallback to a default version if package is not installed
        return "vDEV"


@router.get("/status")
async def get_app_status():
    """Get app status and configuration info"""
    try:
        app_state = get_app_state()
        config_status = get_configuration_status()
        queue_state = app_state.generator.get_state()

        return {
            "is_generating": queue_state.is_generating,
            "pending_tasks": len(queue_state.pending_tasks),
            "is_preparing": app_state.is_preparing,
            "cached_pages": len(app_state.audio_cache),
            "config_status": config_status,
            "version": get_app_version(),
        }

    except Exception as e:
        logger.error(f"Failed to get app status: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))
