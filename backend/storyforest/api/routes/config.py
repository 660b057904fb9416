import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from ...core.config import (
    ElevenLabsConfig,
    UserPreferences,
    get_app_config,
    get_user_preferences,
    save_elevenlabs_config,
    save_user_preferences,
)
from ...services.elevenlabs_service import ElevenLabsService

logger = logging.getLogger(__name__)

router = APIRouter()


class ElevenLabsConfigRequest(BaseModel):
    api_key: str


class ElevenLabsConfigResponse(BaseModel):
    api_key: str  # Will be masked
    validated: bool
    last_validated: Optional[str] = None


class PreferencesRequest(BaseModel):
    target_language: Optional[str] = None
    user_id: Optional[str] = None


def _mask_key(api_key: str) -> str:
    if not api_key:
        return ""
    if len(api_key) <= 8:
        return "***"
    return f"{api_key[:4]}...{api_key[-4:]}"


@router.get("/config/elevenlabs", response_model=ElevenLabsConfigResponse)
async def get_elevenlabs_config():
    """Get the saved ElevenLabs configuration with the key masked"""
    config = get_app_config().elevenlabs
    return ElevenLabsConfigResponse(
        api_key=_mask_key(config.api_key),
        validated=config.validated,
        last_validated=config.last_validated.isoformat() if config.last_validated else None,
    )


@router.post("/config/elevenlabs")
async def set_elevenlabs_config(request: ElevenLabsConfigRequest):
    """Validate and save an ElevenLabs API key"""
    api_key = request.api_key.strip()
    if not api_key:
        raise HTTPException(status_code=400, detail="API key is required")

    result = await ElevenLabsService(api_key=api_key).validate_api_key()
    if not result["valid"]:
        raise HTTPException(status_code=400, detail=result["message"])

    config = ElevenLabsConfig(api_key=api_key, validated=True, last_validated=datetime.now())
    if not save_elevenlabs_config(config):
        raise HTTPException(status_code=500, detail="Failed to save ElevenLabs configuration")

    logger.info("ElevenLabs configuration saved")
    return result


@router.post("/config/elevenlabs/test")
async def test_elevenlabs_config():
    """Validate the currently effective ElevenLabs API key"""
    return await ElevenLabsService().validate_api_key()


@router.get("/config/preferences", response_model=UserPreferences)
async def get_preferences():
    return get_user_preferences()


@router.put("/config/preferences", response_model=UserPreferences)
async def update_preferences(request: PreferencesRequest):
    """Update the target display language and/or the active user id"""
    preferences = get_user_preferences().model_copy()
    if request.target_language is not None:
        if not request.target_language.strip():
            raise HTTPException(status_code=400, detail="target_language cannot be empty")
        preferences.target_language = request.target_language.strip()
    if request.user_id is not None:
        if not request.user_id.strip():
            raise HTTPException(status_code=400, detail="user_id cannot be empty")
        preferences.user_id = request.user_id.strip()

    if not save_user_preferences(preferences):
        raise HTTPException(status_code=500, detail="Failed to save preferences")

    return preferences
