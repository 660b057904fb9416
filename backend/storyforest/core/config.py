import shelve
import logging
from pathlib import Path
from typing import Optional, Dict, Any, List
from datetime import datetime

from pydantic import BaseModel
from pydantic_settings import BaseSettings

# Default ElevenLabs narrator (Brian: deep, resonant and comforting)
DEFAULT_NARRATOR_VOICE_ID = "nPczCjzI2devNBz1zQrb"

# Expo web and Vite dev servers
DEV_CORS_ORIGINS = ["http://localhost:8081", "http://localhost:5173", "http://127.0.0.1:5173"]

logger = logging.getLogger(__name__)


class ElevenLabsConfig(BaseModel):
    """ElevenLabs configuration section"""

    api_key: str = ""
    validated: bool = False
    last_validated: Optional[datetime] = None


class UserPreferences(BaseModel):
    """User preferences configuration section"""

    user_id: str = "local"
    target_language: str = "English"


class AppConfig(BaseModel):
    """Complete application configuration"""

    elevenlabs: ElevenLabsConfig = ElevenLabsConfig()
    user_preferences: UserPreferences = UserPreferences()


class Settings(BaseSettings):
    # Web App Configuration (from environment)
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    DEBUG: bool = False

    # Storage locations
    DATA_DIR: str = str(Path(__file__).parent.parent / "data")
    MEDIA_ROOT: str = ""
    PUBLIC_MEDIA_URL: str = "/media"

    # Voice provider
    ELEVENLABS_API_KEY: str = ""
    ELEVENLABS_BASE_URL: str = "https://api.elevenlabs.io/v1"
    ELEVENLABS_MODEL_ID: str = "eleven_multilingual_v2"
    DEFAULT_VOICE_ID: str = DEFAULT_NARRATOR_VOICE_ID
    HTTP_TIMEOUT_SECONDS: float = 60.0

    # Background narration
    PRELOAD_MAX_CONCURRENCY: int = 6
    PROGRESS_DONE_DISPLAY_SECONDS: float = 1.5

    class Config:
        case_sensitive = True

    @property
    def data_path(self) -> Path:
        return Path(self.DATA_DIR).expanduser()

    @property
    def media_path(self) -> Path:
        """Root of the local object storage bucket, defaults to <DATA_DIR>/media"""
        if self.MEDIA_ROOT:
            return Path(self.MEDIA_ROOT).expanduser()
        return self.data_path / "media"

    @property
    def library_db_path(self) -> Path:
        return self.data_path / "library"

    @property
    def cors_origins_list(self) -> List[str]:
        """Development origins when DEBUG is on, none otherwise"""
        if self.DEBUG:
            return DEV_CORS_ORIGINS
        return []


def get_config_db_path() -> Path:
    """Get the path to the configuration database"""
    return get_settings().data_path / "app_config"


def _ensure_config_dir():
    """Ensure the config directory exists"""
    config_path = get_config_db_path()
    config_path.parent.mkdir(parents=True, exist_ok=True)


def load_config() -> AppConfig:
    """Load complete application configuration from shelve database"""
    _ensure_config_dir()
    config_db_path = str(get_config_db_path())

    try:
        with shelve.open(config_db_path, "c") as db:
            elevenlabs_data = db.get("elevenlabs", {})
            user_prefs_data = db.get("user_preferences", {})

            elevenlabs_config = ElevenLabsConfig(**elevenlabs_data) if elevenlabs_data else ElevenLabsConfig()
            user_prefs = UserPreferences(**user_prefs_data) if user_prefs_data else UserPreferences()

            return AppConfig(elevenlabs=elevenlabs_config, user_preferences=user_prefs)
    except Exception as e:
        logger.warning(f"Failed to load configuration from {config_db_path}: {e}")
        return AppConfig()


def save_config(config: AppConfig) -> bool:
    """Save complete application configuration to shelve database"""
    _ensure_config_dir()
    config_db_path = str(get_config_db_path())

    try:
        with shelve.open(config_db_path, "c") as db:
            db["elevenlabs"] = config.elevenlabs.model_dump()
            db["user_preferences"] = config.user_preferences.model_dump()
            db.sync()  # Ensure data is written to disk
        return True
    except Exception as e:
        logger.error(f"Failed to save configuration to {config_db_path}: {e}")
        return False


def save_elevenlabs_config(elevenlabs_config: ElevenLabsConfig) -> bool:
    """Save only ElevenLabs configuration section"""
    try:
        config = load_config()
        config.elevenlabs = elevenlabs_config
        if save_config(config):
            refresh_app_config()
            return True
        return False
    except Exception as e:
        logger.error(f"Failed to save ElevenLabs configuration: {e}")
        return False


def save_user_preferences(preferences: UserPreferences) -> bool:
    """Save only user preferences section"""
    try:
        config = load_config()
        config.user_preferences = preferences
        if save_config(config):
            refresh_app_config()
            return True
        return False
    except Exception as e:
        logger.error(f"Failed to save user preferences: {e}")
        return False


# Global configuration cache
_settings: Optional[Settings] = None
_app_config: Optional[AppConfig] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
        logger.info(f"Loaded settings - HOST: {_settings.HOST}")
        logger.info(f"Loaded settings - PORT: {_settings.PORT}")
        logger.info(f"Loaded settings - DEBUG: {_settings.DEBUG}")
        logger.info(f"Loaded settings - DATA_DIR: {_settings.data_path}")
        logger.info(f"Loaded settings - MEDIA_ROOT: {_settings.media_path}")
        logger.info(f"Loaded settings - PRELOAD_MAX_CONCURRENCY: {_settings.PRELOAD_MAX_CONCURRENCY}")
    return _settings


def get_app_config() -> AppConfig:
    """Get the current application configuration"""
    global _app_config
    if _app_config is None:
        _app_config = load_config()
        logger.info(
            f"Loaded app config - ELEVENLABS_API_KEY: {'***' if _app_config.elevenlabs.api_key else 'EMPTY'}"
        )
        logger.info(f"Loaded app config - TARGET_LANGUAGE: {_app_config.user_preferences.target_language}")
    return _app_config


def refresh_app_config():
    """Force reload of application configuration from database"""
    global _app_config
    _app_config = None
    get_app_config()


def get_user_preferences() -> UserPreferences:
    """Get user preferences"""
    return get_app_config().user_preferences


def get_elevenlabs_api_key() -> str:
    """
    Return the effective ElevenLabs API key.
    Priority:
    1) Saved key from the configuration database
    2) ELEVENLABS_API_KEY from the environment
    """
    config = get_app_config()
    if config.elevenlabs.api_key:
        return config.elevenlabs.api_key
    return get_settings().ELEVENLABS_API_KEY


def is_elevenlabs_configured() -> bool:
    """Check if a voice provider key is available"""
    return bool(get_elevenlabs_api_key())


def get_configuration_status() -> Dict[str, Any]:
    """Get overall configuration status"""
    config = get_app_config()
    elevenlabs_configured = is_elevenlabs_configured()

    return {
        "elevenlabs_configured": elevenlabs_configured,
        "elevenlabs_validated": config.elevenlabs.validated,
        "needs_elevenlabs_setup": not elevenlabs_configured,
        "target_language": config.user_preferences.target_language,
        "user_id": config.user_preferences.user_id,
    }
