from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class Page(BaseModel):
    page_number: int
    text: str = ""
    image_url: str = ""
    audio_url: Optional[str] = None  # Legacy single narration, counts as the "default" voice
    audio_urls: Dict[str, str] = Field(default_factory=dict)


class Book(BaseModel):
    id: str
    title: str
    author_id: str = ""
    cover_url: str = ""
    created_at: datetime = Field(default_factory=datetime.now)
    description: str = ""
    style: str = ""
    original_language: Optional[str] = None
    published: bool = True
    pages: List[Page] = Field(default_factory=list)


class SavedVoice(BaseModel):
    id: str  # Provider voice id
    name: str
    user_id: str
    created_at: datetime = Field(default_factory=datetime.now)
    sample_url: Optional[str] = None
    sample_storage_path: Optional[str] = None


class UserAudioFile(BaseModel):
    """A narration recorded or uploaded by a user for one page of a book"""

    user_id: str
    book_id: str
    page_number: int
    storage_path: str
    created_at: datetime = Field(default_factory=datetime.now)


class PageTranslation(BaseModel):
    book_id: str
    language: str
    title: str = ""
    description: str = ""
    pages: Dict[int, str] = Field(default_factory=dict)


class UserSettings(BaseModel):
    user_id: str
    selected_voice_id: Optional[str] = None
