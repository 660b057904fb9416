from typing import List, Optional

from pydantic import BaseModel, model_validator

from .enums import GenerationPhase, PreparationStep, TaskKind


class BackgroundTask(BaseModel):
    """A unit of narration work for the background generator"""

    voice_id: str
    kind: TaskKind
    book_id: Optional[str] = None  # None means every published book
    saved_voice_id: Optional[str] = None  # Voice record whose stored sample is re-cloned

    @model_validator(mode="after")
    def _check_scope(self):
        if not self.kind.covers_library and not self.book_id:
            raise ValueError(f"book_id is required for '{self.kind.value}' tasks")
        if self.kind.needs_reclone and not self.saved_voice_id:
            raise ValueError(f"saved_voice_id is required for '{self.kind.value}' tasks")
        return self


class GenerationProgress(BaseModel):
    phase: GenerationPhase
    current_page: int = 0
    total_pages: int = 0
    current_book: int = 0
    total_books: int = 0
    book_title: str = ""


class QueueState(BaseModel):
    is_generating: bool
    pending_tasks: List[BackgroundTask]
    progress: Optional[GenerationProgress] = None


class NarrationResult(BaseModel):
    generated: int = 0
    skipped: int = 0
    failed: int = 0

    def merge(self, other: "NarrationResult") -> "NarrationResult":
        return NarrationResult(
            generated=self.generated + other.generated,
            skipped=self.skipped + other.skipped,
            failed=self.failed + other.failed,
        )


class PreloadProgress(BaseModel):
    total: int
    loaded: int
    current_book_id: Optional[str] = None


class PreparationProgress(BaseModel):
    step: PreparationStep
    current_book: int = 0
    total_books: int = 0
    current_page: int = 0
    total_pages: int = 0
    book_title: str = ""
    message: str = ""
