from enum import Enum


class TaskKind(str, Enum):
    ALL = "all"
    SINGLE = "single"
    SINGLE_RECLONE = "single-reclone"
    ALL_RECLONE = "all-reclone"

    @property
    def needs_reclone(self) -> bool:
        return self in (TaskKind.SINGLE_RECLONE, TaskKind.ALL_RECLONE)

    @property
    def covers_library(self) -> bool:
        return self in (TaskKind.ALL, TaskKind.ALL_RECLONE)


class GenerationPhase(str, Enum):
    CLONING = "cloning"
    GENERATING = "generating"
    SAVING = "saving"
    DELETING = "deleting"
    DONE = "done"


class PreparationStep(str, Enum):
    GENERATING = "generating"
    TRANSLATING = "translating"
    DOWNLOADING = "downloading"
    DONE = "done"
    ERROR = "error"
