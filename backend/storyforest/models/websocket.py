from enum import Enum
from typing import Any, Dict

from pydantic import BaseModel, Field


class WSMessageType(str, Enum):
    STATUS = "status"
    QUEUE_UPDATE = "queue_update"
    PRELOAD_PROGRESS = "preload_progress"
    PREPARATION_PROGRESS = "preparation_progress"
    ERROR = "error"


class WSMessage(BaseModel):
    type: WSMessageType
    data: Dict[str, Any] = Field(default_factory=dict)
