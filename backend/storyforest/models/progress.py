from typing import Callable

from .tasks import GenerationProgress, PreloadProgress, PreparationProgress, QueueState

GenerationProgressCallback = Callable[[GenerationProgress], None]
PreloadProgressCallback = Callable[[PreloadProgress], None]
PreparationProgressCallback = Callable[[PreparationProgress], None]
QueueStateCallback = Callable[[QueueState], None]
