from .cache import BATCH_SAVE_FAILED, AnswerCache
from .events import EventHook
from .persistence import AnswerPersistence, InMemoryAnswerPersistence
from .types import AnswerCacheConfig, AnswerRecord, BatchItem, SeedAnswer

__all__ = [
    "BATCH_SAVE_FAILED",
    "AnswerCache",
    "AnswerCacheConfig",
    "AnswerPersistence",
    "AnswerRecord",
    "BatchItem",
    "EventHook",
    "InMemoryAnswerPersistence",
    "SeedAnswer",
]
