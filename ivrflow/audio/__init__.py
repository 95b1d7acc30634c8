"""Audio asset pipeline: synthesis, storage and the job queue."""

from .queue import AUDIO_DEGRADED, AUDIO_READY, AudioJobQueue, RetryPolicy, RetryStrategy
from .storage import AssetStorage, HttpAssetStorage, InMemoryAssetStorage, StoredAsset
from .synthesis import HttpSynthesisAdapter, MockSynthesisAdapter, SynthesisAdapter
from .text import extract_prompt_text, needs_audio

__all__ = [
    "AudioJobQueue",
    "RetryPolicy",
    "RetryStrategy",
    "AUDIO_READY",
    "AUDIO_DEGRADED",
    "AssetStorage",
    "HttpAssetStorage",
    "InMemoryAssetStorage",
    "StoredAsset",
    "SynthesisAdapter",
    "HttpSynthesisAdapter",
    "MockSynthesisAdapter",
    "extract_prompt_text",
    "needs_audio",
]
