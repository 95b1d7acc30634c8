"""Speech synthesis adapters."""

import asyncio
from abc import ABC, abstractmethod
from typing import List, Optional, Tuple

import httpx
import structlog

from ..config import AudioConfig
from ..errors import SynthesisError

logger = structlog.get_logger(__name__)


class SynthesisAdapter(ABC):
    """Abstract base class for synthesis adapters."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Get the adapter name."""
        pass

    @abstractmethod
    async def synthesize(
        self,
        text: str,
        voice: Optional[str] = None,
        language: Optional[str] = None,
    ) -> bytes:
        """
        Synthesize text to audio.

        Args:
            text: Text to synthesize
            voice: Voice id
            language: Language code

        Returns:
            Complete audio data as bytes

        Raises:
            SynthesisError: on any failure
        """
        pass

    async def close(self) -> None:
        pass


class HttpSynthesisAdapter(SynthesisAdapter):
    """
    Adapter for the external synthesis service.

    Posts ``{text, voice, provider, language}`` to ``/tts/broadcast`` and
    returns the response body as audio.
    """

    def __init__(self, config: AudioConfig, client: Optional[httpx.AsyncClient] = None) -> None:
        self.config = config
        self._client = client
        self.logger = logger.bind(adapter="http_synthesis")

    @property
    def name(self) -> str:
        return "http"

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.config.synthesis_url,
                timeout=self.config.synthesis_timeout_s,
            )
        return self._client

    async def synthesize(
        self,
        text: str,
        voice: Optional[str] = None,
        language: Optional[str] = None,
    ) -> bytes:
        client = await self._get_client()
        payload = {
            "text": text,
            "voice": voice or self.config.default_voice,
            "provider": self.config.synthesis_provider,
            "language": language or self.config.default_language,
        }

        try:
            response = await client.post("/tts/broadcast", json=payload)
            response.raise_for_status()
        except httpx.HTTPError as e:
            self.logger.warning("synthesis_request_failed", error=str(e), text_length=len(text))
            raise SynthesisError(f"Synthesis request failed: {e}") from e

        if not response.content:
            raise SynthesisError("Synthesis service returned no audio")

        self.logger.debug(
            "audio_synthesized",
            text_length=len(text),
            voice=payload["voice"],
            audio_size=len(response.content),
        )
        return response.content

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None


class MockSynthesisAdapter(SynthesisAdapter):
    """
    Mock synthesis adapter for testing.

    Returns silent audio sized to the text. ``fail_times`` makes the first
    N calls raise ``SynthesisError``.
    """

    def __init__(self, fail_times: int = 0, latency_ms: int = 0) -> None:
        self.fail_times = fail_times
        self.latency_ms = latency_ms
        self.calls: List[Tuple[str, Optional[str], Optional[str]]] = []
        self.logger = logger.bind(adapter="mock_synthesis")

    @property
    def name(self) -> str:
        return "mock"

    async def synthesize(
        self,
        text: str,
        voice: Optional[str] = None,
        language: Optional[str] = None,
    ) -> bytes:
        self.calls.append((text, voice, language))
        if self.latency_ms:
            await asyncio.sleep(self.latency_ms / 1000)

        if len(self.calls) <= self.fail_times:
            raise SynthesisError(f"Mock synthesis failure {len(self.calls)}/{self.fail_times}")

        # ~2.5 words per second of 8kHz mu-law silence
        samples = int(8000 * max(len(text.split()), 1) / 2.5)
        return b"\xff" * samples
