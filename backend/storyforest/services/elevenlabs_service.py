import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional, Union

import httpx

from ..core.config import get_elevenlabs_api_key, get_settings

logger = logging.getLogger(__name__)

VOICE_SETTINGS = {
    "stability": 0.55,
    "similarity_boost": 0.8,
    "style": 0.2,
    "use_speaker_boost": True,
}


class ElevenLabsError(Exception):
    """Exception raised when the ElevenLabs API rejects a request"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ElevenLabsService:
    """Voice provider client: instant voice cloning, speech synthesis and voice deletion"""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model_id: Optional[str] = None,
        default_voice_id: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self._api_key = api_key
        self.base_url = (base_url or settings.ELEVENLABS_BASE_URL).rstrip("/")
        self.model_id = model_id or settings.ELEVENLABS_MODEL_ID
        self.default_voice_id = default_voice_id or settings.DEFAULT_VOICE_ID
        self.timeout = timeout if timeout is not None else settings.HTTP_TIMEOUT_SECONDS
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        self._client = self._new_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def api_key(self) -> str:
        # Resolved per call so a key saved through the config API applies immediately
        return self._api_key if self._api_key is not None else get_elevenlabs_api_key()

    def _new_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self._transport)

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
            return
        async with self._new_client() as client:
            yield client

    def _headers(self) -> dict:
        api_key = self.api_key
        if not api_key:
            raise ElevenLabsError("ElevenLabs API key is missing")
        return {"xi-api-key": api_key}

    @staticmethod
    def _error_message(response: httpx.Response, fallback: str) -> str:
        try:
            detail = response.json().get("detail")
        except Exception:
            return f"{fallback} (status {response.status_code})"

        if isinstance(detail, dict) and detail.get("message"):
            return detail["message"]
        if isinstance(detail, str) and detail:
            return detail
        return f"{fallback} (status {response.status_code})"

    async def clone_voice(
        self,
        name: str,
        samples: Union[bytes, List[bytes]],
        description: str = "Storyforest voice clone",
    ) -> str:
        """Create an instant voice clone from one or more recorded samples and return its voice id"""
        headers = self._headers()
        sample_list = samples if isinstance(samples, list) else [samples]
        files = [
            ("files", (f"sample_{index + 1}.webm", sample, "audio/webm"))
            for index, sample in enumerate(sample_list)
        ]

        async with self._session() as client:
            response = await client.post(
                "/voices/add",
                headers=headers,
                data={"name": name, "description": description},
                files=files,
            )

        if response.status_code != 200:
            raise ElevenLabsError(self._error_message(response, "Failed to add voice"), response.status_code)

        voice_id = response.json().get("voice_id")
        if not voice_id:
            raise ElevenLabsError("ElevenLabs did not return a voice id")

        logger.info(f"Cloned voice '{name}' as {voice_id}")
        return voice_id

    async def synthesize(self, text: str, voice_id: Optional[str] = None) -> bytes:
        """Generate narration audio (mp3 bytes) for text"""
        headers = self._headers()
        voice = voice_id or self.default_voice_id
        logger.debug(f"Generating speech with voice {voice} for: {text[:20]}...")

        async with self._session() as client:
            response = await client.post(
                f"/text-to-speech/{voice}",
                headers={**headers, "Content-Type": "application/json"},
                json={
                    "text": text,
                    "model_id": self.model_id,
                    "voice_settings": VOICE_SETTINGS,
                },
            )

        if response.status_code != 200:
            raise ElevenLabsError(self._error_message(response, "Failed to generate speech"), response.status_code)

        return response.content

    async def delete_voice(self, voice_id: str) -> None:
        """Delete a voice to free its provider-side slot"""
        headers = self._headers()

        async with self._session() as client:
            response = await client.delete(f"/voices/{voice_id}", headers=headers)

        if response.status_code != 200:
            raise ElevenLabsError(self._error_message(response, "Failed to delete voice"), response.status_code)

        logger.info(f"Deleted voice {voice_id}")

    async def validate_api_key(self, api_key: Optional[str] = None) -> dict:
        """Validate an API key by fetching the account subscription"""
        key = api_key if api_key is not None else self.api_key
        if not key:
            return {"valid": False, "message": "ElevenLabs API key is required"}

        try:
            async with self._session() as client:
                response = await client.get("/user/subscription", headers={"xi-api-key": key})

            if response.status_code == 200:
                data = response.json()
                return {
                    "valid": True,
                    "message": "ElevenLabs API key valid",
                    "voice_slots_used": data.get("voice_slots_used"),
                    "voice_limit": data.get("voice_limit"),
                }
            elif response.status_code == 401:
                return {"valid": False, "message": "Invalid ElevenLabs API key"}
            else:
                return {"valid": False, "message": f"ElevenLabs API returned status {response.status_code}"}

        except httpx.TimeoutException:
            return {"valid": False, "message": "ElevenLabs API timeout"}
        except httpx.ConnectError:
            return {"valid": False, "message": "Cannot connect to ElevenLabs API"}
        except Exception as e:
            return {"valid": False, "message": f"ElevenLabs API error: {str(e)}"}
