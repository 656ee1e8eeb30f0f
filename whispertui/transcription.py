"""Groq Whisper transcription client.

Uploads the recorded WAV file to Groq's OpenAI-compatible transcription
endpoint. Recordings that are too short or silent are rejected locally before
any API call, since Whisper tends to hallucinate text for them.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import wave
from pathlib import Path

import httpx
import numpy as np

from .config import TranscriptionConfig
from .errors import (
    InvalidAudioError,
    MissingApiKeyError,
    TranscriptionApiError,
    TranscriptionError,
)

logger = logging.getLogger(__name__)

GROQ_WHISPER_URL = "https://api.groq.com/openai/v1/audio/transcriptions"
WHISPER_MODEL = "whisper-large-v3"

MIN_WAV_SIZE = 44  # Canonical WAV header
MIN_AUDIO_DURATION_SECONDS = 0.5  # Shorter clips produce hallucinations
MIN_AUDIO_AMPLITUDE = 0.02  # Below this there is no speech

MAX_BACKOFF_SECONDS = 10.0
RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}

_SAMPLE_DTYPES = {1: np.uint8, 2: np.int16, 4: np.int32}


class AudioValidator:
    """Validates audio data before sending to transcription API."""

    @staticmethod
    def validate(audio: np.ndarray, sample_rate: int) -> tuple[bool, str | None]:
        """
        Validate audio data for transcription.

        Args:
            audio: Mono samples as float32, normalized to [-1, 1]
            sample_rate: Sample rate in Hz

        Returns:
            Tuple of (is_valid, error_message). If valid, error_message is None.
        """
        if len(audio) == 0:
            return False, "Empty audio"

        min_samples = int(sample_rate * MIN_AUDIO_DURATION_SECONDS)
        if len(audio) < min_samples:
            duration = len(audio) / sample_rate
            return False, (
                f"Audio too short ({duration:.2f}s, "
                f"need >{MIN_AUDIO_DURATION_SECONDS}s)"
            )

        max_amplitude = np.max(np.abs(audio))
        if max_amplitude < MIN_AUDIO_AMPLITUDE:
            return False, "Audio too quiet (no speech detected)"

        return True, None

    @staticmethod
    def load_wav(path: Path) -> tuple[np.ndarray, int]:
        """
        Read a PCM WAV file into float32 mono samples.

        Returns:
            Tuple of (samples, sample_rate)

        Raises:
            InvalidAudioError: If the file is not a readable PCM WAV file
        """
        try:
            with wave.open(str(path), "rb") as wav_file:
                channels = wav_file.getnchannels()
                width = wav_file.getsampwidth()
                rate = wav_file.getframerate()
                frames = wav_file.readframes(wav_file.getnframes())
        except (wave.Error, EOFError) as e:
            raise InvalidAudioError(f"Invalid WAV file: {e}") from e

        dtype = _SAMPLE_DTYPES.get(width)
        if dtype is None:
            raise InvalidAudioError(f"Unsupported sample width: {width * 8} bits")

        usable = len(frames) - len(frames) % (width * channels)
        samples = np.frombuffer(frames[:usable], dtype=dtype).astype(np.float32)
        if width == 1:
            samples = (samples - 128.0) / 128.0
        else:
            samples = samples / float(2 ** (8 * width - 1))

        if channels > 1:
            samples = samples.reshape(-1, channels).mean(axis=1)

        return samples, rate


class GroqClient:
    """
    Whisper API client for speech-to-text transcription on Groq.

    The API key is resolved on every call: an explicit ``api_key`` wins,
    otherwise the ``api_key_env`` environment variable is read.
    """

    def __init__(
        self,
        api_key_env: str = "GROQ_API_KEY",
        api_key: str | None = None,
        model: str = WHISPER_MODEL,
        timeout: float = 60.0,
        max_retries: int = 2,
        validate_audio: bool = True,
        backoff_base: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key_env = api_key_env
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.max_retries = max_retries
        self.validate_audio = validate_audio
        self.backoff_base = backoff_base
        self.api_url = GROQ_WHISPER_URL
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @classmethod
    def from_config(cls, config: TranscriptionConfig, **kwargs) -> "GroqClient":
        return cls(
            api_key_env=config.api_key_env,
            model=config.model,
            timeout=config.timeout,
            max_retries=config.max_retries,
            **kwargs,
        )

    def get_api_key(self) -> str:
        if self.api_key:
            return self.api_key
        key = os.getenv(self.api_key_env)
        if key:
            return key
        raise MissingApiKeyError(self.api_key_env)

    def has_api_key(self) -> bool:
        try:
            self.get_api_key()
        except MissingApiKeyError:
            return False
        return True

    def _read_audio(self, path: Path) -> bytes:
        try:
            audio_bytes = path.read_bytes()
        except FileNotFoundError as e:
            raise InvalidAudioError(f"Audio file not found: {path}") from e
        except OSError as e:
            raise InvalidAudioError(f"Failed to read audio file: {e}") from e

        if len(audio_bytes) == 0:
            raise InvalidAudioError("Audio file is empty")
        if len(audio_bytes) < MIN_WAV_SIZE:
            raise InvalidAudioError("Audio file is too small to be a valid WAV file")

        if self.validate_audio:
            samples, rate = AudioValidator.load_wav(path)
            valid, error = AudioValidator.validate(samples, rate)
            if not valid:
                raise InvalidAudioError(error)

        return audio_bytes

    def retry_delay(self, attempt: int) -> float:
        """Backoff before retry ``attempt`` (1-based): 1s, 2s, 4s... capped at 10s."""
        return min(self.backoff_base * 2 ** (attempt - 1), MAX_BACKOFF_SECONDS)

    async def transcribe(self, audio_path: Path | str) -> str:
        """
        Transcribe a WAV file.

        Args:
            audio_path: Path to the recording

        Returns:
            Transcribed text, stripped

        Raises:
            MissingApiKeyError: If no API key is configured
            InvalidAudioError: If the file is missing, empty, too short or silent
            TranscriptionApiError: If the request fails after all retries
            TranscriptionError: If the API returned no text
        """
        api_key = self.get_api_key()
        path = Path(audio_path)
        audio_bytes = await asyncio.to_thread(self._read_audio, path)

        files = {"file": (path.name, audio_bytes, "audio/wav")}
        data = {"model": self.model, "response_format": "json"}

        attempt = 0
        while True:
            if attempt > 0:
                delay = self.retry_delay(attempt)
                logger.info(f"Retrying transcription in {delay:g}s (attempt {attempt + 1})")
                await asyncio.sleep(delay)
            try:
                text = await self._request(api_key, files, data)
                break
            except TranscriptionApiError as e:
                if not e.retryable or attempt >= self.max_retries:
                    raise
                logger.warning(f"Transcription request failed: {e}")
                attempt += 1

        text = text.strip()
        if not text:
            raise TranscriptionError("Empty transcription from Whisper API")

        logger.debug(f"Transcribed: {text[:50]}...")
        return text

    async def _request(self, api_key: str, files: dict, data: dict) -> str:
        client = self._get_client()
        try:
            response = await client.post(
                self.api_url,
                headers={"Authorization": f"Bearer {api_key}"},
                files=files,
                data=data,
            )
        except httpx.TimeoutException as e:
            raise TranscriptionApiError(
                f"Request timed out after {self.timeout:g}s", retryable=True
            ) from e
        except httpx.RequestError as e:
            raise TranscriptionApiError(f"Network error: {e}", retryable=True) from e

        if response.status_code != 200:
            raise parse_api_error(response.status_code, response.text)

        try:
            result = response.json()
        except ValueError as e:
            raise TranscriptionApiError(
                f"Failed to parse API response: {response.text[:200]}"
            ) from e

        text = result.get("text") if isinstance(result, dict) else None
        if not isinstance(text, str):
            raise TranscriptionApiError("Invalid response: missing 'text' field")
        return text

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None


def parse_api_error(status_code: int, body: str) -> TranscriptionApiError:
    """Turn a non-200 response into a user-facing error."""
    message = f"API request failed with status {status_code}"
    try:
        payload = json.loads(body)
        if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
            message = payload["error"].get("message") or message
    except ValueError:
        if body.strip():
            message = body.strip()[:200]

    retryable = status_code in RETRYABLE_STATUS_CODES
    if status_code == 429:
        message = f"Rate limited: {message}"
    elif status_code == 401:
        message = f"Authentication failed: {message}. Check your GROQ_API_KEY."
    elif status_code == 400:
        message = f"Bad request: {message}"

    return TranscriptionApiError(message, status_code=status_code, retryable=retryable)
