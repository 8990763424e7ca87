import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

import aiofiles
import httpx

from lingua.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SynthesisError(Exception):
    """Vendor reported a failed or malformed synthesis job."""


def _as_object(payload: object) -> dict:
    if not isinstance(payload, dict):
        raise SynthesisError(f"Unexpected vendor payload: {type(payload).__name__}")
    return payload


async def poll_until(
    fetch: Callable[[], Awaitable[T | None]],
    *,
    interval: float,
    attempts: int,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T | None:
    """Wait *interval*, call *fetch*; repeat up to *attempts* times.

    Returns the first non-``None`` result, or ``None`` once attempts run out.
    Exceptions raised by *fetch* end the polling immediately.
    """
    for _ in range(attempts):
        await sleep(interval)
        result = await fetch()
        if result is not None:
            return result
    return None


class SpeechClient:
    """Async wrapper around the soundoftext.com create-then-poll API.

    Usage::

        speech = SpeechClient()
        url = await speech.synthesize("สวัสดี")     # None on any failure
        if url:
            await speech.download(url, "uploads/word.mp3")

    ``synthesize`` never raises. The vendor is rate-sensitive and flaky, so
    retry policy belongs to the caller; this client makes exactly one job
    per call.
    """

    def __init__(
        self,
        http: httpx.AsyncClient | None = None,
        *,
        base_url: str | None = None,
        engine: str | None = None,
        voice: str | None = None,
        poll_interval: float | None = None,
        poll_attempts: int | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._http = http or httpx.AsyncClient(timeout=30.0)
        self.base_url = (base_url or settings.tts_base_url).rstrip("/")
        self.engine = engine or settings.tts_engine
        self.voice = voice or settings.tts_voice
        self.poll_interval = (
            settings.tts_poll_interval_seconds if poll_interval is None else poll_interval
        )
        self.poll_attempts = poll_attempts or settings.tts_poll_attempts
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Synthesis
    # ------------------------------------------------------------------
    async def synthesize(self, text: str) -> str | None:
        """Return a downloadable audio URL for *text*, or ``None``."""
        try:
            sound_id = await self._create(text)
            location = await poll_until(
                lambda: self._check(sound_id),
                interval=self.poll_interval,
                attempts=self.poll_attempts,
                sleep=self._sleep,
            )
            if location is None:
                logger.warning("Synthesis timed out [%s] after %d polls", text, self.poll_attempts)
            return location
        except (httpx.HTTPError, SynthesisError, ValueError) as e:
            logger.warning("Synthesis failed [%s]: %s", text, e)
            return None

    async def _create(self, text: str) -> str:
        resp = await self._http.post(
            f"{self.base_url}/sounds",
            json={"engine": self.engine, "data": {"text": text, "voice": self.voice}},
        )
        resp.raise_for_status()
        payload = _as_object(resp.json())
        if not payload.get("success"):
            raise SynthesisError("Failed to create sound")
        sound_id = payload.get("id")
        if not isinstance(sound_id, (str, int)) or sound_id == "":
            raise SynthesisError(f"Unexpected sound id: {sound_id!r}")
        return str(sound_id)

    async def _check(self, sound_id: str) -> str | None:
        resp = await self._http.get(f"{self.base_url}/sounds/{sound_id}")
        resp.raise_for_status()
        payload = _as_object(resp.json())
        status = payload.get("status")
        if status == "Done":
            location = payload.get("location")
            if not isinstance(location, str) or not location:
                raise SynthesisError(f"Unexpected location: {location!r}")
            return location
        if status == "Error":
            raise SynthesisError("Sound generation error")
        return None  # Pending

    # ------------------------------------------------------------------
    # Download
    # ------------------------------------------------------------------
    async def download(self, url: str, dest: str) -> None:
        """Stream *url* into *dest*. Raises ``httpx.HTTPError`` on failure."""
        async with self._http.stream("GET", url) as resp:
            resp.raise_for_status()
            async with aiofiles.open(dest, "wb") as f:
                async for chunk in resp.aiter_bytes():
                    await f.write(chunk)

    async def aclose(self) -> None:
        """Release the underlying HTTP connection pool."""
        await self._http.aclose()
