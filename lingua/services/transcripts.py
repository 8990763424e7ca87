import json
import logging
import os
from typing import Iterator
from urllib.parse import urlsplit

import aiofiles
import httpx

from lingua.config import settings
from lingua.models import CourseStats

logger = logging.getLogger(__name__)


def is_remote(url: str | None) -> bool:
    return bool(url) and url.startswith(("http://", "https://"))


def transcript_filename(json_url: str) -> str:
    """Basename of a transcript URL or path, query string dropped."""
    return os.path.basename(urlsplit(json_url).path)


def iter_words(transcript: dict) -> Iterator[dict]:
    """Yield every word of *transcript* in document order.

    Entries that are not objects, and ``sentences``/``words`` that are not
    lists, are skipped rather than raised on.
    """
    sentences = transcript.get("sentences")
    if not isinstance(sentences, list):
        return
    for sentence in sentences:
        if not isinstance(sentence, dict):
            continue
        words = sentence.get("words")
        if not isinstance(words, list):
            continue
        for word in words:
            if isinstance(word, dict):
                yield word


def has_audio(word: dict) -> bool:
    url = word.get("audioUrl")
    return isinstance(url, str) and url.strip() != ""


def _as_transcript(content: object) -> dict:
    if not isinstance(content, dict):
        raise ValueError("transcript is not a JSON object")
    return content


def transcript_stats(transcript: dict | None) -> CourseStats:
    """Count words and words carrying a non-blank ``audioUrl``."""
    stats = CourseStats()
    if not transcript:
        return stats
    for word in iter_words(transcript):
        stats.totalWords += 1
        if has_audio(word):
            stats.hasAudioCount += 1
    return stats


class TranscriptCache:
    """Resolve a course's transcript, caching remote copies in the uploads dir.

    The cache key is only the file basename. Blob names carry a timestamp and
    random suffix, so a new transcript version always gets a new key; there
    is no other invalidation.
    """

    def __init__(
        self, http: httpx.AsyncClient | None = None, cache_dir: str | None = None
    ) -> None:
        self._http = http or httpx.AsyncClient(timeout=30.0)
        self.cache_dir = cache_dir or settings.uploads_dir

    async def resolve(self, course: dict) -> dict | None:
        """Return the parsed transcript for *course*, or ``None``. Never raises."""
        json_url = course.get("jsonUrl") or ""
        filename = transcript_filename(json_url)
        if not filename:
            return None
        local_path = os.path.join(self.cache_dir, filename)

        try:
            if os.path.exists(local_path):
                async with aiofiles.open(local_path, encoding="utf-8") as f:
                    return _as_transcript(json.loads(await f.read()))

            if not is_remote(json_url):
                return None

            resp = await self._http.get(json_url)
            resp.raise_for_status()
            content = _as_transcript(resp.json())
        except (OSError, ValueError, httpx.HTTPError) as e:
            logger.warning("Failed to load transcript for %s: %s", course.get("title"), e)
            return None

        await self._store(local_path, content)
        return content

    async def _store(self, local_path: str, content: dict) -> None:
        try:
            os.makedirs(self.cache_dir, exist_ok=True)
            async with aiofiles.open(local_path, "w", encoding="utf-8") as f:
                await f.write(json.dumps(content, indent=2, ensure_ascii=False))
        except OSError as e:
            logger.warning("Could not cache transcript %s: %s", local_path, e)

    async def stats(self, course: dict) -> CourseStats:
        return transcript_stats(await self.resolve(course))

    async def aclose(self) -> None:
        await self._http.aclose()


_cache: TranscriptCache | None = None


def get_transcript_cache() -> TranscriptCache:
    """Cache shared by the routes and the audio engine."""
    global _cache
    if _cache is None:
        _cache = TranscriptCache()
    return _cache


async def close_transcript_cache() -> None:
    global _cache
    if _cache is not None:
        await _cache.aclose()
        _cache = None
