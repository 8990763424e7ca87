import asyncio
import logging
import os
from typing import Awaitable, Callable

import httpx

from lingua.clients import SpeechClient
from lingua.config import settings
from lingua.database import ContentStore, get_store
from lingua.models import utc_now_iso
from lingua.services.storage import BlobStore, StorageError, get_storage, unique_name, write_json
from lingua.services.transcripts import (
    TranscriptCache,
    get_transcript_cache,
    has_audio,
    iter_words,
)

logger = logging.getLogger(__name__)

IDLE_LOG = "Task Idle"


class AudioCompletionEngine:
    """Fill in missing per-word audio across the whole catalog.

    State machine: idle -> running -> idle. Entry is a test-and-set on
    ``is_running`` with no ``await`` in between, so on the event loop it is
    atomic; a second ``run()``/``trigger()`` while running is a silent no-op.

    Each course is its own short transaction: clips are persisted as they
    are produced, the mutated transcript is saved as a new blob, and the
    course record is re-read from the store right before its ``jsonUrl`` is
    repointed. Words that fail are simply left without ``audioUrl`` and get
    picked up by the next run.
    """

    def __init__(
        self,
        store: ContentStore | None = None,
        storage: BlobStore | None = None,
        speech: SpeechClient | None = None,
        transcripts: TranscriptCache | None = None,
        *,
        uploads_dir: str | None = None,
        word_delay: float | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.store = store or get_store()
        self.storage = storage or get_storage()
        self.speech = speech or SpeechClient()
        self.transcripts = transcripts or get_transcript_cache()
        self.uploads_dir = uploads_dir or settings.uploads_dir
        self.word_delay = settings.word_delay_seconds if word_delay is None else word_delay
        self._sleep = sleep

        # Run state, in memory only: a restart always comes back idle
        self.is_running = False
        self.current_course: str | None = None
        self.processed_count = 0
        self.last_log = ""
        self._task: asyncio.Task | None = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def status(self) -> dict:
        return {
            "isRunning": self.is_running,
            "currentProcessingCourse": self.current_course,
            "processedCount": self.processed_count,
            "lastLog": self.last_log,
        }

    def trigger(self) -> bool:
        """Start a background run if idle. Returns True when a run was started."""
        if not self._acquire():
            return False
        self._task = asyncio.create_task(self._run_acquired())
        return True

    async def run(self) -> None:
        """Run to completion in the caller's task. No-op if a run is in flight."""
        if not self._acquire():
            return
        await self._run_acquired()

    async def wait(self) -> None:
        """Wait for the background run started by ``trigger()``, if any."""
        if self._task is not None:
            await self._task

    async def aclose(self) -> None:
        await self.speech.aclose()

    # ------------------------------------------------------------------
    # Run loop
    # ------------------------------------------------------------------

    def _acquire(self) -> bool:
        if self.is_running:
            return False
        self.is_running = True
        return True

    async def _run_acquired(self) -> None:
        self.processed_count = 0
        logger.info("Starting audio auto-generation task")
        try:
            os.makedirs(self.uploads_dir, exist_ok=True)
            await self.store.read()
            for course in list(self.store.courses):
                await self._process_course(course)
        except Exception:
            logger.exception("Audio task error")
        finally:
            self.is_running = False
            self.current_course = None
            self.last_log = IDLE_LOG
            logger.info(
                "Audio auto-generation task finished, %d clips generated", self.processed_count
            )

    async def _process_course(self, course: dict) -> None:
        title = course.get("title")
        self.current_course = title
        transcript = await self.transcripts.resolve(course)
        if not transcript or not transcript.get("sentences"):
            return

        try:
            if await self._complete_words(course, transcript):
                await self._commit(course, transcript)
        except (StorageError, OSError) as e:
            # Nothing reached the store; the words still read as missing next run
            logger.error("Skipping course %s: %s", title, e)
        except Exception:
            logger.exception("Unexpected error on course %s; skipping", title)

    async def _complete_words(self, course: dict, transcript: dict) -> int:
        updated = 0
        for word in iter_words(transcript):
            text = word.get("thai")
            if not text or has_audio(word):
                continue

            self.last_log = f"Generating: {course.get('title')} - {text}"
            logger.info(self.last_log)

            # Vendor rate limit: wait before every attempt
            await self._sleep(self.word_delay)

            try:
                remote_url = await self.speech.synthesize(text)
                if not remote_url:
                    continue
                saved_url = await self._persist_clip(remote_url)
            except StorageError:
                raise
            except Exception:
                logger.exception("Failed to generate audio for word [%s]", text)
                continue
            if saved_url is None:
                continue

            word["audioUrl"] = saved_url
            updated += 1
            self.processed_count += 1
        return updated

    async def _persist_clip(self, remote_url: str) -> str | None:
        """Download a vendor clip and store it. ``StorageError`` propagates."""
        filename = unique_name("word", "mp3")
        path = os.path.join(self.uploads_dir, filename)
        try:
            await self.speech.download(remote_url, path)
        except (httpx.HTTPError, OSError) as e:
            logger.warning("Failed to download audio %s: %s", remote_url, e)
            _discard(path)
            return None
        return await self.storage.save(path, filename)

    async def _commit(self, course: dict, transcript: dict) -> None:
        filename = unique_name(f"course-{course['id']}", "json")
        path = os.path.join(self.uploads_dir, filename)
        await write_json(path, transcript)
        new_json_url = await self.storage.save(path, filename)

        def repoint(data: dict) -> bool:
            fresh = next((c for c in data["courses"] if c.get("id") == course["id"]), None)
            if fresh is None:
                return False
            fresh["jsonUrl"] = new_json_url
            fresh["updatedAt"] = utc_now_iso()
            return True

        if await self.store.update(repoint):
            logger.info("Saved updates for course: %s", course.get("title"))
        else:
            logger.info("Course %s was deleted during processing; update dropped", course.get("id"))


def _discard(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning("Failed to remove %s: %s", path, e)


_engine: AudioCompletionEngine | None = None


def get_audio_engine() -> AudioCompletionEngine:
    global _engine
    if _engine is None:
        _engine = AudioCompletionEngine()
    return _engine


async def close_audio_engine() -> None:
    global _engine
    if _engine is not None:
        await _engine.aclose()
        _engine = None
