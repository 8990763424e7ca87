import asyncio
import logging
import os
from collections import deque
from urllib.parse import urlsplit, urlunsplit

import httpx

from lingua.config import settings
from lingua.database import ContentStore, get_store
from lingua.models import utc_now_iso
from lingua.services.storage import BlobStore, StorageError, get_storage, unique_name, write_json
from lingua.services.transcripts import is_remote, iter_words

logger = logging.getLogger(__name__)

COURSE_URL_FIELDS = ("coverUrl", "audioUrl", "jsonUrl")


def matches_domain(hostname: str | None, legacy_domain: str) -> bool:
    if not hostname or not legacy_domain:
        return False
    hostname = hostname.lower()
    legacy_domain = legacy_domain.lower().lstrip(".")
    return hostname == legacy_domain or hostname.endswith("." + legacy_domain)


def replace_domain(url: str | None, target_domain: str, legacy_domain: str) -> str | None:
    """Swap the host of a legacy storage URL for *target_domain*.

    Scheme, port, path, query and fragment are kept. Relative paths,
    foreign hosts and unparsable URLs come back unchanged.
    """
    if not is_remote(url):
        return url
    try:
        parts = urlsplit(url)
        port = parts.port
    except ValueError:
        return url
    if not matches_domain(parts.hostname, legacy_domain):
        return url
    netloc = target_domain if port is None else f"{target_domain}:{port}"
    return urlunsplit(parts._replace(netloc=netloc))


class DomainMigrationEngine:
    """One-shot rewrite of persisted storage URLs onto the CDN domain.

    Course-level URLs are rewritten in place. Transcripts whose word clips
    change are saved as new blobs; the original transcript blob is never
    overwritten. Each changed course is written to the store before moving
    on, so an interrupted migration keeps everything done so far and a
    re-run only touches what is still on the legacy domain.
    """

    def __init__(
        self,
        store: ContentStore | None = None,
        storage: BlobStore | None = None,
        http: httpx.AsyncClient | None = None,
        *,
        target_domain: str | None = None,
        legacy_domain: str | None = None,
        uploads_dir: str | None = None,
        log_limit: int | None = None,
    ) -> None:
        self.store = store or get_store()
        self.storage = storage or get_storage()
        self._http = http or httpx.AsyncClient(timeout=30.0)
        self.target_domain = (
            settings.oss_custom_domain if target_domain is None else target_domain
        )
        self.legacy_domain = legacy_domain or settings.legacy_storage_domain
        self.uploads_dir = uploads_dir or settings.uploads_dir

        self.is_migrating = False
        self.logs: deque[str] = deque(maxlen=log_limit or settings.migration_log_limit)
        self._task: asyncio.Task | None = None

    def status(self) -> dict:
        return {"isMigrating": self.is_migrating, "logs": list(self.logs)}

    def trigger(self) -> bool:
        """Start a background migration if idle. Returns True when one was started."""
        if self.is_migrating:
            return False
        if not self._check_config():
            return False
        self.is_migrating = True
        self._task = asyncio.create_task(self._run_acquired())
        return True

    async def run(self) -> None:
        if self.is_migrating or not self._check_config():
            return
        self.is_migrating = True
        await self._run_acquired()

    async def wait(self) -> None:
        if self._task is not None:
            await self._task

    async def aclose(self) -> None:
        await self._http.aclose()

    # ------------------------------------------------------------------

    def _log(self, line: str, level: int = logging.INFO) -> None:
        self.logs.append(line)
        logger.log(level, line)

    def _check_config(self) -> bool:
        if not self.target_domain:
            self._log("Error: OSS_CUSTOM_DOMAIN is not set", logging.ERROR)
            return False
        return True

    async def _run_acquired(self) -> None:
        self.logs.clear()
        self._log(f"Starting migration to: {self.target_domain}")
        changed = 0
        try:
            os.makedirs(self.uploads_dir, exist_ok=True)
            await self.store.read()
            for course in list(self.store.courses):
                if await self._migrate_course(course):
                    changed += 1
            self._log(f"Migration finished. {changed} courses updated.")
        except Exception as e:
            logger.exception("Migration failed")
            self._log(f"Fatal Error: {e}", logging.ERROR)
        finally:
            self.is_migrating = False

    async def _migrate_course(self, course: dict) -> bool:
        title = course.get("title")
        changes: dict[str, str] = {}
        for field in COURSE_URL_FIELDS:
            old = course.get(field)
            new = replace_domain(old, self.target_domain, self.legacy_domain)
            if new != old:
                changes[field] = new
        course.update(changes)

        json_url = course.get("jsonUrl")
        if is_remote(json_url):
            try:
                new_json_url = await self._migrate_transcript(course, json_url)
            except (httpx.HTTPError, ValueError, OSError, StorageError) as e:
                self._log(f"Failed to process JSON for {title}: {e}", logging.WARNING)
            else:
                if new_json_url:
                    changes["jsonUrl"] = new_json_url

        if not changes:
            return False

        changes["updatedAt"] = utc_now_iso()

        def apply(data: dict) -> bool:
            fresh = next((c for c in data["courses"] if c.get("id") == course.get("id")), None)
            if fresh is None:
                return False
            fresh.update(changes)
            return True

        if not await self.store.update(apply):
            self._log(f"Course {title} no longer exists, skipped", logging.WARNING)
            return False
        self._log(f"Updated course: {title}")
        return True

    async def _migrate_transcript(self, course: dict, json_url: str) -> str | None:
        """Rewrite clip URLs; return the new transcript URL when anything changed."""
        # Fetching through the rewritten URL also proves the new domain serves
        resp = await self._http.get(json_url)
        resp.raise_for_status()
        transcript = resp.json()
        if not isinstance(transcript, dict):
            raise ValueError("transcript is not a JSON object")

        modified = False
        for word in iter_words(transcript):
            old = word.get("audioUrl")
            if not old:
                continue
            new = replace_domain(old, self.target_domain, self.legacy_domain)
            if new != old:
                word["audioUrl"] = new
                modified = True

        if not modified:
            return None

        self._log(f"Updating JSON content for: {course.get('title')}")
        filename = unique_name("migrated", "json")
        path = os.path.join(self.uploads_dir, filename)
        await write_json(path, transcript)
        return await self.storage.save(path, filename)


_engine: DomainMigrationEngine | None = None


def get_migration_engine() -> DomainMigrationEngine:
    global _engine
    if _engine is None:
        _engine = DomainMigrationEngine()
    return _engine


async def close_migration_engine() -> None:
    global _engine
    if _engine is not None:
        await _engine.aclose()
        _engine = None
