import json
import os
from typing import Any, Callable

import aiofiles
import aiofiles.os

from lingua.config import settings

DB_FILENAME = "db.json"


def _default_data() -> dict:
    return {"courses": []}


class ContentStore:
    """Flat JSON file holding the course catalog.

    Mirrors a read/modify/write document store: ``data`` is the in-memory
    view, ``read()`` hydrates it from disk and ``write()`` persists it.
    There is no locking; concurrent ``update()`` callers race and the last
    write wins.
    """

    def __init__(self, path: str) -> None:
        self.path = path
        self.data: dict = _default_data()

    async def read(self) -> dict:
        if not await aiofiles.os.path.exists(self.path):
            self.data = _default_data()
            return self.data
        async with aiofiles.open(self.path, encoding="utf-8") as f:
            raw = await f.read()
        self.data = json.loads(raw) if raw.strip() else _default_data()
        self.data.setdefault("courses", [])
        return self.data

    async def write(self) -> None:
        os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
        tmp_path = f"{self.path}.tmp"
        async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
            await f.write(json.dumps(self.data, indent=2, ensure_ascii=False))
        await aiofiles.os.replace(tmp_path, self.path)

    async def update(self, mutator: Callable[[dict], Any]) -> Any:
        """Read, apply *mutator* to the fresh data, write. Returns the mutator's result."""
        await self.read()
        result = mutator(self.data)
        await self.write()
        return result

    @property
    def courses(self) -> list[dict]:
        return self.data["courses"]

    def find(self, course_id: str) -> dict | None:
        return next((c for c in self.courses if c.get("id") == course_id), None)


_store: ContentStore | None = None


def get_store() -> ContentStore:
    """Process-wide store bound to ``settings.data_dir``."""
    global _store
    if _store is None:
        _store = ContentStore(os.path.join(settings.data_dir, DB_FILENAME))
    return _store


async def init_db() -> None:
    """Create the data directory and an empty catalog if none exists. Called at startup."""
    store = get_store()
    os.makedirs(os.path.dirname(store.path) or ".", exist_ok=True)
    if not os.path.exists(store.path):
        await store.write()
    await store.read()
