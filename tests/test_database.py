from __future__ import annotations

import asyncio
import json
from pathlib import Path

from lingua.database import ContentStore, get_store, init_db


def test_read_missing_file_gives_empty_catalog(store):
    assert asyncio.run(store.read()) == {"courses": []}
    assert store.find("1") is None


def test_update_round_trips_through_disk(store):
    result = asyncio.run(store.update(lambda data: data["courses"].append({"id": "1"}) or "ok"))

    assert result == "ok"
    assert json.loads(Path(store.path).read_text(encoding="utf-8")) == {"courses": [{"id": "1"}]}

    other = ContentStore(store.path)
    asyncio.run(other.read())
    assert other.find("1") == {"id": "1"}


def test_update_sees_writes_made_by_other_instances(store):
    asyncio.run(store.update(lambda data: data["courses"].append({"id": "1"})))
    other = ContentStore(store.path)
    asyncio.run(other.update(lambda data: data["courses"].append({"id": "2"})))

    asyncio.run(store.update(lambda data: data["courses"].append({"id": "3"})))
    assert [c["id"] for c in store.courses] == ["1", "2", "3"]


def test_write_keeps_non_ascii_text(store):
    store.data = {"courses": [{"id": "1", "title": "ภาษาไทย"}]}
    asyncio.run(store.write())
    assert "ภาษาไทย" in Path(store.path).read_text(encoding="utf-8")


def test_init_db_creates_catalog(isolated_settings):
    asyncio.run(init_db())
    assert (isolated_settings / "data" / "db.json").exists()
    assert get_store().courses == []
