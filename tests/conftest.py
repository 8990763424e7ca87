from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import lingua.database as database_module
import lingua.services.audio as audio_module
import lingua.services.migration as migration_module
import lingua.services.storage as storage_module
import lingua.services.transcripts as transcripts_module
from lingua.config import settings
from lingua.database import ContentStore


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point every singleton at a fresh tmp dir and disable slow/background bits."""
    uploads = tmp_path / "uploads"
    uploads.mkdir()
    monkeypatch.setattr(settings, "data_dir", str(tmp_path / "data"))
    monkeypatch.setattr(settings, "uploads_dir", str(uploads))
    monkeypatch.setattr(settings, "storage_mode", "local")
    monkeypatch.setattr(settings, "scheduler_enabled", False)
    monkeypatch.setattr(settings, "word_delay_seconds", 0.0)
    monkeypatch.setattr(settings, "oss_custom_domain", "")

    monkeypatch.setattr(database_module, "_store", None)
    monkeypatch.setattr(storage_module, "_storage", None)
    monkeypatch.setattr(transcripts_module, "_cache", None)
    monkeypatch.setattr(audio_module, "_engine", None)
    monkeypatch.setattr(migration_module, "_engine", None)
    return tmp_path


@pytest.fixture()
def uploads_dir(isolated_settings: Path) -> Path:
    return isolated_settings / "uploads"


@pytest.fixture()
def store(isolated_settings: Path) -> ContentStore:
    return ContentStore(str(isolated_settings / "data" / "db.json"))


def make_transcript(*sentences: list[dict], title: str = "Lesson") -> dict:
    return {
        "title": title,
        "description": "",
        "sentences": [
            {
                "thai": " ".join(w.get("thai", "") for w in words),
                "chinese": "",
                "startTime": float(i),
                "endTime": float(i) + 0.9,
                "words": words,
            }
            for i, words in enumerate(sentences)
        ],
    }


def word(thai: str, audio_url: str | None = None) -> dict:
    data = {"thai": thai, "chinese": "", "startTime": 0.0, "endTime": 0.5}
    if audio_url is not None:
        data["audioUrl"] = audio_url
    return data


def seed_course(
    store: ContentStore,
    uploads_dir: Path,
    course_id: str,
    transcript: dict,
    **fields: str,
) -> dict:
    """Write *transcript* into uploads and append a course pointing at it."""
    filename = f"json-{course_id}.json"
    (uploads_dir / filename).write_text(json.dumps(transcript), encoding="utf-8")
    course = {
        "id": course_id,
        "title": transcript.get("title", f"Course {course_id}"),
        "description": "",
        "coverUrl": f"/uploads/cover-{course_id}.png",
        "audioUrl": f"/uploads/audio-{course_id}.mp3",
        "jsonUrl": f"/uploads/{filename}",
        "category": "directory",
        "series": "",
        "createdAt": f"2024-01-0{int(course_id) % 9 + 1}T00:00:00.000Z",
    }
    course.update(fields)
    asyncio.run(store.update(lambda data: data["courses"].append(course)))
    return course


class FakeSpeech:
    """Stands in for SpeechClient: records calls, optionally blocks on a gate."""

    def __init__(
        self,
        url: str = "https://vendor.example/clip.mp3",
        *,
        fail_for: tuple[str, ...] = (),
        gate: asyncio.Event | None = None,
    ) -> None:
        self.url = url
        self.fail_for = fail_for
        self.gate = gate
        self.calls: list[str] = []
        self.downloads: list[str] = []

    async def synthesize(self, text: str) -> str | None:
        self.calls.append(text)
        if self.gate is not None:
            await self.gate.wait()
        if text in self.fail_for:
            return None
        return self.url

    async def download(self, url: str, dest: str) -> None:
        self.downloads.append(url)
        Path(dest).write_bytes(b"ID3fake")

    async def aclose(self) -> None:
        self.closed = True
