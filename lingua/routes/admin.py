import hmac
import logging
import os
import time

import aiofiles
from fastapi import APIRouter, File, Form, HTTPException, UploadFile
from pydantic import BaseModel

from lingua.config import settings
from lingua.database import get_store
from lingua.models import Course, utc_now_iso
from lingua.services.audio import get_audio_engine
from lingua.services.migration import get_migration_engine
from lingua.services.storage import StorageError, get_storage, read_json, unique_name

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])

ADMIN_TOKEN = "admin-session-token"


# ------------------------------------------------------------------
# Request bodies
# ------------------------------------------------------------------


class LoginRequest(BaseModel):
    password: str


# ------------------------------------------------------------------
# Login
# ------------------------------------------------------------------


@router.post("/login")
async def login(body: LoginRequest) -> dict:
    expected = settings.admin_password
    if expected and hmac.compare_digest(body.password, expected):
        return {"success": True, "token": ADMIN_TOKEN}
    raise HTTPException(status_code=401, detail="Invalid password")


# ------------------------------------------------------------------
# Course management
# ------------------------------------------------------------------


async def _save_upload(field: str, upload: UploadFile) -> tuple[str, str]:
    """Write an uploaded file into the uploads dir under a unique name."""
    ext = os.path.splitext(upload.filename or "")[1] or ".bin"
    filename = unique_name(field, ext)
    os.makedirs(settings.uploads_dir, exist_ok=True)
    path = os.path.join(settings.uploads_dir, filename)
    async with aiofiles.open(path, "wb") as f:
        await f.write(await upload.read())
    return path, filename


def _discard_saved(saved: dict[str, tuple[str, str]]) -> None:
    for path, _ in saved.values():
        try:
            os.remove(path)
        except FileNotFoundError:
            pass


@router.post("/upload")
async def upload_course(
    cover: UploadFile | None = File(None),
    audio: UploadFile | None = File(None),
    transcript: UploadFile | None = File(None, alias="json"),
    category: str = Form(""),
    series: str = Form(""),
) -> dict:
    """Create a course from a cover image, narration audio and a transcript JSON."""
    if not (cover and audio and transcript):
        raise HTTPException(status_code=400, detail="Missing files")

    saved = {
        "cover": await _save_upload("cover", cover),
        "audio": await _save_upload("audio", audio),
        "json": await _save_upload("json", transcript),
    }

    try:
        content = await read_json(saved["json"][0])
    except ValueError:
        _discard_saved(saved)
        raise HTTPException(status_code=400, detail="Transcript is not valid JSON")
    if not isinstance(content, dict):
        content = {}

    storage = get_storage()
    try:
        urls = {field: await storage.save(path, name) for field, (path, name) in saved.items()}
    except StorageError as e:
        raise HTTPException(status_code=500, detail=f"Upload failed: {e}")

    course = Course(
        id=str(int(time.time() * 1000)),
        title=content.get("title") or "Untitled Course",
        description=content.get("description") or "",
        coverUrl=urls["cover"],
        audioUrl=urls["audio"],
        jsonUrl=urls["json"],
        category=category or "directory",
        series=series or "",
        createdAt=utc_now_iso(),
    ).to_dict()

    await get_store().update(lambda data: data["courses"].append(course))
    logger.info("Created course %s (%s)", course["id"], course["title"])
    return {"success": True, "course": course}


@router.put("/courses/{course_id}")
async def edit_course(
    course_id: str,
    cover: UploadFile | None = File(None),
    audio: UploadFile | None = File(None),
    transcript: UploadFile | None = File(None, alias="json"),
    title: str | None = Form(None),
    description: str | None = Form(None),
    category: str | None = Form(None),
    series: str | None = Form(None),
) -> dict:
    """Edit course fields; any of cover, audio or json may be replaced."""
    store = get_store()
    await store.read()
    if store.find(course_id) is None:
        raise HTTPException(status_code=404, detail="Course not found")

    changes = {
        key: value
        for key, value in (
            ("title", title),
            ("description", description),
            ("category", category),
            ("series", series),
        )
        if value is not None
    }

    replacements = {"cover": cover, "audio": audio, "json": transcript}
    saved = {
        field: await _save_upload(field, upload)
        for field, upload in replacements.items()
        if upload is not None and upload.filename
    }

    if "json" in saved:
        try:
            content = await read_json(saved["json"][0])
        except ValueError:
            _discard_saved(saved)
            raise HTTPException(status_code=400, detail="Transcript is not valid JSON")
        if isinstance(content, dict):
            # A new transcript brings its own title/description unless overridden
            for key in ("title", "description"):
                if key not in changes and content.get(key):
                    changes[key] = content[key]

    storage = get_storage()
    try:
        for field, (path, name) in saved.items():
            changes[f"{field}Url"] = await storage.save(path, name)
    except StorageError as e:
        raise HTTPException(status_code=500, detail=f"Upload failed: {e}")

    def apply(data: dict) -> dict | None:
        course = next((c for c in data["courses"] if c.get("id") == course_id), None)
        if course is None:
            return None
        course.update(changes)
        course["updatedAt"] = utc_now_iso()
        return course

    course = await get_store().update(apply)
    if course is None:
        raise HTTPException(status_code=404, detail="Course not found")
    return {"success": True, "course": course}


@router.delete("/courses/{course_id}")
async def delete_course(course_id: str) -> dict:
    def remove(data: dict) -> bool:
        before = len(data["courses"])
        data["courses"] = [c for c in data["courses"] if c.get("id") != course_id]
        return len(data["courses"]) != before

    if not await get_store().update(remove):
        raise HTTPException(status_code=404, detail="Course not found")
    return {"success": True}


# ------------------------------------------------------------------
# Background tasks
# ------------------------------------------------------------------


@router.get("/audio-status")
async def audio_status() -> dict:
    return get_audio_engine().status()


@router.post("/audio-trigger")
async def audio_trigger() -> dict:
    """Fire-and-forget; a trigger while a run is in flight is absorbed."""
    started = get_audio_engine().trigger()
    return {
        "success": True,
        "started": started,
        "message": "Task started" if started else "Task already running",
    }


@router.get("/migration-status")
async def migration_status() -> dict:
    return get_migration_engine().status()


@router.post("/migration-run")
async def migration_run() -> dict:
    engine = get_migration_engine()
    if engine.is_migrating:
        raise HTTPException(status_code=409, detail="Migration already running")
    if not engine.trigger():
        raise HTTPException(status_code=400, detail="OSS_CUSTOM_DOMAIN is not set")
    return {"success": True, "message": "Migration started"}
