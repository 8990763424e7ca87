import asyncio
from datetime import datetime

from fastapi import APIRouter, HTTPException, Query

from lingua.database import get_store
from lingua.services.transcripts import get_transcript_cache

router = APIRouter(prefix="/api", tags=["courses"])

DEFAULT_CATEGORY = "directory"


def _created_ts(course: dict) -> float:
    raw = course.get("createdAt") or ""
    try:
        return datetime.fromisoformat(raw.replace("Z", "+00:00")).timestamp()
    except ValueError:
        return 0.0


async def _with_stats(course: dict) -> dict:
    stats = await get_transcript_cache().stats(course)
    return {**course, "stats": stats.to_dict()}


@router.get("/courses")
async def list_courses(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    category: str | None = None,
) -> dict:
    """Paginated catalog, newest first, each course with its audio stats."""
    store = get_store()
    await store.read()

    courses = list(store.courses)
    if category:
        courses = [c for c in courses if (c.get("category") or DEFAULT_CATEGORY) == category]
    courses.sort(key=_created_ts, reverse=True)

    start = (page - 1) * limit
    end = page * limit
    results: dict = {
        "results": await asyncio.gather(*(_with_stats(c) for c in courses[start:end])),
        "total": len(courses),
    }
    if end < len(courses):
        results["next"] = {"page": page + 1, "limit": limit}
    if start > 0:
        results["previous"] = {"page": page - 1, "limit": limit}
    return results


@router.get("/courses/{course_id}")
async def get_course(course_id: str) -> dict:
    store = get_store()
    await store.read()
    course = store.find(course_id)
    if not course:
        raise HTTPException(status_code=404, detail="Course not found")
    return await _with_stats(course)
