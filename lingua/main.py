import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.responses import FileResponse

from lingua.config import settings
from lingua.database import init_db
from lingua.logging_utils import configure_logging
from lingua.routes import admin, courses
from lingua.services.audio import close_audio_engine, get_audio_engine
from lingua.services.migration import close_migration_engine
from lingua.services.scheduler import DailySchedule
from lingua.services.transcripts import close_transcript_cache


@asynccontextmanager
async def lifespan(_app: FastAPI):
    """Load the catalog and arm the daily audio run; disarm and close the
    HTTP clients on shutdown.

    Engine state is not persisted, so every boot starts idle.
    """
    configure_logging(settings.log_level)
    os.makedirs(settings.uploads_dir, exist_ok=True)
    await init_db()
    schedule = DailySchedule(
        get_audio_engine().run,
        hour=settings.audio_schedule_hour,
        minute=settings.audio_schedule_minute,
    )
    if settings.scheduler_enabled:
        schedule.start()
    yield
    await schedule.stop()
    await close_audio_engine()
    await close_migration_engine()
    await close_transcript_cache()


app = FastAPI(
    title="lingua",
    description="Course catalog with per-word synthesized audio",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(courses.router)
app.include_router(admin.router)


@app.get("/uploads/{filename}")
async def serve_upload(filename: str):
    """Serve a locally stored blob (cover, narration, transcript, word clip)."""
    path = os.path.join(settings.uploads_dir, os.path.basename(filename))
    if not os.path.isfile(path):
        raise HTTPException(status_code=404, detail="File not found")
    return FileResponse(path)
