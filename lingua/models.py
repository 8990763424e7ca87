from dataclasses import asdict, dataclass
from datetime import datetime, timezone


@dataclass
class Course:
    id: str  # millisecond timestamp at creation
    title: str
    description: str
    coverUrl: str
    audioUrl: str
    jsonUrl: str  # points at the transcript blob
    category: str
    series: str
    createdAt: str
    updatedAt: str | None = None

    def to_dict(self) -> dict:
        data = asdict(self)
        if data["updatedAt"] is None:
            del data["updatedAt"]
        return data


@dataclass
class CourseStats:
    totalWords: int = 0
    hasAudioCount: int = 0

    @property
    def isComplete(self) -> bool:
        # An empty transcript is never complete
        return self.totalWords > 0 and self.totalWords == self.hasAudioCount

    def to_dict(self) -> dict:
        return {
            "totalWords": self.totalWords,
            "hasAudioCount": self.hasAudioCount,
            "isComplete": self.isComplete,
        }


def utc_now_iso() -> str:
    """UTC timestamp with millisecond precision and a ``Z`` suffix."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
