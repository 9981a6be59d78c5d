from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class TimeRange(BaseModel):
    """Seconds from the start of the video.

    ``end`` is optional: a reading without an end is a point event and is
    treated as ``end == start``.
    """

    model_config = ConfigDict(extra="ignore")

    start: float = 0.0
    end: Optional[float] = None


class ObjectDetection(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str
    confidence: float = 0.0
    time: TimeRange = Field(default_factory=TimeRange)
    track_id: Optional[str] = None


class RecognizedText(BaseModel):
    model_config = ConfigDict(extra="ignore")

    text: str = ""
    confidence: float = 0.0
    time: TimeRange = Field(default_factory=TimeRange)


class ClassificationLabel(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str
    confidence: float = 0.0


class AnalysisRecord(BaseModel):
    """One completed annotation run for a video."""

    model_config = ConfigDict(extra="ignore")

    analysis_id: str
    video_id: str
    analyzed_at: Optional[datetime] = None


class RankedLabel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str
    confidence: float


class LiveSnapshot(BaseModel):
    """State of a video at whole second ``t``, as stored in the cache."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    video_id: str = Field(..., alias="videoId")
    t: int
    player_count: int = Field(0, alias="playerCount")
    scoreboard_text: str = Field("", alias="scoreboard")
    score: str = ""
    last_updated: datetime = Field(..., alias="lastUpdated")
    top_labels: List[RankedLabel] = Field(default_factory=list, alias="topLabels")


class BuildResult(BaseModel):
    """Minimal signal returned to a synchronous build caller."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    score: str = ""
    scoreboard_text: str = Field("", alias="scoreboard")


LiveStatus = Literal["hit", "built"]


class LiveStateReply(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    ok: bool = True
    status: LiveStatus
    snapshot: LiveSnapshot


class PrimeReply(BaseModel):
    model_config = ConfigDict(extra="forbid")

    ok: bool = True
    video_id: str
    accepted: bool = True


class PrewarmReport(BaseModel):
    model_config = ConfigDict(extra="forbid")

    video_id: str
    planned: int = 0
    built: int = 0
    failed: int = 0
    skipped: bool = False
