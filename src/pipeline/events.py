"""Pipeline event names and payload contracts."""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field


VIDEO_GENERATE = "video/generate"
VIDEO_COMPLETED = "video/completed"
VIDEO_FAILED = "video/failed"
VIDEO_READY = "video/ready"
ANALYTICS_SCRAPE = "analytics/scrape"

EVENT_NAMES = (VIDEO_GENERATE, VIDEO_COMPLETED, VIDEO_FAILED, VIDEO_READY, ANALYTICS_SCRAPE)


class VideoGeneratePayload(BaseModel):
    job_id: str
    tenant_id: str
    concept_id: str = ""
    category: str = "tech"
    platform: str = "tiktok"
    prompt: str = ""
    provider: Optional[str] = None
    priority: int = 5
    attempt: int = Field(default=1, ge=1)


class VideoFailedPayload(BaseModel):
    job_id: str
    tenant_id: str
    error: str = ""
    provider: Optional[str] = None
    attempt: int = Field(default=1, ge=1)
    category: Optional[str] = None
    platform: Optional[str] = None
    prompt: Optional[str] = None
    priority: Optional[int] = None
    concept_id: Optional[str] = None


class VideoCompletedPayload(BaseModel):
    job_id: str
    tenant_id: str
    provider: str
    video_url: str
    cdn_url: str
    duration: float
    cost: float = 0.0
    quality_valid: bool = True
    quality_issues: List[str] = Field(default_factory=list)


class VideoReadyPayload(BaseModel):
    video_id: str
    tenant_id: str
    concept_id: str = ""
    category: str = ""
    platforms: List[str] = Field(default_factory=list)
    caption: str = ""
    hashtags: List[str] = Field(default_factory=list)


class AnalyticsScrapePayload(BaseModel):
    video_id: str
    tenant_id: str
    platforms: List[str] = Field(default_factory=list)
    post_ids: List[str] = Field(default_factory=list)
