"""Schemas for video generation and posting quota endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class VideoGenerateRequest(BaseModel):
    tenant_id: str = Field(min_length=1, max_length=64)
    concept_id: str = Field(min_length=1, max_length=64)
    category: str = Field(default="tech", min_length=1, max_length=40)
    prompt: str = Field(min_length=1)
    platform: str = Field(default="tiktok", max_length=32)
    provider: Optional[str] = Field(default=None, max_length=32)
    target_platforms: List[str] = Field(default_factory=list)
    caption: str = ""
    hashtags: List[str] = Field(default_factory=list)


class VideoGenerateResponse(BaseModel):
    job_id: str
    status: str
    priority: int
    estimated_provider: str
    estimated_cost: float
    tier: str


class VideoJobResponse(BaseModel):
    job_id: str
    tenant_id: str
    concept_id: str
    category: str
    platform: str
    status: str
    attempt_count: int
    permanently_failed: bool
    provider: Optional[str] = None
    video_url: Optional[str] = None
    cdn_url: Optional[str] = None
    duration_seconds: Optional[float] = None
    generation_cost: Optional[float] = None
    quality: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None


class QuotaSummaryResponse(BaseModel):
    platform: str
    tenant_id: str
    total_accounts: int
    active_accounts: int
    total_quota: int
    available_quota: int
    used_quota: int
