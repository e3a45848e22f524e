"""Video job and posting quota API routes."""

from __future__ import annotations

import json
from pathlib import Path

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session

from src.core.config import get_settings
from src.pipeline.generation import create_generation_job
from src.schemas.videos import (
    QuotaSummaryResponse,
    VideoGenerateRequest,
    VideoGenerateResponse,
    VideoJobResponse,
)
from src.social.account_pool import SUPPORTED_PLATFORMS, AccountPool
from src.storage.db import get_session
from src.storage.models import GenerationJob
from src.video.providers.factory import PROVIDER_NAMES
from src.video.router import estimate_category_cost
from src.video.storage import resolve_video_file_path


router = APIRouter(tags=["videos"])


@router.post("/videos/generate", response_model=VideoGenerateResponse, status_code=status.HTTP_202_ACCEPTED)
def generate_video(
    payload: VideoGenerateRequest,
    session: Session = Depends(get_session),
) -> VideoGenerateResponse:
    provider = (payload.provider or "").strip().lower() or None
    if provider is not None and provider not in PROVIDER_NAMES:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="unsupported_provider")
    unknown = [p for p in payload.target_platforms if p.strip().lower() not in SUPPORTED_PLATFORMS]
    if unknown:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="unsupported_target_platform")

    job = create_generation_job(
        session,
        tenant_id=payload.tenant_id,
        concept_id=payload.concept_id,
        category=payload.category,
        prompt=payload.prompt,
        platform=payload.platform,
        provider=provider,
        target_platforms=payload.target_platforms,
        caption=payload.caption,
        hashtags=payload.hashtags,
    )
    estimate = estimate_category_cost(job.category, get_settings().video_default_duration_seconds)
    return VideoGenerateResponse(
        job_id=job.id,
        status=job.status,
        priority=job.priority,
        estimated_provider=estimate.provider,
        estimated_cost=estimate.cost,
        tier=estimate.tier,
    )


@router.get("/videos/files/{file_path:path}")
def video_file(file_path: str):
    resolved = resolve_video_file_path(file_path)
    if resolved is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="video_file_unavailable")
    safe_path = Path(resolved)
    if not safe_path.exists() or not safe_path.is_file():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="video_file_not_found")
    return FileResponse(safe_path, media_type="video/mp4", filename=safe_path.name)


@router.get("/videos/{job_id}", response_model=VideoJobResponse)
def get_video_job(
    job_id: str,
    tenant_id: str = Query(min_length=1, max_length=64),
    session: Session = Depends(get_session),
) -> VideoJobResponse:
    job = session.get(GenerationJob, job_id)
    if job is None or job.tenant_id != tenant_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="video_job_not_found")

    return VideoJobResponse(
        job_id=job.id,
        tenant_id=job.tenant_id,
        concept_id=job.concept_id,
        category=job.category,
        platform=job.platform,
        status=job.status,
        attempt_count=job.attempt_count,
        permanently_failed=job.permanently_failed,
        provider=job.provider,
        video_url=job.storage_url,
        cdn_url=job.cdn_url,
        duration_seconds=job.duration_seconds,
        generation_cost=job.generation_cost,
        quality=json.loads(job.quality_json) if job.quality_json else None,
        error_message=job.error_message,
        created_at=job.created_at,
        completed_at=job.completed_at,
    )


@router.get("/social/quota", response_model=QuotaSummaryResponse)
def social_quota(
    platform: str = Query(min_length=1, max_length=24),
    tenant_id: str = Query(min_length=1, max_length=64),
    session: Session = Depends(get_session),
) -> QuotaSummaryResponse:
    normalized = platform.strip().lower()
    if normalized not in SUPPORTED_PLATFORMS:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="unsupported_platform")
    summary = AccountPool(session).get_total_available_quota(normalized, tenant_id)
    return QuotaSummaryResponse(
        platform=summary.platform,
        tenant_id=summary.tenant_id,
        total_accounts=summary.total_accounts,
        active_accounts=summary.active_accounts,
        total_quota=summary.total_quota,
        available_quota=summary.available_quota,
        used_quota=summary.used_quota,
    )
