from typing import List, Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import require_admin_or_dev
from app.core.database import get_db
from app.schemas.indexing import (
    CleanupResponse,
    IndexingJob,
    IndexingJobList,
    IndexingJobStatistics,
    IndexingJobStatus,
    IndexingJobType,
    TriggerEntityRequest,
    TriggerIncrementalRequest,
    TriggerJobResponse,
)
from app.schemas.user import CurrentUser
from app.services.indexing import IndexingService

router = APIRouter()


@router.get("/", response_model=IndexingJobList)
async def list_jobs(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100, alias="pageSize"),
    status: Optional[IndexingJobStatus] = Query(None),
    current_user: CurrentUser = Depends(require_admin_or_dev),
    db: AsyncSession = Depends(get_db)
):
    """Paged list of indexing jobs, newest first"""
    jobs, total = await IndexingService(db).get_jobs(page, page_size, status)
    return IndexingJobList(
        jobs=[IndexingJob.model_validate(job) for job in jobs],
        total_count=total,
        page=page,
        page_size=page_size,
    )


@router.get("/statistics", response_model=IndexingJobStatistics)
async def get_statistics(
    current_user: CurrentUser = Depends(require_admin_or_dev),
    db: AsyncSession = Depends(get_db)
):
    """Job counts and timings"""
    return await IndexingService(db).get_statistics()


@router.get("/recent", response_model=List[IndexingJob])
async def get_recent_jobs(
    count: int = Query(10),
    current_user: CurrentUser = Depends(require_admin_or_dev),
    db: AsyncSession = Depends(get_db)
):
    """Most recently created jobs"""
    return await IndexingService(db).get_recent_jobs(count)


@router.post("/trigger/full", response_model=TriggerJobResponse)
async def trigger_full_index(
    current_user: CurrentUser = Depends(require_admin_or_dev),
    db: AsyncSession = Depends(get_db)
):
    """Queue a full re-index"""
    job = await IndexingService(db).trigger_full_index(current_user.id)
    return TriggerJobResponse(job_id=job.id, message="Full indexing job queued", job_type=IndexingJobType.FULL)


@router.post("/trigger/incremental", response_model=TriggerJobResponse)
async def trigger_incremental_index(
    request: Optional[TriggerIncrementalRequest] = None,
    current_user: CurrentUser = Depends(require_admin_or_dev),
    db: AsyncSession = Depends(get_db)
):
    """Queue an index of everything changed since a point in time"""
    since = request.since if request else None
    job = await IndexingService(db).trigger_incremental_index(since, current_user.id)
    return TriggerJobResponse(
        job_id=job.id, message="Incremental indexing job queued", job_type=IndexingJobType.INCREMENTAL
    )


@router.post("/trigger/entity", response_model=TriggerJobResponse)
async def trigger_entity_index(
    request: TriggerEntityRequest,
    current_user: CurrentUser = Depends(require_admin_or_dev),
    db: AsyncSession = Depends(get_db)
):
    """Queue a re-index of a single file or folder"""
    job = await IndexingService(db).trigger_entity_index(request.entity_type, [request.entity_id], current_user.id)
    return TriggerJobResponse(
        job_id=job.id,
        message=f"Indexing job queued for {request.entity_type.value} {request.entity_id}",
        job_type=IndexingJobType.ENTITY_SPECIFIC,
    )


@router.delete("/cleanup", response_model=CleanupResponse)
async def cleanup_old_jobs(
    older_than_days: int = Query(30, alias="olderThanDays"),
    current_user: CurrentUser = Depends(require_admin_or_dev),
    db: AsyncSession = Depends(get_db)
):
    """Delete finished jobs older than the given number of days"""
    deleted = await IndexingService(db).cleanup_old_jobs(older_than_days)
    return CleanupResponse(deleted_count=deleted, message=f"Deleted {deleted} old indexing jobs")


@router.get("/{job_id}", response_model=IndexingJob)
async def get_job(
    job_id: int,
    current_user: CurrentUser = Depends(require_admin_or_dev),
    db: AsyncSession = Depends(get_db)
):
    """Get indexing job by ID"""
    return await IndexingService(db).get_job(job_id)


@router.post("/{job_id}/cancel", response_model=IndexingJob)
async def cancel_job(
    job_id: int,
    current_user: CurrentUser = Depends(require_admin_or_dev),
    db: AsyncSession = Depends(get_db)
):
    """Cancel a pending or running job"""
    return await IndexingService(db).cancel_job(job_id)


@router.post("/{job_id}/retry", response_model=TriggerJobResponse)
async def retry_job(
    job_id: int,
    current_user: CurrentUser = Depends(require_admin_or_dev),
    db: AsyncSession = Depends(get_db)
):
    """Queue a new job repeating a failed or cancelled one"""
    job = await IndexingService(db).retry_job(job_id, current_user.id)
    return TriggerJobResponse(job_id=job.id, message=f"Job {job_id} queued for retry", job_type=job.job_type)
