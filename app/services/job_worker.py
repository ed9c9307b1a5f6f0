"""Background indexing worker.

Polls the indexing_jobs table for Pending jobs and runs them one at a time.
Runs as an asyncio task within the FastAPI process; the request path only
enqueues jobs and never waits for them. Images uploaded without immediate
processing are handled on the same loop.
"""
import asyncio
import logging
import time
from datetime import timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from app.core.config import settings
from app.core.database import AsyncSessionLocal, utcnow
from app.core.events import DomainEvent, EventBus
from app.models.indexing import IndexingJob
from app.repositories.indexing import IndexingJobRepository
from app.schemas.indexing import IndexingJobStatus, SearchEntityType
from app.services.file import FileService
from app.services.indexing import IndexingService, JobCancelledError

logger = logging.getLogger(__name__)

# In-memory cancel cache, filled by the cancel route after its commit
_cancelled_jobs: set = set()
_cancel_check_times: dict = {}
_CANCEL_CHECK_INTERVAL = 10.0  # seconds between DB fallback checks


def mark_job_cancelled(job_id) -> None:
    """Record a cancellation so running jobs see it without a DB round-trip"""
    _cancelled_jobs.add(str(job_id))


def _cleanup_cancelled_job(job_id) -> None:
    job_key = str(job_id)
    _cancelled_jobs.discard(job_key)
    _cancel_check_times.pop(job_key, None)


async def is_job_cancelled(job_id, session_factory: async_sessionmaker = AsyncSessionLocal) -> bool:
    """Memory first, then a throttled database check"""
    job_key = str(job_id)
    if job_key in _cancelled_jobs:
        return True
    now = time.monotonic()
    if now - _cancel_check_times.get(job_key, 0) < _CANCEL_CHECK_INTERVAL:
        return False
    _cancel_check_times[job_key] = now
    async with session_factory() as db:
        job = await db.get(IndexingJob, job_id)
        if job is not None and job.status == IndexingJobStatus.CANCELLED:
            _cancelled_jobs.add(job_key)
            return True
    return False


async def recover_stale_jobs(session_factory: async_sessionmaker = AsyncSessionLocal,
                             stale_minutes: Optional[int] = None) -> int:
    """Fail jobs left Running by a crashed process"""
    stale_minutes = stale_minutes or settings.INDEXING_STALE_JOB_MINUTES
    cutoff = utcnow() - timedelta(minutes=stale_minutes)
    async with session_factory() as db:
        repo = IndexingJobRepository(db)
        stale_jobs = await repo.get_running_started_before(cutoff)
        for job in stale_jobs:
            job.status = IndexingJobStatus.FAILED.value
            job.error_message = f"Recovered on startup: job was running for >{stale_minutes} minutes"
            job.completed_at = utcnow()
            logger.warning(f"Recovered stale indexing job {job.id} (started at {job.started_at})")
        if stale_jobs:
            await repo.save()
        return len(stale_jobs)


async def process_next_job(session_factory: async_sessionmaker = AsyncSessionLocal) -> Optional[int]:
    """Run the oldest Pending job to completion; returns its id, or None when idle"""
    async with session_factory() as db:
        repo = IndexingJobRepository(db)
        job = await repo.get_next_pending()
        if job is None:
            return None

        job_id = job.id
        logger.info(f"Processing indexing job {job_id} (type={job.job_type})")
        job.status = IndexingJobStatus.RUNNING.value
        job.started_at = utcnow()
        await repo.save()

        async def cancelled(checked_id) -> bool:
            return await is_job_cancelled(checked_id, session_factory)

        try:
            await IndexingService(db).run_job(job, cancelled)
            await repo.refresh(job)
            if job.status == IndexingJobStatus.CANCELLED:
                logger.info(f"Job {job.id} was cancelled during execution, skipping completed update")
            else:
                job.status = IndexingJobStatus.COMPLETED.value
                job.completed_at = utcnow()
                await repo.save()
                logger.info(f"Indexing job {job.id} completed ({job.processed_entities}/{job.total_entities})")
        except JobCancelledError as e:
            logger.info(str(e))
            job.status = IndexingJobStatus.CANCELLED.value
            job.completed_at = job.completed_at or utcnow()
            await repo.save()
        except Exception as e:
            logger.exception(f"Indexing job {job_id} failed: {e}")
            await db.rollback()
            await _mark_failed(session_factory, job_id, e)
        finally:
            _cleanup_cancelled_job(job_id)
        return job_id


async def _mark_failed(session_factory: async_sessionmaker, job_id: int, error: Exception) -> None:
    """Record a failure from a fresh session, retrying transient errors"""
    message = (str(error).strip() or type(error).__name__)[:2000]
    for attempt in range(3):
        try:
            async with session_factory() as db:
                job = await db.get(IndexingJob, job_id)
                if job and job.status not in (IndexingJobStatus.COMPLETED, IndexingJobStatus.CANCELLED):
                    job.status = IndexingJobStatus.FAILED.value
                    job.error_message = message
                    job.completed_at = utcnow()
                    await db.commit()
            return
        except Exception as db_err:
            logger.error(f"Failed to mark job {job_id} as failed (attempt {attempt + 1}/3): {db_err}")
            if attempt < 2:
                await asyncio.sleep(1)


async def process_pending_images(session_factory: async_sessionmaker = AsyncSessionLocal) -> int:
    async with session_factory() as db:
        return await FileService(db).process_pending_images()


async def worker_loop(session_factory: async_sessionmaker = AsyncSessionLocal,
                      poll_interval: Optional[float] = None) -> None:
    """Main worker loop, runs until cancelled"""
    poll_interval = poll_interval or settings.INDEXING_POLL_INTERVAL_SECONDS
    logger.info("Indexing worker started")
    while True:
        try:
            while await process_next_job(session_factory) is not None:
                pass
            await process_pending_images(session_factory)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Worker loop error: {e}")
        await asyncio.sleep(poll_interval)


def register_indexing_subscribers(bus: EventBus, session_factory: async_sessionmaker = AsyncSessionLocal) -> None:
    """Queue search re-indexing after file and folder changes"""

    async def on_file_event(event: DomainEvent) -> None:
        if event.action == "accessed" or event.entity_id is None:
            return
        async with session_factory() as db:
            await IndexingService(db).trigger_entity_index(SearchEntityType.FILE, [event.entity_id])

    async def on_folder_event(event: DomainEvent) -> None:
        ids = list(event.data.get("affected_ids") or ([event.entity_id] if event.entity_id else []))
        async with session_factory() as db:
            service = IndexingService(db)
            if ids:
                await service.trigger_entity_index(SearchEntityType.FOLDER, ids)
            if event.data.get("files_changed"):
                await service.trigger_incremental_index(since=utcnow() - timedelta(minutes=1))

    bus.subscribe("file", on_file_event)
    bus.subscribe("folder", on_folder_event)
