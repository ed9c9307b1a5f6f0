"""
Search indexing: job bookkeeping and the indexing passes the worker runs.

Triggering only records a Pending job; `app.services.job_worker` picks it up.
"""
from datetime import datetime, timedelta
from typing import Awaitable, Callable, List, Optional, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from app.core.database import utcnow
from app.models.file import FileEntity
from app.models.folder import Folder
from app.models.indexing import IndexingJob, SearchIndex
from app.repositories.file import FileRepository
from app.repositories.folder import FolderRepository
from app.repositories.indexing import IndexingJobRepository, SearchIndexRepository
from app.schemas.indexing import (
    FINISHED_JOB_STATUSES,
    IndexingJobStatistics,
    IndexingJobStatus,
    IndexingJobType,
    SearchEntityType,
)
from app.schemas.user import CurrentUser
from app.utils.exceptions import InvalidOperationError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

PROGRESS_COMMIT_INTERVAL = 10


class JobCancelledError(Exception):
    """Raised when a job detects it has been cancelled (cooperative cancellation)."""
    pass


class IndexingService:
    def __init__(self, db: AsyncSession):
        self.job_repo = IndexingJobRepository(db)
        self.index_repo = SearchIndexRepository(db)
        self.folder_repo = FolderRepository(db)
        self.file_repo = FileRepository(db)

    async def _get_or_404(self, job_id: int) -> IndexingJob:
        job = await self.job_repo.get_by_id(job_id)
        if not job:
            raise NotFoundError(f"Indexing job with ID {job_id} not found")
        return job

    # Triggers

    async def trigger_full_index(self, user_id: Optional[int] = None) -> IndexingJob:
        job = await self.job_repo.create(IndexingJobType.FULL.value, {"triggeredBy": user_id})
        logger.info(f"Queued full index job {job.id}")
        return job

    async def trigger_incremental_index(self, since: Optional[datetime] = None,
                                        user_id: Optional[int] = None) -> IndexingJob:
        if since is None:
            last = await self.job_repo.last_completed(IndexingJobType.INCREMENTAL.value)
            since = last or (utcnow() - timedelta(days=1))
        job = await self.job_repo.create(
            IndexingJobType.INCREMENTAL.value, {"since": since.isoformat(), "triggeredBy": user_id}
        )
        logger.info(f"Queued incremental index job {job.id} since {since.isoformat()}")
        return job

    async def trigger_entity_index(self, entity_type: SearchEntityType, entity_ids: List[int],
                                   user_id: Optional[int] = None) -> IndexingJob:
        if not entity_ids:
            raise ValidationError("At least one entity id is required")
        job = await self.job_repo.create(
            IndexingJobType.ENTITY_SPECIFIC.value,
            {"entityType": entity_type.value, "entityIds": list(entity_ids), "triggeredBy": user_id},
        )
        logger.debug(f"Queued entity index job {job.id} for {entity_type.value} {entity_ids}")
        return job

    # Job management

    async def get_job(self, job_id: int) -> IndexingJob:
        return await self._get_or_404(job_id)

    async def get_jobs(self, page: int, page_size: int, status: Optional[IndexingJobStatus] = None):
        return await self.job_repo.get_paged(page, page_size, status.value if status else None)

    async def get_recent_jobs(self, count: int = 10) -> List[IndexingJob]:
        return await self.job_repo.get_recent(max(1, min(count, 100)))

    async def cancel_job(self, job_id: int) -> IndexingJob:
        """Cancel a pending or running job; running jobs stop at their next checkpoint"""
        from app.services.job_worker import mark_job_cancelled

        job = await self._get_or_404(job_id)
        if job.status not in (IndexingJobStatus.PENDING, IndexingJobStatus.RUNNING):
            raise InvalidOperationError(f"Cannot cancel job in '{job.status}' state")
        job.status = IndexingJobStatus.CANCELLED.value
        job.completed_at = utcnow()
        job.error_message = "Cancelled by user"
        await self.job_repo.save()
        mark_job_cancelled(job.id)
        logger.info(f"Cancelled indexing job {job.id}")
        return job

    async def retry_job(self, job_id: int, user_id: Optional[int] = None) -> IndexingJob:
        """Queue a fresh copy of a failed or cancelled job"""
        job = await self._get_or_404(job_id)
        if job.status not in (IndexingJobStatus.FAILED, IndexingJobStatus.CANCELLED):
            raise InvalidOperationError(f"Only failed or cancelled jobs can be retried, job is '{job.status}'")
        metadata = dict(job.job_metadata or {})
        metadata.update({"retryOf": job.id, "triggeredBy": user_id})
        retry = await self.job_repo.create(job.job_type, metadata)
        logger.info(f"Queued job {retry.id} as retry of {job.id}")
        return retry

    async def cleanup_old_jobs(self, older_than_days: int = 30) -> int:
        if older_than_days < 1:
            raise ValidationError("olderThanDays must be at least 1")
        cutoff = utcnow() - timedelta(days=older_than_days)
        deleted = await self.job_repo.delete_finished_before(
            cutoff, tuple(status.value for status in FINISHED_JOB_STATUSES)
        )
        logger.info(f"Removed {deleted} indexing jobs older than {older_than_days} days")
        return deleted

    async def get_statistics(self) -> IndexingJobStatistics:
        now = utcnow()
        by_status = await self.job_repo.count_by_status()
        durations = [
            (completed - started).total_seconds()
            for started, completed in await self.job_repo.get_completed_durations()
        ]
        return IndexingJobStatistics(
            total_jobs=sum(by_status.values()),
            running_jobs=by_status.get(IndexingJobStatus.RUNNING.value, 0),
            pending_jobs=by_status.get(IndexingJobStatus.PENDING.value, 0),
            completed_jobs=by_status.get(IndexingJobStatus.COMPLETED.value, 0),
            failed_jobs=by_status.get(IndexingJobStatus.FAILED.value, 0),
            cancelled_jobs=by_status.get(IndexingJobStatus.CANCELLED.value, 0),
            jobs_last_24_hours=await self.job_repo.count_created_since(now - timedelta(hours=24)),
            jobs_last_7_days=await self.job_repo.count_created_since(now - timedelta(days=7)),
            jobs_last_30_days=await self.job_repo.count_created_since(now - timedelta(days=30)),
            last_full_index=await self.job_repo.last_completed(IndexingJobType.FULL.value),
            last_incremental_index=await self.job_repo.last_completed(IndexingJobType.INCREMENTAL.value),
            average_job_duration=round(sum(durations) / len(durations), 3) if durations else None,
            job_type_breakdown=await self.job_repo.count_by_type(),
        )

    # Indexing passes

    async def _collect_entities(self, job: IndexingJob) -> List[Tuple[SearchEntityType, object]]:
        metadata = job.job_metadata or {}
        if job.job_type == IndexingJobType.FULL:
            folders = await self.folder_repo.get_updated_since(None)
            files = await self.file_repo.get_updated_since(None)
        elif job.job_type == IndexingJobType.INCREMENTAL:
            since = datetime.fromisoformat(metadata["since"]) if metadata.get("since") else None
            folders = await self.folder_repo.get_updated_since(since)
            files = await self.file_repo.get_updated_since(since)
        elif job.job_type == IndexingJobType.ENTITY_SPECIFIC:
            entity_type = SearchEntityType(metadata.get("entityType"))
            entities = []
            for entity_id in metadata.get("entityIds", []):
                if entity_type == SearchEntityType.FOLDER:
                    entity = await self.folder_repo.get_by_id(entity_id, include_deleted=True)
                else:
                    entity = await self.file_repo.get_by_id(entity_id, include_deleted=True)
                entities.append((entity_type, entity if entity is not None else entity_id))
            return entities
        else:
            raise ValidationError(f"Unknown indexing job type '{job.job_type}'")
        return [(SearchEntityType.FOLDER, f) for f in folders] + [(SearchEntityType.FILE, f) for f in files]

    async def index_entity(self, entity_type: SearchEntityType, entity) -> None:
        """Refresh one index entry; deleted or missing entities are dropped from the index"""
        if isinstance(entity, int):
            await self.index_repo.remove(entity_type.value, entity)
            return
        if entity.is_deleted:
            await self.index_repo.remove(entity_type.value, entity.id)
            return
        if isinstance(entity, Folder):
            await self.index_repo.upsert(
                SearchEntityType.FOLDER.value,
                entity.id,
                title=entity.name,
                content=" ".join(part for part in (entity.path, entity.description) if part),
                metadata={"path": entity.path, "folderType": entity.folder_type,
                          "parentFolderId": entity.parent_folder_id},
                is_public=entity.is_public,
            )
        elif isinstance(entity, FileEntity):
            tags = " ".join(str(v) for v in (entity.tags or {}).values())
            await self.index_repo.upsert(
                SearchEntityType.FILE.value,
                entity.id,
                title=entity.original_file_name,
                content=" ".join(part for part in (entity.description, entity.alt, tags) if part),
                metadata={"folderId": entity.folder_id, "fileType": entity.file_type,
                          "contentType": entity.content_type, "fileSize": entity.file_size},
                is_public=entity.is_public,
            )

    async def run_job(self, job: IndexingJob, is_cancelled: Callable[[int], Awaitable[bool]]) -> None:
        """Index every entity the job covers, checking for cancellation between entities"""
        entities = await self._collect_entities(job)
        job.total_entities = len(entities)
        job.processed_entities = 0
        job.failed_entities = 0
        await self.job_repo.save()

        for position, (entity_type, entity) in enumerate(entities, start=1):
            if await is_cancelled(job.id):
                await self.job_repo.save()
                raise JobCancelledError(f"Job {job.id} cancelled after {job.processed_entities} entities")
            try:
                await self.index_entity(entity_type, entity)
                job.processed_entities += 1
            except Exception as e:
                job.failed_entities += 1
                logger.warning(f"Indexing {entity_type.value} {getattr(entity, 'id', entity)} failed: {e}")
            if position % PROGRESS_COMMIT_INTERVAL == 0:
                await self.job_repo.save()
        await self.job_repo.save()

    async def search(self, term: str, user: Optional[CurrentUser] = None, limit: int = 50) -> List[SearchIndex]:
        term = (term or "").strip()
        if len(term) < 2:
            raise ValidationError("Search query must be at least 2 characters long")
        return await self.index_repo.search(term, public_only=user is None, limit=limit)
