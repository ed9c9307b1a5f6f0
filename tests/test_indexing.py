from datetime import timedelta

import pytest

from app.core.database import utcnow
from app.core.events import EventBus
from app.models.indexing import IndexingJob
from app.schemas.file import FileUploadOptions
from app.schemas.folder import FolderCreate
from app.schemas.indexing import IndexingJobStatus, IndexingJobType, SearchEntityType
from app.services import job_worker
from app.services.file import FileService
from app.services.folder import FolderService
from app.services.indexing import IndexingService
from app.utils.exceptions import InvalidOperationError, ValidationError

from conftest import PDF_BYTES


@pytest.fixture(autouse=True)
def reset_cancel_cache():
    job_worker._cancelled_jobs.clear()
    job_worker._cancel_check_times.clear()
    yield
    job_worker._cancelled_jobs.clear()
    job_worker._cancel_check_times.clear()


async def seed_content(db):
    folder = await FolderService(db).create_folder(FolderCreate(name="Reports", description="Quarterly"), user_id=1)
    await FileService(db).create_file(
        "summary.pdf", "application/pdf", PDF_BYTES,
        FileUploadOptions(folder_id=folder.id, description="Annual summary", is_public=True), user_id=1,
    )
    return folder


async def load_job(session_factory, job_id) -> IndexingJob:
    async with session_factory() as session:
        return await session.get(IndexingJob, job_id)


async def test_trigger_only_enqueues(db):
    job = await IndexingService(db).trigger_full_index(user_id=1)

    assert job.status == IndexingJobStatus.PENDING
    assert job.job_type == IndexingJobType.FULL
    assert job.started_at is None


async def test_entity_trigger_requires_ids(db):
    with pytest.raises(ValidationError):
        await IndexingService(db).trigger_entity_index(SearchEntityType.FILE, [])


async def test_worker_runs_full_index(db, session_factory):
    await seed_content(db)
    job = await IndexingService(db).trigger_full_index()

    assert await job_worker.process_next_job(session_factory) == job.id
    assert await job_worker.process_next_job(session_factory) is None

    finished = await load_job(session_factory, job.id)
    assert finished.status == IndexingJobStatus.COMPLETED
    assert finished.total_entities == 2
    assert finished.processed_entities == 2
    assert finished.started_at is not None and finished.completed_at is not None

    async with session_factory() as session:
        service = IndexingService(session)
        assert [r.title for r in await service.search("annual")] == ["summary.pdf"]
        assert [r.title for r in await service.search("Reports")] == ["Reports"]
        with pytest.raises(ValidationError):
            await service.search("a")


async def test_entity_index_drops_deleted_entities(db, session_factory, customer):
    await seed_content(db)
    stored = (await FileService(db).get_recent_files(1))[0]
    await IndexingService(db).trigger_full_index()
    await job_worker.process_next_job(session_factory)

    await FileService(db).delete_file(stored.id, customer)
    await IndexingService(db).trigger_entity_index(SearchEntityType.FILE, [stored.id])
    await job_worker.process_next_job(session_factory)

    async with session_factory() as session:
        assert await IndexingService(session).search("annual") == []


async def test_running_job_stops_when_cancelled(db, session_factory, mocker):
    await seed_content(db)
    job = await IndexingService(db).trigger_full_index()
    job_worker.mark_job_cancelled(job.id)

    index_entity = mocker.spy(IndexingService, "index_entity")
    await job_worker.process_next_job(session_factory)

    finished = await load_job(session_factory, job.id)
    assert finished.status == IndexingJobStatus.CANCELLED
    assert finished.processed_entities == 0
    assert index_entity.call_count == 0
    assert str(job.id) not in job_worker._cancelled_jobs


async def test_failed_job_is_marked_failed(db, session_factory, mocker):
    job = await IndexingService(db).trigger_full_index()
    mocker.patch.object(IndexingService, "_collect_entities", side_effect=RuntimeError("index store down"))

    await job_worker.process_next_job(session_factory)

    finished = await load_job(session_factory, job.id)
    assert finished.status == IndexingJobStatus.FAILED
    assert "index store down" in finished.error_message


async def test_cancel_and_retry_state_rules(db, session_factory):
    service = IndexingService(db)
    job = await service.trigger_full_index()

    cancelled = await service.cancel_job(job.id)
    assert cancelled.status == IndexingJobStatus.CANCELLED
    assert str(job.id) in job_worker._cancelled_jobs
    with pytest.raises(InvalidOperationError):
        await service.cancel_job(job.id)

    retry = await service.retry_job(job.id, user_id=2)
    assert retry.id != job.id
    assert retry.status == IndexingJobStatus.PENDING
    assert retry.job_metadata["retryOf"] == job.id
    with pytest.raises(InvalidOperationError):
        await service.retry_job(retry.id)


async def test_completed_job_cannot_be_cancelled(db, session_factory):
    job = await IndexingService(db).trigger_full_index()
    await job_worker.process_next_job(session_factory)

    async with session_factory() as session:
        with pytest.raises(InvalidOperationError):
            await IndexingService(session).cancel_job(job.id)


async def test_cleanup_removes_only_old_finished_jobs(db):
    old = utcnow() - timedelta(days=45)
    db.add_all([
        IndexingJob(job_type="Full", status="Completed", created_at=old),
        IndexingJob(job_type="Full", status="Pending", created_at=old),
        IndexingJob(job_type="Full", status="Failed", created_at=utcnow()),
    ])
    await db.commit()
    service = IndexingService(db)

    assert await service.cleanup_old_jobs(30) == 1
    with pytest.raises(ValidationError):
        await service.cleanup_old_jobs(0)
    _, total = await service.get_jobs(1, 10)
    assert total == 2


async def test_statistics(db, session_factory):
    await IndexingService(db).trigger_full_index()
    await job_worker.process_next_job(session_factory)
    await IndexingService(db).trigger_incremental_index()

    async with session_factory() as session:
        stats = await IndexingService(session).get_statistics()

    assert stats.total_jobs == 2
    assert stats.completed_jobs == 1
    assert stats.pending_jobs == 1
    assert stats.jobs_last_24_hours == 2
    assert stats.last_full_index is not None
    assert stats.job_type_breakdown == {"Full": 1, "Incremental": 1}


async def test_recover_stale_jobs(db, session_factory):
    db.add(IndexingJob(job_type="Full", status="Running", started_at=utcnow() - timedelta(hours=2)))
    db.add(IndexingJob(job_type="Full", status="Running", started_at=utcnow()))
    await db.commit()

    assert await job_worker.recover_stale_jobs(session_factory, stale_minutes=15) == 1


async def test_mutation_events_enqueue_entity_jobs(db, session_factory):
    bus = EventBus()
    job_worker.register_indexing_subscribers(bus, session_factory)
    folder = await FolderService(db, bus=bus).create_folder(FolderCreate(name="Indexed"), user_id=1)

    async with session_factory() as session:
        jobs = await IndexingService(session).get_recent_jobs()

    assert len(jobs) == 1
    assert jobs[0].job_type == IndexingJobType.ENTITY_SPECIFIC
    assert jobs[0].job_metadata == {"entityType": "Folder", "entityIds": [folder.id], "triggeredBy": None}
