import asyncio
import io

import pytest
from PIL import Image

from app.core.cache_keys import CacheKeys
from app.schemas.file import FileType, FileUpdate, FileUploadOptions, ProcessingStatus
from app.schemas.folder import FolderCreate
from app.services.file import FileService, compute_hash
from app.services.file_validation import generate_stored_file_name, validate_upload
from app.repositories.file import FileRepository
from app.services.folder import FolderService
from app.utils.exceptions import AuthenticationError, AuthorizationError, NotFoundError, ValidationError

from conftest import PDF_BYTES


def png_bytes(width=640, height=480) -> bytes:
    output = io.BytesIO()
    Image.new("RGB", (width, height), color=(200, 30, 30)).save(output, format="PNG")
    return output.getvalue()


async def upload(db, name="a.pdf", content=PDF_BYTES, content_type="application/pdf", **options):
    return await FileService(db).create_file(name, content_type, content, FileUploadOptions(**options), user_id=1)


def test_validate_upload_rejects_bad_input():
    with pytest.raises(ValidationError):
        validate_upload("a.pdf", "application/pdf", b"")
    with pytest.raises(ValidationError):
        validate_upload("a.exe", "application/octet-stream", b"MZ\x90\x00")
    with pytest.raises(ValidationError):
        validate_upload("a.pdf", "application/pdf", b"not a pdf")
    with pytest.raises(ValidationError):
        validate_upload("a.png", "application/pdf", png_bytes())
    assert validate_upload("notes.txt", "text/plain", b"hello") == FileType.DOCUMENT


def test_stored_file_name_format():
    name = generate_stored_file_name("My Report (final).PDF")
    stem, _, suffix = name.rpartition("_")
    assert name.endswith(".pdf")
    assert stem.startswith("My_Report_final_")
    assert len(suffix) == len("0123abcd.pdf")


async def test_upload_sets_hash_and_type(db):
    stored = await upload(db)

    assert stored.id is not None
    assert stored.file_type == FileType.DOCUMENT.value
    assert stored.file_size == len(PDF_BYTES)
    assert stored.hash == compute_hash(PDF_BYTES)
    assert stored.stored_file_name != stored.original_file_name


async def test_identical_content_gets_distinct_records(db):
    first = await upload(db)
    second = await upload(db)

    assert first.id != second.id
    assert first.hash == second.hash
    assert first.stored_file_name != second.stored_file_name


async def test_upload_to_missing_folder_fails(db):
    with pytest.raises(ValidationError):
        await upload(db, folder_id=999)


async def test_image_upload_generates_thumbnail(db, customer):
    stored = await upload(db, name="photo.png", content=png_bytes(), content_type="image/png")
    service = FileService(db)

    assert stored.width == 640 and stored.height == 480
    assert stored.processing_status == ProcessingStatus.COMPLETED.value
    thumbnail, content_type, _ = await service.get_thumbnail(stored.id, customer)
    assert content_type == "image/jpeg"
    with Image.open(io.BytesIO(thumbnail)) as image:
        assert max(image.size) <= 300


async def test_deferred_image_processing(db):
    stored = await upload(db, name="later.png", content=png_bytes(), content_type="image/png",
                          process_immediately=False)
    assert stored.processing_status == ProcessingStatus.PENDING.value

    assert await FileService(db).process_pending_images() == 1
    refreshed = await FileService(db).file_repo.get_by_id(stored.id)
    assert refreshed.is_processed
    assert refreshed.width == 640


async def test_hashing_runs_in_a_worker_thread(db, mocker):
    to_thread = mocker.spy(asyncio, "to_thread")

    stored = await upload(db)
    assert await FileService(db).verify_file_integrity(stored.id) is True

    hashed = [c for c in to_thread.call_args_list if c.args[0] is compute_hash]
    assert len(hashed) == 2


async def test_integrity_check_detects_corruption(db):
    stored = await upload(db)
    service = FileService(db)
    assert await service.verify_file_integrity(stored.id) is True

    db_file = await service.file_repo.get_by_id(stored.id, with_content=True)
    db_file.file_content = PDF_BYTES + b"tampered"
    await service.file_repo.save()

    assert await service.verify_file_integrity(stored.id) is False
    diagnostic = await service.get_diagnostic_info(stored.id)
    assert diagnostic.hash_matches is False
    assert diagnostic.size_mismatch is True


async def test_generate_thumbnail_on_non_image_returns_false(db):
    stored = await upload(db)
    assert await FileService(db).generate_thumbnail(stored.id) is False


async def test_file_stream_counts_downloads(db):
    stored = await upload(db, is_public=True)
    service = FileService(db)

    stream, content_type, name = await service.get_file_stream(stored.id, ip_address="127.0.0.1")

    assert stream.read() == PDF_BYTES
    assert content_type == "application/pdf"
    assert name == "a.pdf"
    refreshed = await service.file_repo.get_by_id(stored.id)
    assert refreshed.download_count == 1
    assert len(await service.file_repo.get_accesses(stored.id)) == 1


async def test_private_file_requires_authentication(db, customer):
    stored = await upload(db, is_public=False)
    service = FileService(db)

    with pytest.raises(AuthenticationError):
        await service.get_file_stream(stored.id)
    stream, _, _ = await service.get_file_stream(stored.id, customer)
    assert stream.read() == PDF_BYTES


async def test_only_owner_or_privileged_can_modify(db, admin):
    from app.schemas.user import CurrentUser

    stored = await upload(db)
    service = FileService(db)
    stranger = CurrentUser(id=99)

    with pytest.raises(AuthorizationError):
        await service.update_file(stored.id, FileUpdate(description="nope"), stranger)
    updated = await service.update_file(stored.id, FileUpdate(description="ok"), admin)
    assert updated.description == "ok"


async def test_get_file_is_cached_and_invalidated(db, cache, customer):
    stored = await upload(db, is_public=True)
    service = FileService(db)

    await service.get_file(stored.id)
    assert await cache.exists(CacheKeys.file_by_id(stored.id))

    await service.update_file(stored.id, FileUpdate(description="changed"), customer)
    assert not await cache.exists(CacheKeys.file_by_id(stored.id))
    assert (await service.get_file(stored.id)).description == "changed"


async def test_rename_file_keeps_extension(db, customer):
    stored = await upload(db)
    service = FileService(db)

    assert await service.rename_file(stored.id, "renamed", customer) is True
    assert (await service.file_repo.get_by_id(stored.id)).original_file_name == "renamed.pdf"
    assert await service.rename_file(stored.id, "bad|name", customer) is False


async def test_move_and_copy_file(db, customer):
    folder = await FolderService(db).create_folder(FolderCreate(name="Target"), user_id=1)
    stored = await upload(db)
    service = FileService(db)

    moved = await service.move_file(stored.id, folder.id, customer)
    assert moved.folder_id == folder.id

    copy = await service.copy_file(stored.id, None, None, customer)
    assert copy.id != stored.id
    assert copy.original_file_name == "Copy of a.pdf"
    assert copy.hash == stored.hash
    with pytest.raises(ValidationError):
        await service.move_file(stored.id, 999, customer)


async def test_bulk_delete_reports_per_item_results(db, customer):
    files = [await upload(db) for _ in range(3)]
    ids = [f.id for f in files] + [999]

    result = await FileService(db).bulk_delete(ids, customer)

    assert result.total_requested == 4
    assert result.success_count == 3
    assert result.failure_count == 1
    assert result.errors[0].entity_id == 999
    assert result.errors[0].error_code == "NotFoundError"
    assert result.is_partial_success
    with pytest.raises(NotFoundError):
        await FileService(db).get_file(files[0].id)


async def test_bulk_delete_reports_failed_batch_commit(db, customer, mocker):
    files = [await upload(db) for _ in range(2)]
    ids = [f.id for f in files]
    mocker.patch.object(FileRepository, "save", side_effect=RuntimeError("db down"))

    result = await FileService(db).bulk_delete(ids + [999], customer)

    assert result.success_count == 0
    assert result.failure_count == 3
    assert result.success_count + result.failure_count == result.total_requested
    assert {e.entity_id: e.error_code for e in result.errors} == {
        999: "NotFoundError", ids[0]: "InternalError", ids[1]: "InternalError",
    }
    assert result.is_complete_failure
    assert (await FileService(db).get_file(ids[0], customer)).id == ids[0]


async def test_bulk_move_collects_failures(db, customer):
    from app.schemas.user import CurrentUser

    folder = await FolderService(db).create_folder(FolderCreate(name="Dest"), user_id=1)
    mine = await upload(db)
    theirs = await FileService(db).create_file(
        "b.pdf", "application/pdf", PDF_BYTES, FileUploadOptions(), user_id=7
    )

    result = await FileService(db).bulk_move([mine.id, theirs.id], folder.id, customer)

    assert result.successful_ids == [mine.id]
    assert result.errors[0].entity_id == theirs.id
    assert result.errors[0].error_code == "AuthorizationError"
    assert not result.is_complete_success


async def test_recent_files_and_statistics(db):
    for name in ("one.pdf", "two.pdf"):
        await upload(db, name=name)
    service = FileService(db)

    recent = await service.get_recent_files(1)
    assert len(recent) == 1
    assert len(await service.get_recent_files(500)) == 2

    stats = await service.get_file_statistics()
    assert stats.total_files == 2
    assert stats.total_size == 2 * len(PDF_BYTES)
    assert stats.files_by_type == {"Document": 2}


async def test_bulk_update_reports_per_item_results(db, customer):
    mine = await upload(db)
    theirs = await FileService(db).create_file(
        "b.pdf", "application/pdf", PDF_BYTES, FileUploadOptions(), user_id=7
    )
    service = FileService(db)

    result = await service.bulk_update([mine.id, theirs.id, 999], FileUpdate(description="bulk"), customer)

    assert result.successful_ids == [mine.id]
    assert result.created_ids == []
    assert [(e.entity_id, e.error_code) for e in result.errors] == [
        (theirs.id, "AuthorizationError"), (999, "NotFoundError"),
    ]
    assert (await service.file_repo.get_by_id(mine.id)).description == "bulk"
    assert (await service.file_repo.get_by_id(theirs.id)).description is None


async def test_bulk_copy_returns_created_ids(db, customer):
    folder = await FolderService(db).create_folder(FolderCreate(name="Copies"), user_id=1)
    sources = [await upload(db, name=name) for name in ("one.pdf", "two.pdf")]
    source_ids = [f.id for f in sources]
    service = FileService(db)

    result = await service.bulk_copy(source_ids + [999], folder.id, customer)

    assert result.successful_ids == source_ids
    assert result.failure_count == 1
    assert result.errors[0].entity_id == 999
    assert len(result.created_ids) == 2
    assert not set(result.created_ids) & set(source_ids)
    copies = await service.get_files_by_folder(folder.id)
    assert sorted(f.id for f in copies) == sorted(result.created_ids)
    assert sorted(f.original_file_name for f in copies) == ["one.pdf", "two.pdf"]
