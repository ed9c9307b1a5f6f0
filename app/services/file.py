from typing import Callable, Iterable, List, Optional, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from fastapi import UploadFile
import asyncio
import base64
import hashlib
import io
import logging
import os

from app.core.cache_keys import CacheKeys
from app.core.config import settings
from app.core.database import utcnow
from app.core.events import DomainEvent, EventBus, event_bus
from app.core.redis import RedisClient, redis_client
from app.models.file import FileEntity
from app.repositories.file import FileRepository
from app.repositories.folder import FolderRepository
from app.schemas.file import (
    BulkOperationError,
    BulkOperationResult,
    File as FileSchema,
    FileAccessType,
    FileDiagnostic,
    FilePreview,
    FileSearchParams,
    FileStatistics,
    FileType,
    FileUpdate,
    FileUploadOptions,
    MultipleUploadResult,
    ProcessingStatus,
    UploadResult,
)
from app.schemas.user import CurrentUser
from app.services.file_validation import (
    generate_stored_file_name,
    get_extension,
    validate_file_name,
    validate_upload,
)
from app.services.image_processing import ImageProcessingService, image_processor
from app.utils.exceptions import (
    AuthenticationError,
    AuthorizationError,
    ContentException,
    FileOperationError,
    NotFoundError,
    ValidationError,
)
from app.utils.formatting import format_file_size

logger = logging.getLogger(__name__)

THUMBNAIL_CONTENT_TYPE = "image/jpeg"
PREVIEWABLE_CONTENT_TYPES = ("application/pdf", "text/", "image/", "video/", "audio/")
RECENT_FILES_CACHE_SIZE = 50


def compute_hash(content: bytes) -> str:
    """Base64 encoded SHA-256 of the content"""
    return base64.b64encode(hashlib.sha256(content or b"").digest()).decode("ascii")


def clone_file_entity(source: FileEntity, folder_id: Optional[int], name: str,
                      user_id: Optional[int] = None) -> FileEntity:
    """Copy of a file record (content loaded) placed in another folder"""
    return FileEntity(
        original_file_name=name,
        stored_file_name=generate_stored_file_name(name),
        content_type=source.content_type,
        file_extension=source.file_extension,
        file_type=source.file_type,
        file_size=source.file_size,
        file_content=source.file_content,
        thumbnail_content=source.thumbnail_content,
        hash=source.hash,
        description=source.description,
        alt=source.alt,
        tags=dict(source.tags) if source.tags else None,
        width=source.width,
        height=source.height,
        duration=source.duration,
        folder_id=folder_id,
        is_public=source.is_public,
        is_processed=source.is_processed,
        processing_status=source.processing_status,
        created_by_user_id=user_id,
        updated_by_user_id=user_id,
    )


class FileService:
    def __init__(
        self,
        db: AsyncSession,
        cache: Optional[RedisClient] = None,
        bus: Optional[EventBus] = None,
        images: Optional[ImageProcessingService] = None,
    ):
        self.file_repo = FileRepository(db)
        self.folder_repo = FolderRepository(db)
        self.redis_client = cache or redis_client
        self.event_bus = bus or event_bus
        self.images = images or image_processor

    async def _publish(self, action: str, file_id: Optional[int], folder_ids: Iterable[Optional[int]] = ()) -> None:
        await self.event_bus.publish(
            DomainEvent("file", action, file_id, {"folder_ids": list(dict.fromkeys(folder_ids))})
        )

    async def _get_or_404(self, file_id: int, with_content: bool = False) -> FileEntity:
        db_file = await self.file_repo.get_by_id(file_id, with_content=with_content)
        if not db_file:
            raise NotFoundError(f"File with ID {file_id} not found")
        return db_file

    async def _ensure_folder(self, folder_id: Optional[int]) -> None:
        if folder_id is not None and not await self.folder_repo.get_by_id(folder_id):
            raise ValidationError(f"Folder with ID {folder_id} not found")

    def _ensure_can_read(self, is_public: bool, user: Optional[CurrentUser]) -> None:
        if not is_public and user is None:
            raise AuthenticationError("Authentication is required to access this file")

    def _ensure_can_modify(self, db_file: FileEntity, user: Optional[CurrentUser]) -> None:
        if user is None:
            raise AuthenticationError("Authentication is required to modify files")
        if user.is_privileged:
            return
        if db_file.created_by_user_id is not None and db_file.created_by_user_id != user.id:
            raise AuthorizationError("You do not have permission to modify this file")

    async def _process_image(self, db_file: FileEntity, content: bytes, generate_thumbnail: bool = True) -> None:
        """Fill in dimensions and thumbnail of an image record"""
        dimensions = await asyncio.to_thread(self.images.get_dimensions, content)
        if dimensions:
            db_file.width, db_file.height = dimensions
        if generate_thumbnail and dimensions:
            db_file.thumbnail_content = await asyncio.to_thread(self.images.generate_thumbnail, content)
        db_file.is_processed = True
        db_file.processing_status = (ProcessingStatus.COMPLETED if dimensions else ProcessingStatus.FAILED).value

    async def upload_file(self, file: UploadFile, options: FileUploadOptions,
                          user_id: Optional[int] = None) -> FileEntity:
        """Validate an uploaded file and store it inline"""
        content = await file.read()
        return await self.create_file(file.filename, file.content_type, content, options, user_id)

    async def create_file(
        self,
        filename: str,
        content_type: Optional[str],
        content: bytes,
        options: FileUploadOptions,
        user_id: Optional[int] = None,
    ) -> FileEntity:
        file_type = validate_upload(filename, content_type, content)
        await self._ensure_folder(options.folder_id)

        name = os.path.basename(filename)
        db_file = FileEntity(
            original_file_name=name,
            stored_file_name=generate_stored_file_name(name),
            content_type=content_type or "application/octet-stream",
            file_extension=get_extension(name),
            file_type=file_type.value,
            file_size=len(content),
            file_content=content,
            hash=await asyncio.to_thread(compute_hash, content),
            description=options.description,
            alt=options.alt,
            tags=options.tags,
            folder_id=options.folder_id,
            is_public=options.is_public,
            created_by_user_id=user_id,
            updated_by_user_id=user_id,
        )

        if file_type == FileType.IMAGE:
            if options.process_immediately:
                await self._process_image(db_file, content, options.generate_thumbnail)
            else:
                db_file.is_processed = False
                db_file.processing_status = ProcessingStatus.PENDING.value
        else:
            db_file.is_processed = True
            db_file.processing_status = ProcessingStatus.COMPLETED.value

        try:
            await self.file_repo.create(db_file)
        except Exception as e:
            await self.file_repo.rollback()
            logger.error(f"Storing upload '{name}' failed: {e}")
            raise FileOperationError("Failed to store file") from e

        logger.info(f"Uploaded file {db_file.id} '{name}' ({db_file.file_size} bytes)")
        await self._publish("created", db_file.id, [db_file.folder_id])
        return db_file

    async def upload_multiple(self, files: List[UploadFile], options: FileUploadOptions,
                              user_id: Optional[int] = None) -> MultipleUploadResult:
        if not files:
            raise ValidationError("No files provided")
        if len(files) > settings.MAX_FILES_PER_UPLOAD:
            raise ValidationError(f"At most {settings.MAX_FILES_PER_UPLOAD} files can be uploaded at once")

        results = []
        for upload in files:
            try:
                db_file = await self.upload_file(upload, options, user_id)
                results.append(UploadResult(file_name=upload.filename, success=True,
                                            file=FileSchema.model_validate(db_file)))
            except ContentException as e:
                logger.warning(f"Upload of '{upload.filename}' failed: {e}")
                results.append(UploadResult(file_name=upload.filename or "", success=False, error_message=str(e)))

        succeeded = sum(1 for r in results if r.success)
        return MultipleUploadResult(
            total_requested=len(files),
            success_count=succeeded,
            failure_count=len(files) - succeeded,
            results=results,
        )

    async def get_file(self, file_id: int, user: Optional[CurrentUser] = None) -> FileSchema:
        """File metadata, served from cache when possible"""
        cache_key = CacheKeys.file_by_id(file_id)
        cached = await self.redis_client.get_json(cache_key)
        if cached:
            file = FileSchema.model_validate(cached)
        else:
            file = FileSchema.model_validate(await self._get_or_404(file_id))
            await self.redis_client.set_json(cache_key, file.model_dump(mode="json"))
        self._ensure_can_read(file.is_public, user)
        return file

    async def get_file_stream(
        self,
        file_id: int,
        user: Optional[CurrentUser] = None,
        access_type: FileAccessType = FileAccessType.DOWNLOAD,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        enforce_visibility: bool = True,
    ) -> Tuple[io.BytesIO, str, str]:
        """(stream, content type, file name) of a file; counts the download"""
        db_file = await self._get_or_404(file_id, with_content=True)
        if enforce_visibility:
            self._ensure_can_read(db_file.is_public, user)
        if not db_file.file_content:
            logger.error(f"File {file_id} has no stored content")
            raise NotFoundError("File content not found")

        content = db_file.file_content
        if access_type == FileAccessType.DOWNLOAD:
            db_file.download_count = (db_file.download_count or 0) + 1
        db_file.last_accessed_at = utcnow()
        await self.file_repo.record_access(
            db_file.id, access_type.value, user.id if user else None, ip_address, user_agent
        )
        await self.file_repo.save()
        await self._publish("accessed", db_file.id)
        return io.BytesIO(content), db_file.content_type, db_file.original_file_name

    async def get_thumbnail(self, file_id: int, user: Optional[CurrentUser] = None) -> Tuple[bytes, str, str]:
        db_file = await self._get_or_404(file_id, with_content=True)
        self._ensure_can_read(db_file.is_public, user)
        if not db_file.thumbnail_content:
            raise NotFoundError("Thumbnail not found")
        return db_file.thumbnail_content, THUMBNAIL_CONTENT_TYPE, f"thumb_{db_file.original_file_name}"

    def can_preview(self, content_type: str) -> bool:
        return (content_type or "").lower().startswith(PREVIEWABLE_CONTENT_TYPES)

    async def get_preview(self, file_id: int, user: Optional[CurrentUser] = None) -> FilePreview:
        db_file = await self._get_or_404(file_id)
        self._ensure_can_read(db_file.is_public, user)
        can_preview = self.can_preview(db_file.content_type)
        await self.file_repo.record_access(db_file.id, FileAccessType.PREVIEW.value, user.id if user else None)
        await self.file_repo.save()
        return FilePreview(
            file_id=db_file.id,
            original_file_name=db_file.original_file_name,
            content_type=db_file.content_type,
            file_type=db_file.file_type,
            file_size=db_file.file_size,
            can_preview=can_preview,
            preview_url=f"/api/v1/file/{db_file.id}/download" if can_preview else None,
            thumbnail_url=f"/api/v1/file/{db_file.id}/thumbnail" if db_file.file_type == FileType.IMAGE else None,
            width=db_file.width,
            height=db_file.height,
        )

    async def update_file(self, file_id: int, file_data: FileUpdate, user: Optional[CurrentUser]) -> FileEntity:
        """Update file metadata"""
        db_file = await self._get_or_404(file_id)
        self._ensure_can_modify(db_file, user)

        update_data = file_data.model_dump(exclude_unset=True)
        if update_data.get("is_public", False) is None:
            del update_data["is_public"]
        old_folder_id = db_file.folder_id
        if "folder_id" in update_data:
            await self._ensure_folder(update_data["folder_id"])
        for field, value in update_data.items():
            setattr(db_file, field, value)
        db_file.updated_by_user_id = user.id

        await self.file_repo.save()
        await self._publish("updated", db_file.id, [old_folder_id, db_file.folder_id])
        return db_file

    async def delete_file(self, file_id: int, user: Optional[CurrentUser]) -> bool:
        """Soft-delete a file"""
        db_file = await self._get_or_404(file_id)
        self._ensure_can_modify(db_file, user)
        self.file_repo.soft_delete(db_file, user.id)
        await self.file_repo.save()
        logger.info(f"Deleted file {file_id}")
        await self._publish("deleted", db_file.id, [db_file.folder_id])
        return True

    async def move_file(self, file_id: int, new_folder_id: Optional[int], user: Optional[CurrentUser]) -> FileEntity:
        db_file = await self._get_or_404(file_id)
        self._ensure_can_modify(db_file, user)
        await self._ensure_folder(new_folder_id)

        old_folder_id = db_file.folder_id
        db_file.folder_id = new_folder_id
        db_file.updated_by_user_id = user.id
        await self.file_repo.save()
        logger.info(f"Moved file {file_id} from folder {old_folder_id} to {new_folder_id}")
        await self._publish("moved", db_file.id, [old_folder_id, new_folder_id])
        return db_file

    async def copy_file(self, file_id: int, destination_folder_id: Optional[int],
                        new_name: Optional[str], user: Optional[CurrentUser]) -> FileEntity:
        source = await self._get_or_404(file_id, with_content=True)
        self._ensure_can_read(source.is_public, user)
        await self._ensure_folder(destination_folder_id)

        name = (new_name or f"Copy of {source.original_file_name}").strip()
        if not validate_file_name(name):
            raise ValidationError("Invalid file name")

        copy = clone_file_entity(source, destination_folder_id, name, user.id if user else None)
        await self.file_repo.create(copy)
        logger.info(f"Copied file {file_id} to {copy.id}")
        await self._publish("created", copy.id, [destination_folder_id])
        return copy

    async def rename_file(self, file_id: int, new_name: str, user: Optional[CurrentUser]) -> bool:
        """Rename a file; False when the new name is invalid"""
        db_file = await self._get_or_404(file_id)
        self._ensure_can_modify(db_file, user)
        name = (new_name or "").strip()
        if not validate_file_name(name):
            return False
        if not get_extension(name) and db_file.file_extension:
            name = f"{name}{db_file.file_extension}"
        db_file.original_file_name = name
        db_file.updated_by_user_id = user.id
        await self.file_repo.save()
        await self._publish("renamed", db_file.id, [db_file.folder_id])
        return True

    async def _run_bulk(self, file_ids: List[int], operation: Callable,
                        creates: bool = False) -> BulkOperationResult:
        """Apply an operation per id, collecting per-item outcomes"""
        result = BulkOperationResult(total_requested=len(file_ids))
        for file_id in file_ids:
            try:
                outcome = await operation(file_id)
                result.success_count += 1
                result.successful_ids.append(file_id)
                if creates:
                    result.created_ids.append(outcome.id)
            except ContentException as e:
                result.failure_count += 1
                result.errors.append(
                    BulkOperationError(entity_id=file_id, error_message=str(e), error_code=type(e).__name__)
                )
                logger.warning(f"Bulk operation failed for file {file_id}: {e}")
            except Exception as e:
                await self.file_repo.rollback()
                result.failure_count += 1
                result.errors.append(
                    BulkOperationError(entity_id=file_id, error_message="An internal error occurred",
                                       error_code="InternalError")
                )
                logger.exception(f"Bulk operation crashed for file {file_id}: {e}")
        result.processed_at = utcnow()
        return result

    async def bulk_update(self, file_ids: List[int], file_data: FileUpdate,
                          user: Optional[CurrentUser]) -> BulkOperationResult:
        return await self._run_bulk(file_ids, lambda file_id: self.update_file(file_id, file_data, user))

    async def bulk_move(self, file_ids: List[int], destination_folder_id: Optional[int],
                        user: Optional[CurrentUser]) -> BulkOperationResult:
        await self._ensure_folder(destination_folder_id)
        return await self._run_bulk(file_ids, lambda file_id: self.move_file(file_id, destination_folder_id, user))

    async def bulk_copy(self, file_ids: List[int], destination_folder_id: Optional[int],
                        user: Optional[CurrentUser]) -> BulkOperationResult:
        await self._ensure_folder(destination_folder_id)

        async def copy_one(file_id: int) -> FileEntity:
            source = await self._get_or_404(file_id)
            return await self.copy_file(file_id, destination_folder_id, source.original_file_name, user)

        return await self._run_bulk(file_ids, copy_one, creates=True)

    async def bulk_delete(self, file_ids: List[int], user: Optional[CurrentUser]) -> BulkOperationResult:
        """Soft-delete files in batches, one commit per batch"""
        result = BulkOperationResult(total_requested=len(file_ids))
        batch_size = max(1, settings.BULK_DELETE_BATCH_SIZE)
        for start in range(0, len(file_ids), batch_size):
            batch = file_ids[start:start + batch_size]
            deleted = []
            for file_id in batch:
                try:
                    db_file = await self._get_or_404(file_id)
                    self._ensure_can_modify(db_file, user)
                    self.file_repo.soft_delete(db_file, user.id)
                    deleted.append((db_file.id, db_file.folder_id))
                except ContentException as e:
                    result.failure_count += 1
                    result.errors.append(
                        BulkOperationError(entity_id=file_id, error_message=str(e), error_code=type(e).__name__)
                    )
            try:
                await self.file_repo.save()
            except Exception as e:
                await self.file_repo.rollback()
                logger.exception(f"Bulk delete batch starting at {start} failed: {e}")
                for file_id, _ in deleted:
                    result.failure_count += 1
                    result.errors.append(
                        BulkOperationError(entity_id=file_id, error_message="An internal error occurred",
                                           error_code="InternalError")
                    )
                continue
            for file_id, folder_id in deleted:
                result.success_count += 1
                result.successful_ids.append(file_id)
                await self._publish("deleted", file_id, [folder_id])
        result.processed_at = utcnow()
        logger.info(f"Bulk delete: {result.success_count}/{result.total_requested} files deleted")
        return result

    async def verify_file_integrity(self, file_id: int) -> bool:
        """True iff the stored content still hashes to the stored Hash"""
        db_file = await self.file_repo.get_by_id(file_id, with_content=True)
        if not db_file or not db_file.file_content or not db_file.hash:
            return False
        is_valid = await asyncio.to_thread(compute_hash, db_file.file_content) == db_file.hash
        if not is_valid:
            logger.warning(f"Integrity check failed for file {file_id}")
        return is_valid

    async def generate_thumbnail(self, file_id: int, width: Optional[int] = None,
                                 height: Optional[int] = None) -> bool:
        """(Re)build the thumbnail of an image; False for anything else"""
        db_file = await self._get_or_404(file_id, with_content=True)
        if db_file.file_type != FileType.IMAGE or not db_file.file_content:
            return False
        thumbnail = await asyncio.to_thread(self.images.generate_thumbnail, db_file.file_content, width, height)
        if not thumbnail:
            return False
        db_file.thumbnail_content = thumbnail
        await self.file_repo.save()
        await self._publish("updated", db_file.id, [db_file.folder_id])
        return True

    async def process_pending_images(self, limit: int = 20) -> int:
        """Background pass over images uploaded without immediate processing"""
        processed = 0
        for pending in await self.file_repo.get_pending_images(limit):
            db_file = await self._get_or_404(pending.id, with_content=True)
            db_file.processing_status = ProcessingStatus.PROCESSING.value
            await self._process_image(db_file, db_file.file_content or b"")
            await self.file_repo.save()
            await self._publish("updated", db_file.id, [db_file.folder_id])
            processed += 1
        return processed

    async def get_diagnostic_info(self, file_id: int) -> FileDiagnostic:
        db_file = await self.file_repo.get_by_id(file_id, with_content=True, include_deleted=True)
        if not db_file:
            raise NotFoundError(f"File with ID {file_id} not found")
        content = db_file.file_content or b""
        thumbnail = db_file.thumbnail_content or b""
        hash_matches = bool(content) and await asyncio.to_thread(compute_hash, content) == db_file.hash
        image_validation = None
        if db_file.file_type == FileType.IMAGE:
            image_validation = await asyncio.to_thread(self.images.validate_image, content)
        return FileDiagnostic(
            file_id=db_file.id,
            original_file_name=db_file.original_file_name,
            stored_file_name=db_file.stored_file_name,
            content_type=db_file.content_type,
            declared_file_size=db_file.file_size,
            actual_content_length=len(content),
            size_mismatch=len(content) != db_file.file_size,
            has_content=bool(content),
            has_thumbnail=bool(thumbnail),
            thumbnail_size=len(thumbnail),
            hash=db_file.hash,
            hash_matches=hash_matches,
            file_type=db_file.file_type,
            width=db_file.width,
            height=db_file.height,
            is_processed=db_file.is_processed,
            processing_status=db_file.processing_status,
            is_deleted=db_file.is_deleted,
            image_validation=image_validation,
        )

    async def search_files(self, params: FileSearchParams) -> Tuple[List[FileEntity], int]:
        return await self.file_repo.search(params)

    async def get_files_by_folder(self, folder_id: Optional[int]) -> List[FileEntity]:
        await self._ensure_folder(folder_id)
        return await self.file_repo.get_by_folder(folder_id)

    async def get_recent_files(self, count: int = 10) -> List[FileSchema]:
        count = max(1, min(count, RECENT_FILES_CACHE_SIZE))
        cached = await self.redis_client.get_json(CacheKeys.FILES_RECENT)
        if cached is None:
            recent = [FileSchema.model_validate(f) for f in await self.file_repo.get_recent(RECENT_FILES_CACHE_SIZE)]
            await self.redis_client.set_json(CacheKeys.FILES_RECENT, [f.model_dump(mode="json") for f in recent])
            return recent[:count]
        return [FileSchema.model_validate(item) for item in cached[:count]]

    async def get_file_statistics(self) -> FileStatistics:
        cached = await self.redis_client.get_json(CacheKeys.FILE_STATISTICS)
        if cached:
            return FileStatistics.model_validate(cached)
        stats = await self.file_repo.statistics()
        total_files = stats["total_files"]
        statistics = FileStatistics(
            total_files=total_files,
            total_size=stats["total_size"],
            total_size_formatted=format_file_size(stats["total_size"]),
            total_downloads=stats["total_downloads"],
            average_file_size=round(stats["total_size"] / total_files, 2) if total_files else 0.0,
            files_by_type=stats["files_by_type"],
            last_upload=stats["last_upload"],
        )
        await self.redis_client.set_json(CacheKeys.FILE_STATISTICS, statistics.model_dump(mode="json"))
        return statistics
