from typing import List, Optional
from datetime import datetime
from urllib.parse import quote
from fastapi import APIRouter, Body, Depends, File as FastAPIFile, Form, Query, Request, UploadFile, status
from fastapi.responses import Response, StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession
import json

from app.api.deps import get_current_user, get_optional_current_user, require_admin_or_dev
from app.core.database import get_db
from app.schemas.base import MessageResponse, PagedResult
from app.schemas.file import (
    BulkCopyRequest,
    BulkDeleteRequest,
    BulkMoveRequest,
    BulkOperationResult,
    BulkUpdateRequest,
    CopyFileRequest,
    DownloadTokenResponse,
    File,
    FileAccessType,
    FileDiagnostic,
    FilePreview,
    FileSearchParams,
    FileStatistics,
    FileType,
    FileUpdate,
    FileUploadOptions,
    GenerateThumbnailRequest,
    IntegrityResult,
    MoveFileRequest,
    MultipleUploadResult,
    RenameFileRequest,
)
from app.schemas.user import CurrentUser
from app.services.download_token import DownloadTokenService
from app.services.file import FileService
from app.utils.exceptions import ValidationError

router = APIRouter()

NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


def _content_disposition(filename: str, disposition: str = "attachment") -> str:
    return f"{disposition}; filename*=UTF-8''{quote(filename)}"


def _parse_tags(tags: Optional[str]) -> Optional[dict]:
    if not tags:
        return None
    try:
        parsed = json.loads(tags)
    except json.JSONDecodeError:
        raise ValidationError("Tags must be a JSON object") from None
    if not isinstance(parsed, dict):
        raise ValidationError("Tags must be a JSON object")
    return parsed


def _upload_options(
    folder_id: Optional[int] = Form(None, alias="folderId"),
    description: Optional[str] = Form(None),
    alt: Optional[str] = Form(None),
    is_public: bool = Form(False, alias="isPublic"),
    tags: Optional[str] = Form(None),
    generate_thumbnail: bool = Form(True, alias="generateThumbnail"),
    process_immediately: bool = Form(True, alias="processImmediately"),
) -> FileUploadOptions:
    return FileUploadOptions(
        folder_id=folder_id,
        description=description,
        alt=alt,
        is_public=is_public,
        tags=_parse_tags(tags),
        generate_thumbnail=generate_thumbnail,
        process_immediately=process_immediately,
    )


@router.get("/", response_model=PagedResult[File])
async def list_files(
    page_number: int = Query(1, ge=1, alias="pageNumber"),
    page_size: int = Query(20, ge=1, le=100, alias="pageSize"),
    folder_id: Optional[int] = Query(None, alias="folderId"),
    search: Optional[str] = Query(None),
    file_type: Optional[FileType] = Query(None, alias="fileType"),
    is_public: Optional[bool] = Query(None, alias="isPublic"),
    created_from: Optional[datetime] = Query(None, alias="createdFrom"),
    created_to: Optional[datetime] = Query(None, alias="createdTo"),
    min_size: Optional[int] = Query(None, ge=0, alias="minSize"),
    max_size: Optional[int] = Query(None, ge=0, alias="maxSize"),
    sort_by: str = Query("createdAt", alias="sortBy"),
    sort_direction: str = Query("desc", alias="sortDirection"),
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Paged, filtered file listing"""
    params = FileSearchParams(
        search_term=search,
        file_type=file_type,
        folder_id=folder_id,
        is_public=is_public,
        created_from=created_from,
        created_to=created_to,
        min_size=min_size,
        max_size=max_size,
        sort_by=sort_by,
        sort_direction=sort_direction,
        page_number=page_number,
        page_size=page_size,
    )
    items, total = await FileService(db).search_files(params)
    return PagedResult[File](
        items=[File.model_validate(item) for item in items],
        page_number=page_number,
        page_size=page_size,
        total_count=total,
    )


@router.post("/upload", response_model=File, status_code=status.HTTP_201_CREATED)
async def upload_file(
    file: UploadFile = FastAPIFile(...),
    options: FileUploadOptions = Depends(_upload_options),
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Upload a new file"""
    return await FileService(db).upload_file(file, options, current_user.id)


@router.post("/upload/multiple", response_model=MultipleUploadResult)
async def upload_multiple_files(
    files: List[UploadFile] = FastAPIFile(...),
    options: FileUploadOptions = Depends(_upload_options),
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Upload several files, reporting the outcome of each"""
    return await FileService(db).upload_multiple(files, options, current_user.id)


@router.get("/recent", response_model=List[File])
async def get_recent_files(
    count: int = Query(10),
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Most recently uploaded files (count clamped to 1-50)"""
    return await FileService(db).get_recent_files(count)


@router.get("/statistics", response_model=FileStatistics)
async def get_file_statistics(
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Aggregate file statistics"""
    return await FileService(db).get_file_statistics()


@router.get("/folder/{folder_id}", response_model=List[File])
async def get_files_by_folder(
    folder_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Files directly inside a folder"""
    return await FileService(db).get_files_by_folder(folder_id)


@router.get("/download/{token}")
async def download_with_token(
    token: str,
    request: Request,
    db: AsyncSession = Depends(get_db)
):
    """Download a file with a token issued by /{file_id}/download-token"""
    validation = await DownloadTokenService().validate_token(token)
    if not validation.is_valid:
        raise ValidationError("Invalid or expired download token")

    stream, content_type, filename = await FileService(db).get_file_stream(
        validation.file_id,
        access_type=FileAccessType.DOWNLOAD,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
        enforce_visibility=False,
    )
    return StreamingResponse(
        stream,
        media_type=content_type,
        headers={"Content-Disposition": _content_disposition(filename), **NO_CACHE_HEADERS},
    )


@router.post("/move", response_model=File)
async def move_file(
    move_request: MoveFileRequest,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Move a file to another folder (or the root)"""
    return await FileService(db).move_file(move_request.file_id, move_request.new_folder_id, current_user)


@router.post("/copy", response_model=File, status_code=status.HTTP_201_CREATED)
async def copy_file(
    copy_request: CopyFileRequest,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Copy a file into a folder"""
    return await FileService(db).copy_file(
        copy_request.file_id, copy_request.destination_folder_id, copy_request.new_name, current_user
    )


@router.post("/bulk-update", response_model=BulkOperationResult)
async def bulk_update_files(
    bulk_request: BulkUpdateRequest,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Apply the same metadata update to several files"""
    return await FileService(db).bulk_update(bulk_request.file_ids, bulk_request.update, current_user)


@router.post("/bulk-move", response_model=BulkOperationResult)
async def bulk_move_files(
    bulk_request: BulkMoveRequest,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Move several files into one folder"""
    return await FileService(db).bulk_move(bulk_request.file_ids, bulk_request.destination_folder_id, current_user)


@router.post("/bulk-copy", response_model=BulkOperationResult)
async def bulk_copy_files(
    bulk_request: BulkCopyRequest,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Copy several files into one folder"""
    return await FileService(db).bulk_copy(bulk_request.file_ids, bulk_request.destination_folder_id, current_user)


@router.delete("/bulk-delete", response_model=BulkOperationResult)
async def bulk_delete_files(
    bulk_request: BulkDeleteRequest = Body(...),
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Soft-delete several files"""
    return await FileService(db).bulk_delete(bulk_request.file_ids, current_user)


@router.get("/{file_id}", response_model=File)
async def get_file(
    file_id: int,
    current_user: Optional[CurrentUser] = Depends(get_optional_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Get file metadata"""
    return await FileService(db).get_file(file_id, current_user)


@router.get("/{file_id}/download")
async def download_file(
    file_id: int,
    request: Request,
    current_user: Optional[CurrentUser] = Depends(get_optional_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Download file content; anonymous callers only get public files"""
    stream, content_type, filename = await FileService(db).get_file_stream(
        file_id,
        current_user,
        access_type=FileAccessType.DOWNLOAD,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
    return StreamingResponse(
        stream,
        media_type=content_type,
        headers={"Content-Disposition": _content_disposition(filename)},
    )


@router.post("/{file_id}/download-token", response_model=DownloadTokenResponse)
async def create_download_token(
    file_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Issue a short-lived token for anonymous download of a file"""
    await FileService(db).get_file(file_id, current_user)
    token_service = DownloadTokenService()
    token = await token_service.generate_download_token(file_id, current_user.id)
    return DownloadTokenResponse(token=token, expires_in=token_service.expires_in_seconds)


@router.get("/{file_id}/thumbnail")
async def get_thumbnail(
    file_id: int,
    current_user: Optional[CurrentUser] = Depends(get_optional_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Thumbnail image of a file"""
    content, content_type, filename = await FileService(db).get_thumbnail(file_id, current_user)
    return Response(
        content=content,
        media_type=content_type,
        headers={"Content-Disposition": _content_disposition(filename, "inline")},
    )


@router.get("/{file_id}/preview", response_model=FilePreview)
async def get_preview(
    file_id: int,
    current_user: Optional[CurrentUser] = Depends(get_optional_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Preview information for a file"""
    return await FileService(db).get_preview(file_id, current_user)


@router.put("/{file_id}", response_model=File)
async def update_file(
    file_id: int,
    file_update: FileUpdate,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Update file metadata"""
    return await FileService(db).update_file(file_id, file_update, current_user)


@router.delete("/{file_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_file(
    file_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Delete file"""
    await FileService(db).delete_file(file_id, current_user)
    return None


@router.post("/{file_id}/rename", response_model=MessageResponse)
async def rename_file(
    file_id: int,
    rename_request: RenameFileRequest,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Rename a file"""
    if not await FileService(db).rename_file(file_id, rename_request.new_name, current_user):
        raise ValidationError("Invalid file name")
    return MessageResponse(message="File renamed successfully")


@router.post("/{file_id}/generate-thumbnail", response_model=MessageResponse)
async def generate_thumbnail(
    file_id: int,
    thumbnail_request: Optional[GenerateThumbnailRequest] = None,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Regenerate the thumbnail of an image"""
    width = thumbnail_request.width if thumbnail_request else None
    height = thumbnail_request.height if thumbnail_request else None
    if not await FileService(db).generate_thumbnail(file_id, width, height):
        raise ValidationError("Thumbnail can only be generated for valid image files")
    return MessageResponse(message="Thumbnail generated successfully")


@router.post("/{file_id}/verify-integrity", response_model=IntegrityResult)
async def verify_integrity(
    file_id: int,
    current_user: CurrentUser = Depends(require_admin_or_dev),
    db: AsyncSession = Depends(get_db)
):
    """Recompute the content hash and compare it with the stored one"""
    file_service = FileService(db)
    file = await file_service.get_file(file_id, current_user)
    is_valid = await file_service.verify_file_integrity(file_id)
    return IntegrityResult(
        file_id=file.id,
        file_name=file.original_file_name,
        content_type=file.content_type,
        file_size=file.file_size,
        is_valid=is_valid,
        message="File integrity verified" if is_valid else "File integrity check failed",
    )


@router.get("/{file_id}/diagnostic", response_model=FileDiagnostic)
async def get_diagnostic(
    file_id: int,
    current_user: CurrentUser = Depends(require_admin_or_dev),
    db: AsyncSession = Depends(get_db)
):
    """Storage diagnostics for a file"""
    return await FileService(db).get_diagnostic_info(file_id)
