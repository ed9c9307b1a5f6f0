from typing import Any, Dict, List, Optional
from datetime import datetime
from enum import Enum
from pydantic import Field, computed_field

from app.schemas.base import PascalModel
from app.utils.formatting import format_file_size


class FileType(str, Enum):
    DOCUMENT = "Document"
    IMAGE = "Image"
    VIDEO = "Video"
    AUDIO = "Audio"
    ARCHIVE = "Archive"
    OTHER = "Other"


class ProcessingStatus(str, Enum):
    PENDING = "Pending"
    PROCESSING = "Processing"
    COMPLETED = "Completed"
    FAILED = "Failed"


class FileAccessType(str, Enum):
    VIEW = "View"
    DOWNLOAD = "Download"
    PREVIEW = "Preview"
    EDIT = "Edit"


class FileUploadOptions(PascalModel):
    folder_id: Optional[int] = None
    description: Optional[str] = None
    alt: Optional[str] = None
    is_public: bool = False
    tags: Optional[Dict[str, Any]] = None
    generate_thumbnail: bool = True
    process_immediately: bool = True


class FileUpdate(PascalModel):
    description: Optional[str] = None
    alt: Optional[str] = None
    is_public: Optional[bool] = None
    folder_id: Optional[int] = None
    tags: Optional[Dict[str, Any]] = None


class File(PascalModel):
    id: int
    original_file_name: str
    stored_file_name: str
    content_type: str
    file_size: int
    file_extension: Optional[str] = None
    file_type: FileType
    description: Optional[str] = None
    alt: Optional[str] = None
    tags: Optional[Dict[str, Any]] = None
    is_public: bool
    folder_id: Optional[int] = None
    download_count: int = 0
    last_accessed_at: Optional[datetime] = None
    width: Optional[int] = None
    height: Optional[int] = None
    duration: Optional[float] = None
    hash: Optional[str] = None
    is_processed: bool = True
    processing_status: ProcessingStatus = ProcessingStatus.COMPLETED
    created_by_user_id: Optional[int] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    @computed_field(alias="FileSizeFormatted")
    @property
    def file_size_formatted(self) -> str:
        return format_file_size(self.file_size)

    @computed_field(alias="Urls")
    @property
    def urls(self) -> Dict[str, Optional[str]]:
        base = f"/api/v1/file/{self.id}"
        return {
            "Download": f"{base}/download",
            "Preview": f"{base}/preview",
            "Thumbnail": f"{base}/thumbnail" if self.file_type == FileType.IMAGE else None,
        }


class FileSearchParams(PascalModel):
    search_term: Optional[str] = None
    file_type: Optional[FileType] = None
    folder_id: Optional[int] = None
    is_public: Optional[bool] = None
    created_from: Optional[datetime] = None
    created_to: Optional[datetime] = None
    min_size: Optional[int] = None
    max_size: Optional[int] = None
    sort_by: str = "createdAt"
    sort_direction: str = "desc"
    page_number: int = 1
    page_size: int = 20


class MoveFileRequest(PascalModel):
    file_id: int
    new_folder_id: Optional[int] = None


class CopyFileRequest(PascalModel):
    file_id: int
    destination_folder_id: Optional[int] = None
    new_name: Optional[str] = Field(None, max_length=255)


class RenameFileRequest(PascalModel):
    new_name: str = Field(..., max_length=255)


class GenerateThumbnailRequest(PascalModel):
    width: Optional[int] = Field(None, ge=16, le=2000)
    height: Optional[int] = Field(None, ge=16, le=2000)


class DownloadTokenResponse(PascalModel):
    token: str
    expires_in: int


class FilePreview(PascalModel):
    file_id: int
    original_file_name: str
    content_type: str
    file_type: FileType
    file_size: int
    can_preview: bool
    preview_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None


class FileStatistics(PascalModel):
    total_files: int
    total_size: int
    total_size_formatted: str
    total_downloads: int
    average_file_size: float
    files_by_type: Dict[str, int]
    last_upload: Optional[datetime] = None


class IntegrityResult(PascalModel):
    file_id: int
    file_name: str
    content_type: str
    file_size: int
    is_valid: bool
    message: str


class FileDiagnostic(PascalModel):
    file_id: int
    original_file_name: str
    stored_file_name: str
    content_type: str
    declared_file_size: int
    actual_content_length: int
    size_mismatch: bool
    has_content: bool
    has_thumbnail: bool
    thumbnail_size: int
    hash: Optional[str] = None
    hash_matches: bool
    file_type: FileType
    width: Optional[int] = None
    height: Optional[int] = None
    is_processed: bool
    processing_status: ProcessingStatus
    is_deleted: bool
    image_validation: Optional[Dict[str, Any]] = None


# Bulk operations

class BulkUpdateRequest(PascalModel):
    file_ids: List[int] = Field(..., min_length=1)
    update: FileUpdate


class BulkMoveRequest(PascalModel):
    file_ids: List[int] = Field(..., min_length=1)
    destination_folder_id: Optional[int] = None


class BulkCopyRequest(PascalModel):
    file_ids: List[int] = Field(..., min_length=1)
    destination_folder_id: Optional[int] = None


class BulkDeleteRequest(PascalModel):
    file_ids: List[int] = Field(..., min_length=1)


class BulkOperationError(PascalModel):
    entity_id: int
    entity_type: str = "File"
    error_message: str
    error_code: str


class BulkOperationResult(PascalModel):
    total_requested: int = 0
    success_count: int = 0
    failure_count: int = 0
    successful_ids: List[int] = []
    created_ids: List[int] = []
    errors: List[BulkOperationError] = []
    processed_at: Optional[datetime] = None

    @computed_field(alias="IsCompleteSuccess")
    @property
    def is_complete_success(self) -> bool:
        return self.total_requested > 0 and self.failure_count == 0

    @computed_field(alias="IsCompleteFailure")
    @property
    def is_complete_failure(self) -> bool:
        return self.total_requested > 0 and self.success_count == 0

    @computed_field(alias="IsPartialSuccess")
    @property
    def is_partial_success(self) -> bool:
        return self.success_count > 0 and self.failure_count > 0

    @computed_field(alias="SuccessRate")
    @property
    def success_rate(self) -> float:
        if not self.total_requested:
            return 0.0
        return round(self.success_count * 100.0 / self.total_requested, 2)


class UploadResult(PascalModel):
    file_name: str
    success: bool
    file: Optional[File] = None
    error_message: Optional[str] = None


class MultipleUploadResult(PascalModel):
    total_requested: int
    success_count: int
    failure_count: int
    results: List[UploadResult]
