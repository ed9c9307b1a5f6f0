from typing import Any, Dict, List, Optional
from datetime import datetime
from enum import Enum
from pydantic import AliasChoices, Field

from app.schemas.base import PascalModel


class FolderType(str, Enum):
    GENERAL = "General"
    IMAGES = "Images"
    DOCUMENTS = "Documents"
    VIDEOS = "Videos"
    AUDIO = "Audio"
    USER_AVATARS = "UserAvatars"
    COMPANY_ASSETS = "CompanyAssets"
    TEMPORARY = "Temporary"


class FolderCreate(PascalModel):
    name: str = Field(..., max_length=255)
    description: Optional[str] = None
    parent_folder_id: Optional[int] = None
    folder_type: FolderType = FolderType.GENERAL
    is_public: bool = True
    metadata: Optional[Dict[str, Any]] = None


class FolderUpdate(PascalModel):
    name: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = None
    is_public: Optional[bool] = None
    metadata: Optional[Dict[str, Any]] = None


class Folder(PascalModel):
    id: int
    name: str
    description: Optional[str] = None
    parent_folder_id: Optional[int] = None
    path: str
    folder_type: FolderType
    is_public: bool
    is_system_folder: bool
    metadata: Optional[Dict[str, Any]] = Field(
        None,
        validation_alias=AliasChoices("folder_metadata", "Metadata", "metadata"),
        serialization_alias="Metadata",
    )
    created_at: datetime
    updated_at: Optional[datetime] = None
    file_count: int = 0
    subfolder_count: int = 0


class FolderTreeNode(PascalModel):
    id: int
    name: str
    path: str
    parent_folder_id: Optional[int] = None
    folder_type: FolderType = FolderType.GENERAL
    is_public: bool = True
    file_count: int = 0
    has_sub_folders: bool = False
    level: int = 0
    sub_folders: List["FolderTreeNode"] = []


class MoveFolderRequest(PascalModel):
    folder_id: int
    new_parent_folder_id: Optional[int] = None


class CopyFolderRequest(PascalModel):
    folder_id: int
    destination_folder_id: Optional[int] = None
    new_name: Optional[str] = Field(None, max_length=255)


class RenameFolderRequest(PascalModel):
    new_name: str = Field(..., max_length=255)


class ValidateFolderNameRequest(PascalModel):
    name: str
    parent_folder_id: Optional[int] = None
    exclude_folder_id: Optional[int] = None


class ValidateFolderNameResponse(PascalModel):
    is_valid: bool


class FolderPathResponse(PascalModel):
    folder_id: int
    path: str


class Breadcrumb(PascalModel):
    id: int
    name: str
    path: str
    is_last: bool = False


class FolderStatistics(PascalModel):
    folder_id: int
    file_count: int
    subfolder_count: int
    total_size: int
    total_size_formatted: str
    last_modified: Optional[datetime] = None


class FolderExistsResponse(PascalModel):
    exists: bool
