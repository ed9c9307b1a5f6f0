from typing import List, Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user, require_admin_or_dev
from app.core.database import get_db
from app.schemas.base import MessageResponse, PagedResult
from app.schemas.folder import (
    Breadcrumb,
    CopyFolderRequest,
    Folder,
    FolderCreate,
    FolderExistsResponse,
    FolderPathResponse,
    FolderStatistics,
    FolderTreeNode,
    FolderType,
    FolderUpdate,
    MoveFolderRequest,
    RenameFolderRequest,
    ValidateFolderNameRequest,
    ValidateFolderNameResponse,
)
from app.schemas.user import CurrentUser
from app.services.folder import FolderService
from app.utils.exceptions import NotFoundError, ValidationError

router = APIRouter()


@router.get("/", response_model=PagedResult[Folder])
async def list_folders(
    page_number: int = Query(1, ge=1, alias="pageNumber"),
    page_size: int = Query(20, ge=1, le=100, alias="pageSize"),
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Paged listing of all folders"""
    folder_service = FolderService(db)
    folders, total = await folder_service.get_folders_paged(page_number, page_size)
    return PagedResult[Folder](
        items=await folder_service.to_schemas(folders),
        page_number=page_number,
        page_size=page_size,
        total_count=total,
    )


@router.post("/", response_model=Folder, status_code=status.HTTP_201_CREATED)
async def create_folder(
    folder_data: FolderCreate,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Create a new folder"""
    folder_service = FolderService(db)
    folder = await folder_service.create_folder(folder_data, current_user.id)
    return await folder_service.to_schema(folder)


@router.get("/all", response_model=List[Folder])
async def get_folders(
    parent_folder_id: Optional[int] = Query(None, alias="parentFolderId"),
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Direct subfolders of a folder (root folders when no parent is given)"""
    folder_service = FolderService(db)
    return await folder_service.to_schemas(await folder_service.get_folders(parent_folder_id))


@router.get("/tree", response_model=FolderTreeNode)
async def get_folder_tree(
    root_folder_id: Optional[int] = Query(None, alias="rootFolderId"),
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Nested folder structure"""
    return await FolderService(db).get_folder_tree(root_folder_id)


@router.get("/by-path", response_model=Folder)
async def get_folder_by_path(
    path: str = Query(..., min_length=1),
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Look a folder up by its path, e.g. Archive/Docs"""
    folder_service = FolderService(db)
    folder = await folder_service.get_folder_by_path(path)
    if not folder:
        raise NotFoundError(f"Folder with path '{path}' not found")
    return await folder_service.to_schema(folder)


@router.get("/search", response_model=List[Folder])
async def search_folders(
    search_term: str = Query(..., alias="searchTerm"),
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Folders whose name or description contains the term"""
    folder_service = FolderService(db)
    return await folder_service.to_schemas(await folder_service.search_folders(search_term))


@router.post("/validate-name", response_model=ValidateFolderNameResponse)
async def validate_folder_name(
    request: ValidateFolderNameRequest,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Check whether a name is valid and free in the given parent"""
    is_valid = await FolderService(db).validate_folder_name(
        request.name, request.parent_folder_id, request.exclude_folder_id
    )
    return ValidateFolderNameResponse(is_valid=is_valid)


@router.post("/move", response_model=Folder)
async def move_folder(
    move_request: MoveFolderRequest,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Move a folder under a new parent (or to the root)"""
    folder_service = FolderService(db)
    folder = await folder_service.move_folder(
        move_request.folder_id, move_request.new_parent_folder_id, current_user.id
    )
    return await folder_service.to_schema(folder)


@router.post("/copy", response_model=Folder, status_code=status.HTTP_201_CREATED)
async def copy_folder(
    copy_request: CopyFolderRequest,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Deep copy a folder with its subfolders and files"""
    folder_service = FolderService(db)
    folder = await folder_service.copy_folder(
        copy_request.folder_id, copy_request.destination_folder_id, copy_request.new_name, current_user.id
    )
    return await folder_service.to_schema(folder)


@router.post("/system/{folder_type}", response_model=Folder)
async def get_or_create_system_folder(
    folder_type: FolderType,
    current_user: CurrentUser = Depends(require_admin_or_dev),
    db: AsyncSession = Depends(get_db)
):
    """Root system folder of a type, created on first use"""
    folder_service = FolderService(db)
    folder = await folder_service.get_or_create_system_folder(folder_type, current_user.id)
    return await folder_service.to_schema(folder)


@router.get("/user-avatars/{user_id}", response_model=Folder)
async def get_user_avatar_folder(
    user_id: int,
    current_user: CurrentUser = Depends(require_admin_or_dev),
    db: AsyncSession = Depends(get_db)
):
    """Avatar folder of a user"""
    folder_service = FolderService(db)
    return await folder_service.to_schema(await folder_service.get_user_avatar_folder(user_id))


@router.get("/company-assets", response_model=Folder)
async def get_company_assets_folder(
    current_user: CurrentUser = Depends(require_admin_or_dev),
    db: AsyncSession = Depends(get_db)
):
    """Company assets system folder"""
    folder_service = FolderService(db)
    return await folder_service.to_schema(await folder_service.get_company_assets_folder())


@router.get("/{folder_id}", response_model=Folder)
async def get_folder(
    folder_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Get folder by ID"""
    folder_service = FolderService(db)
    return await folder_service.to_schema(await folder_service.get_folder(folder_id))


@router.put("/{folder_id}", response_model=Folder)
async def update_folder(
    folder_id: int,
    folder_data: FolderUpdate,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Update folder name, description, visibility or metadata"""
    folder_service = FolderService(db)
    folder = await folder_service.update_folder(folder_id, folder_data, current_user.id)
    return await folder_service.to_schema(folder)


@router.delete("/{folder_id}", response_model=MessageResponse)
async def delete_folder(
    folder_id: int,
    delete_files: bool = Query(False, alias="deleteFiles"),
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Delete a folder; non-empty folders need deleteFiles=true"""
    await FolderService(db).delete_folder(folder_id, delete_files, current_user.id)
    return MessageResponse(message="Folder deleted successfully")


@router.post("/{folder_id}/rename", response_model=MessageResponse)
async def rename_folder(
    folder_id: int,
    rename_request: RenameFolderRequest,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Rename a folder"""
    if not await FolderService(db).rename_folder(folder_id, rename_request.new_name, current_user.id):
        raise ValidationError("Folder name is invalid or already used in this location")
    return MessageResponse(message="Folder renamed successfully")


@router.get("/{folder_id}/path", response_model=FolderPathResponse)
async def get_folder_path(
    folder_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Materialized path of a folder"""
    path = await FolderService(db).get_folder_path(folder_id)
    return FolderPathResponse(folder_id=folder_id, path=path)


@router.get("/{folder_id}/breadcrumbs", response_model=List[Breadcrumb])
async def get_breadcrumbs(
    folder_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Root-first trail to a folder"""
    return await FolderService(db).get_breadcrumbs(folder_id)


@router.get("/{folder_id}/statistics", response_model=FolderStatistics)
async def get_folder_statistics(
    folder_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """File count, size and last change of a folder"""
    return await FolderService(db).get_folder_statistics(folder_id)


@router.get("/{folder_id}/exists", response_model=FolderExistsResponse)
async def folder_exists(
    folder_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Whether a live folder with this ID exists"""
    return FolderExistsResponse(exists=await FolderService(db).folder_exists(folder_id))
