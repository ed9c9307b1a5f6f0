from typing import List, Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_optional_current_user
from app.core.database import get_db
from app.schemas.indexing import SearchResult
from app.schemas.user import CurrentUser
from app.services.indexing import IndexingService

router = APIRouter()


@router.get("", response_model=List[SearchResult])
async def search(
    q: str = Query(..., min_length=1),
    limit: int = Query(50, ge=1, le=200),
    current_user: Optional[CurrentUser] = Depends(get_optional_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Search indexed files and folders; anonymous callers see public entries only"""
    return await IndexingService(db).search(q, current_user, limit)
