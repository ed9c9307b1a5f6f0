from fastapi import APIRouter

from app.api.v1.endpoints import cache, files, folders, indexing_jobs, search

api_router = APIRouter()

# Include routers
api_router.include_router(files.router, prefix="/file", tags=["files"])
api_router.include_router(folders.router, prefix="/folder", tags=["folders"])
api_router.include_router(cache.router, prefix="/cache", tags=["cache"])
api_router.include_router(indexing_jobs.router, prefix="/indexingjob", tags=["indexing"])
api_router.include_router(search.router, prefix="/search", tags=["search"])
