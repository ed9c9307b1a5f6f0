from typing import Any, Dict, List, Optional
from datetime import datetime
from enum import Enum
from pydantic import computed_field

from app.schemas.base import PascalModel


class IndexingJobType(str, Enum):
    FULL = "Full"
    INCREMENTAL = "Incremental"
    ENTITY_SPECIFIC = "EntitySpecific"


class IndexingJobStatus(str, Enum):
    PENDING = "Pending"
    RUNNING = "Running"
    COMPLETED = "Completed"
    FAILED = "Failed"
    CANCELLED = "Cancelled"


FINISHED_JOB_STATUSES = (
    IndexingJobStatus.COMPLETED,
    IndexingJobStatus.FAILED,
    IndexingJobStatus.CANCELLED,
)


class SearchEntityType(str, Enum):
    FILE = "File"
    FOLDER = "Folder"


class IndexingJob(PascalModel):
    id: int
    job_type: IndexingJobType
    status: IndexingJobStatus
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    total_entities: int = 0
    processed_entities: int = 0
    failed_entities: int = 0
    error_message: Optional[str] = None
    job_metadata: Optional[Dict[str, Any]] = None
    created_at: datetime

    @computed_field(alias="Duration")
    @property
    def duration(self) -> Optional[float]:
        """Seconds between start and completion"""
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    @computed_field(alias="ProgressPercentage")
    @property
    def progress_percentage(self) -> float:
        if not self.total_entities:
            return 100.0 if self.status == IndexingJobStatus.COMPLETED else 0.0
        return round(self.processed_entities * 100.0 / self.total_entities, 2)


class IndexingJobList(PascalModel):
    jobs: List[IndexingJob]
    total_count: int
    page: int
    page_size: int

    @computed_field(alias="TotalPages")
    @property
    def total_pages(self) -> int:
        return (self.total_count + self.page_size - 1) // self.page_size if self.page_size else 0


class TriggerJobResponse(PascalModel):
    job_id: int
    message: str
    job_type: IndexingJobType


class TriggerIncrementalRequest(PascalModel):
    since: Optional[datetime] = None


class TriggerEntityRequest(PascalModel):
    entity_type: SearchEntityType
    entity_id: int


class IndexingJobStatistics(PascalModel):
    total_jobs: int
    running_jobs: int
    pending_jobs: int
    completed_jobs: int
    failed_jobs: int
    cancelled_jobs: int
    jobs_last_24_hours: int
    jobs_last_7_days: int
    jobs_last_30_days: int
    last_full_index: Optional[datetime] = None
    last_incremental_index: Optional[datetime] = None
    average_job_duration: Optional[float] = None
    job_type_breakdown: Dict[str, int]


class CleanupResponse(PascalModel):
    deleted_count: int
    message: str


class SearchResult(PascalModel):
    entity_type: SearchEntityType
    entity_id: int
    title: str
    content: Optional[str] = None
    is_public: bool
    last_indexed_at: datetime
