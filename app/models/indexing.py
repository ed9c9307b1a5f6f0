from sqlalchemy import Column, Integer, String, DateTime, Text, Boolean, JSON, UniqueConstraint

from app.core.database import Base, utcnow


class IndexingJob(Base):
    __tablename__ = "indexing_jobs"

    id = Column(Integer, primary_key=True, index=True)
    job_type = Column(String(20), nullable=False)  # Full, Incremental, EntitySpecific
    status = Column(String(20), nullable=False, default="Pending", index=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    total_entities = Column(Integer, nullable=False, default=0)
    processed_entities = Column(Integer, nullable=False, default=0)
    failed_entities = Column(Integer, nullable=False, default=0)
    error_message = Column(Text, nullable=True)
    job_metadata = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)


class SearchIndex(Base):
    __tablename__ = "search_index"

    id = Column(Integer, primary_key=True, index=True)
    entity_type = Column(String(20), nullable=False)
    entity_id = Column(Integer, nullable=False)
    title = Column(String(255), nullable=False)
    content = Column(Text, nullable=True)
    index_metadata = Column("metadata", JSON, nullable=True)
    is_public = Column(Boolean, nullable=False, default=False)
    last_indexed_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("entity_type", "entity_id", name="uq_search_index_entity"),
    )
