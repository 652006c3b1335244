"""
ORM tables backing the spreadsheet import pipeline.

``org_uploads`` is the audit trail of every uploaded file; ``staging_records``
holds one row per imported spreadsheet row awaiting human review.
"""
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    BigInteger,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)

from app.db.session import Base


def _utcnow() -> datetime:
    """Return a timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


class OrgUpload(Base):
    """One uploaded spreadsheet and its processing status."""
    __tablename__ = "org_uploads"

    id = Column(String(36), primary_key=True)
    org_id = Column(String(64), nullable=False, index=True)
    source = Column(String(32), nullable=False)
    file_path = Column(Text, nullable=False)
    original_filename = Column(String(500), nullable=False)
    file_size = Column(BigInteger, nullable=False, default=0)
    mime_type = Column(String(255), nullable=True)
    status = Column(String(32), nullable=False, default="processing")
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    notes = Column(Text, nullable=True)
    uploaded_by = Column(String(64), nullable=True)
    committed_by = Column(String(64), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        Index("idx_org_uploads_org_created", "org_id", "created_at"),
    )


class StagingRecordRow(Base):
    """A single imported row awaiting review."""
    __tablename__ = "staging_records"

    id = Column(Integer, primary_key=True, autoincrement=True)
    upload_id = Column(String(36), ForeignKey("org_uploads.id", ondelete="CASCADE"), nullable=False, index=True)
    org_id = Column(String(64), nullable=False, index=True)
    record_type = Column(String(32), nullable=False)
    row_index = Column(Integer, nullable=False)
    raw_data = Column(JSON, nullable=False)
    full_name = Column(Text, nullable=True)
    email = Column(Text, nullable=True)
    phone = Column(Text, nullable=True)
    # "metadata" is reserved on declarative classes
    record_metadata = Column("metadata", JSON, nullable=False, default=dict)
    status = Column(String(16), nullable=False, default="pending")
    validation_errors = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        UniqueConstraint("upload_id", "row_index", name="uq_staging_records_upload_row"),
        Index("idx_staging_records_upload_status", "upload_id", "status"),
    )
