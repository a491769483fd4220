"""
Certificate — a pre-generated certificate file from a batch pool.
Lifecycle: available -> assigned -> accessed (forward only).
enrollment_id is unique: one certificate per enrollment.
"""
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, Index, Integer, String

from app.db.base import Base


CERTIFICATE_AVAILABLE = "available"
CERTIFICATE_ASSIGNED = "assigned"
CERTIFICATE_ACCESSED = "accessed"
CERTIFICATE_STATUSES = (CERTIFICATE_AVAILABLE, CERTIFICATE_ASSIGNED, CERTIFICATE_ACCESSED)


class Certificate(Base):
    __tablename__ = "certificates"
    __table_args__ = (
        Index("ix_certificates_course_status_seq", "course_id", "status", "sequence_number"),
        Index("ix_certificates_batch_status", "batch_id", "status"),
        Index("ix_certificates_assigned_status", "assigned_to", "status"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    serial_number = Column(String, unique=True, nullable=False, index=True)  # CERT-<digits>-<A-Z0-9>
    enrollment_id = Column(String, unique=True, nullable=True)  # set on assignment
    student_id = Column(String, nullable=True, index=True)
    course_id = Column(String, nullable=False, index=True)
    batch_id = Column(String, nullable=True, index=True)
    google_drive_file_id = Column(String, unique=True, nullable=False)
    google_drive_link = Column(String, nullable=False, default="")
    file_name = Column(String, nullable=False)
    sequence_number = Column(Integer, nullable=False)
    status = Column(String, nullable=False, default=CERTIFICATE_AVAILABLE, index=True)
    issue_date = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    assigned_to = Column(String, nullable=True)
    assigned_date = Column(DateTime(timezone=True), nullable=True)
    accessed_date = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
