from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, Integer, String

from app.db.base import Base


class CertificateBatch(Base):
    __tablename__ = "certificate_batches"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    course_id = Column(String, nullable=False, index=True)
    batch_name = Column(String(100), nullable=False)
    google_drive_folder_id = Column(String, unique=True, nullable=False)
    start_sequence = Column(Integer, nullable=False)
    certificate_count = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    @property
    def end_sequence(self) -> int:
        return self.start_sequence + self.certificate_count - 1
