from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class BatchCreate(BaseModel):
    course_id: str
    batch_name: str
    storage_folder_ref: str
    count: int


class BatchOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    course_id: str
    batch_name: str
    google_drive_folder_id: str
    start_sequence: int
    end_sequence: int
    certificate_count: int
    created_at: datetime


class AssignRequest(BaseModel):
    enrollment_id: str
    certificate_id: str | None = None  # explicit pick; omitted = next in line


class DriveLinkUpdate(BaseModel):
    google_drive_link: str


class CertificateOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    serial_number: str
    course_id: str
    batch_id: str | None = None
    enrollment_id: str | None = None
    status: str
    sequence_number: int
    file_name: str
    google_drive_link: str
    issue_date: datetime
    assigned_to: str | None = None
    assigned_date: datetime | None = None
    accessed_date: datetime | None = None


class CertificatePage(BaseModel):
    items: list[CertificateOut]
    total: int
    page: int
    limit: int
    pages: int


class CertificateVerification(BaseModel):
    """Public verification payload. Carries no internal ids."""

    course_name: str = Field(serialization_alias="courseName")
    user_name: str = Field(serialization_alias="userName")
    issue_date: datetime = Field(serialization_alias="issueDate")
    google_drive_link: str = Field(serialization_alias="googleDriveLink")
