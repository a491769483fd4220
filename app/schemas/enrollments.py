from datetime import datetime

from pydantic import BaseModel, ConfigDict

from app.schemas.certificates import CertificateOut


class EnrollmentCreate(BaseModel):
    course_id: str


class ProgressUpdate(BaseModel):
    progress: int


class EnrollmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    course_id: str
    status: str
    progress: int
    enrolled_date: datetime
    completed_date: datetime | None = None
    certificate_id: str | None = None


class EnrollmentResult(BaseModel):
    enrollment: EnrollmentOut
    certificate: CertificateOut | None = None
