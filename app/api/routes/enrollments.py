from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.deps import get_current_user
from app.core.errors import ForbiddenError
from app.db.session import get_db
from app.models.user import User
from app.schemas.certificates import CertificateOut
from app.schemas.enrollments import EnrollmentCreate, EnrollmentOut, EnrollmentResult, ProgressUpdate
from app.services.enrollments.service import EnrollmentService


router = APIRouter(prefix="/enrollments", tags=["enrollments"])


@router.post("", response_model=EnrollmentOut, status_code=201)
def create_enrollment(
    payload: EnrollmentCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    enrollment = EnrollmentService(db).create_enrollment(user.id, payload.course_id)
    db.commit()
    return enrollment


@router.get("/me", response_model=list[EnrollmentOut])
def my_enrollments(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return EnrollmentService(db).get_user_enrollments(user.id)


@router.patch("/{enrollment_id}/progress", response_model=EnrollmentResult)
def update_progress(
    enrollment_id: str,
    payload: ProgressUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    service = EnrollmentService(db)
    _ensure_owner(service.get_enrollment(enrollment_id).user_id, user)
    enrollment, certificate = service.update_progress(enrollment_id, payload.progress)
    db.commit()
    return EnrollmentResult(
        enrollment=EnrollmentOut.model_validate(enrollment),
        certificate=CertificateOut.model_validate(certificate) if certificate else None,
    )


@router.post("/{enrollment_id}/complete", response_model=EnrollmentResult)
def complete_enrollment(
    enrollment_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    service = EnrollmentService(db)
    _ensure_owner(service.get_enrollment(enrollment_id).user_id, user)
    enrollment, certificate = service.complete_enrollment(enrollment_id)
    db.commit()
    return EnrollmentResult(
        enrollment=EnrollmentOut.model_validate(enrollment),
        certificate=CertificateOut.model_validate(certificate) if certificate else None,
    )


@router.post("/{enrollment_id}/cancel", response_model=EnrollmentOut)
def cancel_enrollment(
    enrollment_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    enrollment = EnrollmentService(db).cancel_enrollment(enrollment_id, user.id)
    db.commit()
    return enrollment


def _ensure_owner(owner_id: str, user: User) -> None:
    if owner_id != user.id and not user.is_admin:
        raise ForbiddenError("Enrollment belongs to another student")
