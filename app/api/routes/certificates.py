from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.deps import get_current_user, require_admin
from app.core.errors import ConflictError, ForbiddenError
from app.db.session import get_db
from app.models.certificate import CERTIFICATE_ACCESSED
from app.models.user import User
from app.schemas.certificates import (
    AssignRequest,
    BatchCreate,
    BatchOut,
    CertificateOut,
    CertificatePage,
    CertificateVerification,
    DriveLinkUpdate,
)
from app.services.certificates.service import CertificateService
from app.services.enrollments.service import EnrollmentService


router = APIRouter(prefix="/certificates", tags=["certificates"])


@router.post("/batches", response_model=BatchOut, status_code=201)
def create_batch(
    payload: BatchCreate,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    batch = CertificateService(db).create_batch(
        course_id=payload.course_id,
        batch_name=payload.batch_name,
        storage_folder_ref=payload.storage_folder_ref,
        count=payload.count,
        actor_id=admin.id,
    )
    db.commit()
    return batch


@router.get("/batches/{batch_id}", response_model=CertificatePage)
def batch_certificates(
    batch_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    _: User = Depends(require_admin),
):
    return _page(CertificateService(db).get_batch_certificates(batch_id, page=page, limit=limit))


@router.get("/batches/{batch_id}/availability")
def batch_availability(batch_id: str, db: Session = Depends(get_db), _: User = Depends(require_admin)) -> dict:
    return CertificateService(db).batch_availability(batch_id)


@router.get("/course/{course_id}", response_model=CertificatePage)
def course_certificates(
    course_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    _: User = Depends(require_admin),
):
    return _page(CertificateService(db).get_course_certificates(course_id, page=page, limit=limit))


@router.post("/assign", response_model=CertificateOut)
def assign_certificate(
    payload: AssignRequest,
    db: Session = Depends(get_db),
    _: User = Depends(require_admin),
):
    """Manual assignment for completed enrollments whose pool was empty at completion time."""
    enrollment = EnrollmentService(db).get_enrollment(payload.enrollment_id)
    if enrollment.status != "completed":
        raise ConflictError("Certificates are issued for completed enrollments only")
    service = CertificateService(db)
    if payload.certificate_id:
        certificate = service.assign_certificate(payload.certificate_id, enrollment.user_id, enrollment.id)
    else:
        certificate = service.assign_to_student(enrollment.id, enrollment.user_id, enrollment.course_id)
    db.commit()
    return certificate


@router.get("/me", response_model=list[CertificateOut])
def my_certificates(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return CertificateService(db).get_student_certificates(user.id)


@router.get("/verify/{serial_number}", response_model=CertificateVerification)
def verify_certificate(serial_number: str, db: Session = Depends(get_db)):
    return CertificateService(db).verify_by_serial(serial_number)


@router.post("/{certificate_id}/access", response_model=CertificateOut)
def access_certificate(
    certificate_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    service = CertificateService(db)
    certificate = service.get_certificate(certificate_id)
    if certificate.assigned_to != user.id and not user.is_admin:
        raise ForbiddenError("Certificate belongs to another student")
    # only the first download is recorded
    if certificate.status != CERTIFICATE_ACCESSED:
        certificate = service.mark_accessed(certificate_id)
        db.commit()
    return certificate


@router.patch("/{certificate_id}/drive-link", response_model=CertificateOut)
def update_drive_link(
    certificate_id: str,
    payload: DriveLinkUpdate,
    db: Session = Depends(get_db),
    _: User = Depends(require_admin),
):
    certificate = CertificateService(db).update_drive_link(certificate_id, payload.google_drive_link)
    db.commit()
    return certificate


def _page(result: dict) -> CertificatePage:
    return CertificatePage(
        items=[CertificateOut.model_validate(c) for c in result["items"]],
        total=result["total"],
        page=result["page"],
        limit=result["limit"],
        pages=result["pages"],
    )
