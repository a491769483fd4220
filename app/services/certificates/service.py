"""
CertificateService — pool of pre-generated certificates per course.

- Batches create `available` certificates with consecutive sequence numbers
- Assignment claims the lowest-sequence available certificate (FIFO) with a
  conditional UPDATE, so two concurrent completions never get the same file
- A certificate moves available -> assigned -> accessed and never back
"""
import logging
import math
from datetime import datetime, timezone

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.errors import CertificateStateError, ConflictError, NotFoundError, ValidationError
from app.models.certificate import (
    CERTIFICATE_ACCESSED,
    CERTIFICATE_ASSIGNED,
    CERTIFICATE_AVAILABLE,
    CERTIFICATE_STATUSES,
    Certificate,
)
from app.models.certificate_batch import CertificateBatch
from app.models.course import Course
from app.models.enrollment import Enrollment
from app.models.user import User
from app.services.audit.service import AuditService
from app.services.certificates.rules import (
    certificate_file_name,
    ensure_can_access,
    ensure_can_assign,
    generate_serial_number,
    validate_batch_request,
)
from app.utils.metrics import certificate_assignments_total

logger = logging.getLogger(__name__)


class CertificateService:
    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------

    def create_batch(
        self,
        course_id: str,
        batch_name: str,
        storage_folder_ref: str,
        count: int,
        actor_id: str | None = None,
    ) -> CertificateBatch:
        errors = validate_batch_request(batch_name, storage_folder_ref, count)
        if self.db.get(Course, course_id) is None:
            errors.append("Course not found")
        if errors:
            raise ValidationError(errors=errors)

        existing = (
            self.db.query(CertificateBatch.id)
            .filter(CertificateBatch.google_drive_folder_id == storage_folder_ref)
            .first()
        )
        if existing:
            raise ConflictError("Storage folder is already used by another batch")

        last_sequence = (
            self.db.query(func.max(Certificate.sequence_number))
            .filter(Certificate.course_id == course_id)
            .scalar()
        )
        start = (last_sequence or 0) + 1
        name = batch_name.strip()

        batch = CertificateBatch(
            course_id=course_id,
            batch_name=name,
            google_drive_folder_id=storage_folder_ref,
            start_sequence=start,
            certificate_count=count,
        )
        self.db.add(batch)
        self.db.flush()

        now_ms = int(datetime.now(timezone.utc).timestamp() * 1000)
        certificates = []
        for sequence in range(start, start + count):
            file_name = certificate_file_name(name, sequence)
            certificates.append(
                Certificate(
                    serial_number=generate_serial_number(sequence, now_ms=now_ms),
                    course_id=course_id,
                    batch_id=batch.id,
                    google_drive_file_id=f"{storage_folder_ref}/{file_name}",
                    google_drive_link="",
                    file_name=file_name,
                    sequence_number=sequence,
                    status=CERTIFICATE_AVAILABLE,
                )
            )
        self.db.add_all(certificates)
        self.db.flush()

        logger.info(
            "certificate_batch_created",
            extra={"batch_id": batch.id, "course_id": course_id, "count": count},
        )
        AuditService(self.db).log(
            actor_type="user" if actor_id else "system",
            actor_id=actor_id,
            action="certificate_batch_created",
            entity_type="certificate_batch",
            entity_id=batch.id,
            payload={"course_id": course_id, "count": count, "start_sequence": start},
        )
        return batch

    def batch_availability(self, batch_id: str) -> dict[str, int]:
        if self.db.get(CertificateBatch, batch_id) is None:
            raise NotFoundError("Certificate batch not found")
        rows = (
            self.db.query(Certificate.status, func.count(Certificate.id))
            .filter(Certificate.batch_id == batch_id)
            .group_by(Certificate.status)
            .all()
        )
        counts = {status: 0 for status in CERTIFICATE_STATUSES}
        for status, count in rows:
            counts[status] = count
        counts["total"] = sum(counts[s] for s in CERTIFICATE_STATUSES)
        return counts

    # ------------------------------------------------------------------
    # Assignment
    # ------------------------------------------------------------------

    def get_by_enrollment(self, enrollment_id: str) -> Certificate | None:
        return (
            self.db.query(Certificate)
            .filter(Certificate.enrollment_id == enrollment_id)
            .one_or_none()
        )

    def assign_to_student(self, enrollment_id: str, student_id: str, course_id: str) -> Certificate:
        """
        Give the enrollment its certificate. Returns the existing one when the
        enrollment already has a certificate.
        """
        existing = self.get_by_enrollment(enrollment_id)
        if existing:
            certificate_assignments_total.labels(outcome="existing").inc()
            return existing

        tried: set[str] = set()
        try:
            # every lost claim means another worker took that certificate, so
            # the loop ends once the pool runs dry
            while True:
                candidate_id = self._next_available_id(course_id, exclude=tried)
                if candidate_id is None:
                    break
                tried.add(candidate_id)
                if self._claim(candidate_id, student_id, enrollment_id):
                    return self._finish_assignment(candidate_id, enrollment_id)
                certificate_assignments_total.labels(outcome="lost_race").inc()
                logger.info(
                    "certificate_claim_lost",
                    extra={"certificate_id": candidate_id, "enrollment_id": enrollment_id},
                )
        except IntegrityError:
            # another worker assigned a certificate to this enrollment first
            winner = self.get_by_enrollment(enrollment_id)
            if winner is None:
                raise
            certificate_assignments_total.labels(outcome="existing").inc()
            return winner

        certificate_assignments_total.labels(outcome="exhausted").inc()
        logger.warning(
            "certificate_pool_exhausted",
            extra={"course_id": course_id, "enrollment_id": enrollment_id},
        )
        raise CertificateStateError("Certificate is not available for assignment")

    def assign_certificate(self, certificate_id: str, student_id: str, enrollment_id: str) -> Certificate:
        certificate = self.get_certificate(certificate_id)
        ensure_can_assign(certificate.status)
        try:
            claimed = self._claim(certificate_id, student_id, enrollment_id)
        except IntegrityError:
            raise CertificateStateError("Enrollment already has a certificate")
        if not claimed:
            self.db.refresh(certificate)
            ensure_can_assign(certificate.status)
            raise CertificateStateError("Certificate is not available for assignment")
        return self._finish_assignment(certificate_id, enrollment_id)

    def mark_accessed(self, certificate_id: str) -> Certificate:
        certificate = self.get_certificate(certificate_id)
        ensure_can_access(certificate.status)
        now = datetime.now(timezone.utc)
        result = self.db.execute(
            update(Certificate)
            .where(Certificate.id == certificate_id, Certificate.status == CERTIFICATE_ASSIGNED)
            .values(status=CERTIFICATE_ACCESSED, accessed_date=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        self.db.refresh(certificate)
        if result.rowcount == 0:
            ensure_can_access(certificate.status)
        logger.info(
            "certificate_accessed",
            extra={"certificate_id": certificate_id, "serial_number": certificate.serial_number},
        )
        return certificate

    def _next_available_id(self, course_id: str, exclude: set[str]) -> str | None:
        query = self.db.query(Certificate.id).filter(
            Certificate.course_id == course_id,
            Certificate.status == CERTIFICATE_AVAILABLE,
        )
        if exclude:
            query = query.filter(Certificate.id.notin_(exclude))
        row = query.order_by(Certificate.sequence_number).first()
        return row[0] if row else None

    def _claim(self, certificate_id: str, student_id: str, enrollment_id: str) -> bool:
        """Atomically move one certificate from available to assigned. False when another worker won."""
        now = datetime.now(timezone.utc)
        with self.db.begin_nested():
            result = self.db.execute(
                update(Certificate)
                .where(Certificate.id == certificate_id, Certificate.status == CERTIFICATE_AVAILABLE)
                .values(
                    status=CERTIFICATE_ASSIGNED,
                    student_id=student_id,
                    assigned_to=student_id,
                    enrollment_id=enrollment_id,
                    assigned_date=now,
                    issue_date=now,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
        return result.rowcount > 0

    def _finish_assignment(self, certificate_id: str, enrollment_id: str) -> Certificate:
        self.db.execute(
            update(Enrollment)
            .where(Enrollment.id == enrollment_id)
            .values(certificate_id=certificate_id)
            .execution_options(synchronize_session=False)
        )
        certificate = self.db.get(Certificate, certificate_id, populate_existing=True)
        self.db.flush()
        certificate_assignments_total.labels(outcome="assigned").inc()
        logger.info(
            "certificate_assigned",
            extra={
                "certificate_id": certificate.id,
                "serial_number": certificate.serial_number,
                "enrollment_id": enrollment_id,
                "user_id": certificate.assigned_to,
            },
        )
        AuditService(self.db).log(
            actor_type="system",
            actor_id=None,
            action="certificate_assigned",
            entity_type="certificate",
            entity_id=certificate.id,
            payload={"enrollment_id": enrollment_id, "student_id": certificate.assigned_to},
        )
        return certificate

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_certificate(self, certificate_id: str) -> Certificate:
        certificate = self.db.get(Certificate, certificate_id)
        if certificate is None:
            raise NotFoundError("Certificate not found")
        return certificate

    def verify_by_serial(self, serial_number: str) -> dict:
        """Public lookup. Only issued certificates verify; pool entries are reported as not found."""
        row = (
            self.db.query(Certificate, User.full_name, Course.title)
            .join(User, User.id == Certificate.assigned_to)
            .join(Course, Course.id == Certificate.course_id)
            .filter(
                Certificate.serial_number == serial_number,
                Certificate.status.in_((CERTIFICATE_ASSIGNED, CERTIFICATE_ACCESSED)),
            )
            .one_or_none()
        )
        if row is None:
            raise NotFoundError("Certificate not found")
        certificate, user_name, course_name = row
        return {
            "course_name": course_name,
            "user_name": user_name,
            "issue_date": certificate.issue_date,
            "google_drive_link": certificate.google_drive_link,
        }

    def get_student_certificates(self, student_id: str) -> list[Certificate]:
        return (
            self.db.query(Certificate)
            .filter(Certificate.assigned_to == student_id)
            .order_by(Certificate.assigned_date.desc())
            .all()
        )

    def get_course_certificates(self, course_id: str, page: int = 1, limit: int = 50) -> dict:
        query = self.db.query(Certificate).filter(Certificate.course_id == course_id)
        return self._paginate(query, page, limit)

    def get_batch_certificates(self, batch_id: str, page: int = 1, limit: int = 50) -> dict:
        query = self.db.query(Certificate).filter(Certificate.batch_id == batch_id)
        return self._paginate(query, page, limit)

    def update_drive_link(self, certificate_id: str, google_drive_link: str) -> Certificate:
        certificate = self.get_certificate(certificate_id)
        certificate.google_drive_link = google_drive_link
        self.db.add(certificate)
        self.db.flush()
        return certificate

    def _paginate(self, query, page: int, limit: int) -> dict:
        page = max(page, 1)
        limit = min(max(limit, 1), 200)
        total = query.count()
        items = (
            query.order_by(Certificate.sequence_number)
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return {
            "items": items,
            "total": total,
            "page": page,
            "limit": limit,
            "pages": math.ceil(total / limit) if total else 0,
        }
