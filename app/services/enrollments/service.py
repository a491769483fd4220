"""
EnrollmentService — a student's place in a course.

pending_payment -> active -> completed, or cancelled. Completing an
enrollment hands out the next certificate from the course pool.
"""
import logging
from datetime import datetime, timezone

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.errors import CertificateStateError, ConflictError, ForbiddenError, NotFoundError, ValidationError
from app.models.certificate import Certificate
from app.models.course import Course
from app.models.enrollment import Enrollment
from app.models.user import User
from app.services.audit.service import AuditService
from app.services.certificates.service import CertificateService

logger = logging.getLogger(__name__)

PENDING_PAYMENT = "pending_payment"
ACTIVE = "active"
COMPLETED = "completed"
CANCELLED = "cancelled"


class EnrollmentService:
    def __init__(self, db: Session, certificates: CertificateService | None = None):
        self.db = db
        self.certificates = certificates or CertificateService(db)

    def get_enrollment(self, enrollment_id: str) -> Enrollment:
        enrollment = self.db.get(Enrollment, enrollment_id)
        if enrollment is None:
            raise NotFoundError("Enrollment not found")
        return enrollment

    def get_user_enrollments(self, user_id: str) -> list[Enrollment]:
        return (
            self.db.query(Enrollment)
            .filter(Enrollment.user_id == user_id)
            .order_by(Enrollment.enrolled_date.desc())
            .all()
        )

    def create_enrollment(self, student_id: str, course_id: str) -> Enrollment:
        if self.db.get(User, student_id) is None:
            raise NotFoundError("Student not found")
        course = self.db.get(Course, course_id)
        if course is None:
            raise NotFoundError("Course not found")

        existing = (
            self.db.query(Enrollment)
            .filter(Enrollment.user_id == student_id, Enrollment.course_id == course_id)
            .one_or_none()
        )
        if existing:
            raise ConflictError("Already enrolled in this course")

        # Seat reservation and capacity check in one statement.
        result = self.db.execute(
            update(Course)
            .where(Course.id == course_id, Course.total_enrollments < Course.capacity)
            .values(total_enrollments=Course.total_enrollments + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise ConflictError("Course is full")

        status = ACTIVE if not course.price else PENDING_PAYMENT
        enrollment = Enrollment(user_id=student_id, course_id=course_id, status=status, progress=0)
        try:
            with self.db.begin_nested():
                self.db.add(enrollment)
        except IntegrityError:
            self.db.execute(
                update(Course)
                .where(Course.id == course_id)
                .values(total_enrollments=Course.total_enrollments - 1)
                .execution_options(synchronize_session=False)
            )
            raise ConflictError("Already enrolled in this course")

        logger.info(
            "enrollment_created",
            extra={"enrollment_id": enrollment.id, "user_id": student_id, "course_id": course_id, "status": status},
        )
        AuditService(self.db).log(
            actor_type="user",
            actor_id=student_id,
            action="enrollment_created",
            entity_type="enrollment",
            entity_id=enrollment.id,
            payload={"course_id": course_id, "status": status},
        )
        return enrollment

    def update_progress(self, enrollment_id: str, progress) -> tuple[Enrollment, Certificate | None]:
        if isinstance(progress, bool) or not isinstance(progress, int) or not 0 <= progress <= 100:
            raise ValidationError(errors=["Progress must be an integer between 0 and 100"])
        enrollment = self.get_enrollment(enrollment_id)
        if enrollment.status != ACTIVE:
            raise ConflictError("Only active enrollments can make progress")
        if progress == 100:
            return self.complete_enrollment(enrollment_id)
        enrollment.progress = progress
        self.db.add(enrollment)
        self.db.flush()
        return enrollment, None

    def complete_enrollment(self, enrollment_id: str) -> tuple[Enrollment, Certificate | None]:
        """
        Mark completed and assign a certificate. An empty pool does not undo
        the completion: the certificate is None and can be assigned later.
        """
        enrollment = self.get_enrollment(enrollment_id)
        if enrollment.status not in (ACTIVE, COMPLETED):
            raise ConflictError("Enrollment is not active")

        if enrollment.status == ACTIVE:
            enrollment.status = COMPLETED
            enrollment.progress = 100
            enrollment.completed_date = datetime.now(timezone.utc)
            self.db.add(enrollment)
            self.db.flush()
            logger.info(
                "enrollment_completed",
                extra={"enrollment_id": enrollment.id, "user_id": enrollment.user_id, "course_id": enrollment.course_id},
            )

        try:
            certificate = self.certificates.assign_to_student(
                enrollment.id, enrollment.user_id, enrollment.course_id
            )
        except CertificateStateError as e:
            logger.warning(
                "certificate_assignment_deferred",
                extra={"enrollment_id": enrollment.id, "course_id": enrollment.course_id, "error": e.message},
            )
            return enrollment, None
        self.db.refresh(enrollment)
        return enrollment, certificate

    def cancel_enrollment(self, enrollment_id: str, student_id: str) -> Enrollment:
        enrollment = self.get_enrollment(enrollment_id)
        if enrollment.user_id != student_id:
            raise ForbiddenError("Cannot cancel another student's enrollment")
        if enrollment.status == COMPLETED:
            raise ConflictError("Completed enrollments cannot be cancelled")
        if enrollment.status == CANCELLED:
            return enrollment

        enrollment.status = CANCELLED
        self.db.add(enrollment)
        self._release_seat(enrollment.course_id)
        self.db.flush()
        logger.info("enrollment_cancelled", extra={"enrollment_id": enrollment.id, "user_id": student_id})
        return enrollment

    # ------------------------------------------------------------------
    # Payment side effects
    # ------------------------------------------------------------------

    def activate_after_payment(self, enrollment_id: str) -> Enrollment | None:
        """Settled payment opens the course. Progress restarts unless the enrollment was already running."""
        enrollment = self.db.get(Enrollment, enrollment_id)
        if enrollment is None:
            logger.warning("paid_enrollment_missing", extra={"enrollment_id": enrollment_id})
            return None
        if enrollment.status in (ACTIVE, COMPLETED):
            return enrollment

        previous = enrollment.status
        enrollment.status = ACTIVE
        if previous in (PENDING_PAYMENT, CANCELLED):
            enrollment.progress = 0
        if previous == CANCELLED:
            # paid seats are honoured even when the course filled up meanwhile
            self.db.execute(
                update(Course)
                .where(Course.id == enrollment.course_id)
                .values(total_enrollments=Course.total_enrollments + 1)
                .execution_options(synchronize_session=False)
            )
        self.db.add(enrollment)
        self.db.flush()
        logger.info(
            "enrollment_activated",
            extra={"enrollment_id": enrollment.id, "old_status": previous, "new_status": ACTIVE},
        )
        return enrollment

    def cancel_pending_after_payment(self, enrollment_id: str) -> Enrollment | None:
        enrollment = self.db.get(Enrollment, enrollment_id)
        if enrollment is None or enrollment.status != PENDING_PAYMENT:
            return enrollment
        enrollment.status = CANCELLED
        self.db.add(enrollment)
        self._release_seat(enrollment.course_id)
        self.db.flush()
        logger.info(
            "enrollment_cancelled_unpaid",
            extra={"enrollment_id": enrollment.id, "old_status": PENDING_PAYMENT, "new_status": CANCELLED},
        )
        return enrollment

    def _release_seat(self, course_id: str) -> None:
        self.db.execute(
            update(Course)
            .where(Course.id == course_id, Course.total_enrollments > 0)
            .values(total_enrollments=Course.total_enrollments - 1)
            .execution_options(synchronize_session=False)
        )
