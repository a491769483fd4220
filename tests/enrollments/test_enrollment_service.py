from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from app.core.errors import CertificateStateError, ConflictError, ForbiddenError, NotFoundError, ValidationError


def _service(db, certificates=None):
    from app.services.enrollments.service import EnrollmentService

    return EnrollmentService(db, certificates=certificates)


class TestCreateEnrollment:
    def test_paid_course_waits_for_payment(self, db, make_user, make_course):
        user, course = make_user(), make_course()
        enrollment = _service(db).create_enrollment(user.id, course.id)
        assert enrollment.status == "pending_payment"
        assert enrollment.progress == 0
        db.refresh(course)
        assert course.total_enrollments == 1

    def test_free_course_is_active_immediately(self, db, make_user, make_course):
        user, course = make_user(), make_course(price=Decimal("0"))
        assert _service(db).create_enrollment(user.id, course.id).status == "active"

    def test_duplicate_enrollment(self, db, make_user, make_course):
        user, course = make_user(), make_course()
        service = _service(db)
        service.create_enrollment(user.id, course.id)
        with pytest.raises(ConflictError, match="Already enrolled"):
            service.create_enrollment(user.id, course.id)
        db.refresh(course)
        assert course.total_enrollments == 1

    def test_full_course(self, db, make_user, make_course):
        course = make_course(capacity=1)
        service = _service(db)
        service.create_enrollment(make_user().id, course.id)
        with pytest.raises(ConflictError, match="Course is full"):
            service.create_enrollment(make_user().id, course.id)

    def test_unknown_student_or_course(self, db, make_user, make_course):
        with pytest.raises(NotFoundError):
            _service(db).create_enrollment("missing", make_course().id)
        with pytest.raises(NotFoundError):
            _service(db).create_enrollment(make_user().id, "missing")


class TestProgress:
    @pytest.mark.parametrize("progress", [-1, 101, 50.5, True, "50"])
    def test_rejects_invalid_progress(self, db, make_user, make_course, make_enrollment, progress):
        enrollment = make_enrollment(make_user(), make_course())
        with pytest.raises(ValidationError):
            _service(db).update_progress(enrollment.id, progress)

    def test_partial_progress(self, db, make_user, make_course, make_enrollment):
        enrollment = make_enrollment(make_user(), make_course())
        updated, certificate = _service(db).update_progress(enrollment.id, 40)
        assert updated.progress == 40
        assert updated.status == "active"
        assert certificate is None

    def test_pending_enrollment_cannot_progress(self, db, make_user, make_course, make_enrollment):
        enrollment = make_enrollment(make_user(), make_course(), status="pending_payment")
        with pytest.raises(ConflictError):
            _service(db).update_progress(enrollment.id, 10)

    def test_full_progress_completes_and_assigns_certificate(self, db, make_user, make_course, make_enrollment):
        from app.services.certificates.service import CertificateService

        course = make_course()
        CertificateService(db).create_batch(course.id, "Batch Januari", "folder-a", 2)
        enrollment = make_enrollment(make_user(), course)

        updated, certificate = _service(db).update_progress(enrollment.id, 100)
        assert updated.status == "completed"
        assert updated.completed_date is not None
        assert certificate is not None
        assert certificate.sequence_number == 1
        assert updated.certificate_id == certificate.id


class TestComplete:
    def test_empty_pool_defers_certificate(self, db, make_user, make_course, make_enrollment):
        enrollment = make_enrollment(make_user(), make_course())
        completed, certificate = _service(db).complete_enrollment(enrollment.id)
        assert completed.status == "completed"
        assert certificate is None

    def test_completing_again_retries_assignment(self, db, make_user, make_course, make_enrollment):
        certificates = MagicMock()
        certificates.assign_to_student.side_effect = [CertificateStateError("empty"), MagicMock(id="cert-1")]
        enrollment = make_enrollment(make_user(), make_course())
        service = _service(db, certificates=certificates)

        _, first = service.complete_enrollment(enrollment.id)
        _, second = service.complete_enrollment(enrollment.id)
        assert first is None
        assert second.id == "cert-1"
        assert certificates.assign_to_student.call_count == 2

    def test_cancelled_enrollment_cannot_complete(self, db, make_user, make_course, make_enrollment):
        enrollment = make_enrollment(make_user(), make_course(), status="cancelled")
        with pytest.raises(ConflictError):
            _service(db).complete_enrollment(enrollment.id)


class TestCancel:
    def test_cancel_releases_seat(self, db, make_user, make_course):
        user, course = make_user(), make_course()
        service = _service(db)
        enrollment = service.create_enrollment(user.id, course.id)

        cancelled = service.cancel_enrollment(enrollment.id, user.id)
        assert cancelled.status == "cancelled"
        db.refresh(course)
        assert course.total_enrollments == 0

    def test_only_owner_can_cancel(self, db, make_user, make_course, make_enrollment):
        enrollment = make_enrollment(make_user(), make_course())
        with pytest.raises(ForbiddenError):
            _service(db).cancel_enrollment(enrollment.id, make_user().id)

    def test_completed_cannot_be_cancelled(self, db, make_user, make_course, make_enrollment):
        user = make_user()
        enrollment = make_enrollment(user, make_course(), status="completed", progress=100)
        with pytest.raises(ConflictError):
            _service(db).cancel_enrollment(enrollment.id, user.id)


class TestPaymentEffects:
    def test_activate_pending(self, db, make_user, make_course, make_enrollment):
        enrollment = make_enrollment(make_user(), make_course(), status="pending_payment")
        activated = _service(db).activate_after_payment(enrollment.id)
        assert activated.status == "active"
        assert activated.progress == 0

    def test_activate_cancelled_takes_seat_back(self, db, make_user, make_course, make_enrollment):
        course = make_course()
        enrollment = make_enrollment(make_user(), course, status="cancelled")
        _service(db).activate_after_payment(enrollment.id)
        db.refresh(course)
        assert course.total_enrollments == 1

    def test_activate_keeps_running_enrollment(self, db, make_user, make_course, make_enrollment):
        enrollment = make_enrollment(make_user(), make_course(), status="active", progress=60)
        assert _service(db).activate_after_payment(enrollment.id).progress == 60

    def test_activate_missing_enrollment(self, db):
        assert _service(db).activate_after_payment("missing") is None

    def test_cancel_pending_only(self, db, make_user, make_course, make_enrollment):
        pending = make_enrollment(make_user(), make_course(), status="pending_payment")
        active = make_enrollment(make_user(), make_course(), status="active")
        service = _service(db)
        assert service.cancel_pending_after_payment(pending.id).status == "cancelled"
        assert service.cancel_pending_after_payment(active.id).status == "active"
