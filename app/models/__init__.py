from app.models.audit_log import AuditLog
from app.models.certificate import Certificate
from app.models.certificate_batch import CertificateBatch
from app.models.course import Course
from app.models.enrollment import Enrollment
from app.models.oauth_account import OAuthAccount
from app.models.payment import Payment
from app.models.user import User

__all__ = [
    "AuditLog",
    "Certificate",
    "CertificateBatch",
    "Course",
    "Enrollment",
    "OAuthAccount",
    "Payment",
    "User",
]
