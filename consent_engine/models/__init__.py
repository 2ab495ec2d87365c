from .activity_log import ActivityLog
from .email_notification import EmailNotification
from .form_template import FormTemplate
from .organization import Organization
from .submission import Submission
from .user import User

__all__ = [
    "ActivityLog",
    "EmailNotification",
    "FormTemplate",
    "Organization",
    "Submission",
    "User",
]
