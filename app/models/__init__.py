from app.models.classes import ClassSession, SessionAttendance
from app.models.credits import CreditBalance, CreditTransaction
from app.models.platform import PlatformSetting
from app.models.user import StudentProfile, User

__all__ = [
    "ClassSession",
    "CreditBalance",
    "CreditTransaction",
    "PlatformSetting",
    "SessionAttendance",
    "StudentProfile",
    "User",
]
