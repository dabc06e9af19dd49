from src.models.academic_term import AcademicTerm
from src.models.base import Base, TenantScopedBase, TimestampMixin
from src.models.members import Parent, Teacher
from src.models.profile import Profile
from src.models.school import School

__all__ = [
    "Base",
    "TenantScopedBase",
    "TimestampMixin",
    "School",
    "Profile",
    "Teacher",
    "Parent",
    "AcademicTerm",
]
