from src.core.repositories.academic_terms import AcademicTermRepository
from src.core.repositories.base import TenantContextMissingError, TenantRepository
from src.core.repositories.members import ParentRepository, TeacherRepository
from src.core.repositories.profiles import ProfileDirectory, ProfileRepository
from src.core.repositories.schools import SchoolRepository

__all__ = [
    "TenantContextMissingError",
    "TenantRepository",
    "AcademicTermRepository",
    "ParentRepository",
    "ProfileDirectory",
    "ProfileRepository",
    "SchoolRepository",
    "TeacherRepository",
]
