"""
Users module - Identity records and role profiles.
"""

from school_sms.modules.users.models import Student, Teacher, User, UserRole
from school_sms.modules.users.repository import UserRepository, get_user_repository

__all__ = ["User", "UserRole", "Teacher", "Student", "UserRepository", "get_user_repository"]
