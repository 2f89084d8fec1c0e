"""
Coursework module - Assignments, submissions and learning modules.
"""

from school_sms.modules.coursework.models import Assignment, LearningModule, Submission

__all__ = ["Assignment", "Submission", "LearningModule"]
