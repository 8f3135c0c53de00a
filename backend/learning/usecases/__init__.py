"""Use case layer for the learner area.

Re-export common use cases for convenient imports in tests.
"""

from .admin_enrollments import (
    EnrollmentAlreadyExists,
    GrantEnrollmentInput,
    GrantEnrollmentUseCase,
    ListAllEnrollmentsInput,
    ListAllEnrollmentsUseCase,
    RevokeEnrollmentInput,
    RevokeEnrollmentUseCase,
)
from .enrollments import (
    EnrollInput,
    EnrollUseCase,
    ListEnrollmentsInput,
    ListEnrollmentsUseCase,
    progress_pct,
)
from .notes import GetNoteInput, GetNoteUseCase, SaveNoteInput, SaveNoteUseCase
from .progress import (
    GetProgressInput,
    GetProgressUseCase,
    OutOfOrderCompletion,
    RecordProgressInput,
    RecordProgressUseCase,
)

__all__ = [
    "EnrollmentAlreadyExists",
    "GrantEnrollmentInput",
    "GrantEnrollmentUseCase",
    "ListAllEnrollmentsInput",
    "ListAllEnrollmentsUseCase",
    "RevokeEnrollmentInput",
    "RevokeEnrollmentUseCase",
    "EnrollInput",
    "EnrollUseCase",
    "ListEnrollmentsInput",
    "ListEnrollmentsUseCase",
    "progress_pct",
    "GetNoteInput",
    "GetNoteUseCase",
    "SaveNoteInput",
    "SaveNoteUseCase",
    "GetProgressInput",
    "GetProgressUseCase",
    "OutOfOrderCompletion",
    "RecordProgressInput",
    "RecordProgressUseCase",
]
