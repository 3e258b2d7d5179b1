"""
Exceptions and enumerations used across the element-type import pipeline.
"""

from enum import Enum
from typing import Optional


class JobState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.SUCCEEDED, JobState.FAILED, JobState.CANCELLED)


class RowOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    # Draft was never started because the job was cancelled
    SKIPPED = "skipped"


class CellFlag(str, Enum):
    YES = "yes"
    NO = "no"
    UNPARSED = "unparsed"


class FailureKind(str, Enum):
    DUPLICATE = "duplicate"
    REFERENCE_VANISHED = "reference_vanished"
    DATABASE_ERROR = "database_error"


class ReferenceCategory(str, Enum):
    DRAWING_TYPE = "drawing_type"
    STAGE = "stage"
    HIERARCHY = "hierarchy"
    BOM_PRODUCT = "bom_product"


class ImportPipelineError(Exception):
    """Base class for import pipeline errors."""


class StagedFileError(ImportPipelineError):
    """The staged upload could not be opened or decoded."""


class InvalidRow(ImportPipelineError):
    """A single input row could not be turned into a draft."""

    def __init__(self, reason: str, row_number: Optional[int] = None):
        super().__init__(reason)
        self.reason = reason
        self.row_number = row_number

    def summary(self) -> str:
        return f"row {self.row_number}: parse_error: {self.reason}"


class ReferenceNotFound(ImportPipelineError):
    """A header label did not match any reference row in the project."""

    def __init__(self, category: ReferenceCategory, label: str):
        super().__init__(f"{category.value} '{label}' not found")
        self.category = category
        self.label = label


class RowFailure(ImportPipelineError):
    """A draft could not be persisted; nothing of it was committed."""

    def __init__(self, kind: FailureKind, message: str, row_number: Optional[int] = None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.row_number = row_number

    def summary(self) -> str:
        return f"row {self.row_number}: {self.kind.value}: {self.message}"


class FatalDatabaseError(ImportPipelineError):
    """The database stayed unreachable after the retry budget was spent."""


class ImportCancelled(ImportPipelineError):
    """Raised when a draft is not started because the job was cancelled."""
