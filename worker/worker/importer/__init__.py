"""
Element-type import pipeline: reference resolution, tabular reading, row
assembly, transactional persistence, batched execution and job control.
"""

from .errors import (
    CellFlag, FailureKind, FatalDatabaseError, ImportCancelled, ImportPipelineError, InvalidRow,
    JobState, ReferenceCategory, ReferenceNotFound, RowFailure, RowOutcome, StagedFileError
)
from .header_decode import decode_header
from .reference_resolver import ReferenceResolver
from .tabular_reader import TabularReader
from .row_assembler import RowAssembler
from .persistence import PersistenceUnit
from .batch_pool import BatchWorkerPool
from .job_control import CancellationToken, JobRegistry, ProgressTracker, job_registry

__all__ = [
    'BatchWorkerPool',
    'CancellationToken',
    'CellFlag',
    'FailureKind',
    'FatalDatabaseError',
    'ImportCancelled',
    'ImportPipelineError',
    'InvalidRow',
    'JobRegistry',
    'JobState',
    'PersistenceUnit',
    'ProgressTracker',
    'ReferenceCategory',
    'ReferenceNotFound',
    'ReferenceResolver',
    'RowAssembler',
    'RowFailure',
    'RowOutcome',
    'StagedFileError',
    'TabularReader',
    'decode_header',
    'job_registry',
]
