"""
Persistence Unit - writes one ElementTypeDraft and its dependent rows.

The element type, stage path, drawings, hierarchy quantities and BOM row go
in a single transaction. Element instances are generated afterwards, one
transaction per hierarchy-quantity row, so a failed expansion never takes the
catalog entry down with it.
"""

import time
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, Iterator, List, Optional, Tuple

from sqlalchemy.exc import DisconnectionError, IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session
import structlog

from ..config import settings
from ..database_models import (
    Element, ElementDrawing, ElementType, ElementTypeBom, ElementTypeHierarchyQuantity,
    ElementTypePath, HierarchyNode
)
from .errors import FailureKind, FatalDatabaseError, RowFailure, RowOutcome
from .records import DraftResult, ElementTypeDraft

logger = structlog.get_logger()

ELEMENT_STATUS_CREATED = 1

UNIQUE_CODE_CONSTRAINT = "uq_element_type_project_code"
PG_UNIQUE_VIOLATION = "23505"


def generate_element_id(element_type: str, naming_convention: str, sequence: int) -> str:
    """Element identifier such as ``ET1/T1-F1/0003``."""
    return f"{element_type.upper()}/{naming_convention}/{sequence:04d}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@contextmanager
def transaction_scope(session_factory: Callable[[], Session]) -> Iterator[Session]:
    """
    One session, one transaction, one disposition.

    Commits when the block exits cleanly, rolls back when it raises; the
    connection goes back to the pool either way.
    """
    db = session_factory()
    try:
        yield db
        db.commit()
    except BaseException:
        db.rollback()
        raise
    finally:
        db.close()


def _is_connection_loss(error: Exception) -> bool:
    if isinstance(error, DisconnectionError):
        return True
    return isinstance(error, OperationalError) and bool(getattr(error, "connection_invalidated", False))


def is_unique_violation(error: IntegrityError) -> bool:
    """True for a duplicate element type code; NOT NULL and FK violations are not."""
    orig = getattr(error, "orig", None)
    if getattr(orig, "pgcode", None) == PG_UNIQUE_VIOLATION:
        return True
    message = str(orig if orig is not None else error)
    # SQLite reports the columns rather than the constraint name
    return UNIQUE_CODE_CONSTRAINT in message or "UNIQUE constraint failed" in message


class PersistenceUnit:
    """Persists drafts for one import job."""

    def __init__(self, session_factory: Callable[[], Session], job_id=None,
                 retry_attempts: Optional[int] = None, retry_backoff: Optional[float] = None):
        self.session_factory = session_factory
        self.job_id = job_id
        self.retry_attempts = settings.db_retry_attempts if retry_attempts is None else retry_attempts
        self.retry_backoff = settings.db_retry_backoff if retry_backoff is None else retry_backoff

    def persist(self, draft: ElementTypeDraft, token=None) -> DraftResult:
        """
        Persist a draft and expand its element instances.

        Returns a skipped result without touching the database when the
        job has been cancelled. Raises ``FatalDatabaseError`` when the
        database stays unreachable; every other failure is reported in the
        result.
        """
        if token is not None and token.is_cancelled():
            return DraftResult(row_number=draft.row_number, outcome=RowOutcome.SKIPPED)

        try:
            element_type_id, quantities = self._with_retry(lambda: self._insert_draft(draft))
        except RowFailure as failure:
            failure.row_number = draft.row_number
            logger.warning(
                "Draft persistence failed",
                job_id=str(self.job_id),
                row_number=draft.row_number,
                element_type=draft.element_type,
                kind=failure.kind.value,
                error=failure.message
            )
            return DraftResult(
                row_number=draft.row_number,
                outcome=RowOutcome.FAILED,
                failure_kind=failure.kind,
                error=failure.summary()
            )

        result = DraftResult(
            row_number=draft.row_number,
            outcome=RowOutcome.SUCCEEDED,
            element_type_id=element_type_id
        )
        for hierarchy_id, quantity, naming_convention in quantities:
            warning = self._expand(draft, element_type_id, hierarchy_id, quantity, naming_convention)
            if warning:
                result.warnings.append(warning)
        return result

    def _with_retry(self, operation):
        attempt = 0
        while True:
            attempt += 1
            try:
                return operation()
            except RowFailure:
                raise
            except PoolTimeoutError as e:
                raise FatalDatabaseError(f"Database connection pool exhausted: {e}") from e
            except SQLAlchemyError as e:
                if not _is_connection_loss(e):
                    raise RowFailure(FailureKind.DATABASE_ERROR, str(getattr(e, "orig", e) or e))
                if attempt > self.retry_attempts:
                    raise FatalDatabaseError(f"Database connection lost after {attempt} attempts: {e}") from e
                logger.warning(
                    "Database connection lost, retrying draft",
                    job_id=str(self.job_id),
                    attempt=attempt,
                    error=str(e)
                )
                time.sleep(self.retry_backoff * attempt)

    def _insert_draft(self, draft: ElementTypeDraft) -> Tuple[int, List[Tuple[int, int, str]]]:
        now = _utcnow()
        with transaction_scope(self.session_factory) as db:
            element_type = ElementType(
                element_type=draft.element_type,
                element_type_name=draft.element_type_name,
                height=draft.height,
                length=draft.length,
                thickness=draft.thickness,
                mass=draft.mass,
                volume=draft.volume,
                area=draft.area,
                width=draft.width,
                density=draft.density,
                element_type_version=draft.version_code,
                total_count_element=draft.total_count_element,
                project_id=draft.project_id,
                job_id=self.job_id,
                created_by=draft.created_by,
                created_at=now,
                update_at=now
            )
            db.add(element_type)
            try:
                db.flush()
            except IntegrityError as e:
                if not is_unique_violation(e):
                    raise RowFailure(FailureKind.DATABASE_ERROR, str(getattr(e, "orig", None) or e)) from e
                raise RowFailure(
                    FailureKind.DUPLICATE,
                    f"element type '{draft.element_type}' already exists in project {draft.project_id}"
                ) from e
            element_type_id = element_type.element_type_id

            if draft.stage_path:
                db.add(ElementTypePath(element_type_id=element_type_id, stage_path=list(draft.stage_path)))

            for drawing in draft.drawings:
                db.add(ElementDrawing(
                    project_id=draft.project_id,
                    element_type_id=element_type_id,
                    drawing_type_id=drawing.drawing_type_id,
                    current_version=draft.version_code,
                    file=drawing.file,
                    comments=drawing.comments,
                    created_by=draft.created_by,
                    updated_by=draft.created_by,
                    created_at=now,
                    update_at=now
                ))

            quantities = []
            for entry in draft.hierarchy_quantities:
                # Re-read inside the transaction; the snapshot must match the node as committed
                naming_convention = db.query(HierarchyNode.naming_convention).filter(
                    HierarchyNode.id == entry.hierarchy_id,
                    HierarchyNode.project_id == draft.project_id
                ).with_for_update(read=True).scalar()
                if naming_convention is None:
                    raise RowFailure(
                        FailureKind.REFERENCE_VANISHED,
                        f"hierarchy node {entry.hierarchy_id} no longer exists"
                    )
                db.add(ElementTypeHierarchyQuantity(
                    element_type_id=element_type_id,
                    hierarchy_id=entry.hierarchy_id,
                    quantity=entry.quantity,
                    naming_convention=naming_convention,
                    element_type_name=draft.element_type_name,
                    element_type=draft.element_type,
                    left_quantity=0,
                    project_id=draft.project_id
                ))
                quantities.append((entry.hierarchy_id, entry.quantity, naming_convention))

            db.add(ElementTypeBom(
                element_type_id=element_type_id,
                project_id=draft.project_id,
                product=[line.to_document() for line in draft.bom_lines],
                created_by=draft.created_by,
                updated_by=draft.created_by,
                created_at=now,
                updated_at=now
            ))

        return element_type_id, quantities

    def _expand(self, draft: ElementTypeDraft, element_type_id: int, hierarchy_id: int,
                quantity: int, naming_convention: str) -> Optional[str]:
        """Create ``quantity`` element rows; return a warning instead of raising."""
        try:
            with transaction_scope(self.session_factory) as db:
                element_type = db.query(ElementType).filter(
                    ElementType.element_type_id == element_type_id
                ).with_for_update().one()
                start = element_type.total_count_element or 0
                now = _utcnow()
                for offset in range(1, quantity + 1):
                    db.add(Element(
                        element_type_id=element_type_id,
                        element_id=generate_element_id(draft.element_type, naming_convention, start + offset),
                        element_name=draft.element_type_name,
                        project_id=draft.project_id,
                        status=ELEMENT_STATUS_CREATED,
                        element_type_version=draft.version_code,
                        target_location=hierarchy_id,
                        created_by=draft.created_by,
                        created_at=now,
                        update_at=now
                    ))
                element_type.total_count_element = start + quantity
                element_type.update_at = now
            return None
        except SQLAlchemyError as e:
            logger.warning(
                "Element expansion failed",
                job_id=str(self.job_id),
                row_number=draft.row_number,
                element_type_id=element_type_id,
                hierarchy_id=hierarchy_id,
                error=str(e)
            )
            return f"row {draft.row_number}: expansion for hierarchy {hierarchy_id} failed: {e}"
