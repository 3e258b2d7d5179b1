"""
Reference Resolver - maps decoded header labels onto project dictionary ids.
"""

import threading
from typing import Callable, Dict, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session
import structlog

from ..database_models import BomProduct, DrawingType, HierarchyNode, ProjectStage
from .errors import ReferenceCategory, ReferenceNotFound
from .header_decode import decode_header

logger = structlog.get_logger()

_MISSING = object()


class ReferenceResolver:
    """
    Per-job lookup cache for drawing types, stages, hierarchy nodes and BOM
    products of one project.

    The cache is shared by all worker threads of a job. Each key is written
    once; two threads missing the same key at the same time may both query,
    which is harmless because the lookups are read-only.
    """

    def __init__(self, project_id: int, session_factory: Callable[[], Session]):
        self.project_id = project_id
        self.session_factory = session_factory
        self._cache: Dict[Tuple[ReferenceCategory, str], object] = {}
        self._naming: Dict[int, str] = {}
        self._lock = threading.Lock()
        self.queries_issued = 0

    def resolve(self, category: ReferenceCategory, label) -> int:
        """Return the id for ``label`` or raise ``ReferenceNotFound``."""
        decoded = decode_header(label)
        key = (category, decoded)

        with self._lock:
            cached = self._cache.get(key, _MISSING)
        if cached is _MISSING:
            cached = self._query(category, decoded)
            with self._lock:
                cached = self._cache.setdefault(key, cached)

        if cached is None:
            raise ReferenceNotFound(category, decoded)
        return cached

    def try_resolve(self, category: ReferenceCategory, label) -> Optional[int]:
        try:
            return self.resolve(category, label)
        except ReferenceNotFound:
            return None

    def naming_convention(self, hierarchy_id: int) -> str:
        """Naming convention of a hierarchy node as currently stored."""
        with self._lock:
            if hierarchy_id in self._naming:
                return self._naming[hierarchy_id]
        db = self.session_factory()
        try:
            value = db.query(HierarchyNode.naming_convention).filter(
                HierarchyNode.id == hierarchy_id,
                HierarchyNode.project_id == self.project_id
            ).scalar()
        finally:
            db.close()
        value = value or ""
        with self._lock:
            self._naming.setdefault(hierarchy_id, value)
        return value

    def counts(self) -> Dict[ReferenceCategory, int]:
        """Dictionary sizes that fix the column layout of an import sheet."""
        db = self.session_factory()
        try:
            return {
                ReferenceCategory.STAGE: db.query(func.count(ProjectStage.id)).filter(
                    ProjectStage.project_id == self.project_id).scalar() or 0,
                ReferenceCategory.DRAWING_TYPE: db.query(func.count(DrawingType.drawing_type_id)).filter(
                    DrawingType.project_id == self.project_id).scalar() or 0,
                ReferenceCategory.HIERARCHY: db.query(func.count(HierarchyNode.id)).filter(
                    HierarchyNode.project_id == self.project_id).scalar() or 0,
                ReferenceCategory.BOM_PRODUCT: db.query(func.count(BomProduct.id)).filter(
                    BomProduct.project_id == self.project_id).scalar() or 0,
            }
        finally:
            db.close()

    def _query(self, category: ReferenceCategory, label: str) -> Optional[int]:
        db = self.session_factory()
        try:
            if category == ReferenceCategory.DRAWING_TYPE:
                query = db.query(DrawingType.drawing_type_id).filter(
                    DrawingType.project_id == self.project_id,
                    DrawingType.drawing_type_name == label
                )
            elif category == ReferenceCategory.STAGE:
                query = db.query(ProjectStage.id).filter(
                    ProjectStage.project_id == self.project_id,
                    ProjectStage.name == label
                ).order_by(ProjectStage.order, ProjectStage.id)
            elif category == ReferenceCategory.HIERARCHY:
                query = db.query(HierarchyNode.id).filter(
                    HierarchyNode.project_id == self.project_id,
                    HierarchyNode.path == label
                )
            elif category == ReferenceCategory.BOM_PRODUCT:
                name_id = BomProduct.product_name + "_" + BomProduct.product_type
                query = db.query(BomProduct.id).filter(
                    BomProduct.project_id == self.project_id,
                    name_id == label
                ).order_by(BomProduct.id)
            else:
                raise ValueError(f"Unknown reference category: {category}")

            with self._lock:
                self.queries_issued += 1
            return query.limit(1).scalar()
        except Exception as e:
            logger.error(
                "Reference lookup failed",
                project_id=self.project_id,
                category=category.value,
                label=label,
                error=str(e)
            )
            raise
        finally:
            db.close()
