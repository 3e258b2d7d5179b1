"""
In-memory records passed between the import stages.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .errors import FailureKind, RowOutcome


@dataclass
class RawRow:
    row_number: int
    header: List[str]
    values: List[Any]

    def value_at(self, index: int) -> Any:
        """Cell value, or None past the end of a short row."""
        if index < len(self.values):
            return self.values[index]
        return None


@dataclass
class DrawingEntry:
    drawing_type_id: int
    file: str
    comments: str = ""


@dataclass
class HierarchyQuantityEntry:
    hierarchy_id: int
    quantity: int
    naming_convention: str = ""


@dataclass
class BomLine:
    product_id: int
    product_name: str
    quantity: float

    def to_document(self) -> Dict[str, Any]:
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
        }


@dataclass
class ElementTypeDraft:
    row_number: int
    project_id: int
    element_type: str
    element_type_name: str
    height: float
    length: float
    thickness: float
    mass: float
    volume: float
    area: float
    width: float
    density: float
    version_code: str
    stage_path: List[int] = field(default_factory=list)
    drawings: List[DrawingEntry] = field(default_factory=list)
    hierarchy_quantities: List[HierarchyQuantityEntry] = field(default_factory=list)
    bom_lines: List[BomLine] = field(default_factory=list)
    total_count_element: int = 0
    created_by: Optional[str] = None


@dataclass
class DraftResult:
    row_number: int
    outcome: RowOutcome
    element_type_id: Optional[int] = None
    failure_kind: Optional[FailureKind] = None
    error: Optional[str] = None
    warnings: List[str] = field(default_factory=list)


@dataclass
class BatchResult:
    batch_number: int
    duration_ms: int
    successes: int
    failures: int
    skipped: int = 0
    results: List[DraftResult] = field(default_factory=list)


@dataclass
class BatchReport:
    total_drafts: int
    batch_size: int
    requested_concurrency: int
    effective_concurrency: int
    peak_concurrency: int = 0
    batches: List[BatchResult] = field(default_factory=list)
    batches_dispatched: int = 0
    cancelled: bool = False

    @property
    def batch_count(self) -> int:
        return len(self.batches)

    @property
    def successes(self) -> int:
        return sum(batch.successes for batch in self.batches)

    @property
    def failures(self) -> int:
        return sum(batch.failures for batch in self.batches)
