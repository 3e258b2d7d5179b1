"""
Column layout shared by the import reader and the template emitter.

A sheet is laid out as: ten fixed attribute columns, then one column per
project stage, one per drawing type, one per hierarchy node and finally one
per BOM product. Section widths come from the project's reference counts at
the time the file is read or the template is produced.
"""

from dataclasses import dataclass
from typing import List, Optional, Tuple

from openpyxl.utils import get_column_letter

FIXED_COLUMNS = [
    ("element_type", "Element Type"),
    ("element_type_name", "Element Type Name"),
    ("height", "Height"),
    ("length", "Length"),
    ("thickness", "Thickness"),
    ("mass", "Mass"),
    ("volume", "Volume"),
    ("area", "Area"),
    ("width", "Width"),
    ("element_type_version", "Element Type Version"),
]

FIXED_COLUMN_COUNT = len(FIXED_COLUMNS)

NUMERIC_FIELDS = ["height", "length", "thickness", "mass", "volume", "area", "width"]

SECTION_BASE = "Base"
SECTION_STAGE = "Stage"
SECTION_DRAWING = "Drawing"
SECTION_HIERARCHY = "Hierarchy"
SECTION_BOM = "BOM"

SUMMARY_SHEET_NAME = "Summary"
DATA_SHEET_NAME = "Element Types"
HEADER_ROWS_LABEL = "Header Rows"


@dataclass(frozen=True)
class ColumnLayout:
    """Zero-based column ranges for each section of an import sheet."""

    stage_count: int
    drawing_count: int
    hierarchy_count: int
    bom_count: Optional[int] = None

    @property
    def stage_start(self) -> int:
        return FIXED_COLUMN_COUNT

    @property
    def drawing_start(self) -> int:
        return self.stage_start + self.stage_count

    @property
    def hierarchy_start(self) -> int:
        return self.drawing_start + self.drawing_count

    @property
    def bom_start(self) -> int:
        return self.hierarchy_start + self.hierarchy_count

    def section_of(self, index: int) -> str:
        if index < self.stage_start:
            return SECTION_BASE
        if index < self.drawing_start:
            return SECTION_STAGE
        if index < self.hierarchy_start:
            return SECTION_DRAWING
        if index < self.bom_start:
            return SECTION_HIERARCHY
        return SECTION_BOM

    def sections(self) -> List[Tuple[str, int, int]]:
        """Return ``(section, start, count)`` for every section, BOM last."""
        bom_count = self.bom_count if self.bom_count is not None else 0
        return [
            (SECTION_BASE, 0, FIXED_COLUMN_COUNT),
            (SECTION_STAGE, self.stage_start, self.stage_count),
            (SECTION_DRAWING, self.drawing_start, self.drawing_count),
            (SECTION_HIERARCHY, self.hierarchy_start, self.hierarchy_count),
            (SECTION_BOM, self.bom_start, bom_count),
        ]


def column_range(start: int, count: int) -> str:
    """Spreadsheet range of a header section, e.g. ``K1-L1``; empty when count is 0."""
    if count <= 0:
        return ""
    return f"{get_column_letter(start + 1)}1-{get_column_letter(start + count)}1"
