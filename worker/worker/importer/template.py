"""
Template Emitter - builds the blank element-type import sheet for a project.

The header order here is the import contract: the reader classifies columns
with the same ``ColumnLayout`` built from the same reference counts.
"""

import csv
import io
from dataclasses import dataclass, field
from datetime import datetime
from io import BytesIO
from typing import List, Optional

from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter
from sqlalchemy.orm import Session

from ..database_models import BomProduct, DrawingType, HierarchyNode, ProjectStage
from .layout import (
    ColumnLayout, DATA_SHEET_NAME, FIXED_COLUMNS, HEADER_ROWS_LABEL, SECTION_BASE, SECTION_BOM,
    SECTION_DRAWING, SECTION_HIERARCHY, SECTION_STAGE, SUMMARY_SHEET_NAME, column_range
)

TITLE = "Element Type Export Summary"
HEADER_ROWS = 2

_SECTION_LABELS = {
    SECTION_BASE: ("Base Columns", "Fixed element type attributes"),
    SECTION_STAGE: ("Total Stages", "Enter yes or 1 to include the stage"),
    SECTION_DRAWING: ("Total Drawing Types", "Enter the drawing file reference"),
    SECTION_HIERARCHY: ("Total Hierarchy", "Enter the quantity per hierarchy node"),
    SECTION_BOM: ("Total BOM Types", "Enter the quantity per BOM product"),
}

_SECTION_FILLS = {
    SECTION_BASE: "4472C4",
    SECTION_STAGE: "70AD47",
    SECTION_DRAWING: "ED7D31",
    SECTION_HIERARCHY: "7030A0",
    SECTION_BOM: "C00000",
}


@dataclass
class TemplateColumns:
    stages: List[str] = field(default_factory=list)
    drawing_types: List[str] = field(default_factory=list)
    hierarchy_paths: List[str] = field(default_factory=list)
    bom_name_ids: List[str] = field(default_factory=list)

    @property
    def layout(self) -> ColumnLayout:
        return ColumnLayout(
            stage_count=len(self.stages),
            drawing_count=len(self.drawing_types),
            hierarchy_count=len(self.hierarchy_paths),
            bom_count=len(self.bom_name_ids)
        )

    @property
    def header(self) -> List[str]:
        return (
            [label for _, label in FIXED_COLUMNS]
            + self.stages
            + self.drawing_types
            + self.hierarchy_paths
            + self.bom_name_ids
        )


def load_template_columns(db: Session, project_id: int) -> TemplateColumns:
    """Reference labels of a project in template order."""
    stages = db.query(ProjectStage.name).filter(
        ProjectStage.project_id == project_id
    ).order_by(ProjectStage.order, ProjectStage.id).all()
    drawing_types = db.query(DrawingType.drawing_type_name).filter(
        DrawingType.project_id == project_id
    ).order_by(DrawingType.drawing_type_name).all()
    paths = db.query(HierarchyNode.path).filter(
        HierarchyNode.project_id == project_id
    ).order_by(HierarchyNode.path).all()
    products = db.query(BomProduct).filter(
        BomProduct.project_id == project_id
    ).order_by(BomProduct.product_name, BomProduct.product_type, BomProduct.id).all()

    return TemplateColumns(
        stages=[row[0] for row in stages],
        drawing_types=[row[0] for row in drawing_types],
        hierarchy_paths=[row[0] for row in paths],
        bom_name_ids=[product.name_id for product in products]
    )


def build_template_csv(columns: TemplateColumns) -> str:
    output = io.StringIO()
    csv.writer(output).writerow(columns.header)
    return output.getvalue()


def build_template_workbook(columns: TemplateColumns, project_id: int,
                            project_name: Optional[str] = None) -> BytesIO:
    """Data sheet with labels and section sub-headers, plus the summary sheet."""
    wb = Workbook()
    ws = wb.active
    ws.title = DATA_SHEET_NAME

    layout = columns.layout
    header_font = Font(color="FFFFFF", bold=True)

    for index, label in enumerate(columns.header):
        section = layout.section_of(index)
        fill = PatternFill(start_color=_SECTION_FILLS[section], end_color=_SECTION_FILLS[section], fill_type="solid")

        cell = ws.cell(row=1, column=index + 1, value=label)
        cell.font = header_font
        cell.fill = fill
        cell.alignment = Alignment(horizontal="center")

        sub_header = ws.cell(row=2, column=index + 1, value=section)
        sub_header.font = Font(italic=True)

        ws.column_dimensions[get_column_letter(index + 1)].width = max(12, min(len(str(label)) + 4, 40))

    ws.freeze_panes = "A3"
    _write_summary_sheet(wb, columns, project_id, project_name)

    output = BytesIO()
    wb.save(output)
    output.seek(0)
    return output


def _write_summary_sheet(wb: Workbook, columns: TemplateColumns, project_id: int,
                         project_name: Optional[str]):
    ws = wb.create_sheet(SUMMARY_SHEET_NAME)
    layout = columns.layout

    ws["A1"] = TITLE
    ws["A1"].font = Font(bold=True, size=14, color="FFFFFF")
    ws["A1"].fill = PatternFill(start_color="4472C4", end_color="4472C4", fill_type="solid")
    ws.merge_cells("A1:C1")

    rows = [
        ("Project ID", project_id),
        ("Project Name", project_name or ""),
        ("Generated", datetime.now().strftime("%Y-%m-%d %H:%M")),
        (None, None),
    ]
    for section, start, count in layout.sections():
        label, _ = _SECTION_LABELS[section]
        rows.append((label, count))
        rows.append(("Range", column_range(start, count)))
    rows.append((HEADER_ROWS_LABEL, HEADER_ROWS))
    rows.append(("Total Columns", len(columns.header)))
    rows.append((None, None))
    rows.append(("Column Layout Reference:", None))
    for section, start, count in layout.sections():
        _, description = _SECTION_LABELS[section]
        span = column_range(start, count) or "none"
        rows.append((section, f"{span}: {description}"))

    for offset, (label, value) in enumerate(rows, start=3):
        if label is not None:
            ws.cell(row=offset, column=1, value=label).font = Font(bold=True)
        if value is not None:
            ws.cell(row=offset, column=2, value=value)

    ws.column_dimensions["A"].width = 28
    ws.column_dimensions["B"].width = 48
