"""
Row Assembler - turns a raw import row into an ElementTypeDraft.
"""

import math
from typing import Any, Dict, Optional

from .errors import CellFlag, InvalidRow, ReferenceCategory
from .header_decode import decode_header
from .layout import FIXED_COLUMNS, NUMERIC_FIELDS
from .records import BomLine, DrawingEntry, ElementTypeDraft, HierarchyQuantityEntry, RawRow
from .reference_resolver import ReferenceResolver
from .tabular_reader import HeaderPlan

IMPORT_VERSION_CODE = "VR-1"
MAX_DIMENSION = 1e6
MAX_DENSITY = 10000.0
MIN_VOLUME_M3 = 1e-6


def compute_density(mass: float, length: float, height: float, thickness: float) -> float:
    """Density in kg/m3 from a mass and millimetre dimensions, clamped to [0, 10000]."""
    volume_m3 = (length * height * thickness) / 1e9
    if volume_m3 <= MIN_VOLUME_M3:
        return 0.0
    density = mass / volume_m3
    return round(min(max(density, 0.0), MAX_DENSITY), 2)


def cell_text(value: Any) -> str:
    """Text form of a cell; integral floats from spreadsheets lose their ``.0``."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def stage_flag(value: Any) -> CellFlag:
    text = cell_text(value).lower()
    if text in ("yes", "1"):
        return CellFlag.YES
    if text in ("", "no", "0"):
        return CellFlag.NO
    return CellFlag.UNPARSED


def parse_quantity(value: Any) -> Optional[int]:
    """Positive whole quantity, or None for empty, zero and unparseable cells."""
    text = cell_text(value)
    if not text:
        return None
    try:
        quantity = int(text)
    except ValueError:
        try:
            number = float(text)
        except ValueError:
            return None
        if not math.isfinite(number) or not number.is_integer():
            return None
        quantity = int(number)
    return quantity if quantity > 0 else None


def parse_bom_quantity(value: Any) -> Optional[float]:
    text = cell_text(value)
    if not text:
        return None
    try:
        quantity = float(text)
    except ValueError:
        return None
    if not math.isfinite(quantity) or quantity <= 0:
        return None
    return quantity


class RowAssembler:
    """Builds drafts for one job; shares the job's reference resolver."""

    def __init__(self, project_id: int, resolver: ReferenceResolver, plan: HeaderPlan,
                 created_by: Optional[str] = None):
        self.project_id = project_id
        self.resolver = resolver
        self.plan = plan
        self.created_by = created_by

    def assemble(self, raw: RawRow) -> ElementTypeDraft:
        fixed = self._fixed_values(raw)
        density = compute_density(fixed["mass"], fixed["length"], fixed["height"], fixed["thickness"])

        draft = ElementTypeDraft(
            row_number=raw.row_number,
            project_id=self.project_id,
            element_type=fixed["element_type"],
            element_type_name=fixed["element_type_name"],
            height=fixed["height"],
            length=fixed["length"],
            thickness=fixed["thickness"],
            mass=fixed["mass"],
            volume=fixed["volume"],
            area=fixed["area"],
            width=fixed["width"],
            density=density,
            version_code=IMPORT_VERSION_CODE,
            created_by=self.created_by,
        )

        for column in self.plan.stages:
            if stage_flag(raw.value_at(column.index)) != CellFlag.YES:
                continue
            stage_id = self.resolver.try_resolve(ReferenceCategory.STAGE, column.label)
            if stage_id is not None and stage_id not in draft.stage_path:
                draft.stage_path.append(stage_id)

        for column in self.plan.drawings:
            file_ref = decode_header(raw.value_at(column.index))
            if not file_ref:
                continue
            drawing_type_id = self.resolver.try_resolve(ReferenceCategory.DRAWING_TYPE, column.label)
            if drawing_type_id is not None:
                draft.drawings.append(DrawingEntry(drawing_type_id=drawing_type_id, file=file_ref))

        seen_hierarchies = set()
        for column in self.plan.hierarchies:
            quantity = parse_quantity(raw.value_at(column.index))
            if quantity is None:
                continue
            hierarchy_id = self.resolver.try_resolve(ReferenceCategory.HIERARCHY, column.label)
            if hierarchy_id is None or hierarchy_id in seen_hierarchies:
                continue
            seen_hierarchies.add(hierarchy_id)
            draft.hierarchy_quantities.append(HierarchyQuantityEntry(
                hierarchy_id=hierarchy_id,
                quantity=quantity,
                naming_convention=self.resolver.naming_convention(hierarchy_id)
            ))

        for column in self.plan.bom_products:
            quantity = parse_bom_quantity(raw.value_at(column.index))
            if quantity is None:
                continue
            product_id = self.resolver.try_resolve(ReferenceCategory.BOM_PRODUCT, column.label)
            if product_id is not None:
                draft.bom_lines.append(BomLine(product_id=product_id, product_name=column.label, quantity=quantity))

        draft.total_count_element = len(draft.hierarchy_quantities)
        return draft

    def _fixed_values(self, raw: RawRow) -> Dict[str, Any]:
        values: Dict[str, Any] = {}
        for index, (key, label) in enumerate(FIXED_COLUMNS):
            cell = raw.value_at(index)
            if key in NUMERIC_FIELDS:
                values[key] = self._number(cell, label, raw.row_number)
            else:
                values[key] = decode_header(cell)

        if not values["element_type"]:
            raise InvalidRow("Element Type is empty", raw.row_number)
        return values

    @staticmethod
    def _number(value: Any, label: str, row_number: int) -> float:
        text = cell_text(value)
        if not text:
            return 0.0
        try:
            number = float(text)
        except ValueError:
            raise InvalidRow(f"{label} is not a number: {text!r}", row_number)
        if not math.isfinite(number) or number < 0:
            raise InvalidRow(f"{label} out of range: {text}", row_number)
        if number > MAX_DIMENSION:
            raise InvalidRow(f"{label} exceeds {MAX_DIMENSION:g}: {text}", row_number)
        return number
