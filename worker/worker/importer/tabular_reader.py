"""
Tabular Reader - streams rows of an element-type import file.

CSV files are read with the csv module, spreadsheets with openpyxl in
read-only mode, so neither format is loaded into memory in full.
"""

import csv
import os
import zipfile
from dataclasses import dataclass, field
from typing import Any, Iterator, List, Optional

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException
import structlog

from .errors import StagedFileError
from .header_decode import decode_header
from .layout import (
    ColumnLayout, DATA_SHEET_NAME, HEADER_ROWS_LABEL, SECTION_BOM, SECTION_DRAWING,
    SECTION_HIERARCHY, SECTION_STAGE, SUMMARY_SHEET_NAME
)
from .records import RawRow

logger = structlog.get_logger()

FORMAT_CSV = "csv"
FORMAT_SPREADSHEET = "spreadsheet"

_EXTENSION_FORMATS = {
    ".csv": FORMAT_CSV,
    ".xlsx": FORMAT_SPREADSHEET,
    ".xlsm": FORMAT_SPREADSHEET,
}


def detect_format(file_path: str) -> str:
    extension = os.path.splitext(file_path)[1].lower()
    try:
        return _EXTENSION_FORMATS[extension]
    except KeyError:
        raise StagedFileError(f"Unsupported file type: {extension or 'none'}")


@dataclass
class HeaderColumn:
    index: int
    label: str


@dataclass
class HeaderPlan:
    """Header labels grouped by section, decoded once per file."""

    labels: List[str]
    stages: List[HeaderColumn] = field(default_factory=list)
    drawings: List[HeaderColumn] = field(default_factory=list)
    hierarchies: List[HeaderColumn] = field(default_factory=list)
    bom_products: List[HeaderColumn] = field(default_factory=list)

    @classmethod
    def classify(cls, raw_header: List[Any], layout: ColumnLayout) -> "HeaderPlan":
        labels = [decode_header(value) for value in raw_header]
        plan = cls(labels=labels)
        buckets = {
            SECTION_STAGE: plan.stages,
            SECTION_DRAWING: plan.drawings,
            SECTION_HIERARCHY: plan.hierarchies,
            SECTION_BOM: plan.bom_products,
        }
        for index, label in enumerate(labels):
            bucket = buckets.get(layout.section_of(index))
            if bucket is not None and label:
                bucket.append(HeaderColumn(index=index, label=label))
        return plan


class TabularReader:
    """
    Lazy row source over a staged CSV or spreadsheet file.

    ``rows()`` may be iterated once per reader; re-reading means building a
    new reader on the same file.
    """

    def __init__(self, file_path: str, layout: ColumnLayout, format_hint: Optional[str] = None):
        self.file_path = file_path
        self.layout = layout
        self.format = format_hint or detect_format(file_path)
        self.plan: Optional[HeaderPlan] = None

    def rows(self) -> Iterator[RawRow]:
        if self.format == FORMAT_CSV:
            source = self._csv_rows()
        elif self.format == FORMAT_SPREADSHEET:
            source = self._spreadsheet_rows()
        else:
            raise StagedFileError(f"Unsupported format: {self.format}")

        try:
            for row_number, values in source:
                if self.plan is None:
                    self.plan = HeaderPlan.classify(values, self.layout)
                    logger.info(
                        "Import header classified",
                        file_path=self.file_path,
                        columns=len(self.plan.labels),
                        stages=len(self.plan.stages),
                        drawings=len(self.plan.drawings),
                        hierarchies=len(self.plan.hierarchies),
                        bom_products=len(self.plan.bom_products)
                    )
                    continue
                if _is_blank(values):
                    continue
                yield RawRow(row_number=row_number, header=self.plan.labels, values=values)
        except StagedFileError:
            raise
        except (OSError, UnicodeDecodeError, csv.Error, InvalidFileException, zipfile.BadZipFile, KeyError) as e:
            raise StagedFileError(f"Cannot read staged file: {e}") from e

        if self.plan is None:
            raise StagedFileError("Staged file has no header row")

    def _csv_rows(self) -> Iterator:
        # utf-8-sig strips the byte order mark some spreadsheet tools prepend
        with open(self.file_path, "r", encoding="utf-8-sig", newline="") as f:
            reader = csv.reader(f)
            for row_number, values in enumerate(reader, start=1):
                yield row_number, values

    def _spreadsheet_rows(self) -> Iterator:
        workbook = load_workbook(self.file_path, read_only=True, data_only=True)
        try:
            header_rows = _header_rows(workbook)
            sheet = _data_sheet(workbook)
            for row_number, values in enumerate(sheet.iter_rows(values_only=True), start=1):
                # Sub-header rows below the labels carry section names only
                if 1 < row_number <= header_rows:
                    continue
                yield row_number, list(values)
        finally:
            workbook.close()


def _data_sheet(workbook):
    if DATA_SHEET_NAME in workbook.sheetnames:
        return workbook[DATA_SHEET_NAME]
    for name in workbook.sheetnames:
        if name != SUMMARY_SHEET_NAME:
            return workbook[name]
    raise StagedFileError("Workbook has no data sheet")


def _header_rows(workbook) -> int:
    if SUMMARY_SHEET_NAME not in workbook.sheetnames:
        return 1
    for row in workbook[SUMMARY_SHEET_NAME].iter_rows(max_col=2, values_only=True):
        if row and row[0] is not None and str(row[0]).strip().rstrip(":") == HEADER_ROWS_LABEL:
            try:
                return max(1, int(row[1]))
            except (TypeError, ValueError):
                return 1
    return 1


def _is_blank(values: List[Any]) -> bool:
    return all(value is None or str(value).strip() == "" for value in values)
