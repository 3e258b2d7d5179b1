"""
Tests for turning raw rows into element-type drafts.
"""

import unittest
from unittest.mock import Mock

from worker.importer.errors import CellFlag, InvalidRow, ReferenceCategory
from worker.importer.layout import ColumnLayout
from worker.importer.records import RawRow
from worker.importer.reference_resolver import ReferenceResolver
from worker.importer.row_assembler import (
    IMPORT_VERSION_CODE, RowAssembler, compute_density, parse_bom_quantity, parse_quantity, stage_flag
)
from worker.importer.tabular_reader import HeaderPlan

from import_fixtures import PROJECT_ID, S1_HEADER, S1_ROW, make_session_factory, s1_row, seed_reference_data

S1_LAYOUT = ColumnLayout(stage_count=2, drawing_count=2, hierarchy_count=3, bom_count=3)


class TestCellHelpers(unittest.TestCase):

    def test_density_of_s1_beam(self):
        self.assertEqual(compute_density(2400, 2500, 300, 6000), 533.33)

    def test_density_is_zero_for_negligible_volume(self):
        self.assertEqual(compute_density(10, 1, 1, 1), 0.0)
        self.assertEqual(compute_density(10, 0, 300, 6000), 0.0)
        # 10 x 10 x 10 mm is exactly the 1e-6 m3 cutoff
        self.assertEqual(compute_density(1, 10, 10, 10), 0.0)

    def test_density_is_clamped(self):
        self.assertEqual(compute_density(1e6, 100, 100, 1000), 10000.0)

    def test_stage_flag(self):
        for value in ("yes", "Yes", " YES ", "1", 1, 1.0):
            self.assertEqual(stage_flag(value), CellFlag.YES, msg=repr(value))
        for value in ("", None, "no", "0", 0):
            self.assertEqual(stage_flag(value), CellFlag.NO, msg=repr(value))
        self.assertEqual(stage_flag("maybe"), CellFlag.UNPARSED)

    def test_parse_quantity(self):
        self.assertEqual(parse_quantity("2"), 2)
        self.assertEqual(parse_quantity(3.0), 3)
        self.assertIsNone(parse_quantity(""))
        self.assertIsNone(parse_quantity("0"))
        self.assertIsNone(parse_quantity("-1"))
        self.assertIsNone(parse_quantity("1.5"))
        self.assertIsNone(parse_quantity("two"))

    def test_parse_bom_quantity(self):
        self.assertEqual(parse_bom_quantity("12.5"), 12.5)
        self.assertIsNone(parse_bom_quantity("0"))
        self.assertIsNone(parse_bom_quantity("nan"))
        self.assertIsNone(parse_bom_quantity(None))


class TestRowAssembler(unittest.TestCase):

    def setUp(self):
        self.session_factory = make_session_factory(self)
        self.ids = seed_reference_data(self.session_factory)
        self.resolver = ReferenceResolver(PROJECT_ID, self.session_factory)

    def _assembler(self, header=S1_HEADER):
        plan = HeaderPlan.classify(header, S1_LAYOUT)
        return RowAssembler(PROJECT_ID, self.resolver, plan, created_by="Test User")

    def _raw(self, values, header=S1_HEADER, row_number=2):
        return RawRow(row_number=row_number, header=header, values=values)

    def test_s1_happy_path(self):
        draft = self._assembler().assemble(self._raw(S1_ROW))

        self.assertEqual(draft.element_type, "ET1")
        self.assertEqual(draft.element_type_name, "Beam-A")
        self.assertEqual((draft.height, draft.length, draft.thickness), (300.0, 2500.0, 6000.0))
        self.assertEqual(draft.mass, 2400.0)
        self.assertEqual(draft.density, 533.33)
        self.assertEqual(draft.version_code, IMPORT_VERSION_CODE)
        self.assertEqual(draft.created_by, "Test User")

        self.assertEqual(draft.stage_path, [self.ids["Cast"]])

        self.assertEqual(len(draft.drawings), 1)
        self.assertEqual(draft.drawings[0].drawing_type_id, self.ids["Plan"])
        self.assertEqual(draft.drawings[0].file, "plan.dwg")

        quantities = [(q.hierarchy_id, q.quantity, q.naming_convention) for q in draft.hierarchy_quantities]
        self.assertEqual(quantities, [(self.ids["T1/F1"], 2, "T1-F1"), (self.ids["T1/F2"], 1, "T1-F2")])

        bom = [(line.product_id, line.product_name, line.quantity) for line in draft.bom_lines]
        self.assertEqual(bom, [
            (self.ids["Cement_OPC"], "Cement_OPC", 100.0),
            (self.ids["Steel_Fe500"], "Steel_Fe500", 50.0),
        ])

        self.assertEqual(draft.total_count_element, 2)

    def test_s2_unknown_drawing_type_is_skipped(self):
        header = list(S1_HEADER)
        header[13] = "Details"
        values = s1_row(c13="details.dwg")
        draft = self._assembler(header).assemble(self._raw(values, header))

        self.assertEqual([d.drawing_type_id for d in draft.drawings], [self.ids["Plan"]])

    def test_s3_no_hierarchy_quantities(self):
        values = s1_row(c14="0", c15="", c16="0")
        draft = self._assembler().assemble(self._raw(values))

        self.assertEqual(draft.hierarchy_quantities, [])
        self.assertEqual(draft.total_count_element, 0)

    def test_s4_dimension_out_of_range(self):
        values = s1_row(c2="2000000")
        with self.assertRaises(InvalidRow) as ctx:
            self._assembler().assemble(self._raw(values, row_number=5))
        self.assertEqual(ctx.exception.row_number, 5)
        self.assertIn("Height", ctx.exception.reason)
        self.assertTrue(ctx.exception.summary().startswith("row 5: parse_error:"))

    def test_empty_code_is_invalid(self):
        with self.assertRaises(InvalidRow):
            self._assembler().assemble(self._raw(s1_row(code="")))

    def test_bad_numbers_are_invalid(self):
        for bad in ("abc", "-1", "inf"):
            with self.assertRaises(InvalidRow, msg=bad):
                self._assembler().assemble(self._raw(s1_row(c5=bad)))

    def test_empty_numbers_default_to_zero(self):
        draft = self._assembler().assemble(self._raw(s1_row(c6="", c7="", c8="")))
        self.assertEqual((draft.volume, draft.area, draft.width), (0.0, 0.0, 0.0))

    def test_short_row_is_padded(self):
        draft = self._assembler().assemble(self._raw(["ET9", "Slab", "200", "1000", "1000", "500"]))
        self.assertEqual(draft.stage_path, [])
        self.assertEqual(draft.drawings, [])
        self.assertEqual(draft.bom_lines, [])
        self.assertEqual(draft.density, 2500.0)

    def test_stage_path_follows_column_order_without_duplicates(self):
        draft = self._assembler().assemble(self._raw(s1_row(c10="1", c11="yes")))
        self.assertEqual(draft.stage_path, [self.ids["Cast"], self.ids["Cure"]])

        header = list(S1_HEADER)
        header[11] = "Cast"
        draft = self._assembler(header).assemble(self._raw(s1_row(c10="yes", c11="yes"), header))
        self.assertEqual(draft.stage_path, [self.ids["Cast"]])

    def test_encoded_text_cells_are_decoded(self):
        draft = self._assembler().assemble(self._raw(s1_row(c1="Beam+ACY-Column", c12="a+ACY-b.dwg")))
        self.assertEqual(draft.element_type_name, "Beam&Column")
        self.assertEqual(draft.drawings[0].file, "a&b.dwg")

    def test_resolver_is_consulted_once_per_label(self):
        resolver = Mock()
        resolver.try_resolve.side_effect = lambda category, label: {
            (ReferenceCategory.STAGE, "Cast"): 1,
            (ReferenceCategory.DRAWING_TYPE, "Plan"): 2,
            (ReferenceCategory.HIERARCHY, "T1/F1"): 3,
            (ReferenceCategory.HIERARCHY, "T1/F2"): 4,
            (ReferenceCategory.BOM_PRODUCT, "Cement_OPC"): 5,
            (ReferenceCategory.BOM_PRODUCT, "Steel_Fe500"): 6,
        }.get((category, label))
        resolver.naming_convention.return_value = "N"
        assembler = RowAssembler(PROJECT_ID, resolver, HeaderPlan.classify(S1_HEADER, S1_LAYOUT))

        draft = assembler.assemble(self._raw(S1_ROW))

        self.assertEqual(draft.stage_path, [1])
        self.assertEqual([q.hierarchy_id for q in draft.hierarchy_quantities], [3, 4])
        # Empty cells never reach the resolver
        looked_up = [call.args[1] for call in resolver.try_resolve.call_args_list]
        self.assertNotIn("Cure", looked_up)
        self.assertNotIn("T0/F0", looked_up)
        self.assertNotIn("Aggregate_Fine", looked_up)


if __name__ == '__main__':
    unittest.main()
