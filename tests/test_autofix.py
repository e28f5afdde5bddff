"""Tests for the layout tree model and the auto-fix pass."""

from __future__ import annotations

import unittest

from uigen.autofix import auto_fix_tree, crop_candidates, is_valid_svg_path
from uigen.types import Bounds, UINode


def _tree(*children: dict) -> UINode:
    return UINode.from_dict(
        {
            "type": "div",
            "id": "root",
            "bounds": {"top": 0, "left": 0, "width": 100, "height": 100},
            "children": list(children),
        }
    )


class UINodeTest(unittest.TestCase):
    def test_void_element_rejects_children(self) -> None:
        with self.assertRaises(ValueError):
            UINode(id="pic", type="img", children=(UINode(id="x"),))

    def test_from_dict_drops_children_of_void_elements(self) -> None:
        node = UINode.from_dict({"type": "input", "id": "field", "children": [{"type": "span"}]})
        self.assertIsNone(node.children)

    def test_from_dict_accepts_percentage_strings(self) -> None:
        node = UINode.from_dict({"id": "a", "bounds": {"top": "10%", "left": "5", "width": 20, "height": 30.5}})
        self.assertEqual(node.bounds, Bounds(top=10.0, left=5.0, width=20.0, height=30.5))

    def test_unknown_visual_category_is_discarded(self) -> None:
        node = UINode.from_dict({"id": "a", "visualCategory": "hologram"})
        self.assertIsNone(node.visual_category)

    def test_walk_yields_absolute_containers(self) -> None:
        tree = _tree(
            {
                "id": "panel",
                "bounds": {"top": 50, "left": 0, "width": 50, "height": 50},
                "children": [{"id": "leaf", "bounds": {"top": 0, "left": 50, "width": 50, "height": 50}}],
            }
        )
        containers = {node.id: box for node, box in tree.walk()}
        self.assertEqual(containers["leaf"], Bounds(top=50.0, left=0.0, width=50.0, height=50.0))


class SvgPathTest(unittest.TestCase):
    def test_valid_path(self) -> None:
        self.assertTrue(is_valid_svg_path("M5 12h14M12 5l7 7-7 7"))

    def test_rejects_short_or_moveless_paths(self) -> None:
        self.assertFalse(is_valid_svg_path(None))
        self.assertFalse(is_valid_svg_path("M1 1"))
        self.assertFalse(is_valid_svg_path("L10 10 L20 20 L30 30"))
        self.assertFalse(is_valid_svg_path("M10 10 20 20 30 30"))


class AutoFixTest(unittest.TestCase):
    def test_logo_category_is_flagged_for_crop(self) -> None:
        report = auto_fix_tree(
            _tree({"id": "logo", "visualCategory": "logo", "bounds": {"top": 1, "left": 2, "width": 10, "height": 5}})
        )
        logo = report.tree.children[0]
        self.assertTrue(logo.has_custom_visual)
        self.assertEqual(logo.extraction_action, "crop")
        self.assertEqual(logo.extraction_bounds, logo.bounds)
        self.assertEqual(report.converted, ["logo"])

    def test_large_broken_icon_is_cropped_small_one_kept(self) -> None:
        report = auto_fix_tree(
            _tree(
                {"id": "big", "iconName": "Star", "svgPath": "M1", "bounds": {"top": 0, "left": 0, "width": 5, "height": 2}},
                {"id": "tiny", "iconName": "Dot", "bounds": {"top": 0, "left": 0, "width": 2, "height": 2}},
                {
                    "id": "drawn",
                    "iconName": "Arrow",
                    "svgPath": "M5 12h14M12 5l7 7-7 7",
                    "bounds": {"top": 0, "left": 0, "width": 30, "height": 30},
                },
            )
        )
        flagged = {node.id: node.extraction_action for node in report.tree.children}
        self.assertEqual(flagged, {"big": "crop", "tiny": None, "drawn": None})

    def test_icon_size_uses_canvas_absolute_box(self) -> None:
        # 10% of a 30% wide parent is 3% of the canvas: below the crop threshold.
        report = auto_fix_tree(
            _tree(
                {
                    "id": "toolbar",
                    "bounds": {"top": 0, "left": 0, "width": 30, "height": 10},
                    "children": [
                        {"id": "gear", "iconName": "Gear", "bounds": {"top": 0, "left": 0, "width": 10, "height": 10}}
                    ],
                }
            )
        )
        gear = report.tree.children[0].children[0]
        self.assertIsNone(gear.extraction_action)

    def test_images_and_background_urls_are_flagged(self) -> None:
        report = auto_fix_tree(
            _tree(
                {"id": "pic", "type": "img", "bounds": {"top": 0, "left": 0, "width": 10, "height": 10}},
                {"id": "flag", "hasImage": True, "bounds": {"top": 0, "left": 0, "width": 10, "height": 10}},
                {
                    "id": "banner",
                    "styles": {"backgroundImage": "url(hero.jpg)"},
                    "bounds": {"top": 0, "left": 0, "width": 10, "height": 10},
                },
                {"id": "plain", "styles": {"background": "#fff"}, "bounds": {"top": 0, "left": 0, "width": 10, "height": 10}},
            )
        )
        self.assertEqual(report.converted, ["pic", "flag", "banner"])

    def test_node_without_bounds_is_skipped_with_note(self) -> None:
        report = auto_fix_tree(_tree({"id": "logo", "visualCategory": "logo"}))
        self.assertEqual(report.converted, [])
        self.assertEqual(len(report.skipped), 1)
        self.assertIn("logo", report.skipped[0])
        self.assertIsNone(report.tree.children[0].extraction_action)

    def test_pass_is_idempotent_and_pure(self) -> None:
        original = _tree({"id": "pic", "type": "img", "bounds": {"top": 0, "left": 0, "width": 10, "height": 10}})
        first = auto_fix_tree(original)
        second = auto_fix_tree(first.tree)
        self.assertEqual(second.converted, [])
        self.assertEqual(second.tree, first.tree)
        self.assertIsNone(original.children[0].extraction_action)


class CropCandidatesTest(unittest.TestCase):
    def test_requires_custom_visual_and_crop_action(self) -> None:
        tree = _tree(
            {"id": "both", "hasCustomVisual": True, "extractionAction": "crop", "bounds": {"top": 0, "left": 0, "width": 10, "height": 10}},
            {"id": "flag_only", "hasCustomVisual": True, "bounds": {"top": 0, "left": 0, "width": 10, "height": 10}},
            {"id": "action_only", "extractionAction": "crop", "bounds": {"top": 0, "left": 0, "width": 10, "height": 10}},
        )
        self.assertEqual([node.id for node, _ in crop_candidates(tree)], ["both"])

    def test_boxes_are_canvas_absolute(self) -> None:
        report = auto_fix_tree(
            _tree(
                {
                    "id": "section",
                    "bounds": {"top": 50, "left": 0, "width": 50, "height": 50},
                    "children": [
                        {"id": "logo", "visualCategory": "logo", "bounds": {"top": 0, "left": 50, "width": 50, "height": 50}}
                    ],
                }
            )
        )
        (node, box), = crop_candidates(report.tree)
        self.assertEqual(node.id, "logo")
        self.assertEqual(box, Bounds(top=50.0, left=25.0, width=25.0, height=25.0))


if __name__ == "__main__":
    unittest.main()
