"""Tests for request routing."""

from __future__ import annotations

import json
import tempfile
import unittest

from helpers import FakeCodeModel, image_file, run_context, video_file

from uigen.errors import CatastrophicFailure, ConfigurationError
from uigen.nodes.router import RouteRequest, heuristic_strategy, sanitize_strategy
from uigen.types import ExecutionPlan, GeneratedAssetRequest, PipelineInput, PipelineMode, RoutingStrategy


class HeuristicStrategyTest(unittest.TestCase):
    def test_screenshot_without_code_is_create(self) -> None:
        strategy = heuristic_strategy(PipelineInput(files=(image_file(),), instructions="Replicate this screenshot"))
        self.assertIs(strategy.mode, PipelineMode.CREATE)
        self.assertEqual(strategy.execution_plan.measure_pixels, [0])
        self.assertEqual(strategy.execution_plan.generate_assets, [])
        self.assertEqual(strategy.base_source, "file_0")

    def test_instructions_only_is_generate(self) -> None:
        strategy = heuristic_strategy(PipelineInput(instructions="A landing page for a coffee shop"))
        self.assertIs(strategy.mode, PipelineMode.GENERATE)
        self.assertEqual(strategy.execution_plan.measure_pixels, [])

    def test_code_without_files_is_edit(self) -> None:
        strategy = heuristic_strategy(PipelineInput(instructions="Make it blue", current_code="<div />"))
        self.assertIs(strategy.mode, PipelineMode.EDIT)
        self.assertTrue(strategy.execution_plan.preserve_existing_code)
        self.assertEqual(strategy.base_source, "codebase")

    def test_material_photo_becomes_texture_not_layout(self) -> None:
        request = PipelineInput(
            files=(image_file("oak.jpg"),),
            instructions="Use this photo as a texture for the buttons, wooden style",
            current_code="<button data-id=\"cta\" />",
        )
        strategy = heuristic_strategy(request)
        plan = strategy.execution_plan
        self.assertIs(strategy.mode, PipelineMode.MERGE)
        self.assertEqual(plan.measure_pixels, [])
        self.assertEqual([asset.name for asset in plan.generate_assets], ["button_bg"])
        self.assertEqual(plan.generate_assets[0].source, "reference_image")
        self.assertEqual(plan.generate_assets[0].target_element, "button")
        self.assertEqual(strategy.file_roles, ["material_reference"])

    def test_material_words_request_text_only_assets(self) -> None:
        strategy = heuristic_strategy(PipelineInput(instructions="A marble hero section"))
        assets = strategy.execution_plan.generate_assets
        self.assertEqual([asset.name for asset in assets], ["hero_bg"])
        self.assertEqual(assets[0].source, "text_only")
        self.assertEqual(assets[0].vibe, "marble")

    def test_videos_go_to_physics(self) -> None:
        strategy = heuristic_strategy(
            PipelineInput(files=(image_file(), video_file()), instructions="Recreate this design")
        )
        self.assertEqual(strategy.execution_plan.measure_pixels, [0])
        self.assertEqual(strategy.execution_plan.extract_physics, [1])


class SanitizeStrategyTest(unittest.TestCase):
    def test_out_of_range_and_mistyped_indices_are_dropped(self) -> None:
        request = PipelineInput(files=(image_file(), video_file()), instructions="x")
        strategy = RoutingStrategy.from_dict(
            {
                "mode": "CREATE",
                "execution_plan": {"measure_pixels": [0, 1, 7], "extract_physics": [0, 1], "generate_assets": []},
            }
        )
        plan = sanitize_strategy(strategy, request).execution_plan
        self.assertEqual(plan.measure_pixels, [0])
        self.assertEqual(plan.extract_physics, [1])

    def test_generate_mode_has_no_vision_work(self) -> None:
        strategy = RoutingStrategy.from_dict({"mode": "CREATE", "execution_plan": {"measure_pixels": [0]}})
        sanitized = sanitize_strategy(strategy, PipelineInput(instructions="hi"))
        self.assertIs(sanitized.mode, PipelineMode.GENERATE)
        self.assertEqual(sanitized.execution_plan.measure_pixels, [])

    def test_reference_assets_without_images_become_text_only(self) -> None:
        strategy = RoutingStrategy.from_dict(
            {
                "mode": "EDIT",
                "execution_plan": {
                    "generate_assets": [
                        {"name": "card_bg", "description": "linen", "source": "reference_image"},
                        {"name": "card_bg", "description": "duplicate"},
                    ]
                },
            }
        )
        sanitized = sanitize_strategy(strategy, PipelineInput(instructions="x", current_code="<div />"))
        assets = sanitized.execution_plan.generate_assets
        self.assertEqual(len(assets), 1)
        self.assertEqual(assets[0].source, "text_only")

    def test_generate_mode_drops_planned_assets(self) -> None:
        request = PipelineInput(instructions="build a dashboard with wooden buttons")
        sanitized = sanitize_strategy(heuristic_strategy(request), request)
        self.assertIs(sanitized.mode, PipelineMode.GENERATE)
        self.assertEqual(sanitized.execution_plan.generate_assets, [])

    def test_incoming_asset_requests_are_not_mutated(self) -> None:
        original = GeneratedAssetRequest(name="card_bg", description="linen", source="reference_image")
        strategy = RoutingStrategy(mode=PipelineMode.EDIT, execution_plan=ExecutionPlan(generate_assets=[original]))
        sanitized = sanitize_strategy(strategy, PipelineInput(instructions="x", current_code="<div />"))
        self.assertEqual(sanitized.execution_plan.generate_assets[0].source, "text_only")
        self.assertEqual(original.source, "reference_image")


class RouteRequestTest(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.logger, self.events = run_context(self._tmp.name)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _router(self, model: FakeCodeModel, use_model: bool = True) -> RouteRequest:
        return RouteRequest(run_id="r1", logger=self.logger, events=self.events, code_model=model, use_model=use_model)

    async def test_heuristic_routing_skips_the_model(self) -> None:
        model = FakeCodeModel()
        strategy = await self._router(model, use_model=False).route(PipelineInput(instructions="A pricing page"))
        self.assertIs(strategy.mode, PipelineMode.GENERATE)
        self.assertEqual(model.route_prompts, [])

    async def test_model_plan_is_used_and_sanitized(self) -> None:
        model = FakeCodeModel(
            route=json.dumps({"mode": "create", "execution_plan": {"measure_pixels": [0, 3]}})
        )
        request = PipelineInput(files=(image_file(),), instructions="Clone this")
        strategy = await self._router(model).route(request)
        self.assertIs(strategy.mode, PipelineMode.CREATE)
        self.assertEqual(strategy.execution_plan.measure_pixels, [0])
        self.assertIn("Clone this", model.route_prompts[0])

    async def test_unparseable_answer_falls_back_with_warning(self) -> None:
        model = FakeCodeModel(route="I think you want CREATE mode.")
        request = PipelineInput(files=(image_file(),), instructions="Replicate this")
        strategy = await self._router(model).route(request)
        self.assertIs(strategy.mode, PipelineMode.CREATE)
        self.assertEqual(strategy.execution_plan.measure_pixels, [0])
        self.assertTrue(any("Router response could not be parsed" in item for item in self.events.warnings))

    async def test_service_failure_is_catastrophic(self) -> None:
        model = FakeCodeModel(route=RuntimeError("503 upstream"))
        with self.assertRaises(CatastrophicFailure) as ctx:
            await self._router(model).route(PipelineInput(instructions="x"))
        self.assertEqual(ctx.exception.stage, "router")

    async def test_configuration_error_propagates(self) -> None:
        model = FakeCodeModel(route=ConfigurationError("no key"))
        with self.assertRaises(ConfigurationError):
            await self._router(model).route(PipelineInput(instructions="x"))


if __name__ == "__main__":
    unittest.main()
