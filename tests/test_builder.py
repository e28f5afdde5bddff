"""Tests for code assembly."""

from __future__ import annotations

import json
import tempfile
import unittest

from helpers import DEFAULT_CODE, SAMPLE_LAYOUT, FakeCodeModel, image_file, run_context

from uigen.errors import CatastrophicFailure
from uigen.nodes.builder import (
    APP_PATH,
    DEFAULT_STYLES,
    INDEX_PATH,
    STYLES_PATH,
    AssembleCode,
    BuildRequest,
    literal_colors,
    parse_builder_output,
)
from uigen.nodes.surveyor import parse_layout
from uigen.types import (
    CanvasConfig,
    ExecutionPlan,
    HealingContext,
    PipelineInput,
    PipelineMode,
    RegionDiscrepancy,
    RoutingStrategy,
    ThemeSpec,
    VisualManifest,
)


def _manifest() -> VisualManifest:
    tree, _ = parse_layout(json.dumps(SAMPLE_LAYOUT))
    return VisualManifest(file_index=0, canvas=CanvasConfig(1440, 900), global_theme=ThemeSpec(dom_tree=tree))


def _strategy(mode: PipelineMode, preserve: bool = False) -> RoutingStrategy:
    return RoutingStrategy(mode=mode, execution_plan=ExecutionPlan(preserve_existing_code=preserve))


class ParseBuilderOutputTest(unittest.TestCase):
    def test_marked_files_are_split_and_fences_removed(self) -> None:
        files = parse_builder_output(
            DEFAULT_CODE + "--- FILE: components/Card.tsx ---\n```tsx\nexport const Card = () => null;\n```\n"
        )
        paths = [item.path for item in files]
        self.assertEqual(paths, [APP_PATH, STYLES_PATH, "/src/components/Card.tsx", INDEX_PATH])
        self.assertTrue(files[0].content.startswith("export default function App()"))
        self.assertNotIn("```", files[1].content)

    def test_unmarked_answer_is_app_and_styles_default(self) -> None:
        files = parse_builder_output("```tsx\nexport default function App() { return null; }\n```")
        self.assertEqual(files[0].content, "export default function App() { return null; }\n")
        self.assertEqual(files[1].content, DEFAULT_STYLES + "\n")

    def test_model_supplied_index_is_replaced(self) -> None:
        files = parse_builder_output("--- FILE: App.tsx ---\nconst App = 1;\n--- FILE: index.tsx ---\nbroken();\n")
        index = next(item for item in files if item.path == INDEX_PATH)
        self.assertNotIn("broken", index.content)
        self.assertIn("createRoot", index.content)


class LiteralColorsTest(unittest.TestCase):
    def test_colours_are_collected_once_in_order(self) -> None:
        self.assertEqual(literal_colors([_manifest(), _manifest()]), ["#101010", "#fafafa"])


class AssembleCodeTest(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.logger, self.events = run_context(self._tmp.name)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _builder(self, model: FakeCodeModel, attach_image: bool = False) -> AssembleCode:
        return AssembleCode(
            run_id="b1", logger=self.logger, events=self.events, code_model=model, attach_image=attach_image
        )

    async def test_create_prompt_carries_manifest_and_static_physics(self) -> None:
        model = FakeCodeModel()
        files = await self._builder(model).assemble_code(
            BuildRequest(strategy=_strategy(PipelineMode.CREATE), instructions="Replicate", manifests=[_manifest()])
        )

        prompt = model.code_prompts[0]
        self.assertIn("### MANIFESTS", prompt)
        self.assertIn("#101010", prompt)
        self.assertIn("STATIC", prompt)
        self.assertEqual([item.path for item in files], [APP_PATH, STYLES_PATH, INDEX_PATH])
        self.assertEqual(self.events.warnings, [])

    async def test_generate_mode_drops_visual_inputs(self) -> None:
        model = FakeCodeModel()
        await self._builder(model, attach_image=True).assemble_code(
            BuildRequest(
                strategy=_strategy(PipelineMode.GENERATE),
                instructions="A pricing page",
                manifests=[_manifest()],
                image=(b"png", "image/png"),
            )
        )
        prompt = model.code_prompts[0]
        self.assertNotIn("### MANIFESTS", prompt)
        self.assertNotIn("### PHYSICS", prompt)
        self.assertIn("GENERATE", prompt)
        self.assertIsNone(model.code_images[0])

    async def test_reference_image_is_attached_only_when_enabled(self) -> None:
        request = BuildRequest(strategy=_strategy(PipelineMode.CREATE), image=(b"png", "image/png"))
        plain, attaching = FakeCodeModel(), FakeCodeModel()
        await self._builder(plain).assemble_code(request)
        await self._builder(attaching, attach_image=True).assemble_code(request)
        self.assertIsNone(plain.code_images[0])
        self.assertEqual(attaching.code_images[0], (b"png", "image/png"))

    async def test_existing_code_is_included_for_edits(self) -> None:
        model = FakeCodeModel()
        await self._builder(model).assemble_code(
            BuildRequest(
                strategy=_strategy(PipelineMode.EDIT, preserve=True),
                instructions="Make the header sticky",
                current_code='<header data-id="header" />',
            )
        )
        self.assertIn("### EXISTING CODE (EDIT)", model.code_prompts[0])
        self.assertIn('<header data-id="header" />', model.code_prompts[0])

    async def test_tree_less_manifest_adds_reference_section(self) -> None:
        model = FakeCodeModel()
        manifest = VisualManifest(file_index=0, canvas=CanvasConfig.fallback())
        await self._builder(model).assemble_code(BuildRequest(strategy=_strategy(PipelineMode.CREATE), manifests=[manifest]))
        self.assertIn("### REFERENCE", model.code_prompts[0])

    async def test_tree_less_manifest_sends_reference_image_to_capable_model(self) -> None:
        model = FakeCodeModel()
        manifest = VisualManifest(file_index=0, canvas=CanvasConfig.fallback())
        request = BuildRequest(strategy=_strategy(PipelineMode.CREATE), manifests=[manifest], image=(b"png", "image/png"))
        await self._builder(model, attach_image=True).assemble_code(request)
        self.assertEqual(model.code_images[0], (b"png", "image/png"))
        self.assertIn("reproduce the attached reference image", model.code_prompts[0])
        self.assertEqual(self.events.warnings, [])

    async def test_tree_less_manifest_without_image_support_is_a_warning(self) -> None:
        model = FakeCodeModel()
        manifest = VisualManifest(file_index=0, canvas=CanvasConfig.fallback())
        request = BuildRequest(strategy=_strategy(PipelineMode.CREATE), manifests=[manifest], image=(b"png", "image/png"))
        await self._builder(model).assemble_code(request)
        self.assertIsNone(model.code_images[0])
        self.assertIn("no image is attached", model.code_prompts[0])
        self.assertTrue(any("without any visual reference" in item for item in self.events.warnings))

    async def test_healing_context_lists_regions(self) -> None:
        model = FakeCodeModel()
        context = HealingContext(
            iteration=1,
            previous_fidelity=71.5,
            target_fidelity=95.0,
            discrepancies=[RegionDiscrepancy(node_id="header", score=60.0, styles={"color": "#fafafa"})],
        )
        await self._builder(model).assemble_code(
            BuildRequest(strategy=_strategy(PipelineMode.EDIT, preserve=True), current_code="<div />", healing=context)
        )
        prompt = model.code_prompts[0]
        self.assertIn("### HEALING CONTEXT", prompt)
        self.assertIn("previous fidelity 71.5%", prompt)
        self.assertIn("header (60.0%)", prompt)

    async def test_model_failure_is_catastrophic(self) -> None:
        with self.assertRaises(CatastrophicFailure) as ctx:
            await self._builder(FakeCodeModel(code=[RuntimeError("timeout")])).assemble_code(
                BuildRequest(strategy=_strategy(PipelineMode.GENERATE))
            )
        self.assertEqual(ctx.exception.stage, "builder")

    async def test_empty_app_is_catastrophic(self) -> None:
        with self.assertRaises(CatastrophicFailure):
            await self._builder(FakeCodeModel(code=["--- FILE: styles.css ---\nbody {}\n"])).assemble_code(
                BuildRequest(strategy=_strategy(PipelineMode.GENERATE))
            )

    async def test_missing_colours_and_assets_are_reported(self) -> None:
        code = "--- FILE: App.tsx ---\nexport default function App() { return <div />; }\n"
        await self._builder(FakeCodeModel(code=[code])).assemble_code(
            BuildRequest(
                strategy=_strategy(PipelineMode.CREATE),
                manifests=[_manifest()],
                assets={"logo": "https://cdn.test/crop_logo.png"},
            )
        )
        self.assertEqual(len(self.events.warnings), 2)
        self.assertIn("#101010", self.events.warnings[0])
        self.assertIn("logo", self.events.warnings[1])

    def test_request_from_state_prefers_extracted_assets(self) -> None:
        request = PipelineInput(files=(image_file(),), instructions="Replicate")
        build = AssembleCode.request_from_state(
            {
                "request": request,
                "strategy": _strategy(PipelineMode.CREATE),
                "manifests": [_manifest()],
                "generated_assets": {"hero_bg": "gen://hero", "logo": "gen://logo"},
                "extracted_assets": {"logo": "crop://logo"},
            }
        )
        self.assertEqual(build.assets, {"hero_bg": "gen://hero", "logo": "crop://logo"})
        self.assertEqual(build.image[1], "image/png")


if __name__ == "__main__":
    unittest.main()
