"""Tests for the typed step models."""
import pytest
from pydantic import ValidationError

from rpa_agent.constants import StepName, StepSource
from rpa_agent.steps.models import (
    STEP_ARGS_MODELS,
    ClickStep,
    FillStep,
    MouseStep,
    RunStepsResult,
    SnapshotStep,
    StepResult,
    build_step,
    parse_steps,
)
from rpa_agent.utils.logging import get_logger

logger = get_logger("test.models")


class TestBuildStep:
    def test_name_selects_model(self):
        logger.info("Testing step construction", emoji_key="test")
        step = build_step("browser.fill", {"target": {"a11y_node_id": "n0.2"}, "value": "x"}, source=StepSource.SCRIPT)

        assert isinstance(step, FillStep)
        assert step.args.target.a11y_node_id == "n0.2"
        assert step.meta.source == StepSource.SCRIPT
        assert step.id

    def test_unknown_name_is_rejected(self):
        with pytest.raises(ValidationError):
            build_step("browser.teleport", {})

    def test_wrong_args_shape_is_rejected(self):
        with pytest.raises(ValidationError):
            build_step("browser.goto", {"href": "https://example.com"})

    def test_steps_are_immutable(self):
        step = build_step("browser.goto", {"url": "https://example.com"})
        with pytest.raises(ValidationError):
            step.args.url = "https://other.example"

    def test_every_step_name_has_an_args_model(self):
        assert set(STEP_ARGS_MODELS) == {name.value for name in StepName}


class TestLegacyTargets:
    def test_top_level_node_id_is_merged(self):
        step = build_step("browser.click", {"a11yNodeId": "n0.1"})

        assert isinstance(step, ClickStep)
        assert step.args.target.a11y_node_id == "n0.1"

    def test_top_level_hint_is_merged(self):
        step = build_step("browser.click", {"a11y_hint": {"role": "button", "name": "Action A"}})
        assert step.args.target.a11y_hint.to_query() == {"role": "button", "name": "Action A"}

    def test_target_fields_win_over_legacy(self):
        step = build_step("browser.click", {"a11y_node_id": "legacy", "target": {"a11yNodeId": "n0.3"}})
        assert step.args.target.a11y_node_id == "n0.3"

    def test_legacy_and_target_fields_combine(self):
        step = build_step(
            "browser.click",
            {"a11y_hint": {"name": "Save"}, "target": {"selector": "#save"}},
        )
        assert step.args.target.selector == "#save"
        assert step.args.target.a11y_hint.name == "Save"


class TestArgs:
    def test_snapshot_defaults(self):
        step = build_step("browser.snapshot")
        assert isinstance(step, SnapshotStep)
        assert step.args.include_a11y is True
        assert step.args.focus_only is False

    def test_snapshot_accepts_camel_case(self):
        assert build_step("browser.snapshot", {"includeA11y": False}).args.include_a11y is False

    def test_mouse_delta_alias(self):
        step = build_step("browser.mouse", {"action": "wheel", "x": 1, "y": 2, "deltaY": 120})
        assert isinstance(step, MouseStep)
        assert step.args.delta_y == 120

    def test_scroll_defaults(self):
        step = build_step("browser.scroll")
        assert step.args.direction == "down"
        assert step.args.amount == 600

    def test_extra_keys_are_rejected(self):
        with pytest.raises(ValidationError):
            build_step("browser.press_key", {"key": "Enter", "repeat": 3})

    def test_click_schema_uses_aliases(self):
        schema = STEP_ARGS_MODELS["browser.click"].model_json_schema()
        assert "target" in schema["properties"]
        assert "a11yNodeId" in schema["$defs"]["Target"]["properties"]


class TestParseSteps:
    def test_parse_mixed_list(self):
        steps = parse_steps([
            {"name": "browser.goto", "args": {"url": "https://example.com"}},
            {"id": "fixed", "name": "browser.snapshot", "args": {}},
            {"name": "browser.go_back"},
        ])

        assert [step.name for step in steps] == ["browser.goto", "browser.snapshot", "browser.go_back"]
        assert steps[1].id == "fixed"
        assert steps[0].id != steps[2].id


class TestResults:
    def test_result_dicts(self):
        ok = StepResult.success("s1", {"tab_id": "t"})
        failed = StepResult.failure("s2", {"code": "ERR_NOT_FOUND", "message": "target not found"})
        run = RunStepsResult(ok=False, results=[ok, failed])

        assert ok.to_dict() == {"step_id": "s1", "ok": True, "data": {"tab_id": "t"}}
        assert failed.to_dict()["error"]["code"] == "ERR_NOT_FOUND"
        assert run.to_dict()["results"][1]["ok"] is False
