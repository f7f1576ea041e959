"""Tests for the planner output repair pipeline."""

import json

import pytest

from wassist.agent.normalizer import (
    close_open_delimiters,
    complete_truncated,
    extract_braced,
    has_bare_steps,
    normalize_plan,
    normalize_plan_text,
    parse_json,
    remove_trailing_commas,
    repair_bare_steps,
    strip_code_fences,
    strip_ellipses,
    wrap_bare_steps_simple,
)
from wassist.agent.plan import Plan, Step
from wassist.exceptions import PlanNormalizationError


# ---------------------------------------------------------------------------
# Individual stages
# ---------------------------------------------------------------------------


class TestStripCodeFences:
    def test_json_fence(self):
        assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_plain_fence(self):
        assert strip_code_fences('```\n{"a": 1}\n```') == '{"a": 1}'

    def test_no_fence(self):
        assert strip_code_fences('  {"a": 1} ') == '{"a": 1}'


class TestExtractBraced:
    def test_drops_surrounding_prose(self):
        assert extract_braced('Here is the plan: {"a": {"b": 1}} hope it helps') == '{"a": {"b": 1}}'

    def test_braces_inside_strings_are_ignored(self):
        assert extract_braced('{"action": "use } and {"} trailing') == '{"action": "use } and {"}'

    def test_unclosed_object_is_kept(self):
        assert extract_braced('ok {"a": [1, 2') == '{"a": [1, 2'

    def test_no_braces_raises(self):
        with pytest.raises(PlanNormalizationError):
            extract_braced("I can't plan this")


class TestRepairBareSteps:
    def test_detects_bare_steps(self):
        assert has_bare_steps('{"steps": [ "stepNumber": 1]}')
        assert not has_bare_steps('{"steps": [{"stepNumber": 1}]}')

    def test_wraps_each_step(self):
        text = '{"steps": ["stepNumber": 1, "action": "a", "stepNumber": 2, "action": "b"]}'
        repaired = repair_bare_steps(text)
        assert json.loads(repaired) == {"steps": [
            {"stepNumber": 1, "action": "a"},
            {"stepNumber": 2, "action": "b"},
        ]}

    def test_well_formed_text_unchanged(self):
        text = '{"steps": [{"stepNumber": 1}]}'
        assert repair_bare_steps(text) == text

    def test_truncated_array_leaves_last_step_open(self):
        repaired = repair_bare_steps('{"steps": ["stepNumber": 1, "action": "a", "stepNumber": 2, "action": "b')
        assert repaired.endswith('{"stepNumber": 2, "action": "b')
        assert json.loads(complete_truncated(repaired))["steps"][1] == {"stepNumber": 2, "action": "b"}

    def test_simple_second_pass_wraps_whole_array(self):
        text = '{"isMultiStep": true, "steps": ["stepNumber": 1, "action": "a"]}'
        assert json.loads(wrap_bare_steps_simple(text))["steps"] == [{"stepNumber": 1, "action": "a"}]


class TestCompleteTruncated:
    def test_closes_in_nesting_order(self):
        assert close_open_delimiters('{"a": [{"b": 1') == '{"a": [{"b": 1}]}'

    def test_closes_open_string(self):
        assert json.loads(close_open_delimiters('{"a": "unfinished')) == {"a": "unfinished"}

    def test_dangling_key_gets_null(self):
        assert json.loads(close_open_delimiters('{"a": 1, "b":')) == {"a": 1, "b": None}
        assert json.loads(close_open_delimiters('{"a": 1, "b"')) == {"a": 1, "b": None}

    def test_strips_ellipses_outside_strings_only(self):
        assert strip_ellipses('{"a": "wait..."}...') == '{"a": "wait..."}'
        assert strip_ellipses('{"a": 1, …') == '{"a": 1, '

    def test_removes_trailing_commas(self):
        assert remove_trailing_commas('{"a": [1, 2,], "b": "x, ]",}') == '{"a": [1, 2], "b": "x, ]"}'

    def test_keeps_commas_between_strings(self):
        assert remove_trailing_commas('["a", "b"]') == '["a", "b"]'

    def test_complete_object_untouched(self):
        assert complete_truncated('{"a": 1}') == '{"a": 1}'


class TestParseJson:
    def test_rejects_non_objects(self):
        with pytest.raises(PlanNormalizationError):
            parse_json("[1, 2]")

    def test_rejects_invalid_json(self):
        with pytest.raises(PlanNormalizationError) as exc_info:
            parse_json('{"a": }')
        assert exc_info.value.raw == '{"a": }'


# ---------------------------------------------------------------------------
# Step defaults
# ---------------------------------------------------------------------------


class TestNormalizePlan:
    def test_fills_step_defaults(self):
        plan = normalize_plan({"isMultiStep": True, "steps": [{}, {"tool": "create_image"}]})
        assert plan.steps == (
            Step(step_number=1, action="Step 1"),
            Step(step_number=2, action="Step 2", tool="create_image"),
        )

    def test_coerces_bad_shapes(self):
        plan = normalize_plan({"isMultiStep": True, "steps": {"not": "a list"}})
        assert plan.steps == ()
        step = normalize_plan({"steps": [{"stepNumber": "x", "parameters": "nope"}]}).steps[0]
        assert step.step_number == 1
        assert step.parameters == {}

    def test_keeps_reasoning(self):
        plan = normalize_plan({"isMultiStep": False, "reasoning": "one action"})
        assert plan == Plan(is_multi_step=False, reasoning="one action")

    def test_idempotent(self):
        raw = {
            "isMultiStep": True,
            "steps": [
                {"stepNumber": 1, "tool": None, "action": "Write a poem", "parameters": {}},
                {"stepNumber": 2, "tool": "text_to_speech", "action": "Read it", "parameters": {"text": "{{step1}}"}},
            ],
        }
        once = normalize_plan(raw)
        twice = normalize_plan(once.to_dict())
        assert once == twice


# ---------------------------------------------------------------------------
# Full pipeline
# ---------------------------------------------------------------------------


class TestNormalizePlanText:
    def test_well_formed_plan_unchanged(self):
        raw = json.dumps({
            "isMultiStep": True,
            "steps": [
                {"stepNumber": 1, "tool": "create_image", "action": "Draw a cat", "parameters": {"prompt": "cat"}},
                {"stepNumber": 2, "tool": None, "action": "Describe it", "parameters": {}},
            ],
        })
        plan = normalize_plan_text(raw)
        assert normalize_plan_text(json.dumps(plan.to_dict())) == plan

    def test_bare_steps(self):
        raw = ('{"isMultiStep": true, "steps": [ "stepNumber": 1, "tool": "gemini_image", "action": "draw a cat", '
               '"stepNumber": 2, "tool": null, "action": "describe it" ]}')
        plan = normalize_plan_text(raw)
        assert len(plan.steps) == 2
        assert (plan.steps[0].step_number, plan.steps[0].tool, plan.steps[0].action) == (1, "gemini_image", "draw a cat")
        assert (plan.steps[1].step_number, plan.steps[1].tool, plan.steps[1].action) == (2, None, "describe it")

    def test_truncation_with_ellipsis(self):
        raw = ('{"isMultiStep": true, "steps": [{"stepNumber": 1, "tool": "create_image", "action": "Draw a cat", '
               '"parameters": {"prompt": "a cat"}}, {"stepNumber": 2, "tool": null, "action": "Describe it", '
               '"parameters": {"style": "short"...')
        plan = normalize_plan_text(raw)
        assert plan.is_multi_step is True
        assert [s.action for s in plan.steps] == ["Draw a cat", "Describe it"]
        assert plan.steps[1].parameters == {"style": "short"}

    def test_fenced_and_trailing_commas(self):
        raw = '```json\n{"isMultiStep": false, "steps": [],}\n```'
        assert normalize_plan_text(raw) == Plan(is_multi_step=False)

    def test_unrecoverable_raises(self):
        with pytest.raises(PlanNormalizationError):
            normalize_plan_text("Sorry, I can only help with single requests.")
