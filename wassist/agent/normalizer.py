"""Repair pipeline turning raw planner output into a :class:`Plan`.

LLMs asked for JSON reliably produce a handful of malformations. Each repair
below is a pure ``str -> str`` function so it can be tested in isolation;
:func:`normalize_plan_text` chains them in a fixed order:

    strip fences → extract object → wrap bare steps → complete truncation → parse

and falls back to a more aggressive second pass before giving up with
:class:`PlanNormalizationError`.
"""

import json
import logging
import re
from typing import Any

from wassist.agent.plan import Plan, Step
from wassist.exceptions import PlanNormalizationError

logger = logging.getLogger(__name__)

_FENCE = re.compile(r"```[a-zA-Z]*[ \t]*\n?")
_BARE_STEPS = re.compile(r'"steps"\s*:\s*\[\s*"stepNumber"')
_STEP_KEY = re.compile(r'(?="stepNumber")')
_ELLIPSES = ("...", "…")
_CLOSERS = {"{": "}", "[": "]"}


def _scan(text: str) -> tuple[list[tuple[int, str]], bool]:
    """Return the structural characters of *text* with their positions.

    A string literal shows up as a single ``"`` token at its opening quote;
    its content is skipped. The flag tells whether *text* ends inside an
    unterminated string.
    """
    structural: list[tuple[int, str]] = []
    in_string = False
    escaped = False
    for i, ch in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            structural.append((i, ch))
            in_string = True
        elif not ch.isspace():
            structural.append((i, ch))
    return structural, in_string


def strip_code_fences(text: str) -> str:
    """Remove markdown code fences such as ```` ```json ````."""
    return _FENCE.sub("", text).strip()


def extract_braced(text: str) -> str:
    """Cut *text* down to the top-level JSON object.

    Prose before the first ``{`` is dropped. If the object closes, prose after
    its closing brace is dropped too; if it never closes the output was
    truncated and everything from the first ``{`` on is kept for repair.
    """
    start = text.find("{")
    if start < 0:
        raise PlanNormalizationError("no JSON object found", text)
    body = text[start:]
    depth = 0
    for i, ch in _scan(body)[0]:
        if ch in "{[":
            depth += 1
        elif ch in "}]":
            depth -= 1
            if depth == 0:
                return body[:i + 1]
    return body.rstrip()


def _matching_bracket(text: str, open_idx: int) -> int | None:
    depth = 0
    for i, ch in _scan(text)[0]:
        if i < open_idx:
            continue
        if ch in "{[":
            depth += 1
        elif ch in "}]":
            depth -= 1
            if depth == 0:
                return i
    return None


def has_bare_steps(text: str) -> bool:
    """Whether the ``steps`` array starts with a key instead of an object."""
    return _BARE_STEPS.search(text) is not None


def repair_bare_steps(text: str) -> str:
    """Wrap bare ``"stepNumber": ...`` runs of the steps array into objects.

    ``"steps": ["stepNumber": 1, "tool": "x", "stepNumber": 2, ...]`` becomes
    ``"steps": [{"stepNumber": 1, "tool": "x"}, {"stepNumber": 2, ...}]``.
    """
    match = _BARE_STEPS.search(text)
    if match is None:
        return text
    open_idx = text.index("[", match.start())
    close_idx = _matching_bracket(text, open_idx)
    end = close_idx if close_idx is not None else len(text)
    content = text[open_idx + 1:end]

    fragments = []
    for fragment in _STEP_KEY.split(content):
        fragment = fragment.strip().rstrip(",").strip()
        if fragment:
            fragments.append("{" + fragment + "}")
    repaired = "[" + ", ".join(fragments)
    if close_idx is None:
        # Truncated inside the array; the last fragment may be cut short, so
        # leave it open for truncation repair rather than closing it here.
        return text[:open_idx] + repaired[:-1]
    return text[:open_idx] + repaired + text[close_idx:]


def is_truncated(text: str) -> bool:
    stripped = text.rstrip()
    return any(e in stripped for e in _ELLIPSES) or not stripped.endswith("}")


def strip_ellipses(text: str) -> str:
    """Drop ``...`` / ``…`` artifacts that sit outside string literals."""
    structural = {i for i, _ in _scan(text)[0]}
    out: list[str] = []
    i = 0
    while i < len(text):
        if i in structural:
            for marker in _ELLIPSES:
                if text.startswith(marker, i):
                    i += len(marker)
                    break
            else:
                out.append(text[i])
                i += 1
        else:
            out.append(text[i])
            i += 1
    return "".join(out)


def remove_trailing_commas(text: str) -> str:
    """Remove commas directly followed by a closing brace or bracket."""
    structural, _ = _scan(text)
    drop = {
        idx for (idx, ch), (_, nxt) in zip(structural, structural[1:])
        if ch == "," and nxt in "}]"
    }
    if structural and structural[-1][1] == ",":
        drop.add(structural[-1][0])
    return "".join(ch for i, ch in enumerate(text) if i not in drop)


def close_open_delimiters(text: str) -> str:
    """Append the closers missing from *text*, innermost first."""
    structural, in_string = _scan(text)
    stack: list[str] = []
    for _, ch in structural:
        if ch in _CLOSERS:
            stack.append(_CLOSERS[ch])
        elif ch in "}]" and stack and stack[-1] == ch:
            stack.pop()
    suffix = '"' if in_string else ""
    tokens = [ch for _, ch in structural]
    if tokens and tokens[-1] == ":":
        suffix = " null"
    elif tokens[-2:-1] and tokens[-1] == '"' and tokens[-2] in ",{" and stack and stack[-1] == "}":
        # Cut right after an object key.
        suffix += ": null"
    return text + suffix + "".join(reversed(stack))


def complete_truncated(text: str) -> str:
    """Close a plan cut off mid-object and clean the leftovers."""
    if not is_truncated(text):
        return text
    text = strip_ellipses(text).rstrip()
    text = remove_trailing_commas(text).rstrip()
    text = close_open_delimiters(text)
    return remove_trailing_commas(text)


def parse_json(text: str) -> dict[str, Any]:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise PlanNormalizationError(f"invalid JSON ({e.msg} at {e.pos})", text) from e
    if not isinstance(data, dict):
        raise PlanNormalizationError(f"expected an object, got {type(data).__name__}", text)
    return data


def wrap_bare_steps_simple(text: str) -> str:
    """Second-pass repair wrapping the whole bare steps array in one object."""
    if not has_bare_steps(text):
        return text
    text = re.sub(r'"steps"\s*:\s*\[\s*', '"steps": [{', text, count=1)
    if re.search(r'\]\s*,?\s*"reasoning"', text):
        return re.sub(r'\s*\]\s*,?\s*"reasoning"', '}], "reasoning"', text, count=1)
    return re.sub(r'\s*\]\s*\}\s*$', '}]}', text, count=1)


def _coerce_step_number(value: Any, default: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return number if number > 0 else default


def normalize_step(raw: Any, index: int) -> Step:
    """Fill defaults for one step; *index* is 0-based."""
    data = raw if isinstance(raw, dict) else {}
    parameters = data.get("parameters")
    reasoning = data.get("reasoning")
    return Step(
        step_number=_coerce_step_number(data.get("stepNumber"), index + 1),
        tool=data.get("tool") or None,
        action=data.get("action") or f"Step {index + 1}",
        parameters=dict(parameters) if isinstance(parameters, dict) else {},
        reasoning=reasoning if isinstance(reasoning, str) else None,
    )


def normalize_plan(data: dict[str, Any]) -> Plan:
    """Build a :class:`Plan` from parsed planner JSON, filling step defaults."""
    raw_steps = data.get("steps")
    steps = tuple(
        normalize_step(raw, i)
        for i, raw in enumerate(raw_steps if isinstance(raw_steps, list) else [])
    )
    reasoning = data.get("reasoning")
    return Plan(
        is_multi_step=bool(data.get("isMultiStep", data.get("is_multi_step", False))),
        steps=steps,
        fallback=bool(data.get("fallback", False)),
        reasoning=reasoning if isinstance(reasoning, str) else None,
    )


def repair_plan_text(raw: str) -> dict[str, Any]:
    """Run the repair pipeline and return the parsed plan object."""
    text = extract_braced(strip_code_fences(raw))
    if has_bare_steps(text):
        logger.debug("Planner returned bare steps, wrapping them into objects")
        text = repair_bare_steps(text)
    if is_truncated(text):
        logger.debug("Planner output looks truncated, completing it")
        text = complete_truncated(text)
    text = remove_trailing_commas(text)
    try:
        return parse_json(text)
    except PlanNormalizationError as first_error:
        logger.debug(f"First parse failed ({first_error}), trying aggressive repair")

    aggressive = extract_braced(strip_code_fences(raw))
    aggressive = wrap_bare_steps_simple(remove_trailing_commas(aggressive))
    aggressive = remove_trailing_commas(complete_truncated(aggressive))
    return parse_json(aggressive)


def normalize_plan_text(raw: str) -> Plan:
    """Parse raw planner output into a :class:`Plan`.

    Raises:
        PlanNormalizationError: if no repair produced a parseable object.
    """
    return normalize_plan(repair_plan_text(raw))
