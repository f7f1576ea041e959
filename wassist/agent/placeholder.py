"""Substitution of ``{{stepN}}`` references in step parameters.

``{{step1}}`` stands for step 1's primary output (its media URL, or else its
text) and ``{{step1.imageUrl}}`` for one field of its data. A string that is
exactly one placeholder takes the referenced value as is; placeholders
embedded in longer strings are interpolated as text.
"""

import re
from typing import Any, Mapping

from wassist.agent.context import StepResult, StepStatus
from wassist.exceptions import UnresolvedPlaceholderError

PLACEHOLDER = re.compile(r"\{\{\s*step(\d+)(?:\.([A-Za-z_][\w-]*))?\s*\}\}")


def _lookup(match: re.Match, step_results: Mapping[int, StepResult]) -> Any:
    placeholder = match.group(0)
    step_number = int(match.group(1))
    field = match.group(2)

    result = step_results.get(step_number)
    if result is None:
        raise UnresolvedPlaceholderError(placeholder, step_number, "has not run")
    if result.status != StepStatus.SUCCESS:
        raise UnresolvedPlaceholderError(placeholder, step_number, f"is {result.status.value}")

    if field is None:
        value = result.primary_output()
    elif field in result.data:
        value = result.data[field]
    elif field == "text" and result.text is not None:
        value = result.text
    else:
        raise UnresolvedPlaceholderError(placeholder, step_number, f"has no field '{field}'")
    if value is None:
        raise UnresolvedPlaceholderError(placeholder, step_number, "produced no output")
    return value


def _resolve_string(value: str, step_results: Mapping[int, StepResult]) -> Any:
    whole = PLACEHOLDER.fullmatch(value.strip())
    if whole is not None:
        return _lookup(whole, step_results)
    return PLACEHOLDER.sub(lambda m: str(_lookup(m, step_results)), value)


def resolve_placeholders(value: Any, step_results: Mapping[int, StepResult]) -> Any:
    """Return a copy of *value* with every step reference substituted.

    Raises:
        UnresolvedPlaceholderError: a reference points at a step that is
            missing, failed, skipped, or lacks the requested field.
    """
    if isinstance(value, str):
        return _resolve_string(value, step_results)
    if isinstance(value, dict):
        return {k: resolve_placeholders(v, step_results) for k, v in value.items()}
    if isinstance(value, list):
        return [resolve_placeholders(v, step_results) for v in value]
    return value


def has_placeholders(value: Any) -> bool:
    if isinstance(value, str):
        return PLACEHOLDER.search(value) is not None
    if isinstance(value, dict):
        return any(has_placeholders(v) for v in value.values())
    if isinstance(value, list):
        return any(has_placeholders(v) for v in value)
    return False
