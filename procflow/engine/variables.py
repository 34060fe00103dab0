"""``{{path}}`` template resolution against run and process contexts.

Context layout for a Run (see ``build_run_context``)::

    step_<n>_output   output of the n-th step (1-based)
    step_<n>          {"output": <same>}
    <alias>           a step's output_variable_name, bound to its output
    trigger           the trigger context (file or webhook payload)
    initial_input     input supplied at start

Resolution never raises. A placeholder whose path cannot be found is left in
the text untouched.
"""

from __future__ import annotations

import json
import re
from typing import Any

from procflow.types import ActiveRun, output_value

PLACEHOLDER = re.compile(r"\{\{([^}]+)\}\}")
_STEP_OUTPUT = re.compile(r"^step_(\d+)\.output(?:\.(.+))?$")

MISSING = object()


def _walk(value: Any, parts: list[str]) -> Any:
    for part in parts:
        if isinstance(value, dict) and part in value:
            value = value[part]
        elif isinstance(value, list) and part.isdigit() and int(part) < len(value):
            value = value[int(part)]
        else:
            return MISSING
    return value


def lookup(context: dict[str, Any], path: str) -> Any:
    """Raw value at *path*, or ``MISSING``.

    ``step_<n>.output.<field>`` reads ``step_<n>_output`` first and falls back
    to walking ``step_<n>`` → ``output`` → field.
    """
    path = path.strip()
    if not path:
        return MISSING
    if path in context:
        return context[path]

    m = _STEP_OUTPUT.match(path)
    if m:
        flat_key = f"step_{m.group(1)}_output"
        if flat_key in context:
            rest = m.group(2)
            found = _walk(context[flat_key], rest.split(".") if rest else [])
            if found is not MISSING:
                return found

    return _walk(context, path.split("."))


def _as_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, default=str)


def resolve_template(template: str, context: dict[str, Any]) -> str:
    """Substitute every ``{{path}}`` in *template*.

    Strings go in verbatim, anything else as JSON. Unresolved placeholders stay.
    """
    if not isinstance(template, str) or "{{" not in template:
        return template

    def _sub(match: re.Match) -> str:
        found = lookup(context, match.group(1))
        return match.group(0) if found is MISSING else _as_text(found)

    return PLACEHOLDER.sub(_sub, template)


def resolve_value(value: Any, context: dict[str, Any]) -> Any:
    """Resolve placeholders anywhere inside *value*.

    A string that is exactly one placeholder yields the native value, so
    ``"{{step_1.output}}"`` can produce a dict rather than its JSON text.
    """
    if isinstance(value, str):
        whole = PLACEHOLDER.fullmatch(value.strip())
        if whole:
            found = lookup(context, whole.group(1))
            return value if found is MISSING else found
        return resolve_template(value, context)
    if isinstance(value, dict):
        return {k: resolve_value(v, context) for k, v in value.items()}
    if isinstance(value, list):
        return [resolve_value(v, context) for v in value]
    return value


def unresolved_placeholders(value: Any) -> list[str]:
    """Placeholder paths still present in an already-resolved value."""
    if isinstance(value, str):
        return [p.strip() for p in PLACEHOLDER.findall(value)]
    if isinstance(value, dict):
        return [p for v in value.values() for p in unresolved_placeholders(v)]
    if isinstance(value, list):
        return [p for v in value for p in unresolved_placeholders(v)]
    return []


def build_run_context(run: ActiveRun) -> dict[str, Any]:
    """Variable context for *run*, built from its logs and trigger payload."""
    context: dict[str, Any] = {
        "trigger": run.trigger_context,
        "initial_input": run.initial_input,
    }
    positions = {step.id: i for i, step in enumerate(run.steps)}
    for log in run.logs:
        index = positions.get(log.step_id)
        if index is None:
            continue
        number = index + 1
        value = output_value(log.output)
        if value is None and f"step_{number}" in context:
            continue  # an empty entry never hides an earlier real output
        if value is None:
            value = {}
        context[f"step_{number}_output"] = value
        context[f"step_{number}"] = {"output": value}
        alias = run.steps[index].config.output_variable_name
        if alias:
            context[alias] = value
    return context
