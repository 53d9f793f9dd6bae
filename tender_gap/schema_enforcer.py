"""
schema_enforcer.py — Force model output into a fixed JSON template.

The evaluation and overview endpoints promise the frontend an exact
shape. The model gets close most of the time, but it renames keys, adds
commentary fields, returns a string where an object belongs, or leaves
values null. The enforcer handles that in three layers:

  1. merge      keep only the template's keys, at every depth, and take
                the candidate's value where its type fits the slot
  2. normalise  null / whitespace-only leaves become the sentinel
  3. validate   structural check against the template; on failure ask
                the model to repair its own output, up to max_attempts

The repair loop is a small explicit state machine:

    PARSED -> VALID
    PARSED -> INVALID -> REPAIRING -> (parse again)
    UNPARSEABLE -> REPAIRING -> (parse again)
    INVALID / UNPARSEABLE with no attempts left -> EXHAUSTED -> error

Domain defaults (70/30 splits and so on) are NOT applied here. They go
in the `post_process` hook supplied by each feature.
"""

from __future__ import annotations

import copy
import json
import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from tender_gap.config import config
from tender_gap.llm import extract_json_object

logger = logging.getLogger(__name__)

NOT_SPECIFIED = "Not specified in the document"

_SCALARS = (str, int, float, bool)


class SchemaValidationError(RuntimeError):
    """The model could not produce template-shaped JSON within the attempt ceiling."""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.errors = errors or []


class EnforcerState(str, Enum):
    PARSED = "parsed"
    UNPARSEABLE = "unparseable"
    INVALID = "invalid"
    REPAIRING = "repairing"
    VALID = "valid"
    EXHAUSTED = "exhausted"


def merge_with_template(candidate: Any, template: Any) -> Any:
    """
    Deep-merge a candidate into the template's shape.

    - dict slot:   template keys only; extra candidate keys are dropped.
    - list slot:   the candidate list if it is one, else a copy of the
                   template list. Dict items are merged against the
                   template's first item. Other items pass through so
                   validation can flag them.
    - scalar slot: the candidate if it is a non-null scalar, else the
                   template value.
    """
    if isinstance(template, dict):
        source = candidate if isinstance(candidate, dict) else {}
        return {key: merge_with_template(source.get(key), tpl) for key, tpl in template.items()}

    if isinstance(template, list):
        if not isinstance(candidate, list):
            return copy.deepcopy(template)
        if not template:
            return copy.deepcopy(candidate)
        item_template = template[0]
        merged = []
        for item in candidate:
            if isinstance(item_template, dict) and isinstance(item, dict):
                merged.append(merge_with_template(item, item_template))
            else:
                merged.append(copy.deepcopy(item))
        return merged

    if candidate is not None and isinstance(candidate, _SCALARS):
        return candidate
    return copy.deepcopy(template)


def normalize_leaves(value: Any, sentinel: str = NOT_SPECIFIED) -> Any:
    """Replace None and whitespace-only strings with the sentinel, recursively."""
    if isinstance(value, dict):
        return {k: normalize_leaves(v, sentinel) for k, v in value.items()}
    if isinstance(value, list):
        return [normalize_leaves(v, sentinel) for v in value]
    if value is None:
        return sentinel
    if isinstance(value, str) and not value.strip():
        return sentinel
    return value


def validate_shape(candidate: Any, template: Any, path: str = "$") -> List[str]:
    """
    Structural comparison against the template. Returns a list of errors.

    Objects must have exactly the template's key set. Arrays must be
    arrays, and each item is checked against the template's first item.
    Primitive types are not compared.
    """
    errors: List[str] = []

    if isinstance(template, list):
        if not isinstance(candidate, list):
            return [f"{path}: expected array"]
        if template:
            for i, item in enumerate(candidate):
                errors.extend(validate_shape(item, template[0], f"{path}[{i}]"))
        return errors

    if isinstance(template, dict):
        if not isinstance(candidate, dict):
            return [f"{path}: expected object"]
        expected = sorted(template)
        got = sorted(candidate)
        if expected != got:
            errors.append(f"{path}: keys mismatch. expected=[{','.join(expected)}], got=[{','.join(got)}]")
            return errors
        for key in expected:
            errors.extend(validate_shape(candidate[key], template[key], f"{path}.{key}"))

    return errors


class SchemaEnforcer:
    """
    Merge / normalise / validate / repair driver for one template.

    Usage:
        enforcer = SchemaEnforcer(TEMPLATE, repair=my_repair_fn)
        shaped = enforcer.run(raw_model_text)

    `repair(bad_json_text)` must return new model text or None.
    `post_process(shaped)` may apply domain defaults; it runs before
    every validation so forced values are part of what gets checked.
    """

    def __init__(
        self,
        template: Dict[str, Any],
        repair: Optional[Callable[[str], Optional[str]]] = None,
        post_process: Optional[Callable[[Dict[str, Any]], Dict[str, Any]]] = None,
        sentinel: str = NOT_SPECIFIED,
        max_attempts: Optional[int] = None,
    ):
        self.template = template
        self.repair = repair
        self.post_process = post_process
        self.sentinel = sentinel
        self.max_attempts = max_attempts or config.enforcer.max_attempts

    def enforce(self, candidate: Any) -> Dict[str, Any]:
        """Merge + normalise. Idempotent: enforce(enforce(x)) == enforce(x)."""
        return normalize_leaves(merge_with_template(candidate, self.template), self.sentinel)

    def validate(self, candidate: Any) -> List[str]:
        return validate_shape(candidate, self.template)

    def run(self, raw_text: Optional[str]) -> Dict[str, Any]:
        """
        Drive the repair loop from raw model text to a validated object.

        Raises:
            SchemaValidationError: still invalid after max_attempts.
        """
        text = raw_text or ""
        errors: List[str] = []

        for attempt in range(1, self.max_attempts + 1):
            parsed = extract_json_object(text)
            if parsed is None:
                state = EnforcerState.UNPARSEABLE
                errors = ["$: output is not a parseable JSON object"]
                bad_text = text
            else:
                state = EnforcerState.PARSED
                shaped = self.enforce(parsed)
                if self.post_process is not None:
                    shaped = self.post_process(shaped)
                errors = self.validate(shaped)
                if not errors:
                    state = EnforcerState.VALID
                    logger.info("Schema valid on attempt %d/%d", attempt, self.max_attempts)
                    return shaped
                state = EnforcerState.INVALID
                bad_text = json.dumps(shaped, ensure_ascii=False)

            logger.warning(
                "Attempt %d/%d %s: %s", attempt, self.max_attempts, state.value, " | ".join(errors[:3])
            )
            if attempt == self.max_attempts or self.repair is None:
                break

            state = EnforcerState.REPAIRING
            logger.info("%s: asking the model to repair its output", state.value)
            text = self.repair(bad_text) or ""

        state = EnforcerState.EXHAUSTED
        logger.error("Schema enforcement %s after %d attempt(s)", state.value, attempt)
        raise SchemaValidationError(
            f"Failed to produce schema-valid JSON after {attempt} attempts. "
            f"Errors: {' | '.join(errors[:3])}",
            errors=errors[:3],
        )
