"""
test_schema_enforcer.py — Template merge, leaf normalisation, shape
validation and the repair loop.

Run with:
    python tests/test_schema_enforcer.py
    python -m pytest tests/test_schema_enforcer.py -v
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from unittest import mock

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from tender_gap.schema_enforcer import (
    NOT_SPECIFIED,
    SchemaEnforcer,
    SchemaValidationError,
    merge_with_template,
    normalize_leaves,
    validate_shape,
)

TEMPLATE = {
    "title": NOT_SPECIFIED,
    "weights": {"financial": "0%", "technical": "0%"},
    "items": [{"name": NOT_SPECIFIED, "detail": NOT_SPECIFIED}],
    "notes": [],
}


def test_merge_keeps_template_keys_only():
    candidate = {
        "title": "RFP 12",
        "commentary": "dropped",
        "weights": "oops",
        "items": [{"name": "Pricing", "extra": 1}, "stray"],
        "notes": ["free", "form"],
    }
    merged = merge_with_template(candidate, TEMPLATE)
    assert merged == {
        "title": "RFP 12",
        "weights": {"financial": "0%", "technical": "0%"},
        "items": [{"name": "Pricing", "detail": NOT_SPECIFIED}, "stray"],
        "notes": ["free", "form"],
    }
    assert validate_shape(merged, TEMPLATE) == ["$.items[1]: expected object"]
    print("  ✓ test_merge_keeps_template_keys_only")


def test_merge_missing_list_uses_template_copy():
    merged = merge_with_template({"items": None}, TEMPLATE)
    assert merged["items"] == TEMPLATE["items"]
    assert merged["items"] is not TEMPLATE["items"]
    print("  ✓ test_merge_missing_list_uses_template_copy")


def test_normalize_leaves():
    value = {"a": None, "b": "  ", "c": [None, "x"], "d": 0, "e": False}
    assert normalize_leaves(value, "N/A") == {"a": "N/A", "b": "N/A", "c": ["N/A", "x"], "d": 0, "e": False}
    print("  ✓ test_normalize_leaves")


def test_validate_shape_errors():
    assert validate_shape({"title": "x"}, {"title": "", "items": []}) == [
        "$: keys mismatch. expected=[items,title], got=[title]"
    ]
    assert validate_shape({"items": {}}, {"items": []}) == ["$.items: expected array"]
    assert validate_shape([], {}) == ["$: expected object"]
    print("  ✓ test_validate_shape_errors")


def test_enforce_is_idempotent():
    enforcer = SchemaEnforcer(TEMPLATE)
    once = enforcer.enforce({"title": None, "items": [{"name": ""}]})
    assert once["title"] == NOT_SPECIFIED
    assert once["items"] == [{"name": NOT_SPECIFIED, "detail": NOT_SPECIFIED}]
    assert enforcer.enforce(once) == once
    print("  ✓ test_enforce_is_idempotent")


def test_enforce_empty_object_fills_every_leaf():
    enforcer = SchemaEnforcer(TEMPLATE)
    empty = enforcer.enforce({})
    assert empty == TEMPLATE
    assert empty["items"] is not TEMPLATE["items"]
    assert validate_shape(empty, TEMPLATE) == []
    assert enforcer.enforce(empty) == empty
    # Not even an object: same full template
    assert enforcer.enforce(None) == TEMPLATE
    print("  ✓ test_enforce_empty_object_fills_every_leaf")


def test_run_valid_first_time():
    repair = mock.MagicMock()
    result = SchemaEnforcer(TEMPLATE, repair=repair).run('Sure! Here it is: {"title": "RFP 12"}')
    assert result["title"] == "RFP 12"
    assert result["weights"] == {"financial": "0%", "technical": "0%"}
    repair.assert_not_called()
    print("  ✓ test_run_valid_first_time")


def test_run_repairs_unparseable_output():
    repair = mock.MagicMock(return_value=json.dumps({"title": "Fixed"}))
    result = SchemaEnforcer(TEMPLATE, repair=repair).run("I could not read the document.")
    assert result["title"] == "Fixed"
    repair.assert_called_once_with("I could not read the document.")
    print("  ✓ test_run_repairs_unparseable_output")


def test_post_process_forces_values():
    enforcer = SchemaEnforcer(
        TEMPLATE,
        post_process=lambda shaped: {**shaped, "weights": {"financial": "30%", "technical": "70%"}},
    )
    result = enforcer.run('{"weights": {"financial": "10%", "technical": "10%"}}')
    assert result["weights"] == {"financial": "30%", "technical": "70%"}
    print("  ✓ test_post_process_forces_values")


def test_run_exhausted_raises():
    bad = json.dumps({"items": ["stray"]})
    repair = mock.MagicMock(return_value=bad)
    enforcer = SchemaEnforcer(TEMPLATE, repair=repair, max_attempts=2)
    try:
        enforcer.run(bad)
        raise AssertionError("expected SchemaValidationError")
    except SchemaValidationError as exc:
        assert "after 2 attempts" in str(exc)
        assert exc.errors == ["$.items[0]: expected object"]
    assert repair.call_count == 1
    print("  ✓ test_run_exhausted_raises")


def test_run_without_repair_fails_fast():
    try:
        SchemaEnforcer(TEMPLATE).run("not json")
        raise AssertionError("expected SchemaValidationError")
    except SchemaValidationError as exc:
        assert "after 1 attempts" in str(exc)
    print("  ✓ test_run_without_repair_fails_fast")


def run_all_tests():
    print("\n" + "=" * 60)
    print("  TenderGap — Schema Enforcer Tests")
    print("=" * 60 + "\n")

    tests = [
        test_merge_keeps_template_keys_only,
        test_merge_missing_list_uses_template_copy,
        test_normalize_leaves,
        test_validate_shape_errors,
        test_enforce_is_idempotent,
        test_enforce_empty_object_fills_every_leaf,
        test_run_valid_first_time,
        test_run_repairs_unparseable_output,
        test_post_process_forces_values,
        test_run_exhausted_raises,
        test_run_without_repair_fails_fast,
    ]

    passed = 0
    failed = 0
    for test_fn in tests:
        try:
            test_fn()
            passed += 1
        except Exception as exc:
            failed += 1
            print(f"  ✗ {test_fn.__name__} FAILED: {exc}")

    print(f"\n{'=' * 60}")
    print(f"  Results: {passed} passed, {failed} failed, {len(tests)} total")
    print(f"{'=' * 60}\n")
    return failed == 0


if __name__ == "__main__":
    success = run_all_tests()
    sys.exit(0 if success else 1)
