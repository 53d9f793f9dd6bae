"""
test_weights.py — Percentage parsing and weight-group normalisation.

Run with:
    python tests/test_weights.py
    python -m pytest tests/test_weights.py -v
"""

from __future__ import annotations

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from tender_gap.weights import format_percent, normalize_weights, parse_percent


def test_parse_percent():
    assert parse_percent("30%") == 30.0
    assert parse_percent("weight: 12.5 %") == 12.5
    assert parse_percent(40) == 40.0
    assert parse_percent(None) is None
    assert parse_percent(True) is None
    assert parse_percent("n/a") is None
    print("  ✓ test_parse_percent")


def test_format_percent():
    assert format_percent(30.0) == "30%"
    assert format_percent(12.5) == "12.5%"
    assert format_percent(7) == "7%"
    print("  ✓ test_format_percent")


def test_group_within_tolerance_is_kept():
    assert normalize_weights([30, 70]) == [30, 70]
    assert normalize_weights([33, 33, 33]) == [33, 33, 33]
    assert normalize_weights([33.3, 33.3, 33.4]) == [33.3, 33.3, 33.4]
    print("  ✓ test_group_within_tolerance_is_kept")


def test_rescale_sums_exactly():
    assert normalize_weights([60, 30]) == [67, 33]
    assert normalize_weights([1, 1], total=60) == [30, 30]
    result = normalize_weights([10, 10, 10], total=100, tolerance=0)
    assert result == [34, 33, 33]
    assert sum(normalize_weights([7, 13, 29, 51, 3])) == 100
    print("  ✓ test_rescale_sums_exactly")


def test_zero_group_uses_default():
    assert normalize_weights([0, 0], default=[30, 70]) == [30, 70]
    assert normalize_weights([0, 0, 0]) == [34, 33, 33]
    assert normalize_weights([]) == []
    try:
        normalize_weights([0, 0], default=[100])
        raise AssertionError("expected ValueError")
    except ValueError:
        pass
    print("  ✓ test_zero_group_uses_default")


def test_negative_weights_count_as_zero():
    assert normalize_weights([-20, 50]) == [0, 100]
    # Within tolerance once negatives are dropped: kept, but clamped
    result = normalize_weights([-0.5, 100.5])
    assert result == [0, 100.5]
    assert all(w >= 0 for w in result)
    print("  ✓ test_negative_weights_count_as_zero")


def run_all_tests():
    print("\n" + "=" * 60)
    print("  TenderGap — Weight Tests")
    print("=" * 60 + "\n")

    tests = [
        test_parse_percent,
        test_format_percent,
        test_group_within_tolerance_is_kept,
        test_rescale_sums_exactly,
        test_zero_group_uses_default,
        test_negative_weights_count_as_zero,
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
