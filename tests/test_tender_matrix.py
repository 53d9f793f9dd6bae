"""
test_tender_matrix.py — Matrix section detection, company clean-up and
the chat-based matrix extraction flow.

Run with:
    python tests/test_tender_matrix.py
    python -m pytest tests/test_tender_matrix.py -v
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from unittest import mock

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from tender_gap.config import ExtractionConfig
from tender_gap.ingestion import DocumentReadError
from tender_gap.llm import LLMGateway, LLMUnavailableError
from tender_gap.tender_matrix import (
    COMPANY_NAME,
    OVERALL_RATING,
    RETRY_SYSTEM_PROMPT,
    SUBCATEGORIES,
    SUBCATEGORY_RATINGS,
    as_company_object,
    extract_relevant_text,
    extract_tender_matrix,
    finalize_companies,
    find_matrix_section,
    normalize_whitespace,
)

DOCUMENT = (
    "Technical Evaluation Report for ERP Implementation\n\n\n\n"
    "Company Name   Overall Rating   Module Covered\n"
    "Alpha Systems  7.9  10\n"
    "Beta Consulting  8.8  9\n"
)


def _gateway(*answers) -> mock.MagicMock:
    gateway = mock.MagicMock(spec=LLMGateway)
    gateway.enabled = True
    gateway.chat.side_effect = list(answers)
    return gateway


def _company(name, overall, module_rating) -> dict:
    return {
        COMPANY_NAME: name,
        OVERALL_RATING: overall,
        "Category-Level Weightage": None,
        "Category-Level Rating": overall,
        SUBCATEGORY_RATINGS: {"Module Covered": {"Weightage": 0.35, "Rating": module_rating}},
    }


def test_normalize_whitespace():
    assert normalize_whitespace("  a  b\t\tc\n\n\n\nd  ") == "a b c\n\nd"
    assert normalize_whitespace(None) == ""
    print("  ✓ test_normalize_whitespace")


def test_find_matrix_section_by_header():
    lines = [f"intro line {i}" for i in range(5)]
    lines.append("Company Name | Overall Rating")
    lines += [f"row {i}" for i in range(60)]
    lines += ["", "Section 5 Conclusion", "closing remark"]
    section = find_matrix_section("\n".join(lines))
    assert section.startswith("intro line 0")
    assert "Company Name | Overall Rating" in section
    assert "row 59" in section
    assert "Section 5 Conclusion" not in section
    assert "closing remark" not in section
    print("  ✓ test_find_matrix_section_by_header")


def test_find_matrix_section_fallbacks():
    lines = [f"paragraph {i}" for i in range(30)]
    lines.append("Module Covered 0.35 10 8")
    lines += [f"tail {i}" for i in range(150)]
    window = find_matrix_section("\n".join(lines)).split("\n")
    assert window[0] == "paragraph 20"
    assert window[-1] == "tail 98"

    prose = "a" * 20000
    assert find_matrix_section(prose) == prose[:10000]
    print("  ✓ test_find_matrix_section_fallbacks")


def test_relevant_text_is_capped():
    cfg = ExtractionConfig(matrix_context_chars=100, matrix_excerpt_chars=300)
    excerpt = extract_relevant_text("x" * 50000, cfg)
    assert excerpt.endswith("\n[...truncated...]")
    assert len(excerpt) == 300 + len("\n[...truncated...]")
    assert "---MATRIX_SECTION---" in excerpt

    short = extract_relevant_text("Company Name Overall Rating", cfg)
    assert "---END_SECTION---" in short
    assert not short.endswith("[...truncated...]")
    print("  ✓ test_relevant_text_is_capped")


def test_as_company_object():
    bare = as_company_object(json.dumps([{COMPANY_NAME: "Alpha"}]))
    assert json.loads(bare) == {"companies": [{COMPANY_NAME: "Alpha"}]}

    lone = as_company_object(json.dumps({COMPANY_NAME: "Alpha"}))
    assert json.loads(lone) == {"companies": [{COMPANY_NAME: "Alpha"}]}

    data = as_company_object(json.dumps({"data": [{COMPANY_NAME: "Beta"}]}))
    assert json.loads(data) == {"companies": [{COMPANY_NAME: "Beta"}]}

    wrapped = json.dumps({"companies": []})
    assert as_company_object(wrapped) == wrapped
    assert as_company_object("no table here") == "no table here"
    assert as_company_object(None) is None
    print("  ✓ test_as_company_object")


def test_finalize_companies():
    placeholder = {
        COMPANY_NAME: None,
        OVERALL_RATING: None,
        "Category-Level Weightage": None,
        "Category-Level Rating": None,
        SUBCATEGORY_RATINGS: {name: {"Weightage": None, "Rating": None} for name in SUBCATEGORIES},
    }
    unnamed = {
        COMPANY_NAME: None,
        OVERALL_RATING: 7.9,
        "Category-Level Weightage": "35%",
        "Category-Level Rating": True,
        SUBCATEGORY_RATINGS: {"Module Covered": {"Weightage": 0.35, "Rating": "✓"}},
    }
    named = {COMPANY_NAME: "  Beta Consulting ", OVERALL_RATING: 8, SUBCATEGORY_RATINGS: "n/a"}

    companies = finalize_companies({"companies": [placeholder, unnamed, named, "stray"]})["companies"]
    assert len(companies) == 3
    first, second, stray = companies
    assert first[COMPANY_NAME] == "Company_1"
    assert first[OVERALL_RATING] == 7.9
    assert first["Category-Level Weightage"] is None
    assert first["Category-Level Rating"] is None
    assert first[SUBCATEGORY_RATINGS]["Module Covered"] == {"Weightage": 0.35, "Rating": None}
    assert list(first[SUBCATEGORY_RATINGS]) == list(SUBCATEGORIES)
    assert second[COMPANY_NAME] == "Beta Consulting"
    assert second[OVERALL_RATING] == 8
    assert all(v == {"Weightage": None, "Rating": None} for v in second[SUBCATEGORY_RATINGS].values())
    assert stray == "stray"
    print("  ✓ test_finalize_companies")


def test_extract_matrix():
    answer = json.dumps([_company("Alpha Systems", 7.9, 10), _company("Beta Consulting", 8.8, 9)])
    gateway = _gateway(answer)
    companies = extract_tender_matrix(DOCUMENT, "T-2024-17", gateway=gateway)

    assert [c[COMPANY_NAME] for c in companies] == ["Alpha Systems", "Beta Consulting"]
    assert companies[1][OVERALL_RATING] == 8.8
    assert companies[0][SUBCATEGORY_RATINGS]["Module Covered"] == {"Weightage": 0.35, "Rating": 10}
    assert companies[0][SUBCATEGORY_RATINGS]["Data Migration"] == {"Weightage": None, "Rating": None}
    assert len(companies[0][SUBCATEGORY_RATINGS]) == len(SUBCATEGORIES)

    gateway.ensure_model.assert_called_once()
    assert gateway.chat.call_count == 1
    messages = gateway.chat.call_args.args[0]
    assert "Tender ID: T-2024-17" in messages[1]["content"]
    assert gateway.chat.call_args.kwargs["fmt"] == "json"
    print("  ✓ test_extract_matrix")


def test_empty_answer_retries_once():
    gateway = _gateway(json.dumps({"companies": []}), json.dumps({"companies": [_company("Alpha Systems", 7.9, 10)]}))
    companies = extract_tender_matrix(DOCUMENT, gateway=gateway)
    assert [c[COMPANY_NAME] for c in companies] == ["Alpha Systems"]
    assert gateway.chat.call_count == 2
    assert gateway.chat.call_args_list[1].args[0][0]["content"] == RETRY_SYSTEM_PROMPT

    gateway = _gateway(json.dumps({"companies": []}), "[]")
    assert extract_tender_matrix(DOCUMENT, gateway=gateway) == []
    assert gateway.chat.call_count == 2
    print("  ✓ test_empty_answer_retries_once")


def test_extract_matrix_errors():
    disabled = mock.MagicMock(spec=LLMGateway)
    disabled.enabled = False
    try:
        extract_tender_matrix(DOCUMENT, gateway=disabled)
        raise AssertionError("expected LLMUnavailableError")
    except LLMUnavailableError:
        pass

    try:
        extract_tender_matrix("   scanned   ", gateway=_gateway())
        raise AssertionError("expected DocumentReadError")
    except DocumentReadError:
        pass

    try:
        extract_tender_matrix(DOCUMENT, gateway=_gateway(None))
        raise AssertionError("expected LLMUnavailableError")
    except LLMUnavailableError:
        pass
    print("  ✓ test_extract_matrix_errors")


def run_all_tests():
    print("\n" + "=" * 60)
    print("  TenderGap — Evaluation Matrix Tests")
    print("=" * 60 + "\n")

    tests = [
        test_normalize_whitespace,
        test_find_matrix_section_by_header,
        test_find_matrix_section_fallbacks,
        test_relevant_text_is_capped,
        test_as_company_object,
        test_finalize_companies,
        test_extract_matrix,
        test_empty_answer_retries_once,
        test_extract_matrix_errors,
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
