"""
test_prebid.py — Pre-bid query extraction, grouping and answer repair.

Run with:
    python tests/test_prebid.py
    python -m pytest tests/test_prebid.py -v
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from unittest import mock

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from tender_gap.ingestion import DocumentReadError
from tender_gap.llm import LLMGateway, LLMUnavailableError
from tender_gap.prebid import (
    ALL_QUERIES,
    EXTRACT_SYSTEM_PROMPT,
    GROUP_SYSTEM_PROMPT,
    UNANSWERED_ANSWER,
    Query,
    QuerySection,
    analyze_prebid_queries,
    chunk_text,
    decide_addendum,
    extract_sections_heuristically,
    group_queries,
    repair_rows,
    truncate_document,
)

QUERY_LETTER = """Pre-Bid Clarification Request
Technical
1. Please confirm whether the integration with the
   existing ERP is in scope?
2. What is the expected number of named users?
Commercial
Query #5: Kindly clarify the payment milestones for phase one.
- Please share the performance bond percentage.
Page 2
"""


def _gateway(chat) -> mock.MagicMock:
    gateway = mock.MagicMock(spec=LLMGateway)
    gateway.enabled = True
    gateway.chat.side_effect = chat
    return gateway


def _answer_chat(messages, options=None, fmt=None, max_retries=None):
    payload = json.loads(messages[1]["content"])
    if payload["sectionTitle"] == "Technical":
        return json.dumps({
            "sectionTitle": "Technical",
            "rows": [{
                "id": 1,
                "vendorQuestion": "Is the ERP integration in scope?",
                "suggestedGovernmentAnswer": "Yes. Integration with the ERP is part of the scope.",
                "addendum": "No",
            }],
        })
    return json.dumps({
        "sectionTitle": "Commercial and contractual",
        "rows": [
            {"id": 5, "suggestedGovernmentAnswer": "Payments follow the milestones in the contract."},
            {"id": 6, "suggestedGovernmentAnswer": "The performance bond is 5% of the contract value."},
        ],
    })


# ── Heuristics ────────────────────────────────────────────────────────────

def test_heuristic_extraction():
    sections = extract_sections_heuristically(QUERY_LETTER)
    assert [s.title for s in sections] == ["Technical", "Commercial"]
    assert [q.id for q in sections[0].queries] == [1, 2]
    assert sections[0].queries[0].question == (
        "Please confirm whether the integration with the existing ERP is in scope?"
    )
    assert [q.id for q in sections[1].queries] == [5, 6]
    assert sections[1].queries[1].question == "Please share the performance bond percentage."
    print("  ✓ test_heuristic_extraction")


def test_heuristics_skip_statements():
    text = "Technical\n1. The vendor reviewed the document.\n2. Noted.\n"
    assert extract_sections_heuristically(text) == []
    print("  ✓ test_heuristics_skip_statements")


def test_chunk_text_respects_limit():
    text = "\n".join(f"Line {i} of the clarification letter" for i in range(40))
    chunks = chunk_text(text, 200)
    assert len(chunks) > 1
    assert all(len(c) <= 200 for c in chunks)
    assert chunk_text("short", 200) == ["short"]
    print("  ✓ test_chunk_text_respects_limit")


# ── Answer helpers ────────────────────────────────────────────────────────

def test_decide_addendum():
    assert decide_addendum("When is the submission deadline?", "As stated.") == "Yes"
    assert decide_addendum("What is the expected number of named users?", "Up to 200 named users.") == "No"
    print("  ✓ test_decide_addendum")


def test_truncate_document():
    text = "a" * 60 + "b" * 60
    truncated = truncate_document(text, 100)
    assert truncated.startswith("a" * 60)
    assert truncated.endswith("b" * 40)
    assert "--- TRUNCATED ---" in truncated
    assert truncate_document("short", 100) == "short"
    print("  ✓ test_truncate_document")


def test_repair_rows_fills_skipped_queries():
    section = QuerySection("Testing", [
        Query(1, "Who provides the test data?"),
        Query(2, "Can UAT be performed remotely?"),
    ])
    rows = [
        {"id": "2", "vendorQuestion": "", "suggestedGovernmentAnswer": "Yes, remote UAT is allowed."},
        {"id": 2, "vendorQuestion": "dup", "suggestedGovernmentAnswer": "dup"},
        "junk",
        {"id": 0, "vendorQuestion": "zero", "suggestedGovernmentAnswer": "zero"},
    ]
    repaired = repair_rows(rows, section)
    assert [r.id for r in repaired] == [1, 2]
    assert repaired[0].suggested_government_answer == UNANSWERED_ANSWER
    assert repaired[0].addendum == "Yes"
    assert repaired[1].vendor_question == "Can UAT be performed remotely?"
    assert repaired[1].addendum == "Yes"
    print("  ✓ test_repair_rows_fills_skipped_queries")


def test_group_queries_fallback():
    queries = [Query(1, "Who hosts the system?"), Query(2, "What is the go-live date?")]
    gateway = _gateway(["I cannot group these."])
    sections = group_queries(queries, gateway)
    assert [s.title for s in sections] == [ALL_QUERIES]
    assert [q.id for q in sections[0].queries] == [1, 2]
    print("  ✓ test_group_queries_fallback")


# ── End to end ────────────────────────────────────────────────────────────

def test_analyze_with_heuristics():
    gateway = _gateway(_answer_chat)
    result = analyze_prebid_queries(QUERY_LETTER, vendor="Acme LLC", authority="Digital Authority",
                                    project="ERP Upgrade", gateway=gateway)

    assert result.title == "Pre-Bid Queries — ERP Upgrade (draft)"
    assert "Acme LLC" in result.description
    assert [s.section_title for s in result.sections] == ["Technical", "Commercial and contractual"]

    technical = result.sections[0].rows
    assert [r.id for r in technical] == [1, 2]
    assert technical[0].addendum == "No"
    assert technical[1].suggested_government_answer == UNANSWERED_ANSWER

    commercial = result.sections[1].rows
    assert [r.id for r in commercial] == [5, 6]
    assert commercial[0].vendor_question == "Kindly clarify the payment milestones for phase one."
    assert all(r.addendum == "Yes" for r in commercial)

    gateway.ensure_model.assert_called_once()
    assert gateway.chat.call_count == 2
    dumped = result.model_dump(by_alias=True)
    assert dumped["sections"][0]["sectionTitle"] == "Technical"
    assert "vendorQuestion" in dumped["sections"][0]["rows"][0]
    print("  ✓ test_analyze_with_heuristics")


def test_analyze_falls_back_to_llm_extraction():
    def chat(messages, options=None, fmt=None, max_retries=None):
        system = messages[0]["content"]
        if system == EXTRACT_SYSTEM_PROMPT:
            return json.dumps({"items": [
                {"id": None, "question": "Clarify the hosting model for production?"},
                {"id": 3, "question": "What is the go-live date?"},
                {"id": None, "question": "clarify the hosting model for production?"},
            ]})
        if system == GROUP_SYSTEM_PROMPT:
            return json.dumps({"sections": [{"sectionTitle": "Infrastructure and architecture", "ids": [4]}]})
        return "{}"

    gateway = _gateway(chat)
    text = (
        "Clarification letter from the bidder.\n"
        "We would like the authority to clarify the hosting model for production."
    )
    result = analyze_prebid_queries(text, gateway=gateway)

    assert [s.section_title for s in result.sections] == ["Infrastructure and architecture", ALL_QUERIES]
    assert [r.id for r in result.sections[0].rows] == [4]
    assert [r.id for r in result.sections[1].rows] == [3]
    assert result.sections[1].rows[0].suggested_government_answer == UNANSWERED_ANSWER
    assert result.title == "Pre-Bid Queries — Tender RFP (draft)"
    print("  ✓ test_analyze_falls_back_to_llm_extraction")


def test_analyze_errors():
    disabled = mock.MagicMock(spec=LLMGateway)
    disabled.enabled = False
    try:
        analyze_prebid_queries(QUERY_LETTER, gateway=disabled)
        raise AssertionError("expected LLMUnavailableError")
    except LLMUnavailableError:
        pass

    try:
        analyze_prebid_queries("   tiny   ", gateway=_gateway([]))
        raise AssertionError("expected DocumentReadError")
    except DocumentReadError:
        pass

    try:
        analyze_prebid_queries(QUERY_LETTER, gateway=_gateway(lambda *a, **kw: None))
        raise AssertionError("expected LLMUnavailableError")
    except LLMUnavailableError:
        pass
    print("  ✓ test_analyze_errors")


def run_all_tests():
    print("\n" + "=" * 60)
    print("  TenderGap — Pre-Bid Query Tests")
    print("=" * 60 + "\n")

    tests = [
        test_heuristic_extraction,
        test_heuristics_skip_statements,
        test_chunk_text_respects_limit,
        test_decide_addendum,
        test_truncate_document,
        test_repair_rows_fills_skipped_queries,
        test_group_queries_fallback,
        test_analyze_with_heuristics,
        test_analyze_falls_back_to_llm_extraction,
        test_analyze_errors,
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
