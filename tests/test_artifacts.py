"""
test_artifacts.py — Keyword section finding, excerpt fallbacks, presence
resolution and the two-call artifact extraction.

Run with:
    python tests/test_artifacts.py
    python -m pytest tests/test_artifacts.py -v
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from unittest import mock

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from tender_gap.artifacts import (
    ABSENT,
    ARTIFACT_TEMPLATES,
    ARTIFACT_TYPES,
    extract_artifacts,
    extract_relevant_sections,
    find_sections_by_keywords,
    resolve_presence,
)
from tender_gap.config import ExtractionConfig
from tender_gap.ingestion import DocumentReadError
from tender_gap.llm import LLMGateway, LLMUnavailableError

DOCUMENT = (
    "Request for Proposal: ERP Implementation for the Finance Department\n"
    "Scope of Work\nThe vendor shall implement finance and procurement modules.\n"
    "Bill of Quantities\n1. ERP licences, 100 users\n"
)


def _filler(count: int, start: int = 0):
    return [f"filler {i}" for i in range(start, start + count)]


def _gateway(answers_by_group) -> mock.MagicMock:
    """Chat mock answering by group; the two calls run on separate threads."""
    gateway = mock.MagicMock(spec=LLMGateway)
    gateway.enabled = True

    def chat(messages, options=None, fmt=None, max_retries=None):
        prompt = messages[1]["content"]
        for names, answer in answers_by_group.items():
            if prompt.startswith(f"Extract {names}."):
                return answer
        return None

    gateway.chat.side_effect = chat
    return gateway


def test_find_sections_by_keywords():
    lines = ["Request for Proposal"] + _filler(10)
    lines += ["Scope of Work"] + _filler(18, 10)
    lines += ["Request for Proposal (continued)"] + _filler(49, 28)
    lines += ["Bill of Quantities"] + _filler(19, 77)
    lines += ["General Terms and Conditions"] + _filler(5, 96)

    sections = find_sections_by_keywords("\n".join(lines), section_lines=3)
    assert sections["RFP"] == "Request for Proposal\nfiller 0\nfiller 1\n\n---\n\nGeneral Terms and Conditions\nfiller 96\nfiller 97"
    assert sections["SOW"] == "Scope of Work\nfiller 10\nfiller 11"
    assert sections["BOQ"] == "Bill of Quantities\nfiller 77\nfiller 78"
    assert sections["BOM"] is None
    assert sections["BOS"] is None
    print("  ✓ test_find_sections_by_keywords")


def test_sla_needs_a_whole_word():
    sections = find_sections_by_keywords("Translation services\nThe SLA is 99.5%", section_lines=2)
    assert sections["BOS"] == "The SLA is 99.5%"
    assert find_sections_by_keywords("Translation and islands", section_lines=2)["BOS"] is None
    print("  ✓ test_sla_needs_a_whole_word")


def test_relevant_sections_fallbacks_and_cap():
    cfg = ExtractionConfig(
        artifact_section_lines=5,
        artifact_context_chars=50,
        artifact_min_section_chars=20,
        artifact_section_chars=100,
    )
    text = "intro " * 50 + "\nBill of Quantities " + "x" * 300 + "\n" + "closing " * 50
    sections = extract_relevant_sections(text, cfg)

    assert set(sections) == set(ARTIFACT_TYPES)
    assert sections["RFP"] == text[:50]
    assert sections["SOW"] == text[:50]
    assert sections["BOQ"].startswith("Bill of Quantities")
    assert sections["BOQ"].endswith("\n\n[... truncated ...]")
    assert len(sections["BOQ"]) == 100 + len("\n\n[... truncated ...]")
    assert sections["BOM"] == text[-50:]
    assert sections["BOS"] == text[-50:]

    # A keyword hit too short to be a section falls back to the closing pages
    short = "a" * 30 + "\nSLA\n" + "b" * 30
    cfg = ExtractionConfig(artifact_section_lines=5, artifact_context_chars=50, artifact_min_section_chars=50)
    assert extract_relevant_sections(short, cfg)["BOS"] == short[-50:]
    print("  ✓ test_relevant_sections_fallbacks_and_cap")


def test_resolve_presence():
    assert resolve_presence({"present": " Yes ", "items": []}) == {"present": "yes", "items": []}
    assert resolve_presence({"present": "no", "items": ["Licences"]}) == ABSENT
    assert resolve_presence({"present": "", "items": [], "boq_total": ""}) == ABSENT
    assert resolve_presence({"present": "maybe", "items": [], "boq_total": "1,200"}) == {
        "present": "yes", "items": [], "boq_total": "1,200",
    }
    assert resolve_presence({}) == ABSENT
    assert resolve_presence({"present": "no"}) is not ABSENT
    print("  ✓ test_resolve_presence")


def test_extract_artifacts():
    gateway = _gateway({
        "RFP, SOW": json.dumps({
            "RFP": {
                "present": "yes",
                "project_introduction": "ERP implementation for the Finance Department",
                "appendices_list": ["Annex A: Pricing"],
                "reviewer_notes": "dropped",
            },
            "SOW": {"present": "no"},
        }),
        "BOQ, BOM, BOS": "Here you go:\n" + json.dumps({
            "BOQ": {"present": "yes", "items": [{"item": "ERP licences", "quantity": 100}], "boq_total": None},
            "BOM": {"present": "", "materials": []},
        }),
    })
    artifacts = extract_artifacts(DOCUMENT, "Finance", gateway=gateway)

    assert list(artifacts) == list(ARTIFACT_TYPES)
    rfp = artifacts["RFP"]
    assert set(rfp) == set(ARTIFACT_TEMPLATES["RFP"])
    assert rfp["present"] == "yes"
    assert rfp["project_introduction"] == "ERP implementation for the Finance Department"
    assert rfp["appendices_list"] == ["Annex A: Pricing"]
    assert rfp["definitions"] == ""
    assert artifacts["SOW"] == ABSENT
    assert artifacts["BOQ"] == {
        "present": "yes",
        "items": [{"item": "ERP licences", "quantity": 100}],
        "categories_identified": [],
        "boq_total": "",
    }
    assert artifacts["BOM"] == ABSENT
    assert artifacts["BOS"] == ABSENT

    gateway.ensure_model.assert_called_once()
    assert gateway.chat.call_count == 2
    prompts = sorted(c.args[0][1]["content"] for c in gateway.chat.call_args_list)
    assert all("Department: Finance" in p for p in prompts)
    assert all(c.kwargs["fmt"] == "json" for c in gateway.chat.call_args_list)
    print("  ✓ test_extract_artifacts")


def test_extract_artifacts_errors():
    disabled = mock.MagicMock(spec=LLMGateway)
    disabled.enabled = False
    try:
        extract_artifacts(DOCUMENT, gateway=disabled)
        raise AssertionError("expected LLMUnavailableError")
    except LLMUnavailableError:
        pass

    try:
        extract_artifacts("  scanned  ", gateway=_gateway({}))
        raise AssertionError("expected DocumentReadError")
    except DocumentReadError:
        pass

    # One group answers, the other gets nothing back
    gateway = _gateway({"RFP, SOW": json.dumps({"RFP": {"present": "no"}, "SOW": {"present": "no"}})})
    try:
        extract_artifacts(DOCUMENT, gateway=gateway)
        raise AssertionError("expected LLMUnavailableError")
    except LLMUnavailableError as exc:
        assert "BOQ/BOM/BOS" in str(exc)
    print("  ✓ test_extract_artifacts_errors")


def run_all_tests():
    print("\n" + "=" * 60)
    print("  TenderGap — Artifact Extraction Tests")
    print("=" * 60 + "\n")

    tests = [
        test_find_sections_by_keywords,
        test_sla_needs_a_whole_word,
        test_relevant_sections_fallbacks_and_cap,
        test_resolve_presence,
        test_extract_artifacts,
        test_extract_artifacts_errors,
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
