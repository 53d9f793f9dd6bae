"""
test_llm.py — Ollama gateway retries and JSON salvage.

requests.post is patched everywhere, nothing talks to a real server.

Run with:
    python tests/test_llm.py
    python -m pytest tests/test_llm.py -v
"""

from __future__ import annotations

import sys
from pathlib import Path
from unittest import mock

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import requests

from tender_gap.config import LLMConfig
from tender_gap.llm import (
    LLMGateway,
    extract_json_array,
    extract_json_object,
    parse_json_output,
)


def _response(body):
    response = mock.MagicMock()
    response.json.return_value = body
    response.raise_for_status.return_value = None
    return response


def _gateway(**overrides) -> LLMGateway:
    return LLMGateway(LLMConfig(enabled=True, max_retries=2, retry_base_delay=1.0, **overrides))


# ── Gateway ───────────────────────────────────────────────────────────────

def test_complete_returns_trimmed_text():
    with mock.patch("tender_gap.llm.requests.post", return_value=_response({"response": "  hello  "})) as post:
        assert _gateway().complete("prompt", options={"temperature": 0.1}) == "hello"

    url = post.call_args.args[0]
    payload = post.call_args.kwargs["json"]
    assert url.endswith("/generate")
    assert payload["prompt"] == "prompt"
    assert payload["stream"] is False
    assert payload["options"]["temperature"] == 0.1
    assert payload["options"]["num_ctx"] == 32768
    print("  ✓ test_complete_returns_trimmed_text")


def test_retry_then_success():
    responses = [requests.ConnectionError("down"), _response({"response": "ok"})]
    with mock.patch("tender_gap.llm.requests.post", side_effect=responses) as post, \
            mock.patch("tender_gap.llm.time.sleep") as sleep:
        assert _gateway().complete("prompt") == "ok"
    assert post.call_count == 2
    sleep.assert_called_once_with(1.0)
    print("  ✓ test_retry_then_success")


def test_gives_up_with_none():
    with mock.patch("tender_gap.llm.requests.post", side_effect=requests.Timeout("slow")) as post, \
            mock.patch("tender_gap.llm.time.sleep") as sleep:
        assert _gateway().complete("prompt") is None
    assert post.call_count == 2
    assert sleep.call_count == 1
    print("  ✓ test_gives_up_with_none")


def test_empty_answer_is_a_failure():
    with mock.patch("tender_gap.llm.requests.post", return_value=_response({"response": "   "})) as post, \
            mock.patch("tender_gap.llm.time.sleep"):
        assert _gateway().complete("prompt") is None
    assert post.call_count == 2
    print("  ✓ test_empty_answer_is_a_failure")


def test_chat_payload():
    body = {"message": {"role": "assistant", "content": '{"a": 1}'}}
    with mock.patch("tender_gap.llm.requests.post", return_value=_response(body)) as post:
        content = _gateway().chat([{"role": "user", "content": "hi"}], options={"temperature": 0.0}, fmt="json")
    assert content == '{"a": 1}'
    assert post.call_args.args[0].endswith("/chat")
    payload = post.call_args.kwargs["json"]
    assert payload["format"] == "json"
    assert payload["messages"] == [{"role": "user", "content": "hi"}]
    assert payload["options"]["temperature"] == 0.0
    print("  ✓ test_chat_payload")


def test_disabled_gateway_makes_no_calls():
    gateway = LLMGateway(LLMConfig(enabled=False))
    with mock.patch("tender_gap.llm.requests.post") as post:
        assert gateway.complete("prompt") is None
        assert gateway.chat([{"role": "user", "content": "hi"}]) is None
        assert gateway.ensure_model() is False
    post.assert_not_called()
    print("  ✓ test_disabled_gateway_makes_no_calls")


def test_ensure_model_is_best_effort():
    with mock.patch("tender_gap.llm.requests.post", side_effect=requests.ConnectionError("down")):
        assert _gateway().ensure_model() is False
    with mock.patch("tender_gap.llm.requests.post", return_value=_response({"status": "success"})) as post:
        assert _gateway().ensure_model() is True
    assert post.call_args.args[0].endswith("/pull")
    print("  ✓ test_ensure_model_is_best_effort")


# ── JSON salvage ──────────────────────────────────────────────────────────

def test_parse_fenced_json():
    assert parse_json_output('```json\n{"a": 1}\n```') == {"a": 1}
    assert parse_json_output('[1, 2]') == [1, 2]
    print("  ✓ test_parse_fenced_json")


def test_parse_first_balanced_object():
    text = 'Here is the JSON: {"a": {"b": "}"}} and another {"c": 2}'
    assert parse_json_output(text) == {"a": {"b": "}"}}
    print("  ✓ test_parse_first_balanced_object")


def test_extract_by_type():
    assert extract_json_array('Result: ["x", "y"] done') == ["x", "y"]
    assert extract_json_object("[1, 2]") is None
    assert extract_json_object('noise {"ok": true} noise') == {"ok": True}
    print("  ✓ test_extract_by_type")


def test_unparseable_returns_none():
    assert parse_json_output('{"a": 1') is None
    assert parse_json_output("") is None
    assert parse_json_output(None) is None
    assert extract_json_array("no arrays here") is None
    print("  ✓ test_unparseable_returns_none")


def run_all_tests():
    print("\n" + "=" * 60)
    print("  TenderGap — LLM Gateway Tests")
    print("=" * 60 + "\n")

    tests = [
        test_complete_returns_trimmed_text,
        test_retry_then_success,
        test_gives_up_with_none,
        test_empty_answer_is_a_failure,
        test_chat_payload,
        test_disabled_gateway_makes_no_calls,
        test_ensure_model_is_best_effort,
        test_parse_fenced_json,
        test_parse_first_balanced_object,
        test_extract_by_type,
        test_unparseable_returns_none,
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
