"""
llm.py — Gateway to the Ollama generative backend, plus JSON salvage.

Two request shapes are used:
  - /generate  single prompt in, flat text out (gap-analysis enrichment,
               RFP evaluation, weight extraction)
  - /chat      message list in, message object out (tender overview,
               pre-bid queries); can ask Ollama for format="json"

The gateway never raises for backend trouble. Transport errors, HTTP
errors, timeouts and empty answers are retried with linear backoff and
then reported as None. Callers decide what None means: the gap analysis
carries on with its deterministic result, the schema-mapping features
raise LLMUnavailableError.

The model is not trusted to return bare JSON. It wraps output in ```json
fences, prefixes "Here is the JSON:", or appends an explanation, so the
parse helpers below try progressively looser strategies.
"""

from __future__ import annotations

import json
import logging
import re
import time
from typing import Any, Dict, List, Optional

import requests

from tender_gap.config import LLMConfig, config

logger = logging.getLogger(__name__)


class LLMUnavailableError(RuntimeError):
    """A feature that cannot work without the generative backend didn't get an answer."""


class LLMGateway:
    """
    Thin retrying client for the Ollama HTTP API.

    Usage:
        gateway = LLMGateway()
        text = gateway.complete("Return JSON only: ...")
        if text is None:
            ...  # backend disabled or unreachable
    """

    def __init__(self, llm_config: Optional[LLMConfig] = None):
        self.cfg = llm_config or config.llm

    @property
    def enabled(self) -> bool:
        return self.cfg.enabled

    def _base_options(self, overrides: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        options = {
            "temperature": self.cfg.temperature,
            "top_p": self.cfg.top_p,
            "num_ctx": self.cfg.num_ctx,
        }
        options.update(overrides or {})
        return options

    def complete(
        self,
        prompt: str,
        max_retries: Optional[int] = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> Optional[str]:
        """Single-shot generation. Returns the trimmed text or None."""
        if not self.enabled:
            logger.debug("LLM disabled, skipping generate call")
            return None

        payload = {
            "model": self.cfg.model,
            "prompt": prompt,
            "stream": False,
            "options": self._base_options(options),
        }
        return self._post("/generate", payload, self.cfg.generate_timeout, max_retries,
                          lambda body: body.get("response"))

    def chat(
        self,
        messages: List[Dict[str, str]],
        options: Optional[Dict[str, Any]] = None,
        fmt: Optional[str] = None,
        max_retries: Optional[int] = None,
    ) -> Optional[str]:
        """Chat-shaped generation. Returns the assistant message content or None."""
        if not self.enabled:
            logger.debug("LLM disabled, skipping chat call")
            return None

        payload: Dict[str, Any] = {
            "model": self.cfg.model,
            "messages": messages,
            "stream": False,
            "options": self._base_options(options),
        }
        if fmt:
            payload["format"] = fmt

        return self._post("/chat", payload, self.cfg.chat_timeout, max_retries,
                          lambda body: (body.get("message") or {}).get("content"))

    def ensure_model(self) -> bool:
        """
        Ask Ollama to pull the configured model.

        Best effort: the shared host usually has it already and a failed
        pull is not worth failing a request over.
        """
        if not self.enabled:
            return False
        try:
            response = requests.post(
                f"{self.cfg.base_url}/pull",
                json={"name": self.cfg.model, "stream": False},
                timeout=self.cfg.pull_timeout,
            )
            response.raise_for_status()
            logger.info("Model %s is available", self.cfg.model)
            return True
        except requests.RequestException as exc:
            logger.warning("Could not pull model %s: %s", self.cfg.model, exc)
            return False

    def _post(self, path, payload, timeout, max_retries, pick) -> Optional[str]:
        """
        POST with retry and linear backoff (base_delay * attempt).

        `max_retries` is the total number of attempts. An empty answer
        counts as a failed attempt.
        """
        attempts = self.cfg.max_retries if max_retries is None else max_retries
        url = f"{self.cfg.base_url}{path}"
        last_error: Optional[Exception] = None

        for attempt in range(1, attempts + 1):
            try:
                response = requests.post(url, json=payload, timeout=timeout)
                response.raise_for_status()
                text = (pick(response.json()) or "").strip()
                if not text:
                    raise ValueError("empty response from model")
                logger.info(
                    "LLM %s returned %d chars on attempt %d/%d",
                    path.lstrip("/"), len(text), attempt, attempts,
                )
                return text
            except (requests.RequestException, ValueError) as exc:
                # requests' JSONDecodeError is a ValueError too.
                last_error = exc
                if attempt < attempts:
                    delay = self.cfg.retry_base_delay * attempt
                    logger.warning(
                        "LLM attempt %d/%d failed: %s. Retrying in %.1fs.",
                        attempt, attempts, exc, delay,
                    )
                    time.sleep(delay)

        logger.warning(
            "LLM %s gave up after %d attempt(s): %s", path.lstrip("/"), attempts, last_error
        )
        return None


_gateway: Optional[LLMGateway] = None


def get_gateway() -> LLMGateway:
    """Process-wide gateway. Cheap to build, cached so tests can patch one object."""
    global _gateway
    if _gateway is None:
        _gateway = LLMGateway()
    return _gateway


# ── JSON salvage ──────────────────────────────────────────────────────────

def _strip_fences(text: str) -> str:
    cleaned = re.sub(r"```(?:json)?\s*", "", text or "")
    return cleaned.strip().rstrip("`")


def _balanced_span(text: str, opener: str, closer: str) -> Optional[str]:
    """
    First balanced opener...closer substring, skipping brackets inside strings.

    Greedy regexes grab from the first "{" to the last "}" and fail when
    the model writes a second object after the first.
    """
    start = text.find(opener)
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == opener:
                depth += 1
            elif ch == closer:
                depth -= 1
                if depth == 0:
                    return text[start:i + 1]
        # Unbalanced from this start (truncated output); try the next opener.
        start = text.find(opener, start + 1)
    return None


def parse_json_output(text: Optional[str]) -> Optional[Any]:
    """
    Multi-strategy JSON parser for model output.

    1. Direct parse
    2. Strip markdown fences and retry
    3. First balanced {...} object
    4. First balanced [...] array
    5. Give up, return None
    """
    if not text:
        return None

    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    cleaned = _strip_fences(text)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass

    for opener, closer in (("{", "}"), ("[", "]")):
        span = _balanced_span(cleaned, opener, closer)
        if span is None:
            continue
        try:
            return json.loads(span)
        except json.JSONDecodeError:
            continue

    return None


def extract_json_object(text: Optional[str]) -> Optional[Dict[str, Any]]:
    """Like parse_json_output, but only accepts a JSON object."""
    parsed = parse_json_output(text)
    if isinstance(parsed, dict):
        return parsed
    span = _balanced_span(_strip_fences(text or ""), "{", "}")
    if span:
        try:
            parsed = json.loads(span)
        except json.JSONDecodeError:
            return None
        return parsed if isinstance(parsed, dict) else None
    return None


def extract_json_array(text: Optional[str]) -> Optional[List[Any]]:
    """Like parse_json_output, but only accepts a JSON array."""
    parsed = parse_json_output(text)
    if isinstance(parsed, list):
        return parsed
    span = _balanced_span(_strip_fences(text or ""), "[", "]")
    if span:
        try:
            parsed = json.loads(span)
        except json.JSONDecodeError:
            return None
        return parsed if isinstance(parsed, list) else None
    return None
