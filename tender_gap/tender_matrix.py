"""
tender_matrix.py — Per-company ratings from a tender evaluation matrix.

Evaluation reports put the matrix somewhere in the middle of a long
document, as a table flattened into text by the PDF reader. Rather than
sending everything, a keyword pass cuts out the part that looks like the
matrix (company / rating / weightage headers, or lines full of numbers
next to a known sub-criterion) and the model only sees that, plus the
first and last pages for context.

Every company in the output carries all eleven sub-criteria, each with a
numeric Weightage and Rating or null. Symbols and text in a numeric slot
become null: a rating the model had to guess is worse than none.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List, Optional

from tender_gap.config import ExtractionConfig, config
from tender_gap.ingestion import DocumentReadError
from tender_gap.llm import LLMGateway, LLMUnavailableError, get_gateway, parse_json_output
from tender_gap.schema_enforcer import SchemaEnforcer

logger = logging.getLogger(__name__)

MIN_DOCUMENT_CHARS = 50
MIN_MATRIX_LINES = 20
MATRIX_BREAK_MIN_LINES = 50

COMPANY_NAME = "Company Name"
OVERALL_RATING = "Overall Rating"
CATEGORY_WEIGHTAGE = "Category-Level Weightage"
CATEGORY_RATING = "Category-Level Rating"
SUBCATEGORY_RATINGS = "Subcategory Ratings"

SUBCATEGORIES = (
    "Module Covered",
    "Data Migration",
    "Organizational change management",
    "Post Implementation Support",
    "Custom Objects Considered (RICEF)",
    "Project Duration",
    "Implementation Timeline / Consultants",
    "Partner Experience",
    "Reference (>1 Million Dollar) - Public Service Domain",
    "Reference # 1 - GCC region",
    "Reference # 1 - Non-GCC region",
)

COMPANY_TEMPLATE: Dict[str, Any] = {
    COMPANY_NAME: None,
    OVERALL_RATING: None,
    CATEGORY_WEIGHTAGE: None,
    CATEGORY_RATING: None,
    SUBCATEGORY_RATINGS: {name: {"Weightage": None, "Rating": None} for name in SUBCATEGORIES},
}
MATRIX_TEMPLATE: Dict[str, Any] = {"companies": [COMPANY_TEMPLATE]}

COMPANY_HEADER_RE = re.compile(
    r"(company|vendor|bidder|proposer|supplier|contractor|firm)\s+name", re.IGNORECASE
)
RATING_HEADER_RE = re.compile(
    r"(overall|final|total)\s+(rating|score)|evaluation\s+score", re.IGNORECASE
)
WEIGHTAGE_HEADER_RE = re.compile(r"weight|percentage|%", re.IGNORECASE)
SUBCATEGORY_RE = re.compile(
    r"module\s+covered|data\s+migration|organizational\s+change\s+management|"
    r"post\s+implementation\s+support|custom\s+objects\s+considered|ricef|project\s+duration|"
    r"implementation\s+timeline|consultants|partner\s+experience|reference|gcc\s+region|"
    r"public\s+service\s+domain",
    re.IGNORECASE,
)
SECTION_BREAK_RE = re.compile(r"^(chapter|section|appendix|table of contents|[0-9]+\.)", re.IGNORECASE)
NUMBER_RE = re.compile(r"\d+\.?\d*")

_COMPANY_SCHEMA = json.dumps({"companies": [{
    COMPANY_NAME: "string (exact company name from document)",
    OVERALL_RATING: "number or null",
    CATEGORY_WEIGHTAGE: "number or null",
    CATEGORY_RATING: "number or null",
    SUBCATEGORY_RATINGS: {name: {"Weightage": "number or null", "Rating": "number or null"} for name in SUBCATEGORIES},
}]}, indent=2)

SYSTEM_PROMPT = f"""You are a JSON extraction agent. Your ONLY job is to return a valid JSON object.

EXTRACTION TASK:
Extract evaluation matrix data from tender documents. Find ALL companies and extract their ratings/weightages.

REQUIRED OUTPUT FORMAT:
{_COMPANY_SCHEMA}

EXTRACTION RULES:
1. Find ALL company names in the evaluation matrix.
2. For each company extract "{COMPANY_NAME}" (exact spelling), "{OVERALL_RATING}" (from "Overall Rating", "Final Rating" or "Total Score" rows), "{CATEGORY_WEIGHTAGE}", "{CATEGORY_RATING}" and the Weightage and Rating of every subcategory.
3. Use null for missing values, never guess.
4. Convert symbols: ✓/✔ = 10, ✖/X = 0, ●/○ = null.
5. Numbers can be decimals (7.9, 8.8) or integers (10, 0).

TERMINOLOGY MAPPING:
- "Module Coverage" -> "Module Covered"
- "Implementation Approach" -> "Implementation Timeline / Consultants"
- "Partner Capability" -> "Partner Experience"
- "References" -> "Reference (>1 Million Dollar) - Public Service Domain"

Return ONLY the JSON object. If no companies are found return {{"companies": []}}."""

USER_PROMPT = """Extract the evaluation matrix from this tender document.

Tender ID: {tender_id}

DOCUMENT TEXT:
{excerpt}

Return one object per company inside "companies". Use null for missing values."""

RETRY_SYSTEM_PROMPT = (
    'You are a JSON extraction tool. Return ONLY {"companies": [...]} as valid JSON. No other text.'
)

RETRY_PROMPT = """Extract companies and ratings from this document.

Document excerpt:
{excerpt}

Example:
{{"companies": [{{"Company Name": "ACME", "Overall Rating": 7.9, "Category-Level Weightage": null, "Category-Level Rating": 7.9, "Subcategory Ratings": {{"Module Covered": {{"Weightage": 0.35, "Rating": 10}}}}}}]}}"""

REPAIR_SYSTEM_PROMPT = "You are a JSON repair tool. Return ONLY valid JSON. No extra text."


def normalize_whitespace(text: str) -> str:
    """NBSP to space, runs of spaces/tabs to one space, at most one blank line."""
    text = (text or "").replace("\u00a0", " ")
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def _is_matrix_header(line: str) -> bool:
    return bool(
        COMPANY_HEADER_RE.search(line) or RATING_HEADER_RE.search(line) or WEIGHTAGE_HEADER_RE.search(line)
    )


def find_matrix_section(text: str) -> str:
    """
    Cut out the lines that look like the evaluation matrix.

    Starts five lines above the first company / rating / weightage header
    and runs to the next numbered or "Section ..." heading after a blank
    line, once at least 50 lines are collected. Too short a block falls
    back to a window around the first line holding three or more numbers
    and a rating keyword, then to the first 10000 chars.
    """
    lines = text.split("\n")
    matrix_lines: List[str] = []
    in_matrix = False

    for i, line in enumerate(lines):
        if not in_matrix and _is_matrix_header(line):
            in_matrix = True
            matrix_lines.extend(lines[max(0, i - 5):i])
        if not in_matrix:
            continue

        matrix_lines.append(line)
        if i + 1 < len(lines):
            next_line = lines[i + 1].strip()
            if (not line.strip() and next_line and SECTION_BREAK_RE.match(next_line)
                    and len(matrix_lines) > MATRIX_BREAK_MIN_LINES):
                break

    if len(matrix_lines) < MIN_MATRIX_LINES:
        for i, line in enumerate(lines):
            if len(NUMBER_RE.findall(line)) >= 3 and (
                RATING_HEADER_RE.search(line) or WEIGHTAGE_HEADER_RE.search(line) or SUBCATEGORY_RE.search(line)
            ):
                return "\n".join(lines[max(0, i - 10):i + 100])

    if len(matrix_lines) > MIN_MATRIX_LINES:
        return "\n".join(matrix_lines)
    return text[:10000]


def extract_relevant_text(text: str, cfg: Optional[ExtractionConfig] = None) -> str:
    """Intro + matrix block + closing pages, capped at matrix_excerpt_chars."""
    cfg = cfg or config.extraction
    intro = text[:cfg.matrix_context_chars]
    ending = text[max(0, len(text) - cfg.matrix_context_chars):]
    combined = (
        f"{intro}\n\n---MATRIX_SECTION---\n\n{find_matrix_section(text)}"
        f"\n\n---END_SECTION---\n\n{ending}"
    )
    if len(combined) > cfg.matrix_excerpt_chars:
        return combined[:cfg.matrix_excerpt_chars] + "\n[...truncated...]"
    return combined


def as_company_object(raw: Optional[str]) -> Optional[str]:
    """
    Rewrite a bare array (or a lone company object) as {"companies": [...]}.

    The enforcer only reads JSON objects, and models asked for the
    wrapped form still answer with a bare array now and then.
    """
    parsed = parse_json_output(raw)
    if isinstance(parsed, list):
        return json.dumps({"companies": parsed})
    if isinstance(parsed, dict) and "companies" not in parsed:
        if COMPANY_NAME in parsed:
            return json.dumps({"companies": [parsed]})
        if isinstance(parsed.get("data"), list):
            return json.dumps({"companies": parsed["data"]})
    return raw


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value


def _has_data(company: Dict[str, Any]) -> bool:
    if company.get(COMPANY_NAME):
        return True
    numbers = [company.get(OVERALL_RATING), company.get(CATEGORY_WEIGHTAGE), company.get(CATEGORY_RATING)]
    ratings = company.get(SUBCATEGORY_RATINGS)
    for scores in (ratings.values() if isinstance(ratings, dict) else ()):
        if isinstance(scores, dict):
            numbers += [scores.get("Weightage"), scores.get("Rating")]
    return any(_number(n) is not None for n in numbers)


def finalize_companies(shaped: Dict[str, Any]) -> Dict[str, Any]:
    """
    Numeric slots keep numbers only, unnamed companies get Company_<n>.

    Entries with no name and no numbers are dropped: they are the
    template's placeholder row, not a company. Non-object entries are
    kept as they are so validation sends them back for repair.
    """
    companies: List[Any] = []
    for item in shaped.get("companies") or []:
        if not isinstance(item, dict):
            companies.append(item)
            continue
        if not _has_data(item):
            continue

        name = item.get(COMPANY_NAME)
        company = {
            COMPANY_NAME: str(name).strip() if name not in (None, "") else f"Company_{len(companies) + 1}",
            OVERALL_RATING: _number(item.get(OVERALL_RATING)),
            CATEGORY_WEIGHTAGE: _number(item.get(CATEGORY_WEIGHTAGE)),
            CATEGORY_RATING: _number(item.get(CATEGORY_RATING)),
            SUBCATEGORY_RATINGS: {},
        }
        ratings = item.get(SUBCATEGORY_RATINGS)
        ratings = ratings if isinstance(ratings, dict) else {}
        for subcategory in SUBCATEGORIES:
            scores = ratings.get(subcategory)
            scores = scores if isinstance(scores, dict) else {}
            company[SUBCATEGORY_RATINGS][subcategory] = {
                "Weightage": _number(scores.get("Weightage")),
                "Rating": _number(scores.get("Rating")),
            }
        companies.append(company)
    return {"companies": companies}


def _build_messages(system: str, user: str) -> List[Dict[str, str]]:
    return [{"role": "system", "content": system}, {"role": "user", "content": user}]


def _request_companies(gateway: LLMGateway, messages: List[Dict[str, str]]) -> List[Dict[str, Any]]:
    raw = gateway.chat(messages, options={"temperature": 0.0}, fmt="json")
    if raw is None:
        raise LLMUnavailableError("The model returned no matrix. Check the Ollama service.")

    def repair(bad_text: str) -> Optional[str]:
        return as_company_object(gateway.chat(
            _build_messages(REPAIR_SYSTEM_PROMPT, f"Fix this into STRICT valid JSON object only:\n\n{bad_text}"),
            options={"temperature": 0.0},
            fmt="json",
        ))

    enforcer = SchemaEnforcer(MATRIX_TEMPLATE, repair=repair, post_process=finalize_companies, sentinel=None)
    return enforcer.run(as_company_object(raw))["companies"]


def extract_tender_matrix(
    text: str,
    tender_id: Optional[str] = None,
    gateway: Optional[LLMGateway] = None,
    extraction_config: Optional[ExtractionConfig] = None,
) -> List[Dict[str, Any]]:
    """
    Extract one entry per bidding company from the evaluation matrix.

    An empty first answer gets one retry with a shorter excerpt and a
    worked example; an empty second answer is returned as [].

    Raises:
        LLMUnavailableError:   backend disabled or gave no answer.
        DocumentReadError:     fewer than 50 chars of readable text.
        SchemaValidationError: still invalid after the repair attempts.
    """
    gateway = gateway or get_gateway()
    if not gateway.enabled:
        raise LLMUnavailableError("Ollama is not enabled. Please enable it in the configuration.")

    cfg = extraction_config or config.extraction
    normalized = normalize_whitespace(text)
    if len(normalized) < MIN_DOCUMENT_CHARS:
        raise DocumentReadError("No readable text extracted from document.")

    gateway.ensure_model()
    excerpt = extract_relevant_text(normalized, cfg)
    logger.info("Matrix excerpt: %d of %d chars", len(excerpt), len(normalized))

    companies = _request_companies(gateway, _build_messages(
        SYSTEM_PROMPT, USER_PROMPT.format(tender_id=tender_id or "Not provided", excerpt=excerpt),
    ))
    if not companies:
        logger.warning("No companies in the first answer, retrying with a worked example")
        companies = _request_companies(gateway, _build_messages(
            RETRY_SYSTEM_PROMPT, RETRY_PROMPT.format(excerpt=excerpt[:cfg.matrix_retry_chars]),
        ))

    logger.info("Matrix extraction found %d companies", len(companies))
    return companies
