"""
prebid.py — Draft authority answers to vendor pre-bid queries.

Input is a clarification letter or query log sent by a bidder. Queries
are pulled out with line heuristics first (numbered / bulleted lines
under headings like "Technical" or "Commercial"). Fewer than three hits
usually means a layout the heuristics don't know, so the model extracts
and groups them instead.

Answers are generated one chat call per section, in parallel, and every
extracted query ends up in the output: a query the model skipped gets
the standard "not specified, issue an addendum" answer.
"""

from __future__ import annotations

import json
import logging
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from tender_gap.config import PreBidConfig, config
from tender_gap.ingestion import DocumentReadError
from tender_gap.llm import LLMGateway, LLMUnavailableError, extract_json_object, get_gateway
from tender_gap.schemas import PreBidResult, PreBidRow, PreBidSection

logger = logging.getLogger(__name__)

ALL_QUERIES = "All queries"
MIN_DOCUMENT_CHARS = 40
MIN_QUESTION_CHARS = 8
MIN_DEDUPE_KEY_CHARS = 12

UNANSWERED_ANSWER = (
    "Not specified in the provided document. Recommendation: Include an addendum clarifying "
    "this point to ensure all bidders follow consistent assumptions."
)

HEADING_RE = re.compile(
    r"^(section\s+[a-z0-9]+[\s:—-]+)?(administrative|submission|technical|scope|integration|interface|"
    r"data migration|testing|training|acceptance|commercial|payment|bond|bonds|staffing|language|"
    r"governance|project management|infrastructure|architecture)\b",
    re.IGNORECASE,
)
SECTION_PREFIX_RE = re.compile(r"^section\s+[a-z0-9]+[\s:—-]+", re.IGNORECASE)
QUERY_START_RE = re.compile(r"^(query\s*#?\s*(\d+)[\s:—-]+|(\d+)[.)]\s+|[-*•]\s+)(.+)$", re.IGNORECASE)
PAGE_RE = re.compile(r"^page\s+\d+", re.IGNORECASE)
QUESTION_WORDS_RE = re.compile(
    r"\b(what|when|who|where|how|kindly|please|confirm|clarify|share|provide|can you)\b",
    re.IGNORECASE,
)

# Topics that change what bidders submit or price. A clarification on
# any of them has to reach every bidder through an addendum.
ADDENDUM_SIGNALS = (
    "submission", "deadline", "cut-off", "email", "format", "file size", "scope",
    "included", "excluded", "integration", "interface", "api", "migration", "data",
    "payment", "milestone", "bond", "guarantee", "penalty", "sla", "hosting",
    "environment", "uat", "acceptance",
)

EXTRACT_SYSTEM_PROMPT = """You extract vendor pre-bid queries from tender documents.
Return ONLY valid JSON.
Rules:
- Extract each distinct vendor query as an object: { "id": <int or null>, "question": "<string>" }
- Do NOT answer queries.
- Do NOT invent.
- If id is not visible, use null.
- Keep the question concise but faithful.
Return JSON: { "items": [ ... ] }"""

GROUP_SYSTEM_PROMPT = """You group tender pre-bid questions into logical sections.
Return ONLY valid JSON.
Input is a list of questions with ids.
Output JSON schema:
{ "sections": [ { "sectionTitle": "...", "ids": [1,2,3] } ] }
Rules:
- Use common tender headings: Administrative or submission, Technical or scope, Integration and interfaces, Data migration and testing, Testing, training and acceptance, Infrastructure and architecture, Project management and governance, Resource and language, Commercial and contractual.
- If unsure, use "All queries".
- Every id must appear exactly once."""

ANSWER_SYSTEM_PROMPT = """You are TenderPreBidQueryAddendumAgent.
You help a tendering authority prepare structured answers to vendor pre-bid queries and decide which clarifications should be included in an official RFP addendum.

Critical rules:
- Use ONLY facts explicitly stated or clearly implied in the provided document text.
- NEVER invent dates, amounts, percentages, versions, URLs, email addresses, SLAs, clause numbers.
- If the document is silent/ambiguous, say: "Not specified in the provided document." Then propose recommended addendum wording (clearly labeled "Recommendation: ...").
- Answer from the authority perspective ({authority}), not vendor.
- Be concise, formal, and operational.

You must return ONLY valid JSON.
Output schema:
{{
  "sectionTitle": "...",
  "rows": [
    {{ "id": 1, "vendorQuestion": "...", "suggestedGovernmentAnswer": "...", "addendum": "Yes|No|No (capture in contract)|No (unless requirement changes)" }}
  ]
}}"""

ANSWER_INSTRUCTIONS = (
    "Use the provided document text as the only source of truth. If the document does not specify a "
    "detail, say so and provide recommended addendum wording. Return JSON with keys: sectionTitle and "
    "rows (with id, vendorQuestion, suggestedGovernmentAnswer, addendum)."
)


@dataclass
class Query:
    id: int
    question: str


@dataclass
class QuerySection:
    title: str
    queries: List[Query] = field(default_factory=list)


def normalize_whitespace(s: Optional[str]) -> str:
    s = (s or "").replace("\r\n", "\n")
    s = re.sub(r"[ \t]+\n", "\n", s)
    s = re.sub(r"\n{3,}", "\n\n", s)
    s = re.sub(r"[ \t]{2,}", " ", s)
    return s.strip()


def chunk_text(text: str, max_chars: int) -> List[str]:
    """Split into windows of at most max_chars, cutting at a line break past the halfway mark."""
    if len(text) <= max_chars:
        return [text]

    chunks: List[str] = []
    start = 0
    while start < len(text):
        end = min(start + max_chars, len(text))
        last_break = text.rfind("\n", start, end) - start
        if end < len(text) and last_break > max_chars // 2:
            end = start + last_break
        chunks.append(text[start:end])
        start = end
    return [c for c in (normalize_whitespace(c) for c in chunks) if c]


def looks_like_question(text: str) -> bool:
    return text.endswith("?") or bool(QUESTION_WORDS_RE.search(text))


def _is_heading(line: str) -> bool:
    return bool(HEADING_RE.match(line)) and len(line) < 120 and not QUERY_START_RE.match(line)


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def count_queries(sections: List[QuerySection]) -> int:
    return sum(len(s.queries) for s in sections)


# ── Heuristic extraction ──────────────────────────────────────────────────

def extract_sections_heuristically(text: str) -> List[QuerySection]:
    """
    Walk the lines: headings open a section, query-start lines (Query #3,
    "4.", "5)", bullets) open a query that swallows following lines until
    the next heading, query or page marker.
    """
    lines = [line.strip() for line in (text or "").split("\n")]
    sections: List[QuerySection] = []
    current = QuerySection(title=ALL_QUERIES)
    seq = 1

    i = 0
    while i < len(lines):
        line = lines[i]
        i += 1
        if not line:
            continue

        if _is_heading(line):
            if current.queries:
                sections.append(current)
            current = QuerySection(title=SECTION_PREFIX_RE.sub("", line).strip())
            continue

        match = QUERY_START_RE.match(line)
        if not match:
            continue

        explicit = match.group(2) or match.group(3)
        query_id = int(explicit) if explicit else seq
        if query_id <= 0:
            query_id = seq

        parts = [match.group(4)]
        while i < len(lines):
            nxt = lines[i]
            if not nxt:
                i += 1
                continue
            if _is_heading(nxt) or QUERY_START_RE.match(nxt) or PAGE_RE.match(nxt):
                break
            parts.append(nxt)
            i += 1

        question = normalize_whitespace(" ".join(parts))
        if looks_like_question(question) and len(question) > MIN_QUESTION_CHARS:
            current.queries.append(Query(id=query_id, question=question))
            seq = max(seq, query_id + 1)

    if current.queries:
        sections.append(current)
    for section in sections:
        section.queries.sort(key=lambda q: q.id)
    return sections


# ── LLM extraction ────────────────────────────────────────────────────────

def _dedupe_key(question: str) -> str:
    return re.sub(r"[^a-z0-9]+", " ", question.lower()).strip()


def extract_sections_with_llm(
    text: str,
    gateway: LLMGateway,
    prebid_config: Optional[PreBidConfig] = None,
) -> List[QuerySection]:
    """Extract queries chunk by chunk, dedupe, assign missing ids, then let the model group them."""
    cfg = prebid_config or config.prebid
    chunks = chunk_text(text, cfg.max_chars_per_call)
    logger.info("Extracting queries with the LLM (%d chunk(s))", len(chunks))

    extracted: List[Dict[str, Any]] = []
    for idx, chunk in enumerate(chunks, start=1):
        content = gateway.chat(
            [
                {"role": "system", "content": EXTRACT_SYSTEM_PROMPT},
                {"role": "user", "content": f"DOCUMENT CHUNK {idx}/{len(chunks)}:\n\n{chunk}\n\nExtract the vendor queries."},
            ],
            options={"temperature": 0},
        )
        if content is None:
            raise LLMUnavailableError("The model returned nothing while extracting pre-bid queries.")

        items = (extract_json_object(content) or {}).get("items")
        if not isinstance(items, list):
            logger.warning("Chunk %d/%d: no 'items' array in model output", idx, len(chunks))
            continue
        for item in items:
            if not isinstance(item, dict):
                continue
            question = normalize_whitespace(str(item.get("question") or ""))
            if len(question) > MIN_QUESTION_CHARS:
                extracted.append({"id": _as_int(item.get("id")), "question": question})

    seen = set()
    unique = []
    for item in extracted:
        key = _dedupe_key(item["question"])
        if len(key) < MIN_DEDUPE_KEY_CHARS or key in seen:
            continue
        seen.add(key)
        unique.append(item)

    next_id = max([item["id"] for item in unique if item["id"] and item["id"] > 0] or [0]) + 1
    queries: List[Query] = []
    for item in unique:
        query_id = item["id"]
        if not query_id or query_id <= 0:
            query_id = next_id
            next_id += 1
        queries.append(Query(id=query_id, question=item["question"]))
    queries.sort(key=lambda q: q.id)

    return group_queries(queries, gateway)


def group_queries(queries: List[Query], gateway: LLMGateway) -> List[QuerySection]:
    """
    Ask the model to group queries by id. Each id is used once; ids the
    model dropped land in a trailing "All queries" section.
    """
    if not queries:
        return []

    payload = {"rows": [{"id": q.id, "vendorQuestion": q.question} for q in queries]}
    content = gateway.chat(
        [
            {"role": "system", "content": GROUP_SYSTEM_PROMPT},
            {"role": "user", "content": json.dumps(payload, indent=2)},
        ],
        options={"temperature": 0},
    )
    grouping = extract_json_object(content)
    section_defs = grouping.get("sections") if grouping else None
    if not isinstance(section_defs, list):
        logger.warning("Query grouping unusable, putting everything under '%s'", ALL_QUERIES)
        section_defs = [{"sectionTitle": ALL_QUERIES, "ids": [q.id for q in queries]}]

    by_id = {q.id: q for q in queries}
    used = set()
    sections: List[QuerySection] = []
    for section_def in section_defs:
        if not isinstance(section_def, dict):
            continue
        title = normalize_whitespace(str(section_def.get("sectionTitle") or "")) or ALL_QUERIES
        ids = section_def.get("ids") if isinstance(section_def.get("ids"), list) else []
        rows = []
        for raw_id in ids:
            query_id = _as_int(raw_id)
            if query_id is None or query_id in used or query_id not in by_id:
                continue
            rows.append(by_id[query_id])
            used.add(query_id)
        if rows:
            sections.append(QuerySection(title=title, queries=rows))

    leftovers = [q for q in queries if q.id not in used]
    if leftovers:
        sections.append(QuerySection(title=ALL_QUERIES, queries=leftovers))
    return sections


# ── Answering ─────────────────────────────────────────────────────────────

def decide_addendum(question: str, answer: str) -> str:
    """'Yes' when the exchange touches anything bidders price or submit against."""
    haystack = f"{question} {answer}".lower()
    return "Yes" if any(signal in haystack for signal in ADDENDUM_SIGNALS) else "No"


def truncate_document(text: str, max_chars: int) -> str:
    """Keep the first 60% and last 40% of the budget when the document is too long."""
    if len(text) <= max_chars:
        return text
    head = text[: int(max_chars * 0.6)]
    tail = text[-int(max_chars * 0.4):]
    return f"{head}\n\n--- TRUNCATED ---\n\n{tail}"


def repair_rows(rows: Any, section: QuerySection) -> List[PreBidRow]:
    """Keep well-formed answered rows, then add the fallback answer for every query left out."""
    questions = {q.id: q.question for q in section.queries}
    repaired: Dict[int, PreBidRow] = {}

    for row in rows if isinstance(rows, list) else []:
        if not isinstance(row, dict):
            continue
        row_id = _as_int(row.get("id"))
        if row_id is None or row_id <= 0 or row_id in repaired:
            continue
        question = normalize_whitespace(str(row.get("vendorQuestion") or questions.get(row_id) or ""))
        answer = normalize_whitespace(str(row.get("suggestedGovernmentAnswer") or ""))
        if not question or not answer:
            continue
        addendum = normalize_whitespace(str(row.get("addendum") or "")) or decide_addendum(question, answer)
        repaired[row_id] = PreBidRow(
            id=row_id,
            vendor_question=question,
            suggested_government_answer=answer,
            addendum=addendum,
        )

    for query in section.queries:
        if query.id not in repaired:
            repaired[query.id] = PreBidRow(
                id=query.id,
                vendor_question=query.question,
                suggested_government_answer=UNANSWERED_ANSWER,
                addendum="Yes",
            )

    return sorted(repaired.values(), key=lambda r: r.id)


def answer_section(
    section: QuerySection,
    document_text: str,
    title: str,
    gateway: LLMGateway,
    vendor: Optional[str] = None,
    authority: Optional[str] = None,
) -> PreBidSection:
    payload = {
        "title": title,
        "vendorCompanyName": vendor,
        "authorityName": authority,
        "instructions": ANSWER_INSTRUCTIONS,
        "sectionTitle": section.title,
        "queries": [{"id": q.id, "vendorQuestion": q.question} for q in section.queries],
        "documentText": document_text,
    }
    content = gateway.chat(
        [
            {"role": "system", "content": ANSWER_SYSTEM_PROMPT.format(authority=authority or "tendering authority")},
            {"role": "user", "content": json.dumps(payload)},
        ],
        options={"temperature": 0},
    )
    if content is None:
        raise LLMUnavailableError(f"The model returned no answers for section '{section.title}'.")

    parsed = extract_json_object(content) or {}
    rows = repair_rows(parsed.get("rows"), section)
    section_title = normalize_whitespace(str(parsed.get("sectionTitle") or section.title)) or ALL_QUERIES
    logger.info("  ✓ %s: %d answers", section_title, len(rows))
    return PreBidSection(section_title=section_title, rows=rows)


def build_title(project: Optional[str]) -> str:
    if project and project.strip():
        return f"Pre-Bid Queries — {project.strip()} (draft)"
    return "Pre-Bid Queries — Tender RFP (draft)"


def build_description(vendor: Optional[str]) -> str:
    return (
        f"This JSON contains vendor queries submitted by {vendor or 'the vendor'}, suggested authority "
        "answers, and a decision on whether each clarification should be included in an official RFP addendum."
    )


def answer_all(
    sections: List[QuerySection],
    document_text: str,
    gateway: LLMGateway,
    vendor: Optional[str] = None,
    authority: Optional[str] = None,
    project: Optional[str] = None,
    prebid_config: Optional[PreBidConfig] = None,
) -> PreBidResult:
    cfg = prebid_config or config.prebid
    trimmed = truncate_document(document_text, cfg.max_doc_chars)
    title = build_title(project)

    logger.info("Answering %d queries across %d section(s)", count_queries(sections), len(sections))
    answered: List[PreBidSection] = []
    if sections:
        with ThreadPoolExecutor(max_workers=max(1, min(cfg.max_workers, len(sections)))) as pool:
            answered = list(pool.map(
                lambda s: answer_section(s, trimmed, title, gateway, vendor, authority),
                sections,
            ))

    return PreBidResult(title=title, description=build_description(vendor), sections=answered)


def analyze_prebid_queries(
    text: str,
    vendor: Optional[str] = None,
    authority: Optional[str] = None,
    project: Optional[str] = None,
    gateway: Optional[LLMGateway] = None,
    prebid_config: Optional[PreBidConfig] = None,
) -> PreBidResult:
    """
    Extract vendor queries from `text` and draft an answer and addendum
    decision for each.

    Raises:
        LLMUnavailableError: backend disabled or a call produced nothing.
        DocumentReadError:   fewer than 40 chars of text.
    """
    cfg = prebid_config or config.prebid
    gateway = gateway or get_gateway()
    if not gateway.enabled:
        raise LLMUnavailableError("Ollama is disabled. Set OLLAMA_ENABLED=true to use this feature.")

    text = normalize_whitespace(text)
    if len(text) < MIN_DOCUMENT_CHARS:
        raise DocumentReadError("Could not extract meaningful text from the document.")

    gateway.ensure_model()

    sections = extract_sections_heuristically(text)
    found = count_queries(sections)
    logger.info("Heuristics found %d queries", found)
    if found < cfg.min_heuristic_queries:
        logger.info("Fewer than %d queries, falling back to LLM extraction", cfg.min_heuristic_queries)
        sections = extract_sections_with_llm(text, gateway, cfg)
        logger.info("LLM extraction found %d queries", count_queries(sections))

    return answer_all(sections, text, gateway, vendor, authority, project, cfg)
