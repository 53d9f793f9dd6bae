"""
rfp_evaluation.py — Map an RFP onto the fixed A1-A4 evaluation template.

Flow:
  1. Relevant-text buckets per category (financial / technical /
     mandatory / sla) from the sectioned document
  2. Weights: regex pass over the whole text, AI pass only if the regex
     found nothing at all, then defaults to fill the holes
  3. Weights are normalised (A1 + A2 = 100, A2 subsections = A2) and
     written into the template the model is shown
  4. One big generation call with the complete document
  5. SchemaEnforcer: merge / validate / repair, with the found weights
     forced back into every candidate

Weights get this much attention because they are what the evaluation
committee checks first, and the model likes to answer "Not specified"
for a 40% that sits in a table it didn't read carefully.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List, Optional

from tender_gap.config import config
from tender_gap.ingestion import DocumentReadError
from tender_gap.llm import LLMGateway, LLMUnavailableError, extract_json_object, get_gateway
from tender_gap.schema_enforcer import NOT_SPECIFIED, SchemaEnforcer
from tender_gap.sections import split_into_sections
from tender_gap.weights import format_percent, normalize_weights, parse_percent

logger = logging.getLogger(__name__)

MIN_DOCUMENT_CHARS = 50

SUBSECTION_KEYS = (
    "A2_1_Functional_Technical_Compliance",
    "A2_2_Implementation_Plan",
    "A2_3_Training_Plan",
    "A2_4_Team_Qualifications",
    "A2_5_Similar_Project_Experience",
)
WEIGHT_KEYS = ("A1_weight", "A2_weight", "A2_1_weight", "A2_2_weight",
               "A2_3_weight", "A2_4_weight", "A2_5_weight", "A1_section_weight")
SUBSECTION_WEIGHT_KEYS = WEIGHT_KEYS[2:7]
DEFAULT_SUBSECTION_SPLIT = (30, 10, 15, 30, 15)


def _requirement(group: str) -> Dict[str, Any]:
    return {
        "group": group,
        "requirement_ids": [NOT_SPECIFIED],
        "description": NOT_SPECIFIED,
        "evidence_required": NOT_SPECIFIED,
    }


def _summary_requirement(group: str) -> Dict[str, Any]:
    return {"group": group, "requirements": NOT_SPECIFIED, "evidence_required": NOT_SPECIFIED}


def empty_template() -> Dict[str, Any]:
    """A new evaluation template on every call. Callers mutate it."""
    return {
        "A1_Financial_Evaluation": {
            "weight": NOT_SPECIFIED,
            "sections": [
                {
                    "scoring_area": "Financial Evaluation",
                    "weight": NOT_SPECIFIED,
                    "requirements": [_requirement("Pricing / BOQ / Commercial Rules")],
                },
                {
                    "scoring_area": "Disqualification",
                    "weight": "0%",
                    "requirements": [_requirement("Financial Disqualification Rules")],
                },
            ],
        },
        "A2_Technical_Evaluation": {
            "weight": NOT_SPECIFIED,
            "subsections": {
                "A2_1_Functional_Technical_Compliance": {
                    "weight": NOT_SPECIFIED,
                    "requirements": [_requirement("Functional / Technical / Integration / Security")],
                },
                "A2_2_Implementation_Plan": {
                    "weight": NOT_SPECIFIED,
                    "requirements": [_requirement("Methodology / Phases / Timeline / Governance")],
                },
                "A2_3_Training_Plan": {
                    "weight": NOT_SPECIFIED,
                    "requirements": [_requirement("Training Coverage / Content / Constraints")],
                },
                "A2_4_Team_Qualifications": {
                    "weight": NOT_SPECIFIED,
                    "requirements": [_summary_requirement("Certifications / Experience")],
                },
                "A2_5_Similar_Project_Experience": {
                    "weight": NOT_SPECIFIED,
                    "requirements": [_summary_requirement("Public Sector Experience")],
                },
            },
        },
        "A3_Mandatory_Compliance": {
            "outcome": "Pass/Fail",
            "requirements": [_requirement("Submission / Forms / Language / Validity")],
        },
        "A4_Support_and_SLA": {
            "requirements": [
                {"sla": sla, "requirement": NOT_SPECIFIED, "evidence_required": NOT_SPECIFIED}
                for sla in ("Availability", "Response Time", "Support Hours", "Backup")
            ],
        },
    }


# ── Relevant text ─────────────────────────────────────────────────────────

RELEVANCE_PATTERNS: Dict[str, List[str]] = {
    "financial": [
        r"financial.*evaluation|evaluation.*financial",
        r"commercial.*proposal|proposal.*commercial",
        r"pricing|price.*schedule|cost.*schedule",
        r"boq|bill.*of.*quantities|bill of quantity",
        r"budget|total.*cost|tco|total cost of ownership",
        r"financial.*weight|commercial.*weight|weight.*financial",
        r"financial.*score|commercial.*score|score.*financial",
        r"financial.*criteria|commercial.*criteria",
        r"financial.*disqualification|disqualification.*financial",
        r"market.*benchmark|benchmark.*comparison",
        r"financial.*documentation|company.*documentation",
    ],
    "technical": [
        r"technical.*evaluation|evaluation.*technical",
        r"functional.*requirement|technical.*requirement|requirement.*functional",
        r"functional.*compliance|technical.*compliance|compliance.*functional",
        r"system.*requirement|software.*requirement|requirement.*system",
        r"implementation.*plan|plan.*implementation|implementation.*methodology",
        r"implementation.*phase|phase.*implementation|implementation.*timeline",
        r"project.*plan|project.*methodology|methodology.*project",
        r"training.*plan|plan.*training|training.*program|user.*training",
        r"team.*qualification|qualification.*team|consultant.*qualification",
        r"similar.*project|project.*experience|previous.*project|reference.*project",
        r"process.*requirement|functional.*requirement|technical.*specification",
        r"api|integration|security.*requirement",
    ],
    "mandatory": [
        r"mandatory.*compliance|compliance.*mandatory",
        r"pass.*fail|fail.*pass|mandatory.*requirement",
        r"submission.*requirement|requirement.*submission|submission.*deadline",
        r"bid.*validity|validity.*bid|proposal.*validity",
        r"language.*requirement|requirement.*language|arabic.*english|english.*arabic",
        r"submission.*format|format.*submission|submission.*guideline",
        r"disqualification|rejection|exclusion|mandatory.*condition",
    ],
    "sla": [
        r"sla|service.*level.*agreement|service level agreement",
        r"support.*plan|plan.*support|support.*service",
        r"availability|uptime|downtime|system.*availability",
        r"response.*time|time.*response|resolution.*time|time.*resolution",
        r"support.*hours|hours.*support|business.*hours|support.*schedule",
        r"backup|retention|recovery|backup.*policy|backup.*retention",
        r"maintenance.*window|window.*maintenance|planned.*maintenance",
        r"severity|priority.*level|incident.*response",
        r"help.*desk|support.*desk|support.*availability",
    ],
}
_RELEVANCE_RE = {
    category: [re.compile(p, re.IGNORECASE) for p in patterns]
    for category, patterns in RELEVANCE_PATTERNS.items()
}

MIN_BUCKET_CHARS = 500
MIN_USABLE_BUCKET_CHARS = 200
SNIPPET_RADIUS = 500
MAX_SNIPPETS = 10


def find_relevant_text(text: str, max_chars: Optional[int] = None) -> Dict[str, str]:
    """
    Collect category-relevant text, one bucket per category.

    Any section with at least one pattern hit goes into the bucket, up to
    max_chars. Thin buckets (< 500 chars) are topped up with ±500-char
    snippets around full-text hits; buckets still under 200 chars fall
    back to the start of the document.
    """
    max_chars = max_chars or config.enforcer.relevant_text_max_chars
    sections = split_into_sections(text)
    relevant = {category: "" for category in _RELEVANCE_RE}

    for name, section_text in sections.items():
        for category, patterns in _RELEVANCE_RE.items():
            if not any(p.search(section_text) for p in patterns):
                continue
            remaining = max_chars - len(relevant[category])
            if remaining <= 0:
                continue
            separator = f"\n\n---SECTION: {name}---\n\n" if relevant[category] else ""
            relevant[category] += separator + section_text[:remaining]

    for category, patterns in _RELEVANCE_RE.items():
        if len(relevant[category]) < MIN_BUCKET_CHARS:
            snippets: List[str] = []
            for pattern in patterns:
                for m in pattern.finditer(text):
                    start = max(0, m.start() - SNIPPET_RADIUS)
                    end = min(len(text), m.end() + SNIPPET_RADIUS)
                    snippets.append(text[start:end])
            added = set()
            for snippet in snippets[:MAX_SNIPPETS]:
                if snippet in added or len(relevant[category]) >= max_chars:
                    continue
                relevant[category] += ("\n\n" if relevant[category] else "") + snippet
                added.add(snippet)

        if len(relevant[category]) < MIN_USABLE_BUCKET_CHARS:
            relevant[category] = text[:max_chars]

    return relevant


# ── Weights ───────────────────────────────────────────────────────────────

_PCT = r"(\d+(?:\.\d+)?)\s*%"

WEIGHT_PATTERNS: Dict[str, List[str]] = {
    "A1_weight": [
        rf"financial.*evaluation.*?{_PCT}",
        rf"financial.*weight.*?{_PCT}",
        rf"commercial.*evaluation.*?{_PCT}",
        rf"A1.*?{_PCT}",
    ],
    "A2_weight": [
        rf"technical.*evaluation.*?{_PCT}",
        rf"technical.*weight.*?{_PCT}",
        rf"A2.*?{_PCT}",
    ],
    "A2_1_weight": [
        rf"functional.*technical.*compliance.*?{_PCT}",
        rf"functional.*weight.*?{_PCT}",
        rf"A2\.1.*?{_PCT}",
    ],
    "A2_2_weight": [
        rf"implementation.*plan.*?{_PCT}",
        rf"implementation.*weight.*?{_PCT}",
        rf"A2\.2.*?{_PCT}",
    ],
    "A2_3_weight": [
        rf"training.*plan.*?{_PCT}",
        rf"training.*weight.*?{_PCT}",
        rf"A2\.3.*?{_PCT}",
    ],
    "A2_4_weight": [
        rf"team.*qualification.*?{_PCT}",
        rf"qualification.*weight.*?{_PCT}",
        rf"A2\.4.*?{_PCT}",
    ],
    "A2_5_weight": [
        rf"similar.*project.*experience.*?{_PCT}",
        rf"experience.*weight.*?{_PCT}",
        rf"A2\.5.*?{_PCT}",
    ],
}
TABLE_WEIGHT_PATTERN = re.compile(
    rf"(?:financial|technical|commercial|functional|implementation|training|qualification|experience)"
    rf".*?[|\-:]\s*{_PCT}",
    re.IGNORECASE,
)


def extract_weights_regex(text: str) -> Dict[str, Optional[str]]:
    """
    Regex pass for the evaluation weights. Values are "NN%" strings or None.

    Patterns are line-bound (no DOTALL), so "Financial Evaluation ... 40%"
    has to sit on one line, which is how both prose and flattened table
    rows arrive from ingestion.
    """
    weights: Dict[str, Optional[str]] = {key: None for key in WEIGHT_KEYS}

    for key, patterns in WEIGHT_PATTERNS.items():
        for pattern in patterns:
            m = re.search(pattern, text, re.IGNORECASE)
            if m:
                weights[key] = f"{m.group(1)}%"
                break

    table_hits = TABLE_WEIGHT_PATTERN.findall(text)
    if table_hits and not weights["A1_weight"]:
        weights["A1_weight"] = f"{table_hits[0]}%"
    if len(table_hits) > 1 and not weights["A2_weight"]:
        weights["A2_weight"] = f"{table_hits[1]}%"

    return weights


WEIGHT_PROMPT = '''You are an expert RFP analyst. Extract ALL evaluation weights and percentages from this RFP document.

DEPARTMENT: "{department}"

TASK:
Find and extract ALL weights/percentages for:
1. A1_Financial_Evaluation.weight (e.g., "50%", "40%")
2. A2_Technical_Evaluation.weight (e.g., "50%", "60%")
3. A2_1_Functional_Technical_Compliance.weight (e.g., "30%", "25%")
4. A2_2_Implementation_Plan.weight (e.g., "10%", "15%")
5. A2_3_Training_Plan.weight (e.g., "15%", "10%")
6. A2_4_Team_Qualifications.weight (e.g., "30%", "25%")
7. A2_5_Similar_Project_Experience.weight (e.g., "15%", "20%")
8. A1 Financial Evaluation section weight (within A1, e.g., "100%")

SEARCH FOR:
- Evaluation criteria tables
- Scoring weight sections
- Percentage allocations
- Weight distribution tables
- Evaluation methodology sections
- Any mention of "weight", "percentage", "%", "allocation"

OUTPUT FORMAT (JSON only):
{{
  "A1_weight": "50%" or null,
  "A2_weight": "50%" or null,
  "A2_1_weight": "30%" or null,
  "A2_2_weight": "10%" or null,
  "A2_3_weight": "15%" or null,
  "A2_4_weight": "30%" or null,
  "A2_5_weight": "15%" or null,
  "A1_section_weight": "100%" or null
}}

DOCUMENT TEXT:
"""{document}"""

Extract weights now. Return ONLY valid JSON.'''


def extract_weights_ai(text: str, department: str, gateway: LLMGateway) -> Optional[Dict[str, str]]:
    """AI fallback for weights. Only keys with a usable number are returned."""
    response = gateway.complete(
        WEIGHT_PROMPT.format(department=department, document=text[:50000]),
        options={"temperature": 0.05, "num_ctx": 16384},
    )
    parsed = extract_json_object(response)
    if not parsed:
        logger.warning("AI weight extraction returned nothing usable")
        return None

    weights: Dict[str, str] = {}
    for key in WEIGHT_KEYS:
        value = parse_percent(parsed.get(key))
        if value is not None and value > 0:
            weights[key] = format_percent(value)
    return weights or None


def resolve_weights(found: Dict[str, Optional[str]], tolerance: Optional[float] = None) -> Dict[str, str]:
    """
    Fill and normalise the weight set.

    - neither A1 nor A2: 50/50
    - only one: the other is its complement to 100
    - A1 + A2 normalised to 100
    - no subsection weights: 30/10/15/30/15 scaled to A2
    - some subsection weights: the rest share what's left of A2 in
      proportion to the default split
    - subsections normalised to A2
    - A1 section weight defaults to 100%
    """
    tolerance = config.enforcer.weight_tolerance if tolerance is None else tolerance
    a1 = parse_percent(found.get("A1_weight"))
    a2 = parse_percent(found.get("A2_weight"))

    if a1 is None and a2 is None:
        a1, a2 = 50.0, 50.0
    elif a1 is None:
        a1 = max(100.0 - a2, 0.0)
    elif a2 is None:
        a2 = max(100.0 - a1, 0.0)

    a1, a2 = normalize_weights([a1, a2], total=100, default=[50, 50], tolerance=tolerance)
    a2_total = int(round(float(a2)))

    subs = [parse_percent(found.get(key)) for key in SUBSECTION_WEIGHT_KEYS]
    default_total = sum(DEFAULT_SUBSECTION_SPLIT)
    if all(v is None for v in subs):
        subs = [a2_total * d / default_total for d in DEFAULT_SUBSECTION_SPLIT]
    else:
        remaining = a2_total - sum(v for v in subs if v is not None)
        missing = [i for i, v in enumerate(subs) if v is None]
        missing_default = sum(DEFAULT_SUBSECTION_SPLIT[i] for i in missing)
        for i in missing:
            share = remaining * DEFAULT_SUBSECTION_SPLIT[i] / missing_default if remaining > 0 else 0.0
            subs[i] = share

    default_subs = normalize_weights(list(DEFAULT_SUBSECTION_SPLIT), total=a2_total, tolerance=0)
    subs = normalize_weights(subs, total=a2_total, default=default_subs, tolerance=tolerance)

    section = parse_percent(found.get("A1_section_weight"))
    resolved = {
        "A1_weight": format_percent(a1),
        "A2_weight": format_percent(a2),
        "A1_section_weight": format_percent(section if section is not None else 100),
    }
    for key, value in zip(SUBSECTION_WEIGHT_KEYS, subs):
        resolved[key] = format_percent(value)
    return resolved


def apply_weights(evaluation: Dict[str, Any], weights: Dict[str, str]) -> Dict[str, Any]:
    """Write resolved weights into a template-shaped dict (in place, also returned)."""
    evaluation["A1_Financial_Evaluation"]["weight"] = weights["A1_weight"]
    evaluation["A2_Technical_Evaluation"]["weight"] = weights["A2_weight"]
    subsections = evaluation["A2_Technical_Evaluation"]["subsections"]
    for sub_key, weight_key in zip(SUBSECTION_KEYS, SUBSECTION_WEIGHT_KEYS):
        subsections[sub_key]["weight"] = weights[weight_key]
    return evaluation


def _weight_hints(weights: Dict[str, str]) -> str:
    lines = [
        f"A1_Financial_Evaluation.weight = {weights['A1_weight']}",
        f"A2_Technical_Evaluation.weight = {weights['A2_weight']}",
    ]
    lines += [
        f"{sub_key}.weight = {weights[weight_key]}"
        for sub_key, weight_key in zip(SUBSECTION_KEYS, SUBSECTION_WEIGHT_KEYS)
    ]
    return (
        "\n\nCRITICAL: The following weights were found in the document. "
        "YOU MUST USE THESE EXACT VALUES:\n" + "\n".join(lines) +
        '\n\nDO NOT use "Not specified in the document" for these weights. '
        "Use the exact values shown above.\n"
    )


# ── Prompts ───────────────────────────────────────────────────────────────

EVALUATION_PROMPT = '''You are an AI Evaluation Mapping Agent.
{weight_hints}

Your only task is to read the complete tender or RFP document provided by the user, use the department name as context, and then generate a single JSON output that strictly follows the predefined structure with the following top-level keys:
A1_Financial_Evaluation
A2_Technical_Evaluation
A3_Mandatory_Compliance
A4_Support_and_SLA

You must not output anything other than this single JSON object.
You must never change key names, key hierarchy, or the overall shape of the JSON.
You may only change the values (strings, numbers, arrays) inside that structure based on the content of the document.
If a required piece of information is not present in the document, leave the structure intact and set the value to "Not specified in the document" (or "N/A" where appropriate).

You must always:
- Read the entire document before generating the output.
- Preserve all numeric details such as percentages, weights, counts, time periods, durations, SLAs, and thresholds.
- Preserve all important conditions such as disqualification rules, pass/fail conditions, mandatory criteria, and submission rules.
- Avoid inventing any details not supported by the document content.

A1_Financial_Evaluation: the financial evaluation weight (e.g. "50%") and a list of sections, each with scoring_area, weight and requirements. Each requirement has group, requirement_ids (BOQ line references, appendix numbers, ID codes, or "N/A"), description and evidence_required. Map BOQ, pricing, licensing, benchmark comparisons and commercial rules into scoring areas such as Financial Evaluation. Under the Disqualification scoring area (weight usually "0%") list the conditions that trigger immediate financial rejection (missing financial documents, BOQ inconsistent with scope, non-compliant or unrealistic pricing).

A2_Technical_Evaluation: the total technical weight and an object named subsections that always keeps the keys A2_1_Functional_Technical_Compliance, A2_2_Implementation_Plan, A2_3_Training_Plan, A2_4_Team_Qualifications and A2_5_Similar_Project_Experience. Each subsection has a weight and a list of requirements.
- A2_1, A2_2, A2_3 requirements have group, requirement_ids, description, evidence_required.
- A2_4 and A2_5 requirements have group, requirements (a short textual summary such as "Integration Lead: 8+ years and 3 projects") and evidence_required.
- A2_1 covers process, functional, technical (infrastructure, DR, backup, security, SSO), integration, security, deliverables, analytics and workflow requirements.
- A2_2 covers methodology and phases, timeline and sprints, governance (RACI, PMO, RAID), risk management, quality assurance and acceptance.
- A2_3 covers coverage ratios, session constraints, training content and evidence such as a training calendar.
- A2_4 covers certifications, minimum years of experience for key roles, number of similar implementations, local presence.
- A2_5 covers required public sector or regional experience, required solution types and evidence of benefit realization.

A3_Mandatory_Compliance: outcome (how the section is evaluated, e.g. "Pass/Fail") and requirements with group, requirement_ids, description, evidence_required. Map every non-negotiable condition: required languages, envelope and submission structure, mandatory appendices and forms, mandated licensing prices, compliance matrices (e.g. "empty cell is treated as NO"), bid validity.

A4_Support_and_SLA: a list of requirements, each with sla (Availability, Response Time, Backup, Support Hours, ...), requirement and evidence_required. Map availability targets, incident response times by severity, backup and retention policies, support hours and maintenance windows.

Global behaviour:
- Output a single valid JSON object with exactly the structure given below. No extra keys, no missing keys.
- When the document uses different wording than the template, adapt the text but keep the JSON structure.
- Do not add commentary outside the JSON.
- When in doubt, include a requirement with a conservative placeholder rather than omit part of the template.

DEPARTMENT: "{department}"

TARGET SCHEMA (DO NOT CHANGE KEYS/HIERARCHY):
{schema}

COMPLETE DOCUMENT TEXT:
"""{document}"""

NOW: Read the entire document above and extract ALL information. Generate the JSON output matching the schema exactly. Be thorough - extract weights, requirements, descriptions, evidence needs, disqualification rules, SLAs. Only use "Not specified in the document" for fields you genuinely cannot find after reading the entire document.'''

REPAIR_PROMPT = '''Fix this JSON to match EXACTLY this schema. Return ONLY the corrected JSON.

SCHEMA:
{schema}

BROKEN JSON:
"""{broken}"""

RULES:
- Match schema keys/hierarchy exactly
- Preserve all extracted data
- Fill missing fields with "Not specified in the document" only if truly missing
- Remove any non-JSON text
- Return ONLY the JSON object'''


def _document_for_prompt(text: str, relevant: Dict[str, str]) -> str:
    """
    Complete text when it fits the context window, otherwise the
    category buckets. 35k chars x 4 buckets still fits; a 400-page RFP
    does not.
    """
    if len(text) <= config.enforcer.full_text_max_chars:
        return text
    logger.warning(
        "Document is %d chars (limit %d), sending category excerpts instead",
        len(text), config.enforcer.full_text_max_chars,
    )
    return "\n\n".join(
        f"===== {category.upper()} =====\n{bucket}" for category, bucket in relevant.items()
    )


def evaluate_rfp(
    text: str,
    department: Optional[str] = None,
    gateway: Optional[LLMGateway] = None,
) -> Dict[str, Any]:
    """
    Produce the template-shaped evaluation for a document.

    Raises:
        LLMUnavailableError:   backend disabled or gave no answer.
        DocumentReadError:     text shorter than 50 chars.
        SchemaValidationError: still invalid after the repair attempts.
    """
    gateway = gateway or get_gateway()
    if not gateway.enabled:
        raise LLMUnavailableError("Ollama is not enabled. Please enable it in the configuration.")
    if not text or len(text.strip()) < MIN_DOCUMENT_CHARS:
        raise DocumentReadError("Document text is empty or too short. Check document parsing or input file.")

    dept = department or "Unknown"

    relevant = find_relevant_text(text)
    logger.info(
        "Relevant text: financial=%d technical=%d mandatory=%d sla=%d chars",
        *(len(relevant[k]) for k in ("financial", "technical", "mandatory", "sla")),
    )

    found = extract_weights_regex(text)
    found_str = ", ".join(f"{k}={v}" for k, v in found.items() if v) or "NONE FOUND"
    logger.info("Weights via regex: %s", found_str)
    if not any(found.values()):
        ai_weights = extract_weights_ai(text, dept, gateway)
        if ai_weights:
            found.update(ai_weights)
            logger.info("Weights via AI: %s", ", ".join(f"{k}={v}" for k, v in ai_weights.items()))
        else:
            logger.info("No weights found, using defaults")

    weights = resolve_weights(found)
    template = apply_weights(empty_template(), weights)
    template["A1_Financial_Evaluation"]["sections"][0]["weight"] = weights["A1_section_weight"]
    schema_json = json.dumps(template, indent=2)

    prompt = EVALUATION_PROMPT.format(
        weight_hints=_weight_hints(weights),
        department=dept,
        schema=schema_json,
        document=_document_for_prompt(text, relevant),
    )
    raw = gateway.complete(prompt, options={"temperature": 0.05, "num_ctx": 32768})
    if raw is None:
        raise LLMUnavailableError("The model returned no evaluation. Check the Ollama service.")

    def repair(bad_text: str) -> Optional[str]:
        return gateway.complete(
            REPAIR_PROMPT.format(
                schema=schema_json,
                broken=bad_text[:config.enforcer.repair_input_max_chars],
            ),
            options={"temperature": 0.1, "num_ctx": 16384},
        )

    enforcer = SchemaEnforcer(
        template,
        repair=repair,
        post_process=lambda shaped: apply_weights(shaped, weights),
    )
    evaluation = enforcer.run(raw)
    logger.info("Evaluation mapped: A1=%s A2=%s", weights["A1_weight"], weights["A2_weight"])
    return evaluation
