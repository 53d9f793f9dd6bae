"""
tender_overview.py — One-page tender overview for the evaluation dashboard.

The dashboard renders `tenderOverview` as-is, so every key in the
template below must always be present. The model is asked through the
chat API with the document split into 12k-char messages; its answer is
forced into the template by the SchemaEnforcer, then weights are
normalised and empty parts are filled with the business defaults the
procurement team signed off on (70/30 technical/financial, 99.5%
availability, Sunday to Thursday support hours, ...).

Placeholders: a list counts as "not provided" when it is empty or every
string in it is the sentinel. The template ships example rows like
[{"order": 1, "title": <sentinel>, ...}], so "empty" alone would never
trigger a default.
"""

from __future__ import annotations

import copy
import logging
import re
from typing import Any, Dict, List, Optional

from tender_gap.config import config
from tender_gap.ingestion import DocumentReadError
from tender_gap.llm import LLMGateway, LLMUnavailableError, get_gateway
from tender_gap.schema_enforcer import SchemaEnforcer
from tender_gap.weights import normalize_weights, parse_percent

logger = logging.getLogger(__name__)

NOT_SPECIFIED = "Not specified in the document."
HEADER_TITLE = "Tender Evaluation Framework"
DEFAULT_SUPPORT_SCHEDULE = "Sunday to Thursday, 8 AM - 5 PM"
MIN_DOCUMENT_CHARS = 50

TENDER_TEMPLATE: Dict[str, Any] = {
    "tenderOverview": {
        "header": {"title": HEADER_TITLE, "subtitle": NOT_SPECIFIED},
        "overview": {
            "evaluationWeighting": {
                "title": "Evaluation Weighting",
                "description": NOT_SPECIFIED,
                "data": [],
            },
            "keyRequirements": {
                "title": "Key Requirements",
                "description": NOT_SPECIFIED,
                "requirements": [
                    {"label": "Project Duration", "value": NOT_SPECIFIED},
                    {"label": "Minimum Company Experience", "value": NOT_SPECIFIED},
                    {"label": "Named Users", "value": NOT_SPECIFIED},
                    {"label": "Licenses", "value": NOT_SPECIFIED},
                ],
            },
            "evaluationScoringSystem": {
                "title": "Evaluation Scoring System",
                "description": NOT_SPECIFIED,
                "financialScoring": {"title": "Financial Scoring", "rules": [NOT_SPECIFIED]},
                "technicalScoring": {"title": "Technical Scoring", "rules": [NOT_SPECIFIED]},
            },
        },
        "financial": {
            "title": "Financial Evaluation Criteria",
            "weight": 0,
            "weightUnit": "percentage",
            "evaluationFactors": [{"order": 1, "title": NOT_SPECIFIED, "description": NOT_SPECIFIED}],
            "disqualificationTriggers": [NOT_SPECIFIED],
        },
        "technical": {
            "title": "Technical Evaluation Criteria",
            "weight": 0,
            "weightUnit": "percentage",
            "scoringScale": NOT_SPECIFIED,
            "technicalCriteria": [{"category": NOT_SPECIFIED, "weight": 0}],
            "psdRequirements": [NOT_SPECIFIED],
            "disqualificationTriggers": [NOT_SPECIFIED],
        },
        "compliance": {
            "title": "Mandatory Compliance Requirements",
            "description": "Pass/Fail - Non-Negotiable",
            "generalSubmissionCompliance": [NOT_SPECIFIED],
            "technicalComplianceRequirements": [NOT_SPECIFIED],
            "technicalComplianceNote": NOT_SPECIFIED,
            "teamComplianceRequirements": [{"title": NOT_SPECIFIED, "description": NOT_SPECIFIED}],
            "oracleLicensingCompliance": {"note": NOT_SPECIFIED},
        },
        "support": {
            "title": "Support & Service Level Agreements",
            "description": "Operational requirements and SLAs",
            "supportAvailability": {
                "systemAvailabilityRequirement": 0,
                "supportHours": [{"type": "Regular", "schedule": NOT_SPECIFIED}],
            },
            "incidentResponseTimes": [{"priority": NOT_SPECIFIED, "responseTime": NOT_SPECIFIED}],
            "severityLevels": [{"level": 1, "description": NOT_SPECIFIED}],
            "backupAndDisasterRecovery": [{"type": NOT_SPECIFIED, "period": NOT_SPECIFIED}],
            "reliabilityRequirement": NOT_SPECIFIED,
        },
    },
}

SYSTEM_PROMPT = f"""You are an expert Tender Extraction agent.

ABSOLUTE RULES:
- Read the entire tender/RFP document content provided in the messages.
- Output ONLY a single valid JSON object (no markdown, no commentary).
- Preserve numeric details exactly (dates, times, percentages, points, fees, AED, years, months, days, SLAs).
- Preserve disqualification / pass-fail triggers.
- If something is missing, set it to exactly: "{NOT_SPECIFIED}"
- Do NOT invent scores or compute any evaluation results. Only extract what document states.
- DO NOT add any fields that are not in the template structure below.
- For weights: Extract actual weights from document. If not found, use reasonable defaults (e.g., Technical: 70, Financial: 30) ensuring they sum to 100.

STRICT OUTPUT STRUCTURE - ONLY THESE FIELDS:
{{
  "tenderOverview": {{
    "header": {{ "title": "{HEADER_TITLE}", "subtitle": "..." }},
    "overview": {{
      "evaluationWeighting": {{ "title": "...", "description": "...", "data": [{{"name": "...", "value": number}}] }},
      "keyRequirements": {{ "title": "...", "description": "...", "requirements": [{{"label": "...", "value": "..."}}] }},
      "evaluationScoringSystem": {{ "title": "...", "description": "...", "financialScoring": {{"title": "...", "rules": ["..."]}}, "technicalScoring": {{"title": "...", "rules": ["..."]}} }}
    }},
    "financial": {{
      "title": "...", "weight": number, "weightUnit": "percentage",
      "evaluationFactors": [{{"order": number, "title": "...", "description": "..."}}],
      "disqualificationTriggers": ["..."]
    }},
    "technical": {{
      "title": "...", "weight": number, "weightUnit": "percentage", "scoringScale": "...",
      "technicalCriteria": [{{"category": "...", "weight": number}}],
      "psdRequirements": ["..."],
      "disqualificationTriggers": ["..."]
    }},
    "compliance": {{
      "title": "...", "description": "...",
      "generalSubmissionCompliance": ["..."],
      "technicalComplianceRequirements": ["..."],
      "technicalComplianceNote": "...",
      "teamComplianceRequirements": [{{"title": "...", "description": "..."}}],
      "oracleLicensingCompliance": {{ "note": "..." }}
    }},
    "support": {{
      "title": "...", "description": "...",
      "supportAvailability": {{ "systemAvailabilityRequirement": number, "supportHours": [{{"type": "...", "schedule": "..."}}] }},
      "incidentResponseTimes": [{{"priority": "...", "responseTime": "..."}}],
      "severityLevels": [{{"level": number, "description": "..."}}],
      "backupAndDisasterRecovery": [{{"type": "...", "period": "..."}}],
      "reliabilityRequirement": "..."
    }}
  }}
}}

DO NOT add any other fields. Return only JSON matching this exact structure."""

USER_PROMPT = """Department Name: {department}
RFP Title/Reference: {title}

TASK:
Extract and map the tender/RFP content into the required JSON structure.

Remember:
- If a field isn't stated in the document, use "{sentinel}".
- Keep numbers as numbers where applicable (weights/percentages/systemAvailabilityRequirement).
- Output only JSON."""

REPAIR_SYSTEM_PROMPT = "You are a JSON repair tool. Return ONLY valid JSON. No extra text."


def clean_text(text: str) -> str:
    """Strip NULs and trailing blanks, collapse runs of blank lines."""
    text = text.replace("\u0000", "")
    text = re.sub(r"[ \t]+\n", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def chunk_text(text: str, max_chars: Optional[int] = None) -> List[str]:
    max_chars = max_chars or config.enforcer.overview_chunk_chars
    return [text[i:i + max_chars] for i in range(0, len(text), max_chars)]


def build_messages(text: str, department: str, title: str) -> List[Dict[str, str]]:
    chunks = chunk_text(text)
    messages = [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": USER_PROMPT.format(department=department, title=title, sentinel=NOT_SPECIFIED)},
    ]
    messages += [
        {"role": "user", "content": f"DOCUMENT CHUNK {i}/{len(chunks)}:\n{chunk}"}
        for i, chunk in enumerate(chunks, start=1)
    ]
    messages.append({"role": "user", "content": "Now produce the final JSON output ONLY."})
    return messages


# ── Weights ───────────────────────────────────────────────────────────────

def _number(value: Any) -> float:
    parsed = parse_percent(value)
    return parsed if parsed is not None else 0.0


def _as_int_if_whole(value: Any) -> Any:
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def _normalize_list(items: List[Any], key: str, tolerance: float) -> None:
    """Normalise `key` across the dict items of a list, in place. All-zero lists are left alone."""
    rows = [item for item in items if isinstance(item, dict)]
    if not rows:
        return
    values = [_number(row.get(key)) for row in rows]
    if sum(values) <= 0:
        return
    for row, value in zip(rows, normalize_weights(values, total=100, tolerance=tolerance)):
        row[key] = _as_int_if_whole(value)


def normalize_overview_weights(overview: Dict[str, Any], tolerance: Optional[float] = None) -> Dict[str, Any]:
    """
    Financial + technical to 100 (30/70 when both are zero), then the
    evaluationWeighting data and the technical criteria to 100 each.
    Returns a new dict.
    """
    tolerance = config.enforcer.weight_tolerance if tolerance is None else tolerance
    result = copy.deepcopy(overview)
    tender = result["tenderOverview"]

    financial, technical = tender["financial"], tender["technical"]
    fin, tech = normalize_weights(
        [_number(financial.get("weight")), _number(technical.get("weight"))],
        total=100, default=[30, 70], tolerance=tolerance,
    )
    financial["weight"] = _as_int_if_whole(fin)
    technical["weight"] = _as_int_if_whole(tech)

    _normalize_list(tender["overview"]["evaluationWeighting"]["data"], "value", tolerance)
    _normalize_list(technical["technicalCriteria"], "weight", tolerance)
    return result


# ── Business defaults ─────────────────────────────────────────────────────

def _only_placeholders(value: Any) -> bool:
    """True when every string inside `value` is the sentinel (numbers ignored)."""
    if isinstance(value, dict):
        return all(_only_placeholders(v) for v in value.values())
    if isinstance(value, list):
        return all(_only_placeholders(v) for v in value)
    if isinstance(value, str):
        return value == NOT_SPECIFIED
    return True


def _missing(value: Any) -> bool:
    if value is None or value == NOT_SPECIFIED:
        return True
    if isinstance(value, list):
        return not value or _only_placeholders(value)
    return False


def apply_defaults(overview: Dict[str, Any]) -> Dict[str, Any]:
    """Fill placeholder fields with the agreed defaults. Returns a new dict."""
    result = copy.deepcopy(overview)
    tender = result["tenderOverview"]
    ov = tender["overview"]

    ew = ov["evaluationWeighting"]
    if ew["title"] == NOT_SPECIFIED:
        ew["title"] = "Evaluation Weighting"
    if ew["description"] == NOT_SPECIFIED:
        ew["description"] = "Overall criteria distribution based on the requirements outlined in the RFP."
    if _missing(ew["data"]):
        ew["data"] = [{"name": "Technical", "value": 70}, {"name": "Financial", "value": 30}]

    kr = ov["keyRequirements"]
    if kr["title"] == NOT_SPECIFIED:
        kr["title"] = "Key Requirements"
    if kr["description"] == NOT_SPECIFIED:
        kr["description"] = "Mandatory qualifications and requirements for vendors."
    if not kr["requirements"]:
        kr["requirements"] = copy.deepcopy(
            TENDER_TEMPLATE["tenderOverview"]["overview"]["keyRequirements"]["requirements"]
        )

    ess = ov["evaluationScoringSystem"]
    if ess["title"] == NOT_SPECIFIED:
        ess["title"] = "Evaluation Scoring System"
    if ess["description"] == NOT_SPECIFIED:
        ess["description"] = "Comprehensive scoring methodology"
    if ess["financialScoring"]["title"] == NOT_SPECIFIED:
        ess["financialScoring"]["title"] = "Financial Scoring"
    if _missing(ess["financialScoring"]["rules"]):
        ess["financialScoring"]["rules"] = [
            "Lowest bidder scoring logic applies.",
            "Proportional scoring based on total bid amount.",
        ]
    if ess["technicalScoring"]["title"] == NOT_SPECIFIED:
        ess["technicalScoring"]["title"] = "Technical Scoring"
    if _missing(ess["technicalScoring"]["rules"]):
        ess["technicalScoring"]["rules"] = [
            "Scale of 1–10 per category.",
            "Weighted nature with pass/fail conditions for mandatory compliance.",
        ]

    fin = tender["financial"]
    if fin["title"] in (NOT_SPECIFIED, "Financial Evaluation"):
        fin["title"] = "Financial Evaluation Criteria"
    if not _number(fin["weight"]):
        fin["weight"] = 30
    if _missing(fin["weightUnit"]):
        fin["weightUnit"] = "percentage"
    if _missing(fin["evaluationFactors"]):
        fin["evaluationFactors"] = [
            {"order": 1, "title": "Cost Competitiveness",
             "description": "Evaluation of the overall cost of the proposal."},
            {"order": 2, "title": "Payment Terms",
             "description": "Review of payment terms and conditions."},
        ]
    if _missing(fin["disqualificationTriggers"]):
        fin["disqualificationTriggers"] = ["Missing financial documents", "Unrealistic or non-compliant pricing"]

    tech = tender["technical"]
    if tech["title"] in (NOT_SPECIFIED, "Technical Evaluation"):
        tech["title"] = "Technical Evaluation Criteria"
    if not _number(tech["weight"]):
        tech["weight"] = 70
    if _missing(tech["weightUnit"]):
        tech["weightUnit"] = "percentage"
    if tech["scoringScale"] == NOT_SPECIFIED:
        tech["scoringScale"] = "1–10 per category"
    if _missing(tech["technicalCriteria"]):
        tech["technicalCriteria"] = [
            {"category": "Functional Requirements", "weight": 40},
            {"category": "Implementation Plan", "weight": 30},
            {"category": "Team Experience", "weight": 30},
        ]
    if _missing(tech["psdRequirements"]):
        tech["psdRequirements"] = [
            "Methodology completeness",
            "Alignment with standards",
            "Experience with modules",
            "Execution roadmap",
        ]
    if _missing(tech["disqualificationTriggers"]):
        tech["disqualificationTriggers"] = [
            "Major gaps vs RFP",
            "Missing compliance responses",
            "Weak team, lack of certifications",
        ]

    comp = tender["compliance"]
    if comp["title"] in (NOT_SPECIFIED, "Compliance Requirements"):
        comp["title"] = "Mandatory Compliance Requirements"
    if comp["description"] == NOT_SPECIFIED:
        comp["description"] = "Pass/Fail - Non-Negotiable"
    if _missing(comp["generalSubmissionCompliance"]):
        comp["generalSubmissionCompliance"] = [
            "Language requirements: Arabic and English",
            "Envelope structure must be adhered to",
            "Acknowledgement of receipt required",
            "Completion of appendices is mandatory",
            "Proposal validity for 90 days",
        ]
    if _missing(comp["technicalComplianceRequirements"]):
        comp["technicalComplianceRequirements"] = [
            "Process compliance",
            "Functional compliance",
            "Technical compliance",
        ]
    if comp["technicalComplianceNote"] == NOT_SPECIFIED:
        comp["technicalComplianceNote"] = "Empty cells = automatically treated as NO."
    if _missing(comp["teamComplianceRequirements"]):
        comp["teamComplianceRequirements"] = [{
            "title": "Key Personnel Experience",
            "description": "Minimum 5 years of relevant experience in similar projects.",
        }]

    sup = tender["support"]
    if sup["title"] in (NOT_SPECIFIED, "Support and Service Level Requirements"):
        sup["title"] = "Support & Service Level Agreements"
    if sup["description"] == NOT_SPECIFIED:
        sup["description"] = "Operational requirements and SLAs"

    availability = sup["supportAvailability"]
    if not _number(availability["systemAvailabilityRequirement"]):
        availability["systemAvailabilityRequirement"] = 99.5
    if not availability["supportHours"]:
        availability["supportHours"] = [{"type": "Regular", "schedule": DEFAULT_SUPPORT_SCHEDULE}]
    else:
        for hours in availability["supportHours"]:
            if isinstance(hours, dict) and hours.get("schedule") == NOT_SPECIFIED:
                hours["schedule"] = DEFAULT_SUPPORT_SCHEDULE

    if _missing(sup["incidentResponseTimes"]):
        sup["incidentResponseTimes"] = [
            {"priority": "High", "responseTime": "Immediate response required"},
            {"priority": "Medium", "responseTime": "Response within 4 hours"},
        ]
    if _missing(sup["severityLevels"]):
        sup["severityLevels"] = [
            {"level": 1, "description": "Critical outage"},
            {"level": 2, "description": "Major degradation"},
            {"level": 3, "description": "Minor impact"},
        ]
    if _missing(sup["backupAndDisasterRecovery"]):
        sup["backupAndDisasterRecovery"] = [{"type": "Daily Backup", "period": "Retention for 30 days"}]
    if sup["reliabilityRequirement"] == NOT_SPECIFIED:
        sup["reliabilityRequirement"] = "System must not break more than 3 times per year."

    return result


def derive_subtitle(title: str, department: str) -> str:
    """'RFP_{title} - {department}'; the RFP_ prefix is skipped when the title already says RFP."""
    has_title = title and title != NOT_SPECIFIED
    has_dept = department and department != NOT_SPECIFIED
    formatted = title if has_title and "RFP" in title.upper() else f"RFP_{title}"

    if has_title and has_dept:
        return f"{formatted} - {department}"
    if has_title:
        return formatted
    if has_dept:
        return department
    return NOT_SPECIFIED


def extract_tender_overview(
    text: str,
    department: Optional[str] = None,
    title: Optional[str] = None,
    gateway: Optional[LLMGateway] = None,
) -> Dict[str, Any]:
    """
    Build the tender overview for a document.

    Raises:
        LLMUnavailableError:   backend disabled or gave no answer.
        DocumentReadError:     text shorter than 50 chars.
        SchemaValidationError: still invalid after the repair attempts.
    """
    gateway = gateway or get_gateway()
    if not gateway.enabled:
        raise LLMUnavailableError("Ollama is not enabled. Please enable it in the configuration.")

    dept = department or NOT_SPECIFIED
    rfp_title = title or NOT_SPECIFIED

    if not text or len(text) < MIN_DOCUMENT_CHARS:
        raise DocumentReadError(
            "Extracted text is too short; the document might be a scanned, image-only file."
        )

    gateway.ensure_model()
    cleaned = clean_text(text)
    messages = build_messages(cleaned, dept, rfp_title)
    logger.info("Requesting overview (%d document chunks)", len(messages) - 3)

    raw = gateway.chat(messages, options={"temperature": 0.0}, fmt="json")
    if raw is None:
        raise LLMUnavailableError("The model returned no overview. Check the Ollama service.")

    def repair(bad_text: str) -> Optional[str]:
        return gateway.chat(
            [
                {"role": "system", "content": REPAIR_SYSTEM_PROMPT},
                {"role": "user", "content": f"Fix this into STRICT valid JSON object only:\n\n{bad_text}"},
            ],
            options={"temperature": 0.0},
            fmt="json",
        )

    enforcer = SchemaEnforcer(TENDER_TEMPLATE, repair=repair, sentinel=NOT_SPECIFIED)
    shaped = enforcer.run(raw)

    result = apply_defaults(normalize_overview_weights(shaped))
    header = result["tenderOverview"]["header"]
    header["title"] = HEADER_TITLE
    if _missing(header["subtitle"]):
        header["subtitle"] = derive_subtitle(rfp_title, dept)

    return normalize_overview_weights(result)
