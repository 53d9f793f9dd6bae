"""
artifacts.py — Which tender artifacts a document contains, and what's in them.

A tender pack can hold up to five artifacts: the RFP itself, a scope of
work (SOW), a bill of quantities (BOQ), of materials (BOM) and of
services (BOS). Each is located with keyword regexes (no model call):
every heading hit contributes the 200 lines that follow it. Artifacts
with no hit fall back to the first pages (RFP, SOW) or the last pages
(the bills, which usually sit in the annexes).

The model then fills the artifact templates in two calls running side by
side: the text-heavy RFP + SOW, and the tabular BOQ + BOM + BOS. An
artifact the model marks absent, or leaves completely empty, comes back
as {"present": "no"} and nothing else.
"""

from __future__ import annotations

import json
import logging
import re
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional, Sequence, Tuple

from tender_gap.config import ExtractionConfig, config
from tender_gap.ingestion import DocumentReadError
from tender_gap.llm import LLMGateway, LLMUnavailableError, get_gateway
from tender_gap.schema_enforcer import SchemaEnforcer
from tender_gap.tender_matrix import normalize_whitespace

logger = logging.getLogger(__name__)

MIN_DOCUMENT_CHARS = 50
# Two hits closer than this are the same section (a heading and its
# table-of-contents entry count twice otherwise).
DUPLICATE_WINDOW_LINES = 50

ARTIFACT_TYPES = ("RFP", "SOW", "BOQ", "BOM", "BOS")
ARTIFACT_GROUPS: Tuple[Tuple[str, ...], ...] = (("RFP", "SOW"), ("BOQ", "BOM", "BOS"))
FRONT_MATTER_ARTIFACTS = ("RFP", "SOW")
ABSENT = {"present": "no"}

KEYWORD_PATTERNS: Dict[str, Tuple[re.Pattern, ...]] = {
    artifact: tuple(re.compile(p, re.IGNORECASE) for p in patterns)
    for artifact, patterns in {
        "RFP": (
            r"request\s+for\s+proposal", r"instructions\s+to\s+(bidders|vendors|suppliers)",
            r"proposal\s+submission", r"evaluation\s+criteria", r"technical\s+evaluation",
            r"financial\s+evaluation", r"terms\s+and\s+conditions", r"commercial\s+terms",
            r"eligibility\s+requirements", r"administrative\s+requirements",
            r"project\s+introduction", r"definitions?\s+and\s+abbreviations?",
        ),
        "SOW": (
            r"scope\s+of\s+work", r"statement\s+of\s+work", r"project\s+scope", r"work\s+breakdown",
            r"deliverables?", r"implementation\s+approach", r"methodology", r"training\s+plan",
            r"support\s+services?", r"integration\s+requirements?", r"functional\s+requirements?",
            r"technical\s+requirements?", r"system\s+capabilities?",
        ),
        "BOQ": (
            r"bill\s+of\s+quantities", r"\bboq\b", r"price\s+schedule", r"cost\s+breakdown",
            r"itemized\s+pricing", r"quantity\s+schedule", r"pricing\s+table",
        ),
        "BOM": (
            r"bill\s+of\s+materials", r"\bbom\b", r"equipment\s+list", r"materials?\s+list",
            r"hardware\s+list", r"software\s+list", r"components?\s+list",
        ),
        "BOS": (
            r"bill\s+of\s+services", r"\bbos\b", r"service\s+catalog", r"rate\s+card",
            r"professional\s+services", r"service\s+level", r"\bsla\b",
        ),
    }.items()
}

ARTIFACT_TEMPLATES: Dict[str, Dict[str, Any]] = {
    "RFP": {
        "present": "",
        "project_introduction": "",
        "definitions": "",
        "instructions_to_bidders": "",
        "administrative_requirements": "",
        "eligibility_PQC_requirements": "",
        "technical_evaluation_criteria": "",
        "financial_evaluation_criteria": "",
        "proposal_submission_instructions": "",
        "commercial_terms_and_conditions": "",
        "general_terms_conditions": "",
        "functional_requirements_matrix": "",
        "technical_requirements_matrix": "",
        "fee_schedule_summary": "",
        "appendices_list": [],
        "boq_summary_reference": "",
    },
    "SOW": {
        "present": "",
        "high_level_scope": "",
        "detailed_scope": "",
        "modules_or_functional_areas": [],
        "departments_covered": [],
        "in_scope_tasks": [],
        "out_of_scope_tasks": [],
        "deliverables": [],
        "training_plan": "",
        "support_services": "",
        "integration_requirements": [],
        "implementation_approach": "",
        "system_capabilities": "",
        "functional_requirements": "",
        "technical_requirements": "",
        "compliance_tables_reference": "",
    },
    "BOQ": {"present": "", "items": [], "categories_identified": [], "boq_total": ""},
    "BOM": {"present": "", "materials": [], "bom_total": ""},
    "BOS": {"present": "", "services": [], "bos_total": ""},
}

SYSTEM_PROMPT = """Extract tender data. Output JSON ONLY. Use exact schema keys.
Rules: "present":"yes/no". If "no", only include "present". If "yes", fill all fields.
Extract ALL items in arrays. Use "" for missing strings, [] for missing arrays. No invented data."""

USER_PROMPT = """Extract {names}. Schema: {schema}

Department: {department}

{sections}

Extract ALL fields. Arrays: extract ALL items with complete details."""

REPAIR_SYSTEM_PROMPT = "You are a JSON repair tool. Return ONLY valid JSON. No extra text."


def find_sections_by_keywords(text: str, section_lines: Optional[int] = None) -> Dict[str, Optional[str]]:
    """
    Text following each artifact's keyword hits, or None when nothing hit.

    Blocks of one artifact are kept in document order and joined with a
    "---" separator line.
    """
    section_lines = section_lines or config.extraction.artifact_section_lines
    lines = text.split("\n")
    found: Dict[str, List[Tuple[int, str]]] = {artifact: [] for artifact in ARTIFACT_TYPES}

    for i, line in enumerate(lines):
        for artifact, patterns in KEYWORD_PATTERNS.items():
            if not any(p.search(line) for p in patterns):
                continue
            if any(abs(start - i) < DUPLICATE_WINDOW_LINES for start, _ in found[artifact]):
                continue
            found[artifact].append((i, "\n".join(lines[i:i + section_lines])))

    return {
        artifact: "\n\n---\n\n".join(block for _, block in sorted(blocks)) if blocks else None
        for artifact, blocks in found.items()
    }


def extract_relevant_sections(text: str, cfg: Optional[ExtractionConfig] = None) -> Dict[str, str]:
    """Per-artifact excerpt: keyword blocks, else first/last pages, capped per artifact."""
    cfg = cfg or config.extraction
    keyword_sections = find_sections_by_keywords(text, cfg.artifact_section_lines)
    intro = text[:cfg.artifact_context_chars]
    ending = text[max(0, len(text) - cfg.artifact_context_chars):]

    relevant: Dict[str, str] = {}
    for artifact in ARTIFACT_TYPES:
        fallback = intro if artifact in FRONT_MATTER_ARTIFACTS else ending
        section = keyword_sections[artifact] or fallback
        if len(section) < cfg.artifact_min_section_chars:
            section = fallback
        if len(section) > cfg.artifact_section_chars:
            section = section[:cfg.artifact_section_chars] + "\n\n[... truncated ...]"
        relevant[artifact] = section
    return relevant


def _has_content(value: Any) -> bool:
    if isinstance(value, list):
        return len(value) > 0
    if isinstance(value, str):
        return bool(value.strip())
    return value is not None


def resolve_presence(artifact: Dict[str, Any]) -> Dict[str, Any]:
    """
    Settle "present" to yes/no and drop every other key when absent.

    Anything but an explicit yes/no is decided from the content: at least
    one non-empty field means the artifact is there.
    """
    present = str(artifact.get("present") or "").strip().lower()
    if present not in ("yes", "no"):
        present = "yes" if any(_has_content(v) for k, v in artifact.items() if k != "present") else "no"
    if present == "no":
        return dict(ABSENT)
    return {**artifact, "present": "yes"}


def build_group_prompt(group: Sequence[str], sections: Dict[str, str], department: str) -> str:
    schema = json.dumps({artifact: ARTIFACT_TEMPLATES[artifact] for artifact in group})
    body = "\n\n".join(f"{artifact}:\n{sections.get(artifact) or f'No {artifact}'}" for artifact in group)
    return USER_PROMPT.format(names=", ".join(group), schema=schema, department=department, sections=body)


def extract_group(
    gateway: LLMGateway,
    group: Sequence[str],
    sections: Dict[str, str],
    department: str,
) -> Dict[str, Any]:
    """One chat call for one artifact group, enforced against that group's templates."""
    messages = [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": build_group_prompt(group, sections, department)},
    ]
    raw = gateway.chat(messages, options={"temperature": 0.0}, fmt="json")
    if raw is None:
        raise LLMUnavailableError(
            f"The model returned no {'/'.join(group)} extraction. Check the Ollama service."
        )

    def repair(bad_text: str) -> Optional[str]:
        return gateway.chat(
            [
                {"role": "system", "content": REPAIR_SYSTEM_PROMPT},
                {"role": "user", "content": f"Fix this into STRICT valid JSON object only:\n\n{bad_text}"},
            ],
            options={"temperature": 0.0},
            fmt="json",
        )

    template = {artifact: ARTIFACT_TEMPLATES[artifact] for artifact in group}
    return SchemaEnforcer(template, repair=repair, sentinel="").run(raw)


def extract_artifacts(
    text: str,
    department: Optional[str] = None,
    gateway: Optional[LLMGateway] = None,
    extraction_config: Optional[ExtractionConfig] = None,
) -> Dict[str, Dict[str, Any]]:
    """
    Extract the RFP, SOW, BOQ, BOM and BOS artifacts from a tender document.

    Returns all five keys. Absent artifacts are {"present": "no"}.

    Raises:
        LLMUnavailableError:   backend disabled or a call gave no answer.
        DocumentReadError:     fewer than 50 chars of readable text.
        SchemaValidationError: a group still invalid after the repair attempts.
    """
    gateway = gateway or get_gateway()
    if not gateway.enabled:
        raise LLMUnavailableError("Ollama is not enabled. Please enable it in the configuration.")

    cfg = extraction_config or config.extraction
    normalized = normalize_whitespace(text)
    if len(normalized) < MIN_DOCUMENT_CHARS:
        raise DocumentReadError("No readable text extracted from document.")

    gateway.ensure_model()
    sections = extract_relevant_sections(normalized, cfg)
    logger.info(
        "Artifact sections: %s",
        ", ".join(f"{artifact}:{round(len(section) / 1000)}K" for artifact, section in sections.items()),
    )

    dept = department or "Not specified"
    workers = max(1, min(cfg.artifact_max_workers, len(ARTIFACT_GROUPS)))
    with ThreadPoolExecutor(max_workers=workers) as pool:
        results = list(pool.map(lambda group: extract_group(gateway, group, sections, dept), ARTIFACT_GROUPS))

    merged: Dict[str, Any] = {}
    for result in results:
        merged.update(result)

    artifacts = {artifact: resolve_presence(merged.get(artifact) or {}) for artifact in ARTIFACT_TYPES}
    logger.info(
        "Artifacts present: %s",
        ", ".join(a for a, v in artifacts.items() if v["present"] == "yes") or "none",
    )
    return artifacts
