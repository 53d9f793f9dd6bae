"""
enrichment.py — Optional AI polish for the gap analysis.

Two calls, both best effort:
  - document info from the first 3000 chars (fills what the regexes miss)
  - per-category rewrite of the rule-generated recommendations

Neither can fail an analysis. Backend off, unreachable, or answering with
something that isn't the expected JSON all leave the deterministic result
untouched, with a warning in the log.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from tender_gap.document_info import _year_from_match
from tender_gap.llm import LLMGateway, extract_json_array, extract_json_object, get_gateway
from tender_gap.schemas import DocumentInfo

logger = logging.getLogger(__name__)

DOC_INFO_PROMPT = """Extract the following information from this RFP/tender document. Return ONLY a JSON object with these exact keys: title, department, documentType, year, referenceId, version. If any field cannot be found, use null.

Document text (first 3000 characters):
{excerpt}

Return only valid JSON, no explanations:
{{
  "title": "...",
  "department": "...",
  "documentType": "RFP" or null,
  "year": 2024 or null,
  "referenceId": "..." or null,
  "version": "..." or null
}}"""

RECOMMENDATION_PROMPT = """You are an expert in government ICT tender analysis. Review and improve the following recommendations for a tender document.

Document: {title}
Category: {category}

Current Gaps:
{gaps}

Current Recommendations:
{recommendations}

Improve these recommendations to be:
- More specific and actionable
- Aligned with government procurement best practices
- Clear and professional

Return ONLY a JSON array with the same number of improved recommendations, no explanations:
["improved recommendation 1", "improved recommendation 2", ...]"""

_DOC_INFO_TEXT_KEYS = ("title", "department", "documentType", "referenceId", "version")


def _clean_year(value: Any) -> Optional[int]:
    # bool is an int subclass; "true" is not a year
    if isinstance(value, bool):
        return None
    if isinstance(value, int) or (isinstance(value, str) and value.strip().isdigit()):
        return _year_from_match(str(value).strip())
    return None


def sanitize_document_info(parsed: Dict[str, Any]) -> Dict[str, Any]:
    """
    Keep only values of the expected type.

    Text fields must be non-empty strings. The year must be an int or a
    digit string within 2000-2099. Anything else (numbers for a title,
    lists, nested objects) is treated as "not found".
    """
    info: Dict[str, Any] = {}
    for key in _DOC_INFO_TEXT_KEYS:
        value = parsed.get(key)
        info[key] = value.strip() if isinstance(value, str) and value.strip() else None
    info["year"] = _clean_year(parsed.get("year"))

    dropped = [key for key in info if parsed.get(key) not in (None, "") and info[key] is None]
    if dropped:
        logger.warning("AI document info had unusable values for: %s", ", ".join(sorted(dropped)))
    return info


def extract_document_info_with_ai(
    text: str, gateway: Optional[LLMGateway] = None
) -> Optional[Dict[str, Any]]:
    """Ask the model for cover-page fields. None when the backend gave nothing usable."""
    gateway = gateway or get_gateway()
    if not gateway.enabled:
        return None

    response = gateway.complete(DOC_INFO_PROMPT.format(excerpt=text[:3000]))
    parsed = extract_json_object(response)
    if parsed is None:
        if response:
            logger.warning("AI document info was not JSON, ignoring. First 200 chars: %s", response[:200])
        return None

    return sanitize_document_info(parsed)


def enhance_recommendations(
    recommendations: Dict[str, List[str]],
    gap_categories: Dict[str, List[str]],
    document_info: DocumentInfo,
    gateway: Optional[LLMGateway] = None,
) -> Dict[str, List[str]]:
    """
    Rewrite each category's recommendations with the model.

    A category is replaced only when the model returns an array of the
    same length. Non-string and empty items are then dropped, so a
    category can come back shorter than it went in.
    """
    gateway = gateway or get_gateway()
    if not gateway.enabled:
        return recommendations

    enhanced = dict(recommendations)
    for category, recs in recommendations.items():
        gaps = gap_categories.get(category) or []
        if not recs or not gaps:
            continue

        prompt = RECOMMENDATION_PROMPT.format(
            title=document_info.title or "RFP Document",
            category=category,
            gaps="\n".join(gaps),
            recommendations="\n".join(f"{i}. {r}" for i, r in enumerate(recs, start=1)),
        )
        improved = extract_json_array(gateway.complete(prompt))
        if improved is None:
            logger.warning("AI enhancement skipped for %s: no usable array", category)
            continue
        if len(improved) != len(recs):
            logger.warning(
                "AI enhancement skipped for %s: got %d items, expected %d",
                category, len(improved), len(recs),
            )
            continue

        enhanced[category] = [r for r in improved if isinstance(r, str) and r]
        logger.debug("Enhanced %d recommendations for %s", len(enhanced[category]), category)

    return enhanced
