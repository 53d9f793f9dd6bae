"""
document_info.py — Title, department, type, year and reference detection.

Regex heuristics tuned on the government RFPs we receive: a cover page
with "Document Title" / "Name of the Organization" labels on their own
line and the value on the next, a reference like PSD/ICT/RFP/07/2024,
and a version table. Documents that don't follow that layout fall back
to the best-looking line among the first ten.

AI-extracted values (see enrichment.py) only fill gaps, except that a
longer AI title or department replaces a shorter regex one: the regex
often stops at a line break in the middle of a two-line title.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, Iterable, List, Optional, Union

from tender_gap.schemas import NOT_IDENTIFIABLE, DocumentInfo
from tender_gap.sections import norm, rx_find

logger = logging.getLogger(__name__)

_IM = re.IGNORECASE | re.MULTILINE

TITLE_SIGNALS = re.compile(r"(rfp|request for proposal|sap|s4|s/4|implementation|tender)", re.IGNORECASE)

TITLE_PATTERNS = (
    r"Document\s+Title[:\s]*[\r\n]+([^\r\n]{10,200})",
    r"Title[:\s]*[\r\n]+([^\r\n]{10,200})",
    r"Request\s+for\s+Proposal[:\s]*[\r\n]+([^\r\n]{10,200})",
    r"RFP[:\s]*[\r\n]+([^\r\n]{10,200})",
    r"^([A-Z][^\r\n]{20,150}(?:SAP|S4|S/4|Implementation|RFP|Tender)[^\r\n]{0,100})",
)

DEPARTMENT_PATTERNS = (
    r"Name\s+of\s+the\s+Organization[:\s]*[\r\n]+([^\r\n]{5,150})",
    r"Organization[:\s]*[\r\n]+([^\r\n]{5,150})",
    r"Issuing\s+Organization[:\s]*[\r\n]+([^\r\n]{5,150})",
    r"Department[:\s]*[\r\n]+([^\r\n]{5,150})",
)

REFERENCE_PATTERNS = (
    r"Reference\s+ID[:\s]*[\r\n]+?\s*([A-Za-z0-9\-/]+)",
    r"Ref[.\s]+ID[:\s]*[\r\n]+?\s*([A-Za-z0-9\-/]+)",
    r"RFP[.\s]+No[.\s]*[:\s]*[\r\n]+?\s*([A-Za-z0-9\-/]+)",
    r"Reference\s+Number[:\s]*[\r\n]+?\s*([A-Za-z0-9\-/]+)",
    r"Document\s+Reference[:\s]*[\r\n]+?\s*([A-Za-z0-9\-/]+)",
)

VERSION_PATTERNS = (
    r"Version\s+No[.\s]*[:\s]*[\r\n]+?\s*([0-9.]+)",
    r"Version[:\s]*[\r\n]+?\s*([0-9.]+)",
    r"Ver[.\s]*[:\s]*[\r\n]+?\s*([0-9.]+)",
    r"V[.\s]*[:\s]*[\r\n]+?\s*([0-9.]+)",
)

# Most specific first: an explicit issue date beats a year that happens
# to sit next to the word "date".
YEAR_PATTERNS = (
    r"Date\s+of\s+issue[:\s]*[^\n]{0,50}?[0-9]{1,2}[/\-.][0-9]{1,2}[/\-.](20\d{2})",
    r"Issue\s+Date[:\s]*[^\n]{0,50}?[0-9]{1,2}[/\-.][0-9]{1,2}[/\-.](20\d{2})",
    r"Issued\s+on[:\s]*[^\n]{0,50}?[0-9]{1,2}[/\-.][0-9]{1,2}[/\-.](20\d{2})",
    r"Date[:\s]*[^\n]{0,50}?[0-9]{1,2}[/\-.][0-9]{1,2}[/\-.](20\d{2})",
    r"Reference\s+ID[:\s]*[^\n]{0,150}?[/\-](20\d{2})",
    r"Ref[.\s]+ID[:\s]*[^\n]{0,150}?[/\-](20\d{2})",
    r"RFP[.\s]+No[.\s]*[:\s]*[^\n]{0,150}?[/\-](20\d{2})",
    r"Reference\s+Number[:\s]*[^\n]{0,150}?[/\-](20\d{2})",
    r"(20\d{2})\s*(?:RFP|Request|Proposal)",
    r"(?:RFP|Request|Proposal)\s*(20\d{2})",
    r"(?:issue|issued|issue\s+date|date\s+of\s+issue)[^\n]{0,100}?(20\d{2})",
    r"(20\d{2})[^\n]{0,50}?(?:issue|issued|date)",
)
EARLY_YEAR_PATTERN = r"^[\s\S]{0,1000}?(20\d{2})"

PUBLIC_SERVICES_DEPARTMENT = "Public Services Department"


def best_title_candidate(lines: Iterable[str]) -> Optional[str]:
    """First line with a title signal (RFP, SAP, tender...) and 15+ chars, else first with 10+."""
    clean = [norm(line) for line in lines]
    clean = [line for line in clean if line]

    for line in clean:
        if TITLE_SIGNALS.search(line) and len(line) >= 15:
            return line
    for line in clean:
        if len(line) >= 10:
            return line
    return None


def _year_from_match(match: Optional[str]) -> Optional[int]:
    if not match:
        return None
    found = re.search(r"(20\d{2})", match)
    if found:
        year = int(found.group(1))
        if 2000 <= year <= 2099:
            return year
    return None


def extract_year(text: str) -> Optional[int]:
    for pattern in YEAR_PATTERNS:
        year = _year_from_match(rx_find(text, pattern))
        if year:
            return year
    return _year_from_match(rx_find(text, EARLY_YEAR_PATTERN))


def extract_title(text: str) -> Optional[str]:
    for pattern in TITLE_PATTERNS:
        match = rx_find(text, pattern, _IM)
        if match:
            candidate = best_title_candidate([match])
            if candidate and len(candidate) >= 15:
                return candidate

    first_lines = [norm(line) for line in text.split("\n")[:10]]
    return best_title_candidate([line for line in first_lines if len(line) >= 15])


def extract_department(text: str) -> Optional[str]:
    department = None
    for pattern in DEPARTMENT_PATTERNS:
        match = rx_find(text, pattern)
        if match:
            cleaned = norm(match)
            if 5 <= len(cleaned) <= 150:
                department = cleaned
                break

    # The PSD name on the cover page is more reliable than whatever
    # follows an "Organization" label further down.
    if re.search(r"Public\s+Services\s+Department", text, re.IGNORECASE):
        department = PUBLIC_SERVICES_DEPARTMENT
    elif not department and re.search(r"\bPSD\b", text, re.IGNORECASE):
        department = PUBLIC_SERVICES_DEPARTMENT
    return department


def _first_match(text: str, patterns: Iterable[str], min_len: int) -> Optional[str]:
    value = None
    for pattern in patterns:
        match = rx_find(text, pattern)
        if match:
            value = norm(match)
            if len(value) >= min_len:
                break
    return value


def extract_document_info(
    text: str,
    department: Optional[str] = None,
    ai_info: Optional[Dict[str, Any]] = None,
) -> DocumentInfo:
    """
    Build DocumentInfo from regex heuristics, optionally merged with AI values.

    Args:
        text:       Normalised document text.
        department: Caller-supplied department. Always wins.
        ai_info:    Output of enrichment.extract_document_info_with_ai(),
                    or None when the backend is off or failed.
    """
    title = extract_title(text)
    dept = department or extract_department(text)
    doc_type = "RFP" if re.search(r"\bRFP\b|Request\s+for\s+Proposal", text, re.IGNORECASE) else NOT_IDENTIFIABLE
    ref_id = _first_match(text, REFERENCE_PATTERNS, min_len=3)
    version = _first_match(text, VERSION_PATTERNS, min_len=1)
    year: Union[int, str, None] = extract_year(text)

    if ai_info:
        ai_title = ai_info.get("title")
        if isinstance(ai_title, str) and ai_title and (not title or (ai_title != title and len(ai_title) > len(title))):
            title = ai_title

        ai_dept = ai_info.get("department")
        if not department and isinstance(ai_dept, str) and ai_dept and (not dept or len(ai_dept) > len(dept)):
            dept = ai_dept

        if doc_type == NOT_IDENTIFIABLE and ai_info.get("documentType"):
            doc_type = ai_info["documentType"]
        if year is None and isinstance(ai_info.get("year"), (int, str)) and ai_info["year"]:
            year = ai_info["year"]
        if not ref_id and ai_info.get("referenceId"):
            ref_id = str(ai_info["referenceId"])
        if not version and ai_info.get("version"):
            version = str(ai_info["version"])

    notes: List[str] = []
    if ref_id:
        notes.append(f"Reference ID: {ref_id}")
    if version:
        notes.append(f"Version: {version}")

    info = DocumentInfo(
        title=norm(str(title)) if title else NOT_IDENTIFIABLE,
        department=norm(str(dept)) if dept else NOT_IDENTIFIABLE,
        document_type=str(doc_type),
        year=year if year is not None else NOT_IDENTIFIABLE,
        notes="; ".join(notes) if notes else NOT_IDENTIFIABLE,
    )
    logger.debug("Document info: %s", info.model_dump(by_alias=True))
    return info
