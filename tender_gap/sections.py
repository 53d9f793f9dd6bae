"""
sections.py — Heading-based document sectioning and regex helpers.

Government RFPs in our corpus reuse a small set of top-level headings
("Instructions to Vendor", "Scope of Work", ...). A rule that targets
"Scope of Work" is checked only against the text between that heading and
the next recognised one, which keeps a KPI mention in the cover letter
from satisfying a scope requirement.

Known limitation: if the same heading appears twice, the later section
replaces the earlier one. Well-formed tenders use each heading once.
"""

from __future__ import annotations

import logging
import re
from functools import lru_cache
from typing import Dict, Iterable, List, Optional, Pattern

from tender_gap.schemas import FULL_SECTION

logger = logging.getLogger(__name__)

SECTION_HEADERS = (
    "Introduction",
    "Instructions to Vendor",
    "Proposal Guidelines",
    "Selection Process",
    "Award of Contract",
    "Termination of Contract",
    "Scope of Work",
    "Rules, Assumptions",
    "System Landscape",
    "Integration",
    "Go-Live and Post-Implementation Support",
)


def norm(s: Optional[str]) -> str:
    """Collapse runs of whitespace into single spaces."""
    return re.sub(r"\s+", " ", s or "").strip()


@lru_cache(maxsize=1024)
def compile_pattern(pattern: str, flags: int = re.IGNORECASE) -> Pattern[str]:
    """
    Compile a rule pattern, caching the result.

    Patterns typed into the rule workbook are not always valid regex
    (an unbalanced "(" in "Support (L1" for example). Those are matched
    literally instead of failing the whole analysis.
    """
    try:
        return re.compile(pattern, flags)
    except re.error as exc:
        logger.warning("Invalid pattern %r (%s); matching it literally.", pattern, exc)
        return re.compile(re.escape(pattern), flags)


def rx_find(text: str, pattern: str, flags: int = re.IGNORECASE) -> Optional[str]:
    """First capture group of the first match, or the whole match if there is no group."""
    m = compile_pattern(pattern, flags).search(text or "")
    if not m:
        return None
    if m.groups() and m.group(1) is not None:
        return m.group(1)
    return m.group(0)


def in_text(text: str, patterns: Iterable[str]) -> bool:
    """True if any pattern matches anywhere in the text (case-insensitive)."""
    return any(compile_pattern(p).search(text or "") for p in patterns)


def matching_terms(text: str, patterns: Iterable[str]) -> List[str]:
    return [p for p in patterns if compile_pattern(p).search(text or "")]


def missing_terms(text: str, patterns: Iterable[str]) -> List[str]:
    return [p for p in patterns if not compile_pattern(p).search(text or "")]


def _heading_regex(headers: Iterable[str]) -> Pattern[str]:
    alternation = "|".join(re.escape(h) for h in headers)
    return re.compile(rf"^({alternation})\s*$", re.IGNORECASE | re.MULTILINE)


_DEFAULT_HEADING_RE = _heading_regex(SECTION_HEADERS)


def split_into_sections(text: str, headers: Optional[Iterable[str]] = None) -> Dict[str, str]:
    """
    Partition text into named sections keyed by heading label.

    Keys use the configured heading spelling, so "SCOPE OF WORK" in the
    document is stored under "Scope of Work" where rules expect it.
    Each section runs from its heading line to the next recognised heading
    (or end of text) and is stripped. FULL always maps to the complete
    input. With no headings found the result is exactly {FULL: text}.
    """
    text = text or ""
    headers = tuple(headers) if headers is not None else SECTION_HEADERS
    heading_re = _DEFAULT_HEADING_RE if headers == SECTION_HEADERS else _heading_regex(headers)
    canonical = {h.lower(): h for h in headers}
    matches = list(heading_re.finditer(text))
    if not matches:
        return {FULL_SECTION: text}

    sections: Dict[str, str] = {}
    for i, m in enumerate(matches):
        end = matches[i + 1].start() if i + 1 < len(matches) else len(text)
        label = norm(m.group(1))
        sections[canonical.get(label.lower(), label)] = text[m.start():end].strip()
    sections[FULL_SECTION] = text

    logger.debug("Split into %d sections: %s", len(sections) - 1, ", ".join(sections))
    return sections
