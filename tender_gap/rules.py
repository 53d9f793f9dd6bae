"""
rules.py — Keyword rule store: workbook loader, baseline rules, merge.

Analysts maintain the rules in an Excel workbook (one rule per row) and
edit it between runs, so the workbook is re-read on every analysis. There
is no cache to invalidate.

The workbook columns get renamed and reordered regularly ("Gap Category"
vs "Category", "Pattern" vs "Presence"), so columns are resolved by
synonym regexes over the header row, not by position. Every field picks
the leftmost header its regex matches, and fields do not compete for
columns. The `unclear` regex also matches "trigger", so a workbook that
puts "Outdated Triggers" left of "Unclear Triggers" reads its outdated
column as both; keep the unclear column first.

The hard-coded baseline covers all nine gap categories, so analysis
stays useful when the workbook is missing or broken. Workbook rows
replace baseline rules with the same name (case-insensitive) and are
appended otherwise.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pydantic import ValidationError

from tender_gap.config import config
from tender_gap.schemas import FULL_SECTION, GapCategory, Rule

logger = logging.getLogger(__name__)

HEADER_SYNONYMS: Tuple[Tuple[str, re.Pattern], ...] = (
    ("category", re.compile(r"category|gap.category|gap_category", re.IGNORECASE)),
    ("outdated", re.compile(r"outdated|legacy|old", re.IGNORECASE)),
    ("unclear", re.compile(r"unclear|ambiguous|trigger", re.IGNORECASE)),
    ("presence", re.compile(r"presence|pattern|match", re.IGNORECASE)),
    ("quality", re.compile(r"quality|requires|detail", re.IGNORECASE)),
    ("required", re.compile(r"required|mandatory", re.IGNORECASE)),
    ("where", re.compile(r"where|section|location", re.IGNORECASE)),
    ("keyword", re.compile(r"keyword|term|phrase|requirement", re.IGNORECASE)),
    ("name", re.compile(r"name|rule|requirement", re.IGNORECASE)),
)

_TRUE_VALUES = ("true", "yes", "1")


def map_header_columns(headers: Sequence[Any]) -> Dict[str, int]:
    """
    Map rule fields to column indices from a header row.

    Returns something like {"category": 0, "keyword": 1, "presence": 2}.
    Each field takes the first column whose header matches its regex,
    independently of the other fields, so one column can serve several
    fields (a lone "Requirement" column is both keyword and name). Fields
    with no matching header are absent.
    """
    texts = [str(header or "").strip() for header in headers]
    mapping: Dict[str, int] = {}
    for field_name, pattern in HEADER_SYNONYMS:
        for idx, text in enumerate(texts):
            if text and pattern.search(text):
                mapping[field_name] = idx
                break
    return mapping


def split_cell(value: Any) -> List[str]:
    """Comma-separated cell -> trimmed, non-empty list."""
    if value is None:
        return []
    return [part.strip() for part in str(value).split(",") if part.strip()]


def _cell(row: Sequence[Any], col_idx: Optional[int]) -> str:
    """Safe cell access. Empty string for missing columns and empty cells."""
    if col_idx is None or col_idx >= len(row) or row[col_idx] is None:
        return ""
    return str(row[col_idx]).strip()


def rules_from_rows(rows: Sequence[Sequence[Any]]) -> List[Rule]:
    """
    Build rules from a header row plus data rows.

    Kept separate from the workbook I/O so the column logic can be tested
    with plain lists.
    """
    if len(rows) < 2:
        return []

    columns = map_header_columns(rows[0])
    logger.debug("Rule workbook columns: %s", columns)
    rules: List[Rule] = []

    for i, row in enumerate(rows[1:], start=1):
        if not row or not any(cell not in (None, "") for cell in row):
            continue

        category_label = _cell(row, columns.get("category"))
        keyword = _cell(row, columns.get("keyword"))
        if not category_label or not keyword:
            continue

        category = GapCategory.from_label(category_label)
        if category is None:
            logger.warning(
                "Row %d: unknown gap category %r, skipping. Valid: %s",
                i, category_label, ", ".join(GapCategory.labels()),
            )
            continue

        presence_raw = _cell(row, columns["presence"]) if "presence" in columns else keyword
        where_raw = _cell(row, columns["where"]) if "where" in columns else FULL_SECTION
        name = _cell(row, columns["name"]) if "name" in columns else (keyword or f"Rule {i}")

        try:
            rules.append(Rule(
                name=name or keyword,
                category=category,
                where=split_cell(where_raw) or [FULL_SECTION],
                presence=split_cell(presence_raw) or [keyword],
                quality_requires=split_cell(_cell(row, columns.get("quality"))),
                unclear_triggers=split_cell(_cell(row, columns.get("unclear"))),
                outdated_triggers=split_cell(_cell(row, columns.get("outdated"))),
                required=_cell(row, columns.get("required")).lower() in _TRUE_VALUES,
            ))
        except ValidationError as exc:
            logger.warning("Row %d: invalid rule skipped: %s", i, exc)

    return rules


def load_rules_from_excel(path: Optional[str] = None) -> List[Rule]:
    """
    Load keyword rules from the first sheet of the rule workbook.

    Never raises. A missing file, an unreadable workbook or a sheet with
    no usable rows all return [] and the caller falls back to the
    baseline set.
    """
    excel_path = Path(path or config.rules.excel_path).resolve()
    if not excel_path.exists():
        logger.error("Keywords Excel file not found: %s", excel_path)
        return []

    try:
        from openpyxl import load_workbook

        workbook = load_workbook(str(excel_path), read_only=True, data_only=True)
        try:
            sheet = workbook.worksheets[0]
            rows = [list(row) for row in sheet.iter_rows(values_only=True)]
        finally:
            workbook.close()
    except Exception as exc:
        # openpyxl raises InvalidFileException, zipfile.BadZipFile, KeyError
        # and friends depending on how the file is broken.
        logger.error("Error loading keywords from Excel %s: %s", excel_path, exc)
        return []

    if len(rows) < 2:
        logger.error("Excel file has no data rows (only header or empty): %s", excel_path)
        return []

    rules = rules_from_rows(rows)
    if not rules:
        logger.error("No valid keyword rules extracted from %s. Check column headers.", excel_path)
        return []

    logger.info("Loaded %d keyword rules from %s", len(rules), excel_path.name)
    return rules


def baseline_rules() -> List[Rule]:
    """Hard-coded rules used when the workbook is absent, and as the merge base."""
    return [
        # Administrative
        Rule(
            name="Submission guidelines and proposal instructions",
            category=GapCategory.ADMINISTRATIVE,
            where=["Proposal Guidelines", "Instructions to Vendor", FULL_SECTION],
            presence=[
                r"Deadline for Submission",
                r"Last date for Submission",
                r"Send the proposal",
                r"submission of proposals",
            ],
            quality_requires=[r"format", r"deadline", r"email"],
            unclear_triggers=[r"may.*extend", r"sole discretion"],
            required=True,
        ),
        Rule(
            name="Dispute resolution and governing law",
            category=GapCategory.ADMINISTRATIVE,
            where=["Instructions to Vendor", FULL_SECTION],
            presence=[r"Dispute Resolution", r"Governing Law"],
            quality_requires=[r"courts", r"laws of UAE"],
            required=True,
        ),
        # Governance
        Rule(
            name="Governance structure with roles and responsibilities",
            category=GapCategory.GOVERNANCE,
            where=["Proposal Guidelines", "Rules, Assumptions", FULL_SECTION],
            presence=[
                r"roles and responsibilities",
                r"Program governance",
                r"steering",
                r"oversight",
            ],
            quality_requires=[r"matrix", r"stakeholder|stakeholders"],
            unclear_triggers=[r"as required", r"as needed", r"to be agreed"],
            required=True,
        ),
        # Technical
        Rule(
            name="Solution architecture / system landscape",
            category=GapCategory.TECHNICAL,
            where=["System Landscape", "Scope of Work", FULL_SECTION],
            presence=[
                r"System Landscape",
                r"solution architecture",
                r"servers",
                r"operating systems",
            ],
            quality_requires=[r"availability", r"redundancy|failover", r"version"],
            unclear_triggers=[r"optimum configuration", r"as.*recommended"],
            required=True,
        ),
        Rule(
            name="Cybersecurity and information security requirements",
            category=GapCategory.TECHNICAL,
            where=["System Landscape", "Scope of Work", FULL_SECTION],
            presence=[
                r"Information Security",
                r"Security",
                r"role-based",
                r"authentication",
            ],
            quality_requires=[r"access", r"controls", r"auditing|audit"],
            unclear_triggers=[r"must propose", r"ensure"],
            outdated_triggers=[r"Exchange\s2010", r"FileNet\sP8\s*5\.0"],
            required=True,
        ),
        Rule(
            name="Data migration / conversion plan",
            category=GapCategory.TECHNICAL,
            where=["Scope of Work", FULL_SECTION],
            presence=[r"Data Conversion", r"data migration", r"migrate.*5 years"],
            quality_requires=[r"validation", r"verification", r"plan"],
            unclear_triggers=[r"will be reviewed", r"recommend"],
            required=True,
        ),
        Rule(
            name="Testing strategy (UT/UAT/Integration/Stress/Security)",
            category=GapCategory.TECHNICAL,
            where=["Scope of Work", FULL_SECTION],
            presence=[r"Testing", r"UAT", r"Stress testing", r"Security testing"],
            quality_requires=[
                r"Unit Testing",
                r"Integration Testing",
                r"User Acceptance Testing",
            ],
            required=True,
        ),
        # Integration
        Rule(
            name="Integration requirements with existing systems",
            category=GapCategory.INTEGRATION,
            where=["Scope of Work", FULL_SECTION],
            presence=[
                r"Interfaces",
                r"integration",
                r"bidirectional",
                r"web service",
                r"SAP HCM",
                r"FileNet",
            ],
            quality_requires=[r"mechanism", r"interface", r"systems"],
            unclear_triggers=[r"to be identified", r"will be identified"],
            outdated_triggers=[r"Exchange\s*2010"],
            required=True,
        ),
        # Support/SLA
        Rule(
            name="Support plan and SLA (response/resolution, severity, hours, windows)",
            category=GapCategory.SUPPORT_SLA,
            where=["Scope of Work", FULL_SECTION],
            presence=[r"Support Plan", r"SLA", r"Help Desk", r"Support Hours"],
            quality_requires=[
                r"Severity",
                r"Response",
                r"Resolution",
                r"Maintenance Windows",
            ],
            unclear_triggers=[r"may be required", r"rate card"],
            required=True,
        ),
        # Financial
        Rule(
            name="Commercial proposal and detailed pricing",
            category=GapCategory.FINANCIAL,
            where=["Proposal Guidelines", "Award of Contract", FULL_SECTION],
            presence=[r"Commercial Proposal", r"Price Schedule", r"UAE Dirhams"],
            quality_requires=[r"fixed price", r"all costs", r"taxes|duties"],
            required=True,
        ),
        Rule(
            name="TCO / total cost of ownership",
            category=GapCategory.FINANCIAL,
            where=[FULL_SECTION],
            presence=[r"Total cost of ownership|TCO"],
            required=False,
        ),
        Rule(
            name="Penalties / liquidated damages for delay",
            category=GapCategory.FINANCIAL,
            where=["Rules, Assumptions", FULL_SECTION],
            presence=[r"Delay Penalties", r"delay fee", r"not to exceed"],
            quality_requires=[r"2000", r"10%"],
            required=True,
        ),
        # Compliance
        Rule(
            name="Mandatory compliance and eligibility requirements",
            category=GapCategory.COMPLIANCE,
            where=["Proposal Guidelines", "Selection Process", FULL_SECTION],
            presence=[
                r"compliance matrix",
                r"mandatory requirements?",
                r"eligibility",
                r"pass\s*/\s*fail",
            ],
            quality_requires=[r"disqualif", r"certificat", r"validity"],
            unclear_triggers=[r"where applicable", r"if required"],
            required=False,
        ),
        # Risk Management (optional)
        Rule(
            name="Risk management framework (scoring, ERM, mitigation)",
            category=GapCategory.RISK_MANAGEMENT,
            where=["Proposal Guidelines", "Rules, Assumptions", FULL_SECTION],
            presence=[r"Risk Management", r"risk identification", r"mitigation"],
            quality_requires=[r"scoring|risk scoring|risk register"],
            required=False,
        ),
        # KPI & Performance (optional)
        Rule(
            name="KPIs and vendor performance measurement",
            category=GapCategory.KPI_PERFORMANCE,
            where=["Scope of Work", FULL_SECTION],
            presence=[r"\bKPI\b", r"Key Performance", r"dashboards"],
            quality_requires=[r"measurement", r"baseline", r"post-implementation"],
            required=False,
        ),
    ]


def merge_rules(baseline: List[Rule], external: List[Rule]) -> List[Rule]:
    """
    Overlay workbook rules onto the baseline.

    A workbook rule whose name matches a baseline rule (case-insensitive)
    replaces it in place; anything else is appended in workbook order.
    """
    if not external:
        logger.warning("No keywords loaded from Excel, using baseline rules only")
        return list(baseline)

    merged = list(baseline)
    index_by_name = {rule.name.lower(): i for i, rule in enumerate(merged)}
    replaced = added = 0

    for rule in external:
        key = rule.name.lower()
        if not key:
            continue
        if key in index_by_name:
            merged[index_by_name[key]] = rule
            replaced += 1
        else:
            index_by_name[key] = len(merged)
            merged.append(rule)
            added += 1

    logger.info(
        "Merged rules: %d baseline, %d replaced, %d added, %d total",
        len(baseline), replaced, added, len(merged),
    )
    return merged


class RuleStore:
    """
    Read-only view over the baseline rules plus the rule workbook.

    Usage:
        store = RuleStore()
        rules = store.load()          # baseline merged with workbook
        store.categories()            # workbook categories only
    """

    def __init__(self, excel_path: Optional[str] = None):
        self.excel_path = excel_path

    def load_external(self) -> List[Rule]:
        return load_rules_from_excel(self.excel_path)

    def load(self) -> List[Rule]:
        return merge_rules(baseline_rules(), self.load_external())

    def categories(self) -> Tuple[List[str], int]:
        """Sorted distinct workbook categories and the workbook rule count."""
        rules = self.load_external()
        return sorted({rule.category.value for rule in rules}), len(rules)

    def rules_for_category(self, category: str) -> List[Rule]:
        """Workbook rules in a category (case-insensitive). Empty for unknown categories."""
        wanted = (category or "").strip().lower()
        return [rule for rule in self.load_external() if rule.category.value.lower() == wanted]
