"""
analysis.py — Rule-driven gap evaluation, scoring and risk classification.

One fixed algorithm, parameterised by Rule values:

  for each rule:
      scope = text of the rule's `where` sections (or FULL)
      absent & required   -> Missing, and nothing else for that rule
      present             -> Weak    (quality terms not found)
                             Unclear (ambiguity triggers found)
                             Outdated (one per matching legacy trigger)

plus three document-wide checks that don't depend on the rule set
(contradictory submission deadlines, no KPI vocabulary, risk without a
scoring model).

The score is a coarse ladder on the worst kind of finding present, not a
weighted count. Reviewers asked for it that way: one Missing section
matters more than ten Weak ones.

Findings are collected fresh per call and aggregated into the result.
Nothing here keeps state between analyses.
"""

from __future__ import annotations

import logging
import re
from typing import Dict, List, Optional, Sequence

from tender_gap.schemas import (
    FULL_SECTION,
    NOT_IDENTIFIABLE,
    AnalysisResult,
    CompletenessAssessment,
    CriticalRisks,
    DocumentInfo,
    Finding,
    FindingKind,
    GapCategory,
    Rule,
)
from tender_gap.sections import compile_pattern, in_text, matching_terms, missing_terms, rx_find

logger = logging.getLogger(__name__)

# Ladder: first kind present decides the score.
SCORE_LADDER = (
    (FindingKind.MISSING, 32),
    (FindingKind.OUTDATED, 52),
    (FindingKind.UNCLEAR, 62),
    (FindingKind.WEAK, 72),
)
CLEAN_SCORE = 90

SUMMARY_WITH_GAPS = (
    "The document contains gaps and/or weaknesses against typical government ICT "
    "transformation tender standards, notably around KPI/performance accountability, "
    "clarity of administrative dates, and modernization of legacy references."
)
SUMMARY_CLEAN = "The document appears broadly complete against common government ICT tender best practices."

HEADER_DEADLINE_RE = r"Proposal Submission Deadline\s*[\r\n]+?\s*([0-9]{1,2}/[0-9]{1,2}/[0-9]{4})"
TABLE_DEADLINE_RE = (
    r"Submission of Technical and Commercial Proposal\s*[\r\n]+?\s*([0-9]{1,2}/[0-9]{1,2}/[0-9]{4})"
)
KPI_VOCABULARY_RE = r"\bKPI\b|Key Performance|scorecard|OKR"
RISK_SCORING_RE = r"risk scoring|risk register|probability|impact"

KPI_GAP = "Specific metrics for evaluating vendor performance post-implementation"
RISK_WEAK_DETAIL = "Risk management is mentioned but lacks formal scoring/register (probability × impact)."
DEADLINE_RECOMMENDATION = (
    "Resolve conflicting submission deadlines by issuing an addendum that states one "
    "authoritative deadline (date + time + timezone)."
)
KPI_RECOMMENDATION = (
    "Add a KPI/benefits-realization section covering baseline, targets, measurement "
    "cadence, and vendor accountability post go-live."
)
RISK_RECOMMENDATION = (
    "Add a formal risk register with probability/impact scoring, mitigation owners, "
    "review cadence, and escalation thresholds."
)

# (finding kinds whose detail text is searched, pattern, risk message)
HIGH_RISK_RULES = (
    ((FindingKind.UNCLEAR, FindingKind.MISSING), r"integration",
     "Unclear integration requirements could lead to project failure and vendor misalignment."),
    ((FindingKind.WEAK, FindingKind.MISSING), r"SLA|Support",
     "Weak SLA/support definition may cause low performance and uncontrolled operational costs."),
    ((FindingKind.WEAK, FindingKind.MISSING), r"security",
     "Insufficient security requirements increase cybersecurity and compliance risk."),
)
MEDIUM_RISK_RULES = (
    ((FindingKind.UNCLEAR,), r"Contradictory",
     "Administrative contradictions (submission deadlines) may cause procurement disputes or unfairness claims."),
    ((FindingKind.WEAK, FindingKind.MISSING), r"Risk management",
     "Weak risk governance can reduce delivery predictability and oversight quality."),
)
MISSING_MODULES_RISK = (
    "Missing standard tender modules can lead to inconsistent vendor proposals and evaluation difficulty."
)
LEGACY_RISK = "Legacy technology references may misalign solution assumptions with current enterprise baselines."


def filter_rules(rules: Sequence[Rule], category: Optional[str]) -> List[Rule]:
    """
    Restrict rules to one gap category (case-insensitive).

    Anything that isn't a usable filter (empty, not a gap category, or a
    category with no rules) returns the full set, never an error. Callers
    pass the tender category straight through ("Works", "Services"), which
    is not a gap category.
    """
    if not category or not category.strip():
        return list(rules)

    wanted = GapCategory.from_label(category)
    if wanted is None:
        logger.warning(
            "Category %r is not a gap category (valid: %s). Using all rules.",
            category, ", ".join(GapCategory.labels()),
        )
        return list(rules)

    filtered = [r for r in rules if r.category == wanted]
    if not filtered:
        logger.warning("No rules found for gap category %s, using all rules", wanted.value)
        return list(rules)

    logger.info("Filtered to %d rules for gap category: %s", len(filtered), wanted.value)
    return filtered


class GapEvaluator:
    """
    Applies rules to a sectioned document.

    Usage:
        evaluator = GapEvaluator()
        findings = evaluator.evaluate(rules, sections, text)
    """

    def scope_text(self, rule: Rule, sections: Dict[str, str], full_text: str) -> str:
        """Newline-joined text of the rule's target sections, FULL when none are present."""
        chunks = [sections[name] for name in rule.where if sections.get(name)]
        if chunks:
            return "\n".join(chunks)
        return sections.get(FULL_SECTION) or full_text

    def evaluate(
        self,
        rules: Sequence[Rule],
        sections: Dict[str, str],
        full_text: str,
        include_document_checks: bool = True,
    ) -> List[Finding]:
        findings: List[Finding] = []
        seen_outdated = set()

        for rule in rules:
            scope = self.scope_text(rule, sections, full_text)
            present = in_text(scope, rule.presence)

            if rule.required and not present:
                findings.append(_missing(rule))
                continue
            if not present:
                continue

            if rule.quality_requires:
                missing = missing_terms(scope, rule.quality_requires)
                if missing:
                    findings.append(_weak(rule, missing))

            if rule.unclear_triggers:
                hits = matching_terms(scope, rule.unclear_triggers)
                if hits:
                    findings.append(_unclear(rule, hits))

            for pattern in rule.outdated_triggers:
                if not compile_pattern(pattern).search(scope):
                    continue
                finding = _outdated(rule, pattern)
                # Two rules sharing a legacy trigger would otherwise report
                # the same message twice.
                if finding.detail in seen_outdated:
                    continue
                seen_outdated.add(finding.detail)
                findings.append(finding)

        if include_document_checks:
            findings.extend(document_checks(full_text))

        logger.debug("Evaluated %d rules -> %d findings", len(rules), len(findings))
        return findings


def _missing(rule: Rule) -> Finding:
    return Finding(
        kind=FindingKind.MISSING,
        rule_name=rule.name,
        category=rule.category,
        detail=rule.name,
        gap=f"Missing: {rule.name}",
        recommendation=f"Add a complete section for '{rule.name}' aligned to PSD/government tender norms.",
    )


def _weak(rule: Rule, missing: List[str]) -> Finding:
    terms = ", ".join(missing)
    return Finding(
        kind=FindingKind.WEAK,
        rule_name=rule.name,
        category=rule.category,
        detail=f"{rule.name} lacks detail: {terms}",
        gap=f"Weak: {rule.name} lacks measurable detail ({terms}).",
        recommendation=f"Strengthen '{rule.name}' by explicitly defining: {terms}.",
    )


def _unclear(rule: Rule, hits: List[str]) -> Finding:
    terms = ", ".join(hits)
    return Finding(
        kind=FindingKind.UNCLEAR,
        rule_name=rule.name,
        category=rule.category,
        detail=f"{rule.name} contains ambiguous phrasing ({terms})",
        gap=f"Unclear: {rule.name} contains ambiguous phrasing ({terms}).",
        recommendation=(
            f"Clarify '{rule.name}' by replacing ambiguous phrases with specific, testable requirements."
        ),
    )


def _outdated(rule: Rule, pattern: str) -> Finding:
    message = f"Outdated reference in '{rule.name}': {pattern}"
    return Finding(
        kind=FindingKind.OUTDATED,
        rule_name=rule.name,
        category=rule.category,
        detail=message,
        gap=f"Outdated: {message}",
        recommendation=(
            f"Update '{rule.name}' to remove legacy references and align to current "
            f"government enterprise standards."
        ),
    )


def document_checks(text: str) -> List[Finding]:
    """Rule-independent checks, run once per document regardless of category filter."""
    findings: List[Finding] = []

    header_deadline = rx_find(text, HEADER_DEADLINE_RE)
    table_deadline = rx_find(text, TABLE_DEADLINE_RE)
    if header_deadline and table_deadline and header_deadline != table_deadline:
        findings.append(Finding(
            kind=FindingKind.UNCLEAR,
            rule_name="Proposal submission deadline",
            category=GapCategory.ADMINISTRATIVE,
            detail=f"Contradictory proposal submission deadlines: {header_deadline} vs {table_deadline}",
            gap=f"Unclear: Contradictory proposal submission deadlines ({header_deadline} vs {table_deadline}).",
            recommendation=DEADLINE_RECOMMENDATION,
        ))

    if not re.search(KPI_VOCABULARY_RE, text, re.IGNORECASE):
        findings.append(Finding(
            kind=FindingKind.MISSING,
            rule_name="Vendor performance metrics",
            category=GapCategory.KPI_PERFORMANCE,
            detail=KPI_GAP,
            gap=f"Missing: {KPI_GAP}.",
            recommendation=KPI_RECOMMENDATION,
        ))

    if re.search(r"risk", text, re.IGNORECASE) and not re.search(RISK_SCORING_RE, text, re.IGNORECASE):
        findings.append(Finding(
            kind=FindingKind.WEAK,
            rule_name="Risk scoring model",
            category=GapCategory.RISK_MANAGEMENT,
            detail=RISK_WEAK_DETAIL,
            gap="Weak: Risk management is mentioned but lacks a formal risk scoring model and risk register.",
            recommendation=RISK_RECOMMENDATION,
        ))

    return findings


def compute_score(findings: Sequence[Finding]) -> int:
    kinds = {f.kind for f in findings}
    for kind, score in SCORE_LADDER:
        if kind in kinds:
            return score
    return CLEAN_SCORE


def _details(findings: Sequence[Finding], kinds: Sequence[FindingKind]) -> List[str]:
    return [f.detail for f in findings if f.kind in kinds]


def _or_sentinel(items: List[str]) -> List[str]:
    return items if items else [NOT_IDENTIFIABLE]


def classify_risks(findings: Sequence[Finding]) -> CriticalRisks:
    """
    Map finding text to high/medium/low risk statements.

    Matches on the finding detail text, not on the rule's category, so
    workbook rules named "... integration ..." feed the integration risk
    whatever category they were filed under.
    """
    high = [
        message for kinds, pattern, message in HIGH_RISK_RULES
        if any(re.search(pattern, d, re.IGNORECASE) for d in _details(findings, kinds))
    ]
    medium = [
        message for kinds, pattern, message in MEDIUM_RISK_RULES
        if any(re.search(pattern, d, re.IGNORECASE) for d in _details(findings, kinds))
    ]
    if any(f.kind == FindingKind.MISSING for f in findings):
        medium.append(MISSING_MODULES_RISK)

    low = [LEGACY_RISK] if any(f.kind == FindingKind.OUTDATED for f in findings) else []

    return CriticalRisks(
        high_impact_risks=_or_sentinel(high),
        medium_impact_risks=_or_sentinel(medium),
        low_impact_risks=_or_sentinel(low),
    )


def build_result(
    findings: Sequence[Finding],
    document_info: Optional[DocumentInfo] = None,
) -> AnalysisResult:
    """Aggregate findings into the AnalysisResult shape (all nine categories present)."""
    gap_categories: Dict[str, List[str]] = {label: [] for label in GapCategory.labels()}
    recommendations: Dict[str, List[str]] = {label: [] for label in GapCategory.labels()}
    buckets: Dict[FindingKind, List[str]] = {kind: [] for kind in FindingKind}

    for finding in findings:
        gap_categories[finding.category.value].append(finding.gap)
        recommendations[finding.category.value].append(finding.recommendation)
        buckets[finding.kind].append(finding.detail)

    has_findings = bool(findings)
    assessment = CompletenessAssessment(
        overall_score=compute_score(findings),
        summary=SUMMARY_WITH_GAPS if has_findings else SUMMARY_CLEAN,
        missing_sections=_or_sentinel(buckets[FindingKind.MISSING]),
        weak_sections=_or_sentinel(buckets[FindingKind.WEAK]),
        unclear_sections=_or_sentinel(buckets[FindingKind.UNCLEAR]),
        outdated_content=_or_sentinel(buckets[FindingKind.OUTDATED]),
    )

    return AnalysisResult(
        document_info=document_info or DocumentInfo(),
        completeness_assessment=assessment,
        gap_categories=gap_categories,
        critical_risks=classify_risks(findings),
        recommendations=recommendations,
        findings=list(findings),
    )


def summarize(result: AnalysisResult) -> Dict[str, int]:
    """Counts for the closing log line."""
    ca = result.completeness_assessment

    def real(items: List[str]) -> int:
        return len([i for i in items if i != NOT_IDENTIFIABLE])

    return {
        "score": ca.overall_score,
        "gaps": sum(len(v) for v in result.gap_categories.values()),
        "recommendations": sum(len(v) for v in result.recommendations.values()),
        "missing": real(ca.missing_sections),
        "weak": real(ca.weak_sections),
        "unclear": real(ca.unclear_sections),
        "outdated": real(ca.outdated_content),
    }
