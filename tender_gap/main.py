"""
main.py — Pipeline orchestration and CLI for TenderGap.

Six document workflows share the same ingestion step:

  analyze       rule-based gap analysis (works with the LLM off)
  evaluate-rfp  evaluation criteria mapped into the A1-A4 template
  overview      one-page tender overview for the dashboard
  matrix        per-company ratings from an evaluation matrix
  artifacts     RFP / SOW / BOQ / BOM / BOS contents
  prebid        draft answers to vendor pre-bid queries

The gap analysis is the one people run in bulk, so it gets the staged
timing log. The others are dominated by their model calls and
log a header and a DONE line.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

from tender_gap.analysis import GapEvaluator, build_result, filter_rules, summarize
from tender_gap.artifacts import extract_artifacts
from tender_gap.config import config
from tender_gap.document_info import extract_document_info
from tender_gap.enrichment import enhance_recommendations, extract_document_info_with_ai
from tender_gap.ingestion import read_document_text
from tender_gap.llm import LLMGateway, get_gateway
from tender_gap.prebid import analyze_prebid_queries
from tender_gap.rfp_evaluation import evaluate_rfp
from tender_gap.rules import RuleStore
from tender_gap.sections import split_into_sections
from tender_gap.tender_matrix import extract_tender_matrix
from tender_gap.tender_overview import extract_tender_overview

logger = logging.getLogger("tender_gap")


class TenderGapPipeline:
    """
    Entry point for all document workflows.

    Usage:
        pipeline = TenderGapPipeline()
        result = pipeline.analyze("dataset/RFP.pdf", department="PSD")
        print(json.dumps(result, indent=2))
    """

    def __init__(self, rule_store: Optional[RuleStore] = None, gateway: Optional[LLMGateway] = None):
        self.rule_store = rule_store or RuleStore()
        self.gateway = gateway or get_gateway()
        self.evaluator = GapEvaluator()

    def analyze(
        self,
        file_path: str,
        department: Optional[str] = None,
        category: Optional[str] = None,
        original_name: Optional[str] = None,
        output_path: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Gap analysis of one document. Returns the camelCase result dict and
        optionally writes it to `output_path`.
        """
        overall_start = time.time()
        name = original_name or Path(file_path).name
        logger.info("=" * 60)
        logger.info("TenderGap — Gap analysis: %s", name)
        logger.info("=" * 60)

        t0 = time.time()
        logger.info("[1/5] Reading document ...")
        text = read_document_text(file_path, original_name)
        logger.info("  ✓ %d chars in %.1fs", len(text), time.time() - t0)

        result = self.analyze_text(text, department, category, timer_start=overall_start)
        _write_output(result, output_path)
        return result

    def analyze_text(
        self,
        text: str,
        department: Optional[str] = None,
        category: Optional[str] = None,
        timer_start: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Stages 2-5 of analyze() on already-extracted text."""
        overall_start = timer_start or time.time()

        t0 = time.time()
        logger.info("[2/5] Splitting sections ...")
        sections = split_into_sections(text)
        logger.info("  ✓ %d sections in %.1fs", len(sections) - 1, time.time() - t0)

        t0 = time.time()
        logger.info("[3/5] Loading rules ...")
        rules = filter_rules(self.rule_store.load(), category)
        logger.info("  ✓ %d rules in %.1fs", len(rules), time.time() - t0)

        t0 = time.time()
        logger.info("[4/5] Evaluating rules ...")
        findings = self.evaluator.evaluate(rules, sections, text)
        logger.info("  ✓ %d findings in %.1fs", len(findings), time.time() - t0)

        t0 = time.time()
        logger.info("[5/5] Document info and recommendations ...")
        ai_info = extract_document_info_with_ai(text, self.gateway)
        document_info = extract_document_info(text, department, ai_info)
        result = build_result(findings, document_info)
        if self.gateway.enabled:
            result.recommendations = enhance_recommendations(
                result.recommendations, result.gap_categories, document_info, self.gateway
            )
        else:
            logger.info("  ⊘ AI enrichment skipped (LLM disabled)")
        logger.info("  ✓ Done in %.1fs", time.time() - t0)

        counts = summarize(result)
        logger.info("=" * 60)
        logger.info(
            "DONE in %.1fs | score %d | %d gaps | %d recommendations | "
            "missing %d, weak %d, unclear %d, outdated %d",
            time.time() - overall_start, counts["score"], counts["gaps"], counts["recommendations"],
            counts["missing"], counts["weak"], counts["unclear"], counts["outdated"],
        )
        logger.info("=" * 60)
        return result.model_dump(by_alias=True)

    def evaluate_rfp(
        self,
        file_path: str,
        department: Optional[str] = None,
        original_name: Optional[str] = None,
        output_path: Optional[str] = None,
    ) -> Dict[str, Any]:
        start = time.time()
        logger.info("TenderGap — RFP evaluation: %s", original_name or Path(file_path).name)
        text = read_document_text(file_path, original_name)
        evaluation = evaluate_rfp(text, department, self.gateway)
        logger.info("DONE in %.1fs", time.time() - start)
        _write_output(evaluation, output_path)
        return evaluation

    def overview(
        self,
        file_path: str,
        department: Optional[str] = None,
        title: Optional[str] = None,
        original_name: Optional[str] = None,
        output_path: Optional[str] = None,
    ) -> Dict[str, Any]:
        start = time.time()
        logger.info("TenderGap — Tender overview: %s", original_name or Path(file_path).name)
        text = read_document_text(file_path, original_name)
        overview = extract_tender_overview(text, department, title, self.gateway)
        logger.info("DONE in %.1fs", time.time() - start)
        _write_output(overview, output_path)
        return overview

    def matrix(
        self,
        file_path: str,
        tender_id: Optional[str] = None,
        original_name: Optional[str] = None,
        output_path: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        start = time.time()
        logger.info("TenderGap — Evaluation matrix: %s", original_name or Path(file_path).name)
        text = read_document_text(file_path, original_name)
        companies = extract_tender_matrix(text, tender_id, self.gateway)
        logger.info("DONE in %.1fs | %d companies", time.time() - start, len(companies))
        _write_output(companies, output_path)
        return companies

    def artifacts(
        self,
        file_path: str,
        department: Optional[str] = None,
        original_name: Optional[str] = None,
        output_path: Optional[str] = None,
    ) -> Dict[str, Any]:
        start = time.time()
        logger.info("TenderGap — Artifacts: %s", original_name or Path(file_path).name)
        text = read_document_text(file_path, original_name)
        artifacts = extract_artifacts(text, department, self.gateway)
        logger.info("DONE in %.1fs", time.time() - start)
        _write_output(artifacts, output_path)
        return artifacts

    def prebid(
        self,
        file_path: str,
        vendor: Optional[str] = None,
        authority: Optional[str] = None,
        project: Optional[str] = None,
        original_name: Optional[str] = None,
        output_path: Optional[str] = None,
    ) -> Dict[str, Any]:
        start = time.time()
        logger.info("TenderGap — Pre-bid queries: %s", original_name or Path(file_path).name)
        logger.info("Vendor: %s | Authority: %s | Project: %s",
                    vendor or "Not provided", authority or "Not provided", project or "Not provided")
        text = read_document_text(file_path, original_name)
        result = analyze_prebid_queries(text, vendor, authority, project, self.gateway)
        rows = sum(len(s.rows) for s in result.sections)
        logger.info("DONE in %.1fs | %d sections | %d queries", time.time() - start, len(result.sections), rows)
        output = result.model_dump(by_alias=True)
        _write_output(output, output_path)
        return output

    def categories(self) -> Dict[str, Any]:
        categories, total = self.rule_store.categories()
        return {"categories": categories, "totalRules": total}


def _write_output(result: Any, output_path: Optional[str]) -> None:
    if not output_path:
        return
    os.makedirs(os.path.dirname(output_path) or ".", exist_ok=True)
    with open(output_path, "w", encoding="utf-8") as f:
        json.dump(result, f, indent=2, ensure_ascii=False)
    logger.info("Output written to: %s", output_path)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tender_gap",
        description="TenderGap — Gap analysis, evaluation mapping and pre-bid answers for tender documents",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")
    sub = parser.add_subparsers(dest="command", required=True)

    def add_command(name: str, help_text: str, with_file: bool = True) -> argparse.ArgumentParser:
        cmd = sub.add_parser(name, help=help_text)
        if with_file:
            cmd.add_argument("file", help="Path to tender document (PDF, DOCX, DOC, TXT, HTML)")
            cmd.add_argument("--output", "-o", default=None, help="JSON output path (default: stdout)")
        return cmd

    analyze = add_command("analyze", "Rule-based gap analysis")
    analyze.add_argument("--department", default=None, help="Department name (overrides detection)")
    analyze.add_argument("--category", default=None, help="Only apply rules of this gap category")

    evaluate = add_command("evaluate-rfp", "Map evaluation criteria into the A1-A4 template")
    evaluate.add_argument("--department", default=None, help="Department name")

    overview = add_command("overview", "Extract the tender overview")
    overview.add_argument("--department", default=None, help="Department name")
    overview.add_argument("--title", default=None, help="RFP title or reference")

    matrix = add_command("matrix", "Extract per-company ratings from an evaluation matrix")
    matrix.add_argument("--tender-id", default=None, help="Tender ID or reference")

    artifacts = add_command("artifacts", "Extract RFP, SOW, BOQ, BOM and BOS contents")
    artifacts.add_argument("--department", default=None, help="Department name")

    prebid = add_command("prebid","Draft answers to vendor pre-bid queries")
    prebid.add_argument("--vendor", default=None, help="Vendor company name")
    prebid.add_argument("--authority", default=None, help="Tendering authority name")
    prebid.add_argument("--project", default=None, help="Project name")

    add_command("categories", "List rule workbook categories", with_file=False)
    return parser


def run_command(args: argparse.Namespace, pipeline: TenderGapPipeline) -> Any:
    if args.command == "analyze":
        return pipeline.analyze(args.file, args.department, args.category, output_path=args.output)
    if args.command == "evaluate-rfp":
        return pipeline.evaluate_rfp(args.file, args.department, output_path=args.output)
    if args.command == "overview":
        return pipeline.overview(args.file, args.department, args.title, output_path=args.output)
    if args.command == "matrix":
        return pipeline.matrix(args.file, args.tender_id, output_path=args.output)
    if args.command == "artifacts":
        return pipeline.artifacts(args.file, args.department, output_path=args.output)
    if args.command == "prebid":
        return pipeline.prebid(args.file, args.vendor, args.authority, args.project, output_path=args.output)
    return pipeline.categories()


def main(argv: Optional[List[str]] = None):
    """CLI entry point."""
    args = build_parser().parse_args(argv)

    level = logging.DEBUG if args.verbose else getattr(logging, config.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
        datefmt="%H:%M:%S",
    )

    pipeline = TenderGapPipeline()

    try:
        result = run_command(args, pipeline)
        if getattr(args, "output", None) is None:
            print(json.dumps(result, indent=2, ensure_ascii=False))
    except FileNotFoundError as exc:
        logger.error("File not found: %s", exc)
        sys.exit(1)
    except ValueError as exc:
        logger.error("Invalid input: %s", exc)
        sys.exit(1)
    except RuntimeError as exc:
        logger.error("Runtime error: %s", exc)
        sys.exit(1)


if __name__ == "__main__":
    main()
