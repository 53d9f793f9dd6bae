from __future__ import annotations

import logging
import uuid
from pathlib import Path
from typing import Optional, Sequence, Tuple

from fastapi import FastAPI, File, Form, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from tender_gap.config import config
from tender_gap.main import TenderGapPipeline

logger = logging.getLogger("tender_gap.api")

app = FastAPI(title="Tender Gap Analyzer API")
app.add_middleware(CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"], allow_headers=["*"])

UPLOAD_DIR = Path(config.upload_dir); UPLOAD_DIR.mkdir(exist_ok=True)
SCHEMA_FORMATS = (".pdf", ".docx", ".doc", ".txt")
ARTIFACT_FORMATS = (".pdf", ".docx", ".doc")

pipeline = TenderGapPipeline()


def _error(status: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status, content={"success": False, "error": message})


def _first(*values: Optional[str]) -> Optional[str]:
    for value in values:
        if value and value.strip():
            return value.strip()
    return None


async def _save_upload(
    file: Optional[UploadFile], field_name: str, formats: Sequence[str]
) -> Tuple[Optional[Path], Optional[JSONResponse]]:
    """Store the upload under a generated name. Returns (path, None) or (None, error response)."""
    if file is None or not file.filename:
        return None, _error(400, f"No file uploaded. Please provide a '{field_name}' file.")

    ext = Path(file.filename).suffix.lower()
    if ext not in formats:
        return None, _error(400, f"Unsupported file format: {ext or 'unknown'}. Supported formats: {', '.join(formats)}")

    content = await file.read()
    if len(content) > config.max_file_size_mb * 1024 * 1024:
        return None, _error(400, f"File too large. Max: {config.max_file_size_mb} MB")

    path = UPLOAD_DIR / f"file-{uuid.uuid4().hex}{ext}"
    path.write_bytes(content)
    return path, None


def _cleanup(path: Optional[Path]) -> None:
    if path is not None and path.exists():
        path.unlink()


@app.post("/analyze")
async def analyze(
    document: Optional[UploadFile] = File(None),
    department: Optional[str] = Form(None),
    category: Optional[str] = Form(None),
):
    path, error = await _save_upload(document, "document", config.supported_formats)
    if error:
        return error
    logger.info("Analyze %s | department=%s | category=%s",
                document.filename, department or "auto-detect", category or "all")
    try:
        result = await run_in_threadpool(
            pipeline.analyze, str(path), _first(department), _first(category), document.filename
        )
        return {"success": True, "filename": document.filename, "result": result}
    except Exception as exc:
        logger.exception("Analysis failed for %s", document.filename)
        return _error(500, str(exc) or "An error occurred during analysis")
    finally:
        _cleanup(path)


@app.get("/categories")
def categories():
    try:
        return {"success": True, **pipeline.categories()}
    except Exception as exc:
        logger.exception("Listing categories failed")
        return _error(500, str(exc))


@app.get("/keywords/{category}")
def keywords(category: str):
    try:
        rules = pipeline.rule_store.rules_for_category(category)
        return {
            "success": True,
            "category": category,
            "keywords": [rule.model_dump(mode="json") for rule in rules],
            "count": len(rules),
        }
    except Exception as exc:
        logger.exception("Listing keywords failed")
        return _error(500, str(exc))


@app.post("/evaluate-rfp")
async def evaluate_rfp(
    document: Optional[UploadFile] = File(None),
    department: Optional[str] = Form(None),
    departmentName: Optional[str] = Form(None),
    dept: Optional[str] = Form(None),
):
    path, error = await _save_upload(document, "document", SCHEMA_FORMATS)
    if error:
        return error
    dept_name = _first(department, departmentName, dept) or "Unknown"
    logger.info("Evaluate RFP %s | department=%s", document.filename, dept_name)
    try:
        evaluation = await run_in_threadpool(
            pipeline.evaluate_rfp, str(path), dept_name, document.filename
        )
        return {"success": True, "filename": document.filename, "department": dept_name, "evaluation": evaluation}
    except Exception as exc:
        logger.exception("RFP evaluation failed for %s", document.filename)
        return _error(500, str(exc) or "An error occurred during RFP evaluation extraction")
    finally:
        _cleanup(path)


@app.post("/extract-tender-overview")
async def extract_tender_overview(
    document: Optional[UploadFile] = File(None),
    departmentName: Optional[str] = Form(None),
    department: Optional[str] = Form(None),
    rfpTitle: Optional[str] = Form(None),
    title: Optional[str] = Form(None),
):
    path, error = await _save_upload(document, "document", SCHEMA_FORMATS)
    if error:
        return error
    dept_name = _first(departmentName, department)
    rfp_title = _first(rfpTitle, title)
    logger.info("Tender overview %s | department=%s | title=%s",
                document.filename, dept_name or "Not provided", rfp_title or "Not provided")
    try:
        return await run_in_threadpool(
            pipeline.overview, str(path), dept_name, rfp_title, document.filename
        )
    except Exception as exc:
        logger.exception("Tender overview failed for %s", document.filename)
        return _error(500, str(exc) or "An error occurred during tender overview extraction")
    finally:
        _cleanup(path)


@app.post("/extract-matrix")
async def extract_matrix(
    document: Optional[UploadFile] = File(None),
    tenderId: Optional[str] = Form(None),
    tender_id: Optional[str] = Form(None),
):
    path, error = await _save_upload(document, "document", SCHEMA_FORMATS)
    if error:
        return error
    tender = _first(tenderId, tender_id)
    logger.info("Evaluation matrix %s | tender=%s", document.filename, tender or "Not provided")
    try:
        return await run_in_threadpool(pipeline.matrix, str(path), tender, document.filename)
    except Exception as exc:
        logger.exception("Matrix extraction failed for %s", document.filename)
        return _error(500, str(exc) or "An error occurred during matrix extraction")
    finally:
        _cleanup(path)


@app.post("/extract-artifacts")
async def extract_artifacts(
    document: Optional[UploadFile] = File(None),
    departmentName: Optional[str] = Form(None),
    department: Optional[str] = Form(None),
):
    path, error = await _save_upload(document, "document", ARTIFACT_FORMATS)
    if error:
        return error
    dept_name = _first(departmentName, department)
    logger.info("Artifacts %s | department=%s", document.filename, dept_name or "Not provided")
    try:
        return await run_in_threadpool(pipeline.artifacts, str(path), dept_name, document.filename)
    except Exception as exc:
        logger.exception("Artifact extraction failed for %s", document.filename)
        return _error(500, str(exc) or "An error occurred during artifact extraction")
    finally:
        _cleanup(path)


@app.post("/pre-bid-queries/analyze")
async def pre_bid_queries(
    file: Optional[UploadFile] = File(None),
    vendorCompanyName: Optional[str] = Form(None),
    vendor: Optional[str] = Form(None),
    authorityName: Optional[str] = Form(None),
    authority: Optional[str] = Form(None),
    projectName: Optional[str] = Form(None),
    project: Optional[str] = Form(None),
):
    path, error = await _save_upload(file, "file", config.supported_formats)
    if error:
        return error
    try:
        return await run_in_threadpool(
            pipeline.prebid, str(path),
            _first(vendorCompanyName, vendor), _first(authorityName, authority), _first(projectName, project),
            file.filename,
        )
    except Exception as exc:
        logger.exception("Pre-bid query analysis failed for %s", file.filename)
        return _error(500, str(exc) or "An error occurred during pre-bid query analysis")
    finally:
        _cleanup(path)


@app.get("/health")
def health():
    return {"status": "ok", "message": "Tender Gap Analyzer API is running"}
