"""
config.py — Central configuration for TenderGap.

All tunable params live here. Every value can be overridden through an
environment variable so the same image runs against the shared Ollama
host in staging and a local one on a laptop.

The generative backend is optional for gap analysis: with
OLLAMA_ENABLED=false every AI step degrades to its deterministic result.
The schema-mapping features (RFP evaluation, tender overview, evaluation
matrix, artifacts, pre-bid answers) need it and fail loudly without it.
"""

from dataclasses import dataclass, field
import os
import logging

logger = logging.getLogger(__name__)


def _env_flag(name: str, default: str = "true") -> bool:
    """Read an on/off environment flag. Anything but an explicit 'off' is on."""
    return os.getenv(name, default).strip().lower() not in ("0", "false", "no", "off")


@dataclass
class LLMConfig:
    """
    Ollama settings.

    The base URL includes the /api suffix, generate/chat/pull paths are
    appended to it. Retries back off linearly (1s, 2s, ...): the shared
    host is usually busy rather than down, so a short wait is enough.
    """
    base_url: str = os.getenv("OLLAMA_URL", "http://ollama-sales.mobiusdtaas.ai/api")
    model: str = os.getenv("OLLAMA_MODEL", "gpt-oss:120b")
    enabled: bool = _env_flag("OLLAMA_ENABLED")

    # The 120b model takes minutes on a full RFP, chat calls carry the
    # whole document so they get the longer ceiling.
    generate_timeout: float = float(os.getenv("LLM_GENERATE_TIMEOUT_S", "120"))
    chat_timeout: float = int(os.getenv("LLM_TIMEOUT_MS", "180000")) / 1000.0
    pull_timeout: float = 60.0

    max_retries: int = 2
    retry_base_delay: float = 1.0

    # Near-zero temperature for extraction. Large context because the
    # evaluation prompt embeds the complete document.
    temperature: float = 0.05
    top_p: float = 0.9
    num_ctx: int = 32768


@dataclass
class RulesConfig:
    """Where the external keyword rule workbook lives."""
    excel_path: str = os.getenv(
        "KEYWORDS_EXCEL_FILE",
        "Tender_Keywords_56_Rows_FULL.xlsx",
    )


@dataclass
class EnforcerConfig:
    """
    Schema enforcement and prompt-size limits.

    Three attempts means the first answer plus two repair round-trips.
    More than that rarely helped: a model that can't produce the shape
    after two repairs usually can't produce it at all.
    """
    max_attempts: int = 3
    relevant_text_max_chars: int = 35000
    # Above this the evaluation prompt gets the per-category excerpts
    # instead of the complete document.
    full_text_max_chars: int = int(os.getenv("EVAL_FULL_TEXT_MAX_CHARS", "120000"))
    overview_chunk_chars: int = 12000
    repair_input_max_chars: int = 15000
    weight_tolerance: float = 1.0


@dataclass
class PreBidConfig:
    """Pre-bid query extraction and answering limits."""
    max_doc_chars: int = int(os.getenv("MAX_DOC_CHARS", "500000"))
    max_chars_per_call: int = int(os.getenv("LLM_MAX_CHARS_PER_CALL", "28000"))
    min_heuristic_queries: int = 3
    # One chat call per query section. Kept small so a 12-section RFP
    # doesn't flood the shared Ollama host.
    max_workers: int = int(os.getenv("PREBID_MAX_WORKERS", "4"))


@dataclass
class ExtractionConfig:
    """
    Prompt budgets for the evaluation matrix and artifact extraction.

    Both send keyword-selected excerpts rather than the whole document,
    so they stay fast on the shared host even for 300-page tenders.
    """
    matrix_context_chars: int = 3000
    matrix_excerpt_chars: int = 15000
    matrix_retry_chars: int = 10000
    artifact_section_lines: int = 200
    artifact_context_chars: int = 5000
    artifact_min_section_chars: int = 200
    artifact_section_chars: int = int(os.getenv("ARTIFACT_SECTION_CHARS", "2000"))
    # RFP/SOW and BOQ/BOM/BOS go out as two calls, side by side.
    artifact_max_workers: int = 2


@dataclass
class Config:
    """Master config — instantiated once, used everywhere."""
    llm: LLMConfig = field(default_factory=LLMConfig)
    rules: RulesConfig = field(default_factory=RulesConfig)
    enforcer: EnforcerConfig = field(default_factory=EnforcerConfig)
    prebid: PreBidConfig = field(default_factory=PreBidConfig)
    extraction: ExtractionConfig = field(default_factory=ExtractionConfig)

    max_file_size_mb: int = 50
    supported_formats: tuple = (".pdf", ".docx", ".doc", ".txt", ".html", ".htm")
    upload_dir: str = os.getenv("UPLOAD_DIR", "uploads")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    def __post_init__(self):
        """Validate config on startup so we fail fast instead of on the first request."""
        if not self.llm.base_url.startswith(("http://", "https://")):
            raise ValueError(f"OLLAMA_URL must be an http(s) URL, got {self.llm.base_url!r}")
        if self.enforcer.max_attempts < 1:
            raise ValueError(f"Enforcer max_attempts must be >= 1, got {self.enforcer.max_attempts}")
        if self.prebid.max_workers < 1:
            raise ValueError(f"Pre-bid max_workers must be >= 1, got {self.prebid.max_workers}")
        if self.extraction.artifact_max_workers < 1:
            raise ValueError(
                f"Artifact max_workers must be >= 1, got {self.extraction.artifact_max_workers}"
            )

        if self.llm.max_retries < 1:
            logger.warning(
                "LLM max_retries is %d; every generative call will be skipped.",
                self.llm.max_retries,
            )
        if not self.llm.enabled:
            logger.warning("OLLAMA_ENABLED is off. AI enrichment is disabled.")


# Singleton: every module imports this same instance
config = Config()
