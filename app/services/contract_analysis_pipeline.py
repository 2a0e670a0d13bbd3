"""
Contract Analysis Pipeline
Orchestrates one analysis request:

    Received → Detecting → Prompting → Generating → Parsing → Persisting → Done

Failed is reachable from Detecting, Generating and Persisting only; parsing
always produces a (possibly degraded) payload. Validation, rate limiting and
the quota pre-check run before Detecting, so rejected requests never reach
the model.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Iterator, List, Optional
from uuid import uuid4

from app.core.config import settings
from app.core.errors import ExtractionFailure, QuotaExceeded, ValidationFailure
from app.schemas.analysis import AnalysisRecord, AnalysisRequest, Feedback, Tier
from app.services.analysis_store import AnalysisStore
from app.services.cache_service import CacheService
from app.services.detection_service import DetectionService, normalize_language_code
from app.services.llm_service import TextGenerator, generate_text
from app.services.prompt_builder import ANALYSIS_SYSTEM_MESSAGE, build_analysis_prompt
from app.services.rate_limiter import RateLimiter
from app.services.response_parser import parse_analysis_response
from app.services.text_extraction_service import TextExtractionService
from app.utils.contract_dates import calculate_expiration_date

logger = logging.getLogger(__name__)


class PipelineState(str, Enum):
    RECEIVED = "received"
    DETECTING = "detecting"
    PROMPTING = "prompting"
    GENERATING = "generating"
    PARSING = "parsing"
    PERSISTING = "persisting"
    DONE = "done"
    FAILED = "failed"


TRANSITIONS = {
    PipelineState.RECEIVED: {PipelineState.DETECTING},
    PipelineState.DETECTING: {PipelineState.PROMPTING, PipelineState.FAILED},
    PipelineState.PROMPTING: {PipelineState.GENERATING},
    PipelineState.GENERATING: {PipelineState.PARSING, PipelineState.FAILED},
    PipelineState.PARSING: {PipelineState.PERSISTING},
    PipelineState.PERSISTING: {PipelineState.DONE, PipelineState.FAILED},
    PipelineState.DONE: set(),
    PipelineState.FAILED: set(),
}


@dataclass
class PipelineRun:
    """State of one request moving through the pipeline"""
    run_id: str = field(default_factory=lambda: uuid4().hex[:12])
    state: PipelineState = PipelineState.RECEIVED
    history: List[PipelineState] = field(default_factory=lambda: [PipelineState.RECEIVED])

    def advance(self, state: PipelineState) -> None:
        if state not in TRANSITIONS[self.state]:
            raise RuntimeError(f"Illegal pipeline transition {self.state.value} -> {state.value}")
        logger.debug(f"[{self.run_id}] {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)

    @contextmanager
    def stage(self, state: PipelineState) -> Iterator[None]:
        """Enter a stage; an error inside a failable stage moves the run to Failed."""
        self.advance(state)
        try:
            yield
        except BaseException:
            if PipelineState.FAILED in TRANSITIONS[self.state]:
                self.advance(PipelineState.FAILED)
            raise


class ContractAnalysisPipeline:
    """
    Drives detection, prompting, generation, parsing and persistence.

    All collaborators are process-wide handles passed in at construction.
    Per-request state lives in a PipelineRun, never on the instance.
    """

    def __init__(
        self,
        llm: TextGenerator,
        store: AnalysisStore,
        cache: CacheService,
        rate_limiter: RateLimiter,
        detection: Optional[DetectionService] = None,
        extractor: Optional[TextExtractionService] = None,
        free_tier_limit: Optional[int] = None
    ):
        """
        Initialize pipeline.

        Args:
            llm: Text generator for the analysis call
            store: Analysis store
            cache: Cache service (upload staging)
            rate_limiter: Per-client rate limiter
            detection: Language/type detector (built from llm if omitted)
            extractor: PDF text extractor (uploads are rejected without one)
            free_tier_limit: Max stored analyses for free owners
        """
        self.llm = llm
        self.store = store
        self.cache = cache
        self.rate_limiter = rate_limiter
        self.detection = detection or DetectionService(llm)
        self.extractor = extractor
        self.free_tier_limit = free_tier_limit if free_tier_limit is not None else settings.FREE_TIER_MAX_ANALYSES

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    @staticmethod
    def _validate(request: AnalysisRequest, require_text: bool = True) -> None:
        if not request.owner_id:
            raise ValidationFailure("Owner identity is required")
        if not request.contract_type or not request.contract_type.strip():
            raise ValidationFailure("Contract type is required")
        if require_text and (not request.document_text or not request.document_text.strip()):
            raise ValidationFailure("Document text is required")

    async def _admit(self, request: AnalysisRequest) -> None:
        """Rate limit and quota pre-check; both run before any model call."""
        await self.rate_limiter.check("analyze", request.client_id or request.owner_id)
        if request.tier == Tier.FREE:
            count = await self.store.count_by_owner(request.owner_id)
            if count >= self.free_tier_limit:
                logger.info(f"Quota reached for free owner {request.owner_id} ({count}/{self.free_tier_limit})")
                raise QuotaExceeded(
                    f"Free users are limited to {self.free_tier_limit} contract analyses. "
                    "Please upgrade to premium for unlimited uploads."
                )

    def _validate_upload(self, content: bytes) -> None:
        if not content:
            raise ValidationFailure("No PDF file uploaded")
        if len(content) > settings.MAX_UPLOAD_BYTES:
            raise ValidationFailure(f"File exceeds the {settings.MAX_UPLOAD_BYTES} byte upload limit")
        if not TextExtractionService.is_pdf(content):
            raise ValidationFailure("Only PDF files are allowed")

    async def _extract_staged(self, key: str) -> str:
        if self.extractor is None:
            raise ExtractionFailure("Text extraction is not configured")
        content = await self.cache.read_staged(key)
        return await self.extractor.extract_text(content)

    # ------------------------------------------------------------------
    # Exposed operations
    # ------------------------------------------------------------------

    async def analyze(self, request: AnalysisRequest, run: Optional[PipelineRun] = None) -> AnalysisRecord:
        """
        Analyze extracted contract text and persist the result.

        Args:
            request: Analysis request
            run: State tracker for this request (a fresh one is created if omitted)

        Returns:
            The stored analysis record (degraded=True when parsing fell back to salvage)

        Raises:
            ValidationFailure, RateLimited, QuotaExceeded: Before any model call
            GenerationFailure: If detection or generation fails
            CacheUnavailable: If cache invalidation after the insert fails
        """
        self._validate(request)
        await self._admit(request)
        return await self._run(request, run or PipelineRun())

    async def analyze_upload(
        self,
        owner_id: str,
        tier: Tier,
        content: bytes,
        contract_type: str,
        project_id: Optional[str] = None,
        client_id: Optional[str] = None,
        run: Optional[PipelineRun] = None
    ) -> AnalysisRecord:
        """
        Analyze an uploaded PDF.

        The file is staged in the cache for the duration of the request and
        released on every exit path.

        Raises:
            ExtractionFailure: If no text can be extracted
            (plus everything analyze() raises)
        """
        request = AnalysisRequest(
            owner_id=owner_id,
            project_id=project_id,
            tier=tier,
            contract_type=contract_type,
            client_id=client_id,
        )
        self._validate(request, require_text=False)
        self._validate_upload(content)
        await self._admit(request)

        async with self.cache.staged_upload(owner_id, content) as key:
            request.document_text = await self._extract_staged(key)
            self._validate(request)
            return await self._run(request, run or PipelineRun())

    async def detect_type(self, text: str, client_id: str) -> str:
        """Detect the contract type of extracted text"""
        if not text or not text.strip():
            raise ValidationFailure("Document text is required")
        await self.rate_limiter.check("detect", client_id)
        return await self.detection.detect_contract_type(text)

    async def detect_type_from_upload(self, owner_id: str, content: bytes, client_id: Optional[str] = None) -> str:
        """Detect the contract type of an uploaded PDF"""
        self._validate_upload(content)
        await self.rate_limiter.check("detect", client_id or owner_id)
        async with self.cache.staged_upload(owner_id, content) as key:
            text = await self._extract_staged(key)
            return await self.detection.detect_contract_type(text)

    async def get_by_id(self, analysis_id: str, owner_id: str) -> AnalysisRecord:
        return await self.store.get(analysis_id, owner_id)

    async def list_by_owner(self, owner_id: str, project_id: Optional[str] = None) -> List[AnalysisRecord]:
        return await self.store.list_by_owner(owner_id, project_id)

    async def delete(self, analysis_id: str, owner_id: str) -> None:
        await self.store.delete(analysis_id, owner_id)

    async def attach_feedback(self, analysis_id: str, owner_id: str, feedback: Feedback) -> AnalysisRecord:
        return await self.store.attach_feedback(analysis_id, owner_id, feedback)

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def _run(self, request: AnalysisRequest, run: PipelineRun) -> AnalysisRecord:
        tier = Tier(request.tier)
        logger.info(
            f"[{run.run_id}] Starting {tier.value} analysis for owner {request.owner_id} "
            f"({len(request.document_text)} chars, type={request.contract_type})"
        )

        with run.stage(PipelineState.DETECTING):
            language = normalize_language_code(request.language_hint or "")
            if language is None:
                language = await self.detection.detect_language(request.document_text)

        with run.stage(PipelineState.PROMPTING):
            prompt = build_analysis_prompt(request.document_text, tier, request.contract_type, language)

        with run.stage(PipelineState.GENERATING):
            raw = await generate_text(self.llm, prompt, system_message=ANALYSIS_SYSTEM_MESSAGE)

        with run.stage(PipelineState.PARSING):
            result = parse_analysis_response(raw, tier)

        with run.stage(PipelineState.PERSISTING):
            created_at = datetime.now(timezone.utc)
            expiration_date = None
            if tier == Tier.PREMIUM and result.payload.contract_duration:
                expiration_date = calculate_expiration_date(result.payload.contract_duration, created_at)

            record = AnalysisRecord(
                **result.payload.model_dump(),
                id=str(uuid4()),
                owner_id=request.owner_id,
                project_id=request.project_id,
                tier=tier,
                contract_text=request.document_text,
                contract_type=request.contract_type.strip(),
                language=language,
                expiration_date=expiration_date,
                degraded=result.degraded,
                created_at=created_at,
            )
            await self.store.create(record)

        run.advance(PipelineState.DONE)

        if result.degraded:
            logger.warning(
                f"[{run.run_id}] QoS: degraded analysis {record.id} stored "
                f"(stage={result.stage.value}, missing={result.missing_fields}, "
                f"risks={len(record.risks)}, opportunities={len(record.opportunities)})"
            )
        logger.info(f"[{run.run_id}] Analysis {record.id} completed (stage={result.stage.value})")
        return record
