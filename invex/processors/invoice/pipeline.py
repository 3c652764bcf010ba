"""
Invoice Processing Pipeline

End-to-end pipeline for one invoice:
render -> extract + validate -> persist -> cleanup

Each stage runs through a StagePolicy (attempts, backoff, timeout, retry
predicate). The pipeline holds a run lease for the whole run, owns the
pending -> processing transition and is the only writer of ``failed``.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from invex.config.invex_config import InvexConfig
from invex.db.connection import Database
from invex.db.models import Invoice
from invex.exceptions import InvalidTransitionError, InvexError, StageTimeoutError, is_retryable
from invex.jobs.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from invex.jobs.lease import RunLeaseManager
from invex.models.invoice import InvoiceStatus, ValidatedInvoice
from invex.processors.invoice.cleanup import TempFileCleaner
from invex.processors.invoice.extractor import InvoiceExtractor
from invex.processors.invoice.manifest import ManifestStore, RunManifest
from invex.processors.invoice.persister import InvoicePersister
from invex.processors.invoice.validator import InvoiceValidator
from invex.processors.llm.base import StructuredExtractor
from invex.processors.llm.prompt_manager import PromptManager
from invex.processors.render.pdf_renderer import PageRenderer, PdfRenderer
from invex.storage.filesystem_storage import TempStorage

logger = logging.getLogger(__name__)


class PipelineStage(str, Enum):
    """Pipeline processing stages, in execution order"""
    RENDER = "render"
    EXTRACT = "extract"
    PERSIST = "persist"
    CLEANUP = "cleanup"


class StagePolicy(BaseModel):
    """Retry and timeout policy for one stage"""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    max_attempts: int = Field(3, ge=1)
    backoff: List[float] = Field(default_factory=lambda: [5.0])
    timeout: Optional[float] = Field(None, gt=0)
    retryable: Callable[[BaseException], bool] = is_retryable

    def delay_for(self, attempt: int) -> float:
        """Delay after failed attempt number ``attempt`` (1-based); the last entry repeats"""
        if not self.backoff:
            return 0.0
        return float(self.backoff[min(attempt - 1, len(self.backoff) - 1)])

    def should_retry(self, error: BaseException, attempt: int) -> bool:
        return attempt < self.max_attempts and self.retryable(error)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'StagePolicy':
        data = dict(data or {})
        return cls(**{k: v for k, v in data.items() if k in ('max_attempts', 'backoff', 'timeout')})


DEFAULT_STAGE_POLICIES: Dict[PipelineStage, StagePolicy] = {
    PipelineStage.RENDER: StagePolicy(max_attempts=3, backoff=[5], timeout=120),
    PipelineStage.EXTRACT: StagePolicy(max_attempts=3, backoff=[30, 60, 120], timeout=300),
    PipelineStage.PERSIST: StagePolicy(max_attempts=3, backoff=[5], timeout=60),
    PipelineStage.CLEANUP: StagePolicy(max_attempts=3, backoff=[5], timeout=60),
}


@dataclass
class PipelineContext:
    """Context passed through pipeline stages"""
    invoice_id: int
    run_id: str
    pdf_path: str

    # Stage results
    manifest: Optional[RunManifest] = None
    candidate: Optional[Dict[str, Any]] = None
    validated: Optional[ValidatedInvoice] = None
    line_items: int = 0
    files_deleted: int = 0

    # Tracking
    current_stage: Optional[PipelineStage] = None
    attempts: Dict[str, int] = field(default_factory=dict)
    stage_times: Dict[str, int] = field(default_factory=dict)

    # Errors
    error: Optional[str] = None
    error_stage: Optional[PipelineStage] = None


@dataclass
class StageDescriptor:
    """A named stage handler with its policy"""
    stage: PipelineStage
    handler: Callable[[PipelineContext], Awaitable[None]]
    policy: StagePolicy


@dataclass
class PipelineResult:
    """Outcome of a pipeline run"""
    invoice_id: int
    status: InvoiceStatus
    error: Optional[str] = None
    error_stage: Optional[str] = None
    line_items: int = 0
    files_deleted: int = 0
    attempts: Dict[str, int] = field(default_factory=dict)
    stage_times: Dict[str, int] = field(default_factory=dict)
    total_time_ms: int = 0

    @property
    def success(self) -> bool:
        return self.status == InvoiceStatus.COMPLETED

    def to_dict(self) -> Dict[str, Any]:
        return {
            'invoice_id': self.invoice_id,
            'status': self.status.value,
            'error': self.error,
            'error_stage': self.error_stage,
            'line_items': self.line_items,
            'files_deleted': self.files_deleted,
            'attempts': self.attempts,
            'stage_times': self.stage_times,
            'total_time_ms': self.total_time_ms
        }


class InvoicePipeline:
    """
    Runs the invoice pipeline for one invoice at a time.

    Features:
    - Exclusive run lease per invoice (duplicate runs are refused)
    - Per-stage retries with backoff and hard timeouts
    - Stage handoff through a manifest on disk, so a retried extraction
      never re-renders
    - Failure recorded on the invoice with a bounded message
    - Optional cleanup of temp files when a run fails

    Usage:
        pipeline = InvoicePipeline.from_config(config, db=db)
        result = await pipeline.run(invoice_id)
    """

    def __init__(
        self,
        db: Database,
        storage: TempStorage,
        renderer: PageRenderer,
        extractor: InvoiceExtractor,
        validator: Optional[InvoiceValidator] = None,
        persister: Optional[InvoicePersister] = None,
        cleaner: Optional[TempFileCleaner] = None,
        manifest_store: Optional[ManifestStore] = None,
        leases: Optional[RunLeaseManager] = None,
        policies: Optional[Dict[PipelineStage, StagePolicy]] = None,
        error_message_limit: int = 500,
        cleanup_on_failure: bool = True,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ):
        self.db = db
        self.storage = storage
        self.renderer = renderer
        self.extractor = extractor
        self.validator = validator or InvoiceValidator()
        self.persister = persister or InvoicePersister(db)
        self.manifest_store = manifest_store or ManifestStore(storage)
        self.cleaner = cleaner or TempFileCleaner(storage, self.manifest_store)
        self.leases = leases or RunLeaseManager(db)
        self.policies = {**DEFAULT_STAGE_POLICIES, **(policies or {})}
        self.error_message_limit = error_message_limit
        self.cleanup_on_failure = cleanup_on_failure
        self._sleep = sleep

    @classmethod
    def from_config(
        cls,
        config: Optional[InvexConfig] = None,
        db: Optional[Database] = None,
        service: Optional[StructuredExtractor] = None,
        breaker: Optional[CircuitBreaker] = None,
        **kwargs
    ) -> 'InvoicePipeline':
        """
        Build a pipeline from configuration.

        Args:
            config: Configuration; defaults to the shared instance
            db: Database; built from config if omitted
            service: Vision service; an OpenAIVisionService is built if omitted
            breaker: Circuit breaker shared across pipelines; built if omitted
            **kwargs: Passed through to the constructor (e.g. ``sleep``)
        """
        config = config or InvexConfig.default()
        db = db or Database(config)

        storage = TempStorage(config.get('storage.temp_path', 'storage/temp'))

        if service is None:
            # Imported lazily so tests with a fake service never need the SDK configured
            from invex.processors.llm.openai_service import OpenAIVisionService
            service = OpenAIVisionService(
                api_key=config.get('llm.api_key'),
                model=config.get('llm.model'),
                max_tokens=config.get('llm.max_tokens', 4096),
                temperature=config.get('llm.temperature', 0.0),
                image_detail=config.get('llm.image_detail', 'high')
            )

        breaker = breaker or CircuitBreaker(CircuitBreakerConfig.from_dict(config.get('circuit_breaker')))

        extractor = InvoiceExtractor(
            service,
            prompt_manager=PromptManager(config.get('llm.prompts_dir')),
            breaker=breaker,
            request_timeout=config.get('llm.request_timeout'),
            prompt_name=config.get('llm.prompt_name', 'invoice_extraction')
        )

        renderer = PdfRenderer(
            storage,
            dpi=config.get('renderer.dpi', 150),
            quality=config.get('renderer.quality', 85)
        )

        stage_config = config.get('pipeline.stages', {}) or {}
        policies = {
            stage: StagePolicy.from_dict(stage_config[stage.value])
            for stage in PipelineStage
            if stage.value in stage_config
        }

        kwargs.setdefault('policies', policies)
        kwargs.setdefault('leases', RunLeaseManager(db, ttl=config.get('pipeline.lease_ttl', 3600)))
        kwargs.setdefault('error_message_limit', config.get('pipeline.error_message_limit', 500))
        kwargs.setdefault('cleanup_on_failure', config.get('pipeline.cleanup_on_failure', True))

        return cls(db, storage, renderer, extractor, **kwargs)

    @property
    def stages(self) -> List[StageDescriptor]:
        return [
            StageDescriptor(PipelineStage.RENDER, self._render, self.policies[PipelineStage.RENDER]),
            StageDescriptor(PipelineStage.EXTRACT, self._extract, self.policies[PipelineStage.EXTRACT]),
            StageDescriptor(PipelineStage.PERSIST, self._persist, self.policies[PipelineStage.PERSIST]),
            StageDescriptor(PipelineStage.CLEANUP, self._cleanup, self.policies[PipelineStage.CLEANUP]),
        ]

    async def run(self, invoice_id: int) -> PipelineResult:
        """
        Process one invoice through all stages.

        Stage failures do not raise: they are recorded on the invoice and
        reported in the returned result.

        Raises:
            DuplicateRunError: A live lease exists; the invoice is untouched
            InvalidTransitionError: The invoice is already terminal
            InvexError: The invoice does not exist
        """
        run_id = uuid4().hex
        start_time = time.time()

        await asyncio.to_thread(self.leases.acquire, invoice_id, run_id)
        try:
            pdf_path = await asyncio.to_thread(self._start_processing, invoice_id)
            context = PipelineContext(invoice_id=invoice_id, run_id=run_id, pdf_path=pdf_path)
            logger.info(f"Processing invoice {invoice_id} (run {run_id})")

            try:
                for descriptor in self.stages:
                    context.current_stage = descriptor.stage
                    await self._run_stage(descriptor, context)
                status = InvoiceStatus.COMPLETED

            except Exception as e:
                context.error = self._error_message(e)
                context.error_stage = context.current_stage
                status = await self._handle_failure(context, e)

            result = PipelineResult(
                invoice_id=invoice_id,
                status=status,
                error=context.error,
                error_stage=context.error_stage.value if context.error_stage else None,
                line_items=context.line_items,
                files_deleted=context.files_deleted,
                attempts=dict(context.attempts),
                stage_times=dict(context.stage_times),
                total_time_ms=int((time.time() - start_time) * 1000)
            )
            logger.info(
                f"Invoice {invoice_id} finished with status {status.value} in {result.total_time_ms}ms"
            )
            return result

        finally:
            await asyncio.to_thread(self.leases.release, invoice_id, run_id)

    async def _run_stage(self, descriptor: StageDescriptor, context: PipelineContext) -> None:
        """Run one stage under its policy; raises the last error once retries are exhausted"""
        policy = descriptor.policy
        stage_name = descriptor.stage.value
        attempt = 0

        while True:
            attempt += 1
            context.attempts[stage_name] = attempt
            start_time = time.time()

            try:
                if policy.timeout:
                    await asyncio.wait_for(descriptor.handler(context), timeout=policy.timeout)
                else:
                    await descriptor.handler(context)

                context.stage_times[stage_name] = int((time.time() - start_time) * 1000)
                logger.debug(
                    f"Stage {stage_name} completed for invoice {context.invoice_id} "
                    f"in {context.stage_times[stage_name]}ms"
                )
                return

            except asyncio.TimeoutError as e:
                error: Exception = StageTimeoutError(
                    f"Stage '{stage_name}' timed out after {policy.timeout}s",
                    invoice_id=context.invoice_id
                )
                error.__cause__ = e

            except Exception as e:
                error = e

            if not policy.should_retry(error, attempt):
                logger.error(
                    f"Stage {stage_name} failed for invoice {context.invoice_id} "
                    f"after {attempt} attempt(s): {error}"
                )
                raise error

            delay = max(policy.delay_for(attempt), getattr(error, 'retry_after', 0.0))
            logger.warning(
                f"Stage {stage_name} attempt {attempt}/{policy.max_attempts} failed for invoice "
                f"{context.invoice_id}: {error}. Retrying in {delay}s"
            )
            await self._sleep(delay)

    # Stage handlers

    async def _render(self, context: PipelineContext) -> None:
        images = await asyncio.to_thread(self.renderer.render, context.pdf_path, context.invoice_id)
        manifest = RunManifest(
            invoice_id=context.invoice_id,
            images=images,
            parsed_path=str(self.storage.parsed_path(context.invoice_id))
        )
        await asyncio.to_thread(self.manifest_store.save, manifest)
        context.manifest = manifest
        logger.info(f"Rendered {len(images)} page(s) for invoice {context.invoice_id}")

    async def _extract(self, context: PipelineContext) -> None:
        manifest = await asyncio.to_thread(self.manifest_store.load, context.invoice_id)

        candidate = await self.extractor.extract(manifest.images)
        await asyncio.to_thread(self.storage.write_json, manifest.parsed_path, candidate)
        context.candidate = candidate

        validated = self.validator.validate_structure(candidate)
        self.validator.validate_totals(validated)
        context.validated = validated

    async def _persist(self, context: PipelineContext) -> None:
        context.line_items = await asyncio.to_thread(
            self.persister.persist, context.invoice_id, context.validated
        )

    async def _cleanup(self, context: PipelineContext) -> None:
        context.files_deleted = await asyncio.to_thread(self.cleaner.cleanup, context.invoice_id)

    # Lifecycle

    def _start_processing(self, invoice_id: int) -> str:
        """Move the invoice to processing and return its stored PDF path"""
        with self.db.transaction() as session:
            invoice = session.get(Invoice, invoice_id)
            if invoice is None:
                raise InvexError(f"Invoice {invoice_id} not found", invoice_id=invoice_id)

            current = InvoiceStatus(invoice.status)
            if current == InvoiceStatus.PROCESSING:
                # Holding the lease means the previous run's lease expired
                logger.warning(f"Restarting invoice {invoice_id} left in processing by an expired run")
            elif not current.can_transition_to(InvoiceStatus.PROCESSING):
                raise InvalidTransitionError(
                    f"Cannot process invoice {invoice_id} in status '{current.value}'",
                    invoice_id=invoice_id
                )

            invoice.status = InvoiceStatus.PROCESSING.value
            invoice.error_message = None
            return invoice.stored_path

    async def _handle_failure(self, context: PipelineContext, error: Exception) -> InvoiceStatus:
        """Record the failure and return the invoice's resulting status"""
        try:
            marked = await asyncio.to_thread(self._mark_failed, context.invoice_id, context.error)
        except Exception as e:
            logger.exception(f"Could not record failure for invoice {context.invoice_id}: {e}")
            marked = False

        if marked:
            logger.error(
                f"Invoice {context.invoice_id} failed at stage "
                f"{context.error_stage.value if context.error_stage else 'unknown'}: {context.error}"
            )
            if self.cleanup_on_failure and context.error_stage != PipelineStage.CLEANUP:
                await self._cleanup_after_failure(context)
            return InvoiceStatus.FAILED

        # The invoice left processing before the failure (e.g. cleanup after persist)
        status = await asyncio.to_thread(self._current_status, context.invoice_id)
        logger.error(
            f"Stage {context.error_stage.value if context.error_stage else 'unknown'} failed for "
            f"invoice {context.invoice_id} already in status {status.value}: {context.error}"
        )
        return status

    def _mark_failed(self, invoice_id: int, message: str) -> bool:
        """Write failed if the invoice is still processing; True if a row changed"""
        with self.db.transaction() as session:
            updated = session.query(Invoice).filter(
                Invoice.id == invoice_id,
                Invoice.status == InvoiceStatus.PROCESSING.value
            ).update(
                {
                    Invoice.status: InvoiceStatus.FAILED.value,
                    Invoice.error_message: message
                },
                synchronize_session=False
            )
        return updated > 0

    def _current_status(self, invoice_id: int) -> InvoiceStatus:
        with self.db.session() as session:
            invoice = session.get(Invoice, invoice_id)
            return InvoiceStatus(invoice.status)

    async def _cleanup_after_failure(self, context: PipelineContext) -> None:
        try:
            context.files_deleted = await asyncio.to_thread(self.cleaner.cleanup, context.invoice_id)
        except Exception as e:
            logger.warning(f"Cleanup after failure did not finish for invoice {context.invoice_id}: {e}")

    def _error_message(self, error: BaseException) -> str:
        message = str(error) or error.__class__.__name__
        return message[:self.error_message_limit]
