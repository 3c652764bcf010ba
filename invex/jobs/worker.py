"""
Async Invoice Worker

Runs invoice pipelines on an asyncio worker pool.
Supports:
- Concurrency control (semaphore bounded)
- In-process submission queue plus polling of pending invoices
- Duplicate runs skipped via the run lease
- Graceful shutdown on SIGINT/SIGTERM
"""

import asyncio
import logging
import signal
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Set

from sqlalchemy import select

from invex.config.invex_config import InvexConfig
from invex.db.models import Invoice
from invex.exceptions import DuplicateRunError, InvalidTransitionError
from invex.models.invoice import InvoiceStatus

if TYPE_CHECKING:
    from invex.processors.invoice.pipeline import InvoicePipeline, PipelineResult

logger = logging.getLogger(__name__)


@dataclass
class WorkerConfig:
    """Worker configuration"""
    # Polling
    poll_interval: float = 1.0  # seconds
    batch_size: int = 10
    poll_pending: bool = True

    # Concurrency
    max_concurrent: int = 5

    # Graceful shutdown
    shutdown_timeout: float = 30.0

    @classmethod
    def from_config(cls, config: InvexConfig) -> 'WorkerConfig':
        worker_config = config.get('worker', {}) or {}
        return cls(
            poll_interval=float(worker_config.get('poll_interval', cls.poll_interval)),
            batch_size=int(worker_config.get('batch_size', cls.batch_size)),
            poll_pending=bool(worker_config.get('poll_pending', cls.poll_pending)),
            max_concurrent=int(worker_config.get('max_concurrent', cls.max_concurrent)),
            shutdown_timeout=float(worker_config.get('shutdown_timeout', cls.shutdown_timeout))
        )


class Worker:
    """
    Async worker pool for invoice pipelines.

    Invoices reach the pool either through :meth:`submit` or by polling the
    invoices table for ``pending`` rows. Each invoice runs as its own task;
    at most ``max_concurrent`` run at once.

    Usage:
        worker = Worker(pipeline, WorkerConfig(max_concurrent=5))
        await worker.submit(invoice_id)
        await worker.run()
    """

    def __init__(self, pipeline: 'InvoicePipeline', config: Optional[WorkerConfig] = None):
        self.pipeline = pipeline
        self.db = pipeline.db
        self.config = config or WorkerConfig()

        # State
        self._running = False
        self._shutdown_event = asyncio.Event()
        self._queue: asyncio.Queue = asyncio.Queue()
        self._active_jobs: Set[int] = set()
        self._tasks: Set[asyncio.Task] = set()
        self._semaphore = asyncio.Semaphore(self.config.max_concurrent)

        # Metrics
        self._processed_count = 0
        self._failed_count = 0
        self._skipped_count = 0
        self._start_time: Optional[datetime] = None

    async def submit(self, invoice_id: int) -> None:
        """Queue an invoice for processing"""
        await self._queue.put(invoice_id)
        logger.debug(f"Invoice {invoice_id} queued")

    async def run(self) -> None:
        """
        Run the worker.

        Dispatches queued and pending invoices until shutdown.
        """
        logger.info("Starting worker...")

        self._running = True
        self._start_time = datetime.now(timezone.utc)

        # Set up signal handlers for graceful shutdown
        self._setup_signal_handlers()

        try:
            while self._running and not self._shutdown_event.is_set():
                try:
                    for invoice_id in await self._collect_invoices():
                        self._dispatch(invoice_id)

                    # Wait before next poll
                    try:
                        await asyncio.wait_for(
                            self._shutdown_event.wait(),
                            timeout=self.config.poll_interval
                        )
                    except asyncio.TimeoutError:
                        pass

                except Exception as e:
                    logger.exception(f"Worker loop error: {e}")
                    await asyncio.sleep(self.config.poll_interval)

        finally:
            await self._drain()
            logger.info(
                f"Worker stopped. Processed: {self._processed_count}, "
                f"Failed: {self._failed_count}, Skipped: {self._skipped_count}"
            )

    async def run_once(self) -> List['PipelineResult']:
        """Process whatever is queued or pending right now and wait for it"""
        invoice_ids = await self._collect_invoices()
        results = await asyncio.gather(*(self.process(invoice_id) for invoice_id in invoice_ids))
        return [result for result in results if result is not None]

    async def stop(self) -> None:
        """Stop the worker gracefully"""
        logger.info("Stopping worker...")
        self._running = False
        self._shutdown_event.set()

    async def process(self, invoice_id: int) -> Optional['PipelineResult']:
        """
        Run the pipeline for one invoice inside the pool.

        Returns:
            The pipeline result, or None if the run was skipped or crashed
        """
        async with self._semaphore:
            self._active_jobs.add(invoice_id)
            try:
                result = await self.pipeline.run(invoice_id)

            except DuplicateRunError as e:
                self._skipped_count += 1
                logger.info(f"Skipping invoice {invoice_id}: {e}")
                return None

            except InvalidTransitionError as e:
                self._skipped_count += 1
                logger.warning(f"Skipping invoice {invoice_id}: {e}")
                return None

            except Exception as e:
                self._failed_count += 1
                logger.exception(f"Pipeline crashed for invoice {invoice_id}: {e}")
                return None

            finally:
                self._active_jobs.discard(invoice_id)

        if result.success:
            self._processed_count += 1
        else:
            self._failed_count += 1
        return result

    def _dispatch(self, invoice_id: int) -> None:
        self._active_jobs.add(invoice_id)
        task = asyncio.create_task(self.process(invoice_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _collect_invoices(self) -> List[int]:
        """Queued ids first, then pending invoices; never an id already running"""
        invoice_ids: List[int] = []

        while not self._queue.empty():
            invoice_id = self._queue.get_nowait()
            if invoice_id not in self._active_jobs and invoice_id not in invoice_ids:
                invoice_ids.append(invoice_id)

        if self.config.poll_pending:
            for invoice_id in await asyncio.to_thread(self._poll_pending):
                if invoice_id not in self._active_jobs and invoice_id not in invoice_ids:
                    invoice_ids.append(invoice_id)

        return invoice_ids

    def _poll_pending(self) -> List[int]:
        """Poll for pending invoices"""
        try:
            with self.db.session() as session:
                query = select(Invoice.id).where(
                    Invoice.status == InvoiceStatus.PENDING.value
                ).order_by(
                    Invoice.created_at, Invoice.id
                ).limit(
                    self.config.batch_size
                )
                return list(session.execute(query).scalars().all())

        except Exception as e:
            logger.error(f"Failed to poll pending invoices: {e}")
            return []

    async def _drain(self) -> None:
        """Wait for running tasks, cancelling whatever outlives the shutdown timeout"""
        if not self._tasks:
            return

        logger.info(f"Waiting for {len(self._tasks)} active jobs to complete...")
        done, pending = await asyncio.wait(set(self._tasks), timeout=self.config.shutdown_timeout)
        if pending:
            logger.warning("Shutdown timeout - some jobs may not have completed")
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

    def _setup_signal_handlers(self) -> None:
        """Set up signal handlers for graceful shutdown"""
        try:
            loop = asyncio.get_running_loop()

            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(
                    sig,
                    lambda: asyncio.create_task(self.stop())
                )
        except (NotImplementedError, RuntimeError):
            # Signal handling not available (e.g., Windows)
            pass

    def get_stats(self) -> Dict[str, Any]:
        """Get worker statistics"""
        uptime = None
        if self._start_time:
            uptime = (datetime.now(timezone.utc) - self._start_time).total_seconds()

        stats = {
            'running': self._running,
            'active_jobs': len(self._active_jobs),
            'queued': self._queue.qsize(),
            'processed_count': self._processed_count,
            'failed_count': self._failed_count,
            'skipped_count': self._skipped_count,
            'uptime_seconds': uptime
        }

        breaker = getattr(self.pipeline.extractor, 'breaker', None)
        if breaker is not None:
            stats['circuit_breaker'] = breaker.get_stats()
        return stats


async def run_worker(
    config: Optional[InvexConfig] = None,
    pipeline: Optional['InvoicePipeline'] = None,
    worker_config: Optional[WorkerConfig] = None
) -> None:
    """
    Convenience function to run a worker.

    Args:
        config: Configuration; defaults to the shared instance
        pipeline: Pre-built pipeline; built from config if omitted
        worker_config: Optional worker configuration; read from config if omitted
    """
    config = config or InvexConfig.default()

    if pipeline is None:
        from invex.processors.invoice.pipeline import InvoicePipeline
        pipeline = InvoicePipeline.from_config(config)

    worker = Worker(pipeline, worker_config or WorkerConfig.from_config(config))
    await worker.run()
