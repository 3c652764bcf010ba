"""
Shared fixtures for InvEX tests

Every test gets its own SQLite file, upload directory and temp directory.
The vision service and the PDF renderer are replaced by in-process fakes.
"""

import asyncio
import copy
import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pytest

from invex.config.invex_config import InvexConfig
from invex.db.connection import Database
from invex.db.models import Invoice
from invex.jobs.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from invex.processors.invoice.extractor import InvoiceExtractor
from invex.processors.invoice.pipeline import InvoicePipeline, PipelineStage, StagePolicy
from invex.processors.llm.base import StructuredExtractor
from invex.processors.render.pdf_renderer import PageRenderer
from invex.storage.filesystem_storage import TempStorage

VALID_CANDIDATE: Dict[str, Any] = {
    'vendor': {'name': 'Acme Supplies Ltd', 'address': '1 Market St, Springfield', 'tax_id': 'GB123456789'},
    'customer': {'name': 'Globex Corp', 'address': '42 Elm Rd, Shelbyville', 'tax_id': None},
    'metadata': {
        'invoice_number': 'INV-2024-001',
        'invoice_date': '2024-01-15',
        'due_date': '2024-02-14',
        'currency': 'USD'
    },
    'totals': {'subtotal': 150.0, 'tax_amount': 15.0, 'total': 165.0},
    'line_items': [
        {'description': 'Widget A', 'quantity': 2, 'unit_price': 50.0, 'amount': 100.0, 'tax': 10.0},
        {'description': 'Widget B', 'quantity': 1, 'unit_price': 50.0, 'amount': 50.0, 'tax': 5.0}
    ],
    'confidence': {'vendor': 95, 'customer': 90, 'metadata': 98, 'totals': 97, 'line_items': 92}
}


class FakeVisionService(StructuredExtractor):
    """
    Scripted StructuredExtractor.

    Each call consumes the next scripted response: a dict is returned, an
    exception is raised, a coroutine function is awaited. The last response
    repeats once the script runs out.
    """

    model = 'fake-vision'

    def __init__(self, responses: Optional[List[Any]] = None):
        self.responses = list(responses) if responses else [copy.deepcopy(VALID_CANDIDATE)]
        self.calls: List[Dict[str, Any]] = []

    async def extract(self, images, schema, system_prompt, instruction):
        self.calls.append({
            'images': list(images),
            'schema': schema,
            'system_prompt': system_prompt,
            'instruction': instruction
        })
        index = min(len(self.calls) - 1, len(self.responses) - 1)
        response = self.responses[index]

        if isinstance(response, BaseException):
            raise response
        if callable(response):
            return await response()
        return copy.deepcopy(response)


class FakeRenderer(PageRenderer):
    """Writes ``page_count`` small files where the real renderer writes JPEGs"""

    def __init__(self, storage: TempStorage, page_count: int = 2, error: Optional[Exception] = None):
        self.storage = storage
        self.page_count = page_count
        self.error = error
        self.calls: List[str] = []

    def render(self, pdf_path, invoice_id):
        self.calls.append(pdf_path)
        if self.error is not None:
            raise self.error

        self.storage.ensure_storage_exists()
        paths = []
        for page_number in range(1, self.page_count + 1):
            path = self.storage.image_path(invoice_id, page_number)
            path.write_bytes(b'\xff\xd8\xff\xe0 fake jpeg page %d' % page_number)
            paths.append(str(path))
        return paths


class SleepRecorder:
    """Async stand-in for asyncio.sleep that records requested delays"""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


def fast_policies(timeout: float = 5.0, max_attempts: int = 3) -> Dict[PipelineStage, StagePolicy]:
    return {
        stage: StagePolicy(max_attempts=max_attempts, backoff=[0], timeout=timeout)
        for stage in PipelineStage
    }


@pytest.fixture
def config(tmp_path) -> InvexConfig:
    return InvexConfig(
        overrides={
            'database': {'type': 'sqlite', 'path': str(tmp_path / 'invex_test.db')},
            'storage': {
                'upload_path': str(tmp_path / 'uploads'),
                'temp_path': str(tmp_path / 'temp')
            },
            'llm': {'api_key': 'test-key'},
            'logging': {'level': 'DEBUG'}
        },
        load_user_config=False
    )


@pytest.fixture
def db(config):
    database = Database(config)
    database.create_tables()
    yield database
    database.close()


@pytest.fixture
def storage(tmp_path) -> TempStorage:
    return TempStorage(tmp_path / 'temp')


@pytest.fixture
def pdf_file(tmp_path) -> Path:
    path = tmp_path / 'invoice.pdf'
    path.write_bytes(b'%PDF-1.4\n% fake invoice for tests\n%%EOF\n')
    return path


@pytest.fixture
def candidate() -> Dict[str, Any]:
    return copy.deepcopy(VALID_CANDIDATE)


@pytest.fixture
def make_invoice(db, pdf_file) -> Callable[..., int]:
    """Insert an invoice row and return its id"""

    def _make(status: str = 'pending', user_id: int = 1, stored_path: Optional[str] = None) -> int:
        with db.transaction() as session:
            invoice = Invoice(
                user_id=user_id,
                original_filename='invoice.pdf',
                stored_path=stored_path or str(pdf_file),
                status=status
            )
            session.add(invoice)
            session.flush()
            return invoice.id

    return _make


@pytest.fixture
def sleep_recorder() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def build_pipeline(db, storage, sleep_recorder) -> Callable[..., InvoicePipeline]:
    """Factory for pipelines wired to fakes, with zero-delay policies"""

    def _build(
        service: Optional[StructuredExtractor] = None,
        renderer: Optional[PageRenderer] = None,
        breaker: Optional[CircuitBreaker] = None,
        request_timeout: Optional[float] = None,
        **kwargs
    ) -> InvoicePipeline:
        extractor = InvoiceExtractor(
            service or FakeVisionService(),
            breaker=breaker or CircuitBreaker(CircuitBreakerConfig()),
            request_timeout=request_timeout
        )
        kwargs.setdefault('policies', fast_policies())
        kwargs.setdefault('sleep', sleep_recorder)
        return InvoicePipeline(
            db,
            storage,
            renderer or FakeRenderer(storage),
            extractor,
            **kwargs
        )

    return _build


@pytest.fixture
def restore_root_logger():
    """Undo setup_logging's changes to the root logger"""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)
