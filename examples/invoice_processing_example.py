"""
Invoice Processing Example

Demonstrates the invoice pipeline end to end:
1. Upload a PDF (creates a pending invoice)
2. Run the pipeline: render -> extract -> persist -> cleanup
3. Read back status and extracted fields
4. Batch processing with the worker pool

Requires OPENAI_API_KEY (or llm.api_key in the config) and poppler for
page rendering.

Usage:
    python examples/invoice_processing_example.py path/to/invoice.pdf [more.pdf ...]
"""

import asyncio
import json
import sys

from invex.config.invex_config import InvexConfig
from invex.jobs import Worker, WorkerConfig
from invex.logging_config import setup_logging
from invex.services.invoice_service import InvoiceService


async def process_single(service: InvoiceService, pdf_path: str) -> None:
    """Upload one invoice and process it in the current task"""
    invoice_id = service.create_invoice(user_id=1, pdf_path=pdf_path)
    print(f"Created invoice {invoice_id} from {pdf_path}")

    result = await service.process(invoice_id)
    print(json.dumps(result.to_dict(), indent=2))

    if result.success:
        print(json.dumps(service.get_invoice(invoice_id), indent=2, default=str))
    else:
        print(json.dumps(service.get_status(invoice_id), indent=2))


async def process_batch(service: InvoiceService, pdf_paths) -> None:
    """Upload several invoices and let the worker pool pick them up"""
    worker = Worker(service.pipeline, WorkerConfig(max_concurrent=3, poll_pending=False))

    for pdf_path in pdf_paths:
        await worker.submit(service.create_invoice(user_id=1, pdf_path=pdf_path))

    results = await worker.run_once()
    for result in results:
        print(f"Invoice {result.invoice_id}: {result.status.value} ({result.total_time_ms}ms)")

    print(json.dumps(worker.get_stats(), indent=2, default=str))


if __name__ == '__main__':
    if len(sys.argv) < 2:
        print(__doc__)
        sys.exit(1)

    config = InvexConfig.default()
    setup_logging(config)

    service = InvoiceService(config)
    service.db.create_tables()
    pdfs = sys.argv[1:]
    if len(pdfs) == 1:
        asyncio.run(process_single(service, pdfs[0]))
    else:
        asyncio.run(process_batch(service, pdfs))
