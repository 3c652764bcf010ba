"""
InvEX - Invoice Extraction Pipeline

Turns uploaded PDF invoices into validated, persisted invoice records:
each PDF is rendered to page images, read by a vision model with a strict
JSON schema, validated, reconciled and saved.

Basic usage:
    from invex import InvexConfig
    from invex.services import InvoiceService

    service = InvoiceService(InvexConfig.default())
    invoice_id = service.create_invoice(user_id=1, pdf_path='invoice.pdf')
    result = await service.process(invoice_id)
    print(service.get_status(invoice_id))
"""

from invex.config.invex_config import InvexConfig

__all__ = ['InvexConfig']

__version__ = '1.0.0'
