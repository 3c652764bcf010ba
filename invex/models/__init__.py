from invex.models.invoice import (
    InvoiceStatus,
    FieldViolation,
    Party,
    InvoiceMetadata,
    Totals,
    LineItem,
    ConfidenceScores,
    ValidatedInvoice,
)
from invex.models.schema import invoice_extraction_schema, response_format

__all__ = [
    'InvoiceStatus',
    'FieldViolation',
    'Party',
    'InvoiceMetadata',
    'Totals',
    'LineItem',
    'ConfidenceScores',
    'ValidatedInvoice',
    'invoice_extraction_schema',
    'response_format',
]
