"""
Invoice Persister

Writes a validated extraction onto its invoice row in one transaction:
header columns, confidence map, status and the full line item set are
replaced together or not at all.
"""

import logging
from datetime import date, datetime
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError

from invex.db.connection import Database
from invex.db.models import Invoice, InvoiceLineItem
from invex.exceptions import InvalidTransitionError, InvexError, PersistenceError
from invex.models.invoice import InvoiceStatus, ValidatedInvoice

logger = logging.getLogger(__name__)

DATE_FORMATS = [
    '%Y-%m-%d',      # ISO format
    '%m/%d/%Y',      # US format
    '%d/%m/%Y',      # EU format
    '%m-%d-%Y',
    '%d-%m-%Y',
    '%Y/%m/%d',
    '%d.%m.%Y',
    '%B %d, %Y',     # January 15, 2024
    '%b %d, %Y',     # Jan 15, 2024
    '%d %B %Y',      # 15 January 2024
    '%d %b %Y',      # 15 Jan 2024
    '%m/%d/%y',      # MM/DD/YY
    '%d/%m/%y',      # DD/MM/YY
]


def parse_date(value: Any) -> Optional[date]:
    """Lenient date parsing; anything unrecognised becomes None"""
    if value is None:
        return None

    if isinstance(value, datetime):
        return value.date()

    if isinstance(value, date):
        return value

    if not isinstance(value, str):
        return None

    value = value.strip()
    if not value:
        return None

    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue

    logger.debug(f"Unparseable invoice date ignored: {value!r}")
    return None


class InvoicePersister:
    """
    Persists validated invoice data.

    Usage:
        persister = InvoicePersister(db)
        persister.persist(invoice_id, validated)
    """

    def __init__(self, db: Database):
        self.db = db

    def persist(self, invoice_id: int, data: ValidatedInvoice) -> int:
        """
        Replace the invoice's extracted fields and line items, mark it completed.

        Args:
            invoice_id: Invoice to update
            data: Output of the validator

        Returns:
            Number of line items written

        Raises:
            InvexError: If the invoice is missing
            PersistenceError: If the commit fails; nothing is written
            InvalidTransitionError: If the invoice is not being processed
        """
        try:
            with self.db.transaction() as session:
                invoice = session.get(Invoice, invoice_id)
                if invoice is None:
                    raise InvexError(f"Invoice {invoice_id} not found", invoice_id=invoice_id)

                current = InvoiceStatus(invoice.status)
                if current != InvoiceStatus.PROCESSING:
                    raise InvalidTransitionError(
                        f"Cannot complete invoice {invoice_id} from status '{current.value}'",
                        invoice_id=invoice_id
                    )

                self._apply_fields(invoice, data)
                invoice.status = InvoiceStatus.COMPLETED.value
                invoice.error_message = None

                # Replace line items
                session.query(InvoiceLineItem).filter(
                    InvoiceLineItem.invoice_id == invoice_id
                ).delete(synchronize_session=False)

                for item in data.line_items:
                    session.add(InvoiceLineItem(
                        invoice_id=invoice_id,
                        description=item.description,
                        quantity=item.quantity,
                        unit_price=item.unit_price,
                        amount=item.amount,
                        tax=item.tax
                    ))

        except InvexError:
            raise
        except SQLAlchemyError as e:
            raise PersistenceError(
                f"Failed to save invoice {invoice_id}: {e}", invoice_id=invoice_id
            ) from e

        logger.info(f"Saved invoice {invoice_id} with {len(data.line_items)} line item(s)")
        return len(data.line_items)

    def _apply_fields(self, invoice: Invoice, data: ValidatedInvoice) -> None:
        invoice.invoice_number = data.metadata.invoice_number
        invoice.invoice_date = parse_date(data.metadata.invoice_date)
        invoice.due_date = parse_date(data.metadata.due_date)
        invoice.currency = data.metadata.currency

        invoice.vendor_name = data.vendor.name
        invoice.vendor_address = data.vendor.address
        invoice.vendor_tax_id = data.vendor.tax_id
        invoice.customer_name = data.customer.name
        invoice.customer_address = data.customer.address
        invoice.customer_tax_id = data.customer.tax_id

        invoice.subtotal = data.totals.subtotal
        invoice.tax_amount = data.totals.tax_amount
        invoice.total = data.totals.total

        invoice.confidence_scores = data.confidence.model_dump()
