"""
Invoice Service

High-level API over the invoice pipeline:
- Upload (store the PDF, create a pending invoice)
- Processing (run the pipeline now, or leave it to the worker)
- Status and detail queries
- Deletion
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
from uuid import uuid4

from sqlalchemy import select

from invex.config.invex_config import InvexConfig
from invex.db.connection import Database
from invex.db.models import Invoice
from invex.models.invoice import InvoiceStatus
from invex.processors.invoice.pipeline import InvoicePipeline, PipelineResult
from invex.storage.filesystem_storage import FileSystemStorage

logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 10 * 1024 * 1024


class InvoiceService:
    """
    Service for uploading and tracking invoices.

    Usage:
        service = InvoiceService(config)

        invoice_id = service.create_invoice(user_id=1, pdf_path='scan.pdf')
        result = await service.process(invoice_id)

        service.get_status(invoice_id)
        service.get_invoice(invoice_id, user_id=1)
    """

    def __init__(
        self,
        config: Optional[InvexConfig] = None,
        db: Optional[Database] = None,
        pipeline: Optional[InvoicePipeline] = None
    ):
        """
        Initialize the invoice service.

        Args:
            config: Configuration; defaults to the shared instance
            db: Database instance; built from config if omitted
            pipeline: Pre-built pipeline; built from config on first use
        """
        self.config = config or InvexConfig.default()
        self.db = db or Database(self.config)
        self.uploads = FileSystemStorage(self.config.get('storage.upload_path', 'storage/invoices'))
        self._pipeline = pipeline

    @property
    def pipeline(self) -> InvoicePipeline:
        """Get or create pipeline"""
        if self._pipeline is None:
            self._pipeline = InvoicePipeline.from_config(self.config, db=self.db)
        return self._pipeline

    def create_invoice(
        self,
        user_id: int,
        pdf_path: Union[str, Path],
        original_filename: Optional[str] = None
    ) -> int:
        """
        Store an uploaded PDF and create a pending invoice for it.

        Args:
            user_id: Owner of the invoice
            pdf_path: Local path of the uploaded file
            original_filename: Name shown to the user; defaults to the file name

        Returns:
            New invoice id

        Raises:
            ValueError: If the file is missing, not a PDF, or larger than 10MB
        """
        source = Path(pdf_path)
        if not source.is_file():
            raise ValueError("Please provide a PDF file to upload")
        if source.suffix.lower() != '.pdf':
            raise ValueError("Only PDF files are accepted")
        if source.stat().st_size > MAX_UPLOAD_BYTES:
            raise ValueError("PDF must not exceed 10MB in size")

        stored_path = self.uploads.save_file(f"{uuid4().hex}.pdf", source)

        with self.db.transaction() as session:
            invoice = Invoice(
                user_id=user_id,
                original_filename=original_filename or source.name,
                stored_path=str(stored_path),
                status=InvoiceStatus.PENDING.value
            )
            session.add(invoice)
            session.flush()
            invoice_id = invoice.id

        logger.info(f"Created invoice {invoice_id} for user {user_id} from {source.name}")
        return invoice_id

    async def process(self, invoice_id: int) -> PipelineResult:
        """Run the pipeline for an invoice in the current task"""
        return await self.pipeline.run(invoice_id)

    def get_status(self, invoice_id: int) -> Dict[str, Any]:
        """
        Outward status of an invoice.

        The error message is only included once the invoice has failed.
        """
        with self.db.session() as session:
            invoice = session.get(Invoice, invoice_id)
            if invoice is None:
                raise LookupError(f"Invoice {invoice_id} not found")

            status = {'id': invoice.id, 'status': invoice.status}
            if invoice.status == InvoiceStatus.FAILED.value:
                status['error_message'] = invoice.error_message
            return status

    def get_invoice(self, invoice_id: int, user_id: Optional[int] = None) -> Dict[str, Any]:
        """
        Get an invoice with its line items.

        Raises:
            LookupError: If the invoice does not exist
            PermissionError: If ``user_id`` is given and does not own the invoice
        """
        with self.db.session() as session:
            invoice = self._get_owned(session, invoice_id, user_id)
            return self._to_dict(invoice, include_items=True)

    def list_invoices(self, user_id: int, status: Optional[str] = None) -> List[Dict[str, Any]]:
        """List a user's invoices, newest first, optionally filtered by status"""
        with self.db.session() as session:
            query = select(Invoice).where(Invoice.user_id == user_id)

            if status and status in {s.value for s in InvoiceStatus}:
                query = query.where(Invoice.status == status)

            query = query.order_by(Invoice.created_at.desc(), Invoice.id.desc())
            invoices = session.execute(query).scalars().all()
            return [self._to_dict(invoice, include_items=True) for invoice in invoices]

    def get_pdf_path(self, invoice_id: int, user_id: Optional[int] = None) -> Path:
        """
        Path of the stored PDF, for download.

        Raises:
            FileNotFoundError: If the stored file is gone
        """
        with self.db.session() as session:
            invoice = self._get_owned(session, invoice_id, user_id)
            path = Path(invoice.stored_path)

        if not path.is_file():
            raise FileNotFoundError("File not found.")
        return path

    def delete_invoice(self, invoice_id: int, user_id: Optional[int] = None) -> None:
        """Delete an invoice, its line items and the stored PDF"""
        with self.db.transaction() as session:
            invoice = self._get_owned(session, invoice_id, user_id)
            stored_path = invoice.stored_path
            session.delete(invoice)

        self.uploads.delete(stored_path)
        logger.info(f"Deleted invoice {invoice_id}")

    def _get_owned(self, session, invoice_id: int, user_id: Optional[int]) -> Invoice:
        invoice = session.get(Invoice, invoice_id)
        if invoice is None:
            raise LookupError(f"Invoice {invoice_id} not found")
        if user_id is not None and invoice.user_id != user_id:
            raise PermissionError("This invoice does not belong to you.")
        return invoice

    def _to_dict(self, invoice: Invoice, include_items: bool = False) -> Dict[str, Any]:
        data = {
            'id': invoice.id,
            'status': invoice.status,
            'original_filename': invoice.original_filename,
        }

        optional = {
            'vendor_name': invoice.vendor_name,
            'vendor_address': invoice.vendor_address,
            'vendor_tax_id': invoice.vendor_tax_id,
            'customer_name': invoice.customer_name,
            'customer_address': invoice.customer_address,
            'customer_tax_id': invoice.customer_tax_id,
            'invoice_number': invoice.invoice_number,
            'invoice_date': invoice.invoice_date.isoformat() if invoice.invoice_date else None,
            'due_date': invoice.due_date.isoformat() if invoice.due_date else None,
            'currency': invoice.currency,
            'subtotal': str(invoice.subtotal) if invoice.subtotal is not None else None,
            'tax_amount': str(invoice.tax_amount) if invoice.tax_amount is not None else None,
            'total': str(invoice.total) if invoice.total is not None else None,
            'confidence_scores': invoice.confidence_scores,
        }
        data.update({key: value for key, value in optional.items() if value is not None})

        if include_items:
            data['items'] = [
                {
                    'id': item.id,
                    'description': item.description,
                    'quantity': str(item.quantity),
                    'unit_price': str(item.unit_price),
                    'amount': str(item.amount),
                    'tax': str(item.tax) if item.tax is not None else None,
                }
                for item in invoice.items
            ]

        if invoice.status == InvoiceStatus.FAILED.value:
            data['error_message'] = invoice.error_message

        data['created_at'] = invoice.created_at.isoformat() if invoice.created_at else None
        data['updated_at'] = invoice.updated_at.isoformat() if invoice.updated_at else None
        return data
