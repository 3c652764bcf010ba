"""
Tests for InvoiceService
"""

from pathlib import Path

import pytest

from invex.db.models import Invoice, InvoiceLineItem
from invex.models.invoice import InvoiceStatus
from invex.services.invoice_service import InvoiceService


@pytest.fixture
def service(config, db, build_pipeline):
    return InvoiceService(config, db=db, pipeline=build_pipeline())


class TestCreateInvoice:
    """Tests for uploads"""

    def test_stores_pdf_and_creates_pending_invoice(self, service, db, config, pdf_file):
        """The PDF is copied into upload storage under a generated name"""
        invoice_id = service.create_invoice(7, pdf_file)

        with db.session() as session:
            invoice = session.get(Invoice, invoice_id)
            assert invoice.status == 'pending'
            assert invoice.user_id == 7
            assert invoice.original_filename == 'invoice.pdf'
            stored = Path(invoice.stored_path)

        assert stored.is_absolute()
        assert stored.suffix == '.pdf'
        assert stored.parent == Path(config.get('storage.upload_path')).resolve()
        assert stored.read_bytes() == pdf_file.read_bytes()

    def test_original_filename_override(self, service, pdf_file):
        invoice_id = service.create_invoice(7, pdf_file, original_filename='march.pdf')
        assert service.get_invoice(invoice_id)['original_filename'] == 'march.pdf'

    def test_rejects_missing_file(self, service, tmp_path):
        with pytest.raises(ValueError) as exc_info:
            service.create_invoice(7, tmp_path / 'nope.pdf')
        assert 'Please provide a PDF file' in str(exc_info.value)

    def test_rejects_non_pdf(self, service, tmp_path):
        """Only .pdf uploads are accepted"""
        path = tmp_path / 'invoice.png'
        path.write_bytes(b'png')

        with pytest.raises(ValueError) as exc_info:
            service.create_invoice(7, path)
        assert 'Only PDF files' in str(exc_info.value)

    def test_rejects_oversized_pdf(self, service, tmp_path):
        path = tmp_path / 'big.pdf'
        path.write_bytes(b'0' * (10 * 1024 * 1024 + 1))

        with pytest.raises(ValueError) as exc_info:
            service.create_invoice(7, path)
        assert '10MB' in str(exc_info.value)


class TestQueries:
    """Tests for status, detail and listing"""

    def test_status_hides_error_until_failed(self, service, db, make_invoice):
        """The error message is only reported for failed invoices"""
        invoice_id = make_invoice(status='processing')
        with db.transaction() as session:
            session.get(Invoice, invoice_id).error_message = 'left over'

        assert service.get_status(invoice_id) == {'id': invoice_id, 'status': 'processing'}

        with db.transaction() as session:
            session.get(Invoice, invoice_id).status = 'failed'

        assert service.get_status(invoice_id) == {
            'id': invoice_id, 'status': 'failed', 'error_message': 'left over'
        }

    def test_unknown_invoice(self, service):
        with pytest.raises(LookupError):
            service.get_status(999)

    def test_ownership(self, service, make_invoice):
        """Another user's invoice is refused"""
        invoice_id = make_invoice(user_id=1)

        with pytest.raises(PermissionError) as exc_info:
            service.get_invoice(invoice_id, user_id=2)
        assert 'does not belong to you' in str(exc_info.value)

    def test_pending_invoice_omits_extracted_fields(self, service, make_invoice):
        """Fields that have not been extracted are left out"""
        data = service.get_invoice(make_invoice())

        assert data['status'] == 'pending'
        assert data['items'] == []
        assert 'vendor_name' not in data
        assert 'error_message' not in data
        assert data['created_at'] is not None

    def test_list_filters_by_user_and_status(self, service, make_invoice):
        first = make_invoice(user_id=1)
        second = make_invoice(user_id=1, status='completed')
        make_invoice(user_id=2)

        assert sorted(i['id'] for i in service.list_invoices(1)) == sorted([first, second])
        assert [i['id'] for i in service.list_invoices(1, status='completed')] == [second]

    def test_get_pdf_path_missing_file(self, service, make_invoice, tmp_path):
        invoice_id = make_invoice(stored_path=str(tmp_path / 'gone.pdf'))

        with pytest.raises(FileNotFoundError):
            service.get_pdf_path(invoice_id)


class TestProcessAndDelete:
    """Tests for processing through the service"""

    @pytest.mark.asyncio
    async def test_process_completes_invoice(self, service, pdf_file):
        """An uploaded invoice runs through the injected pipeline"""
        invoice_id = service.create_invoice(7, pdf_file)

        result = await service.process(invoice_id)

        assert result.status == InvoiceStatus.COMPLETED
        data = service.get_invoice(invoice_id, user_id=7)
        assert data['status'] == 'completed'
        assert data['vendor_name'] == 'Acme Supplies Ltd'
        assert data['invoice_date'] == '2024-01-15'
        assert data['total'] == '165.00'
        assert [item['description'] for item in data['items']] == ['Widget A', 'Widget B']

    @pytest.mark.asyncio
    async def test_delete_removes_rows_and_file(self, service, db, pdf_file):
        """Deleting an invoice removes its line items and stored PDF"""
        invoice_id = service.create_invoice(7, pdf_file)
        await service.process(invoice_id)
        stored = service.get_pdf_path(invoice_id)

        service.delete_invoice(invoice_id, user_id=7)

        assert not stored.exists()
        with db.session() as session:
            assert session.get(Invoice, invoice_id) is None
            assert session.query(InvoiceLineItem).filter_by(invoice_id=invoice_id).count() == 0
