"""
PDF Renderer

Converts a stored PDF into one JPEG per page for the vision extractor.
Rendering is delegated to pdf2image (poppler); pdfminer supplies the page
count so empty or unreadable documents are rejected before any image is
written.
"""

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List

from pdf2image import convert_from_path
from pdf2image.exceptions import PDFInfoNotInstalledError, PDFPageCountError, PDFSyntaxError
from pdfminer.pdfpage import PDFPage
from pdfminer.pdfparser import PDFSyntaxError as PDFMinerSyntaxError

from invex.exceptions import RenderingError
from invex.storage.filesystem_storage import TempStorage

logger = logging.getLogger(__name__)

DEFAULT_DPI = 150
DEFAULT_QUALITY = 85


class PageRenderer(ABC):
    """Contract for turning a PDF into ordered page images"""

    @abstractmethod
    def render(self, pdf_path: str, invoice_id: int) -> List[str]:
        """
        Render every page of ``pdf_path``.

        Returns:
            Absolute image paths, one per page, in page order

        Raises:
            RenderingError: If the file is missing, empty, has no pages, or
                any page fails to convert
        """


class PdfRenderer(PageRenderer):
    """
    Renders PDFs to JPEG at a fixed DPI and quality.

    Output files are named ``invoice_{id}_page_{n}.jpg`` inside temp storage.
    The result always has exactly one path per page; if any page fails the
    pages already written are removed and ``RenderingError`` is raised.
    """

    def __init__(self, storage: TempStorage, dpi: int = DEFAULT_DPI, quality: int = DEFAULT_QUALITY):
        self.storage = storage
        self.dpi = dpi
        self.quality = quality

    def render(self, pdf_path: str, invoice_id: int) -> List[str]:
        path = Path(pdf_path)

        # Preconditions come first: nothing is created for a bad input
        if not path.is_file():
            raise RenderingError(f"PDF file not found: {pdf_path}", invoice_id=invoice_id)
        if path.stat().st_size == 0:
            raise RenderingError(f"PDF file is empty: {pdf_path}", invoice_id=invoice_id)

        page_count = self.count_pages(path, invoice_id)
        if page_count == 0:
            raise RenderingError(f"PDF has no pages: {pdf_path}", invoice_id=invoice_id)

        self.storage.ensure_storage_exists()

        image_paths: List[str] = []
        try:
            for page_number in range(1, page_count + 1):
                image_paths.append(self._render_page(path, invoice_id, page_number))
        except Exception:
            for written in image_paths:
                self.storage.delete(written)
            raise

        logger.info(f"Rendered {len(image_paths)} page(s) for invoice {invoice_id} at {self.dpi} DPI")
        return image_paths

    def count_pages(self, pdf_path: Path, invoice_id: int) -> int:
        try:
            with open(pdf_path, 'rb') as fp:
                return sum(1 for _ in PDFPage.get_pages(fp))
        except (PDFMinerSyntaxError, OSError, ValueError) as e:
            raise RenderingError(f"Unreadable PDF {pdf_path}: {e}", invoice_id=invoice_id) from e
        except Exception as e:
            # pdfminer raises a variety of PSException subclasses on damaged files
            raise RenderingError(f"Unreadable PDF {pdf_path}: {e}", invoice_id=invoice_id) from e

    def _render_page(self, pdf_path: Path, invoice_id: int, page_number: int) -> str:
        output_path = self.storage.image_path(invoice_id, page_number)

        try:
            pages = convert_from_path(
                str(pdf_path),
                dpi=self.dpi,
                first_page=page_number,
                last_page=page_number
            )
        except (PDFInfoNotInstalledError, PDFPageCountError, PDFSyntaxError) as e:
            raise RenderingError(
                f"PDF conversion failed for invoice {invoice_id}: {e}", invoice_id=invoice_id
            ) from e
        except Exception as e:
            raise RenderingError(
                f"PDF conversion failed for invoice {invoice_id} page {page_number}: {e}",
                invoice_id=invoice_id
            ) from e

        if len(pages) != 1:
            raise RenderingError(
                f"Failed to create image for page {page_number} of invoice {invoice_id}",
                invoice_id=invoice_id
            )

        image = pages[0]
        if image.mode != 'RGB':
            image = image.convert('RGB')
        image.save(output_path, format='JPEG', quality=self.quality)

        if not output_path.exists():
            raise RenderingError(
                f"Failed to create image for page {page_number} of invoice {invoice_id}",
                invoice_id=invoice_id
            )

        return str(output_path)
