from invex.processors.render.pdf_renderer import PageRenderer, PdfRenderer

__all__ = ['PageRenderer', 'PdfRenderer']
