"""
PDF text extraction service
"""
import io
import logging
import re
from typing import List, Optional

import PyPDF2
import pdfplumber

from utils.exceptions import PDFProcessingError
from utils.error_handlers import log_processing_step

logger = logging.getLogger(__name__)


class PDFProcessor:
    """
    Service for extracting per-page text from PDF bytes.
    Uses pdfplumber with PyPDF2 as a fallback.
    """

    def __init__(self):
        self.whitespace_pattern = re.compile(r'\s+')
        self.control_pattern = re.compile(r'[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]')

    def _clean_text(self, text: Optional[str]) -> str:
        """Remove control characters and collapse whitespace"""
        if not text:
            return ""
        text = self.control_pattern.sub('', text)
        return self.whitespace_pattern.sub(' ', text).strip()

    def _extract_with_pdfplumber(self, data: bytes) -> List[str]:
        with pdfplumber.open(io.BytesIO(data)) as pdf:
            return [self._clean_text(page.extract_text()) for page in pdf.pages]

    def _extract_with_pypdf2(self, data: bytes) -> List[str]:
        reader = PyPDF2.PdfReader(io.BytesIO(data))
        pages = []
        for page_num, page in enumerate(reader.pages, 1):
            try:
                pages.append(self._clean_text(page.extract_text()))
            except Exception as e:
                logger.warning(f"Failed to extract text from page {page_num}: {e}")
                pages.append("")
        return pages

    def extract_pages(self, data: bytes, filename: Optional[str] = None) -> List[str]:
        """
        Extract the text of every page.

        Args:
            data: Raw PDF bytes
            filename: Name used in error messages

        Returns:
            One string per page, in page order; pages without text are empty

        Raises:
            PDFProcessingError: If the bytes cannot be read as a PDF
        """
        if not data:
            raise PDFProcessingError("PDF data is empty", filename=filename)

        log_processing_step("text_extraction", {"filename": filename, "bytes": len(data)})

        try:
            pages = self._extract_with_pdfplumber(data)
            if any(pages):
                return pages
        except Exception as e:
            logger.warning(f"pdfplumber extraction failed for {filename}: {e}")

        try:
            return self._extract_with_pypdf2(data)
        except Exception as e:
            logger.error(f"PyPDF2 extraction failed for {filename}: {e}")
            raise PDFProcessingError(
                f"Failed to read PDF: {e}",
                filename=filename,
                original_exception=e
            ) from e

    def extract_page_text(self, data: bytes, page_number: int, filename: Optional[str] = None) -> str:
        """
        Extract the text of one page.

        Args:
            data: Raw PDF bytes
            page_number: 1-based page number

        Raises:
            PDFProcessingError: If the PDF is unreadable or the page does not exist
        """
        pages = self.extract_pages(data, filename)
        if page_number < 1 or page_number > len(pages):
            raise PDFProcessingError(
                f"Page {page_number} is out of range (document has {len(pages)} pages)",
                filename=filename,
                page_number=page_number
            )
        return pages[page_number - 1]

    def extract_classification_text(
        self,
        data: bytes,
        max_pages: int = 5,
        max_words: int = 1000,
        filename: Optional[str] = None
    ) -> str:
        """
        Text sample used for subject classification: the first ``max_words``
        words of the first ``max_pages`` pages.
        """
        pages = self.extract_pages(data, filename)[:max_pages]
        words = " ".join(pages).split()
        return " ".join(words[:max_words])

    def get_page_count(self, data: bytes, filename: Optional[str] = None) -> int:
        try:
            return len(PyPDF2.PdfReader(io.BytesIO(data)).pages)
        except Exception as e:
            raise PDFProcessingError(
                f"Failed to read PDF: {e}",
                filename=filename,
                original_exception=e
            ) from e
