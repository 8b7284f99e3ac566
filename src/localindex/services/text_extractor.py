"""Text extraction for indexed files.

Plain text is decoded as strict UTF-8, so undecodable files surface as
per-file errors. PDF text comes from pypdf page by page and DOCX text from
python-docx paragraphs. Extraction is synchronous; callers run it through
asyncio.to_thread().
"""

from pathlib import Path

import docx
import pypdf
import structlog

from localindex.errors import ExtractionError

PDF_EXTENSION = ".pdf"
DOCX_EXTENSION = ".docx"


class TextExtractor:
    """Chooses a reader by file extension and returns the file's text."""

    def __init__(self, logger: structlog.stdlib.BoundLogger | None = None) -> None:
        self._logger = logger or structlog.get_logger(__name__)

    def extract(self, file_path: Path) -> str:
        """Return the text content of a file.

        Raises:
            OSError: If the file cannot be read.
            UnicodeDecodeError: If a plain-text file is not valid UTF-8.
            ExtractionError: If a PDF or DOCX file cannot be parsed.
        """
        suffix = file_path.suffix.lower()
        if suffix == PDF_EXTENSION:
            return self._extract_pdf(file_path)
        if suffix == DOCX_EXTENSION:
            return self._extract_docx(file_path)
        return file_path.read_text(encoding="utf-8")

    def _extract_pdf(self, file_path: Path) -> str:
        try:
            reader = pypdf.PdfReader(str(file_path))
            pages = [(page.extract_text() or "").strip() for page in reader.pages]
        except OSError:
            raise
        except Exception as e:
            raise ExtractionError(f"Cannot extract PDF text from {file_path.name}: {e}") from e

        # Scanned pages yield no text.
        text = "\n\n".join(page for page in pages if page)
        self._logger.debug("pdf_extracted", file_path=str(file_path), page_count=len(pages), char_count=len(text))
        return text

    def _extract_docx(self, file_path: Path) -> str:
        try:
            document = docx.Document(str(file_path))
            paragraphs = [paragraph.text for paragraph in document.paragraphs if paragraph.text.strip()]
        except OSError:
            raise
        except Exception as e:
            raise ExtractionError(f"Cannot extract DOCX text from {file_path.name}: {e}") from e

        text = "\n\n".join(paragraphs)
        self._logger.debug("docx_extracted", file_path=str(file_path), paragraph_count=len(paragraphs))
        return text
