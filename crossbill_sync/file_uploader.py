import logging
import os
from typing import Optional
from .clients.crossbill_client import CrossbillClient
from .collaborators import BookSource
from .models import ServerBook, StepResult

logger = logging.getLogger(__name__)


class FileUploader:
    """Cover and EPUB uploads. Never raises: failures come back as a StepResult."""

    def __init__(self, client: CrossbillClient):
        self.client = client

    def upload_cover(self, client_book_id: str, source: BookSource, server_book: Optional[ServerBook]) -> StepResult:
        if server_book is None:
            logger.debug("No server metadata, skipping cover upload")
            return StepResult()
        if server_book.has_cover:
            logger.debug("Server already has cover, skipping upload")
            return StepResult()

        try:
            tmp_path, cover_data = source.extract_cover_to_file(client_book_id)
        except Exception as e:
            logger.warning(f"Cover extraction failed: {e}")
            return StepResult(success=False, error=f"Cover extraction failed: {e}")

        try:
            if not cover_data:
                logger.debug("No cover available for extraction")
                return StepResult()
            resp = self.client.upload_cover(client_book_id, cover_data)
        finally:
            if tmp_path and os.path.exists(tmp_path):
                os.remove(tmp_path)

        if not resp.ok:
            return StepResult(success=False, error=resp.error)
        return StepResult()

    def upload_epub(self, client_book_id: str, source: BookSource, server_book: Optional[ServerBook]) -> StepResult:
        if server_book is None:
            logger.debug("No server metadata, skipping EPUB upload")
            return StepResult()
        if server_book.has_epub:
            logger.debug("Server already has EPUB, skipping upload")
            return StepResult()

        doc_path = source.get_doc_path()
        if not doc_path or not doc_path.lower().endswith(".epub"):
            logger.debug("Document is not an EPUB file, skipping upload")
            return StepResult()

        try:
            with open(doc_path, "rb") as f:
                epub_data = f.read()
        except OSError as e:
            logger.error(f"Failed to read EPUB file: {e}")
            return StepResult(success=False, error="Failed to open EPUB file")

        if not epub_data:
            return StepResult(success=False, error="Failed to read EPUB data")

        filename = os.path.basename(doc_path) or "document.epub"
        logger.debug(f"Uploading EPUB file {filename} ({len(epub_data)} bytes)")
        resp = self.client.upload_epub(client_book_id, epub_data, filename)
        if not resp.ok:
            return StepResult(success=False, error=resp.error)
        return StepResult()
