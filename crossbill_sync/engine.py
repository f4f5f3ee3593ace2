import logging
from typing import Optional, Tuple
from .clients.crossbill_client import CrossbillClient
from .collaborators import BookSource
from .errors import LocalStorageError
from .file_uploader import FileUploader
from .models import ApiResponse, BookData, ErrorKind, ServerBook, SyncResult
from .session_store import SessionStore, get_book_hash
from .state import ConfigStore

logger = logging.getLogger(__name__)

AUTH_FAILED = "Authentication failed"


class SyncEngine:
    def __init__(self, client: CrossbillClient, session_store: Optional[SessionStore], config: ConfigStore,
                 file_uploader: Optional[FileUploader] = None):
        self.client = client
        self.sessions = session_store
        self.config = config
        self.files = file_uploader or FileUploader(client)
        self.last_result: Optional[SyncResult] = None

    def sync_book(self, source: BookSource, autonomous: bool = False) -> SyncResult:
        """
        One full run for the open book: resolve the server record, then files,
        highlights and reading sessions. Safe to repeat after a partial run.
        """
        result = SyncResult()
        self.last_result = result
        log_failure = logger.warning if autonomous else logger.error

        book = source.extract_book_data()
        doc_path = source.get_doc_path()
        client_book_id = book.client_book_id
        logger.info(f"Syncing book: {book.title}")

        # 1. Resolve the book on the server. Nothing is uploaded without it.
        server_book, resp = self._resolve_book(book)
        if server_book is None:
            self._fail(result, resp)
            log_failure(f"Could not resolve book on server: {resp.error}")
            return result

        # 2. Files are best effort
        for label, step in (("Cover", self.files.upload_cover), ("EPUB", self.files.upload_epub)):
            outcome = step(client_book_id, source, server_book)
            if not outcome.success:
                logger.warning(f"{label} upload issue: {outcome.error}")
                result.file_errors.append(f"{label}: {outcome.error}")

        # 3. Highlights are primary content: failure ends the run
        highlights = source.get_highlights(doc_path) if doc_path else []
        if not highlights:
            logger.debug("No highlights found")
        else:
            logger.debug(f"Found {len(highlights)} highlights")
            resp = self.client.upload_highlights(book, highlights)
            if not resp.ok:
                self._fail(result, resp)
                log_failure(f"Highlight upload failed: {resp.error}")
                return result
            body = resp.body if isinstance(resp.body, dict) else {}
            result.highlights_created = body.get("highlights_created") or 0
            result.highlights_skipped = body.get("highlights_skipped") or 0

        # 4. Reading sessions, all-or-nothing
        ok, synced, resp = self._sync_sessions(book, doc_path)
        result.sessions_synced = synced
        if not ok:
            self._fail(result, resp)
            log_failure(f"Reading session upload failed: {result.error}")
            return result

        logger.info(
            f"Sync finished: {result.highlights_created} new highlights, "
            f"{result.highlights_skipped} duplicates, {result.sessions_synced} sessions"
        )
        return result

    def upload_sessions_if_online(self, source: BookSource) -> Tuple[bool, int]:
        """Session-only path used when the network happens to be up already."""
        book = source.extract_book_data()
        ok, synced, resp = self._sync_sessions(book, source.get_doc_path())
        if not ok:
            logger.warning(f"Opportunistic session upload failed: {resp.error if resp else 'storage error'}")
        return ok, synced

    def _resolve_book(self, book: BookData) -> Tuple[Optional[ServerBook], ApiResponse]:
        resp = self.client.get_book_metadata(book.client_book_id)
        if resp.ok and resp.status != 404:
            return ServerBook.model_validate(resp.body or {}), resp
        if not resp.ok:
            return None, resp

        logger.info("Book not found on server, creating it")
        resp = self.client.create_book(book)
        if not resp.ok:
            return None, resp
        return ServerBook.model_validate(resp.body or {}), resp

    def _sync_sessions(self, book: BookData, doc_path: Optional[str]) -> Tuple[bool, int, Optional[ApiResponse]]:
        if self.sessions is None or not self.config.is_session_tracking_enabled():
            logger.debug("Session tracking not enabled")
            return True, 0, None
        if not doc_path:
            logger.warning("Cannot get document path for session sync")
            return True, 0, None

        try:
            sessions = self.sessions.get_unsynced_sessions_for_book(get_book_hash(doc_path))
        except LocalStorageError as e:
            logger.error(f"Cannot read pending sessions: {e}")
            return False, 0, ApiResponse(error=f"Local storage error: {e}")

        if not sessions:
            logger.debug("No reading sessions to sync for current book")
            return True, 0, None

        logger.info(f"Found {len(sessions)} unsynced reading sessions")
        ids = [s.id for s in sessions]
        resp = self.client.upload_reading_sessions(book, sessions)
        if not resp.ok:
            # Whole batch stays pending for the next run
            try:
                self.sessions.record_sync_attempt(ids)
            except LocalStorageError as e:
                logger.warning(f"Could not record sync attempt: {e}")
            return False, 0, resp

        try:
            self.sessions.mark_sessions_synced(ids)
        except LocalStorageError as e:
            # Server has them; the next run re-sends and the server deduplicates
            logger.error(f"Uploaded sessions could not be marked synced: {e}")
            return False, 0, ApiResponse(error=f"Local storage error: {e}")

        logger.info(f"Synced {len(ids)} reading sessions")
        return True, len(ids), resp

    @staticmethod
    def _fail(result: SyncResult, resp: Optional[ApiResponse]):
        result.success = False
        if resp is not None and resp.error_kind == ErrorKind.AUTH:
            result.auth_failed = True
            result.error = AUTH_FAILED
        else:
            result.error = (resp.error if resp is not None else None) or "Sync failed"
