import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional
from ..auth import AuthManager
from ..errors import AuthError, NetworkError, ServerError, SyncError
from ..models import ApiResponse, BookData, ErrorKind, Highlight, PositionType, ReadingSession
from ..state import ConfigStore
from .http_transport import HttpTransport

logger = logging.getLogger(__name__)


def to_iso8601(timestamp: Optional[float]) -> Optional[str]:
    if timestamp is None:
        return None
    return datetime.fromtimestamp(int(timestamp), tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def session_to_payload(session: ReadingSession) -> Dict[str, Any]:
    payload = {
        "start_time": to_iso8601(session.start_time),
        "end_time": to_iso8601(session.end_time),
        "device_id": session.device_id,
        "start_page": session.start_page or 0,
        "end_page": session.end_page or 0,
        "start_xpoint": "",
        "end_xpoint": "",
    }
    if session.position_type == PositionType.ANCHOR:
        payload["start_xpoint"] = session.start_position
        payload["end_xpoint"] = session.end_position
    return payload


def _kind_of(error: SyncError) -> ErrorKind:
    if isinstance(error, AuthError):
        return ErrorKind.AUTH
    if isinstance(error, NetworkError):
        return ErrorKind.NETWORK
    return ErrorKind.SERVER


class CrossbillClient:
    """
    Resource calls against the Crossbill API.

    Every public call authenticates first and returns an ApiResponse; errors
    are raised internally and converted at this boundary, never propagated.
    """

    def __init__(self, store: ConfigStore, auth: AuthManager, transport: HttpTransport):
        self.store = store
        self.auth = auth
        self.transport = transport

    def _call(self, label: str, fn: Callable[[str], ApiResponse]) -> ApiResponse:
        try:
            token = self.auth.get_valid_token()
        except SyncError as e:
            logger.warning(f"{label}: not authenticated: {e}")
            message = f"Authentication failed: {e}" if isinstance(e, AuthError) else str(e)
            return ApiResponse(error=message, error_kind=_kind_of(e))

        try:
            return fn(token)
        except SyncError as e:
            status = e.status if isinstance(e, ServerError) else None
            logger.warning(f"{label} failed: {e}")
            return ApiResponse(status=status, error=str(e), error_kind=_kind_of(e))

    @staticmethod
    def _expect_body(code: int, data: Optional[Any], failure: str) -> ApiResponse:
        if code == 200 and data is not None:
            return ApiResponse(status=code, body=data)
        raise ServerError(f"{failure}: {code}", status=code)

    def upload_highlights(self, book: BookData, highlights: List[Highlight]) -> ApiResponse:
        payload = {
            "book": book.to_payload(),
            "highlights": [h.model_dump() for h in highlights],
        }

        def send(token: str) -> ApiResponse:
            url = f"{self.store.api_url}/highlights/upload"
            logger.debug(f"Sending {len(highlights)} highlights to {url}")
            code, data = self.transport.post_json(url, payload, token)
            return self._expect_body(code, data, "Upload failed")

        return self._call("Highlight upload", send)

    def get_book_metadata(self, client_book_id: str) -> ApiResponse:
        def fetch(token: str) -> ApiResponse:
            url = f"{self.store.api_url}/ereader/books/{client_book_id}"
            code, data = self.transport.get_json(url, token)
            if code == 404:
                logger.debug(f"Book {client_book_id} not found on server")
                return ApiResponse(status=404)
            return self._expect_body(code, data, "Fetch failed")

        return self._call("Book metadata fetch", fetch)

    def create_book(self, book: BookData) -> ApiResponse:
        def create(token: str) -> ApiResponse:
            url = f"{self.store.api_url}/ereader/books"
            code, data = self.transport.post_json(url, {"book": book.to_payload()}, token)
            return self._expect_body(code, data, "Create failed")

        return self._call("Book create", create)

    def _upload_file(self, label: str, url: str, field: str, filename: str,
                     data: bytes, content_type: str) -> ApiResponse:
        def upload(token: str) -> ApiResponse:
            logger.debug(f"Uploading {field} ({len(data)} bytes) to {url}")
            code, body = self.transport.post_multipart(url, {field: (filename, data, content_type)}, token)
            if code != 200:
                raise ServerError(f"Upload failed: {code}", status=code)
            return ApiResponse(status=code, body=body)

        return self._call(label, upload)

    def upload_cover(self, client_book_id: str, cover_data: bytes) -> ApiResponse:
        url = f"{self.store.api_url}/ereader/books/{client_book_id}/cover"
        resp = self._upload_file("Cover upload", url, "cover", "cover.jpg", cover_data, "image/jpeg")
        if resp.ok:
            logger.info(f"Cover uploaded for book {client_book_id}")
        return resp

    def upload_epub(self, client_book_id: str, epub_data: bytes, filename: str) -> ApiResponse:
        url = f"{self.store.api_url}/ereader/books/{client_book_id}/epub"
        resp = self._upload_file("EPUB upload", url, "epub", filename, epub_data, "application/epub+zip")
        if resp.ok:
            logger.info(f"EPUB uploaded for book {client_book_id}")
        return resp

    def upload_reading_sessions(self, book: BookData, sessions: List[ReadingSession]) -> ApiResponse:
        # Always a list, the server schema rejects null
        api_sessions = [session_to_payload(s) for s in sessions]
        payload = {"book": book.to_payload(), "sessions": api_sessions}

        def send(token: str) -> ApiResponse:
            url = f"{self.store.api_url}/reading_sessions/upload"
            logger.debug(f"Sending {len(api_sessions)} reading sessions to {url}")
            code, data = self.transport.post_json(url, payload, token)
            return self._expect_body(code, data, "Upload failed")

        return self._call("Reading session upload", send)
