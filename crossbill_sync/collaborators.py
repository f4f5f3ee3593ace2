"""
Interfaces the host reader application provides.

Metadata/highlight extraction, cover rendering, the network manager and the
presentation layer live outside this package; the agent only talks to them
through these protocols.
"""

from typing import Callable, Dict, List, Optional, Protocol, Tuple
from .models import BookData, Highlight


class ReaderDocument(Protocol):
    file: str

    def has_pages(self) -> bool:
        """True for fixed-layout documents (PDF, DjVu)."""
        ...

    def current_page(self) -> int: ...

    def current_anchor(self) -> Optional[str]:
        """Locator of the current position in a reflowable document."""
        ...

    def page_count(self) -> int: ...

    def props(self) -> Dict[str, str]:
        """Document properties, at least 'title' and 'authors' when known."""
        ...


class BookSource(Protocol):
    def extract_book_data(self) -> BookData: ...

    def get_doc_path(self) -> Optional[str]: ...

    def get_highlights(self, doc_path: str) -> List[Highlight]: ...

    def extract_cover_to_file(self, client_book_id: str) -> Tuple[Optional[str], Optional[bytes]]:
        """Render the cover to a temp file. Returns (tmp_path, bytes); the caller removes tmp_path."""
        ...


class NetworkManager(Protocol):
    def is_online(self) -> bool: ...

    def will_rerun_when_online(self, callback: Callable[[], None]) -> bool:
        """If offline, schedule callback for when the network comes up and return True."""
        ...

    def turn_off_wifi(self) -> None: ...


class Notifier(Protocol):
    def show_syncing(self) -> None: ...

    def show_sync_success(self, created: int, skipped: int, sessions: int) -> None: ...

    def show_auth_error(self, message: str) -> None: ...

    def show_sync_failed(self, message: str) -> None: ...
