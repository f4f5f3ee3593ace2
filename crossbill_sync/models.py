import hashlib
from enum import Enum
from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Optional


class PositionType(str, Enum):
    PAGE = "page"      # fixed-layout documents (PDF, DjVu)
    ANCHOR = "anchor"  # reflowable documents, xpointer-like locator


class LifecycleEvent(str, Enum):
    READY = "ready"
    PAGE_UPDATE = "page_update"
    SUSPEND = "suspend"
    RESUME = "resume"
    CLOSE = "close"
    EXIT = "exit"


class ErrorKind(str, Enum):
    AUTH = "auth"
    NETWORK = "network"
    SERVER = "server"


class UserConfig(BaseModel):
    base_url: str = "http://localhost:8000"
    username: str = ""
    password: str = ""
    autosync_enabled: bool = False
    session_tracking_enabled: bool = True
    min_session_duration: int = 60

    # Token cache. access_token and token_expires_at travel together.
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    token_expires_at: Optional[float] = None


class BookData(BaseModel):
    title: str
    author: Optional[str] = None
    isbn: Optional[str] = None
    description: Optional[str] = None
    language: Optional[str] = None
    page_count: Optional[int] = None
    keywords: Optional[List[str]] = None

    @property
    def client_book_id(self) -> str:
        """Device-independent id of the book on the server: md5 of 'title|author'."""
        key = f"{self.title}|{self.author or ''}"
        return hashlib.md5(key.encode("utf-8")).hexdigest()

    def to_payload(self) -> Dict[str, Any]:
        payload = self.model_dump()
        payload["client_book_id"] = self.client_book_id
        return payload


class Highlight(BaseModel):
    text: str = ""
    note: Optional[str] = None
    datetime: str = ""
    page: Optional[int] = None
    chapter: Optional[str] = None
    chapter_number: Optional[int] = None


class ServerBook(BaseModel):
    model_config = ConfigDict(extra="ignore")

    book_id: Optional[int] = None
    has_cover: bool = False
    has_epub: bool = Field(default=False, validation_alias=AliasChoices("has_epub", "has_ebook"))


class Position(BaseModel):
    type: PositionType = PositionType.PAGE
    position: str = "0"
    page: int = 0


class ActiveSession(BaseModel):
    book_file: str
    book_hash: str
    book_title: Optional[str] = None
    book_author: Optional[str] = None
    start_time: float
    position_type: PositionType
    start_position: str
    start_page: int = 0
    current_position: str
    current_page: int = 0
    total_pages: int = 0


class ReadingSession(BaseModel):
    id: Optional[int] = None
    book_file: str
    book_hash: str
    book_title: Optional[str] = None
    book_author: Optional[str] = None
    start_time: int
    end_time: int
    duration_seconds: int
    position_type: PositionType
    start_position: str
    end_position: str
    start_page: Optional[int] = None
    end_page: Optional[int] = None
    total_pages: Optional[int] = None
    device_id: Optional[str] = None
    synced: bool = False
    sync_attempts: int = 0
    created_at: Optional[int] = None


class ApiResponse(BaseModel):
    """Result of one remote call. error is None iff the outcome is non-fatal."""
    status: Optional[int] = None
    body: Optional[Any] = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class StepResult(BaseModel):
    success: bool = True
    error: Optional[str] = None


class SyncResult(BaseModel):
    success: bool = True
    highlights_created: int = 0
    highlights_skipped: int = 0
    sessions_synced: int = 0
    error: Optional[str] = None
    auth_failed: bool = False
    file_errors: List[str] = Field(default_factory=list)
