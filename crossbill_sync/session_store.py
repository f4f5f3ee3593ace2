"""
Durable queue of reading sessions.

One SQLite database per install, in WAL mode so an abrupt exit never loses a
session that was already ended. Each reading instance moves through
NO_SESSION -> ACTIVE -> (discarded | persisted); only persisted rows are ever
uploaded, and they are flagged synced once the server accepts the batch.
"""

import hashlib
import logging
import platform
import sqlite3
import threading
import time
from pathlib import Path
from typing import Callable, List, Optional, Sequence
from pydantic import ValidationError
from .collaborators import ReaderDocument
from .config import settings
from .errors import LocalStorageError
from .models import ActiveSession, BookData, Position, PositionType, ReadingSession

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS sessions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    book_file TEXT NOT NULL,
    book_hash TEXT NOT NULL,
    book_title TEXT,
    book_author TEXT,
    start_time INTEGER NOT NULL,
    end_time INTEGER NOT NULL,
    duration_seconds INTEGER,
    position_type TEXT NOT NULL,
    start_position TEXT NOT NULL,
    end_position TEXT NOT NULL,
    start_page INTEGER,
    end_page INTEGER,
    total_pages INTEGER,
    synced INTEGER DEFAULT 0,
    sync_attempts INTEGER DEFAULT 0,
    created_at INTEGER DEFAULT (strftime('%s', 'now')),
    device_id TEXT
);

CREATE INDEX IF NOT EXISTS idx_sessions_book_hash ON sessions(book_hash);
CREATE INDEX IF NOT EXISTS idx_sessions_synced ON sessions(synced);
CREATE INDEX IF NOT EXISTS idx_sessions_start_time ON sessions(start_time);
"""

# Values written by older versions of the reader plugin
LEGACY_POSITION_TYPES = {
    "xpointer": PositionType.ANCHOR.value,
}

COLUMNS = [
    "id", "book_file", "book_hash", "book_title", "book_author",
    "start_time", "end_time", "duration_seconds",
    "position_type", "start_position", "end_position",
    "start_page", "end_page", "total_pages",
    "device_id", "created_at", "synced", "sync_attempts",
]


def get_book_hash(file_path: str) -> str:
    """MD5 of the document path. Partitions local storage only, never sent as a book id."""
    return hashlib.md5(file_path.encode("utf-8")).hexdigest()


def capture_position(document: ReaderDocument) -> Position:
    try:
        if document.has_pages():
            page = document.current_page() or 1
            return Position(type=PositionType.PAGE, position=str(page), page=page)

        position = Position(type=PositionType.ANCHOR)
        anchor = document.current_anchor()
        if anchor:
            position.position = anchor
        position.page = document.current_page() or 0
        return position
    except Exception as e:
        logger.warning(f"Error capturing position: {e}")
        return Position()


class SessionStore:
    def __init__(self, db_path: str, min_duration: Callable[[], int] = lambda: settings.DEFAULT_MIN_SESSION_SECONDS,
                 device_id: Optional[str] = settings.DEVICE_ID,
                 clock: Callable[[], float] = time.time):
        self.db_path = Path(db_path)
        self.min_duration = min_duration
        self.device_id = device_id or platform.node() or "unknown"
        self.clock = clock
        self.current_session: Optional[ActiveSession] = None
        self._conn: Optional[sqlite3.Connection] = None
        self._write_lock = threading.Lock()

    def __enter__(self) -> "SessionStore":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def open(self) -> "SessionStore":
        if self._conn is not None:
            return self

        logger.debug(f"Opening session database at {self.db_path}")
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            conn.execute("PRAGMA journal_mode=WAL")
            conn.executescript(SCHEMA)
            existing = {row[1] for row in conn.execute("PRAGMA table_info(sessions)")}
            if "book_author" not in existing:
                # Databases created before author tracking
                conn.execute("ALTER TABLE sessions ADD COLUMN book_author TEXT")
            conn.commit()
        except (sqlite3.Error, OSError) as e:
            logger.error(f"Failed to initialize session database: {e}")
            raise LocalStorageError(f"cannot open {self.db_path}: {e}") from e

        self._conn = conn
        return self

    def close(self):
        if self._conn is not None:
            logger.debug("Closing session database")
            try:
                with self._write_lock:
                    self._conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")
                    self._conn.close()
            except sqlite3.Error as e:
                logger.warning(f"Error closing session database: {e}")
            self._conn = None
        self.current_session = None

    def _db(self) -> sqlite3.Connection:
        if self._conn is None:
            raise LocalStorageError("session database is not open")
        return self._conn

    # Lifecycle

    def has_active_session(self) -> bool:
        return self.current_session is not None

    def start_session(self, document: ReaderDocument, book: Optional[BookData] = None):
        if self.current_session is not None:
            logger.debug("Ending previous session before starting new one")
            self.end_session("new_session", document)

        file_path = document.file or ""
        position = capture_position(document)

        title = book.title if book else None
        author = book.author if book else None
        if not title or not author:
            try:
                props = document.props() or {}
            except Exception as e:
                logger.debug(f"Could not get book properties: {e}")
                props = {}
            title = title or props.get("title") or None
            author = author or props.get("authors") or None

        try:
            total_pages = document.page_count() or 0
        except Exception:
            total_pages = 0

        self.current_session = ActiveSession(
            book_file=file_path,
            book_hash=get_book_hash(file_path),
            book_title=title,
            book_author=author,
            start_time=self.clock(),
            position_type=position.type,
            start_position=position.position,
            start_page=position.page,
            current_position=position.position,
            current_page=position.page,
            total_pages=total_pages,
        )
        logger.debug(f"Started session for {title or file_path}")

    def update_position(self, document: Optional[ReaderDocument] = None, page: Optional[int] = None):
        """Called on every page turn: memory only."""
        session = self.current_session
        if session is None:
            return

        if page is not None:
            session.current_page = page
            if session.position_type == PositionType.PAGE:
                session.current_position = str(page)
        elif document is not None:
            position = capture_position(document)
            session.current_position = position.position
            session.current_page = position.page

    def end_session(self, reason: str, document: Optional[ReaderDocument] = None) -> Optional[int]:
        """Finalize the active session. Returns the new row id, or None if nothing was stored."""
        session = self.current_session
        if session is None:
            logger.debug("No active session to end")
            return None

        # Cleared up front so a failed insert cannot leave the tracker stuck
        self.current_session = None

        end_time = int(self.clock())
        start_time = int(session.start_time)
        duration = end_time - start_time
        min_duration = self.min_duration()
        if duration < min_duration:
            logger.debug(f"Discarding short session ({duration} seconds) - reason: {reason}")
            return None

        end_position = session.current_position
        end_page = session.current_page
        if document is not None:
            position = capture_position(document)
            end_position = position.position
            end_page = position.page

        try:
            with self._write_lock:
                conn = self._db()
                with conn:
                    cursor = conn.execute(
                        """
                        INSERT INTO sessions (
                            book_file, book_hash, book_title, book_author,
                            start_time, end_time, duration_seconds,
                            position_type, start_position, end_position,
                            start_page, end_page, total_pages,
                            device_id
                        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                        """,
                        (
                            session.book_file, session.book_hash, session.book_title, session.book_author,
                            start_time, end_time, duration,
                            session.position_type.value, session.start_position, end_position,
                            session.start_page, end_page, session.total_pages,
                            self.device_id,
                        ),
                    )
                conn.execute("PRAGMA wal_checkpoint(PASSIVE)")
        except (sqlite3.Error, LocalStorageError) as e:
            logger.error(f"Failed to save session: {e}")
            return None

        logger.debug(f"Saved session ({duration} seconds) - reason: {reason}")
        return cursor.lastrowid

    # Queue

    def _select(self, where: str, params: Sequence, order: str) -> List[ReadingSession]:
        try:
            rows = self._db().execute(
                f"SELECT {', '.join(COLUMNS)} FROM sessions WHERE {where} ORDER BY {order}",
                params,
            ).fetchall()
        except sqlite3.Error as e:
            logger.error(f"Error fetching sessions: {e}")
            raise LocalStorageError(str(e)) from e

        sessions = []
        for row in rows:
            record = dict(zip(COLUMNS, row))
            record["synced"] = bool(record["synced"])
            record["sync_attempts"] = record["sync_attempts"] or 0
            record["position_type"] = LEGACY_POSITION_TYPES.get(record["position_type"], record["position_type"])
            try:
                sessions.append(ReadingSession(**record))
            except ValidationError as e:
                # Left in place, but never allowed to block the rest of the queue
                logger.warning(f"Skipping unreadable session row {record['id']}: {e}")
        return sessions

    def get_unsynced_sessions_for_book(self, book_hash: str) -> List[ReadingSession]:
        """Oldest first, so uploads go out in a stable order."""
        if not book_hash:
            return []
        return self._select("book_hash = ? AND synced = 0", (book_hash,), "start_time ASC, id ASC")

    def get_sessions_for_book(self, book_hash: str) -> List[ReadingSession]:
        return self._select("book_hash = ?", (book_hash,), "start_time DESC, id DESC")

    def count_unsynced(self) -> int:
        try:
            return self._db().execute("SELECT COUNT(*) FROM sessions WHERE synced = 0").fetchone()[0]
        except sqlite3.Error as e:
            raise LocalStorageError(str(e)) from e

    def _update_ids(self, statement: str, session_ids: Sequence[int]):
        placeholders = ",".join("?" for _ in session_ids)
        try:
            with self._write_lock:
                conn = self._db()
                # One transaction: either every row changes or none does
                with conn:
                    conn.execute(f"{statement} WHERE id IN ({placeholders})", list(session_ids))
        except sqlite3.Error as e:
            logger.error(f"Error updating sessions: {e}")
            raise LocalStorageError(str(e)) from e

    def mark_sessions_synced(self, session_ids: Sequence[int]):
        if not session_ids:
            return
        self._update_ids("UPDATE sessions SET synced = 1", session_ids)

    def record_sync_attempt(self, session_ids: Sequence[int]):
        if not session_ids:
            return
        self._update_ids("UPDATE sessions SET sync_attempts = sync_attempts + 1", session_ids)
