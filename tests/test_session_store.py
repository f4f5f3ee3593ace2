import os
import sqlite3
import tempfile
import unittest

from crossbill_sync.errors import LocalStorageError
from crossbill_sync.models import BookData, PositionType
from crossbill_sync.session_store import SessionStore, get_book_hash
from fakes import Clock, FakeDocument


class TestSessionStore(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.db_path = os.path.join(self.tmp.name, "sessions.sqlite3")
        self.clock = Clock()
        self.min_duration = 60
        self.store = SessionStore(self.db_path, min_duration=lambda: self.min_duration,
                                  device_id="kobo-test", clock=self.clock).open()
        self.doc = FakeDocument()
        self.book_hash = get_book_hash(self.doc.file)

    def tearDown(self):
        self.store.close()
        self.tmp.cleanup()

    def read(self, seconds, start_page=1, end_page=None):
        self.doc.page = start_page
        self.store.start_session(self.doc)
        self.clock.advance(seconds)
        self.doc.page = end_page or start_page
        return self.store.end_session("document_close", self.doc)

    def row_count(self):
        return len(self.store.get_sessions_for_book(self.book_hash))

    def test_short_sessions_are_not_persisted(self):
        for seconds in (10, 90, 120):
            self.read(seconds)
            self.clock.advance(5)

        sessions = self.store.get_sessions_for_book(self.book_hash)
        self.assertEqual(len(sessions), 2)
        self.assertEqual(sorted(s.duration_seconds for s in sessions), [90, 120])

    def test_discard_leaves_store_unchanged(self):
        self.read(120)
        before = self.row_count()
        self.assertIsNone(self.read(59))
        self.assertEqual(self.row_count(), before)
        self.assertFalse(self.store.has_active_session())

    def test_persisted_row_fields(self):
        row_id = self.read(300, start_page=10, end_page=25)
        self.assertIsNotNone(row_id)

        session = self.store.get_unsynced_sessions_for_book(self.book_hash)[0]
        self.assertEqual(session.id, row_id)
        self.assertEqual(session.book_file, "/books/dune.pdf")
        self.assertEqual(session.book_title, "Dune")
        self.assertEqual(session.book_author, "Frank Herbert")
        self.assertEqual(session.position_type, PositionType.PAGE)
        self.assertEqual(session.start_position, "10")
        self.assertEqual(session.end_position, "25")
        self.assertEqual((session.start_page, session.end_page, session.total_pages), (10, 25, 300))
        self.assertEqual(session.end_time - session.start_time, session.duration_seconds)
        self.assertEqual(session.device_id, "kobo-test")
        self.assertFalse(session.synced)
        self.assertEqual(session.sync_attempts, 0)

    def test_reflowable_document_records_anchor(self):
        doc = FakeDocument(file="/books/emma.epub", fixed_layout=False, page=3,
                           anchor="/body/DocFragment[4]/body/p[1]/text().0")
        self.store.start_session(doc, BookData(title="Emma", author="Jane Austen"))
        doc.anchor = "/body/DocFragment[7]/body/p[9]/text().12"
        self.store.update_position(doc)
        self.clock.advance(600)
        self.store.end_session("suspend")

        session = self.store.get_unsynced_sessions_for_book(get_book_hash(doc.file))[0]
        self.assertEqual(session.position_type, PositionType.ANCHOR)
        self.assertEqual(session.start_position, "/body/DocFragment[4]/body/p[1]/text().0")
        self.assertEqual(session.end_position, "/body/DocFragment[7]/body/p[9]/text().12")
        self.assertEqual(session.book_title, "Emma")

    def test_update_position_with_page_only_touches_memory(self):
        self.store.start_session(self.doc)
        self.store.update_position(page=42)
        self.assertEqual(self.store.current_session.current_page, 42)
        self.assertEqual(self.store.current_session.current_position, "42")
        self.assertEqual(self.row_count(), 0)

    def test_new_session_ends_the_active_one(self):
        self.store.start_session(self.doc)
        self.clock.advance(100)
        self.store.start_session(self.doc)
        self.assertEqual(self.row_count(), 1)
        self.assertTrue(self.store.has_active_session())

    def test_unsynced_ordered_oldest_first(self):
        self.clock.advance(1000)
        self.read(120)
        self.read(120)
        self.read(120)
        starts = [s.start_time for s in self.store.get_unsynced_sessions_for_book(self.book_hash)]
        self.assertEqual(starts, sorted(starts))

    def test_partitions_by_book_hash(self):
        self.read(120)
        other = FakeDocument(file="/books/other.pdf")
        self.store.start_session(other)
        self.clock.advance(120)
        self.store.end_session("document_close")

        self.assertEqual(len(self.store.get_unsynced_sessions_for_book(self.book_hash)), 1)
        self.assertEqual(len(self.store.get_unsynced_sessions_for_book(get_book_hash(other.file))), 1)
        self.assertEqual(self.store.count_unsynced(), 2)

    def test_mark_synced_flags_exactly_the_given_ids(self):
        ids = [self.read(120) for _ in range(3)]
        self.store.mark_sessions_synced(ids[:2])

        remaining = self.store.get_unsynced_sessions_for_book(self.book_hash)
        self.assertEqual([s.id for s in remaining], [ids[2]])

    def test_record_sync_attempt(self):
        row_id = self.read(120)
        self.store.record_sync_attempt([row_id])
        self.store.record_sync_attempt([row_id])
        self.assertEqual(self.store.get_unsynced_sessions_for_book(self.book_hash)[0].sync_attempts, 2)

    def test_end_session_clears_state_even_if_insert_fails(self):
        self.store.start_session(self.doc)
        self.clock.advance(120)
        self.store._conn.execute("DROP TABLE sessions")
        self.assertIsNone(self.store.end_session("suspend"))
        self.assertFalse(self.store.has_active_session())

    def test_sessions_survive_reopen(self):
        self.read(120)
        self.store.close()

        reopened = SessionStore(self.db_path, clock=self.clock).open()
        try:
            self.assertEqual(reopened.count_unsynced(), 1)
        finally:
            reopened.close()
        self.store.open()

    def test_close_checkpoints_wal(self):
        self.read(120)
        self.store.close()
        wal = self.db_path + "-wal"
        self.assertTrue(not os.path.exists(wal) or os.path.getsize(wal) == 0)
        self.store.open()

    def test_migrates_database_without_author_column(self):
        legacy_path = os.path.join(self.tmp.name, "legacy.sqlite3")
        conn = sqlite3.connect(legacy_path)
        conn.execute(
            "CREATE TABLE sessions (id INTEGER PRIMARY KEY AUTOINCREMENT, book_file TEXT NOT NULL, "
            "book_hash TEXT NOT NULL, book_title TEXT, start_time INTEGER NOT NULL, end_time INTEGER NOT NULL, "
            "duration_seconds INTEGER, position_type TEXT NOT NULL, start_position TEXT NOT NULL, "
            "end_position TEXT NOT NULL, start_page INTEGER, end_page INTEGER, total_pages INTEGER, "
            "synced INTEGER DEFAULT 0, sync_attempts INTEGER DEFAULT 0, "
            "created_at INTEGER DEFAULT (strftime('%s', 'now')), device_id TEXT)"
        )
        conn.commit()
        conn.close()

        with SessionStore(legacy_path, clock=self.clock) as legacy:
            legacy.start_session(self.doc)
            self.clock.advance(120)
            self.assertIsNotNone(legacy.end_session("suspend"))
            self.assertEqual(legacy.get_sessions_for_book(self.book_hash)[0].book_author, "Frank Herbert")

    def insert_raw(self, position_type, start_time):
        with self.store._conn:
            self.store._conn.execute(
                "INSERT INTO sessions (book_file, book_hash, start_time, end_time, duration_seconds, "
                "position_type, start_position, end_position) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (self.doc.file, self.book_hash, start_time, start_time + 300, 300, position_type,
                 "/body/p[1]", "/body/p[4]"),
            )

    def test_legacy_xpointer_rows_read_as_anchor(self):
        self.insert_raw("xpointer", 1000)
        session = self.store.get_unsynced_sessions_for_book(self.book_hash)[0]
        self.assertEqual(session.position_type, PositionType.ANCHOR)
        self.assertEqual(session.end_position, "/body/p[4]")

    def test_unreadable_row_does_not_hide_the_others(self):
        self.insert_raw("scroll", 1000)
        self.insert_raw("page", 2000)
        sessions = self.store.get_unsynced_sessions_for_book(self.book_hash)
        self.assertEqual([s.start_time for s in sessions], [2000])

    def test_closed_store_raises_local_storage_error(self):
        self.store.close()
        with self.assertRaises(LocalStorageError):
            self.store.mark_sessions_synced([1])
        self.store.open()


if __name__ == '__main__':
    unittest.main()
