import logging
import queue
import sqlite3
from contextlib import contextmanager
from typing import Iterator, Optional

from config import settings

logger = logging.getLogger(__name__)


class PoolTimeoutError(sqlite3.OperationalError):
    """Raised when no pooled connection becomes free within the timeout."""


def _open_connection(db_file: str) -> sqlite3.Connection:
    # isolation_level=None: autocommit, transactions are opened explicitly with BEGIN
    conn = sqlite3.connect(db_file, check_same_thread=False, isolation_level=None)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    conn.execute("PRAGMA foreign_keys=ON;")
    conn.execute(f"PRAGMA busy_timeout={int(settings.database_busy_timeout_ms)};")
    return conn


class ConnectionPool:
    """Fixed-size pool of SQLite connections.

    Connections are created up front and handed out through :meth:`connection`,
    which always puts them back, including on error paths. :meth:`transaction`
    wraps a pooled connection in ``BEGIN IMMEDIATE`` ... ``COMMIT`` and rolls
    back on any exception.
    """

    def __init__(self, db_file: str, size: Optional[int] = None, timeout: Optional[float] = None) -> None:
        self.db_file = db_file
        self.size = size or settings.database_pool_size
        self.timeout = settings.database_pool_timeout if timeout is None else timeout
        self._pool: "queue.Queue[sqlite3.Connection]" = queue.Queue(maxsize=self.size)
        self._closed = False
        for _ in range(self.size):
            self._pool.put(_open_connection(db_file))
        logger.info(f"Connection pool ready: file={db_file}, size={self.size}")

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        if self._closed:
            raise sqlite3.ProgrammingError("Connection pool is closed")
        try:
            conn = self._pool.get(timeout=self.timeout)
        except queue.Empty as exc:
            raise PoolTimeoutError(f"No free connection after {self.timeout}s") from exc
        try:
            yield conn
        finally:
            try:
                if conn.in_transaction:
                    conn.rollback()
            finally:
                if self._closed:
                    conn.close()
                else:
                    self._pool.put(conn)

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        with self.connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.rollback()
                raise
            else:
                conn.commit()

    def close(self) -> None:
        self._closed = True
        while True:
            try:
                conn = self._pool.get_nowait()
            except queue.Empty:
                break
            conn.close()


def create_tables(pool: ConnectionPool) -> None:
    """Create the lending schema if it does not exist yet."""
    with pool.connection() as conn:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS books (
                book_id INTEGER PRIMARY KEY AUTOINCREMENT,
                title TEXT NOT NULL,
                author TEXT,
                cover_url TEXT,
                status TEXT NOT NULL DEFAULT 'available'
                    CHECK(status IN ('available', 'borrowed')),
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS members (
                member_id INTEGER PRIMARY KEY AUTOINCREMENT,
                username TEXT NOT NULL UNIQUE,
                password_hash TEXT NOT NULL,
                full_name TEXT NOT NULL,
                role TEXT NOT NULL DEFAULT 'user',
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS borrowing (
                borrow_id INTEGER PRIMARY KEY AUTOINCREMENT,
                member_id INTEGER NOT NULL,
                book_id INTEGER NOT NULL,
                borrow_date TIMESTAMP NOT NULL,
                return_date TIMESTAMP,
                FOREIGN KEY (member_id) REFERENCES members(member_id),
                FOREIGN KEY (book_id) REFERENCES books(book_id)
            );

            -- At most one open borrowing per book
            CREATE UNIQUE INDEX IF NOT EXISTS idx_borrowing_open_book
                ON borrowing(book_id) WHERE return_date IS NULL;
            CREATE INDEX IF NOT EXISTS idx_borrowing_member ON borrowing(member_id);
            CREATE INDEX IF NOT EXISTS idx_borrowing_borrow_date ON borrowing(borrow_date DESC);
        """)


def initialize_database(pool: ConnectionPool) -> None:
    """Initialize the database behind ``pool``."""
    create_tables(pool)
