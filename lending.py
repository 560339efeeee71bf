import logging
import sqlite3
from datetime import datetime, timezone
from functools import wraps
from typing import Any, Dict, List, Optional

from werkzeug.security import check_password_hash, generate_password_hash

from book import AVAILABLE, BORROWED, Book
from config import settings
from database import ConnectionPool, initialize_database
from member import USER_ROLE, Member
from validators import RegistrationValidator

logger = logging.getLogger(__name__)


class LendingError(Exception):
    """Base class for failures reported by the lending service."""


class ValidationError(LendingError):
    pass


class ConflictError(LendingError):
    pass


class BookNotFoundError(LendingError):
    pass


class MemberNotFoundError(LendingError):
    pass


class BookUnavailableError(LendingError):
    pass


class StoreError(LendingError):
    """The store failed; details are logged, never shown to callers."""


def _now() -> str:
    # Fixed-width text timestamps sort chronologically
    return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S.%f")


def store_operation(name: str):
    """Log any sqlite3 failure inside the wrapped operation and re-raise it as StoreError."""
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except sqlite3.Error as exc:
                logger.exception(f"Store failure during {name}")
                raise StoreError(f"{name} failed") from exc
        return wrapper
    return decorator


class LendingService:
    """Books, members and the borrow/return workflow over a pooled SQLite store.

    The service keeps no in-memory copy of any entity: every call reads or
    writes the database through a connection borrowed from the pool for the
    duration of that call.
    """

    def __init__(self, db_file: Optional[str] = None, pool: Optional[ConnectionPool] = None) -> None:
        self.pool = pool or ConnectionPool(db_file or settings.database_file)
        initialize_database(self.pool)

    # ------------------------- Books ------------------------- #
    @store_operation("list_books")
    def list_books(self) -> List[Book]:
        with self.pool.connection() as conn:
            rows = conn.execute("SELECT * FROM books").fetchall()
        return [Book.from_dict(dict(row)) for row in rows]

    @store_operation("get_book")
    def get_book(self, book_id: int) -> Optional[Book]:
        with self.pool.connection() as conn:
            row = conn.execute("SELECT * FROM books WHERE book_id = ?", (book_id,)).fetchone()
        return Book.from_dict(dict(row)) if row else None

    @store_operation("add_book")
    def add_book(self, title: str, author: Optional[str] = None, cover_url: Optional[str] = None) -> Book:
        """Insert a new book; new books always start out available."""
        with self.pool.connection() as conn:
            cursor = conn.execute(
                "INSERT INTO books (title, author, cover_url, status) VALUES (?, ?, ?, ?)",
                (title, author, cover_url, AVAILABLE),
            )
            book_id = cursor.lastrowid
        logger.info(f"Book added: id={book_id}, title={title!r}")
        return Book(title=title, author=author, cover_url=cover_url, book_id=book_id, status=AVAILABLE)

    # ------------------------- Members ------------------------- #
    @store_operation("login")
    def login(self, username: str, password: str) -> Optional[Dict[str, Any]]:
        """Return ``{id, name, role}`` for matching credentials, otherwise None."""
        if not username or not password:
            return None
        with self.pool.connection() as conn:
            row = conn.execute("SELECT * FROM members WHERE username = ?", (username,)).fetchone()
        if row is None:
            logger.info(f"Login failed: unknown username {username!r}")
            return None
        member = Member.from_dict(dict(row))
        if not check_password_hash(member.password_hash, password):
            logger.info(f"Login failed: wrong password for {username!r}")
            return None
        return member.to_login_dict()

    def register(self, username: str, password: str, full_name: str) -> int:
        missing = RegistrationValidator.validate(username, password, full_name)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")
        return self.create_member(username, password, full_name, role=USER_ROLE)

    @store_operation("create_member")
    def create_member(self, username: str, password: str, full_name: str, role: str = USER_ROLE) -> int:
        """Insert a member with a hashed password and return its id.

        Username uniqueness is left to the UNIQUE constraint so that two
        concurrent registrations cannot both succeed.
        """
        try:
            with self.pool.connection() as conn:
                cursor = conn.execute(
                    "INSERT INTO members (username, password_hash, full_name, role) VALUES (?, ?, ?, ?)",
                    (username, generate_password_hash(password), full_name, role),
                )
                member_id = cursor.lastrowid
        except sqlite3.IntegrityError as exc:
            raise ConflictError(f"Username {username!r} is already taken") from exc
        logger.info(f"Member created: id={member_id}, username={username!r}, role={role}")
        return member_id

    @store_operation("list_members")
    def list_members(self) -> List[Dict[str, Any]]:
        with self.pool.connection() as conn:
            rows = conn.execute(
                "SELECT member_id, username, full_name, role, created_at FROM members ORDER BY member_id DESC"
            ).fetchall()
        return [Member.from_dict(dict(row)).to_dict() for row in rows]

    # ------------------------- Borrow / return ------------------------- #
    @store_operation("borrow")
    def borrow(self, member_id: int, book_id: int) -> int:
        """Lend ``book_id`` to ``member_id`` and return the new borrow id.

        The status flip is a conditional update so only one of several
        concurrent borrowers can take an available book.
        """
        with self.pool.transaction() as conn:
            member = conn.execute("SELECT 1 FROM members WHERE member_id = ?", (member_id,)).fetchone()
            if member is None:
                raise MemberNotFoundError(f"Member {member_id} not found")

            cursor = conn.execute(
                "UPDATE books SET status = ? WHERE book_id = ? AND status = ?",
                (BORROWED, book_id, AVAILABLE),
            )
            if cursor.rowcount == 0:
                exists = conn.execute("SELECT 1 FROM books WHERE book_id = ?", (book_id,)).fetchone()
                if exists is None:
                    raise BookNotFoundError(f"Book {book_id} not found")
                raise BookUnavailableError(f"Book {book_id} is already borrowed")

            cursor = conn.execute(
                "INSERT INTO borrowing (member_id, book_id, borrow_date) VALUES (?, ?, ?)",
                (member_id, book_id, _now()),
            )
            borrow_id = cursor.lastrowid
        logger.info(f"Book borrowed: borrow_id={borrow_id}, member={member_id}, book={book_id}")
        return borrow_id

    @store_operation("return_book")
    def return_book(self, member_id: int, book_id: int) -> int:
        """Close the member's open borrowing of the book and mark it available.

        Returns the number of borrowings closed. Zero is not an error; the book
        is still marked available unless someone else holds it open.
        """
        with self.pool.transaction() as conn:
            cursor = conn.execute(
                "UPDATE borrowing SET return_date = ? "
                "WHERE member_id = ? AND book_id = ? AND return_date IS NULL",
                (_now(), member_id, book_id),
            )
            closed = cursor.rowcount
            conn.execute(
                "UPDATE books SET status = ? WHERE book_id = ? AND NOT EXISTS "
                "(SELECT 1 FROM borrowing WHERE book_id = ? AND return_date IS NULL)",
                (AVAILABLE, book_id, book_id),
            )
        if closed == 0:
            logger.warning(f"Return with no open borrowing: member={member_id}, book={book_id}")
        else:
            logger.info(f"Book returned: member={member_id}, book={book_id}")
        return closed

    @store_operation("list_active_borrows")
    def list_active_borrows(self, member_id: int) -> List[Dict[str, Any]]:
        with self.pool.connection() as conn:
            rows = conn.execute(
                """
                SELECT b.book_id, b.title, b.author, b.cover_url, br.borrow_date
                FROM borrowing br
                JOIN books b ON br.book_id = b.book_id
                WHERE br.member_id = ? AND br.return_date IS NULL
                """,
                (member_id,),
            ).fetchall()
        return [dict(row) for row in rows]

    @store_operation("list_history")
    def list_history(self, member_id: int) -> List[Dict[str, Any]]:
        """Every borrowing of the member, most recent first."""
        with self.pool.connection() as conn:
            rows = conn.execute(
                """
                SELECT b.title, br.borrow_date, br.return_date
                FROM borrowing br
                JOIN books b ON br.book_id = b.book_id
                WHERE br.member_id = ?
                ORDER BY br.borrow_date DESC, br.borrow_id DESC
                """,
                (member_id,),
            ).fetchall()
        return [dict(row) for row in rows]

    @store_operation("list_all_active_borrows")
    def list_all_active_borrows(self) -> List[Dict[str, Any]]:
        """Who has what: every open borrowing with its book and member."""
        with self.pool.connection() as conn:
            rows = conn.execute(
                """
                SELECT br.borrow_id, b.title, b.cover_url, m.full_name, br.borrow_date
                FROM borrowing br
                JOIN books b ON br.book_id = b.book_id
                JOIN members m ON br.member_id = m.member_id
                WHERE br.return_date IS NULL
                ORDER BY br.borrow_date DESC, br.borrow_id DESC
                """
            ).fetchall()
        return [dict(row) for row in rows]

    # ------------------------- Utilities ------------------------- #
    @store_operation("ping")
    def ping(self) -> bool:
        with self.pool.connection() as conn:
            conn.execute("SELECT 1")
        return True

    def close(self) -> None:
        self.pool.close()
