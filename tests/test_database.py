import sqlite3

import pytest

from database import ConnectionPool, PoolTimeoutError, initialize_database


@pytest.fixture
def pool(db_file):
    pool = ConnectionPool(db_file, size=1, timeout=0.1)
    initialize_database(pool)
    yield pool
    pool.close()


def test_tables_created(pool):
    with pool.connection() as conn:
        names = {row["name"] for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")}
    assert {"books", "members", "borrowing"} <= names


def test_initialize_is_idempotent(pool):
    initialize_database(pool)


def test_pool_is_bounded(pool):
    with pool.connection():
        with pytest.raises(PoolTimeoutError):
            with pool.connection():
                pass


def test_connection_released_after_error(pool):
    with pytest.raises(RuntimeError):
        with pool.connection():
            raise RuntimeError("handler failed")

    with pool.connection() as conn:
        assert conn.execute("SELECT 1").fetchone()[0] == 1


def test_transaction_rolls_back_on_error(pool):
    with pytest.raises(RuntimeError):
        with pool.transaction() as conn:
            conn.execute("INSERT INTO books (title) VALUES ('Ghost')")
            raise RuntimeError("abort")

    with pool.connection() as conn:
        assert conn.execute("SELECT COUNT(*) FROM books").fetchone()[0] == 0


def test_transaction_commits(pool):
    with pool.transaction() as conn:
        conn.execute("INSERT INTO books (title) VALUES ('Kept')")

    with pool.connection() as conn:
        assert conn.execute("SELECT title, status FROM books").fetchone()["status"] == "available"


def test_status_constraint(pool):
    with pool.connection() as conn:
        with pytest.raises(sqlite3.IntegrityError):
            conn.execute("INSERT INTO books (title, status) VALUES ('Bad', 'lost')")


def test_one_open_borrowing_per_book(pool):
    with pool.connection() as conn:
        conn.execute("INSERT INTO books (title) VALUES ('Dune')")
        conn.execute("INSERT INTO members (username, password_hash, full_name) VALUES ('a', 'x', 'A')")
        conn.execute("INSERT INTO borrowing (member_id, book_id, borrow_date) VALUES (1, 1, '2024-01-01')")
        with pytest.raises(sqlite3.IntegrityError):
            conn.execute("INSERT INTO borrowing (member_id, book_id, borrow_date) VALUES (1, 1, '2024-01-02')")
        conn.execute("UPDATE borrowing SET return_date = '2024-01-03'")
        conn.execute("INSERT INTO borrowing (member_id, book_id, borrow_date) VALUES (1, 1, '2024-01-04')")


def test_closed_pool_refuses_connections(db_file):
    pool = ConnectionPool(db_file, size=1)
    pool.close()
    with pytest.raises(sqlite3.ProgrammingError):
        with pool.connection():
            pass


class _FailingRollbackConnection:
    in_transaction = True

    def rollback(self):
        raise sqlite3.OperationalError("disk I/O error")

    def close(self):
        pass


def test_connection_released_when_rollback_fails(pool):
    real = pool._pool.get_nowait()
    pool._pool.put(_FailingRollbackConnection())

    with pytest.raises(sqlite3.OperationalError):
        with pool.connection():
            pass

    assert pool._pool.qsize() == 1
    real.close()
