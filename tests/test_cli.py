from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from lending import LendingService, StoreError
from main import app

runner = CliRunner()


@pytest.fixture
def invoke(db_file):
    def _invoke(*args):
        return runner.invoke(app, ["--db", db_file, *args])
    return _invoke


def test_init_db(invoke, db_file):
    result = invoke("init-db")
    assert result.exit_code == 0
    assert "Database ready" in result.stdout


def test_books_empty(invoke):
    result = invoke("books")
    assert result.exit_code == 0
    assert "No books in library." in result.stdout


def test_add_book_and_list(invoke):
    result = invoke("add-book", "Dune", "Herbert", "--cover-url", "url1")
    assert result.exit_code == 0
    assert "Book added: Dune by Herbert" in result.stdout

    result = invoke("books")
    assert result.exit_code == 0
    assert "Dune" in result.stdout
    assert "available" in result.stdout


def test_add_admin_member(invoke, db_file):
    result = invoke("add-member", "root", "Head Librarian", "--password", "pw", "--role", "admin")
    assert result.exit_code == 0
    assert "Member created: root" in result.stdout

    service = LendingService(db_file=db_file)
    try:
        assert service.login("root", "pw")["role"] == "admin"
    finally:
        service.close()


def test_add_member_duplicate(invoke):
    invoke("add-member", "root", "Head Librarian", "--password", "pw")
    result = invoke("add-member", "root", "Someone", "--password", "pw")
    assert result.exit_code == 1
    assert "already taken" in result.stdout


def test_add_member_unknown_role(invoke):
    result = invoke("add-member", "root", "Head Librarian", "--password", "pw", "--role", "wizard")
    assert result.exit_code == 2


def test_members_and_borrowed(invoke, db_file):
    service = LendingService(db_file=db_file)
    try:
        member_id = service.register("alice", "pw", "Alice Liddell")
        book_id = service.add_book("Dune", "Herbert", None).book_id
        service.borrow(member_id, book_id)
    finally:
        service.close()

    result = invoke("members")
    assert result.exit_code == 0
    assert "alice" in result.stdout

    result = invoke("borrowed")
    assert result.exit_code == 0
    assert "Dune" in result.stdout
    assert "Alice Liddell" in result.stdout


def test_borrowed_empty(invoke):
    result = invoke("borrowed")
    assert result.exit_code == 0
    assert "No books are currently borrowed." in result.stdout


@patch("subprocess.run")
def test_serve_command(mock_subprocess_run, invoke):
    result = invoke("serve", "--port", "3001")
    assert result.exit_code == 0
    assert "Starting API on" in result.stdout
    mock_subprocess_run.assert_called_once()
    args = mock_subprocess_run.call_args[0][0]
    assert "uvicorn" in args
    assert "api:app" in args
    assert "3001" in args


def test_show_book(invoke):
    invoke("add-book", "Dune", "Herbert")
    result = invoke("book", "1")
    assert result.exit_code == 0
    assert "Title: Dune" in result.stdout
    assert "Status: available" in result.stdout


def test_show_book_not_found(invoke):
    result = invoke("book", "42")
    assert result.exit_code == 1
    assert "Book with id 42 not found." in result.stdout


def test_run_reports_store_errors(monkeypatch, capsys):
    import main

    def broken():
        raise StoreError("list_books failed")

    monkeypatch.setattr(main, "app", broken)
    with pytest.raises(SystemExit) as exc_info:
        main.run()
    assert exc_info.value.code == 1
    assert "Database error: list_books failed" in capsys.readouterr().out
