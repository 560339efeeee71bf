import logging
import subprocess
import sys
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from config import settings
from lending import ConflictError, LendingService, StoreError
from member import ADMIN_ROLE, USER_ROLE

APP_NAME = "Lending CLI"

console = Console()
app = typer.Typer(help=APP_NAME)

_state = {"db_file": None}


@app.callback()
def _global_options(
    db_file: Optional[str] = typer.Option(None, "--db", help="SQLite database file (defaults to LIBRARY_DB_FILE)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    _state["db_file"] = db_file
    logging.basicConfig(level=logging.DEBUG if verbose else settings.log_level)


def _service() -> LendingService:
    return LendingService(db_file=_state["db_file"] or settings.database_file)


@app.command("init-db")
def cli_init_db():
    """Create the lending tables if they do not exist."""
    service = _service()
    try:
        console.print(f"Database ready: {service.pool.db_file}")
    finally:
        service.close()


@app.command("add-member")
def cli_add_member(
    username: str,
    full_name: str,
    password: str = typer.Option(..., prompt=True, hide_input=True, confirmation_prompt=True),
    role: str = typer.Option(USER_ROLE, "--role", "-r", help=f"{USER_ROLE} or {ADMIN_ROLE}"),
):
    """Create a member account, e.g. the first admin."""
    if role not in (USER_ROLE, ADMIN_ROLE):
        console.print(f"[red]Unknown role: {escape(role)}[/]")
        raise typer.Exit(code=2)
    service = _service()
    try:
        member_id = service.create_member(username, password, full_name, role=role)
        console.print(f"Member created: {escape(username)} (id {member_id}, role {role})")
    except ConflictError:
        console.print(f"Username {escape(username)} is already taken.")
        raise typer.Exit(code=1)
    finally:
        service.close()


@app.command("add-book")
def cli_add_book(title: str, author: str, cover_url: Optional[str] = typer.Option(None, "--cover-url")):
    service = _service()
    try:
        book = service.add_book(title, author, cover_url)
        console.print(f"Book added: {escape(book.title)} by {escape(book.author or '')} (id {book.book_id})")
    finally:
        service.close()


@app.command("books")
def cli_books():
    """List every book with its status."""
    service = _service()
    try:
        books = service.list_books()
    finally:
        service.close()
    if not books:
        console.print("No books in library.")
        return
    table = Table(title="Books", show_lines=True, header_style="bold cyan")
    table.add_column("ID", style="magenta", no_wrap=True)
    table.add_column("Title")
    table.add_column("Author")
    table.add_column("Status")
    for book in books:
        style = "green" if book.is_available else "yellow"
        table.add_row(str(book.book_id), book.title, book.author or "", f"[{style}]{book.status}[/]")
    console.print(table)


@app.command("book")
def cli_book(book_id: int):
    """Show a single book by id."""
    service = _service()
    try:
        book = service.get_book(book_id)
    finally:
        service.close()
    if not book:
        console.print(f"Book with id {book_id} not found.")
        raise typer.Exit(code=1)
    console.print(f"Title: {escape(book.title)}")
    console.print(f"Author: {escape(book.author or '')}")
    console.print(f"Status: {book.status}")


@app.command("members")
def cli_members():
    service = _service()
    try:
        members = service.list_members()
    finally:
        service.close()
    if not members:
        console.print("No members registered.")
        return
    table = Table(title="Members", header_style="bold cyan")
    table.add_column("ID", style="magenta", no_wrap=True)
    table.add_column("Username")
    table.add_column("Full name")
    table.add_column("Role")
    for m in members:
        table.add_row(str(m["member_id"]), m["username"], m["full_name"], m["role"])
    console.print(table)


@app.command("borrowed")
def cli_borrowed():
    """Show every book that is currently out."""
    service = _service()
    try:
        loans = service.list_all_active_borrows()
    finally:
        service.close()
    if not loans:
        console.print("No books are currently borrowed.")
        return
    table = Table(title="Borrowed books", header_style="bold cyan")
    table.add_column("Borrow ID", style="magenta", no_wrap=True)
    table.add_column("Title")
    table.add_column("Borrower")
    table.add_column("Since")
    for loan in loans:
        table.add_row(str(loan["borrow_id"]), loan["title"], loan["full_name"], loan["borrow_date"])
    console.print(table)


@app.command("serve")
def cli_serve(
    host: Optional[str] = typer.Option(None, "--host"),
    port: Optional[int] = typer.Option(None, "--port"),
    reload: bool = typer.Option(False, "--reload", help="Restart on code changes"),
):
    """Start the HTTP API with uvicorn."""
    host = host or settings.api_host
    port = int(port or settings.api_port)
    console.print(f"Starting API on http://{host}:{port}/")
    args = [sys.executable, "-m", "uvicorn", "api:app", "--host", host, "--port", str(port)]
    if reload:
        args.append("--reload")
    try:
        subprocess.run(args)
    except FileNotFoundError:
        console.print("[bold red]Error:[/] `uvicorn` not found. Make sure it is installed.")
        raise typer.Exit(code=1)


def run():
    """Console entry point: report store failures as one line instead of a traceback."""
    try:
        app()
    except StoreError as e:
        console.print(f"[bold red]Database error: {e}[/]")
        sys.exit(1)


if __name__ == "__main__":
    run()
