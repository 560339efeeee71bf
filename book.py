from __future__ import annotations

AVAILABLE = "available"
BORROWED = "borrowed"


class Book:
    """A single book in the lending catalogue."""

    def __init__(self, title: str, author: str | None = None, cover_url: str | None = None,
                 book_id: int | None = None, status: str = AVAILABLE, created_at: str | None = None) -> None:
        self.book_id = book_id
        self.title = title
        self.author = author
        self.cover_url = cover_url
        self.status = status
        self.created_at = created_at

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.title} by {self.author} [{self.status}]"

    @property
    def is_available(self) -> bool:
        return self.status == AVAILABLE

    def to_dict(self) -> dict:
        return {
            "book_id": self.book_id,
            "title": self.title,
            "author": self.author,
            "cover_url": self.cover_url,
            "status": self.status,
            "created_at": self.created_at,
        }

    @staticmethod
    def from_dict(data: dict) -> "Book":
        return Book(
            title=data["title"],
            author=data.get("author"),
            cover_url=data.get("cover_url"),
            book_id=data.get("book_id"),
            status=data.get("status") or AVAILABLE,
            created_at=data.get("created_at"),
        )
