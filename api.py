import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request, Security
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import APIKeyHeader
from pydantic import BaseModel, Field

from config import settings
from lending import (
    BookNotFoundError,
    BookUnavailableError,
    ConflictError,
    LendingService,
    MemberNotFoundError,
    StoreError,
    ValidationError,
)

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

lending = LendingService()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"{settings.app_name} {settings.app_version} starting, db={lending.pool.db_file}")
    try:
        yield
    finally:
        lending.close()


app = FastAPI(title=settings.app_name, version=settings.app_version, debug=settings.debug, lifespan=lifespan)

# --- CORS ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Security ---
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


def get_api_key(api_key: Optional[str] = Security(api_key_header)) -> Optional[str]:
    """Gate for catalogue changes; a no-op unless REQUIRE_API_KEY is enabled."""
    if not settings.require_api_key:
        return api_key
    if settings.api_key and api_key == settings.api_key:
        return api_key
    raise HTTPException(status_code=403, detail="Could not validate credentials")


# --- Models ---
class LoginModel(BaseModel):
    username: Optional[str] = None
    password: Optional[str] = None


class BorrowModel(BaseModel):
    member_id: int
    book_id: int


class RegisterModel(BaseModel):
    username: Optional[str] = None
    password: Optional[str] = None
    full_name: Optional[str] = Field(None, alias="fullName")


class BookCreateModel(BaseModel):
    title: str
    author: Optional[str] = None
    cover_url: Optional[str] = None


class BookModel(BaseModel):
    book_id: int
    title: str
    author: Optional[str] = None
    cover_url: Optional[str] = None
    status: str
    created_at: Optional[str] = None


class ActiveBorrowModel(BaseModel):
    book_id: int
    title: str
    author: Optional[str] = None
    cover_url: Optional[str] = None
    borrow_date: str


class HistoryModel(BaseModel):
    title: str
    borrow_date: str
    return_date: Optional[str] = None


class MemberModel(BaseModel):
    member_id: int
    username: str
    full_name: str
    role: str
    created_at: Optional[str] = None


class LoanModel(BaseModel):
    borrow_id: int
    title: str
    cover_url: Optional[str] = None
    full_name: str
    borrow_date: str


# --- Helpers ---
def _error(message: str, status_code: int = 500) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def _failure(message: str, status_code: int) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "message": message})


# --- Health ---
@app.get("/health")
def health():
    db_ok = True
    try:
        lending.ping()
    except StoreError:
        db_ok = False
    return {
        "status": "healthy" if db_ok else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "db": db_ok,
    }


# --- Books ---
@app.get("/api/books", response_model=List[BookModel])
def list_books():
    try:
        return [book.to_dict() for book in lending.list_books()]
    except StoreError:
        return _error("Failed to fetch books")


@app.post("/api/books", dependencies=[Depends(get_api_key)])
def add_book(payload: BookCreateModel):
    try:
        lending.add_book(payload.title, payload.author, payload.cover_url)
    except StoreError:
        return _error("Failed to add book")
    return {"success": True, "message": "Book added"}


# --- Members ---
@app.post("/api/login")
def login(payload: LoginModel):
    try:
        user = lending.login(payload.username, payload.password)
    except StoreError:
        return _error("Login Error")
    if user is None:
        return _failure("Invalid username or password", 401)
    return {"success": True, "user": user}


@app.post("/api/register")
def register(payload: RegisterModel):
    try:
        lending.register(payload.username, payload.password, payload.full_name)
    except ValidationError:
        return _failure("Please fill in all fields", 400)
    except ConflictError:
        return _failure("This username is already taken", 400)
    except StoreError:
        return _failure("Registration failed", 500)
    return {"success": True, "message": "Registration successful"}


@app.get("/api/members", response_model=List[MemberModel])
def list_members():
    try:
        return lending.list_members()
    except StoreError:
        return _error("Failed to fetch members")


# --- Borrowing ---
@app.post("/api/borrow")
def borrow(payload: BorrowModel):
    try:
        lending.borrow(payload.member_id, payload.book_id)
    except (BookNotFoundError, MemberNotFoundError) as e:
        return _failure(str(e), 404)
    except BookUnavailableError as e:
        return _failure(str(e), 409)
    except StoreError:
        return _error("Borrow failed")
    return {"success": True, "message": "Book borrowed"}


@app.post("/api/return")
def return_book(payload: BorrowModel):
    try:
        lending.return_book(payload.member_id, payload.book_id)
    except StoreError:
        return _error("Return failed")
    return {"success": True, "message": "Book returned"}


@app.get("/api/borrowed/{member_id}", response_model=List[ActiveBorrowModel])
def list_active_borrows(member_id: int):
    try:
        return lending.list_active_borrows(member_id)
    except StoreError:
        return _error("Failed to fetch borrowed books")


@app.get("/api/history/{member_id}", response_model=List[HistoryModel])
def list_history(member_id: int):
    try:
        return lending.list_history(member_id)
    except StoreError:
        return _error("Failed to fetch history")


@app.get("/api/borrowed-all", response_model=List[LoanModel])
def list_all_active_borrows():
    try:
        return lending.list_all_active_borrows()
    except StoreError:
        return _error("Failed to fetch borrowed books")


# --- Error Handling ---
@app.exception_handler(Exception)
def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return _error("Internal Server Error")
