import logging
import sqlite3
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Annotated, List, Optional

from fastapi import Depends, FastAPI, File, Query, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from pydantic import BaseModel, Field, StringConstraints

from library_api.accounts import Accounts
from library_api.auth import get_current_user_id
from library_api.config import settings
from library_api.database import check_connection
from library_api.errors import LibraryError, NotFound, UpstreamFailure
from library_api.library import Library
from library_api.services.google_books_service import GoogleBooksService
from library_api.services.http_client import cleanup_http_client, get_http_client
from library_api.services.upload_store import UploadStore
from library_api.sweeper import OverdueSweeper
from library_api.timestamps import to_iso, utcnow

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

# The store is acquired in the lifespan, not at import time.
library = Library(initialize=False)
accounts = Accounts(library)
google_books = GoogleBooksService()
upload_store = UploadStore()
sweeper = OverdueSweeper(library)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Phase 1: acquire the persistence layer
    library.open()
    await get_http_client()
    # Phase 2: accept requests, then start background work
    app.state.ready = True
    if settings.enable_overdue_sweep:
        sweeper.start()
    try:
        yield
    finally:
        app.state.ready = False
        await sweeper.stop()
        await cleanup_http_client()


app = FastAPI(title=settings.app_name, version=settings.app_version, debug=settings.debug, lifespan=lifespan)
app.state.ready = False

# --- CORS ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Error handlers ---
@app.exception_handler(UpstreamFailure)
async def upstream_failure_handler(request: Request, exc: UpstreamFailure):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message, "details": exc.details})


@app.exception_handler(LibraryError)
async def library_error_handler(request: Request, exc: LibraryError):
    return JSONResponse(status_code=exc.status_code, content={"message": exc.message})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    problems = []
    for err in exc.errors():
        field = ".".join(str(part) for part in err.get("loc", ())[1:]) or "body"
        if err.get("type") == "missing":
            problems.append(f"{field} is required")
        else:
            problems.append(f"{field}: {err.get('msg')}")
    return JSONResponse(status_code=400, content={"message": "; ".join(problems) or "Invalid request"})


@app.exception_handler(sqlite3.Error)
async def database_error_handler(request: Request, exc: sqlite3.Error):
    logger.exception(f"Database error on {request.method} {request.url.path}", exc_info=exc)
    return JSONResponse(status_code=500, content={"message": "Server error"})


# --- Models ---
# Surrounding whitespace is dropped before the length check
RequiredText = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class BookModel(BaseModel):
    id: str
    title: str
    author: str
    description: str
    publication_year: int
    genre: List[str] = []
    genre0: str = ""
    genre1: str = ""
    cover_image: str = ""
    isAvailable: bool = True
    created_at: Optional[str] = None


class BookCreateModel(BaseModel):
    title: RequiredText
    author: RequiredText
    description: str
    publication_year: int
    genre: List[str] = Field(default_factory=list, max_length=2)
    cover_image: Optional[str] = None


class BookUpdateModel(BaseModel):
    title: Optional[RequiredText] = None
    author: Optional[RequiredText] = None
    description: Optional[str] = None
    publication_year: Optional[int] = None
    genre: Optional[List[str]] = Field(default=None, max_length=2)
    cover_image: Optional[str] = None


class LoanModel(BaseModel):
    id: str
    book: str
    user: str
    borrowedDate: str
    dueDate: str
    returnedDate: Optional[str] = None
    status: str


class BookDetailModel(BookModel):
    activeLoan: Optional[LoanModel] = None


class LoanReceiptModel(BaseModel):
    """Borrow/return result: the loan and the book it changed"""
    message: str
    loan: LoanModel
    book: BookModel


class BorrowedLoanModel(BaseModel):
    """An outstanding loan with its book joined in"""
    id: str
    book: Optional[BookModel] = None
    user: str
    borrowedDate: str
    dueDate: str
    returnedDate: Optional[str] = None
    status: str


class RegisterModel(BaseModel):
    name: RequiredText
    email: Annotated[str, StringConstraints(strip_whitespace=True, min_length=3)]
    password: str = Field(min_length=1)


class LoginModel(BaseModel):
    email: str
    password: str


class TokenModel(BaseModel):
    token: str


class UserModel(BaseModel):
    id: str
    name: str
    email: str
    profileImage: Optional[str] = None
    borrowedBooks: List[str] = []
    created_at: Optional[str] = None


class ProfileUpdateModel(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    profileImage: Optional[str] = None


class UploadResponseModel(BaseModel):
    url: str
    message: str


# --- Service endpoints ---
@app.get("/")
def read_root():
    return {"message": settings.app_name}


@app.get("/health")
def health():
    """Liveness: the process answers and reports whether the database is reachable."""
    return {
        "status": "healthy",
        "timestamp": to_iso(utcnow()),
        "db": check_connection(),
        "sweeper": sweeper.running,
    }


@app.get("/ready")
def ready(request: Request):
    """Readiness: 503 until the lifespan has opened the store."""
    if not getattr(request.app.state, "ready", False):
        return JSONResponse(status_code=503, content={"status": "starting"})
    return {"status": "ready"}


# --- Auth ---
@app.post("/auth/register", response_model=TokenModel, status_code=201)
def register(payload: RegisterModel):
    _, token = accounts.register(payload.name, payload.email, payload.password)
    return TokenModel(token=token)


@app.post("/auth/login", response_model=TokenModel)
def login(payload: LoginModel):
    _, token = accounts.login(payload.email, payload.password)
    return TokenModel(token=token)


@app.get("/auth/me", response_model=UserModel)
def get_me(user_id: str = Depends(get_current_user_id)):
    return accounts.get_profile(user_id).to_dict()


@app.put("/auth/me", response_model=UserModel)
def update_me(payload: ProfileUpdateModel, user_id: str = Depends(get_current_user_id)):
    user = accounts.update_profile(
        user_id,
        name=payload.name,
        email=payload.email,
        profile_image=payload.profileImage,
    )
    return user.to_dict()


# --- Books ---
@app.get("/books", response_model=List[BookModel])
def list_books(available: Optional[bool] = Query(None, description="Only available (true) or borrowed (false) books")):
    return [book.to_dict() for book in library.list_books(available=available)]


@app.get("/books/borrowed", response_model=List[BorrowedLoanModel])
def list_borrowed(user_id: str = Depends(get_current_user_id)):
    """The caller's outstanding loans, soonest due first."""
    items = []
    for loan, book in library.list_borrowed(user_id):
        item = loan.to_dict()
        item["book"] = book.to_dict() if book else None
        items.append(item)
    return items


@app.get("/books/google-books/search")
async def search_google_books(q: Optional[str] = Query(None, description="Search query")):
    books = await google_books.search_books(q)
    return [book.to_dict(include_availability=True) for book in books]


@app.get("/books/google-books/{volume_id}")
async def get_google_book(volume_id: str):
    book = await google_books.get_book(volume_id)
    return book.to_dict()


@app.get("/books/{book_id}", response_model=BookDetailModel)
def get_book(book_id: str):
    return library.get_book_details(book_id)


@app.post("/books", response_model=BookModel, status_code=201)
def create_book(payload: BookCreateModel, user_id: str = Depends(get_current_user_id)):
    book = library.create_book(**payload.model_dump())
    return book.to_dict()


@app.put("/books/{book_id}", response_model=BookModel)
def update_book(book_id: str, payload: BookUpdateModel, user_id: str = Depends(get_current_user_id)):
    book = library.update_book(book_id, **payload.model_dump(exclude_unset=True))
    return book.to_dict()


@app.delete("/books/{book_id}")
def delete_book(book_id: str, user_id: str = Depends(get_current_user_id)):
    library.delete_book(book_id)
    return {"message": "Book removed"}


@app.post("/books/{book_id}/borrow", response_model=LoanReceiptModel)
def borrow_book(book_id: str, user_id: str = Depends(get_current_user_id)):
    loan, book = library.borrow_book(book_id, user_id)
    return {"message": "Book borrowed successfully", "loan": loan.to_dict(), "book": book.to_dict()}


@app.post("/books/{book_id}/return", response_model=LoanReceiptModel)
def return_book(book_id: str, user_id: str = Depends(get_current_user_id)):
    loan, book = library.return_book(book_id, user_id)
    return {"message": "Book returned successfully", "loan": loan.to_dict(), "book": book.to_dict()}


# --- Uploads ---
@app.post("/upload", response_model=UploadResponseModel)
async def upload_image(image: Optional[UploadFile] = File(None), user_id: str = Depends(get_current_user_id)):
    url = await upload_store.save(image)
    return UploadResponseModel(url=url, message="File uploaded successfully")


@app.get("/uploads/{filename}")
def get_upload(filename: str):
    # Only plain names inside the upload directory are served
    if Path(filename).name != filename or filename.startswith("."):
        raise NotFound("File not found")
    path = upload_store.directory / filename
    if not path.is_file():
        raise NotFound("File not found")
    return FileResponse(path, headers={"Cache-Control": "public, max-age=86400"})
