import json
import logging
import sqlite3
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import library_api.database as database
from library_api.book import Book
from library_api.database import get_db_connection, initialize_database
from library_api.errors import BadRequest, Conflict, Forbidden, NotFound, ServerError
from library_api.loan import ACTIVE, OUTSTANDING_STATUSES, OVERDUE, RETURNED, Loan
from library_api.timestamps import to_iso, utcnow

logger = logging.getLogger(__name__)

_BOOK_COLUMNS = """
    id, title, author, description, publication_year, genre,
    cover_image, is_available, created_at
"""

_LOAN_COLUMNS = "id, book_id, user_id, borrowed_date, due_date, returned_date, status"

_OUTSTANDING = "status IN ({})".format(", ".join(f"'{status}'" for status in OUTSTANDING_STATUSES))

_UPDATABLE_BOOK_FIELDS = ("title", "author", "description", "publication_year", "genre", "cover_image")


def new_id() -> str:
    return uuid.uuid4().hex


class Library:
    """Manages the book catalog and the loan lifecycle."""

    def __init__(self, db_file: Optional[str] = None, initialize: bool = True) -> None:
        # Callers (mostly tests) may point the module-level helpers at another file.
        if db_file:
            database.DATABASE_FILE = db_file
        if initialize:
            self.open()

    def open(self) -> None:
        """Acquire the store: make sure the schema exists."""
        initialize_database()

    # ------------------------- Books ------------------------- #
    def create_book(self, title: str, author: str, description: str, publication_year: int,
                    genre: Optional[List[str]] = None, cover_image: Optional[str] = None) -> Book:
        """Insert a new, available book and return it."""
        if not (title or "").strip() or not (author or "").strip():
            raise BadRequest("Title and author are required")
        book = Book(
            id=new_id(),
            title=title,
            author=author,
            description=description,
            publication_year=publication_year,
            genre=genre,
            cover_image=cover_image,
            is_available=True,
            created_at=to_iso(utcnow()),
        )
        conn = get_db_connection()
        try:
            conn.execute(
                f"INSERT INTO books ({_BOOK_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    book.id, book.title, book.author, book.description, book.publication_year,
                    json.dumps(book.genre), book.cover_image, 1, book.created_at,
                ),
            )
            conn.commit()
        finally:
            conn.close()
        logger.info(f"Book created: {book.id} ({book.title})")
        return book

    def find_book(self, book_id: str) -> Optional[Book]:
        conn = get_db_connection()
        try:
            return self._fetch_book(conn, book_id)
        finally:
            conn.close()

    def get_book(self, book_id: str) -> Book:
        book = self.find_book(book_id)
        if not book:
            raise NotFound("Book not found")
        return book

    def get_book_details(self, book_id: str) -> Dict[str, Any]:
        """Book data plus the loan that currently holds it, if any."""
        conn = get_db_connection()
        try:
            book = self._fetch_book(conn, book_id)
            if not book:
                raise NotFound("Book not found")
            loan = None if book.is_available else self._fetch_outstanding_loan(conn, book_id)
        finally:
            conn.close()

        details = book.to_dict()
        details["activeLoan"] = loan.to_dict() if loan else None
        return details

    def list_books(self, available: Optional[bool] = None) -> List[Book]:
        """List books ordered by title, optionally filtered on availability."""
        query = f"SELECT {_BOOK_COLUMNS} FROM books"
        params: Tuple[Any, ...] = ()
        if available is not None:
            query += " WHERE is_available = ?"
            params = (1 if available else 0,)
        query += " ORDER BY title"

        conn = get_db_connection()
        try:
            rows = conn.execute(query, params).fetchall()
            return [Book.from_row(dict(row)) for row in rows]
        finally:
            conn.close()

    def update_book(self, book_id: str, **fields: Any) -> Book:
        """Update the given catalog fields. Availability is not writable here."""
        updates = {k: v for k, v in fields.items() if k in _UPDATABLE_BOOK_FIELDS and v is not None}
        if "genre" in updates:
            updates["genre"] = json.dumps([g for g in updates["genre"] if g][: Book.MAX_GENRES])
        for key in ("title", "author"):
            if key in updates:
                updates[key] = updates[key].strip()
                if not updates[key]:
                    raise BadRequest(f"{key.capitalize()} cannot be blank")

        conn = get_db_connection()
        try:
            if updates:
                set_clause = ", ".join(f"{name} = ?" for name in updates)
                cursor = conn.execute(
                    f"UPDATE books SET {set_clause} WHERE id = ?",
                    list(updates.values()) + [book_id],
                )
                conn.commit()
                if cursor.rowcount == 0:
                    raise NotFound("Book not found")
            book = self._fetch_book(conn, book_id)
        finally:
            conn.close()

        if not book:
            raise NotFound("Book not found")
        return book

    def delete_book(self, book_id: str) -> None:
        """Remove a book. Loans referencing it are left in place."""
        conn = get_db_connection()
        try:
            outstanding = self._fetch_outstanding_loan(conn, book_id)
            cursor = conn.execute("DELETE FROM books WHERE id = ?", (book_id,))
            conn.commit()
            if cursor.rowcount == 0:
                raise NotFound("Book not found")
        finally:
            conn.close()

        if outstanding:
            logger.warning(f"Deleted book {book_id} while loan {outstanding.id} still references it")
        logger.info(f"Book deleted: {book_id}")

    # ------------------------- Loans ------------------------- #
    def borrow_book(self, book_id: str, user_id: str, now: Optional[datetime] = None) -> Tuple[Loan, Book]:
        """Lend an available book to a user.

        The availability flip is a conditional update, so of two concurrent
        borrowers only one sees a changed row; the other gets ``Conflict``.
        The flip and the loan insert share one transaction.
        """
        now = now or utcnow()
        conn = get_db_connection()
        try:
            book = self._fetch_book(conn, book_id)
            if not book:
                raise NotFound("Book not found")
            if not self._user_exists(conn, user_id):
                raise NotFound("User not found")
            if not book.is_available:
                raise Conflict("Book is already borrowed")

            cursor = conn.execute(
                "UPDATE books SET is_available = 0 WHERE id = ? AND is_available = 1",
                (book_id,),
            )
            if cursor.rowcount == 0:
                conn.rollback()
                raise Conflict("Book is already borrowed")

            loan = Loan.open(new_id(), book_id, user_id, now)
            try:
                conn.execute(
                    f"INSERT INTO loans ({_LOAN_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?)",
                    (
                        loan.id, loan.book_id, loan.user_id, to_iso(loan.borrowed_date),
                        to_iso(loan.due_date), None, loan.status,
                    ),
                )
                conn.commit()
            except sqlite3.Error as e:
                conn.rollback()
                logger.error(
                    f"Partial borrow rolled back: book {book_id} was flipped unavailable "
                    f"but the loan for user {user_id} could not be written: {e}"
                )
                raise ServerError("Server error") from e
        finally:
            conn.close()

        book.is_available = False
        logger.info(f"Book {book_id} borrowed by user {user_id}, due {to_iso(loan.due_date)}")
        return loan, book

    def return_book(self, book_id: str, user_id: str, now: Optional[datetime] = None) -> Tuple[Loan, Book]:
        """Close the caller's outstanding loan on a book and make it available.

        Checks run in a fixed order: the book exists, the book is currently
        borrowed, and only then that the caller is the borrower.
        """
        now = now or utcnow()
        conn = get_db_connection()
        try:
            book = self._fetch_book(conn, book_id)
            if not book:
                raise NotFound("Book not found")

            loan = self._fetch_outstanding_loan(conn, book_id)
            if book.is_available or loan is None:
                if not book.is_available:
                    logger.warning(f"Book {book_id} is marked unavailable without an outstanding loan")
                raise NotFound("Book is not borrowed")

            if loan.user_id != user_id:
                raise Forbidden("Not authorized to return this book")

            returned_at = max(now, loan.borrowed_date)
            cursor = conn.execute(
                f"UPDATE loans SET status = ?, returned_date = ? WHERE id = ? AND {_OUTSTANDING}",
                (RETURNED, to_iso(returned_at), loan.id),
            )
            if cursor.rowcount == 0:
                # Another request closed it between the read and the write.
                conn.rollback()
                raise NotFound("Book is not borrowed")

            try:
                conn.execute("UPDATE books SET is_available = 1 WHERE id = ?", (book_id,))
                conn.commit()
            except sqlite3.Error as e:
                conn.rollback()
                logger.error(
                    f"Partial return rolled back: loan {loan.id} was closed "
                    f"but book {book_id} could not be made available: {e}"
                )
                raise ServerError("Server error") from e
        finally:
            conn.close()

        loan.status = RETURNED
        loan.returned_date = returned_at
        book.is_available = True
        logger.info(f"Book {book_id} returned by user {user_id}")
        return loan, book

    def list_borrowed(self, user_id: str) -> List[Tuple[Loan, Optional[Book]]]:
        """The user's outstanding loans with their books, soonest due first.

        The book is ``None`` when it was deleted while on loan.
        """
        conn = get_db_connection()
        try:
            rows = conn.execute(
                f"SELECT {_LOAN_COLUMNS} FROM loans WHERE user_id = ? AND {_OUTSTANDING} "
                "ORDER BY due_date ASC",
                (user_id,),
            ).fetchall()
            loans = [Loan.from_row(dict(row)) for row in rows]
            return [(loan, self._fetch_book(conn, loan.book_id)) for loan in loans]
        finally:
            conn.close()

    def borrowed_book_ids(self, user_id: str) -> List[str]:
        """Ids of the books a user currently holds, in borrow order."""
        conn = get_db_connection()
        try:
            rows = conn.execute(
                f"SELECT book_id FROM loans WHERE user_id = ? AND {_OUTSTANDING} ORDER BY borrowed_date",
                (user_id,),
            ).fetchall()
            return [row["book_id"] for row in rows]
        finally:
            conn.close()

    def find_outstanding_loan(self, book_id: str) -> Optional[Loan]:
        conn = get_db_connection()
        try:
            return self._fetch_outstanding_loan(conn, book_id)
        finally:
            conn.close()

    def list_loans(self, status: Optional[str] = None) -> List[Loan]:
        query = f"SELECT {_LOAN_COLUMNS} FROM loans"
        params: Tuple[Any, ...] = ()
        if status:
            query += " WHERE status = ?"
            params = (status,)
        query += " ORDER BY due_date ASC"

        conn = get_db_connection()
        try:
            rows = conn.execute(query, params).fetchall()
            return [Loan.from_row(dict(row)) for row in rows]
        finally:
            conn.close()

    def list_overdue_loans(self) -> List[Loan]:
        return self.list_loans(status=OVERDUE)

    def mark_overdue_loans(self, now: Optional[datetime] = None) -> int:
        """Flip active loans whose due date has passed to overdue.

        The status predicate is part of the write, so a loan returned
        concurrently is never overwritten. Books and users are untouched.
        Returns the number of loans changed.
        """
        now = now or utcnow()
        conn = get_db_connection()
        try:
            cursor = conn.execute(
                "UPDATE loans SET status = ? WHERE status = ? AND due_date < ?",
                (OVERDUE, ACTIVE, to_iso(now)),
            )
            conn.commit()
            updated = cursor.rowcount
        finally:
            conn.close()

        logger.info(f"Updated {updated} overdue loans")
        return updated

    # ------------------------- Persistence helpers ------------------------- #
    @staticmethod
    def _fetch_book(conn: sqlite3.Connection, book_id: str) -> Optional[Book]:
        row = conn.execute(f"SELECT {_BOOK_COLUMNS} FROM books WHERE id = ?", (book_id,)).fetchone()
        return Book.from_row(dict(row)) if row else None

    @staticmethod
    def _fetch_outstanding_loan(conn: sqlite3.Connection, book_id: str) -> Optional[Loan]:
        row = conn.execute(
            f"SELECT {_LOAN_COLUMNS} FROM loans WHERE book_id = ? AND {_OUTSTANDING} "
            "ORDER BY borrowed_date DESC LIMIT 1",
            (book_id,),
        ).fetchone()
        return Loan.from_row(dict(row)) if row else None

    @staticmethod
    def _user_exists(conn: sqlite3.Connection, user_id: str) -> bool:
        return conn.execute("SELECT 1 FROM users WHERE id = ?", (user_id,)).fetchone() is not None
