import logging
import sqlite3

from library_api.config import settings

logger = logging.getLogger(__name__)


def resolve_database_file(url: str) -> str:
    """Turn a ``sqlite:///path`` connection string (or a bare path) into a file path."""
    if url.startswith("sqlite:///"):
        path = url[len("sqlite:///"):]
    elif "://" in url:
        raise ValueError(f"Unsupported database URL: {url}")
    else:
        path = url
    # Each operation opens its own connection; an in-memory database does not outlive it.
    if not path or path == ":memory:" or path.startswith("file::memory:"):
        raise ValueError(f"In-memory databases are not supported: {url}")
    return path


# Tests point this at a per-test file before touching the database.
DATABASE_FILE = resolve_database_file(settings.database_url)


def get_db_connection() -> sqlite3.Connection:
    """Open a connection to the SQLite database with dict-like rows."""
    conn = sqlite3.connect(DATABASE_FILE, timeout=settings.database_timeout, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


def create_tables() -> None:
    """Create the books, users and loans collections if they do not exist."""
    conn = get_db_connection()
    try:
        cursor = conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL;")
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS books (
                id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                author TEXT NOT NULL,
                description TEXT NOT NULL,
                publication_year INTEGER NOT NULL,
                genre TEXT,
                cover_image TEXT,
                is_available INTEGER NOT NULL DEFAULT 1,
                created_at TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS users (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                email TEXT NOT NULL UNIQUE,
                password_hash TEXT NOT NULL,
                profile_image TEXT,
                created_at TEXT NOT NULL
            )
        """)

        # Loans keep plain id references; deleting a book does not cascade.
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS loans (
                id TEXT PRIMARY KEY,
                book_id TEXT NOT NULL,
                user_id TEXT NOT NULL,
                borrowed_date TEXT NOT NULL,
                due_date TEXT NOT NULL,
                returned_date TEXT,
                status TEXT NOT NULL DEFAULT 'active'
                    CHECK(status IN ('active', 'returned', 'overdue'))
            )
        """)

        cursor.execute("CREATE INDEX IF NOT EXISTS idx_books_title ON books(title)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_loans_book_status ON loans(book_id, status)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_loans_user_status ON loans(user_id, status)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_loans_status_due ON loans(status, due_date)")

        conn.commit()
    finally:
        conn.close()


def check_connection() -> bool:
    """Run a trivial query; used by the health endpoint."""
    try:
        conn = get_db_connection()
        try:
            conn.execute("SELECT 1")
        finally:
            conn.close()
        return True
    except sqlite3.Error as e:
        logger.error(f"Database health check failed: {e}")
        return False


def initialize_database() -> None:
    """Create the schema. Safe to call repeatedly."""
    create_tables()
    logger.info(f"Database ready at {DATABASE_FILE}")
