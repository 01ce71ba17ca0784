import logging
import sqlite3
from typing import Optional, Tuple

from library_api.auth import create_access_token, hash_password, verify_password
from library_api.database import get_db_connection
from library_api.errors import BadRequest, Conflict, NotFound
from library_api.library import Library, new_id
from library_api.timestamps import to_iso, utcnow
from library_api.user import User

logger = logging.getLogger(__name__)

_USER_COLUMNS = "id, name, email, password_hash, profile_image, created_at"


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


class Accounts:
    """User registration, login and profile management.

    A user's ``borrowed_books`` is read from the library's outstanding
    loans every time a user is loaded.
    """

    def __init__(self, library: Library) -> None:
        self.library = library

    def register(self, name: str, email: str, password: str) -> Tuple[User, str]:
        """Create a user and return it with a fresh bearer token."""
        email = normalize_email(email)
        if not name or not name.strip() or not email or not password:
            raise BadRequest("Name, email and password are required")

        user = User(
            id=new_id(),
            name=name.strip(),
            email=email,
            password_hash=hash_password(password),
            created_at=to_iso(utcnow()),
        )
        conn = get_db_connection()
        try:
            conn.execute(
                f"INSERT INTO users ({_USER_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?)",
                (user.id, user.name, user.email, user.password_hash, None, user.created_at),
            )
            conn.commit()
        except sqlite3.IntegrityError as e:
            raise Conflict("User already exists") from e
        finally:
            conn.close()

        logger.info(f"User registered: {user.id}")
        return user, create_access_token(user.id)

    def login(self, email: str, password: str) -> Tuple[User, str]:
        user = self.find_by_email(email)
        if not user or not verify_password(password or "", user.password_hash):
            raise BadRequest("Invalid credentials")
        return user, create_access_token(user.id)

    def find_by_email(self, email: str) -> Optional[User]:
        conn = get_db_connection()
        try:
            row = conn.execute(
                f"SELECT {_USER_COLUMNS} FROM users WHERE email = ?", (normalize_email(email),)
            ).fetchone()
        finally:
            conn.close()
        return self._with_borrowed(row)

    def get_profile(self, user_id: str) -> User:
        conn = get_db_connection()
        try:
            row = conn.execute(f"SELECT {_USER_COLUMNS} FROM users WHERE id = ?", (user_id,)).fetchone()
        finally:
            conn.close()
        user = self._with_borrowed(row)
        if not user:
            raise NotFound("User not found")
        return user

    def update_profile(self, user_id: str, name: Optional[str] = None, email: Optional[str] = None,
                       profile_image: Optional[str] = None) -> User:
        """Change name, email and/or profile image; omitted fields stay as they are."""
        updates = {}
        if name is not None and name.strip():
            updates["name"] = name.strip()
        if email is not None and email.strip():
            updates["email"] = normalize_email(email)
        if profile_image is not None:
            updates["profile_image"] = profile_image

        if updates:
            set_clause = ", ".join(f"{field} = ?" for field in updates)
            conn = get_db_connection()
            try:
                cursor = conn.execute(
                    f"UPDATE users SET {set_clause} WHERE id = ?", list(updates.values()) + [user_id]
                )
                conn.commit()
                if cursor.rowcount == 0:
                    raise NotFound("User not found")
            except sqlite3.IntegrityError as e:
                raise Conflict("Email already in use") from e
            finally:
                conn.close()

        return self.get_profile(user_id)

    def _with_borrowed(self, row) -> Optional[User]:
        if row is None:
            return None
        user = User.from_row(dict(row))
        user.borrowed_books = self.library.borrowed_book_ids(user.id)
        return user
