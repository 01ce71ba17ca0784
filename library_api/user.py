from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class User:
    """A registered library member.

    ``borrowed_books`` is not stored with the user; it is filled in from the
    user's outstanding loans whenever the user is read.
    """
    id: str
    name: str
    email: str
    password_hash: str
    profile_image: Optional[str] = None
    created_at: Optional[str] = None
    borrowed_books: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        # password_hash is never serialized
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "profileImage": self.profile_image,
            "borrowedBooks": list(self.borrowed_books),
            "created_at": self.created_at,
        }

    @staticmethod
    def from_row(row: Dict[str, Any], borrowed_books: Optional[List[str]] = None) -> "User":
        return User(
            id=row["id"],
            name=row["name"],
            email=row["email"],
            password_hash=row["password_hash"],
            profile_image=row.get("profile_image"),
            created_at=row.get("created_at"),
            borrowed_books=borrowed_books or [],
        )
