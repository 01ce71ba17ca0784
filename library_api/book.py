from __future__ import annotations

import json


class Book:
    """Represents a single book in the catalog."""

    MAX_GENRES = 2

    def __init__(self, id: str, title: str, author: str, description: str, publication_year: int,
                 genre: list | None = None, cover_image: str | None = None, is_available: bool = True,
                 created_at: str | None = None) -> None:
        self.id = id
        self.title = title.strip()
        self.author = author.strip()
        self.description = description
        self.publication_year = int(publication_year)
        self.genre = [g for g in (genre or []) if g][: self.MAX_GENRES]
        self.cover_image = cover_image or ""
        self.is_available = bool(is_available)
        self.created_at = created_at

    @property
    def genre0(self) -> str:
        return self.genre[0] if len(self.genre) > 0 else ""

    @property
    def genre1(self) -> str:
        return self.genre[1] if len(self.genre) > 1 else ""

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "description": self.description,
            "publication_year": self.publication_year,
            "genre": list(self.genre),
            "genre0": self.genre0,
            "genre1": self.genre1,
            "cover_image": self.cover_image,
            "isAvailable": self.is_available,
            "created_at": self.created_at,
        }

    @staticmethod
    def from_row(row: dict) -> "Book":
        # genre is stored as a JSON array
        genre = row.get("genre")
        if isinstance(genre, str):
            try:
                genre = json.loads(genre)
            except ValueError:
                genre = [genre] if genre else []

        return Book(
            id=row["id"],
            title=row["title"],
            author=row["author"],
            description=row["description"],
            publication_year=row["publication_year"],
            genre=genre,
            cover_image=row.get("cover_image"),
            is_available=bool(row.get("is_available", 1)),
            created_at=row.get("created_at"),
        )
