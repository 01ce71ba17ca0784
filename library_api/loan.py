from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from library_api.timestamps import from_iso, to_iso

LOAN_PERIOD = timedelta(days=14)

ACTIVE = "active"
RETURNED = "returned"
OVERDUE = "overdue"

# A book stays out while its loan is active or overdue.
OUTSTANDING_STATUSES = (ACTIVE, OVERDUE)


@dataclass
class Loan:
    """A borrowing of one book by one user."""
    id: str
    book_id: str
    user_id: str
    borrowed_date: datetime
    due_date: datetime
    returned_date: Optional[datetime] = None
    status: str = ACTIVE

    @classmethod
    def open(cls, id: str, book_id: str, user_id: str, borrowed_date: datetime) -> "Loan":
        """Start a new active loan due one loan period after ``borrowed_date``."""
        return cls(
            id=id,
            book_id=book_id,
            user_id=user_id,
            borrowed_date=borrowed_date,
            due_date=borrowed_date + LOAN_PERIOD,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "book": self.book_id,
            "user": self.user_id,
            "borrowedDate": to_iso(self.borrowed_date),
            "dueDate": to_iso(self.due_date),
            "returnedDate": to_iso(self.returned_date) if self.returned_date else None,
            "status": self.status,
        }

    @staticmethod
    def from_row(row: Dict[str, Any]) -> "Loan":
        return Loan(
            id=row["id"],
            book_id=row["book_id"],
            user_id=row["user_id"],
            borrowed_date=from_iso(row["borrowed_date"]),
            due_date=from_iso(row["due_date"]),
            returned_date=from_iso(row.get("returned_date")),
            status=row["status"],
        )
