from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Normalise to UTC. Aware values are converted; naive ones (stores without
    timezone support hand those back) are taken as UTC already.
    """
    if value is None:
        return value
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class CheckoutBook:
    book_id: str
    title: str
    author: str
    isbn: str


@dataclass(frozen=True)
class Checkout:
    """
    A checkout as seen by callers.

    Open checkouts and returned ones share this type; `returned_at` is None
    while the book is still out.
    """
    id: str
    checked_out_by: str
    checked_out_at: datetime
    book: CheckoutBook
    returned_at: Optional[datetime] = None

    @property
    def is_returned(self) -> bool:
        return self.returned_at is not None

    @classmethod
    def from_row(cls, row) -> "Checkout":
        """Build from a joined checkout/book row; `returned_at` is optional on the row."""
        return cls(
            id=row.checkout_id,
            checked_out_by=row.user_id,
            checked_out_at=as_utc(row.checked_out_at),
            returned_at=as_utc(getattr(row, "returned_at", None)),
            book=CheckoutBook(
                book_id=row.book_id,
                title=row.title,
                author=row.author,
                isbn=row.isbn,
            ),
        )

    def to_dict(self) -> dict:
        return {
            "checkout_id": self.id,
            "checked_out_by": self.checked_out_by,
            "checked_out_at": self.checked_out_at.isoformat(),
            "returned_at": self.returned_at.isoformat() if self.returned_at else None,
            "book": {
                "book_id": self.book.book_id,
                "title": self.book.title,
                "author": self.book.author,
                "isbn": self.book.isbn,
            },
        }


@dataclass(frozen=True)
class CreateCheckout:
    book_id: str
    checked_out_by: str
    checked_out_at: datetime

    def __post_init__(self):
        # sqlite drops the offset on write, so only UTC reaches the store
        object.__setattr__(self, "checked_out_at", as_utc(self.checked_out_at))


@dataclass(frozen=True)
class UpdateReturned:
    checkout_id: str
    book_id: str
    returned_by: str
    returned_at: datetime

    def __post_init__(self):
        object.__setattr__(self, "returned_at", as_utc(self.returned_at))
