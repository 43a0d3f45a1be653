from sqlalchemy.orm import declarative_base
from sqlalchemy import (
    Column,
    String,
    DateTime,
    ForeignKey,
)

Base = declarative_base()


class Book(Base):
    """
    Catalog reference data. Owned by the catalog subsystem; only joined here.
    """
    __tablename__ = "books"

    book_id = Column(String(36), primary_key=True)
    title = Column(String(255), nullable=False)
    author = Column(String(255), nullable=False)
    isbn = Column(String(20), nullable=False)


class Checkout(Base):
    """
    An open checkout. At most one row per book while the book is out.
    """
    __tablename__ = "checkouts"

    checkout_id = Column(String(36), primary_key=True)
    book_id = Column(String(36), ForeignKey("books.book_id"), unique=True, nullable=False)
    user_id = Column(String(36), nullable=False)
    checked_out_at = Column(DateTime(timezone=True), nullable=False)


class ReturnedCheckout(Base):
    """
    Append-only history; rows are moved here from `checkouts` on return.
    """
    __tablename__ = "returned_checkouts"

    checkout_id = Column(String(36), primary_key=True)
    book_id = Column(String(36), ForeignKey("books.book_id"), nullable=False)
    user_id = Column(String(36), nullable=False)
    checked_out_at = Column(DateTime(timezone=True), nullable=False)
    returned_at = Column(DateTime(timezone=True), nullable=False)


def create_schema(engine):
    Base.metadata.create_all(engine)
