from datetime import datetime, timezone

import pytest
from sqlalchemy import insert

from checkout_service.database import connect_database_with
from checkout_service.models import Book, create_schema
from checkout_service.repository import CheckoutRepository

BOOK_ID1 = "9890736e-a4e4-461a-a77d-eac3517ef11b"
BOOK_ID2 = "c4e7bd16-4ea3-4ef0-b4f2-7b1dd6c3a1a1"
BOOK_ID3 = "2f1c0a6e-0b1d-4f7e-9d56-3f8b2b9e5c10"
MISSING_BOOK_ID = "00000000-0000-0000-0000-000000000000"

USER_ID1 = "9582f9de-0fd1-4892-b20c-70139a7eb95b"
USER_ID2 = "050afe56-c3da-4448-8e4d-6f44007d2ca5"


def ts(day, hour=0):
    return datetime(2024, 1, day, hour, tzinfo=timezone.utc)


class SqliteConfig:
    SQLALCHEMY_DATABASE_URI = None
    SQLALCHEMY_ECHO = False
    SQLALCHEMY_POOL_PRE_PING = False
    CHECKOUT_ISOLATION_LEVEL = "SERIALIZABLE"
    CHECKOUT_RETRY_ATTEMPTS = 3
    CHECKOUT_RETRY_BACKOFF_SECONDS = 0
    CREATE_SCHEMA = True
    TESTING = True


@pytest.fixture
def config(tmp_path):
    """Config pointing at a fresh sqlite file for each test."""

    class _Config(SqliteConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'checkout.db'}"

    return _Config


@pytest.fixture
def pool(config):
    """Connection pool with schema and three catalog books."""
    p = connect_database_with(config)
    create_schema(p.inner_ref())
    with p.inner_ref().begin() as conn:
        conn.execute(
            insert(Book.__table__),
            [
                {"book_id": BOOK_ID1, "title": "Clean Code", "author": "Robert C. Martin", "isbn": "978-0132350884"},
                {"book_id": BOOK_ID2, "title": "Effective Java", "author": "Joshua Bloch", "isbn": "978-0134685991"},
                {"book_id": BOOK_ID3, "title": "Refactoring", "author": "Martin Fowler", "isbn": "978-0134757599"},
            ],
        )
    yield p
    p.dispose()


@pytest.fixture
def repo(pool):
    return CheckoutRepository(pool)
