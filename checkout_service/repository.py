import enum
import logging
import uuid
from typing import List, Optional

from sqlalchemy import delete, insert, literal, select
from sqlalchemy.exc import SQLAlchemyError

from .domain import Checkout, CreateCheckout, UpdateReturned
from .errors import (
    ConflictError,
    EntityNotFoundError,
    WriteAnomalyError,
    wrap_store_error,
)
from .models import Book, Checkout as CheckoutRow, ReturnedCheckout

logger = logging.getLogger(__name__)

checkouts = CheckoutRow.__table__
returned_checkouts = ReturnedCheckout.__table__


class Guard(enum.Enum):
    PROCEED = "proceed"
    BOOK_NOT_FOUND = "book_not_found"
    ALREADY_CHECKED_OUT = "already_checked_out"
    CANNOT_RETURN = "cannot_return"


def checkout_guard(state) -> Guard:
    """Decide a checkout from the book/open-checkout row (None when the book is unknown)."""
    if state is None:
        return Guard.BOOK_NOT_FOUND
    if state.checkout_id is not None:
        return Guard.ALREADY_CHECKED_OUT
    return Guard.PROCEED


def return_guard(state, event: UpdateReturned) -> Guard:
    """
    Decide a return. An absent open checkout is allowed through; the
    insert-from-select that follows then touches no rows.
    """
    if state is None:
        return Guard.BOOK_NOT_FOUND
    if state.checkout_id is not None and (state.checkout_id, state.user_id) != (
        event.checkout_id,
        event.returned_by,
    ):
        return Guard.CANNOT_RETURN
    return Guard.PROCEED


def _checkout_state_query(book_id):
    return (
        select(Book.book_id, CheckoutRow.checkout_id, CheckoutRow.user_id)
        .select_from(Book)
        .outerjoin(CheckoutRow, CheckoutRow.book_id == Book.book_id)
        .where(Book.book_id == book_id)
    )


def _open_checkouts_query():
    return (
        select(
            CheckoutRow.checkout_id,
            CheckoutRow.book_id,
            CheckoutRow.user_id,
            CheckoutRow.checked_out_at,
            Book.title,
            Book.author,
            Book.isbn,
        )
        .join(Book, Book.book_id == CheckoutRow.book_id)
    )


class CheckoutRepository:
    """
    Checkout and return of physical books.

    `create` and `update_returned` run a guard read followed by writes in a
    single transaction at `isolation_level` (SERIALIZABLE unless configured
    otherwise), so two actors racing on the same book cannot both pass the
    guard. The find_* methods are single plain reads outside any transaction.
    """

    def __init__(self, db, isolation_level="SERIALIZABLE"):
        self.db = db
        self.isolation_level = isolation_level

    # ----------------- mutating operations -----------------

    def create(self, event: CreateCheckout) -> str:
        """Check a book out. Returns the new checkout id."""
        with self.db.begin() as session:
            self._set_transaction_isolation(session)

            state = self._execute(
                session,
                _checkout_state_query(event.book_id),
                "Failed to read checkout state",
            ).one_or_none()

            decision = checkout_guard(state)
            if decision is Guard.BOOK_NOT_FOUND:
                raise EntityNotFoundError(f"Book ({event.book_id}) not found")
            if decision is Guard.ALREADY_CHECKED_OUT:
                logger.warning("Rejected checkout of %s: already checked out", event.book_id)
                raise ConflictError(f"Book ({event.book_id}) is already checked out")

            checkout_id = str(uuid.uuid4())
            res = self._execute(
                session,
                insert(checkouts).values(
                    checkout_id=checkout_id,
                    book_id=event.book_id,
                    user_id=event.checked_out_by,
                    checked_out_at=event.checked_out_at,
                ),
                "Failed to insert checkout",
            )
            if res.rowcount < 1:
                logger.warning("Checkout insert for %s affected no rows", event.book_id)
                raise WriteAnomalyError("No checkout record has been created")

            self._commit(session)

        logger.info(
            "Checked out book %s to %s (checkout %s)",
            event.book_id,
            event.checked_out_by,
            checkout_id,
        )
        return checkout_id

    def update_returned(self, event: UpdateReturned) -> None:
        """Return a book: move the open checkout row into returned_checkouts."""
        with self.db.begin() as session:
            self._set_transaction_isolation(session)

            state = self._execute(
                session,
                _checkout_state_query(event.book_id),
                "Failed to read checkout state",
            ).one_or_none()

            decision = return_guard(state, event)
            if decision is Guard.BOOK_NOT_FOUND:
                raise EntityNotFoundError(f"Book ({event.book_id}) not found")
            if decision is Guard.CANNOT_RETURN:
                logger.warning(
                    "Rejected return of checkout %s on book %s by %s",
                    event.checkout_id,
                    event.book_id,
                    event.returned_by,
                )
                raise ConflictError(
                    f"Checkout ({event.checkout_id}) of book ({event.book_id}) "
                    f"cannot be returned by user ({event.returned_by})"
                )

            moved = select(
                checkouts.c.checkout_id,
                checkouts.c.book_id,
                checkouts.c.user_id,
                checkouts.c.checked_out_at,
                literal(event.returned_at, returned_checkouts.c.returned_at.type),
            ).where(checkouts.c.checkout_id == event.checkout_id)

            res = self._execute(
                session,
                insert(returned_checkouts).from_select(
                    ["checkout_id", "book_id", "user_id", "checked_out_at", "returned_at"],
                    moved,
                ),
                "Failed to record returned checkout",
            )
            if res.rowcount < 1:
                logger.warning("Return of checkout %s moved no rows", event.checkout_id)
                raise WriteAnomalyError("No returning record has been updated")

            res = self._execute(
                session,
                delete(checkouts).where(checkouts.c.checkout_id == event.checkout_id),
                "Failed to delete checkout",
            )
            if res.rowcount < 1:
                logger.warning("Return of checkout %s deleted no rows", event.checkout_id)
                raise WriteAnomalyError("No checkout record has been deleted")

            self._commit(session)

        logger.info(
            "Returned checkout %s of book %s by %s",
            event.checkout_id,
            event.book_id,
            event.returned_by,
        )

    # ----------------- reads -----------------

    def find_unreturned_all(self) -> List[Checkout]:
        """All open checkouts, oldest first."""
        q = _open_checkouts_query().order_by(CheckoutRow.checked_out_at.asc())
        return [Checkout.from_row(r) for r in self._read(q, "Failed to list checkouts")]

    def find_unreturned_by_user_id(self, user_id) -> List[Checkout]:
        q = (
            _open_checkouts_query()
            .where(CheckoutRow.user_id == user_id)
            .order_by(CheckoutRow.checked_out_at.asc())
        )
        return [Checkout.from_row(r) for r in self._read(q, "Failed to list user checkouts")]

    def find_unreturned_by_book_id(self, book_id) -> Optional[Checkout]:
        q = _open_checkouts_query().where(CheckoutRow.book_id == book_id)
        rows = self._read(q, "Failed to read book checkout")
        return Checkout.from_row(rows[0]) if rows else None

    def find_history_by_book_id(self, book_id) -> List[Checkout]:
        """
        Checkout history of a book, most recent first.

        The open checkout, if any, always comes first; returned ones follow
        by checked_out_at descending. The two reads are not in one
        transaction, so a return landing between them can briefly hide or
        duplicate that checkout.
        """
        current = self.find_unreturned_by_book_id(book_id)

        q = (
            select(
                ReturnedCheckout.checkout_id,
                ReturnedCheckout.book_id,
                ReturnedCheckout.user_id,
                ReturnedCheckout.checked_out_at,
                ReturnedCheckout.returned_at,
                Book.title,
                Book.author,
                Book.isbn,
            )
            .join(Book, Book.book_id == ReturnedCheckout.book_id)
            .where(ReturnedCheckout.book_id == book_id)
            .order_by(ReturnedCheckout.checked_out_at.desc())
        )
        history = [Checkout.from_row(r) for r in self._read(q, "Failed to read checkout history")]

        if current is not None:
            history.insert(0, current)
        return history

    # ----------------- helpers -----------------

    def _set_transaction_isolation(self, session):
        # Must be the first thing on the session: the level is fixed when
        # the connection joins the transaction.
        try:
            session.connection(execution_options={"isolation_level": self.isolation_level})
        except SQLAlchemyError as exc:
            raise wrap_store_error(exc, "Could not set transaction isolation level") from exc

    @staticmethod
    def _execute(session, statement, message):
        try:
            return session.execute(statement)
        except SQLAlchemyError as exc:
            raise wrap_store_error(exc, message) from exc

    @staticmethod
    def _commit(session):
        try:
            session.commit()
        except SQLAlchemyError as exc:
            raise wrap_store_error(exc, "Could not commit transaction") from exc

    def _read(self, statement, message):
        with self.db.connection() as conn:
            try:
                return conn.execute(statement).all()
            except SQLAlchemyError as exc:
                raise wrap_store_error(exc, message) from exc
