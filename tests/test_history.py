from datetime import datetime, timedelta, timezone

from checkout_service.domain import CreateCheckout, UpdateReturned

from conftest import BOOK_ID1, BOOK_ID2, USER_ID1, USER_ID2, ts


def cycle(repo, book_id, user_id, out_day, back_day):
    """Check a book out and return it; returns the checkout id."""
    checkout_id = repo.create(
        CreateCheckout(book_id=book_id, checked_out_by=user_id, checked_out_at=ts(out_day))
    )
    repo.update_returned(
        UpdateReturned(
            checkout_id=checkout_id,
            book_id=book_id,
            returned_by=user_id,
            returned_at=ts(back_day),
        )
    )
    return checkout_id


def test_history_empty(repo):
    assert repo.find_history_by_book_id(BOOK_ID1) == []


def test_history_returned_only_most_recent_first(repo):
    # Recorded out of checkout order; history must sort, not echo insertion order
    t2 = cycle(repo, BOOK_ID1, USER_ID2, 3, 4)
    t3 = cycle(repo, BOOK_ID1, USER_ID1, 5, 6)
    t1 = cycle(repo, BOOK_ID1, USER_ID1, 1, 2)

    history = repo.find_history_by_book_id(BOOK_ID1)
    assert [c.id for c in history] == [t3, t2, t1]
    assert all(c.is_returned for c in history)


def test_history_open_checkout_comes_first(repo):
    t1 = cycle(repo, BOOK_ID1, USER_ID1, 1, 2)
    t2 = cycle(repo, BOOK_ID1, USER_ID2, 3, 4)
    current = repo.create(
        CreateCheckout(book_id=BOOK_ID1, checked_out_by=USER_ID2, checked_out_at=ts(7))
    )

    history = repo.find_history_by_book_id(BOOK_ID1)
    assert [c.id for c in history] == [current, t2, t1]
    assert not history[0].is_returned
    assert [c.returned_at for c in history[1:]] == [ts(4), ts(2)]


def test_history_only_covers_the_requested_book(repo):
    mine = cycle(repo, BOOK_ID1, USER_ID1, 1, 2)
    cycle(repo, BOOK_ID2, USER_ID1, 1, 2)

    history = repo.find_history_by_book_id(BOOK_ID1)
    assert [c.id for c in history] == [mine]
    assert history[0].book.title == "Clean Code"


def test_history_open_checkout_first_even_when_older(repo):
    t1 = cycle(repo, BOOK_ID1, USER_ID1, 5, 6)
    t2 = cycle(repo, BOOK_ID1, USER_ID2, 8, 9)
    current = repo.create(
        CreateCheckout(book_id=BOOK_ID1, checked_out_by=USER_ID1, checked_out_at=ts(1))
    )

    history = repo.find_history_by_book_id(BOOK_ID1)
    assert [c.id for c in history] == [current, t2, t1]
    assert not history[0].is_returned
    assert history[0].checked_out_at == ts(1)


def test_history_orders_by_instant_across_offsets(repo):
    pacific = timezone(timedelta(hours=-8))
    early = repo.create(
        CreateCheckout(
            book_id=BOOK_ID1,
            checked_out_by=USER_ID1,
            checked_out_at=datetime(2024, 1, 2, 0, tzinfo=timezone.utc),
        )
    )
    repo.update_returned(
        UpdateReturned(
            checkout_id=early,
            book_id=BOOK_ID1,
            returned_by=USER_ID1,
            returned_at=datetime(2024, 1, 2, 1, tzinfo=timezone.utc),
        )
    )
    # 2024-01-01T20:00-08:00 is 2024-01-02T04:00Z, later than `early`
    late = repo.create(
        CreateCheckout(
            book_id=BOOK_ID1,
            checked_out_by=USER_ID2,
            checked_out_at=datetime(2024, 1, 1, 20, tzinfo=pacific),
        )
    )
    repo.update_returned(
        UpdateReturned(
            checkout_id=late,
            book_id=BOOK_ID1,
            returned_by=USER_ID2,
            returned_at=datetime(2024, 1, 1, 22, tzinfo=pacific),
        )
    )

    history = repo.find_history_by_book_id(BOOK_ID1)
    assert [c.id for c in history] == [late, early]
    assert history[0].returned_at == datetime(2024, 1, 2, 6, tzinfo=timezone.utc)
