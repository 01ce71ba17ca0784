import logging
import threading
from datetime import datetime, timedelta, timezone

import pytest

from library_api.database import get_db_connection
from library_api.errors import Conflict, Forbidden, NotFound, ServerError
from library_api.loan import ACTIVE, LOAN_PERIOD, RETURNED, Loan


def _assert_availability_matches_loans(lib):
    for book in lib.list_books():
        outstanding = lib.find_outstanding_loan(book.id)
        assert book.is_available == (outstanding is None)


def test_borrow_and_return_round_trip(lib, make_book, make_user):
    user, _ = make_user()
    book = make_book()

    loan, borrowed = lib.borrow_book(book.id, user.id)
    assert loan.status == ACTIVE
    assert loan.book_id == book.id
    assert loan.user_id == user.id
    assert loan.returned_date is None
    assert borrowed.is_available is False
    assert lib.get_book(book.id).is_available is False
    _assert_availability_matches_loans(lib)

    closed, returned = lib.return_book(book.id, user.id)
    assert closed.id == loan.id
    assert closed.status == RETURNED
    assert closed.returned_date >= closed.borrowed_date
    assert returned.is_available is True
    assert lib.find_outstanding_loan(book.id) is None
    _assert_availability_matches_loans(lib)


def test_due_date_is_fourteen_days_after_borrow(lib, make_book, make_user):
    user, _ = make_user()
    book = make_book()
    borrowed_at = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)

    loan, _ = lib.borrow_book(book.id, user.id, now=borrowed_at)

    assert loan.borrowed_date == borrowed_at
    assert loan.due_date == borrowed_at + timedelta(days=14)
    stored = lib.find_outstanding_loan(book.id)
    assert stored.due_date - stored.borrowed_date == LOAN_PERIOD


def test_second_borrow_conflicts_without_new_loan(lib, make_book, make_user):
    first, _ = make_user()
    second, _ = make_user()
    book = make_book()
    lib.borrow_book(book.id, first.id)

    with pytest.raises(Conflict, match="Book is already borrowed"):
        lib.borrow_book(book.id, second.id)

    assert len(lib.list_loans()) == 1
    assert lib.borrowed_book_ids(second.id) == []


def test_borrow_missing_book_or_user(lib, make_book, make_user):
    user, _ = make_user()
    book = make_book()

    with pytest.raises(NotFound, match="Book not found"):
        lib.borrow_book("missing", user.id)
    with pytest.raises(NotFound, match="User not found"):
        lib.borrow_book(book.id, "ghost")

    assert lib.get_book(book.id).is_available is True
    assert lib.list_loans() == []


def test_return_by_other_user_is_forbidden(lib, make_book, make_user):
    owner, _ = make_user()
    other, _ = make_user()
    book = make_book()
    loan, _ = lib.borrow_book(book.id, owner.id)

    with pytest.raises(Forbidden, match="Not authorized to return this book"):
        lib.return_book(book.id, other.id)

    assert lib.find_outstanding_loan(book.id).id == loan.id
    assert lib.get_book(book.id).is_available is False


def test_return_book_that_is_not_borrowed(lib, make_book, make_user):
    user, _ = make_user()
    book = make_book()

    with pytest.raises(NotFound, match="Book is not borrowed"):
        lib.return_book(book.id, user.id)


def test_return_missing_book(lib, make_user):
    user, _ = make_user()
    with pytest.raises(NotFound, match="Book not found"):
        lib.return_book("missing", user.id)


def test_returned_loan_cannot_be_returned_twice(lib, make_book, make_user):
    user, _ = make_user()
    book = make_book()
    lib.borrow_book(book.id, user.id)
    lib.return_book(book.id, user.id)

    with pytest.raises(NotFound, match="Book is not borrowed"):
        lib.return_book(book.id, user.id)


def test_book_can_be_borrowed_again_after_return(lib, make_book, make_user):
    first, _ = make_user()
    second, _ = make_user()
    book = make_book()
    lib.borrow_book(book.id, first.id)
    lib.return_book(book.id, first.id)

    loan, _ = lib.borrow_book(book.id, second.id)

    assert loan.user_id == second.id
    assert len(lib.list_loans()) == 2
    assert len(lib.list_loans(status=RETURNED)) == 1
    _assert_availability_matches_loans(lib)


def test_list_borrowed_sorted_by_due_date(lib, make_book, make_user):
    user, _ = make_user()
    later = make_book("Later")
    sooner = make_book("Sooner")
    start = datetime(2024, 1, 1, tzinfo=timezone.utc)

    lib.borrow_book(later.id, user.id, now=start + timedelta(days=5))
    lib.borrow_book(sooner.id, user.id, now=start)

    borrowed = lib.list_borrowed(user.id)
    assert [book.title for _, book in borrowed] == ["Sooner", "Later"]
    assert borrowed[0][0].due_date < borrowed[1][0].due_date


def test_borrowed_book_ids_follow_outstanding_loans(lib, make_book, make_user):
    user, _ = make_user()
    a = make_book("A")
    b = make_book("B")
    lib.borrow_book(a.id, user.id)
    lib.borrow_book(b.id, user.id)
    assert sorted(lib.borrowed_book_ids(user.id)) == sorted([a.id, b.id])

    lib.return_book(a.id, user.id)
    assert lib.borrowed_book_ids(user.id) == [b.id]


def test_loan_open():
    start = datetime(2024, 1, 1, tzinfo=timezone.utc)
    loan = Loan.open("l1", "b1", "u1", start)

    assert loan.status == ACTIVE
    assert loan.due_date == start + LOAN_PERIOD

    data = loan.to_dict()
    assert data["book"] == "b1"
    assert data["user"] == "u1"
    assert data["returnedDate"] is None
    assert data["status"] == "active"


def test_concurrent_borrows_create_one_loan(lib, make_book, make_user):
    book = make_book()
    users = [make_user()[0] for _ in range(6)]
    barrier = threading.Barrier(len(users))
    outcomes = []
    lock = threading.Lock()

    def borrow(user_id):
        barrier.wait()
        try:
            lib.borrow_book(book.id, user_id)
            outcome = "ok"
        except Conflict:
            outcome = "conflict"
        with lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=borrow, args=(user.id,)) for user in users]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(outcomes) == ["conflict"] * (len(users) - 1) + ["ok"]
    assert len(lib.list_loans()) == 1
    _assert_availability_matches_loans(lib)


def _add_trigger(sql):
    conn = get_db_connection()
    try:
        conn.execute(sql)
        conn.commit()
    finally:
        conn.close()


def test_failed_loan_insert_rolls_back_borrow(lib, make_book, make_user, caplog):
    user, _ = make_user()
    book = make_book()
    _add_trigger(
        "CREATE TRIGGER reject_loans BEFORE INSERT ON loans "
        "BEGIN SELECT RAISE(ABORT, 'loans are frozen'); END"
    )

    with caplog.at_level(logging.ERROR, logger="library_api.library"):
        with pytest.raises(ServerError):
            lib.borrow_book(book.id, user.id)

    assert lib.get_book(book.id).is_available is True
    assert lib.list_loans() == []
    assert "Partial borrow rolled back" in caplog.text


def test_failed_availability_flip_rolls_back_return(lib, make_book, make_user, caplog):
    user, _ = make_user()
    book = make_book()
    loan, _ = lib.borrow_book(book.id, user.id)
    _add_trigger(
        "CREATE TRIGGER freeze_books BEFORE UPDATE ON books "
        "BEGIN SELECT RAISE(ABORT, 'books are frozen'); END"
    )

    with caplog.at_level(logging.ERROR, logger="library_api.library"):
        with pytest.raises(ServerError):
            lib.return_book(book.id, user.id)

    assert lib.find_outstanding_loan(book.id).id == loan.id
    assert lib.get_book(book.id).is_available is False
    assert "Partial return rolled back" in caplog.text
