import asyncio
import pytest
from datetime import datetime, timedelta
from sqlalchemy import select, func
from librarydesk import models
from librarydesk.ledger import create_book, delete_book, update_book
from librarydesk.loans import borrow, return_loan, renew, list_for_user, list_overdue

pytestmark = pytest.mark.asyncio

NOW = datetime(2026, 10, 18, 12, 0, 0)

async def _mk_book(session, admin, *, total=3, available=None, title="Clean Code"):
    r = await create_book(session, actor=admin, title=title, author="Robert C. Martin",
                          category="Science", price="29.90", total_copies=total, available_copies=available)
    assert r["ok"] is True, r
    return r["data"]["book"]["id"]

async def _book(session, book_id):
    r = await session.execute(
        select(models.Book).where(models.Book.id == book_id).execution_options(populate_existing=True)
    )
    return r.scalar_one()

async def _loan(session, loan_id):
    r = await session.execute(
        select(models.Loan).where(models.Loan.id == loan_id).execution_options(populate_existing=True)
    )
    return r.scalar_one()

async def _loan_count(session, book_id):
    return await session.scalar(select(func.count()).select_from(models.Loan).where(models.Loan.book_id == book_id))

async def test_borrow_creates_loan_and_takes_a_copy(session, admin, alice):
    book_id = await _mk_book(session, admin, total=3)
    r = await borrow(session, user_id=alice.id, book_id=book_id, now=NOW)
    assert r["ok"] is True
    loan = r["data"]["loan"]
    assert loan["status"] == "BORROWED"
    assert loan["due_date"] == NOW + timedelta(days=14)
    assert loan["borrowed_at"] == NOW
    assert loan["display_status"] == "On Time"
    assert loan["days_remaining"] == 14
    assert loan["book"]["available_copies"] == 2
    assert (await _book(session, book_id)).available_copies == 2

async def test_borrow_unknown_book(session, alice):
    r = await borrow(session, user_id=alice.id, book_id="missing", now=NOW)
    assert r["code"] == "BOOK_NOT_FOUND"

async def test_borrow_with_no_copies_creates_no_loan(session, admin, alice):
    book_id = await _mk_book(session, admin, total=2, available=0)
    r = await borrow(session, user_id=alice.id, book_id=book_id, now=NOW)
    assert r["ok"] is False
    assert r["code"] == "NO_AVAILABLE_COPIES"
    assert r["kind"] == "conflict"
    assert await _loan_count(session, book_id) == 0
    assert (await _book(session, book_id)).available_copies == 0

async def test_same_user_cannot_borrow_twice(session, admin, alice):
    book_id = await _mk_book(session, admin, total=3)
    assert (await borrow(session, user_id=alice.id, book_id=book_id, now=NOW))["ok"] is True
    r = await borrow(session, user_id=alice.id, book_id=book_id, now=NOW)
    assert r["code"] == "ALREADY_BORROWED"
    assert (await _book(session, book_id)).available_copies == 2
    assert await _loan_count(session, book_id) == 1

async def test_can_borrow_again_after_return(session, admin, alice):
    book_id = await _mk_book(session, admin, total=1)
    first = await borrow(session, user_id=alice.id, book_id=book_id, now=NOW)
    await return_loan(session, loan_id=first["data"]["loan"]["id"], now=NOW)
    second = await borrow(session, user_id=alice.id, book_id=book_id, now=NOW)
    assert second["ok"] is True
    assert await _loan_count(session, book_id) == 2

async def test_three_copy_example(session, admin, alice, bob):
    book_id = await _mk_book(session, admin, total=3, available=1)
    r_a = await borrow(session, user_id=alice.id, book_id=book_id, now=NOW)
    assert r_a["ok"] is True
    assert (await _book(session, book_id)).available_copies == 0
    assert r_a["data"]["loan"]["due_date"] == NOW + timedelta(days=14)

    r_b = await borrow(session, user_id=bob.id, book_id=book_id, now=NOW)
    assert r_b["ok"] is False
    assert r_b["kind"] == "conflict"

    loan_id = r_a["data"]["loan"]["id"]
    r_ret = await return_loan(session, loan_id=loan_id, now=NOW + timedelta(days=1))
    assert r_ret["ok"] is True
    assert (await _book(session, book_id)).available_copies == 1
    loan = await _loan(session, loan_id)
    assert loan.status == models.LoanStatus.RETURNED
    assert loan.returned_at == NOW + timedelta(days=1)

async def test_second_return_fails_without_double_increment(session, admin, alice):
    book_id = await _mk_book(session, admin, total=2)
    loan_id = (await borrow(session, user_id=alice.id, book_id=book_id, now=NOW))["data"]["loan"]["id"]
    assert (await return_loan(session, loan_id=loan_id, now=NOW))["ok"] is True
    r = await return_loan(session, loan_id=loan_id, now=NOW)
    assert r["ok"] is False
    assert r["code"] == "ALREADY_RETURNED"
    assert (await _book(session, book_id)).available_copies == 2

async def test_return_unknown_loan(session):
    r = await return_loan(session, loan_id="missing")
    assert r["code"] == "LOAN_NOT_FOUND"

async def test_only_owner_or_admin_can_return(session, admin, alice, bob):
    book_id = await _mk_book(session, admin)
    loan_id = (await borrow(session, user_id=alice.id, book_id=book_id, now=NOW))["data"]["loan"]["id"]
    r = await return_loan(session, loan_id=loan_id, actor=bob, now=NOW)
    assert r["code"] == "NOT_LOAN_OWNER"
    assert r["kind"] == "forbidden"
    assert (await return_loan(session, loan_id=loan_id, actor=admin, now=NOW))["ok"] is True

async def test_copy_invariant_holds_over_borrow_return_sequence(session, admin, alice, bob):
    book_id = await _mk_book(session, admin, total=2)
    users = ["u1", "u2", "u3", alice.id, bob.id]
    open_loans = []
    for step in range(12):
        user = users[step % len(users)]
        if step % 3 == 2 and open_loans:
            await return_loan(session, loan_id=open_loans.pop(0), now=NOW)
        else:
            r = await borrow(session, user_id=user, book_id=book_id, now=NOW)
            if r["ok"]:
                open_loans.append(r["data"]["loan"]["id"])
        book = await _book(session, book_id)
        assert 0 <= book.available_copies <= book.total_copies
        assert book.available_copies == book.total_copies - len(open_loans)

async def test_concurrent_borrow_of_last_copy(session_factory, admin, alice, bob):
    async with session_factory() as s:
        book_id = await _mk_book(s, admin, total=3, available=1)

    async def attempt(user_id):
        async with session_factory() as s:
            return await borrow(s, user_id=user_id, book_id=book_id, now=NOW)

    results = await asyncio.gather(attempt(alice.id), attempt(bob.id))
    assert sorted(r["ok"] for r in results) == [False, True]
    failed = next(r for r in results if not r["ok"])
    assert failed["code"] == "NO_AVAILABLE_COPIES"

    async with session_factory() as s:
        assert (await _book(s, book_id)).available_copies == 0
        assert await _loan_count(s, book_id) == 1

async def test_renew_requires_later_date(session, admin, alice):
    book_id = await _mk_book(session, admin)
    loan = (await borrow(session, user_id=alice.id, book_id=book_id, now=NOW))["data"]["loan"]
    due = loan["due_date"]

    same = await renew(session, loan_id=loan["id"], new_due_date=due)
    earlier = await renew(session, loan_id=loan["id"], new_due_date=due - timedelta(days=1))
    for r in (same, earlier):
        assert r["ok"] is False
        assert r["code"] == "INVALID_DUE_DATE"
        assert r["kind"] == "invalid_transition"

    later = due + timedelta(days=7)
    r = await renew(session, loan_id=loan["id"], new_due_date=later)
    assert r["ok"] is True
    stored = await _loan(session, loan["id"])
    assert stored.due_date == later
    assert stored.status == models.LoanStatus.BORROWED
    assert stored.renewed_cnt == 1
    assert (await _book(session, book_id)).available_copies == 2

async def test_renew_without_date_extends_by_loan_period(session, admin, alice):
    book_id = await _mk_book(session, admin)
    loan = (await borrow(session, user_id=alice.id, book_id=book_id, now=NOW))["data"]["loan"]
    r = await renew(session, loan_id=loan["id"], actor=alice)
    assert r["ok"] is True
    assert (await _loan(session, loan["id"])).due_date == NOW + timedelta(days=28)

async def test_renew_returned_or_unknown_loan(session, admin, alice, bob):
    book_id = await _mk_book(session, admin)
    loan_id = (await borrow(session, user_id=alice.id, book_id=book_id, now=NOW))["data"]["loan"]["id"]
    assert (await renew(session, loan_id=loan_id, actor=bob))["code"] == "NOT_LOAN_OWNER"
    await return_loan(session, loan_id=loan_id, now=NOW)
    r = await renew(session, loan_id=loan_id, new_due_date=NOW + timedelta(days=60))
    assert r["code"] == "ALREADY_RETURNED"
    assert (await renew(session, loan_id="missing"))["code"] == "LOAN_NOT_FOUND"

async def test_list_for_user_decorates_status(session, admin, alice, bob):
    b1 = await _mk_book(session, admin, title="Overdue one")
    b2 = await _mk_book(session, admin, title="Due soon one")
    b3 = await _mk_book(session, admin, title="Fresh one")
    b4 = await _mk_book(session, admin, title="Returned one")
    await borrow(session, user_id=alice.id, book_id=b1, now=NOW - timedelta(days=15))
    await borrow(session, user_id=alice.id, book_id=b2, now=NOW - timedelta(days=12))
    await borrow(session, user_id=alice.id, book_id=b3, now=NOW)
    done = await borrow(session, user_id=alice.id, book_id=b4, now=NOW)
    await return_loan(session, loan_id=done["data"]["loan"]["id"], now=NOW)
    await borrow(session, user_id=bob.id, book_id=b3, now=NOW)

    r = await list_for_user(session, user_id=alice.id, now=NOW)
    by_title = {it["book"]["title"]: it for it in r["data"]["items"]}
    assert set(by_title) == {"Overdue one", "Due soon one", "Fresh one"}
    assert by_title["Overdue one"]["display_status"] == "Overdue"
    assert by_title["Due soon one"]["display_status"] == "Due Soon"
    assert by_title["Due soon one"]["days_remaining"] == 2
    assert by_title["Fresh one"]["display_status"] == "On Time"

async def test_deleted_book_keeps_loan_with_dangling_reference(session, admin, alice):
    book_id = await _mk_book(session, admin)
    loan_id = (await borrow(session, user_id=alice.id, book_id=book_id, now=NOW))["data"]["loan"]["id"]
    r = await delete_book(session, actor=admin, book_id=book_id)
    assert r["ok"] is True
    assert r["data"]["orphaned_loans"] == 1

    items = (await list_for_user(session, user_id=alice.id, now=NOW))["data"]["items"]
    assert len(items) == 1
    assert items[0]["book_id"] == book_id
    assert items[0]["book"] is None
    assert (await return_loan(session, loan_id=loan_id, now=NOW))["ok"] is True

async def test_lowering_total_with_loans_out_keeps_invariant(session, admin, alice, bob):
    book_id = await _mk_book(session, admin, total=4)
    await borrow(session, user_id=alice.id, book_id=book_id, now=NOW)
    r = await update_book(session, actor=admin, book_id=book_id, total_copies=2)
    assert r["data"]["book"]["available_copies"] == 2
    loan_id = (await list_for_user(session, user_id=alice.id, now=NOW))["data"]["items"][0]["id"]
    await return_loan(session, loan_id=loan_id, now=NOW)
    book = await _book(session, book_id)
    assert book.available_copies == book.total_copies == 2

async def test_list_overdue_is_admin_only(session, admin, alice, bob):
    b1 = await _mk_book(session, admin, title="Late")
    b2 = await _mk_book(session, admin, title="Fine")
    await borrow(session, user_id=alice.id, book_id=b1, now=NOW - timedelta(days=30))
    await borrow(session, user_id=bob.id, book_id=b2, now=NOW)

    denied = await list_overdue(session, actor=alice, now=NOW)
    assert denied["code"] == "FORBIDDEN"

    r = await list_overdue(session, actor=admin, now=NOW)
    items = r["data"]["items"]
    assert [it["book"]["title"] for it in items] == ["Late"]
    assert items[0]["user_id"] == alice.id
    assert items[0]["display_status"] == "Overdue"
