from typing import Optional
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from librarydesk.auth import Actor
from librarydesk.deps import get_session, get_actor, get_admin
from librarydesk.errors import http_status

from librarydesk.schemas import (
    BookIn, BookUpdate, BookOut, BookDeletedOut,
    BorrowIn, LoanOut, RenewalIn, LoanReturnedOut, LoanRenewedOut,
    PurchaseIn, PurchaseOut,
    StatsOut, ActorOut,
)

from librarydesk.ledger import (
    list_books, search_books, filter_books, get_book,
    create_book, update_book, delete_book,
)
from librarydesk.loans import borrow, return_loan, renew, list_for_user, list_overdue
from librarydesk.catalog import purchase, list_purchases_for_user, stats

router = APIRouter(prefix="/api")

def _data(r: dict) -> dict:
    if not r["ok"]:
        raise HTTPException(status_code=http_status(r), detail={"message": r["message"], "code": r["code"]})
    return r.get("data") or {}

@router.get("/auth/user", response_model=ActorOut)
async def http_current_user(actor: Actor = Depends(get_actor)):
    return ActorOut(id=actor.id, name=actor.name, role=actor.role.value)

@router.get("/books", response_model=list[BookOut])
async def http_list_books(search: Optional[str] = None, category: Optional[str] = None,
                          session: AsyncSession = Depends(get_session)):
    if search:
        r = await search_books(session, search)
    elif category:
        r = await filter_books(session, category)
    else:
        r = await list_books(session)
    return _data(r).get("items") or []

@router.get("/books/{book_id}", response_model=BookOut)
async def http_get_book(book_id: str, session: AsyncSession = Depends(get_session)):
    return _data(await get_book(session, book_id))["book"]

@router.post("/books", response_model=BookOut)
async def http_create_book(payload: BookIn, actor: Actor = Depends(get_admin),
                           session: AsyncSession = Depends(get_session)):
    r = await create_book(session, actor=actor, **payload.model_dump())
    return _data(r)["book"]

@router.put("/books/{book_id}", response_model=BookOut)
async def http_update_book(book_id: str, payload: BookUpdate, actor: Actor = Depends(get_admin),
                           session: AsyncSession = Depends(get_session)):
    r = await update_book(session, actor=actor, book_id=book_id, **payload.model_dump(exclude_unset=True))
    return _data(r)["book"]

@router.delete("/books/{book_id}", response_model=BookDeletedOut)
async def http_delete_book(book_id: str, actor: Actor = Depends(get_admin),
                           session: AsyncSession = Depends(get_session)):
    r = await delete_book(session, actor=actor, book_id=book_id)
    return {"detail": r["message"], **_data(r)}

@router.post("/borrow", response_model=LoanOut)
async def http_borrow(payload: BorrowIn, actor: Actor = Depends(get_actor),
                      session: AsyncSession = Depends(get_session)):
    r = await borrow(session, user_id=actor.id, book_id=payload.book_id)
    return _data(r)["loan"]

@router.get("/borrowed", response_model=list[LoanOut])
async def http_my_loans(actor: Actor = Depends(get_actor), session: AsyncSession = Depends(get_session)):
    return _data(await list_for_user(session, user_id=actor.id))["items"]

@router.post("/return/{loan_id}", response_model=LoanReturnedOut)
async def http_return(loan_id: str, actor: Actor = Depends(get_actor),
                      session: AsyncSession = Depends(get_session)):
    r = await return_loan(session, loan_id=loan_id, actor=actor)
    return {"detail": r["message"], **_data(r)}

@router.post("/renew/{loan_id}", response_model=LoanRenewedOut)
async def http_renew(loan_id: str, payload: RenewalIn | None = None, actor: Actor = Depends(get_actor),
                     session: AsyncSession = Depends(get_session)):
    new_due = payload.new_due_date if payload else None
    r = await renew(session, loan_id=loan_id, new_due_date=new_due, actor=actor)
    return {"detail": r["message"], **_data(r)}

@router.post("/purchase", response_model=PurchaseOut)
async def http_purchase(payload: PurchaseIn, actor: Actor = Depends(get_actor),
                        session: AsyncSession = Depends(get_session)):
    r = await purchase(session, user_id=actor.id, book_id=payload.book_id)
    return _data(r)["purchase"]

@router.get("/purchases", response_model=list[PurchaseOut])
async def http_my_purchases(actor: Actor = Depends(get_actor), session: AsyncSession = Depends(get_session)):
    return _data(await list_purchases_for_user(session, user_id=actor.id))["items"]

@router.get("/admin/stats", response_model=StatsOut)
async def http_admin_stats(actor: Actor = Depends(get_admin), session: AsyncSession = Depends(get_session)):
    return _data(await stats(session, actor=actor))

@router.get("/admin/overdue", response_model=list[LoanOut])
async def http_admin_overdue(actor: Actor = Depends(get_admin), session: AsyncSession = Depends(get_session)):
    return _data(await list_overdue(session, actor=actor))["items"]
