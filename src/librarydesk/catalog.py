from __future__ import annotations
import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional, Dict, Any

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, and_

from librarydesk.auth import Actor, require_role
from librarydesk.errors import ok, err
from librarydesk.ledger import find_book, book_snapshot
from librarydesk.models import Book, Loan, LoanStatus, Purchase, LibraryUser, Role
from librarydesk.status import resolve_now, day_window

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")

def purchase_view(p: Purchase, book: Optional[Book]) -> Dict[str, Any]:
    return {
        "id": p.id,
        "user_id": p.user_id,
        "book_id": p.book_id,
        "price": p.price,
        "purchased_at": p.purchased_at,
        "book": book_snapshot(book),
    }

async def purchase(session: AsyncSession, *, user_id: str, book_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    if not (user_id and book_id):
        return err("Faltan datos para la compra (user_id, book_id).", code="MISSING_FIELDS")
    now = resolve_now(now)
    book = await find_book(session, book_id)
    if not book:
        await session.rollback()
        return err("No encontré el libro solicitado.", code="BOOK_NOT_FOUND")
    # el precio se fija al momento de la compra
    p = Purchase(user_id=user_id, book_id=book.id, price=book.price, purchased_at=now)
    session.add(p)
    await session.commit()
    logger.info("Compra registrada: purchase=%s user=%s book=%s price=%s", p.id, user_id, book.id, p.price)
    return ok("Compra realizada exitosamente.", purchase=purchase_view(p, book))

async def list_purchases_for_user(session: AsyncSession, *, user_id: str) -> Dict[str, Any]:
    rows = (await session.execute(
        select(Purchase, Book)
        .outerjoin(Book, Book.id == Purchase.book_id)
        .where(Purchase.user_id == user_id)
        .order_by(Purchase.purchased_at.desc())
    )).all()
    return ok("Compras del usuario.", items=[purchase_view(p, b) for p, b in rows])

async def stats(session: AsyncSession, *, actor: Optional[Actor], now: Optional[datetime] = None) -> Dict[str, Any]:
    denied = require_role(actor, Role.ADMIN)
    if denied:
        return denied
    now = resolve_now(now)
    day_start, day_end = day_window(now)

    total_books = await session.scalar(select(func.count()).select_from(Book))
    total_users = await session.scalar(select(func.count()).select_from(LibraryUser))
    borrowed_today = await session.scalar(
        select(func.count()).select_from(Loan)
        .where(and_(Loan.borrowed_at >= day_start, Loan.borrowed_at < day_end))
    )
    overdue = await session.scalar(
        select(func.count()).select_from(Loan)
        .where(and_(Loan.status == LoanStatus.BORROWED, Loan.due_date < now))
    )
    revenue = await session.scalar(
        select(func.coalesce(func.sum(Purchase.price), 0))
        .where(and_(Purchase.purchased_at >= day_start, Purchase.purchased_at < day_end))
    )
    return ok(
        "Estadísticas generadas.",
        total_books=int(total_books or 0),
        total_users=int(total_users or 0),
        borrowed_today=int(borrowed_today or 0),
        overdue=int(overdue or 0),
        revenue_today=Decimal(str(revenue or 0)).quantize(CENTS),
        generated_at=now,
    )
